"""Translation of legacy column values into analytics-side vocabulary."""

from __future__ import annotations

PLACEHOLDER_PAYMENT_METHOD = "legacy"

_PAYMENT_CODES: dict[str, str] = {
    "EF": "cash",
    "EFECTIVO": "cash",
    "CASH": "cash",
    "TC": "card",
    "TD": "card",
    "TARJETA": "card",
    "CREDITO": "card",
    "DEBITO": "card",
    "CARD": "card",
    "TR": "transfer",
    "TRANSFERENCIA": "transfer",
    "TRANSFER": "transfer",
    "CH": "check",
    "CHEQUE": "check",
}


def map_payment_method(code: str | None) -> str:
    """Map a legacy payment code to a payment method, or the placeholder."""

    if code is None:
        return PLACEHOLDER_PAYMENT_METHOD
    normalized = "".join(str(code).split()).upper()
    if not normalized:
        return PLACEHOLDER_PAYMENT_METHOD
    return _PAYMENT_CODES.get(normalized, PLACEHOLDER_PAYMENT_METHOD)


def normalize_key(value: str | None) -> str:
    """Case-insensitive identity key; blank input yields an empty string."""

    if value is None:
        return ""
    return str(value).strip().lower()


def join_name(*parts: str | None) -> str:
    return " ".join(part.strip() for part in parts if part and part.strip())


def room_key(location_name: str | None, room_name: str | None) -> str:
    return f"{normalize_key(location_name)}|{normalize_key(room_name)}"


def legacy_sale_description(sale_id: object) -> str:
    return f"Legacy Sale {sale_id}"
