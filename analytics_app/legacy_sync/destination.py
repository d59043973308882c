"""
Destination-side lookups and batched writes for the legacy sync.

Keys returned by the lookup helpers are already normalized (lower-cased,
stripped) so phases can compare them directly against normalized source
values.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import date
from typing import Iterable, Sequence

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from analytics_app.models import Customer, DiagnosticResult, Location, Room, Student, Transaction, db

from .mapping import normalize_key, room_key

LEGACY_DESCRIPTION_PATTERN = "Legacy Sale %"


class DestinationStore:
    """Thin wrapper over the analytics session used by every sync phase."""

    def __init__(self, session: Session | None = None):
        self.session: Session = session or db.session

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def customer_emails(self) -> set[str]:
        return set(self.customer_ids_by_email())

    def customer_ids_by_email(self) -> dict[str, int]:
        rows = self.session.execute(select(Customer.email, Customer.id))
        return {normalize_key(email): customer_id for email, customer_id in rows if email}

    def student_emails(self) -> set[str]:
        return set(self.student_ids_by_email())

    def student_ids_by_email(self) -> dict[str, int]:
        rows = self.session.execute(select(Student.email, Student.id))
        return {normalize_key(email): student_id for email, student_id in rows if email}

    def location_ids_by_name(self) -> dict[str, int]:
        rows = self.session.execute(select(Location.name, Location.id).order_by(Location.id))
        mapping: dict[str, int] = {}
        for name, location_id in rows:
            # Oldest row wins if two names only differ by case.
            mapping.setdefault(normalize_key(name), location_id)
        return mapping

    def room_keys(self) -> set[str]:
        rows = self.session.execute(select(Location.name, Room.name).join(Room.location))
        return {room_key(location_name, room_name) for location_name, room_name in rows}

    def legacy_transactions(self) -> dict[str, tuple[int, str]]:
        stmt = select(Transaction.description, Transaction.id, Transaction.payment_method).where(
            Transaction.description.like(LEGACY_DESCRIPTION_PATTERN)
        )
        return {description: (tx_id, payment_method) for description, tx_id, payment_method in self.session.execute(stmt)}

    def diagnostic_keys(self) -> set[tuple[int, date]]:
        rows = self.session.execute(select(DiagnosticResult.student_id, DiagnosticResult.assessment_date))
        return {(student_id, assessed) for student_id, assessed in rows}

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def insert_batch(self, records: Sequence[db.Model]) -> int:
        """Persist one batch durably; earlier batches stay committed if this one fails."""

        if not records:
            return 0
        with self._transaction():
            self.session.add_all(records)
        return len(records)

    def update_payment_methods(self, updates: Iterable[tuple[int, str]]) -> int:
        payload = [{"id": tx_id, "payment_method": method} for tx_id, method in updates]
        if not payload:
            return 0
        with self._transaction():
            self.session.execute(update(Transaction), payload)
        return len(payload)

    def rollback(self) -> None:
        self.session.rollback()

    @contextmanager
    def _transaction(self):
        try:
            yield
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
