"""
Read-only access to the legacy database.

The legacy system exposes its data through views; they are declared here as
SQLAlchemy Core tables on a private ``MetaData`` so ``db.create_all()`` never
touches them. Every fetch is a full scan returning frozen dataclass rows.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Iterable, TypeVar

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    create_engine,
    select,
)
from sqlalchemy.engine import Engine, Row

legacy_metadata = MetaData()

clients_view = Table(
    "vw_legacy_clientes",
    legacy_metadata,
    Column("idCliente", Integer, primary_key=True),
    Column("Nombres", String(200)),
    Column("ApPaterno", String(200)),
    Column("ApMaterno", String(200)),
    Column("Email", String(200)),
    Column("Fono", String(50)),
)

sales_view = Table(
    "vw_legacy_ventas",
    legacy_metadata,
    Column("idVenta", Integer, primary_key=True),
    Column("idCliente", Integer),
    Column("Total", Numeric(14, 2)),
    Column("FechaVenta", DateTime),
    Column("Sede", String(200)),
    Column("FormaPago", String(50)),
)

students_view = Table(
    "vw_legacy_alumnos",
    legacy_metadata,
    Column("Rut", String(20), primary_key=True),
    Column("Nombres", String(200)),
    Column("AP_Paterno", String(200)),
    Column("AP_Materno", String(200)),
    Column("Email", String(200)),
)

diagnostics_view = Table(
    "vw_legacy_diagnosticos",
    legacy_metadata,
    Column("idDiagnostico", Integer, primary_key=True),
    Column("Rut", String(20)),
    Column("Fecha", Date),
)

answers_view = Table(
    "vw_legacy_respuestas",
    legacy_metadata,
    Column("idRespuesta", Integer, primary_key=True),
    Column("idDiagnostico", Integer),
    Column("Respuesta", String(500)),
)

course_details_view = Table(
    "vw_legacy_detalle_curso",
    legacy_metadata,
    Column("Sede", String(200)),
    Column("Sala", String(100)),
    Column("Capacidad", Integer),
)


@dataclass(frozen=True)
class LegacyClient:
    client_id: int
    first_names: str | None
    paternal_surname: str | None
    maternal_surname: str | None
    email: str | None
    phone: str | None


@dataclass(frozen=True)
class LegacyStudent:
    rut: str
    first_names: str | None
    paternal_surname: str | None
    maternal_surname: str | None
    email: str | None


@dataclass(frozen=True)
class LegacySale:
    sale_id: int
    client_id: int | None
    total: Decimal | None
    sold_at: datetime | None
    location_label: str | None
    payment_code: str | None


@dataclass(frozen=True)
class LegacyDiagnostic:
    diagnostic_id: int
    student_rut: str | None
    assessed_at: date | None


@dataclass(frozen=True)
class LegacyDiagnosticAnswer:
    answer_id: int
    diagnostic_id: int | None
    answer: str | None


@dataclass(frozen=True)
class LegacyCourseDetail:
    location_name: str | None
    room_name: str | None
    capacity: int | None


RowT = TypeVar("RowT")


def create_legacy_engine(uri: str, **options: Any) -> Engine:
    """Build the engine used for the legacy database."""

    if not uri:
        raise ValueError("LEGACY_DATABASE_URI is not configured.")
    if uri.startswith("postgres://"):
        uri = uri.replace("postgres://", "postgresql://", 1)
    if uri.startswith("sqlite"):
        # The sync runs on a worker thread, not the thread that opened the pool.
        connect_args = dict(options.pop("connect_args", {}) or {})
        connect_args.setdefault("check_same_thread", False)
        options["connect_args"] = connect_args
    return create_engine(uri, pool_pre_ping=True, **options)


class LegacySourceStore:
    """Full-scan reader over the legacy views."""

    def __init__(self, engine: Engine):
        self.engine = engine

    def _fetch(self, table: Table, factory: Callable[[Row], RowT]) -> list[RowT]:
        stmt = select(table)
        with self.engine.connect() as connection:
            return [factory(row) for row in connection.execute(stmt)]

    def fetch_clients(self) -> list[LegacyClient]:
        return self._fetch(
            clients_view,
            lambda row: LegacyClient(
                client_id=row.idCliente,
                first_names=row.Nombres,
                paternal_surname=row.ApPaterno,
                maternal_surname=row.ApMaterno,
                email=row.Email,
                phone=row.Fono,
            ),
        )

    def fetch_students(self) -> list[LegacyStudent]:
        return self._fetch(
            students_view,
            lambda row: LegacyStudent(
                rut=row.Rut,
                first_names=row.Nombres,
                paternal_surname=row.AP_Paterno,
                maternal_surname=row.AP_Materno,
                email=row.Email,
            ),
        )

    def fetch_sales(self) -> list[LegacySale]:
        return self._fetch(
            sales_view,
            lambda row: LegacySale(
                sale_id=row.idVenta,
                client_id=row.idCliente,
                total=row.Total,
                sold_at=row.FechaVenta,
                location_label=row.Sede,
                payment_code=row.FormaPago,
            ),
        )

    def fetch_diagnostics(self) -> list[LegacyDiagnostic]:
        return self._fetch(
            diagnostics_view,
            lambda row: LegacyDiagnostic(
                diagnostic_id=row.idDiagnostico,
                student_rut=row.Rut,
                assessed_at=row.Fecha,
            ),
        )

    def fetch_diagnostic_answers(self) -> list[LegacyDiagnosticAnswer]:
        return self._fetch(
            answers_view,
            lambda row: LegacyDiagnosticAnswer(
                answer_id=row.idRespuesta,
                diagnostic_id=row.idDiagnostico,
                answer=row.Respuesta,
            ),
        )

    def fetch_course_details(self) -> list[LegacyCourseDetail]:
        return self._fetch(
            course_details_view,
            lambda row: LegacyCourseDetail(
                location_name=row.Sede,
                room_name=row.Sala,
                capacity=row.Capacidad,
            ),
        )


def seed_legacy_rows(engine: Engine, table: Table, rows: Iterable[dict[str, Any]]) -> None:
    """Insert raw rows into a legacy view stand-in (local development and tests)."""

    payload = list(rows)
    if not payload:
        return
    with engine.begin() as connection:
        connection.execute(table.insert(), payload)
