"""
Per-entity sync phases.

Every phase follows the same shape: full scan of the legacy rows, load the
existing destination identity keys, walk the source in fetch order staging
records that are neither persisted nor staged earlier in the run, then write
them in fixed-size batches. Rows that cannot be written are counted and
logged; only store errors escape a phase.
"""

from __future__ import annotations

import json
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Sequence

from analytics_app.models import Customer, DiagnosticResult, Location, Room, Student, Transaction

from .destination import DestinationStore
from .errors import SkippedRow
from .mapping import (
    PLACEHOLDER_PAYMENT_METHOD,
    join_name,
    legacy_sale_description,
    map_payment_method,
    normalize_key,
    room_key,
)
from .source import LegacySourceStore

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 1000

CUSTOMERS = "customers"
STUDENTS = "students"
LOCATIONS_AND_ROOMS = "locations_and_rooms"
TRANSACTIONS = "transactions"
DIAGNOSTICS = "diagnostics"

# Reasons that indicate a data gap and deserve operator attention.
_WARN_REASONS = frozenset({"blank_key", "unresolved_customer", "unresolved_client", "unresolved_student"})


@dataclass
class PhaseSummary:
    phase: str
    rows_read: int = 0
    rows_inserted: int = 0
    rows_updated: int = 0
    rows_skipped: int = 0
    batches: int = 0
    skip_reasons: Counter = field(default_factory=Counter)

    def skip(self, row: SkippedRow) -> None:
        self.rows_skipped += 1
        self.skip_reasons[row.reason] += 1
        log = logger.warning if row.reason in _WARN_REASONS else logger.debug
        log(
            row.describe(),
            extra={
                "sync_phase": row.phase,
                "sync_source_id": row.source_id,
                "sync_skip_reason": row.reason,
                "sync_unresolved_key": row.key,
            },
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "rows_read": self.rows_read,
            "rows_inserted": self.rows_inserted,
            "rows_updated": self.rows_updated,
            "rows_skipped": self.rows_skipped,
            "batches": self.batches,
            "skip_reasons": dict(sorted(self.skip_reasons.items())),
        }


def insert_in_batches(store: DestinationStore, records: Sequence, batch_size: int, *, phase: str = "") -> int:
    """
    Write ``records`` in chunks of ``batch_size``, committing after each chunk.

    Returns the number of batches written.
    """
    if batch_size < 1:
        raise ValueError("batch_size must be at least 1")
    total = len(records)
    batches = 0
    for start in range(0, total, batch_size):
        chunk = records[start : start + batch_size]
        store.insert_batch(chunk)
        batches += 1
        logger.info(
            "%s: %s/%s",
            phase or "insert",
            min(start + batch_size, total),
            total,
            extra={"sync_phase": phase, "sync_batch": batches, "sync_batch_rows": len(chunk)},
        )
    return batches


def _log_phase_result(summary: PhaseSummary) -> None:
    if summary.rows_inserted or summary.rows_updated:
        logger.info(
            "Synced %s: %s inserted, %s updated",
            summary.phase,
            summary.rows_inserted,
            summary.rows_updated,
            extra={"sync_phase": summary.phase, "sync_counts": summary.to_dict()},
        )
    else:
        logger.info("No new %s to sync", summary.phase, extra={"sync_phase": summary.phase})


def sync_customers(
    source: LegacySourceStore, store: DestinationStore, *, batch_size: int = DEFAULT_BATCH_SIZE
) -> PhaseSummary:
    summary = PhaseSummary(CUSTOMERS)
    clients = source.fetch_clients()
    summary.rows_read = len(clients)
    logger.info("Found %s legacy clients", len(clients), extra={"sync_phase": CUSTOMERS})

    existing = store.customer_emails()
    staged: set[str] = set()
    pending: list[Customer] = []
    for client in clients:
        email = normalize_key(client.email)
        if not email:
            summary.skip(SkippedRow(CUSTOMERS, str(client.client_id), "blank_key", "email"))
            continue
        if email in existing:
            summary.skip(SkippedRow(CUSTOMERS, str(client.client_id), "already_synced", email))
            continue
        if email in staged:
            summary.skip(SkippedRow(CUSTOMERS, str(client.client_id), "duplicate_in_source", email))
            continue
        staged.add(email)
        pending.append(
            Customer(
                name=join_name(client.first_names, client.paternal_surname, client.maternal_surname),
                email=client.email.strip(),
                phone=(client.phone or "").strip(),
                customer_type="regular",
                is_active=True,
            )
        )

    summary.batches = insert_in_batches(store, pending, batch_size, phase=CUSTOMERS)
    summary.rows_inserted = len(pending)
    _log_phase_result(summary)
    return summary


def sync_students(
    source: LegacySourceStore, store: DestinationStore, *, batch_size: int = DEFAULT_BATCH_SIZE
) -> PhaseSummary:
    summary = PhaseSummary(STUDENTS)
    students = source.fetch_students()
    summary.rows_read = len(students)
    logger.info("Found %s legacy students", len(students), extra={"sync_phase": STUDENTS})

    existing = store.student_emails()
    customer_ids = store.customer_ids_by_email()
    staged: set[str] = set()
    pending: list[Student] = []
    for student in students:
        email = normalize_key(student.email)
        if not email:
            summary.skip(SkippedRow(STUDENTS, str(student.rut), "blank_key", "email"))
            continue
        if email in existing:
            summary.skip(SkippedRow(STUDENTS, str(student.rut), "already_synced", email))
            continue
        if email in staged:
            summary.skip(SkippedRow(STUDENTS, str(student.rut), "duplicate_in_source", email))
            continue
        customer_id = customer_ids.get(email)
        if customer_id is None:
            summary.skip(SkippedRow(STUDENTS, str(student.rut), "unresolved_customer", email))
            continue
        staged.add(email)
        pending.append(
            Student(
                name=join_name(student.first_names, student.paternal_surname, student.maternal_surname),
                email=student.email.strip(),
                customer_id=customer_id,
                status="active",
                is_active=True,
            )
        )

    summary.batches = insert_in_batches(store, pending, batch_size, phase=STUDENTS)
    summary.rows_inserted = len(pending)
    _log_phase_result(summary)
    return summary


def sync_locations_and_rooms(
    source: LegacySourceStore, store: DestinationStore, *, batch_size: int = DEFAULT_BATCH_SIZE
) -> PhaseSummary:
    """
    Derive locations and rooms from the denormalized course-detail view.

    Locations are written (and committed) first so the rooms pass can resolve
    freshly assigned ids. Names compare case-insensitively; the first-seen
    casing is what gets stored.
    """
    summary = PhaseSummary(LOCATIONS_AND_ROOMS)
    details = source.fetch_course_details()
    summary.rows_read = len(details)
    logger.info("Found %s legacy course detail rows", len(details), extra={"sync_phase": LOCATIONS_AND_ROOMS})

    existing_locations = set(store.location_ids_by_name())
    staged_locations: set[str] = set()
    new_locations: list[Location] = []
    for detail in details:
        key = normalize_key(detail.location_name)
        if not key or key in existing_locations or key in staged_locations:
            continue
        staged_locations.add(key)
        new_locations.append(Location(name=detail.location_name.strip(), is_active=True))

    summary.batches += insert_in_batches(store, new_locations, batch_size, phase=LOCATIONS_AND_ROOMS)
    summary.rows_inserted += len(new_locations)

    location_ids = store.location_ids_by_name()
    existing_rooms = store.room_keys()
    staged_rooms: set[str] = set()
    new_rooms: list[Room] = []
    for detail in details:
        location_key = normalize_key(detail.location_name)
        room_name = (detail.room_name or "").strip()
        if not location_key or not room_name:
            summary.skip(SkippedRow(LOCATIONS_AND_ROOMS, "course_detail", "blank_name", location_key or None))
            continue
        key = room_key(detail.location_name, room_name)
        if key in existing_rooms or key in staged_rooms:
            continue
        location_id = location_ids.get(location_key)
        if location_id is None:
            summary.skip(SkippedRow(LOCATIONS_AND_ROOMS, key, "unresolved_location", location_key))
            continue
        staged_rooms.add(key)
        new_rooms.append(
            Room(
                name=room_name,
                capacity=detail.capacity or 0,
                room_type="classroom",
                location_id=location_id,
                is_active=True,
            )
        )

    summary.batches += insert_in_batches(store, new_rooms, batch_size, phase=LOCATIONS_AND_ROOMS)
    summary.rows_inserted += len(new_rooms)
    _log_phase_result(summary)
    return summary


def sync_transactions(
    source: LegacySourceStore, store: DestinationStore, *, batch_size: int = DEFAULT_BATCH_SIZE
) -> PhaseSummary:
    summary = PhaseSummary(TRANSACTIONS)
    sales = source.fetch_sales()
    summary.rows_read = len(sales)
    logger.info("Found %s legacy sales", len(sales), extra={"sync_phase": TRANSACTIONS})

    client_emails = {client.client_id: normalize_key(client.email) for client in source.fetch_clients()}
    customer_ids = store.customer_ids_by_email()
    location_ids = store.location_ids_by_name()
    existing = store.legacy_transactions()

    staged: set[str] = set()
    updates: list[tuple[int, str]] = []
    pending: list[Transaction] = []
    for sale in sales:
        source_id = str(sale.sale_id)
        description = legacy_sale_description(sale.sale_id)
        payment_method = map_payment_method(sale.payment_code)

        current = existing.get(description)
        if current is not None:
            tx_id, stored_method = current
            if stored_method == PLACEHOLDER_PAYMENT_METHOD and payment_method != stored_method:
                updates.append((tx_id, payment_method))
                # Later duplicates of the same sale must not queue a second update.
                existing[description] = (tx_id, payment_method)
            else:
                summary.skip(SkippedRow(TRANSACTIONS, source_id, "already_synced", description))
            continue
        if description in staged:
            summary.skip(SkippedRow(TRANSACTIONS, source_id, "duplicate_in_source", description))
            continue

        email = client_emails.get(sale.client_id)
        if not email:
            summary.skip(SkippedRow(TRANSACTIONS, source_id, "unresolved_client", str(sale.client_id)))
            continue
        customer_id = customer_ids.get(email)
        if customer_id is None:
            summary.skip(SkippedRow(TRANSACTIONS, source_id, "unresolved_customer", email))
            continue

        staged.add(description)
        pending.append(
            Transaction(
                customer_id=customer_id,
                location_id=location_ids.get(normalize_key(sale.location_label)),
                transaction_date=sale.sold_at,
                amount=sale.total,
                transaction_type="sale",
                payment_method=payment_method,
                status="completed",
                description=description,
            )
        )

    for start in range(0, len(updates), batch_size):
        chunk = updates[start : start + batch_size]
        store.update_payment_methods(chunk)
        summary.batches += 1
        logger.info(
            "%s updates: %s/%s",
            TRANSACTIONS,
            min(start + batch_size, len(updates)),
            len(updates),
            extra={"sync_phase": TRANSACTIONS},
        )
    summary.rows_updated = len(updates)

    summary.batches += insert_in_batches(store, pending, batch_size, phase=TRANSACTIONS)
    summary.rows_inserted = len(pending)
    _log_phase_result(summary)
    return summary


def sync_diagnostics(
    source: LegacySourceStore, store: DestinationStore, *, batch_size: int = DEFAULT_BATCH_SIZE
) -> PhaseSummary:
    summary = PhaseSummary(DIAGNOSTICS)
    diagnostics = source.fetch_diagnostics()
    answers = source.fetch_diagnostic_answers()
    summary.rows_read = len(diagnostics)
    logger.info(
        "Found %s legacy diagnostics and %s answers",
        len(diagnostics),
        len(answers),
        extra={"sync_phase": DIAGNOSTICS},
    )

    answers_by_diagnostic: dict[int, list[str]] = {}
    for answer in answers:
        if answer.diagnostic_id is None:
            continue
        answers_by_diagnostic.setdefault(answer.diagnostic_id, []).append(answer.answer or "")

    rut_emails = {normalize_key(student.rut): normalize_key(student.email) for student in source.fetch_students()}
    student_ids = store.student_ids_by_email()
    existing = store.diagnostic_keys()
    staged: set[tuple[int, date]] = set()
    pending: list[DiagnosticResult] = []
    for diagnostic in diagnostics:
        source_id = str(diagnostic.diagnostic_id)
        rut = normalize_key(diagnostic.student_rut)
        assessed_on = diagnostic.assessed_at
        if isinstance(assessed_on, datetime):
            assessed_on = assessed_on.date()
        if not rut or assessed_on is None:
            summary.skip(SkippedRow(DIAGNOSTICS, source_id, "blank_key", rut or None))
            continue
        email = rut_emails.get(rut)
        if not email:
            summary.skip(SkippedRow(DIAGNOSTICS, source_id, "unresolved_student", rut))
            continue
        student_id = student_ids.get(email)
        if student_id is None:
            summary.skip(SkippedRow(DIAGNOSTICS, source_id, "unresolved_student", email))
            continue
        key = (student_id, assessed_on)
        if key in existing:
            summary.skip(SkippedRow(DIAGNOSTICS, source_id, "already_synced", str(key)))
            continue
        if key in staged:
            summary.skip(SkippedRow(DIAGNOSTICS, source_id, "duplicate_in_source", str(key)))
            continue
        staged.add(key)
        pending.append(
            DiagnosticResult(
                student_id=student_id,
                assessment_date=assessed_on,
                score=0,
                type="adults",
                result_data=json.dumps(answers_by_diagnostic.get(diagnostic.diagnostic_id, []), ensure_ascii=False),
            )
        )

    summary.batches = insert_in_batches(store, pending, batch_size, phase=DIAGNOSTICS)
    summary.rows_inserted = len(pending)
    _log_phase_result(summary)
    return summary
