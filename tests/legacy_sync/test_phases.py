import json
from datetime import date, datetime
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from analytics_app.legacy_sync import phases
from analytics_app.legacy_sync.destination import DestinationStore
from analytics_app.models import Customer, DiagnosticResult, Location, Room, Student, Transaction, db

from legacy_rows import client_row, detail_row, sale_row, student_row


def _count(model) -> int:
    return db.session.scalar(select(func.count()).select_from(model))


def _add_customer(email, name="Existing Customer") -> Customer:
    customer = Customer(name=name, email=email)
    db.session.add(customer)
    db.session.commit()
    return customer


class TestSyncCustomers:
    def test_inserts_new_clients(self, legacy_data, source, store):
        legacy_data(clients=[client_row(1, "ana@example.com"), client_row(2, "bob@example.com", first="Bob")])

        summary = phases.sync_customers(source, store)

        assert summary.rows_read == 2
        assert summary.rows_inserted == 2
        assert summary.batches == 1
        ana = db.session.scalars(select(Customer).filter_by(email="ana@example.com")).one()
        assert ana.name == "Ana Pérez Soto"
        assert ana.phone == "+56911111111"
        assert ana.customer_type == "regular"
        assert ana.is_active is True

    def test_email_dedupe_is_case_insensitive(self, legacy_data, source, store):
        _add_customer("Ana@Example.com")
        legacy_data(
            clients=[
                client_row(1, "ana@example.com"),
                client_row(2, "carla@example.com"),
                client_row(3, "CARLA@example.com "),
            ]
        )

        summary = phases.sync_customers(source, store)

        assert summary.rows_inserted == 1
        assert summary.skip_reasons == {"already_synced": 1, "duplicate_in_source": 1}
        assert _count(Customer) == 2
        emails = set(db.session.scalars(select(Customer.email)))
        assert emails == {"Ana@Example.com", "carla@example.com"}

    def test_blank_email_is_skipped_with_warning(self, legacy_data, source, store, caplog):
        legacy_data(clients=[client_row(1, None), client_row(2, "   "), client_row(3, "ok@example.com")])

        with caplog.at_level("WARNING", logger="analytics_app.legacy_sync.phases"):
            summary = phases.sync_customers(source, store)

        assert summary.rows_inserted == 1
        assert summary.skip_reasons["blank_key"] == 2
        assert any(getattr(record, "sync_skip_reason", None) == "blank_key" for record in caplog.records)

    def test_empty_source_writes_nothing(self, source, store):
        summary = phases.sync_customers(source, store)

        assert summary.rows_read == 0
        assert summary.batches == 0
        assert _count(Customer) == 0


class TestSyncStudents:
    def test_links_student_to_customer_by_email(self, legacy_data, source, store):
        customer = _add_customer("ana@example.com")
        legacy_data(students=[student_row("11.111.111-1", "ANA@example.com", maternal="Díaz")])

        summary = phases.sync_students(source, store)

        assert summary.rows_inserted == 1
        student = db.session.scalars(select(Student)).one()
        assert student.customer_id == customer.id
        assert student.name == "Luis Rojas Díaz"
        assert student.status == "active"

    def test_student_without_customer_is_skipped(self, legacy_data, source, store):
        _add_customer("ana@example.com")
        legacy_data(
            students=[
                student_row("11.111.111-1", "ana@example.com"),
                student_row("33.333.333-3", "nobody@example.com"),
            ]
        )

        summary = phases.sync_students(source, store)

        assert summary.rows_inserted == 1
        assert summary.skip_reasons == {"unresolved_customer": 1}
        assert _count(Student) == 1

    def test_already_synced_students_are_not_duplicated(self, legacy_data, source, store):
        _add_customer("ana@example.com")
        legacy_data(students=[student_row("11.111.111-1", "ana@example.com")])

        phases.sync_students(source, store)
        second = phases.sync_students(source, store)

        assert second.rows_inserted == 0
        assert second.skip_reasons == {"already_synced": 1}
        assert _count(Student) == 1


class TestSyncLocationsAndRooms:
    def test_derives_unique_locations_and_rooms(self, legacy_data, source, store):
        legacy_data(
            course_details=[
                detail_row("Sede Central", "Sala A1", 30),
                detail_row("SEDE CENTRAL", "sala a1", 40),
                detail_row("Sede Central", "Sala A2", None),
                detail_row("Sede Norte", "Sala B1", 35),
            ]
        )

        summary = phases.sync_locations_and_rooms(source, store)

        locations = {location.name: location for location in db.session.scalars(select(Location))}
        assert set(locations) == {"Sede Central", "Sede Norte"}
        rooms = {(room.location.name, room.name): room for room in db.session.scalars(select(Room))}
        assert set(rooms) == {("Sede Central", "Sala A1"), ("Sede Central", "Sala A2"), ("Sede Norte", "Sala B1")}
        assert rooms[("Sede Central", "Sala A1")].capacity == 30
        assert rooms[("Sede Central", "Sala A2")].capacity == 0
        assert rooms[("Sede Norte", "Sala B1")].room_type == "classroom"
        assert summary.rows_inserted == 5
        assert summary.batches == 2

    def test_rooms_attach_to_existing_location_regardless_of_case(self, legacy_data, source, store):
        location = Location(name="Sede Central")
        db.session.add(location)
        db.session.commit()
        legacy_data(course_details=[detail_row("sede central", "Sala A1")])

        phases.sync_locations_and_rooms(source, store)

        assert _count(Location) == 1
        room = db.session.scalars(select(Room)).one()
        assert room.location_id == location.id

    def test_blank_room_name_is_skipped(self, legacy_data, source, store):
        legacy_data(course_details=[detail_row("Sede Central", None), detail_row("Sede Central", "Sala A1")])

        summary = phases.sync_locations_and_rooms(source, store)

        assert _count(Location) == 1
        assert _count(Room) == 1
        assert summary.skip_reasons == {"blank_name": 1}


class TestSyncTransactions:
    def test_inserts_sales_with_mapped_fields(self, legacy_data, source, store):
        customer = _add_customer("ana@example.com")
        location = Location(name="Sede Central")
        db.session.add(location)
        db.session.commit()
        legacy_data(
            clients=[client_row(7, "ANA@example.com")],
            sales=[
                sale_row(42, 7, total="25000.50", forma_pago="TC", when=datetime(2024, 4, 2, 9, 15)),
                sale_row(43, 7, sede="Sede Lejana", forma_pago="XX"),
            ],
        )

        summary = phases.sync_transactions(source, store)

        assert summary.rows_inserted == 2
        rows = {tx.description: tx for tx in db.session.scalars(select(Transaction))}
        first = rows["Legacy Sale 42"]
        assert first.customer_id == customer.id
        assert first.location_id == location.id
        assert first.amount == Decimal("25000.50")
        assert first.transaction_date == datetime(2024, 4, 2, 9, 15)
        assert first.payment_method == "card"
        assert first.transaction_type == "sale"
        assert first.status == "completed"
        assert rows["Legacy Sale 43"].location_id is None
        assert rows["Legacy Sale 43"].payment_method == "legacy"

    def test_placeholder_payment_method_is_updated_not_duplicated(self, legacy_data, source, store):
        customer = _add_customer("ana@example.com")
        db.session.add(
            Transaction(
                customer_id=customer.id,
                transaction_date=datetime(2024, 1, 5),
                amount=Decimal("1000"),
                payment_method="legacy",
                description="Legacy Sale 42",
            )
        )
        db.session.commit()
        legacy_data(clients=[client_row(7, "ana@example.com")], sales=[sale_row(42, 7, forma_pago="TC")])

        summary = phases.sync_transactions(source, store)

        assert summary.rows_updated == 1
        assert summary.rows_inserted == 0
        transactions = db.session.scalars(select(Transaction)).all()
        assert len(transactions) == 1
        assert transactions[0].payment_method == "card"

    def test_known_payment_method_is_left_alone(self, legacy_data, source, store):
        customer = _add_customer("ana@example.com")
        db.session.add(
            Transaction(
                customer_id=customer.id,
                transaction_date=datetime(2024, 1, 5),
                amount=Decimal("1000"),
                payment_method="cash",
                description="Legacy Sale 42",
            )
        )
        db.session.commit()
        legacy_data(clients=[client_row(7, "ana@example.com")], sales=[sale_row(42, 7, forma_pago="TC")])

        summary = phases.sync_transactions(source, store)

        assert summary.rows_updated == 0
        assert summary.skip_reasons == {"already_synced": 1}
        assert db.session.scalars(select(Transaction.payment_method)).one() == "cash"

    def test_unresolved_client_and_customer_are_skipped(self, legacy_data, source, store):
        _add_customer("ana@example.com")
        legacy_data(
            clients=[client_row(7, "ana@example.com"), client_row(8, "ghost@example.com")],
            sales=[sale_row(1, 7), sale_row(2, 99), sale_row(3, 8)],
        )

        summary = phases.sync_transactions(source, store)

        assert summary.rows_inserted == 1
        assert summary.skip_reasons == {"unresolved_client": 1, "unresolved_customer": 1}
        assert db.session.scalars(select(Transaction.description)).all() == ["Legacy Sale 1"]


class TestSyncDiagnostics:
    def test_inserts_one_result_per_student_and_day(self, legacy_data, source, store):
        customer = _add_customer("ana@example.com")
        student = Student(name="Luis Rojas", email="luis@example.com", customer_id=customer.id)
        db.session.add(student)
        db.session.commit()
        legacy_data(
            students=[student_row("11.111.111-1", "luis@example.com")],
            vw_legacy_diagnosticos=[
                {"idDiagnostico": 1, "Rut": "11.111.111-1", "Fecha": date(2024, 3, 1)},
                {"idDiagnostico": 2, "Rut": "11.111.111-1", "Fecha": date(2024, 3, 1)},
                {"idDiagnostico": 3, "Rut": "99.999.999-9", "Fecha": date(2024, 3, 2)},
            ],
            vw_legacy_respuestas=[
                {"idRespuesta": 10, "idDiagnostico": 1, "Respuesta": "B"},
                {"idRespuesta": 11, "idDiagnostico": 1, "Respuesta": "C"},
            ],
        )

        summary = phases.sync_diagnostics(source, store)

        assert summary.rows_inserted == 1
        assert summary.skip_reasons == {"duplicate_in_source": 1, "unresolved_student": 1}
        result = db.session.scalars(select(DiagnosticResult)).one()
        assert result.student_id == student.id
        assert result.assessment_date == date(2024, 3, 1)
        assert result.type == "adults"
        assert json.loads(result.result_data) == ["B", "C"]

        rerun = phases.sync_diagnostics(source, store)
        assert rerun.rows_inserted == 0
        assert _count(DiagnosticResult) == 1


class TestBatching:
    def test_2500_rows_are_written_in_three_batches(self, legacy_data, source, monkeypatch):
        legacy_data(clients=[client_row(i, f"user{i}@example.com") for i in range(1, 2501)])
        batch_sizes = []
        original = DestinationStore.insert_batch

        def spy(self, records):
            batch_sizes.append(len(records))
            return original(self, records)

        monkeypatch.setattr(DestinationStore, "insert_batch", spy)

        summary = phases.sync_customers(source, DestinationStore(), batch_size=1000)

        assert batch_sizes == [1000, 1000, 500]
        assert summary.batches == 3
        assert _count(Customer) == 2500

    def test_failed_batch_keeps_earlier_batches(self, legacy_data, source, monkeypatch):
        legacy_data(clients=[client_row(i, f"user{i}@example.com") for i in range(1, 6)])
        calls = []
        original = DestinationStore.insert_batch

        def flaky(self, records):
            calls.append(len(records))
            if len(calls) == 2:
                raise RuntimeError("disk full")
            return original(self, records)

        monkeypatch.setattr(DestinationStore, "insert_batch", flaky)

        with pytest.raises(RuntimeError, match="disk full"):
            phases.sync_customers(source, DestinationStore(), batch_size=2)

        assert _count(Customer) == 2

    def test_insert_in_batches_rejects_non_positive_size(self, store):
        with pytest.raises(ValueError):
            phases.insert_in_batches(store, [], 0)
