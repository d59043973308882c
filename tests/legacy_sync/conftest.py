import pytest

from analytics_app.legacy_sync import build_orchestrator, get_dispatcher, get_legacy_engine, get_status
from analytics_app.legacy_sync.destination import DestinationStore
from analytics_app.legacy_sync.source import LegacySourceStore

from legacy_rows import client_row, detail_row, sale_row, student_row


@pytest.fixture
def sync_status(app):
    return get_status(app)


@pytest.fixture
def dispatcher(app):
    return get_dispatcher(app)


@pytest.fixture
def source(app):
    return LegacySourceStore(get_legacy_engine(app))


@pytest.fixture
def store(app):
    return DestinationStore()


@pytest.fixture
def orchestrator(app):
    """Factory building an orchestrator after applying config overrides."""

    def _factory(**config):
        app.config.update(config)
        return build_orchestrator(app)

    return _factory


@pytest.fixture
def standard_legacy_data(legacy_data):
    """A small, consistent legacy dataset touching every core phase."""

    legacy_data(
        clients=[
            client_row(1, "ana@example.com"),
            client_row(2, "BOB@example.com", first="Bob"),
            client_row(3, "carla@example.com", first="Carla"),
        ],
        students=[
            student_row("11.111.111-1", "ana@example.com"),
            student_row("22.222.222-2", "bob@example.com"),
        ],
        course_details=[
            detail_row("Sede Central", "Sala A1", 30),
            detail_row("Sede Central", "Sala A1", 30),
            detail_row("Sede Norte", "Sala B1", 35),
        ],
        sales=[
            sale_row(100, 1, forma_pago="EF"),
            sale_row(101, 2, forma_pago="TC", sede="Sede Norte"),
            sale_row(102, 3, forma_pago="??", sede="Sede Desconocida"),
        ],
    )
