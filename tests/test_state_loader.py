import pytest

from state_loader import SafetyStateStore
from hse_state import AppState
from hse_models import ExposureHour

from conftest import make_incident


@pytest.fixture
def store(tmp_path):
    store = SafetyStateStore(f"sqlite:///{tmp_path / 'hse_state.db'}")
    store.create_tables()
    return store


def test_load_without_saved_state(store):
    assert store.load_state() == AppState()


def test_save_then_load(store):
    state = AppState(
        incidents=(make_incident("A"), make_incident("B", site="BASE ANELO")),
        exposure_hours=(ExposureHour(id="EXP-H-S-2025-03-AUTO", site="S", period="2025-03", hours=9600.0),),
    )
    store.save_state(state)

    assert store.load_state() == state


def test_save_replaces_previous_state(store):
    store.save_state(AppState(incidents=(make_incident("A"),)))
    store.save_state(AppState(incidents=(make_incident("A"), make_incident("B"))))

    assert len(store.load_state().incidents) == 2
    assert store.health_check()["total_incidents"] == 2


def test_storage_keys_are_independent(store):
    store.save_state(AppState(incidents=(make_incident("A"),)), storage_key="autre")
    assert store.load_state() == AppState()
    assert len(store.load_state("autre").incidents) == 1


def test_incidents_frame(store):
    store.save_state(AppState(incidents=(make_incident("A"), make_incident("B"))))
    frame = store.incidents_frame()

    assert list(frame["incident_id"]) == ["A", "B"]
    assert "change_log" not in frame.columns


def test_health_check(store):
    health = store.health_check()
    assert health["status"] == "healthy"
    assert health["total_incidents"] == 0
    assert health["last_update"] is None


def test_health_check_without_table(tmp_path):
    store = SafetyStateStore(f"sqlite:///{tmp_path / 'vide.db'}")
    health = store.health_check()
    assert health["status"] == "unhealthy"
    assert "error" in health
