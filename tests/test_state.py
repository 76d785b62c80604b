import json

from hse_state import AppState, state_from_dict, state_to_dict, record_load, DEFAULT_SHAREPOINT_CONFIG
from hse_models import DEFAULT_RULES, ExposureHour, GlobalKmRecord, AppSettings, ChangeLogEntry

from conftest import make_incident


def test_missing_keys_get_defaults():
    state = state_from_dict({"incidents": []})

    assert state.incidents == ()
    assert state.global_km == ()
    assert state.settings == AppSettings()
    assert state.rules == tuple(DEFAULT_RULES)
    assert state.sharepoint_config == DEFAULT_SHAREPOINT_CONFIG
    assert state_from_dict(None) == AppState()


def test_empty_rules_fall_back_on_defaults():
    assert state_from_dict({"rules": []}).rules == tuple(DEFAULT_RULES)


def test_state_survives_json():
    incident = make_incident(
        "A",
        affected_zones=("hand_left", "hand_right"),
        change_log=(ChangeLogEntry(date="2025-03-11", field="site", old_value="X", new_value="Y",
                                   user="User (Manual)"),),
    )
    state = AppState(
        incidents=(incident,),
        exposure_hours=(ExposureHour(id="EXP-H-S-2025-03-MANUAL", site="S", period="2025-03", hours=10.0),),
        global_km=(GlobalKmRecord(year=2025, value=1000.0, last_updated="t"),),
        settings=AppSettings(days_cap=90),
        sync_logs=({"status": "ok"},),
    )

    restored = state_from_dict(json.loads(json.dumps(state_to_dict(state))))

    assert restored == state


def test_sharepoint_config_is_merged_with_defaults():
    state = state_from_dict({"sharepoint_config": {"isEnabled": True}})
    assert state.sharepoint_config["isEnabled"] is True
    assert state.sharepoint_config["libraryName"] == "Documentos Compartidos"


def test_record_load_appends_history():
    state = record_load(AppState(), "incidentes.xlsx", 12, timestamp="2025-03-01T10:00:00")
    state = record_load(state, "incidentes_v2.xlsx", 3, timestamp="2025-03-02T10:00:00")

    assert [h["filename"] for h in state.load_history] == ["incidentes.xlsx", "incidentes_v2.xlsx"]
    assert state.load_history[0]["records_count"] == 12
