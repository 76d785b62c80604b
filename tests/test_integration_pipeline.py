import json
from datetime import date

import pytest

from integration_pipeline import IntegrationPipeline, main, load_config_from_env
from hse_state import AppState
from hse_models import ExposureProvenance

from conftest import build_workbook


def no_actions(incidents):
    return []


@pytest.fixture
def config(tmp_path):
    return {
        "state": {"db_url": None, "file": str(tmp_path / "state.json")},
        "settings": {"days_cap": 180, "base_trir": 200000, "base_if": 1000000},
        "paths": {"output_dir": str(tmp_path / "output")},
    }


@pytest.fixture
def pipeline(config):
    return IntegrationPipeline(config, suggest_actions=no_actions)


@pytest.fixture
def workbook(incident_row):
    remote = dict(incident_row, ID="INC-200", Sitio="Locación remota",
                  **{"Tipo de Incidente": "Primeros Auxilios"})
    return build_workbook({"query": [incident_row, remote]})


def test_run_import_builds_new_state(pipeline, workbook):
    result = pipeline.run_import(workbook, AppState(), filename="export.xlsx")

    assert result["status"] == "success"
    assert result["steps"]["parse"]["incidents"] == 2
    assert result["steps"]["reconcile"] == {"added": 2, "updated": 0}

    state = result["state"]
    assert [i.incident_id for i in state.incidents] == ["INC-100", "INC-200"]
    provenances = {e.site: e.provenance for e in state.exposure_hours}
    assert provenances == {
        "BASE NEUQUEN": ExposureProvenance.AUTO,
        "Locación remota": ExposureProvenance.PENDING,
    }
    assert state.load_history[-1]["filename"] == "export.xlsx"
    assert state.load_history[-1]["records_count"] == 2


def test_reimport_is_stable(pipeline, workbook):
    first = pipeline.run_import(workbook, AppState())["state"]
    second = pipeline.run_import(workbook, first)

    assert second["steps"]["reconcile"] == {"added": 0, "updated": 0}
    assert second["state"].incidents == first.incidents
    assert second["state"].exposure_hours == first.exposure_hours
    assert pipeline.stats["total_added"] == 2


def test_failed_import_keeps_state(pipeline):
    state = AppState()
    result = pipeline.run_import(b"not a workbook", state, filename="roto.xlsx")

    assert result["status"] == "failed"
    assert result["state"] is state
    assert result["error"].startswith("No se pudo leer el archivo Excel")
    assert pipeline.stats["errors"]


def test_state_file_roundtrip(pipeline, workbook, config):
    state = pipeline.run_import(workbook, pipeline.load_state())["state"]
    pipeline.save_state(state)

    assert pipeline.load_state() == state


def test_empty_state_uses_configured_settings(config):
    config["settings"]["days_cap"] = 60
    state = IntegrationPipeline(config).load_state()
    assert state.settings.days_cap == 60


def test_compute_and_save_metrics(pipeline, workbook, tmp_path):
    state = pipeline.run_import(workbook, AppState())["state"]
    metrics = pipeline.compute_metrics(state, reference_date=date(2025, 6, 30))

    assert metrics.total_incidents == 2
    assert metrics.total_lti == 1
    assert metrics.total_man_hours == 9600

    path = pipeline.save_metrics(metrics, str(tmp_path / "out" / "metrics.json"))
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    assert data["totalLTI"] == 1


def test_main_imports_and_writes(tmp_path, workbook):
    source = tmp_path / "export.xlsx"
    source.write_bytes(workbook)
    state_file = tmp_path / "state.json"
    metrics_file = tmp_path / "metrics.json"

    status = main(["--file", str(source), "--state", str(state_file), "--metrics-out", str(metrics_file)])

    assert status == 0
    with open(state_file, encoding="utf-8") as f:
        assert len(json.load(f)["incidents"]) == 2
    with open(metrics_file, encoding="utf-8") as f:
        assert json.load(f)["totalIncidents"] == 2


def test_main_reports_failure(tmp_path):
    source = tmp_path / "roto.xlsx"
    source.write_bytes(b"corrupto")

    assert main(["--file", str(source), "--state", str(tmp_path / "state.json")]) == 1
    assert not (tmp_path / "state.json").exists()


def test_reimport_of_verified_row_keeps_event_date(pipeline, incident_row):
    first = pipeline.run_import(build_workbook({"query": [incident_row]}), AppState())["state"]

    edited = dict(incident_row, **{
        "Fecha Carga": "20/04/2025",
        "Breve descripcion del Incidente": "Resbaló en la escalera húmeda",
    })
    second = pipeline.run_import(build_workbook({"query": [edited]}), first)

    record = second["state"].incidents[0]
    assert second["steps"]["reconcile"] == {"added": 0, "updated": 1}
    assert record.fecha_evento == "2025-03-15"
    assert record.description == "Resbaló en la escalera húmeda"
    assert [e.field for e in record.change_log] == ["CREATION", "description"]


def test_config_from_env_tolerates_bad_numbers(monkeypatch):
    monkeypatch.setenv("HSE_DAYS_CAP", "ciento ochenta")
    monkeypatch.setenv("HSE_BASE_TRIR", "100000")
    monkeypatch.delenv("HSE_BASE_IF", raising=False)

    settings = load_config_from_env()["settings"]

    assert settings == {"days_cap": 180, "base_trir": 100000, "base_if": 1000000}
