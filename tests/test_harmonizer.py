import json
from datetime import date

import pytest

from hse_harmonizer import (
    HSEHarmonizer, resolve_columns, missing_required_columns, generate_rule_for_type, merge_rules,
)
from hse_models import DEFAULT_RULES


@pytest.fixture
def harmonizer():
    return HSEHarmonizer(DEFAULT_RULES, today=date(2025, 6, 30))


def transform(harmonizer, row):
    return harmonizer.transform_record(row, resolve_columns(row.keys()))


def test_transform_record_builds_incident(harmonizer, incident_row):
    incident = transform(harmonizer, incident_row)

    assert incident.incident_id == "INC-100"
    assert incident.name == "Caída de nivel"
    assert incident.site == "BASE NEUQUEN"
    assert incident.fecha_evento == "2025-03-15"
    assert (incident.year, incident.month) == (2025, 3)
    assert incident.recordable_osha is True
    assert incident.lti_case is True
    assert incident.is_verified is True
    assert incident.affected_zones == ("knee_right",)
    assert incident.potential_risk == "Alta"
    assert incident.description == "Resbaló en la escalera"
    assert json.loads(incident.raw_json)["ID"] == "INC-100"


def test_accident_date_wins_and_days_away_make_lti(harmonizer, incident_row):
    row = dict(incident_row)
    row["Tipo de Incidente"] = "Accidente Industrial"
    row["Datos ART: FECHA SINIESTRO"] = "01/03/2025"
    row["Datos ART: FECHA ALTA MEDICA DEFINITIVA"] = "11/03/2025"

    incident = transform(harmonizer, row)

    assert incident.fecha_evento == "2025-03-01"
    assert incident.days_away == 10
    assert incident.lti_case is True
    assert incident.recordable_osha is True


def test_days_away_do_not_make_transit_lti(harmonizer, incident_row):
    row = dict(incident_row)
    row["Tipo de Incidente"] = "Accidente Vehicular/Tránsito"
    row["Datos ART: FECHA SINIESTRO"] = "2025-03-01"
    row["Datos ART: FECHA ALTA MEDICA DEFINITIVA"] = "2025-03-06"

    incident = transform(harmonizer, row)

    assert incident.days_away == 5
    assert incident.lti_case is False
    assert incident.is_transit_laboral is True
    assert incident.is_transit is True
    assert incident.is_in_itinere is False


def test_discharge_before_accident_gives_zero_days(harmonizer, incident_row):
    row = dict(incident_row)
    row["Tipo de Incidente"] = "Primeros Auxilios"
    row["Datos ART: FECHA SINIESTRO"] = "10/03/2025"
    row["Datos ART: FECHA ALTA MEDICA DEFINITIVA"] = "01/03/2025"

    incident = transform(harmonizer, row)
    assert incident.days_away == 0
    assert incident.lti_case is False


def test_fatality_and_tier_flags_from_type(harmonizer, incident_row):
    row = dict(incident_row, **{"Tipo de Incidente": "Fatalidad"})
    fatal = transform(harmonizer, row)
    assert fatal.fatality is True
    assert fatal.recordable_osha is True
    assert fatal.is_verified is False

    row = dict(incident_row, **{"Tipo de Incidente": "Evento de seguridad de procesos Tier 1"})
    tier = transform(harmonizer, row)
    assert tier.is_process_safety_tier_1 is True
    assert tier.is_process_safety_tier_2 is False


def test_year_column_is_sanitized(harmonizer, incident_row):
    row = dict(incident_row, **{"Año": "2.026", "Mes": "abc"})
    incident = transform(harmonizer, row)
    assert incident.year == 2026
    assert incident.month == 3


def test_fallbacks_for_missing_cells(harmonizer):
    row = {"ID": None, "Nombre": None, "Sitio": None, "Fecha Carga": "no es fecha"}
    incident = harmonizer.transform_record(row, resolve_columns(row.keys()), index=4)

    assert incident.incident_id.startswith("UNKNOWN-4-")
    assert incident.name == "Sin Nombre"
    assert incident.site == "Sitio Desconocido"
    assert incident.type == "Unspecified"
    assert incident.fecha_evento == "2025-06-30"
    assert incident.affected_zones == ("unknown",)
    assert incident.description == "Sin descripción"
    assert incident.is_verified is False


def test_numeric_id_and_description_parts(harmonizer, incident_row):
    row = dict(incident_row)
    row["ID"] = 123.0
    row["Breve Descripción de la mecánica"] = "Pisó aceite"
    row["Nombre y Apellido Involucrado"] = "J. Pérez"

    incident = transform(harmonizer, row)
    assert incident.incident_id == "123"
    assert incident.description == "Resbaló en la escalera. Mecánica: Pisó aceite. Involucrado: J. Pérez"


def test_transform_batch_stats(harmonizer, incident_row):
    rows = [incident_row, dict(incident_row, ID="INC-101", **{"Tipo de Incidente": "Otro"})]
    incidents = harmonizer.transform_batch(rows, resolve_columns(incident_row.keys()))

    assert len(incidents) == 2
    stats = harmonizer.get_stats()
    assert stats["records_processed"] == 2
    assert stats["records_harmonized"] == 2
    assert stats["records_unverified"] == 1
    assert stats["by_category"]["lost_time"] == 1


def test_missing_required_columns():
    columns = resolve_columns(["ID", "Nombre", "Sitio"])
    assert missing_required_columns(columns) == [
        "Fecha Carga", "Tipo de Incidente", "Ubicación", "Potencialidad del Incidente",
    ]


@pytest.mark.parametrize("label, recordable, lti, transit, itinere", [
    ("Accidente In Itinere", False, False, False, True),
    ("Choque vehicular", False, False, True, False),
    ("Lesión con días perdidos", True, True, False, False),
    ("Atención médica", True, False, False, False),
    ("Observación", False, False, False, False),
])
def test_generate_rule_for_type(label, recordable, lti, transit, itinere):
    rule = generate_rule_for_type(label)
    assert rule.tipo_incidente == label
    assert rule.default_recordable is recordable
    assert rule.default_lti is lti
    assert rule.default_is_transit_laboral is transit
    assert rule.default_is_in_itinere is itinere


def test_merge_rules_adds_only_unseen_types():
    rules = merge_rules(DEFAULT_RULES, ["lost time", "Nuevo Tipo", "nuevo tipo ", ""])
    assert len(rules) == len(DEFAULT_RULES) + 1
    assert rules[-1].tipo_incidente == "Nuevo Tipo"


def test_print_and_reset_stats(harmonizer, incident_row, capsys):
    transform(harmonizer, incident_row)
    harmonizer.print_stats()
    assert "lost_time: 1" in capsys.readouterr().out

    harmonizer.reset_stats()
    assert harmonizer.get_stats()["records_processed"] == 0
