import logging
from dataclasses import replace

from hse_reconciliation import (
    upsert_incidents, update_incident_manual, diff_incidents, build_candidate,
    apply_protection_policy, CREATION_FIELD, CREATION_MESSAGE,
)
from hse_models import SYSTEM_IMPORT_USER, MANUAL_EDIT_USER
from hse_kpi_engine import calculate_kpis

from conftest import make_incident


def test_new_incident_gets_creation_entry():
    result = upsert_incidents([], [make_incident("A")])

    assert (result.added, result.updated) == (1, 0)
    created = result.incidents[0]
    assert created.version == 1
    assert len(created.change_log) == 1
    entry = created.change_log[0]
    assert entry.field == CREATION_FIELD
    assert entry.old_value is None
    assert entry.new_value == CREATION_MESSAGE
    assert entry.user == SYSTEM_IMPORT_USER


def test_identical_reimport_is_a_noop():
    first = upsert_incidents([], [make_incident("A")])
    second = upsert_incidents(first.incidents, [make_incident("A")])

    assert (second.added, second.updated) == (0, 0)
    assert second.incidents == first.incidents


def test_verified_record_keeps_derived_fields(caplog):
    existing = make_incident("A", is_verified=True, fecha_evento="2025-03-10",
                             recordable_osha=True, lti_case=True, version=2)
    incoming = make_incident(
        "A", is_verified=False, fecha_evento="2025-04-01", month=4,
        recordable_osha=False, lti_case=False,
        description="Descripción corregida", site="BASE ANELO", type="Accidente Operativo",
    )

    with caplog.at_level(logging.WARNING, logger="HSEReconciliation"):
        result = upsert_incidents([existing], [incoming])

    merged = result.incidents[0]
    assert result.updated == 1
    assert merged.fecha_evento == "2025-03-10"
    assert merged.month == 3
    assert merged.recordable_osha is True
    assert merged.lti_case is True
    assert merged.description == "Descripción corregida"
    assert merged.site == "BASE ANELO"
    assert merged.type == "Accidente Operativo"
    assert merged.is_verified is True
    assert merged.version == 3

    logged = {entry.field for entry in merged.change_log}
    assert logged == {"description", "site", "type"}
    assert all(entry.user == SYSTEM_IMPORT_USER for entry in merged.change_log)
    assert "🔒" in caplog.text


def test_unverified_record_takes_all_imported_values():
    existing = make_incident("A", is_verified=False, lti_case=False, days_away=0)
    incoming = make_incident("A", lti_case=True, recordable_osha=True, days_away=7)

    merged = upsert_incidents([existing], [incoming]).incidents[0]

    assert merged.lti_case is True
    assert merged.days_away == 7
    assert {e.field for e in merged.change_log} == {"recordable_osha", "lti_case", "days_away"}


def test_unverified_record_follows_reclassification():
    existing = make_incident("A", type="Otro", is_verified=False)
    incoming = make_incident("A", type="Trabajo Restringido", recordable_osha=True,
                             job_transfer=True, days_restricted=4, is_verified=True,
                             affected_zones=("hand_left",), potential_risk="Alta")

    merged = upsert_incidents([existing], [incoming]).incidents[0]

    assert merged.recordable_osha is True
    assert merged.job_transfer is True
    assert merged.days_restricted == 4
    assert merged.is_verified is True
    assert merged.affected_zones == ("hand_left",)
    assert merged.potential_risk == "Alta"
    assert calculate_kpis([merged], [], [], suggest_actions=lambda i: []).total_dart_cases == 1


def test_verified_record_keeps_classification_outputs():
    existing = make_incident("A", is_verified=True, job_transfer=True, fatality=True)
    incoming = make_incident("A", is_verified=False, job_transfer=False, fatality=False)

    merged = upsert_incidents([existing], [incoming]).incidents[0]

    assert (merged.job_transfer, merged.fatality, merged.is_verified) == (True, True, True)


def test_change_log_only_grows():
    history = upsert_incidents([], [make_incident("A", description="v1")])
    history = upsert_incidents(history.incidents, [make_incident("A", description="v2")])
    history = upsert_incidents(history.incidents, [make_incident("A", description="v3")])

    record = history.incidents[0]
    assert [e.field for e in record.change_log] == [CREATION_FIELD, "description", "description"]
    assert record.change_log[-1].old_value == "v2"
    assert record.version == 3


def test_records_absent_from_import_are_kept():
    current = [make_incident("A"), make_incident("B")]
    result = upsert_incidents(current, [make_incident("C")])

    assert [i.incident_id for i in result.incidents] == ["A", "B", "C"]


def test_manual_edit_verifies_and_logs_user():
    current = [make_incident("A", is_verified=False, site="S1")]
    edited = replace(current[0], site="S2", days_away=3)

    result = update_incident_manual(current, edited)

    record = result.incidents[0]
    assert result.updated == 1
    assert record.is_verified is True
    assert record.version == 2
    assert {e.field for e in record.change_log} == {"site", "days_away"}
    assert all(e.user == MANUAL_EDIT_USER for e in record.change_log)


def test_manual_edit_of_unknown_incident():
    current = [make_incident("A")]
    result = update_incident_manual(current, make_incident("Z"))
    assert result.updated == 0
    assert result.incidents == tuple(current)


def test_diff_ignores_unaudited_fields():
    old = make_incident("A", potential_risk="Baja")
    new = replace(old, potential_risk="Alta", affected_zones=("head",))
    assert diff_incidents(old, new, "tester") == []


def test_two_phase_merge_directly():
    existing = make_incident("A", is_verified=True, days_away=5)
    candidate = build_candidate(existing, make_incident("A", days_away=9, name="Otro"))
    assert candidate.days_away == 9

    merged = apply_protection_policy(existing, candidate)
    assert merged.days_away == 5
    assert merged.name == "Otro"
