"""
================================================================================
HSE RECONCILIATION - Fusion des imports avec l'état existant + audit
================================================================================
Fusion en deux phases:
1. Candidat: l'enregistrement existant rafraîchi avec TOUTES les valeurs importées
2. Politique de protection: chaque champ dérivé d'un enregistrement vérifié
   reprend sa valeur existante (verrou de vérification)

Le journal d'audit (append-only) est le diff entre l'existant et
l'enregistrement final, sur une liste blanche de champs. Aucun enregistrement
ni historique n'est jamais supprimé.
================================================================================
"""

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Dict, List, Iterable, Tuple, Any

from hse_models import (
    Incident, ChangeLogEntry, SYSTEM_IMPORT_USER, MANUAL_EDIT_USER,
)

logger = logging.getLogger("HSEReconciliation")


# =============================================================================
# SECTION 1: POLITIQUE DE PROTECTION DES CHAMPS
# =============================================================================

class FieldPolicy(Enum):
    SOURCE = "source"      # toujours rafraîchi depuis l'import
    DERIVED = "derived"    # rafraîchi seulement si is_verified est faux


FIELD_PROTECTION_POLICY: Dict[str, FieldPolicy] = {
    "name": FieldPolicy.SOURCE,
    "description": FieldPolicy.SOURCE,
    "site": FieldPolicy.SOURCE,
    "type": FieldPolicy.SOURCE,
    "location": FieldPolicy.SOURCE,
    "raw_json": FieldPolicy.SOURCE,
    "fecha_evento": FieldPolicy.DERIVED,
    "year": FieldPolicy.DERIVED,
    "month": FieldPolicy.DERIVED,
    "recordable_osha": FieldPolicy.DERIVED,
    "lti_case": FieldPolicy.DERIVED,
    "days_away": FieldPolicy.DERIVED,
    "is_transit": FieldPolicy.DERIVED,
    "is_transit_laboral": FieldPolicy.DERIVED,
    "is_in_itinere": FieldPolicy.DERIVED,
    "fatality": FieldPolicy.DERIVED,
    "job_transfer": FieldPolicy.DERIVED,
    "days_restricted": FieldPolicy.DERIVED,
    "is_process_safety_tier_1": FieldPolicy.DERIVED,
    "is_process_safety_tier_2": FieldPolicy.DERIVED,
    "affected_zones": FieldPolicy.DERIVED,
    "body_part_text": FieldPolicy.DERIVED,
    "potential_risk": FieldPolicy.DERIVED,
    "com_cliente": FieldPolicy.DERIVED,
    # Un enregistrement non vérifié reprend le verdict du classifieur
    "is_verified": FieldPolicy.DERIVED,
}

# Champs suivis par le journal d'audit
AUDITED_FIELDS: Tuple[str, ...] = (
    "name", "description", "type", "site", "fecha_evento",
    "recordable_osha", "lti_case", "days_away", "is_transit", "location",
)

CREATION_FIELD = "CREATION"
CREATION_MESSAGE = "Record Created via Import"


@dataclass(frozen=True)
class UpsertResult:
    incidents: Tuple[Incident, ...]
    added: int = 0
    updated: int = 0


# =============================================================================
# SECTION 2: DIFF STRUCTUREL
# =============================================================================

def _structural(value: Any) -> Any:
    if isinstance(value, (list, tuple)):
        return tuple(_structural(v) for v in value)
    if isinstance(value, dict):
        return tuple(sorted((k, _structural(v)) for k, v in value.items()))
    return value


def diff_incidents(old: Incident, new: Incident, user: str,
                   fields: Iterable[str] = AUDITED_FIELDS, timestamp: str = None) -> List[ChangeLogEntry]:
    """Une entrée d'audit par champ dont la valeur diffère (égalité structurelle)"""
    timestamp = timestamp or datetime.now().isoformat()
    entries = []
    for name in fields:
        old_value = getattr(old, name)
        new_value = getattr(new, name)
        if _structural(old_value) != _structural(new_value):
            entries.append(ChangeLogEntry(
                date=timestamp,
                field=name,
                old_value=old_value,
                new_value=new_value,
                user=user,
            ))
    return entries


# =============================================================================
# SECTION 3: FUSION
# =============================================================================

def build_candidate(existing: Incident, imported: Incident) -> Incident:
    """Phase 1: l'existant avec toutes les valeurs couvertes par la politique importées"""
    return replace(existing, **{name: getattr(imported, name) for name in FIELD_PROTECTION_POLICY})


def apply_protection_policy(existing: Incident, candidate: Incident) -> Incident:
    """Phase 2: un enregistrement vérifié conserve ses champs dérivés"""
    if not existing.is_verified:
        return candidate

    protected = {
        name: getattr(existing, name)
        for name, policy in FIELD_PROTECTION_POLICY.items()
        if policy is FieldPolicy.DERIVED
    }
    for name, kept in protected.items():
        if _structural(kept) != _structural(getattr(candidate, name)):
            logger.warning(
                f"🔒 {existing.incident_id}: '{name}' vérifié conservé "
                f"({kept!r}), l'import propose {getattr(candidate, name)!r}"
            )
    return replace(candidate, **protected)


def upsert_incidents(current: Iterable[Incident], imported: Iterable[Incident]) -> UpsertResult:
    """
    Fusionne des incidents importés dans la collection existante.

    Args:
        current: Incidents déjà stockés
        imported: Incidents issus du dernier import

    Returns:
        UpsertResult (nouvelle collection + compteurs added/updated)
    """
    by_id: Dict[str, Incident] = {incident.incident_id: incident for incident in current}
    added = updated = 0
    timestamp = datetime.now().isoformat()

    for incoming in imported:
        existing = by_id.get(incoming.incident_id)

        if existing is None:
            by_id[incoming.incident_id] = replace(
                incoming,
                change_log=(ChangeLogEntry(
                    date=timestamp,
                    field=CREATION_FIELD,
                    old_value=None,
                    new_value=CREATION_MESSAGE,
                    user=SYSTEM_IMPORT_USER,
                ),),
                version=1,
                updated_at=timestamp,
            )
            added += 1
            continue

        merged = apply_protection_policy(existing, build_candidate(existing, incoming))
        entries = diff_incidents(existing, merged, SYSTEM_IMPORT_USER, timestamp=timestamp)
        changed = any(
            _structural(getattr(existing, name)) != _structural(getattr(merged, name))
            for name in FIELD_PROTECTION_POLICY
        )

        if not changed:
            continue

        by_id[incoming.incident_id] = replace(
            merged,
            change_log=existing.change_log + tuple(entries),
            version=existing.version + 1,
            updated_at=timestamp,
        )
        updated += 1

    logger.info(f"🔄 Réconciliation: {added} ajoutés, {updated} mis à jour")
    return UpsertResult(incidents=tuple(by_id.values()), added=added, updated=updated)


def update_incident_manual(current: Iterable[Incident], edited: Incident) -> UpsertResult:
    """
    Édition manuelle: diff contre la valeur précédente, attribué à l'utilisateur,
    et is_verified=True inconditionnellement (passage en Gold).
    """
    incidents = list(current)
    timestamp = datetime.now().isoformat()

    for position, previous in enumerate(incidents):
        if previous.incident_id != edited.incident_id:
            continue

        entries = diff_incidents(previous, edited, MANUAL_EDIT_USER, timestamp=timestamp)
        incidents[position] = replace(
            edited,
            is_verified=True,
            change_log=previous.change_log + tuple(entries),
            version=previous.version + 1,
            updated_at=timestamp,
        )
        logger.info(f"✏️ Édition manuelle {edited.incident_id}: {len(entries)} champ(s) modifié(s)")
        return UpsertResult(incidents=tuple(incidents), added=0, updated=1)

    logger.warning(f"Édition manuelle ignorée: incident inconnu {edited.incident_id}")
    return UpsertResult(incidents=tuple(incidents), added=0, updated=0)
