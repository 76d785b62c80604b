"""
================================================================================
HSE STATE - Sac d'état persisté (forme en mémoire)
================================================================================
Incidents, heures d'exposition, km globaux, paramètres, règles de mapping,
métadonnées d'automatisation (opaques) et historique des chargements.

Ce module ne fait aucune E/S: il convertit depuis/vers un dictionnaire
sérialisable. Les clés absentes (anciennes versions) reçoivent leurs
valeurs par défaut.
================================================================================
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Dict, Any, Tuple, Optional

from hse_models import (
    Incident, ExposureHour, GlobalKmRecord, MappingRule, AppSettings, DEFAULT_RULES,
)

logger = logging.getLogger("HSEState")

STORAGE_KEY = "sst_metrics_db_v6_global_km"

DEFAULT_SHAREPOINT_CONFIG: Dict[str, Any] = {
    "isEnabled": False,
    "tenantId": "",
    "siteUrl": "",
    "libraryName": "Documentos Compartidos",
    "incidentFileName": "basedatosincidentes.xlsx",
    "reportFolderPath": "Reportes_Automaticos",
    "lastSyncDate": None,
    "lastFileHash": None,
}


@dataclass(frozen=True)
class AppState:
    incidents: Tuple[Incident, ...] = ()
    exposure_hours: Tuple[ExposureHour, ...] = ()
    global_km: Tuple[GlobalKmRecord, ...] = ()
    settings: AppSettings = field(default_factory=AppSettings)
    rules: Tuple[MappingRule, ...] = tuple(DEFAULT_RULES)
    load_history: Tuple[Dict[str, Any], ...] = ()
    # Métadonnées d'automatisation, transportées telles quelles
    sharepoint_config: Dict[str, Any] = field(default_factory=lambda: dict(DEFAULT_SHAREPOINT_CONFIG))
    sync_logs: Tuple[Dict[str, Any], ...] = ()
    scheduled_reports: Tuple[Dict[str, Any], ...] = ()


def state_from_dict(data: Optional[Dict[str, Any]]) -> AppState:
    """Dictionnaire persisté → AppState (clés manquantes remplies par défaut)"""
    data = data or {}

    rules = data.get("rules")
    if not rules:
        rules = [r.to_dict() for r in DEFAULT_RULES]

    sharepoint = dict(DEFAULT_SHAREPOINT_CONFIG)
    sharepoint.update(data.get("sharepoint_config") or {})

    state = AppState(
        incidents=tuple(Incident.from_dict(i) for i in data.get("incidents") or []),
        exposure_hours=tuple(ExposureHour.from_dict(e) for e in data.get("exposure_hours") or []),
        global_km=tuple(GlobalKmRecord.from_dict(k) for k in data.get("global_km") or []),
        settings=AppSettings.from_dict(data.get("settings")),
        rules=tuple(MappingRule.from_dict(r) for r in rules),
        load_history=tuple(data.get("load_history") or []),
        sharepoint_config=sharepoint,
        sync_logs=tuple(data.get("sync_logs") or []),
        scheduled_reports=tuple(data.get("scheduled_reports") or []),
    )
    logger.debug(f"État chargé: {len(state.incidents)} incidents, {len(state.exposure_hours)} HH")
    return state


def state_to_dict(state: AppState) -> Dict[str, Any]:
    """AppState → dictionnaire sérialisable en JSON"""
    return {
        "incidents": [i.to_dict() for i in state.incidents],
        "exposure_hours": [e.to_dict() for e in state.exposure_hours],
        "global_km": [k.to_dict() for k in state.global_km],
        "settings": state.settings.to_dict(),
        "rules": [r.to_dict() for r in state.rules],
        "load_history": [dict(h) for h in state.load_history],
        "sharepoint_config": dict(state.sharepoint_config),
        "sync_logs": [dict(s) for s in state.sync_logs],
        "scheduled_reports": [dict(r) for r in state.scheduled_reports],
    }


def record_load(state: AppState, filename: str, records_count: int, timestamp: str = None) -> AppState:
    """Ajoute une entrée à l'historique des chargements"""
    entry = {
        "date": timestamp or datetime.now().isoformat(),
        "filename": filename,
        "records_count": records_count,
    }
    return replace(state, load_history=state.load_history + (entry,))
