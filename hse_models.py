"""
================================================================================
HSE MODELS - Modèle de données du pipeline d'incidents
================================================================================
Types partagés par tous les modules du pipeline:

- Incident: enregistrement d'incident (couches Silver / Gold)
- ExposureHour / GlobalKmRecord: dénominateurs d'exposition
- MappingRule: règle par défaut « type d'incident → drapeaux »
- AppSettings / KPITargets: paramètres de calcul des indicateurs

Les enregistrements sont immuables (dataclasses gelées, tuples pour les
collections); chaque opération retourne de nouvelles valeurs.
================================================================================
"""

import re
from dataclasses import dataclass, asdict, fields
from enum import Enum
from typing import Dict, List, Optional, Any, Tuple


# =============================================================================
# SECTION 1: ÉNUMÉRATIONS ET CONSTANTES
# =============================================================================

class BodyZone(str, Enum):
    """Zones anatomiques de la carte corporelle"""
    HEAD = "head"
    NECK = "neck"
    SHOULDER_LEFT = "shoulder_left"
    SHOULDER_RIGHT = "shoulder_right"
    ARM_LEFT = "arm_left"
    ARM_RIGHT = "arm_right"
    HAND_LEFT = "hand_left"
    HAND_RIGHT = "hand_right"
    CHEST = "chest"
    BACK_UPPER = "back_upper"
    BACK_LOWER = "back_lower"
    ABDOMEN = "abdomen"
    HIP = "hip"
    LEG_LEFT = "leg_left"
    LEG_RIGHT = "leg_right"
    KNEE_LEFT = "knee_left"
    KNEE_RIGHT = "knee_right"
    FOOT_LEFT = "foot_left"
    FOOT_RIGHT = "foot_right"
    GENERAL = "general"
    UNKNOWN = "unknown"


class ExposureProvenance(Enum):
    """Provenance d'un enregistrement d'heures d'exposition"""
    MANUAL = "MANUAL"
    AUTO = "AUTO"
    PENDING = "PENDING"


PROVENANCE_TAG_RE = re.compile(r"-(AUTO|MANUAL|PENDING)(?:-\d+)?$")

SYSTEM_IMPORT_USER = "System (Import)"
MANUAL_EDIT_USER = "User (Manual)"


# =============================================================================
# SECTION 2: INCIDENTS
# =============================================================================

@dataclass(frozen=True)
class ChangeLogEntry:
    """Entrée du journal d'audit (append-only)"""
    date: str
    field: str
    old_value: Any
    new_value: Any
    user: str


@dataclass(frozen=True)
class Incident:
    """Incident normalisé et classifié"""
    incident_id: str
    name: str = "Sin Nombre"
    description: str = "Sin descripción"
    site: str = "Sitio Desconocido"
    type: str = "Unspecified"
    location: str = "General"
    potential_risk: str = "N/A"
    body_part_text: str = ""
    affected_zones: Tuple[str, ...] = (BodyZone.UNKNOWN.value,)
    fecha_evento: str = ""
    year: int = 0
    month: int = 0
    recordable_osha: bool = False
    lti_case: bool = False
    is_transit_laboral: bool = False
    is_in_itinere: bool = False
    is_transit: bool = False
    com_cliente: bool = False
    fatality: bool = False
    days_away: int = 0
    days_restricted: int = 0
    job_transfer: bool = False
    is_process_safety_tier_1: bool = False
    is_process_safety_tier_2: bool = False
    raw_json: str = "{}"
    is_verified: bool = False
    updated_at: str = ""
    change_log: Tuple[ChangeLogEntry, ...] = ()
    version: int = 1

    @property
    def period(self) -> str:
        """Période YYYY-MM dérivée de la date d'événement"""
        return (self.fecha_evento or "")[:7]

    def to_dict(self) -> Dict:
        data = asdict(self)
        data["affected_zones"] = list(self.affected_zones)
        data["change_log"] = [asdict(entry) for entry in self.change_log]
        return data

    @classmethod
    def from_dict(cls, data: Dict) -> "Incident":
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        values["affected_zones"] = tuple(values.get("affected_zones") or (BodyZone.UNKNOWN.value,))
        values["change_log"] = tuple(
            entry if isinstance(entry, ChangeLogEntry) else ChangeLogEntry(
                date=entry.get("date", ""),
                field=entry.get("field", ""),
                old_value=entry.get("old_value"),
                new_value=entry.get("new_value"),
                user=entry.get("user", ""),
            )
            for entry in (values.get("change_log") or ())
        )
        return cls(**values)


# =============================================================================
# SECTION 3: EXPOSITION
# =============================================================================

@dataclass(frozen=True)
class ExposureHour:
    """Heures-homme d'un site pour une période YYYY-MM"""
    id: str
    site: str
    period: str
    hours: float = 0.0
    worker_type: str = "total"

    @property
    def provenance(self) -> ExposureProvenance:
        # Identifiants: EXP-H-<site>-<période>-<TAG>[-<horodatage>]
        match = PROVENANCE_TAG_RE.search(self.id)
        if match and match.group(1) == ExposureProvenance.AUTO.value:
            return ExposureProvenance.AUTO
        if not self.hours or (match and match.group(1) == ExposureProvenance.PENDING.value):
            return ExposureProvenance.PENDING
        return ExposureProvenance.MANUAL

    @property
    def key(self) -> Tuple[str, str]:
        return (self.site, self.period)

    def to_dict(self) -> Dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict) -> "ExposureHour":
        return cls(
            id=str(data.get("id", "")),
            site=str(data.get("site", "")),
            period=str(data.get("period", "")),
            hours=float(data.get("hours") or 0),
            worker_type=data.get("worker_type", "total"),
        )


@dataclass(frozen=True)
class GlobalKmRecord:
    """Kilomètres flotte d'une année (dénominateur IFAT, non ventilé par site)"""
    year: int
    value: float
    last_updated: str = ""

    def to_dict(self) -> Dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict) -> "GlobalKmRecord":
        return cls(
            year=int(data.get("year") or 0),
            value=float(data.get("value") or 0),
            last_updated=data.get("last_updated", ""),
        )


# =============================================================================
# SECTION 4: RÈGLES ET PARAMÈTRES
# =============================================================================

@dataclass(frozen=True)
class MappingRule:
    """Règle par défaut associée à un libellé de type d'incident"""
    tipo_incidente: str
    default_recordable: bool = False
    default_lti: bool = False
    default_is_transit_laboral: bool = False
    default_is_in_itinere: bool = False

    def to_dict(self) -> Dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict) -> "MappingRule":
        return cls(
            tipo_incidente=str(data.get("tipo_incidente", "")),
            default_recordable=bool(data.get("default_recordable", False)),
            default_lti=bool(data.get("default_lti", False)),
            default_is_transit_laboral=bool(data.get("default_is_transit_laboral", False)),
            default_is_in_itinere=bool(data.get("default_is_in_itinere", False)),
        )


@dataclass
class AppSettings:
    """Bases de calcul des taux"""
    base_if: int = 1000000
    base_trir: int = 200000
    days_cap: int = 180

    def to_dict(self) -> Dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[Dict]) -> "AppSettings":
        data = data or {}
        return cls(
            base_if=int(data.get("base_if") or cls.base_if),
            base_trir=int(data.get("base_trir") or cls.base_trir),
            days_cap=int(data.get("days_cap") or cls.days_cap),
        )


@dataclass
class KPITargets:
    """Objectifs annuels (scénario de cibles)"""
    trir: float = 3.0
    ltif: float = 7.5
    dart: float = 1.5
    sr: float = 200.0
    far: float = 0.0
    t1_pser: float = 0.0
    t2_pser: float = 0.5
    ifat_km: float = 1.0
    max_events_trir: int = 31
    max_events_lti: int = 15


DEFAULT_RULES: List[MappingRule] = [
    MappingRule("First Aid"),
    MappingRule("Medical Treatment", default_recordable=True),
    MappingRule("Lost Time", default_recordable=True, default_lti=True),
    MappingRule("Fatality", default_recordable=True, default_lti=True),
    MappingRule("Accidente Vehicular/Tránsito", default_is_transit_laboral=True),
    MappingRule("Accidente In Itinere", default_is_in_itinere=True),
]

# Pondération de la potentialité (indice de risque)
RISK_WEIGHTS: Dict[str, int] = {
    "Alta": 5,
    "High": 5,
    "Media": 3,
    "Medium": 3,
    "Baja": 1,
    "Low": 1,
    "N/A": 1,
}
