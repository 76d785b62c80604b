"""
================================================================================
HSE EXPOSURE - Dénominateurs d'exposition (heures-homme, km flotte)
================================================================================
1. Table des heures par défaut des sites (données: motifs puis noms exacts)
2. Auto-assignation des enregistrements manquants (AUTO / PENDING)
3. Saisie manuelle (AUTO/PENDING → MANUAL) et kilomètres globaux
4. Qualité des données: clés manquantes, impact, score par site

Un enregistrement avec des heures > 0 n'est jamais écrasé par le système.
================================================================================
"""

import re
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Iterable, Tuple

from hse_models import (
    ExposureHour, ExposureProvenance, GlobalKmRecord, Incident, PROVENANCE_TAG_RE,
)
from hse_normalizer import normalize_text

logger = logging.getLogger("HSEExposure")

PERIOD_RE = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")


# =============================================================================
# SECTION 1: HEURES PAR DÉFAUT DES SITES (données)
# =============================================================================

@dataclass(frozen=True)
class SiteHoursRule:
    """Heures mensuelles par défaut pour un site (motif regex ou nom exact)"""
    match: str
    hours: float


# Évaluées sur le nom brut du site, dans l'ordre
SITE_PATTERN_RULES: List[SiteHoursRule] = [
    SiteHoursRule(r"\bEQUIPO\s+(?:DE\s+)?PERFORACI[OÓ]N\b", 12960),
    SiteHoursRule(r"\bDRILLING\s+RIG\b", 12960),
    SiteHoursRule(r"\bWORK\s*OVER\b", 8640),
    SiteHoursRule(r"\bPULLING\b", 7200),
    SiteHoursRule(r"\bFRACTURA\b|\bFRAC\s+FLEET\b", 10080),
    SiteHoursRule(r"\bCOILED\s+TUBING\b", 5760),
]

# Comparées sur le nom normalisé (sans accents, majuscules)
SITE_EXACT_RULES: List[SiteHoursRule] = [
    SiteHoursRule("BASE NEUQUEN", 9600),
    SiteHoursRule("BASE COMODORO RIVADAVIA", 8800),
    SiteHoursRule("BASE ANELO", 6400),
    SiteHoursRule("TALLER CENTRAL", 4800),
    SiteHoursRule("OFICINAS CENTRALES", 3200),
]

_PATTERN_INDEX = [(re.compile(rule.match, re.IGNORECASE), rule.hours) for rule in SITE_PATTERN_RULES]
_EXACT_INDEX = {normalize_text(rule.match): rule.hours for rule in SITE_EXACT_RULES}


def get_auto_hours(site: str) -> float:
    """Heures par défaut d'un site: motifs d'abord, puis noms exacts; 0 sinon"""
    raw = site or ""
    for pattern, hours in _PATTERN_INDEX:
        if pattern.search(raw):
            return hours
    return _EXACT_INDEX.get(normalize_text(raw), 0)


# =============================================================================
# SECTION 2: AUTO-ASSIGNATION
# =============================================================================

def is_valid_period(period: str) -> bool:
    return bool(period) and PERIOD_RE.match(period) is not None


def exposure_id(site: str, period: str, provenance: ExposureProvenance) -> str:
    return f"EXP-H-{site}-{period}-{provenance.value}"


def generate_auto_exposure_records(incidents: Iterable[Incident],
                                   exposure: Iterable[ExposureHour]) -> List[ExposureHour]:
    """
    Complète les heures d'exposition manquantes pour chaque (site, période)
    présente dans les incidents.

    - heures existantes > 0: intactes (AUTO ou MANUAL)
    - valeur par défaut non nulle: création ou remplacement en AUTO
    - sinon, si aucune ligne: marqueur PENDING à 0 heure

    Idempotent: appliquée à son propre résultat, ne change rien.
    """
    records = list(exposure)
    index: Dict[Tuple[str, str], int] = {}
    for position, record in enumerate(records):
        index.setdefault(record.key, position)

    created = replaced = pending = 0

    for incident in incidents:
        period = incident.period
        if not is_valid_period(period):
            continue

        key = (incident.site, period)
        position = index.get(key)
        existing = records[position] if position is not None else None

        if existing is not None and existing.hours > 0:
            continue

        hours = get_auto_hours(incident.site)
        if hours > 0:
            record = ExposureHour(
                id=exposure_id(incident.site, period, ExposureProvenance.AUTO),
                site=incident.site,
                period=period,
                hours=float(hours),
            )
            if position is None:
                index[key] = len(records)
                records.append(record)
                created += 1
            else:
                records[position] = record
                replaced += 1
        elif existing is None:
            index[key] = len(records)
            records.append(ExposureHour(
                id=exposure_id(incident.site, period, ExposureProvenance.PENDING),
                site=incident.site,
                period=period,
                hours=0.0,
            ))
            pending += 1

    if created or replaced or pending:
        logger.info(f"⏱️ Exposition auto: {created} créés, {replaced} remplacés, {pending} en attente")
    return records


# =============================================================================
# SECTION 3: SAISIE MANUELLE
# =============================================================================

def set_manual_exposure_hours(exposure: Iterable[ExposureHour], site: str, period: str,
                              hours: float) -> List[ExposureHour]:
    """Saisie humaine: remplace la ligne (site, période) avec une provenance MANUAL"""
    if not is_valid_period(period):
        raise ValueError(f"Période invalide: {period!r} (attendu YYYY-MM)")

    records = list(exposure)
    for position, record in enumerate(records):
        if record.key == (site, period):
            base_id = PROVENANCE_TAG_RE.sub("", record.id) or f"EXP-H-{site}-{period}"
            records[position] = ExposureHour(
                id=f"{base_id}-{ExposureProvenance.MANUAL.value}",
                site=site,
                period=period,
                hours=float(hours),
                worker_type=record.worker_type,
            )
            return records

    records.append(ExposureHour(
        id=exposure_id(site, period, ExposureProvenance.MANUAL),
        site=site,
        period=period,
        hours=float(hours),
    ))
    return records


def upsert_global_km(records: Iterable[GlobalKmRecord], year: int, value: float,
                     timestamp: str = None) -> List[GlobalKmRecord]:
    """Kilomètres flotte d'une année (remplace l'année si elle existe)"""
    updated = GlobalKmRecord(year=int(year), value=float(value),
                             last_updated=timestamp or datetime.now().isoformat())
    result = [r for r in records if r.year != updated.year]
    result.append(updated)
    return sorted(result, key=lambda r: r.year)


# =============================================================================
# SECTION 4: QUALITÉ DES DONNÉES
# =============================================================================

@dataclass(frozen=True)
class MissingExposureKey:
    site: str
    period: str


@dataclass(frozen=True)
class MissingExposureImpact:
    site: str
    missing_periods: Tuple[str, ...]
    affected_incidents_count: int
    affected_severe_count: int


@dataclass(frozen=True)
class SiteQualityScore:
    site: str
    score: float
    hh_completeness: float
    review_completeness: float
    transit_completeness: float
    missing_periods: Tuple[str, ...] = field(default_factory=tuple)
    pending_reviews: int = 0


def _is_severe(incident: Incident) -> bool:
    return incident.recordable_osha or incident.lti_case or incident.fatality


def get_missing_exposure_keys(incidents: Iterable[Incident],
                              exposure: Iterable[ExposureHour]) -> List[MissingExposureKey]:
    """(site, période) d'incidents sans heures > 0, période la plus récente d'abord"""
    filled = {record.key for record in exposure if record.hours > 0}
    required = {(i.site, i.period) for i in incidents if is_valid_period(i.period)}
    missing = [MissingExposureKey(site, period) for site, period in required - filled]
    return sorted(missing, key=lambda k: (k.period, k.site), reverse=True)


def group_missing_keys_by_site(keys: Iterable[MissingExposureKey]) -> Dict[str, List[str]]:
    grouped: Dict[str, List[str]] = {}
    for key in keys:
        grouped.setdefault(key.site, []).append(key.period)
    return {site: sorted(periods, reverse=True) for site, periods in grouped.items()}


def get_missing_exposure_impact(incidents: List[Incident],
                                exposure: Iterable[ExposureHour]) -> List[MissingExposureImpact]:
    """
    Impact des heures manquantes par site, par priorité:
    mois manquants, incidents touchés, incidents graves (desc), puis site (asc).
    """
    incidents = list(incidents)
    grouped = group_missing_keys_by_site(get_missing_exposure_keys(incidents, exposure))

    impacts = []
    for site, periods in grouped.items():
        missing = set(periods)
        affected = [i for i in incidents if i.site == site and i.period in missing]
        impacts.append(MissingExposureImpact(
            site=site,
            missing_periods=tuple(periods),
            affected_incidents_count=len(affected),
            affected_severe_count=sum(1 for i in affected if _is_severe(i)),
        ))

    return sorted(impacts, key=lambda m: (-len(m.missing_periods), -m.affected_incidents_count,
                                          -m.affected_severe_count, m.site))


def get_missing_km_years(incidents: Iterable[Incident],
                         global_km: Iterable[GlobalKmRecord]) -> List[int]:
    """Années avec des incidents de transit laboral mais sans km flotte"""
    filled = {record.year for record in global_km if record.value > 0}
    required = {i.year for i in incidents if i.is_transit_laboral and i.year}
    return sorted(required - filled, reverse=True)


def calculate_site_quality_scores(incidents: List[Incident], exposure: List[ExposureHour],
                                  global_km: List[GlobalKmRecord]) -> List[SiteQualityScore]:
    """
    Score de complétude par site (0-100), moyenne de:
    heures-homme renseignées, incidents revus, km flotte renseignés.
    Trié du pire au meilleur.
    """
    filled_km_years = {record.year for record in global_km if record.value > 0}
    scores = []

    for site in sorted({i.site for i in incidents}):
        site_incidents = [i for i in incidents if i.site == site]

        required_periods = {i.period for i in site_incidents if is_valid_period(i.period)}
        filled_periods = {e.period for e in exposure if e.site == site and e.hours > 0}
        hh_score = (len(required_periods & filled_periods) / len(required_periods) * 100
                    if required_periods else 100.0)

        reviewed = sum(1 for i in site_incidents if i.is_verified)
        review_score = reviewed / len(site_incidents) * 100

        required_years = {i.year for i in site_incidents if i.is_transit_laboral and i.year}
        transit_score = (len(required_years & filled_km_years) / len(required_years) * 100
                         if required_years else 100.0)

        scores.append(SiteQualityScore(
            site=site,
            score=(hh_score + review_score + transit_score) / 3,
            hh_completeness=hh_score,
            review_completeness=review_score,
            transit_completeness=transit_score,
            missing_periods=tuple(sorted(required_periods - filled_periods, reverse=True)),
            pending_reviews=len(site_incidents) - reviewed,
        ))

    return sorted(scores, key=lambda s: s.score)
