"""
================================================================================
HSE KPI ENGINE - Indicateurs de performance sécurité
================================================================================
Calcule, à partir des incidents réconciliés, des heures d'exposition et des
kilomètres flotte:

1. Taux standards (TRIR, LTIF, DART, SR, FAR, PSER Tier 1/2, IFAT)
2. Estimation réglementaire (effectif moyen, incidence pour mille)
3. Prévision annuelle (extrapolation linéaire)
4. Signaux de gestion: top sites, jours sans incident, tendances,
   évolution par site, actions suggérées
5. Analyses: Pareto, carte de chaleur, rapport détaillé (période, site)

Un dénominateur nul ou absent donne un taux de 0 (jamais None ni infini).
Les incidents in itinere sont exclus de la population des taux.
================================================================================
"""

import math
import logging
from dataclasses import dataclass, field, fields
from datetime import date
from typing import Callable, Dict, List, Optional, Any, Iterable

import pandas as pd

from hse_models import (
    Incident, ExposureHour, GlobalKmRecord, AppSettings, KPITargets, RISK_WEIGHTS,
)
from hse_normalizer import normalize_text
from hse_exposure import is_valid_period
from hse_text_analysis import get_smart_suggested_actions

logger = logging.getLogger("HSEKPIEngine")

SuggestActions = Callable[[List[Incident]], List[str]]

FAR_FACTOR = 100_000_000
SR_FACTOR = 1_000
IFAT_FACTOR = 1_000_000
HOURS_PER_WORKER_MONTH = 200

TREND_WINDOW = 3
EVOLUTION_WINDOW = 3
EVOLUTION_THRESHOLD_PCT = 20.0

DAYS_CRITICAL = 30
DAYS_WARNING = 90


# =============================================================================
# SECTION 1: PRIMITIVES
# =============================================================================

def calc_rate(numerator: float, factor: float, denominator: Optional[float]) -> float:
    """(numérateur × facteur) / dénominateur arrondi à 2 décimales; 0 sans dénominateur"""
    if denominator is None or not denominator > 0:
        return 0.0
    return round(numerator * factor / denominator, 2)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def incident_period(incident: Incident) -> Optional[str]:
    """YYYY-MM de la date d'événement, sinon année/mois, sinon None"""
    if is_valid_period(incident.period):
        return incident.period
    if incident.year and 1 <= incident.month <= 12:
        return f"{incident.year:04d}-{incident.month:02d}"
    return None


def risk_weight(potential_risk: str) -> int:
    """Poids exact, sinon première clé contenue dans le libellé, sinon 1"""
    label = potential_risk or "N/A"
    if label in RISK_WEIGHTS:
        return RISK_WEIGHTS[label]
    for key, weight in RISK_WEIGHTS.items():
        if key in label:
            return weight
    return 1


def is_high_potential(incident: Incident) -> bool:
    risk = normalize_text(incident.potential_risk)
    return "ALTA" in risk or "HIGH" in risk


def is_environmental(incident: Incident) -> bool:
    label = normalize_text(incident.type)
    return "AMBIENTAL" in label or "MEDIO AMBIENTE" in label or "ENVIRONMENTAL" in label


def _incidents_frame(incidents: Iterable[Incident]) -> pd.DataFrame:
    rows = [{"site": i.site, "period": incident_period(i)} for i in incidents]
    frame = pd.DataFrame(rows, columns=["site", "period"])
    return frame.dropna(subset=["period"])


def _site_period_counts(incidents: Iterable[Incident]) -> pd.DataFrame:
    """Matrice site × période du nombre d'incidents (0 si aucun)"""
    frame = _incidents_frame(incidents)
    if frame.empty:
        return pd.DataFrame()
    return frame.groupby(["site", "period"]).size().unstack(fill_value=0).sort_index(axis=1)


# =============================================================================
# SECTION 2: STRUCTURES DE SORTIE
# =============================================================================

def _key(name: str):
    return field(default=0, metadata={"key": name})


class _CamelDict:
    """to_dict() avec les clés attendues par les consommateurs"""

    def to_dict(self) -> Dict[str, Any]:
        data = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, list):
                value = [v.to_dict() if isinstance(v, _CamelDict) else v for v in value]
            elif isinstance(value, _CamelDict):
                value = value.to_dict()
            data[f.metadata.get("key", f.name)] = value
        return data


@dataclass
class SiteRanking(_CamelDict):
    site: str
    count: int
    rank: int


@dataclass
class SiteDaysSafe(_CamelDict):
    site: str
    days: int
    last_date: str = field(metadata={"key": "lastDate"})
    status: str = "safe"


@dataclass
class TrendAlert(_CamelDict):
    site: str
    history: List[Dict[str, Any]]
    trend: str = "increasing"


@dataclass
class SiteEvolution(_CamelDict):
    site: str
    current_avg: float = field(metadata={"key": "currentAvg"})
    prev_avg: float = field(metadata={"key": "prevAvg"})
    variation_pct: float = field(metadata={"key": "variationPct"})
    status: str = "stable"


@dataclass
class SuggestedAction(_CamelDict):
    site: str
    reason: str
    title: str
    actions: List[str]


@dataclass
class Forecast(_CamelDict):
    latest_period: Optional[str] = field(default=None, metadata={"key": "latestPeriod"})
    multiplier: float = 1.0
    projected_recordables: int = field(default=0, metadata={"key": "projectedRecordables"})
    projected_lti: int = field(default=0, metadata={"key": "projectedLti"})
    projected_hours: float = field(default=0.0, metadata={"key": "projectedHours"})
    forecast_trir: float = field(default=0.0, metadata={"key": "forecastTrir"})


@dataclass
class DashboardMetrics(_CamelDict):
    """Objet d'indicateurs consommé par les tableaux de bord et exports"""
    total_man_hours: float = _key("totalManHours")
    total_km: float = _key("totalKM")
    total_incidents: int = _key("totalIncidents")
    total_recordables: int = _key("totalRecordables")
    total_lti: int = _key("totalLTI")
    total_fatalities: int = _key("totalFatalities")
    total_days_lost: int = _key("totalDaysLost")
    total_dart_cases: int = _key("totalDARTCases")

    trir: float = 0.0
    ltif: float = 0.0
    dart: float = 0.0
    sr: float = 0.0
    alos: float = 0.0
    far: float = 0.0
    t1_count: int = 0
    t2_count: int = 0
    t1_pser: float = 0.0
    t2_pser: float = 0.0

    average_headcount: float = _key("averageHeadcount")
    incidence_rate_srt: float = _key("incidenceRateSRT")
    ifat_rate: float = _key("ifatRate")

    env_incidents_major: int = _key("envIncidentsMajor")
    env_incidents_minor: int = _key("envIncidentsMinor")
    hipo_count: int = _key("hipoCount")
    hipo_rate: float = _key("hipoRate")

    forecast_trir: float = 0.0
    forecast_recordable_count: int = 0
    forecast_lti_count: int = 0
    forecast_hours: float = 0.0
    remaining_trir_events: int = 0
    remaining_lti_events: int = 0

    risk_index_total: int = 0
    risk_index_rate: float = 0.0

    cnt_transit_laboral: int = 0
    cnt_in_itinere: int = 0
    rate_in_itinere_hh: float = 0.0

    top5_sites: List[SiteRanking] = field(default_factory=list, metadata={"key": "top5Sites"})
    days_since_list: List[SiteDaysSafe] = field(default_factory=list, metadata={"key": "daysSinceList"})
    trend_alerts: List[TrendAlert] = field(default_factory=list, metadata={"key": "trendAlerts"})
    site_evolutions: List[SiteEvolution] = field(default_factory=list, metadata={"key": "siteEvolutions"})
    suggested_actions: List[SuggestedAction] = field(default_factory=list,
                                                     metadata={"key": "suggestedActions"})


# =============================================================================
# SECTION 3: PRÉVISION ET SIGNAUX DE GESTION
# =============================================================================

def calculate_forecast(incidents: List[Incident], exposure: List[ExposureHour],
                       settings: AppSettings, reference_date: date = None) -> Forecast:
    """
    Projection annuelle à partir de la dernière période présente.

    Année en cours: multiplicateur 12 / mois de la dernière période.
    Année passée: année complète, multiplicateur 1.
    Périmètre: incidents éligibles et heures de l'année de la dernière période.
    """
    reference_date = reference_date or date.today()
    periods = [p for p in (incident_period(i) for i in incidents) if p]
    periods += [e.period for e in exposure if is_valid_period(e.period)]
    if not periods:
        return Forecast()

    latest = max(periods)
    year, month = int(latest[:4]), int(latest[5:7])
    multiplier = 12 / month if year == reference_date.year else 1.0

    scoped = [i for i in incidents
              if not i.is_in_itinere and (incident_period(i) or "").startswith(f"{year:04d}-")]
    hours = sum(e.hours for e in exposure if e.period.startswith(f"{year:04d}-"))

    projected_recordables = round_half_up(sum(1 for i in scoped if i.recordable_osha) * multiplier)
    projected_lti = round_half_up(sum(1 for i in scoped if i.lti_case) * multiplier)
    projected_hours = hours * multiplier

    return Forecast(
        latest_period=latest,
        multiplier=multiplier,
        projected_recordables=projected_recordables,
        projected_lti=projected_lti,
        projected_hours=projected_hours,
        forecast_trir=calc_rate(projected_recordables, settings.base_trir, projected_hours),
    )


def calculate_trend_alerts(incidents: Iterable[Incident], window: int = TREND_WINDOW) -> List[TrendAlert]:
    """Sites dont le nombre d'incidents croît strictement sur les 3 dernières périodes"""
    counts = _site_period_counts(incidents)
    if counts.empty or counts.shape[1] < window:
        return []

    recent = list(counts.columns[-window:])
    alerts = []
    for site, row in counts[recent].iterrows():
        values = [int(v) for v in row.tolist()]
        strictly_increasing = all(a < b for a, b in zip(values, values[1:]))
        if strictly_increasing and values[-1] > 0:
            alerts.append(TrendAlert(
                site=site,
                history=[{"period": p, "count": c} for p, c in zip(recent, values)],
            ))
    return alerts


def calculate_site_evolutions(incidents: Iterable[Incident],
                              window: int = EVOLUTION_WINDOW) -> List[SiteEvolution]:
    """Moyenne des 3 dernières périodes contre les 3 précédentes, par site"""
    counts = _site_period_counts(incidents)
    if counts.empty or counts.shape[1] <= window:
        return []

    current_periods = list(counts.columns[-window:])
    previous_periods = list(counts.columns[-2 * window:-window])

    evolutions = []
    for site, row in counts.iterrows():
        current_avg = float(row[current_periods].sum()) / len(current_periods)
        prev_avg = float(row[previous_periods].sum()) / len(previous_periods)
        if current_avg == 0 and prev_avg == 0:
            continue

        if prev_avg == 0:
            variation = 100.0
        else:
            variation = (current_avg - prev_avg) / prev_avg * 100

        if variation <= -EVOLUTION_THRESHOLD_PCT:
            status = "improving"
        elif variation >= EVOLUTION_THRESHOLD_PCT:
            status = "deteriorating"
        else:
            status = "stable"

        evolutions.append(SiteEvolution(
            site=site,
            current_avg=round(current_avg, 2),
            prev_avg=round(prev_avg, 2),
            variation_pct=round(variation, 1),
            status=status,
        ))

    return sorted(evolutions, key=lambda e: -e.variation_pct)


def calculate_top_sites(incidents: Iterable[Incident], limit: int = 5) -> List[SiteRanking]:
    counts = pd.Series([i.site for i in incidents], dtype=object).value_counts()
    ranked = sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))[:limit]
    return [SiteRanking(site=site, count=int(count), rank=rank)
            for rank, (site, count) in enumerate(ranked, start=1)]


def calculate_days_since(incidents: Iterable[Incident], reference_date: date = None) -> List[SiteDaysSafe]:
    """Jours depuis le dernier incident par site (critique < 30, alerte < 90)"""
    reference_date = reference_date or date.today()
    last_dates: Dict[str, date] = {}
    for incident in incidents:
        try:
            event = date.fromisoformat(incident.fecha_evento)
        except ValueError:
            continue
        if incident.site not in last_dates or event > last_dates[incident.site]:
            last_dates[incident.site] = event

    result = []
    for site, last in last_dates.items():
        days = max((reference_date - last).days, 0)
        if days < DAYS_CRITICAL:
            status = "critical"
        elif days < DAYS_WARNING:
            status = "warning"
        else:
            status = "safe"
        result.append(SiteDaysSafe(site=site, days=days, last_date=last.isoformat(), status=status))

    return sorted(result, key=lambda s: (s.days, s.site))


def build_suggested_actions(incidents: List[Incident], evolutions: List[SiteEvolution],
                            alerts: List[TrendAlert], top_sites: List[SiteRanking],
                            suggest: SuggestActions = get_smart_suggested_actions) -> List[SuggestedAction]:
    """
    Sites en détérioration ou en tendance croissante (dédoublonnés);
    à défaut, les 2 sites avec le plus d'incidents.
    """
    targets: Dict[str, str] = {}
    for evolution in evolutions:
        if evolution.status == "deteriorating":
            targets.setdefault(evolution.site, "deterioration")
    for alert in alerts:
        targets.setdefault(alert.site, "trend_alert")
    if not targets:
        targets = {ranking.site: "top_incidents" for ranking in top_sites[:2]}

    actions = []
    for site, reason in targets.items():
        site_incidents = [i for i in incidents if i.site == site]
        actions.append(SuggestedAction(
            site=site,
            reason=reason,
            title=f"Plan de acción: {site}",
            actions=list(suggest(site_incidents)),
        ))
    return actions


# =============================================================================
# SECTION 4: CALCUL PRINCIPAL
# =============================================================================

def calculate_kpis(incidents: Iterable[Incident], exposure_hours: Iterable[ExposureHour],
                   global_km: Iterable[GlobalKmRecord], settings: AppSettings = None,
                   targets: KPITargets = None, reference_date: date = None,
                   suggest_actions: SuggestActions = get_smart_suggested_actions) -> DashboardMetrics:
    """
    Calcule l'ensemble des indicateurs.

    Args:
        incidents: Incidents réconciliés
        exposure_hours: Heures-homme par (site, période)
        global_km: Kilomètres flotte par année
        settings: Bases de calcul (AppSettings par défaut)
        targets: Objectifs pour les événements restants (aucun → 0)
        reference_date: « Aujourd'hui » (prévision, jours sans incident)
        suggest_actions: Collaborateur (incidents) → actions recommandées

    Returns:
        DashboardMetrics
    """
    incidents = list(incidents)
    exposure_hours = list(exposure_hours)
    global_km = list(global_km)
    settings = settings or AppSettings()
    reference_date = reference_date or date.today()

    total_hours = sum(e.hours for e in exposure_hours)

    # Population des taux: hors in itinere
    eligible = [i for i in incidents if not i.is_in_itinere]
    recordables = sum(1 for i in eligible if i.recordable_osha)
    ltis = sum(1 for i in eligible if i.lti_case)
    fatalities = sum(1 for i in eligible if i.fatality)
    dart_cases = sum(1 for i in eligible if i.days_away > 0 or i.days_restricted > 0 or i.job_transfer)
    days_lost = sum(min(i.days_away + i.days_restricted, settings.days_cap) for i in eligible)
    t1_count = sum(1 for i in eligible if i.is_process_safety_tier_1)
    t2_count = sum(1 for i in eligible if i.is_process_safety_tier_2)

    # Transit: IFAT sur les km flotte des années couvertes
    transit_laboral = sum(1 for i in incidents if i.is_transit_laboral)
    in_itinere = sum(1 for i in incidents if i.is_in_itinere)
    years = {int(p[:4]) for p in (incident_period(i) for i in incidents) if p}
    years |= {int(e.period[:4]) for e in exposure_hours if is_valid_period(e.period)}
    total_km = sum(k.value for k in global_km if k.year in years)

    # Estimation réglementaire (approximation, pas un effectif de paie)
    active_months = len({e.period for e in exposure_hours if e.hours > 0})
    worker_months = HOURS_PER_WORKER_MONTH * active_months
    headcount = total_hours / worker_months if worker_months else 0.0

    risk_total = sum(risk_weight(i.potential_risk) for i in incidents)
    hipo_count = sum(1 for i in incidents if is_high_potential(i))
    environmental = [i for i in incidents if is_environmental(i)]
    env_major = sum(1 for i in environmental if is_high_potential(i) or i.recordable_osha)

    forecast = calculate_forecast(incidents, exposure_hours, settings, reference_date)
    alerts = calculate_trend_alerts(incidents)
    evolutions = calculate_site_evolutions(incidents)
    top_sites = calculate_top_sites(incidents)

    metrics = DashboardMetrics(
        total_man_hours=total_hours,
        total_km=total_km,
        total_incidents=len(incidents),
        total_recordables=recordables,
        total_lti=ltis,
        total_fatalities=fatalities,
        total_days_lost=days_lost,
        total_dart_cases=dart_cases,
        trir=calc_rate(recordables, settings.base_trir, total_hours),
        ltif=calc_rate(ltis, settings.base_if, total_hours),
        dart=calc_rate(dart_cases, settings.base_trir, total_hours),
        sr=calc_rate(days_lost, SR_FACTOR, total_hours),
        alos=calc_rate(days_lost, 1, ltis),
        far=calc_rate(fatalities, FAR_FACTOR, total_hours),
        t1_count=t1_count,
        t2_count=t2_count,
        t1_pser=calc_rate(t1_count, settings.base_trir, total_hours),
        t2_pser=calc_rate(t2_count, settings.base_trir, total_hours),
        average_headcount=round(headcount, 2),
        incidence_rate_srt=calc_rate(recordables, 1000, headcount),
        ifat_rate=calc_rate(transit_laboral, IFAT_FACTOR, total_km),
        env_incidents_major=env_major,
        env_incidents_minor=len(environmental) - env_major,
        hipo_count=hipo_count,
        hipo_rate=calc_rate(hipo_count, 100, len(incidents)),
        forecast_trir=forecast.forecast_trir,
        forecast_recordable_count=forecast.projected_recordables,
        forecast_lti_count=forecast.projected_lti,
        forecast_hours=forecast.projected_hours,
        remaining_trir_events=max(0, targets.max_events_trir - recordables) if targets else 0,
        remaining_lti_events=max(0, targets.max_events_lti - ltis) if targets else 0,
        risk_index_total=risk_total,
        risk_index_rate=calc_rate(risk_total, 1_000_000, total_hours),
        cnt_transit_laboral=transit_laboral,
        cnt_in_itinere=in_itinere,
        rate_in_itinere_hh=calc_rate(in_itinere, settings.base_trir, total_hours),
        top5_sites=top_sites,
        days_since_list=calculate_days_since(incidents, reference_date),
        trend_alerts=alerts,
        site_evolutions=evolutions,
        suggested_actions=build_suggested_actions(incidents, evolutions, alerts, top_sites,
                                                  suggest_actions),
    )

    logger.info(f"📈 KPIs calculés: {len(incidents)} incidents, {total_hours:,.0f} HH, TRIR {metrics.trir}")
    return metrics


# =============================================================================
# SECTION 5: ANALYSES (Pareto, carte de chaleur, rapport détaillé)
# =============================================================================

def generate_pareto_data(incidents: List[Incident], dimension: str = "type",
                         limit: int = 10) -> List[Dict[str, Any]]:
    """Top catégories (lieu ou type) avec pourcentage cumulé"""
    if dimension not in ("type", "location"):
        raise ValueError(f"Dimension Pareto inconnue: {dimension}")
    if not incidents:
        return []

    counts = pd.Series([getattr(i, dimension) for i in incidents], dtype=object).value_counts()
    ranked = sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))[:limit]

    total = len(incidents)
    running = 0
    pareto = []
    for name, count in ranked:
        running += int(count)
        pareto.append({
            "name": name,
            "count": int(count),
            "cumulativePercentage": round_half_up(running / total * 100),
        })
    return pareto


def generate_heatmap_data(incidents: Iterable[Incident], sites: Iterable[str]) -> List[Dict[str, Any]]:
    """Matrice site × mois (1-12) du nombre d'incidents"""
    incidents = list(incidents)
    cells = []
    for site in sites:
        for month in range(1, 13):
            value = sum(1 for i in incidents if i.site == site and i.month == month)
            cells.append({"site": site, "month": month, "value": value})
    return cells


def generate_detailed_kpi_report(incidents: Iterable[Incident], exposure_hours: Iterable[ExposureHour],
                                 settings: AppSettings = None) -> List[Dict[str, Any]]:
    """Une ligne par (période, site) présent dans les incidents ou l'exposition, période desc"""
    incidents = list(incidents)
    exposure_hours = list(exposure_hours)
    settings = settings or AppSettings()

    keys = {(incident_period(i), i.site) for i in incidents if incident_period(i)}
    keys |= {(e.period, e.site) for e in exposure_hours if is_valid_period(e.period)}

    report = []
    for period, site in keys:
        slice_incidents = [i for i in incidents if i.site == site and incident_period(i) == period]
        hours = sum(e.hours for e in exposure_hours if e.site == site and e.period == period)
        eligible = [i for i in slice_incidents if not i.is_in_itinere]
        recordables = sum(1 for i in eligible if i.recordable_osha)

        report.append({
            "Period": period,
            "Site": site,
            "Man Hours": hours,
            "Total Incidents": len(slice_incidents),
            "OSHA Recordables": recordables,
            "LTI Cases": sum(1 for i in eligible if i.lti_case),
            "Risk Score": sum(risk_weight(i.potential_risk) for i in slice_incidents),
            "TRIR": calc_rate(recordables, settings.base_trir, hours),
            "In Itinere": sum(1 for i in slice_incidents if i.is_in_itinere),
        })

    return sorted(report, key=lambda r: (r["Period"], r["Site"]), reverse=True)
