"""
================================================================================
HSE DATA HARMONIZER - Ligne brute du tableur → Incident (couche Silver)
================================================================================
Ce module fait le pont entre:
- hse_data_ingestion (lecture du classeur, lignes brutes = Bronze)
- les classifieurs (normaliseur, zones corporelles, type d'incident)

Il permet de:
1. Résoudre les colonnes logiques parmi des en-têtes imprévisibles
2. Construire un Incident normalisé et classifié par ligne
3. Générer les règles de mapping pour les types d'incident inconnus

Usage:
    from hse_harmonizer import HSEHarmonizer, resolve_columns

    harmonizer = HSEHarmonizer(rules)
    columns = resolve_columns(headers)
    incident = harmonizer.transform_record(row, columns)
================================================================================
"""

import json
import re
import logging
from datetime import date, datetime
from typing import Dict, List, Optional, Any, Iterable, Tuple

from hse_models import Incident, MappingRule
from hse_normalizer import (
    find_column, normalize_text, safe_text, parse_date, parse_int, parse_bool,
    sanitize_year, sanitize_month, is_missing,
)
from hse_body_zones import detect_body_zones
from hse_classifier import classify_incident_type

logger = logging.getLogger("HSEHarmonizer")


# =============================================================================
# SECTION 1: CONTRAT DE DONNÉES (alias de colonnes)
# =============================================================================

COLUMN_ALIASES: Dict[str, List[str]] = {
    "id": ["ID", "Id Incidente", "ID Incidente", "Nro Incidente", "Incident ID"],
    "name": ["Nombre", "Titulo", "Título", "Name"],
    "site": ["Sitio", "Site", "Locacion", "Locación", "Yacimiento"],
    "load_date": ["Fecha Carga", "Fecha de Carga", "Fecha", "Load Date"],
    "type": ["Tipo de Incidente", "Tipo Incidente", "Tipo", "Incident Type"],
    "location": ["Ubicación", "Ubicacion", "Lugar", "Location"],
    "potential_risk": ["Potencialidad del Incidente", "Potencialidad", "Potencial", "Potential Risk"],
    "year": ["Año", "Anio", "Year"],
    "month": ["Mes", "Month"],
    "description": ["Breve descripcion del Incidente", "Descripción", "Descripcion", "Description"],
    "mechanics": ["Breve Descripción de la mecánica", "Mecánica", "Mecanica"],
    "involved": ["Nombre y Apellido Involucrado", "Involucrado"],
    "accident_date": ["Datos ART: FECHA SINIESTRO", "Fecha Siniestro", "Fecha del Evento", "Fecha Evento"],
    "discharge_date": ["Datos ART: FECHA ALTA MEDICA DEFINITIVA", "Fecha Alta Medica", "Fecha Alta"],
    "body_part": ["Zona del Cuerpo Afectada", "Parte del Cuerpo Afectada", "Parte del Cuerpo",
                  "Zona Afectada", "Body Part"],
    "days_restricted": ["Días Restringidos", "Dias Restringidos", "Days Restricted"],
    "client_communication": ["Comunicación al Cliente", "Com. Cliente", "Com Cliente",
                             "Client Communication"],
}

REQUIRED_COLUMNS: Tuple[str, ...] = (
    "id", "name", "site", "load_date", "type", "location", "potential_risk",
)

_TIER_1_RE = re.compile(r"\b(?:TIER|NIVEL)\s*1\b")
_TIER_2_RE = re.compile(r"\b(?:TIER|NIVEL)\s*2\b")


def resolve_columns(headers: Iterable[Any]) -> Dict[str, Optional[Any]]:
    """Colonne logique → en-tête réel du classeur (None si absente)"""
    headers = list(headers)
    return {key: find_column(headers, aliases) for key, aliases in COLUMN_ALIASES.items()}


def missing_required_columns(columns: Dict[str, Optional[Any]]) -> List[str]:
    """Colonnes obligatoires non résolues (libellé principal de l'alias)"""
    return [COLUMN_ALIASES[key][0] for key in REQUIRED_COLUMNS if columns.get(key) is None]


# =============================================================================
# SECTION 2: RÈGLES DE MAPPING
# =============================================================================

def generate_rule_for_type(type_label: str) -> MappingRule:
    """Heuristique: règle par défaut déduite du texte du type d'incident"""
    t = normalize_text(type_label)

    is_transit_laboral = "VEHICULAR" in t or "TRANSITO" in t
    is_in_itinere = "ITINERE" in t
    is_lti = ("LOST TIME" in t or "CON BAJA" in t or "DIAS PERDIDOS" in t
              or re.search(r"\bLTI\b", t) is not None)
    is_medical = "MEDIC" in t or "TRATAMIENTO" in t or "HOSPITAL" in t
    is_fatal = "FATAL" in t or "MUERTE" in t

    return MappingRule(
        tipo_incidente=type_label,
        default_recordable=is_lti or is_medical or is_fatal,
        default_lti=is_lti,
        default_is_transit_laboral=is_transit_laboral and not is_in_itinere,
        default_is_in_itinere=is_in_itinere,
    )


def merge_rules(existing_rules: Iterable[MappingRule], type_labels: Iterable[str]) -> List[MappingRule]:
    """Règles existantes + une règle générée par type inconnu (comparaison sans casse)"""
    rules = list(existing_rules)
    known = {rule.tipo_incidente.strip().lower() for rule in rules}
    for label in type_labels:
        key = label.strip().lower()
        if key and key not in known:
            rules.append(generate_rule_for_type(label.strip()))
            known.add(key)
    return rules


# =============================================================================
# SECTION 3: CLASSE PRINCIPALE HSEHarmonizer
# =============================================================================

def _format_id(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return safe_text(value)


def _days_between(start: Optional[str], end: Optional[str]) -> int:
    if not start or not end:
        return 0
    try:
        delta = (date.fromisoformat(end) - date.fromisoformat(start)).days
    except ValueError:
        return 0
    return max(delta, 0)


def _date_part(fecha: str, start: int, end: int) -> Optional[int]:
    try:
        return int(fecha[start:end])
    except (TypeError, ValueError):
        return None


class HSEHarmonizer:
    """
    Transforme les lignes brutes d'un export d'incidents en Incidents
    normalisés (couche Silver).
    """

    def __init__(self, rules: Iterable[MappingRule] = None, today: date = None):
        """
        Args:
            rules: Règles de mapping (fallback avant la table ordonnée)
            today: Date de référence quand aucune date n'est exploitable
        """
        self.rules = list(rules or [])
        self._rules_index = {rule.tipo_incidente.strip().lower(): rule for rule in self.rules}
        self.today = today or date.today()
        self.reset_stats()

    # -------------------------------------------------------------------------
    # Transformation d'une ligne
    # -------------------------------------------------------------------------

    def transform_record(self, row: Dict[str, Any], columns: Dict[str, Optional[Any]],
                         index: int = 0) -> Optional[Incident]:
        """
        Transforme une ligne brute vers un Incident.

        Args:
            row: Dictionnaire en-tête → cellule
            columns: Résolution des colonnes (resolve_columns)
            index: Position de la ligne (identifiant de secours)

        Returns:
            Incident, ou None si la ligne est inexploitable
        """
        self.stats["records_processed"] += 1

        def cell(key: str) -> Any:
            header = columns.get(key)
            return row.get(header) if header is not None else None

        try:
            incident_id = _format_id(cell("id"))
            if not incident_id:
                incident_id = f"UNKNOWN-{index}-{int(datetime.now().timestamp() * 1000)}"

            # Dates: le sinistre prime sur la date de chargement
            load_date = parse_date(cell("load_date")) or self.today.isoformat()
            accident_date = parse_date(cell("accident_date"))
            discharge_date = parse_date(cell("discharge_date"))
            fecha_evento = accident_date or load_date

            type_label = safe_text(cell("type"), "Unspecified")
            rule = self._rules_index.get(type_label.lower())
            defaults = {
                "recordable_osha": rule.default_recordable if rule else False,
                "lti_case": rule.default_lti if rule else False,
                "is_transit_laboral": rule.default_is_transit_laboral if rule else False,
                "is_in_itinere": rule.default_is_in_itinere if rule else False,
                "job_transfer": False,
            }
            result = classify_incident_type(type_label, defaults)
            flags = result.flags

            is_in_itinere = flags["is_in_itinere"]
            is_transit_laboral = flags["is_transit_laboral"] and not is_in_itinere

            days_away = _days_between(accident_date, discharge_date)
            days_restricted = max(parse_int(cell("days_restricted"), 0), 0)

            lti_case = flags["lti_case"]
            if days_away > 0 and not is_transit_laboral and not is_in_itinere:
                lti_case = True

            normalized_type = normalize_text(type_label)
            fatality = "FATAL" in normalized_type or "MUERTE" in normalized_type
            recordable = flags["recordable_osha"] or lti_case or fatality

            year = sanitize_year(cell("year")) or _date_part(fecha_evento, 0, 4) or 0
            month = sanitize_month(cell("month")) or _date_part(fecha_evento, 5, 7) or 0

            body_part_text = safe_text(cell("body_part"))

            incident = Incident(
                incident_id=incident_id,
                name=safe_text(cell("name"), "Sin Nombre"),
                description=self._build_description(cell),
                site=safe_text(cell("site"), "Sitio Desconocido"),
                type=type_label,
                location=safe_text(cell("location"), "General"),
                potential_risk=safe_text(cell("potential_risk"), "N/A"),
                body_part_text=body_part_text,
                affected_zones=tuple(detect_body_zones(body_part_text)),
                fecha_evento=fecha_evento,
                year=year,
                month=month,
                recordable_osha=recordable,
                lti_case=lti_case,
                is_transit_laboral=is_transit_laboral,
                is_in_itinere=is_in_itinere,
                is_transit=is_transit_laboral or is_in_itinere,
                com_cliente=parse_bool(cell("client_communication")),
                fatality=fatality,
                days_away=days_away,
                days_restricted=days_restricted,
                job_transfer=flags["job_transfer"],
                is_process_safety_tier_1=bool(_TIER_1_RE.search(normalized_type)),
                is_process_safety_tier_2=bool(_TIER_2_RE.search(normalized_type)),
                raw_json=json.dumps(row, default=str, ensure_ascii=False),
                is_verified=result.is_verified,
                updated_at=datetime.now().isoformat(),
            )

            category = result.category or "UNCLASSIFIED"
            self.stats["by_category"][category] = self.stats["by_category"].get(category, 0) + 1
            if not result.is_verified:
                self.stats["records_unverified"] += 1
            self.stats["records_harmonized"] += 1

            return incident

        except Exception as e:
            logger.error(f"Erreur transformation ligne {index}: {e}")
            self.stats["records_failed"] += 1
            return None

    @staticmethod
    def _build_description(cell) -> str:
        parts = [
            safe_text(cell("description")),
            f"Mecánica: {safe_text(cell('mechanics'))}" if not is_missing(cell("mechanics")) else "",
            f"Involucrado: {safe_text(cell('involved'))}" if not is_missing(cell("involved")) else "",
        ]
        return ". ".join(p for p in parts if p).strip() or "Sin descripción"

    # -------------------------------------------------------------------------
    # Transformation par lots (batch)
    # -------------------------------------------------------------------------

    def transform_batch(self, rows: List[Dict[str, Any]],
                        columns: Dict[str, Optional[Any]]) -> List[Incident]:
        """
        Transforme un lot de lignes.

        Returns:
            Liste d'Incidents (sans les échecs)
        """
        results = []
        for index, row in enumerate(rows):
            incident = self.transform_record(row, columns, index)
            if incident:
                results.append(incident)

        logger.info(f"Batch transformé: {len(results)}/{len(rows)} réussis")
        return results

    # -------------------------------------------------------------------------
    # Statistiques et reporting
    # -------------------------------------------------------------------------

    def get_stats(self) -> Dict:
        """Retourne les statistiques de transformation"""
        return {**self.stats, "by_category": dict(self.stats["by_category"])}

    def print_stats(self) -> None:
        """Affiche les statistiques de transformation"""
        print("\n" + "=" * 60)
        print("📊 STATISTIQUES DE TRANSFORMATION HSE")
        print("=" * 60)
        print(f"  Total traités:     {self.stats['records_processed']}")
        print(f"  ✅ Harmonisés:     {self.stats['records_harmonized']}")
        print(f"  🔎 À réviser:      {self.stats['records_unverified']}")
        print(f"  ❌ Échecs:         {self.stats['records_failed']}")
        print()
        print("  Par catégorie:")
        for category, count in sorted(self.stats["by_category"].items(), key=lambda x: -x[1]):
            print(f"    - {category}: {count}")
        print("=" * 60 + "\n")

    def reset_stats(self) -> None:
        """Réinitialise les statistiques"""
        self.stats = {
            "records_processed": 0,
            "records_harmonized": 0,
            "records_unverified": 0,
            "records_failed": 0,
            "by_category": {},
        }
