"""
================================================================================
HSE CLASSIFIER - Type d'incident (texte libre) → drapeaux de sécurité
================================================================================
Table ORDONNÉE de paires (prédicat, effet): la première règle qui correspond
fixe un lot de drapeaux, marque l'incident comme vérifié et arrête
l'évaluation.

L'ordre est contractuel et ne doit pas être modifié: un libellé ambigu se
résout vers la première catégorie de la table (ex: "IN ITINERE VEHICULAR" →
in itinere). Les indicateurs en aval dépendent de cet ordre.

Aucune correspondance → drapeaux par défaut conservés et is_verified=False:
l'incident doit remonter en revue humaine.
================================================================================
"""

import re
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from hse_normalizer import normalize_text

logger = logging.getLogger("HSEClassifier")


# =============================================================================
# SECTION 1: TABLE DE CLASSIFICATION (ordre de priorité)
# =============================================================================

@dataclass(frozen=True)
class ClassificationRule:
    """Catégorie: motifs (n'importe lequel suffit) et drapeaux imposés"""
    category: str
    patterns: Tuple[str, ...]
    effect: Dict[str, bool] = field(default_factory=dict)

    def matches(self, label: str) -> bool:
        return any(re.search(p, label) for p in self.patterns)


CLASSIFICATION_RULES: List[ClassificationRule] = [
    ClassificationRule(
        category="first_aid",
        patterns=(r"PRIMEROS? AUXILIOS?", r"\bFIRST AID\b"),
        effect={"recordable_osha": False},
    ),
    ClassificationRule(
        category="operative_accident",
        patterns=(r"\bACCIDENTE OPERATIVO\b", r"\bOPERATIVO\b", r"\bOPERATIONAL ACCIDENT\b"),
    ),
    ClassificationRule(
        category="industrial_accident",
        patterns=(r"\bACCIDENTE INDUSTRIAL\b", r"\bINDUSTRIAL\b"),
    ),
    ClassificationRule(
        category="in_itinere",
        patterns=(r"\bIN ITINERE\b", r"\bITINERE\b", r"\bCOMMUTING\b"),
        effect={"is_in_itinere": True, "is_transit_laboral": False},
    ),
    ClassificationRule(
        category="medical_treatment",
        patterns=(r"\bTRATAMIENTO MEDICO\b", r"\bATENCION MEDICA\b", r"\bMEDICAL TREATMENT\b",
                  r"\bEVACUACION\b", r"\bEVACUATION\b"),
        effect={"recordable_osha": True},
    ),
    ClassificationRule(
        category="quality_accident",
        patterns=(r"\bCALIDAD\b", r"\bQUALITY\b"),
    ),
    ClassificationRule(
        category="vehicular",
        patterns=(r"\bVEHICULAR\b", r"\bTRANSITO\b", r"\bVEHICLE\b", r"\bTRAFFIC\b"),
        effect={"is_transit_laboral": True, "is_in_itinere": False},
    ),
    ClassificationRule(
        category="lost_time",
        patterns=(r"\bCON BAJA\b", r"\bDIAS PERDIDOS\b", r"\bLOST TIME\b", r"\bLTI\b"),
        effect={"recordable_osha": True, "lti_case": True},
    ),
    ClassificationRule(
        category="environmental",
        patterns=(r"\bAMBIENTAL\b", r"\bMEDIO AMBIENTE\b", r"\bENVIRONMENTAL\b"),
    ),
    ClassificationRule(
        category="restricted_transfer",
        patterns=(r"\bRESTRINGID[OA]S?\b", r"\bRESTRICTED\b", r"\bTRANSFERID[OA]\b",
                  r"\bTRANSFERRED\b", r"\bDART\b"),
        effect={"recordable_osha": True, "job_transfer": True},
    ),
]


# =============================================================================
# SECTION 2: MOTEUR
# =============================================================================

@dataclass(frozen=True)
class ClassificationResult:
    """Résultat: catégorie retenue (ou None), drapeaux finaux, vérification"""
    category: Optional[str]
    flags: Dict[str, bool]
    is_verified: bool


def normalize_type_label(label) -> str:
    """Libellé sans accents, sauts de ligne ni espaces multiples, en majuscules"""
    return normalize_text(label)


def match_rule(label, rules: List[ClassificationRule] = None) -> Optional[ClassificationRule]:
    """Première règle qui correspond au libellé normalisé"""
    normalized = normalize_type_label(label)
    if not normalized:
        return None
    for rule in (CLASSIFICATION_RULES if rules is None else rules):
        if rule.matches(normalized):
            return rule
    return None


def classify_incident_type(label, defaults: Dict[str, bool] = None,
                           rules: List[ClassificationRule] = None) -> ClassificationResult:
    """
    Classifie un libellé de type d'incident.

    Args:
        label: Libellé brut (« Tipo de Incidente »)
        defaults: Drapeaux construits en amont (règle de mapping)
        rules: Table ordonnée (CLASSIFICATION_RULES par défaut)

    Returns:
        ClassificationResult avec les drapeaux fusionnés
    """
    flags = dict(defaults or {})
    rule = match_rule(label, rules)

    if rule is None:
        logger.debug(f"Type non classifié, revue requise: {label!r}")
        return ClassificationResult(category=None, flags=flags, is_verified=False)

    flags.update(rule.effect)
    return ClassificationResult(category=rule.category, flags=flags, is_verified=True)
