"""
================================================================================
HSE BODY ZONES - Texte libre « zone lésionnée » → zones anatomiques
================================================================================
Algorithme:
1. Latéralité lue sur le texte BRUT en majuscules (IZQ*, LEFT, DER*, RIGHT),
   avant nettoyage: les marqueurs sont souvent entre parenthèses.
   Les deux côtés ou aucun → bilatéral.
2. Jeton nettoyé: sans accents, sans parenthèses, lettres seules, majuscules.
3. Évaluation de TOUTES les règles du catalogue; une règle est ignorée si un
   motif d'exclusion correspond aussi.
4. Règles latérales: seulement le(s) côté(s) détecté(s). Règles centrales:
   l'ensemble de base complet.

Aucune correspondance → {unknown}, jamais un ensemble vide.
================================================================================
"""

import re
import logging
from collections import Counter
from dataclasses import dataclass
from typing import Dict, Iterable, List, Tuple

from hse_models import BodyZone
from hse_normalizer import strip_accents, is_missing

logger = logging.getLogger("HSEBodyZones")


# =============================================================================
# SECTION 1: CATALOGUE DES ZONES (données)
# =============================================================================

@dataclass(frozen=True)
class BodyZoneRule:
    """Règle du catalogue: motifs, exclusions, zones de base, latéralité"""
    name: str
    patterns: Tuple[str, ...]
    zones: Tuple[str, ...]
    lateral: bool = False
    excludes: Tuple[str, ...] = ()

    def matches(self, token: str) -> bool:
        if not any(re.search(p, token) for p in self.patterns):
            return False
        return not any(re.search(x, token) for x in self.excludes)

    def emit(self, left: bool, right: bool) -> List[str]:
        if not self.lateral:
            return list(self.zones)
        emitted = []
        for base in self.zones:
            if left:
                emitted.append(f"{base}_left")
            if right:
                emitted.append(f"{base}_right")
        return emitted


BODY_ZONE_RULES: List[BodyZoneRule] = [
    BodyZoneRule(
        name="head",
        patterns=(r"\bCABEZA\b", r"\bCRANEO\b", r"\bROSTRO\b", r"\bCARA\b", r"\bOJOS?\b",
                  r"\bNARIZ\b", r"\bBOCA\b", r"\bOREJAS?\b", r"\bOIDOS?\b", r"\bMENTON\b",
                  r"\bHEAD\b", r"\bFACE\b", r"\bEYES?\b"),
        zones=(BodyZone.HEAD.value,),
    ),
    BodyZoneRule(
        name="neck",
        patterns=(r"\bCUELLO\b", r"\bCERVICAL\b", r"\bNUCA\b", r"\bNECK\b"),
        zones=(BodyZone.NECK.value,),
    ),
    BodyZoneRule(
        name="shoulder",
        patterns=(r"\bHOMBROS?\b", r"\bCLAVICULA\b", r"\bSHOULDERS?\b"),
        zones=("shoulder",),
        lateral=True,
    ),
    BodyZoneRule(
        name="arm",
        patterns=(r"\bBRAZOS?\b", r"\bANTEBRAZOS?\b", r"\bCODOS?\b", r"\bMUNECAS?\b",
                  r"\bARMS?\b", r"\bFOREARMS?\b", r"\bELBOWS?\b", r"\bWRISTS?\b"),
        zones=("arm",),
        lateral=True,
    ),
    BodyZoneRule(
        name="hand",
        patterns=(r"\bMANOS?\b", r"\bDEDOS?\b", r"\bPULGAR\b", r"\bFALANGES?\b",
                  r"\bHANDS?\b", r"\bFINGERS?\b", r"\bTHUMBS?\b"),
        zones=("hand",),
        lateral=True,
        excludes=(r"\bPIES?\b", r"\bORTEJOS?\b", r"\bTOES?\b"),
    ),
    BodyZoneRule(
        name="foot",
        patterns=(r"\bPIES?\b", r"\bTOBILLOS?\b", r"\bTALON\b", r"\bFOOT\b", r"\bFEET\b",
                  r"\bANKLES?\b", r"\bHEELS?\b"),
        zones=("foot",),
        lateral=True,
        excludes=(r"\bDEDOS?\b", r"\bORTEJOS?\b", r"\bTOES?\b", r"\bFINGERS?\b"),
    ),
    BodyZoneRule(
        name="toes",
        patterns=(r"\bDEDOS? DE(?:L| LOS)? PIES?\b", r"\bORTEJOS?\b", r"\bTOES?\b"),
        zones=("foot",),
        lateral=True,
    ),
    BodyZoneRule(
        name="chest",
        patterns=(r"\bTORAX\b", r"\bPECHO\b", r"\bCOSTILLAS?\b", r"\bESTERNON\b",
                  r"\bCHEST\b", r"\bRIBS?\b"),
        zones=(BodyZone.CHEST.value,),
    ),
    BodyZoneRule(
        name="back_upper",
        patterns=(r"\bESPALDA (?:ALTA|SUPERIOR)\b", r"\bDORSAL\b", r"\bOMOPLATOS?\b",
                  r"\bESCAPULAS?\b", r"\bUPPER BACK\b"),
        zones=(BodyZone.BACK_UPPER.value,),
    ),
    BodyZoneRule(
        name="back_lower",
        patterns=(r"\bLUMBAR\b", r"\bESPALDA (?:BAJA|INFERIOR)\b", r"\bCINTURA\b",
                  r"\bCOLUMNA\b", r"\bLOWER BACK\b"),
        zones=(BodyZone.BACK_LOWER.value,),
    ),
    BodyZoneRule(
        name="back",
        patterns=(r"\bESPALDA\b", r"\bBACK\b"),
        zones=(BodyZone.BACK_UPPER.value, BodyZone.BACK_LOWER.value),
        excludes=(r"\bALTA\b", r"\bSUPERIOR\b", r"\bBAJA\b", r"\bINFERIOR\b",
                  r"\bUPPER\b", r"\bLOWER\b"),
    ),
    BodyZoneRule(
        name="abdomen",
        patterns=(r"\bABDOMEN\b", r"\bABDOMINAL\b", r"\bVIENTRE\b", r"\bESTOMAGO\b",
                  r"\bINGLE\b", r"\bSTOMACH\b"),
        zones=(BodyZone.ABDOMEN.value,),
    ),
    BodyZoneRule(
        name="hip",
        patterns=(r"\bCADERAS?\b", r"\bPELVIS\b", r"\bGLUTEOS?\b", r"\bHIPS?\b"),
        zones=(BodyZone.HIP.value,),
    ),
    BodyZoneRule(
        name="knee",
        patterns=(r"\bRODILLAS?\b", r"\bKNEES?\b"),
        zones=("knee",),
        lateral=True,
    ),
    BodyZoneRule(
        name="leg",
        patterns=(r"\bPIERNAS?\b", r"\bMUSLOS?\b", r"\bGEMELOS?\b", r"\bPANTORRILLAS?\b",
                  r"\bTIBIA\b", r"\bPERONE\b", r"\bLEGS?\b", r"\bTHIGHS?\b", r"\bSHINS?\b"),
        zones=("leg",),
        lateral=True,
    ),
    BodyZoneRule(
        name="general",
        patterns=(r"\bCUERPO\b", r"\bMULTIPLES?\b", r"\bPOLITRAUMATISMOS?\b",
                  r"\bGENERAL\b", r"\bWHOLE BODY\b"),
        zones=(BodyZone.GENERAL.value,),
    ),
]

_LEFT_RE = re.compile(r"\bIZQ\w*|\bLEFT\b")
_RIGHT_RE = re.compile(r"\bDER\w*|\bRIGHT\b")
_PARENTHESES_RE = re.compile(r"\([^)]*\)")
_NON_LETTERS_RE = re.compile(r"[^A-Z]+")

_ZONE_ORDER = {zone.value: position for position, zone in enumerate(BodyZone)}


# =============================================================================
# SECTION 2: MOTEUR DE DÉTECTION
# =============================================================================

def detect_laterality(raw_text: str) -> Tuple[bool, bool]:
    """
    Retourne (gauche, droite) à partir du texte brut.
    Aucun côté ou les deux → bilatéral (True, True).
    """
    upper = strip_accents(raw_text or "").upper()
    left = bool(_LEFT_RE.search(upper))
    right = bool(_RIGHT_RE.search(upper))
    if left == right:
        return True, True
    return left, right


def clean_body_text(raw_text: str) -> str:
    """Jeton nettoyé: sans accents, sans parenthèses, lettres seules"""
    text = strip_accents(raw_text or "").upper()
    text = _PARENTHESES_RE.sub(" ", text)
    text = _NON_LETTERS_RE.sub(" ", text)
    return " ".join(text.split())


def detect_body_zones(raw_text, rules: Iterable[BodyZoneRule] = None) -> List[str]:
    """
    Mappe un texte libre de localisation de lésion vers des zones anatomiques.

    Args:
        raw_text: Cellule « zone du corps » telle qu'importée
        rules: Catalogue à utiliser (BODY_ZONE_RULES par défaut)

    Returns:
        Liste de zones non vide, ordonnée selon BodyZone
    """
    if is_missing(raw_text):
        return [BodyZone.UNKNOWN.value]

    raw = str(raw_text)
    left, right = detect_laterality(raw)
    token = clean_body_text(raw)

    zones = set()
    for rule in (BODY_ZONE_RULES if rules is None else rules):
        if rule.matches(token):
            zones.update(rule.emit(left, right))

    if not zones:
        logger.debug(f"Zone corporelle non configurée: {raw!r}")
        return [BodyZone.UNKNOWN.value]

    return sorted(zones, key=lambda z: _ZONE_ORDER.get(z, len(_ZONE_ORDER)))


def calculate_body_zone_totals(incidents) -> Dict[str, int]:
    """Nombre de lésions par zone (carte de chaleur corporelle)"""
    totals = Counter()
    for incident in incidents:
        totals.update(incident.affected_zones)
    return dict(totals)
