"""
================================================================================
HSE TEXT ANALYSIS - Texte des incidents → risque dominant → actions suggérées
================================================================================
Implémentation par défaut du collaborateur « actions suggérées » du moteur
KPI: (incidents) → liste de phrases.

Score par catégorie = 2 × nombre d'occurrences des mots-clés dans le texte
combiné (description, nom, type, lieu). Score trop faible: repli sur le
type du premier incident.
================================================================================
"""

import re
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Tuple

from hse_normalizer import strip_accents

logger = logging.getLogger("HSETextAnalysis")


# =============================================================================
# SECTION 1: DICTIONNAIRE DE RISQUES
# =============================================================================

@dataclass(frozen=True)
class RiskProfile:
    keywords: Tuple[str, ...]
    verbs: Tuple[str, ...]
    controls: Tuple[str, ...]
    conditions: Tuple[str, ...]


RISK_DICTIONARY: Dict[str, RiskProfile] = {
    "TRANSITO": RiskProfile(
        keywords=("vehic", "choque", "colisi", "volca", "conduc", "manejo", "retroceso",
                  "ruta", "camino", "camioneta", "equipo pesado"),
        verbs=("colisiono", "impacto", "perdio control", "maniobro", "excedio velocidad"),
        controls=("Manejo Defensivo", "Checklist Pre-uso", "Respeto de Distancias",
                  "Uso de Cinturón"),
        conditions=("caminos en mal estado", "polvo en suspension", "trafico cruzado",
                    "puntos ciegos", "fatiga del conductor"),
    ),
    "CAIDAS": RiskProfile(
        keywords=("caida", "piso", "escalera", "resbal", "tropiez", "andamio", "altura",
                  "plataforma"),
        verbs=("resbalo", "tropezo", "perdio equilibrio", "cayo"),
        controls=("Tres Puntos de Apoyo", "Orden y Limpieza", "Uso de Arnés", "Anclaje Seguro"),
        conditions=("superficies irregulares", "presencia de liquidos", "desorden en el area",
                    "iluminacion deficiente"),
    ),
    "MANOS": RiskProfile(
        keywords=("mano", "dedo", "corte", "atrapam", "guante", "herramienta", "apriet",
                  "pellizc", "martill"),
        verbs=("apreto", "corto", "sujeto incorrectamente", "expuso la mano"),
        controls=("Uso de Guantes adecuados", "Herramientas de Mano",
                  "Identificación de Puntos de Atrapamiento"),
        conditions=("herramientas defectuosas", "espacios reducidos", "bordes filosos",
                    "falta de guarda"),
    ),
    "ERGO": RiskProfile(
        keywords=("esfuerzo", "postura", "lumbar", "levantam", "muscular", "sobrecarga"),
        verbs=("levanto", "giro", "forzo", "cargo excesivamente"),
        controls=("Técnica de Levantamiento", "Pausas Activas", "Ayuda Mecánica"),
        conditions=("carga excesiva", "postura forzada", "movimiento brusco"),
    ),
    "GOLPES": RiskProfile(
        keywords=("golpe", "impacto", "cabeza", "casco", "proyeccion", "particula", "objeto"),
        verbs=("golpeo", "proyecto", "impacto contra", "solto"),
        controls=("Uso de EPP (Casco/Lentes)", "Aseguramiento de Carga",
                  "Distancia de Línea de Fuego"),
        conditions=("objetos sueltos", "material proyectado", "estructuras bajas"),
    ),
    "AMBIENTAL": RiskProfile(
        keywords=("derrame", "fuga", "aceite", "quimico", "residuo", "ambiental", "fluido"),
        verbs=("derramo", "contamino", "no contuvo"),
        controls=("Kit Antiderrames", "Gestión de Residuos", "Inspección de Mangueras"),
        conditions=("rotura de linea", "falla de valvula", "recipiente inadecuado"),
    ),
    "IZAJE": RiskProfile(
        keywords=("izaje", "grua", "eslinga", "gancho", "suspendida", "hidrogrua", "pluma"),
        verbs=("izo", "estrobo", "movio carga"),
        controls=("Plan de Izaje", "Inspección de Elementos", "Radio de Exclusión"),
        conditions=("carga inestable", "viento excesivo", "personal bajo carga"),
    ),
    "ELECTRICO": RiskProfile(
        keywords=("electric", "cable", "tension", "volt", "tablero", "descarga"),
        verbs=("manipulo", "conecto", "recibio descarga", "no bloqueo"),
        controls=("Bloqueo y Etiquetado (LOTO)", "Herramientas Aisladas", "Permiso Eléctrico"),
        conditions=("cables expuestos", "agua en cercania", "instalacion provisoria"),
    ),
    "POZO": RiskProfile(
        keywords=("pozo", "bop", "surgencia", "ahogue", "manifold", "h2s"),
        verbs=("surgio", "descontrolo", "no cerro"),
        controls=("Control de Pozo", "Cierre de BOP", "Detector de Gases"),
        conditions=("presion inesperada", "presencia de gas", "falla de barrera"),
    ),
    "GENERAL": RiskProfile(
        keywords=(),
        verbs=("actuo", "procedio", "incumplio"),
        controls=("Análisis de Riesgo (AST)", "Procedimiento de Trabajo", "Supervisión Presente"),
        conditions=("falta de percepcion de riesgo", "prisa", "falta de comunicacion"),
    ),
}

# Repli sur le type du premier incident quand le texte est trop pauvre
_TYPE_FALLBACKS: List[Tuple[Tuple[str, ...], str]] = [
    (("vehic", "transito"), "TRANSITO"),
    (("caida", "nivel"), "CAIDAS"),
    (("ambiental", "derrame"), "AMBIENTAL"),
    (("pozo", "surgencia"), "POZO"),
]


# =============================================================================
# SECTION 2: ANALYSE
# =============================================================================

@dataclass
class TextAnalysis:
    dominant_risk: str
    scores: Dict[str, int] = field(default_factory=dict)
    detected_verbs: List[str] = field(default_factory=list)
    detected_conditions: List[str] = field(default_factory=list)


def _fold(text: str) -> str:
    return strip_accents(text or "").lower()


def analyze_incidents_text(incidents) -> TextAnalysis:
    """Catégorie de risque dominante pour un groupe d'incidents"""
    incidents = list(incidents)
    combined = _fold(" ".join(f"{i.description} {i.name} {i.type} {i.location}" for i in incidents))

    analysis = TextAnalysis(dominant_risk="GENERAL")
    for category, profile in RISK_DICTIONARY.items():
        analysis.scores[category] = sum(
            2 * len(re.findall(re.escape(keyword), combined)) for keyword in profile.keywords
        )
        analysis.detected_verbs.extend(v for v in profile.verbs if v in combined)
        analysis.detected_conditions.extend(c for c in profile.conditions if c in combined)

    # Égalité: la première catégorie du dictionnaire gagne
    best_score = max(analysis.scores.values(), default=0)
    if best_score > 0:
        analysis.dominant_risk = next(c for c, s in analysis.scores.items() if s == best_score)

    if best_score < 2 and incidents:
        first_type = _fold(incidents[0].type)
        for needles, category in _TYPE_FALLBACKS:
            if any(needle in first_type for needle in needles):
                analysis.dominant_risk = category
                break

    return analysis


def get_smart_suggested_actions(incidents) -> List[str]:
    """
    Deux actions recommandées pour un groupe d'incidents (ex: ceux d'un site).

    Returns:
        [renforcement d'un contrôle, vérification d'un second contrôle]
    """
    analysis = analyze_incidents_text(incidents)
    profile = RISK_DICTIONARY[analysis.dominant_risk]

    control_1 = profile.controls[0]
    control_2 = profile.controls[1] if len(profile.controls) > 1 else control_1
    context = analysis.detected_conditions[0] if analysis.detected_conditions else profile.conditions[0]
    recurring = (f"la acción de {analysis.detected_verbs[0]}" if analysis.detected_verbs
                 else "los procedimientos estándar")

    logger.debug(f"Risque dominant: {analysis.dominant_risk} ({analysis.scores.get(analysis.dominant_risk, 0)})")
    return [
        f"Reforzar {control_1.lower()} ante presencia de {context} "
        f"para prevenir eventos de tipo {analysis.dominant_risk.lower()}.",
        f"Verificar condiciones del entorno y asegurar cumplimiento de {control_2.lower()} "
        f"relacionado con {recurring}.",
    ]
