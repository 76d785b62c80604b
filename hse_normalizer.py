"""
================================================================================
HSE NORMALIZER - Normalisation des champs bruts des exports tableur
================================================================================
Fonctions totales (elles ne lèvent jamais d'exception):

1. Résolution de colonnes (alias insensibles à la casse et aux accents)
2. Canonicalisation de texte (clé de site, libellés)
3. Analyse de dates: numéro de série tableur, ISO, JJ/MM/AAAA
4. Assainissement des années et des mois

Une entrée inexploitable retourne None: l'appelant dérive alors la valeur
d'ailleurs (date de chargement, année de la date d'événement, ...).
================================================================================
"""

import math
import re
import unicodedata
import logging
from datetime import datetime, date, timedelta
from typing import Any, Iterable, Optional, Sequence

import numpy as np
import pandas as pd

logger = logging.getLogger("HSENormalizer")


# =============================================================================
# CONSTANTES
# =============================================================================

# Jours entre l'époque tableur (1899-12-30) et l'époque Unix
EXCEL_EPOCH_OFFSET_DAYS = 25569

YEAR_MIN = 1990
YEAR_MAX = 2100

_ISO_PREFIX_RE = re.compile(r"^\d{4}-\d{2}-\d{2}")
_DMY_RE = re.compile(r"^(\d{1,2})[/-](\d{1,2})[/-](\d{4}|\d{2})(?![\d])")
_SERIAL_STRING_RE = re.compile(r"^\d+(?:\.\d+)?$")
_YEAR_DECIMAL_RE = re.compile(r"^(\d{4})[.,]0+$")
_YEAR_SEPARATORS_RE = re.compile(r"[.,]")
_DIGITS_RE = re.compile(r"^[0-9]+$")
_WHITESPACE_RE = re.compile(r"\s+")

_TRUE_TOKENS = {"SI", "S", "YES", "Y", "TRUE", "VERDADERO", "X", "1"}


# =============================================================================
# TEXTE
# =============================================================================

def is_missing(value: Any) -> bool:
    """Vrai pour None, NaN, NaT et les chaînes vides"""
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def strip_accents(text: str) -> str:
    """Supprime les diacritiques (NFD puis retrait des marques combinantes)"""
    decomposed = unicodedata.normalize("NFD", text)
    return "".join(ch for ch in decomposed if unicodedata.category(ch) != "Mn")


def normalize_text(value: Any) -> str:
    """Sans accents, espaces réduits, majuscules. Sert de clé (ex: nom de site)."""
    if is_missing(value):
        return ""
    return _WHITESPACE_RE.sub(" ", strip_accents(str(value))).strip().upper()


def safe_text(value: Any, default: str = "") -> str:
    """Texte nettoyé (trim) ou valeur par défaut si la cellule est vide"""
    if is_missing(value):
        return default
    return str(value).strip() or default


def _header_key(header: Any) -> str:
    return _WHITESPACE_RE.sub(" ", strip_accents(str(header))).strip().lower()


def find_column(headers: Iterable[Any], aliases: Sequence[str]) -> Optional[Any]:
    """
    Résout une colonne logique parmi des en-têtes imprévisibles.

    Comparaison exacte insensible à la casse et aux accents; le premier alias
    trouvé gagne. Retourne l'en-tête original, ou None.
    """
    index = {}
    for header in headers:
        index.setdefault(_header_key(header), header)

    for alias in aliases:
        found = index.get(_header_key(alias))
        if found is not None:
            return found
    return None


# =============================================================================
# DATES
# =============================================================================

def _from_serial(serial: float) -> Optional[str]:
    if math.isnan(serial) or math.isinf(serial):
        return None
    millis = round((serial - EXCEL_EPOCH_OFFSET_DAYS) * 86400 * 1000)
    moment = datetime(1970, 1, 1) + timedelta(milliseconds=millis)
    return moment.date().isoformat()


def parse_date(value: Any) -> Optional[str]:
    """
    Convertit une cellule en date ISO (YYYY-MM-DD).

    Formats acceptés:
        - numéro de série tableur (jours depuis 1899-12-30, minuit UTC)
        - chaîne préfixée ISO (10 premiers caractères repris tels quels)
        - JJ/MM/AAAA ou JJ-MM-AAAA, avec heure éventuelle en suffixe
        - cellules déjà typées (datetime, date, Timestamp)

    Returns:
        La date ISO, ou None si la valeur est inexploitable
    """
    if value is None or value is pd.NaT or isinstance(value, bool):
        return None

    try:
        if isinstance(value, datetime):
            if pd.isna(value):
                return None
            return value.date().isoformat()

        if isinstance(value, date):
            return value.isoformat()

        if isinstance(value, (int, float, np.integer, np.floating)):
            return _from_serial(float(value))

        if isinstance(value, str):
            text = value.strip()
            if not text:
                return None
            if _ISO_PREFIX_RE.match(text):
                return text[:10]
            if _SERIAL_STRING_RE.match(text):
                return _from_serial(float(text))

            match = _DMY_RE.match(text)
            if match:
                day, month, year = (int(part) for part in match.groups())
                if year < 100:
                    year += 2000
                return date(year, month, day).isoformat()

    except (TypeError, ValueError, OverflowError) as e:
        logger.debug(f"Date inexploitable {value!r}: {e}")

    return None


# =============================================================================
# ANNÉES, MOIS, NOMBRES
# =============================================================================

def sanitize_year(value: Any) -> Optional[int]:
    """
    Assainit une année saisie librement.

    "2.026" → 2026 (séparateur de milliers), "26" → 2026, "2026.0" → 2026.
    Hors de [1990, 2100] (après correction des années abrégées): None.
    """
    if is_missing(value) or isinstance(value, bool):
        return None

    try:
        if isinstance(value, (int, np.integer)):
            number = int(value)
        elif isinstance(value, (float, np.floating)):
            if not float(value).is_integer():
                return None
            number = int(value)
        else:
            text = str(value).strip()
            decimal = _YEAR_DECIMAL_RE.match(text)
            if decimal:
                text = decimal.group(1)
            digits = _YEAR_SEPARATORS_RE.sub("", text)
            if not _DIGITS_RE.match(digits):
                return None
            number = int(digits)
    except (TypeError, ValueError, OverflowError):
        return None

    if 0 <= number <= 99:
        return number + 2000
    if YEAR_MIN <= number <= YEAR_MAX:
        return number
    return None


def sanitize_month(value: Any) -> Optional[int]:
    """Mois 1-12, ou None"""
    number = parse_int(value, default=None)
    if number is not None and 1 <= number <= 12:
        return number
    return None


def parse_int(value: Any, default: Optional[int] = 0) -> Optional[int]:
    """Entier tolérant (\"12\", 12.0, \"12,0\"); la valeur par défaut sinon"""
    if is_missing(value) or isinstance(value, bool):
        return default
    try:
        if isinstance(value, str):
            value = value.strip().replace(",", ".")
        number = float(value)
        if math.isnan(number) or math.isinf(number):
            return default
        return int(number)
    except (TypeError, ValueError, OverflowError):
        return default


def parse_bool(value: Any) -> bool:
    """Oui/Non tableur: SI, YES, TRUE, X, 1 → True"""
    if is_missing(value):
        return False
    if isinstance(value, (bool, np.bool_)):
        return bool(value)
    if isinstance(value, (int, float, np.integer, np.floating)):
        return not math.isnan(float(value)) and float(value) != 0
    return normalize_text(value) in _TRUE_TOKENS
