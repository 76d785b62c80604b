"""
HSE Data Ingestion - Lecture des exports d'incidents (classeur .xlsx)
=====================================================================
Classeur binaire → lignes brutes (Bronze) → Incidents (Silver)

- Sélection de la feuille « query » (sinon la première)
- Contrat de données: colonnes obligatoires manquantes → avertissements
- Identifiants en double: avertissement, la dernière occurrence gagne
- Canal de parsing hors du thread appelant (requête / réponse unique)
"""

import io
import logging
from concurrent.futures import ThreadPoolExecutor, Future
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional, Any, Tuple, Union, Iterable

import pandas as pd

from hse_models import Incident, MappingRule
from hse_harmonizer import (
    HSEHarmonizer, resolve_columns, missing_required_columns, merge_rules,
)
from hse_normalizer import safe_text, is_missing

logger = logging.getLogger("HSEIngestion")

QUERY_SHEET = "query"
EMPTY_WORKBOOK_MESSAGE = "El archivo Excel está vacío o no se pudo leer la hoja correctamente."
WORKER_FALLBACK_ERROR = "Unknown error in worker"


# ============================================================
# EXCEPTIONS
# ============================================================

class HSEIngestionError(Exception):
    """Erreur de base de l'ingestion"""


class WorkbookReadError(HSEIngestionError):
    """Octets illisibles comme classeur"""


class WorkbookEmptyError(HSEIngestionError):
    """Feuille sélectionnée sans aucune ligne"""

    def __init__(self, message: str = EMPTY_WORKBOOK_MESSAGE):
        super().__init__(message)


# ============================================================
# RÉSULTATS
# ============================================================

@dataclass
class ImportReport:
    """Erreurs et avertissements de qualité collectés pendant l'import"""
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    sheet_name: Optional[str] = None
    rows_read: int = 0

    def to_dict(self) -> Dict:
        return {
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "sheet_name": self.sheet_name,
            "rows_read": self.rows_read,
        }


@dataclass
class ParseResult:
    incidents: List[Incident]
    rules: List[MappingRule]
    report: ImportReport


# ============================================================
# LECTURE DU CLASSEUR
# ============================================================

def select_sheet(sheet_names: Iterable[str]) -> str:
    """« query » exact (sans casse, trim), sinon contenant « query », sinon la première"""
    names = list(sheet_names)
    if not names:
        raise WorkbookEmptyError()
    for name in names:
        if str(name).strip().lower() == QUERY_SHEET:
            return name
    for name in names:
        if QUERY_SHEET in str(name).lower():
            return name
    return names[0]


def read_workbook(data: bytes) -> Tuple[str, pd.DataFrame]:
    """
    Lit la feuille d'incidents d'un classeur.

    Returns:
        (nom de la feuille, DataFrame des cellules brutes)

    Raises:
        WorkbookReadError: octets illisibles
        WorkbookEmptyError: aucune ligne dans la feuille sélectionnée
    """
    try:
        workbook = pd.ExcelFile(io.BytesIO(data), engine="openpyxl")
    except Exception as e:
        raise WorkbookReadError(f"No se pudo leer el archivo Excel: {e}") from e

    sheet = select_sheet(workbook.sheet_names)
    frame = workbook.parse(sheet, dtype=object).dropna(how="all")

    if frame.empty:
        raise WorkbookEmptyError()

    logger.info(f"📥 Feuille '{sheet}': {len(frame)} lignes, {len(frame.columns)} colonnes")
    return sheet, frame


def frame_to_rows(frame: pd.DataFrame) -> List[Dict[str, Any]]:
    """Lignes en dictionnaires, cellules vides → None"""
    cleaned = frame.astype(object).where(pd.notna(frame), None)
    return [
        {str(header): value for header, value in record.items()}
        for record in cleaned.to_dict(orient="records")
    ]


# ============================================================
# PARSING
# ============================================================

def _check_year_cells(rows: List[Dict], header: Optional[str], report: ImportReport) -> None:
    if header is None:
        return
    for position, row in enumerate(rows, start=2):
        value = row.get(header)
        if not is_missing(value) and isinstance(value, str):
            report.warnings.append(f"Fila {position}: '{header}' debería ser numérico (valor: {value}).")


def parse_incidents_workbook(data: bytes, existing_rules: Iterable[MappingRule] = (),
                             today: date = None) -> ParseResult:
    """
    Classeur binaire → incidents classifiés + règles de mapping complétées.

    Args:
        data: Contenu du fichier .xlsx
        existing_rules: Règles de mapping connues
        today: Date de repli quand une ligne n'a aucune date exploitable

    Returns:
        ParseResult (incidents, règles, rapport d'import)
    """
    sheet, frame = read_workbook(data)
    rows = frame_to_rows(frame)
    headers = [str(h) for h in frame.columns]
    report = ImportReport(sheet_name=sheet, rows_read=len(rows))

    columns = resolve_columns(headers)
    for label in missing_required_columns(columns):
        report.warnings.append(f"Falta la columna requerida '{label}'. Se usarán valores por defecto.")
    _check_year_cells(rows, columns.get("year"), report)

    type_header = columns.get("type")
    type_labels = [safe_text(row.get(type_header)) for row in rows] if type_header else []
    rules = merge_rules(existing_rules, type_labels)

    harmonizer = HSEHarmonizer(rules, today=today)
    incidents = harmonizer.transform_batch(rows, columns)

    # Dernière occurrence gagne, position de la première conservée
    by_id: Dict[str, Incident] = {}
    for incident in incidents:
        if incident.incident_id in by_id:
            report.warnings.append(f"ID duplicado '{incident.incident_id}': se conserva la última fila.")
        by_id[incident.incident_id] = incident

    stats = harmonizer.get_stats()
    if stats["records_failed"]:
        report.errors.append(f"{stats['records_failed']} fila(s) no pudieron procesarse.")
    if stats["records_unverified"]:
        report.warnings.append(f"{stats['records_unverified']} incidente(s) requieren revisión manual.")

    for warning in report.warnings:
        logger.warning(warning)

    logger.info(f"✅ Import: {len(by_id)} incidents, {len(rules)} règles, {len(report.warnings)} avertissements")
    return ParseResult(incidents=list(by_id.values()), rules=rules, report=report)


# ============================================================
# CANAL DE PARSING (requête / réponse unique)
# ============================================================

@dataclass(frozen=True)
class ParseRequest:
    buffer: bytes
    rules: Tuple[MappingRule, ...] = ()


@dataclass(frozen=True)
class ParseSuccess:
    incidents: Tuple[Incident, ...]
    rules: Tuple[MappingRule, ...]
    report: ImportReport


@dataclass(frozen=True)
class ParseFailure:
    error: str


ParseResponse = Union[ParseSuccess, ParseFailure]


def handle_parse_request(request: ParseRequest) -> ParseResponse:
    """Côté travailleur: toute exception devient un ParseFailure"""
    try:
        result = parse_incidents_workbook(request.buffer, request.rules)
    except Exception as e:
        logger.error(f"❌ Parsing échoué: {e}")
        return ParseFailure(error=str(e) or WORKER_FALLBACK_ERROR)
    return ParseSuccess(
        incidents=tuple(result.incidents),
        rules=tuple(result.rules),
        report=result.report,
    )


class WorkbookParseChannel:
    """
    Déporte le parsing hors du thread appelant.

    Contrat: un seul send(), puis receive() retourne exactement une réponse.
    Pas de progression partielle, pas d'annulation, pas de délai.
    """

    def __init__(self):
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="hse-parse")
        self._future: Optional[Future] = None

    def send(self, request: ParseRequest) -> None:
        if self._future is not None:
            raise RuntimeError("WorkbookParseChannel est à usage unique: requête déjà envoyée")
        self._future = self._executor.submit(handle_parse_request, request)
        self._executor.shutdown(wait=False)

    def receive(self) -> ParseResponse:
        """Bloque jusqu'à la réponse"""
        if self._future is None:
            raise RuntimeError("Aucune requête envoyée sur ce canal")
        return self._future.result()
