from datetime import datetime, date

import numpy as np
import pandas as pd
import pytest

from hse_normalizer import (
    find_column, normalize_text, parse_date, sanitize_year, sanitize_month,
    parse_int, parse_bool, is_missing, safe_text,
)


@pytest.mark.parametrize("value, expected", [
    ("2.026", 2026),
    ("26", 2026),
    ("2026.0", 2026),
    ("2,026", 2026),
    (2026, 2026),
    (2026.0, 2026),
    (0, 2000),
    ("1990", 1990),
    ("2100", 2100),
    ("1899", None),
    ("2101", None),
    ("abc", None),
    ("", None),
    (None, None),
    (float("nan"), None),
    (2026.5, None),
    ("-5", None),
])
def test_sanitize_year(value, expected):
    assert sanitize_year(value) == expected


@pytest.mark.parametrize("value, expected", [
    (45658, "2025-01-01"),
    (45658.75, "2025-01-01"),
    ("45658", "2025-01-01"),
    (25569, "1970-01-01"),
    ("2025-03-10T08:00:00", "2025-03-10"),
    ("2025-03-10", "2025-03-10"),
    ("10/03/2025", "2025-03-10"),
    ("10-03-2025", "2025-03-10"),
    ("10/03/2025 14:35", "2025-03-10"),
    ("1/2/25", "2025-02-01"),
    (datetime(2025, 3, 10, 9, 30), "2025-03-10"),
    (date(2024, 12, 31), "2024-12-31"),
    (pd.Timestamp("2025-06-01 10:00"), "2025-06-01"),
])
def test_parse_date(value, expected):
    assert parse_date(value) == expected


@pytest.mark.parametrize("value", [
    None, "", "   ", "sin fecha", "31/02/2025", "99/99/2025", pd.NaT, float("nan"),
    True, float("inf"), object(),
])
def test_parse_date_unparseable_returns_none(value):
    assert parse_date(value) is None


def test_find_column_is_case_and_accent_insensitive():
    headers = ["id", "NOMBRE", "Ubicacion", "Fecha Carga"]
    assert find_column(headers, ["Ubicación", "Lugar"]) == "Ubicacion"
    assert find_column(headers, ["Nombre"]) == "NOMBRE"


def test_find_column_first_alias_wins():
    headers = ["Fecha", "Fecha Carga"]
    assert find_column(headers, ["Fecha Carga", "Fecha"]) == "Fecha Carga"


def test_find_column_requires_exact_match():
    assert find_column(["Fecha de Carga Inicial"], ["Fecha de Carga"]) is None
    assert find_column([], ["ID"]) is None


def test_normalize_text():
    assert normalize_text("  Neuquén   base ") == "NEUQUEN BASE"
    assert normalize_text("Tránsito\nVehicular") == "TRANSITO VEHICULAR"
    assert normalize_text(None) == ""


def test_sanitize_month():
    assert sanitize_month("3") == 3
    assert sanitize_month(12.0) == 12
    assert sanitize_month(13) is None
    assert sanitize_month("marzo") is None


def test_parse_int_and_bool():
    assert parse_int("12,0") == 12
    assert parse_int("x", default=7) == 7
    assert parse_int(np.int64(4)) == 4
    assert parse_bool("Sí") is True
    assert parse_bool("x") is True
    assert parse_bool("No") is False
    assert parse_bool(1) is True
    assert parse_bool(None) is False


def test_missing_and_safe_text():
    assert is_missing(float("nan"))
    assert is_missing("  ")
    assert not is_missing(0)
    assert safe_text(None, "N/A") == "N/A"
    assert safe_text("  Alta ") == "Alta"
