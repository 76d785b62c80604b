import io
from typing import Dict, List

import pandas as pd
import pytest

from hse_models import Incident


def make_incident(incident_id: str = "INC-1", **overrides) -> Incident:
    values = dict(
        incident_id=incident_id,
        name="Golpe en mano",
        description="Golpe con herramienta",
        site="BASE NEUQUEN",
        type="Primeros Auxilios",
        location="Taller",
        potential_risk="Baja",
        fecha_evento="2025-03-10",
        year=2025,
        month=3,
        is_verified=True,
    )
    values.update(overrides)
    return Incident(**values)


def build_workbook(sheets: Dict[str, List[Dict]]) -> bytes:
    """Classeur .xlsx en mémoire, une feuille par entrée"""
    buffer = io.BytesIO()
    with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
        for name, rows in sheets.items():
            pd.DataFrame(rows).to_excel(writer, sheet_name=name, index=False)
    return buffer.getvalue()


@pytest.fixture
def incident_row() -> Dict:
    return {
        "ID": "INC-100",
        "Nombre": "Caída de nivel",
        "Sitio": "BASE NEUQUEN",
        "Fecha Carga": "15/03/2025",
        "Tipo de Incidente": "Lost Time",
        "Ubicación": "Playa de maniobras",
        "Potencialidad del Incidente": "Alta",
        "Año": 2025,
        "Mes": 3,
        "Breve descripcion del Incidente": "Resbaló en la escalera",
        "Zona del Cuerpo Afectada": "RODILLA DERECHA",
    }
