from hse_text_analysis import analyze_incidents_text, get_smart_suggested_actions, RISK_DICTIONARY

from conftest import make_incident


def incident(description, type="Primeros Auxilios"):
    return make_incident(description=description, name="", type=type, location="")


def test_dominant_risk_from_keywords():
    analysis = analyze_incidents_text([incident("Derrame de aceite por fuga en manguera")])
    assert analysis.dominant_risk == "AMBIENTAL"
    assert analysis.scores["AMBIENTAL"] == 6


def test_accents_are_ignored():
    analysis = analyze_incidents_text([incident("Caída desde la plataforma; resbaló")])
    assert analysis.dominant_risk == "CAIDAS"
    assert "resbalo" in analysis.detected_verbs


def test_weak_text_falls_back_on_type():
    analysis = analyze_incidents_text([incident("Sin detalles", type="Incidente de Tránsito")])
    assert analysis.scores["TRANSITO"] == 0
    assert analysis.dominant_risk == "TRANSITO"


def test_no_signal_is_general():
    assert analyze_incidents_text([incident("Sin detalles")]).dominant_risk == "GENERAL"
    assert analyze_incidents_text([]).dominant_risk == "GENERAL"


def test_suggested_actions_sentences():
    actions = get_smart_suggested_actions([
        incident("El operario resbalo en la escalera por presencia de liquidos"),
    ])

    assert actions == [
        "Reforzar tres puntos de apoyo ante presencia de presencia de liquidos "
        "para prevenir eventos de tipo caidas.",
        "Verificar condiciones del entorno y asegurar cumplimiento de orden y limpieza "
        "relacionado con la acción de resbalo.",
    ]


def test_general_actions_use_standard_procedures():
    actions = get_smart_suggested_actions([incident("Sin detalles")])
    control = RISK_DICTIONARY["GENERAL"].controls[0].lower()
    assert actions[0].startswith(f"Reforzar {control}")
    assert actions[1].endswith("relacionado con los procedimientos estándar.")
