"""
Substitution values for the stage prompt templates.

Values come from three places, later ones winning:
1. the patient record
2. earlier completed/reviewed/approved analyses of the same patient
3. the caller's inputs for this run (non-strings are serialized as JSON)

``ragContext`` is added by the pipeline after retrieval.
"""

from __future__ import annotations

import json
from typing import Any, Iterable, Mapping, Optional

from api.config_models import AnalysisTypeEnum

NOT_PROVIDED = "Not provided"

# Statuses whose results may feed later stages.
USABLE_STATUSES = ("completed", "reviewed", "approved")

# Field holding the one-paragraph synthesis of each stage's result.
_SYNTHESIS_FIELD = {
    AnalysisTypeEnum.LABORATORY.value: "summary",
    AnalysisTypeEnum.TCM.value: "energeticDiagnosis",
    AnalysisTypeEnum.CHRONOLOGY.value: "chronologicalSynthesis",
    AnalysisTypeEnum.IFM.value: "ifmSynthesis",
    AnalysisTypeEnum.TREATMENT_PLAN.value: "executiveSummary",
}


def to_text(value: Any) -> str:
    if value is None or value == "" or value == [] or value == {}:
        return NOT_PROVIDED
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False, indent=2)


def _join(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        items = [str(v) for v in value if v]
        return ", ".join(items) if items else NOT_PROVIDED
    return to_text(value)


def patient_values(patient: Mapping[str, Any]) -> dict[str, str]:
    lifestyle = patient.get("lifestyle") or {}
    if not isinstance(lifestyle, dict):
        lifestyle = {}

    def lifestyle_value(*keys: str) -> str:
        for key in keys:
            if lifestyle.get(key):
                return to_text(lifestyle[key])
        return NOT_PROVIDED

    summary = {
        "name": patient.get("name"),
        "age": patient.get("age"),
        "lifeCycle": patient.get("life_cycle"),
        "mainSymptoms": patient.get("main_symptoms") or [],
        "menstrualCycle": patient.get("menstrual_cycle"),
        "medicalHistory": patient.get("medical_history"),
        "constitution": patient.get("constitution"),
        "lifestyle": lifestyle,
        "treatmentGoals": patient.get("treatment_goals") or [],
    }
    summary = {k: v for k, v in summary.items() if v not in (None, "", [], {})}

    history = to_text(patient.get("medical_history"))
    menstrual = to_text(patient.get("menstrual_cycle"))
    age = patient.get("age")

    return {
        "patientName": to_text(patient.get("name")),
        "patientAge": str(age) if age is not None else NOT_PROVIDED,
        "patientData": json.dumps(summary, ensure_ascii=False, indent=2),
        "lifeCycle": to_text(patient.get("life_cycle")),
        "mainSymptoms": _join(patient.get("main_symptoms")),
        "menstrualCycle": menstrual,
        "menstrualPattern": menstrual,
        "relevantHistory": history,
        "clinicalHistory": history,
        "constitution": to_text(patient.get("constitution")),
        "sleepQuality": lifestyle_value("sleep_quality", "sleepQuality"),
        "stressLevel": lifestyle_value("stress_level", "stressLevel"),
        "digestion": lifestyle_value("digestion"),
        "emotionalHistory": lifestyle_value("emotional_history", "emotionalHistory"),
        "therapeuticGoals": _join(patient.get("treatment_goals")),
        "patientPreferences": lifestyle_value("preferences", "patient_preferences"),
    }


def previous_analysis_values(previous: Iterable[Mapping[str, Any]]) -> dict[str, str]:
    usable = [
        a for a in previous
        if a.get("status") in USABLE_STATUSES and a.get("analysis")
    ]
    if not usable:
        return {
            "previousAnalyses": NOT_PROVIDED,
            "integratedAnalyses": NOT_PROVIDED,
            "completeSynthesis": NOT_PROVIDED,
            "clinicalSynthesis": NOT_PROVIDED,
        }

    # Oldest first so later stages read the story in order.
    usable.sort(key=lambda a: a.get("created_at") or "")
    entries = [
        {
            "type": a["analysis_type"],
            "date": a.get("created_at"),
            "status": a["status"],
            "result": a["analysis"],
        }
        for a in usable
    ]
    full = json.dumps(entries, ensure_ascii=False, indent=2)

    synthesis_lines = []
    for a in usable:
        field = _SYNTHESIS_FIELD.get(a["analysis_type"])
        text = a["analysis"].get(field) if field else None
        if text:
            synthesis_lines.append(f"- {a['analysis_type']}: {text}")

    return {
        "previousAnalyses": full,
        "integratedAnalyses": full,
        "completeSynthesis": full,
        "clinicalSynthesis": "\n".join(synthesis_lines) or NOT_PROVIDED,
    }


def build_values(
    patient: Mapping[str, Any],
    previous_analyses: Iterable[Mapping[str, Any]] = (),
    inputs: Optional[Mapping[str, Any]] = None,
) -> dict[str, str]:
    """All template values for one run. ``ragContext`` is not included."""
    values = patient_values(patient)
    values.update(previous_analysis_values(previous_analyses))
    for key, value in (inputs or {}).items():
        values[key] = value if isinstance(value, str) else json.dumps(
            value, ensure_ascii=False, indent=2,
        )
    return values
