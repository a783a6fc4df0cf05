"""Shared fixtures: a temp SQLite database, an in-memory keychain, sample results."""

import copy

import pytest

from storage.database import Database
from storage.keychain import KeychainManager

COMPANY = "clinic-a"
OTHER_COMPANY = "clinic-b"

LABORATORY_RESULT = {
    "summary": "TSH above the functional range with low ferritin.",
    "results": [
        {
            "marker": "TSH",
            "value": 3.8,
            "unit": "mIU/L",
            "referenceRange": "0.4-4.5",
            "functionalRange": "1.0-2.0",
            "status": "suboptimal",
            "interpretation": "Possible subclinical hypothyroid tendency.",
            "priority": "high",
        },
        {
            "marker": "Ferritin",
            "value": "18",
            "unit": "ng/mL",
            "priority": "medium",
        },
    ],
    "recommendations": ["Repeat thyroid panel with free T3 and antibodies."],
}

TCM_RESULT = {
    "energeticDiagnosis": "Liver Qi stagnation with Spleen Qi deficiency.",
    "patterns": ["Liver Qi stagnation", "Spleen Qi deficiency"],
    "phytotherapyRecommendations": [
        {
            "herb": "Xiao Yao San",
            "dosage": "3g twice daily",
            "duration": "8 weeks",
            "purpose": "Move Liver Qi and support the Spleen.",
        },
    ],
    "acupunctureRecommendations": {
        "points": ["LR3", "SP6", "ST36"],
        "frequency": "weekly",
    },
}

CHRONOLOGY_RESULT = {
    "timeline": [
        {
            "date": "2019-03",
            "event": "Started oral contraceptive",
            "category": "treatment",
            "impact": "Cycle regularised, mood changes reported.",
        },
        {
            "date": "2023-01",
            "event": "Stopped oral contraceptive",
            "category": "treatment",
            "impact": "Cycles lengthened to 40 days.",
        },
    ],
    "chronologicalSynthesis": "Symptoms intensified after stopping hormonal contraception.",
}


def _system(status="suboptimal", score=62.5, priority="medium"):
    return {
        "status": status,
        "score": score,
        "keyIssues": ["Reduced function"],
        "priority": priority,
    }


IFM_RESULT = {
    "systemsAssessment": {
        "assimilation": _system(),
        "defenseRepair": _system("optimal", 85.5, "low"),
        "energy": _system("dysfunction", 40.5, "high"),
        "biotransformation": _system(),
        "transport": _system("optimal", 90.5, "low"),
        "communication": _system("dysfunction", 35.5, "high"),
        "structuralIntegrity": _system(),
    },
    "ifmSynthesis": "Communication and energy systems drive the presentation.",
}

TREATMENT_PLAN_RESULT = {
    "executiveSummary": "Twelve-week plan targeting thyroid and stress axis.",
    "therapeuticObjectives": ["Normalise cycle length", "Improve energy"],
    "interventions": [
        {
            "category": "nutrition",
            "intervention": "Anti-inflammatory diet",
            "rationale": "Reduce systemic inflammation.",
            "priority": 1,
        },
        {
            "category": "supplementation",
            "intervention": "Iron bisglycinate",
            "dosage": "25mg",
            "frequency": "daily",
            "rationale": "Replete ferritin.",
            "priority": 2,
        },
    ],
    "followUpSchedule": [
        {"timeframe": "6 weeks", "type": "exam", "objectives": ["Recheck ferritin"]},
    ],
}

RESULTS = {
    "laboratory": LABORATORY_RESULT,
    "tcm": TCM_RESULT,
    "chronology": CHRONOLOGY_RESULT,
    "ifm": IFM_RESULT,
    "treatment_plan": TREATMENT_PLAN_RESULT,
}


def sample_result(analysis_type: str) -> dict:
    """Deep copy of a valid result for ``analysis_type``."""
    return copy.deepcopy(RESULTS[analysis_type])


@pytest.fixture
def db(tmp_path):
    return Database(db_path=str(tmp_path / "lyz.db"))


@pytest.fixture
def keychain():
    return KeychainManager(use_keyring=False)


@pytest.fixture
def patient(db):
    return db.create_patient(
        COMPANY,
        {
            "name": "Ana Souza",
            "age": 34,
            "life_cycle": "pre_menopausal",
            "main_symptoms": ["fatigue", "irregular cycles"],
            "menstrual_cycle": "35-45 days, heavy flow",
            "medical_history": "Hypothyroidism in the family",
            "lifestyle": {"sleep_quality": "poor", "stress_level": "high"},
            "treatment_goals": ["regular cycles"],
        },
        created_by="prof-1",
    )


def make_analysis(db, patient, analysis_type="laboratory", status="completed", company_id=COMPANY):
    """Insert an analysis already in ``status`` with a valid result."""
    record = db.create_analysis(
        company_id=company_id,
        professional_id="prof-1",
        patient_id=patient["id"],
        analysis_type=analysis_type,
        input_data={},
    )
    if status != "draft":
        db.update_analysis(
            company_id,
            record["id"],
            {"status": status, "analysis": sample_result(analysis_type)},
        )
    return db.get_analysis(company_id, record["id"])
