"""
Expected result shapes, one per analysis stage.

The same models are used twice: their JSON schema is appended to the system
prompt to instruct the model, and the provider's answer is validated against
them before anything is persisted. Keys are camelCase because that is the
contract the prompts ask for.
"""

from __future__ import annotations

import json
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from api.config_models import AnalysisTypeEnum


class _ResultModel(BaseModel):
    # Extra keys are kept so a valid answer round-trips field-for-field.
    model_config = ConfigDict(extra="allow")


class Priority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


# --- laboratory ---


class LabMarkerResult(_ResultModel):
    marker: str
    value: Union[str, float]
    unit: Optional[str] = None
    referenceRange: Optional[str] = None
    functionalRange: Optional[str] = None
    status: Optional[str] = None
    interpretation: Optional[str] = None
    priority: Optional[Priority] = None


class LaboratoryResult(_ResultModel):
    summary: str
    results: list[LabMarkerResult]
    functionalInsights: list[str] = Field(default_factory=list)
    recommendations: list[str]
    riskFactors: list[str] = Field(default_factory=list)
    followUp: Optional[Union[str, list[str]]] = None


# --- tcm ---


class HerbalRecommendation(_ResultModel):
    herb: str
    dosage: str
    duration: str
    purpose: str


class AcupunctureRecommendation(_ResultModel):
    points: list[str]
    frequency: Optional[str] = None
    duration: Optional[str] = None


class TCMResult(_ResultModel):
    energeticDiagnosis: str
    patterns: list[str] = Field(default_factory=list)
    phytotherapyRecommendations: list[HerbalRecommendation]
    acupunctureRecommendations: AcupunctureRecommendation
    lifestyleRecommendations: list[str] = Field(default_factory=list)


# --- chronology ---


class TimelineCategory(str, Enum):
    MENSTRUAL = "menstrual"
    SYMPTOM = "symptom"
    TREATMENT = "treatment"
    LIFESTYLE = "lifestyle"
    OTHER = "other"


class TimelineEvent(_ResultModel):
    date: str
    event: str
    category: TimelineCategory
    impact: str


class TemporalPattern(_ResultModel):
    pattern: str
    frequency: str
    triggers: list[str] = Field(default_factory=list)


class CriticalMoment(_ResultModel):
    date: str
    event: str
    significance: str


class ChronologyResult(_ResultModel):
    timeline: list[TimelineEvent]
    patterns: list[TemporalPattern] = Field(default_factory=list)
    criticalMoments: list[CriticalMoment] = Field(default_factory=list)
    chronologicalSynthesis: Optional[str] = None


# --- ifm ---


class SystemStatus(str, Enum):
    OPTIMAL = "optimal"
    SUBOPTIMAL = "suboptimal"
    DYSFUNCTION = "dysfunction"
    CRITICAL = "critical"


class SystemAssessment(_ResultModel):
    status: SystemStatus
    score: float = Field(ge=0, le=100)
    keyIssues: list[str]
    priority: Priority


class SystemsAssessment(_ResultModel):
    assimilation: SystemAssessment
    defenseRepair: SystemAssessment
    energy: SystemAssessment
    biotransformation: SystemAssessment
    transport: SystemAssessment
    communication: SystemAssessment
    structuralIntegrity: SystemAssessment


class SystemInterconnection(_ResultModel):
    system1: str
    system2: str
    connection: str
    impact: Optional[str] = None


class SystemicConnections(_ResultModel):
    primaryDysfunction: str
    cascadeEffects: list[str] = Field(default_factory=list)
    interconnections: list[SystemInterconnection] = Field(default_factory=list)
    rootCauses: list[str] = Field(default_factory=list)


class IFMResult(_ResultModel):
    systemsAssessment: SystemsAssessment
    systemicConnections: Optional[SystemicConnections] = None
    rootCauseAnalysis: Optional[dict] = None
    interventionPriority: Optional[dict] = None
    monitoringPlan: Optional[dict] = None
    ifmSynthesis: str


# --- treatment plan ---


class InterventionCategory(str, Enum):
    NUTRITION = "nutrition"
    SUPPLEMENTATION = "supplementation"
    LIFESTYLE = "lifestyle"
    MEDICATION = "medication"
    THERAPY = "therapy"
    MONITORING = "monitoring"


class FollowUpType(str, Enum):
    CONSULTATION = "consultation"
    EXAM = "exam"
    ASSESSMENT = "assessment"


class Intervention(_ResultModel):
    category: InterventionCategory
    intervention: str
    dosage: Optional[str] = None
    frequency: Optional[str] = None
    duration: Optional[str] = None
    rationale: str
    priority: int = Field(ge=1, le=5)


class FollowUp(_ResultModel):
    timeframe: str
    type: FollowUpType
    objectives: list[str] = Field(default_factory=list)


class TreatmentPlanResult(_ResultModel):
    executiveSummary: str
    diagnosticSynthesis: Optional[str] = None
    therapeuticObjectives: list[str]
    interventions: list[Intervention]
    followUpSchedule: list[FollowUp] = Field(default_factory=list)
    expectedOutcomes: list[str] = Field(default_factory=list)
    contraindications: list[str] = Field(default_factory=list)
    patientGuidelines: list[str] = Field(default_factory=list)


RESULT_SCHEMAS: dict[AnalysisTypeEnum, type[BaseModel]] = {
    AnalysisTypeEnum.LABORATORY: LaboratoryResult,
    AnalysisTypeEnum.TCM: TCMResult,
    AnalysisTypeEnum.CHRONOLOGY: ChronologyResult,
    AnalysisTypeEnum.IFM: IFMResult,
    AnalysisTypeEnum.TREATMENT_PLAN: TreatmentPlanResult,
}


def result_schema(analysis_type: AnalysisTypeEnum) -> type[BaseModel]:
    return RESULT_SCHEMAS[analysis_type]


def schema_instruction(analysis_type: AnalysisTypeEnum) -> str:
    """Text appended to the system prompt describing the required JSON."""
    schema = result_schema(analysis_type).model_json_schema()
    return (
        "\n\n## Response format\n"
        "Reply with a single JSON object and nothing else. No prose before or "
        "after it. It must validate against this JSON Schema:\n"
        + json.dumps(schema, ensure_ascii=False, indent=2)
    )
