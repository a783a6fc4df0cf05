"""Request/response models for patients, analyses, review, delivery and RAG."""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, model_validator

from analysis.delivery import DeliveryMethod
from analysis.review import ReviewStatus
from api.config_models import AnalysisTypeEnum


class LifeCycleEnum(str, Enum):
    PRE_MENOPAUSAL = "pre_menopausal"
    PERI_MENOPAUSAL = "peri_menopausal"
    POST_MENOPAUSAL = "post_menopausal"
    PREGNANT = "pregnant"
    POSTPARTUM = "postpartum"


# --- Patients ---


class PatientCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    age: Optional[int] = Field(default=None, ge=0, le=130)
    life_cycle: Optional[LifeCycleEnum] = None
    main_symptoms: list[str] = Field(default_factory=list)
    menstrual_cycle: Optional[str] = None
    medical_history: Optional[Any] = None
    constitution: Optional[str] = None
    lifestyle: dict[str, Any] = Field(default_factory=dict)
    treatment_goals: list[str] = Field(default_factory=list)
    email: Optional[str] = Field(default=None, max_length=320)
    phone: Optional[str] = None


class PatientUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    age: Optional[int] = Field(default=None, ge=0, le=130)
    life_cycle: Optional[LifeCycleEnum] = None
    main_symptoms: Optional[list[str]] = None
    menstrual_cycle: Optional[str] = None
    medical_history: Optional[Any] = None
    constitution: Optional[str] = None
    lifestyle: Optional[dict[str, Any]] = None
    treatment_goals: Optional[list[str]] = None
    email: Optional[str] = Field(default=None, max_length=320)
    phone: Optional[str] = None

    @model_validator(mode="after")
    def _name_not_cleared(self) -> "PatientUpdate":
        """name may be omitted but not set to null."""
        if "name" in self.model_fields_set and self.name is None:
            raise ValueError("name cannot be null")
        return self


class PatientResponse(PatientCreate):
    id: str
    company_id: str
    main_symptoms: Optional[list[str]] = None
    lifestyle: Optional[dict[str, Any]] = None
    treatment_goals: Optional[list[str]] = None
    created_by: Optional[str] = None
    created_at: str
    updated_at: str


class PatientListResponse(BaseModel):
    items: list[PatientResponse]
    total: int


# --- Analyses ---


class RunAnalysisRequest(BaseModel):
    analysis_type: AnalysisTypeEnum
    patient_id: str
    inputs: dict[str, Any] = Field(default_factory=dict)


class AnalysisResponse(BaseModel):
    id: str
    company_id: str
    professional_id: str
    patient_id: str
    analysis_type: AnalysisTypeEnum
    status: ReviewStatus
    input_data: Optional[dict[str, Any]] = None
    analysis: Optional[dict[str, Any]] = None
    ai_metadata: Optional[dict[str, Any]] = None
    rag_metadata: Optional[dict[str, Any]] = None
    error_category: Optional[str] = None
    error_message: Optional[str] = None
    review_notes: Optional[str] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[str] = None
    decided_by: Optional[str] = None
    decided_at: Optional[str] = None
    delivery: Optional[dict[str, Any]] = None
    created_at: str
    updated_at: str


class AnalysisListResponse(BaseModel):
    items: list[AnalysisResponse]
    total: int


class ReviewRequest(BaseModel):
    notes: str = Field(min_length=1)


class DecisionRequest(BaseModel):
    approved: bool
    notes: Optional[str] = None


class ContentEditRequest(BaseModel):
    analysis: dict[str, Any]


class DeliveryRequest(BaseModel):
    method: DeliveryMethod
    message: Optional[str] = None


# --- RAG ---


class RagDocumentCreate(BaseModel):
    name: str = Field(min_length=1, max_length=300)
    content: str = Field(min_length=1)
    category: Optional[str] = None


class RagDocumentResponse(BaseModel):
    id: str
    company_id: str
    name: str
    category: Optional[str] = None
    chunk_count: int
    created_by: Optional[str] = None
    created_at: str


class RagSearchRequest(BaseModel):
    query: str = Field(min_length=1)
    category: Optional[str] = None
    limit: int = Field(default=5, ge=1, le=10)
    threshold: float = Field(default=0.7, ge=0.0, le=1.0)


class RagSnippetResponse(BaseModel):
    content: str
    score: float
    source_id: str
    source_name: str


class RagSearchResponse(BaseModel):
    query: str
    results: list[RagSnippetResponse]
