"""Pydantic models for the global AI configuration (/settings/global-ai-config)."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class LLMProviderEnum(str, Enum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GOOGLE = "google"


class AnalysisTypeEnum(str, Enum):
    LABORATORY = "laboratory"
    TCM = "tcm"
    CHRONOLOGY = "chronology"
    IFM = "ifm"
    TREATMENT_PLAN = "treatment_plan"


class AnalysisTypeConfig(BaseModel):
    """Settings and prompt templates for one analysis stage."""

    provider: LLMProviderEnum
    model: str = Field(min_length=1)
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=4000, ge=100, le=8000)
    system_prompt: str = Field(min_length=1)
    user_prompt_template: str = Field(min_length=1)
    rag_enabled: bool = True
    rag_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    rag_max_results: int = Field(default=3, ge=1, le=10)


class ApiKeys(BaseModel):
    openai: Optional[str] = None
    anthropic: Optional[str] = None
    google: Optional[str] = None

    def for_provider(self, provider: LLMProviderEnum | str) -> Optional[str]:
        value = provider.value if isinstance(provider, LLMProviderEnum) else provider
        return getattr(self, value, None)


class GlobalAIConfig(BaseModel):
    """The single deployment-wide AI configuration record."""

    api_keys: ApiKeys = Field(default_factory=ApiKeys)
    laboratory: AnalysisTypeConfig
    tcm: AnalysisTypeConfig
    chronology: AnalysisTypeConfig
    ifm: AnalysisTypeConfig
    treatment_plan: AnalysisTypeConfig
    version: str = "1.0.0"
    last_updated_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def for_type(self, analysis_type: AnalysisTypeEnum) -> AnalysisTypeConfig:
        return getattr(self, analysis_type.value)

    def stage_configs(self) -> dict[str, AnalysisTypeConfig]:
        return {t.value: self.for_type(t) for t in AnalysisTypeEnum}


class GlobalAIConfigUpdate(BaseModel):
    """Partial update. Stages left out keep their current settings."""

    api_keys: Optional[ApiKeys] = None
    laboratory: Optional[AnalysisTypeConfig] = None
    tcm: Optional[AnalysisTypeConfig] = None
    chronology: Optional[AnalysisTypeConfig] = None
    ifm: Optional[AnalysisTypeConfig] = None
    treatment_plan: Optional[AnalysisTypeConfig] = None


class ProviderTestRequest(BaseModel):
    provider: LLMProviderEnum
    model: Optional[str] = None
    api_key: Optional[str] = None


class ProviderTestResponse(BaseModel):
    success: bool
    provider: LLMProviderEnum
    model: str
    response_time_ms: int
    message: Optional[str] = None
    error: Optional[str] = None
