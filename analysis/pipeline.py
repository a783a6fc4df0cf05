"""
Analysis orchestration: one run of one stage for one patient.

    draft record -> stage config + key -> values -> RAG -> render
        -> provider (with retry) -> schema validation -> completed record

Every failure that is an AnalysisError moves the record to ``error`` with
its category and message, then propagates with ``analysis_id`` attached.
Anything else, cancellation included, is recorded as ``InternalError``.
Runs are never retried here; a new run creates a new record.
"""

from __future__ import annotations

import logging
import sqlite3
import time
from typing import Any, Callable, Mapping, Optional

from analysis.context import USABLE_STATUSES, build_values
from analysis.errors import (
    AnalysisError,
    ConfigurationError,
    InvalidTransition,
    MalformedResponse,
    PersistenceError,
)
from analysis.review import ReviewStatus, transition
from api.config_models import AnalysisTypeConfig, AnalysisTypeEnum, GlobalAIConfig
from llm.client import LLMClient, timeout_for as default_timeout_for
from llm.pricing import compute_cost, price_for
from llm.response_parser import parse_and_validate_response
from llm.retrieval import Retriever, build_rag_query, format_rag_context
from llm.retry import DEFAULT_MAX_ATTEMPTS, RetryState, with_retry
from llm.schemas import schema_instruction
from llm.template import render_template
from storage.database import Database

logger = logging.getLogger(__name__)

# Previous analyses fed into later stages.
_PREVIOUS_LIMIT = 20


class AnalysisPipeline:
    """Runs analyses against an injected GlobalAIConfig and store."""

    def __init__(
        self,
        config: GlobalAIConfig,
        store: Database,
        client_factory: Callable[..., Any] = LLMClient,
        retriever: Optional[Retriever] = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        timeout_for: Callable[[str], float] = default_timeout_for,
    ):
        self.config = config
        self.store = store
        self.client_factory = client_factory
        self.retriever = retriever
        self.max_attempts = max_attempts
        self.timeout_for = timeout_for

    async def run(
        self,
        analysis_type: AnalysisTypeEnum | str,
        company_id: str,
        professional_id: str,
        patient: Mapping[str, Any],
        inputs: Optional[Mapping[str, Any]] = None,
    ) -> dict[str, Any]:
        """Run one stage and return the completed analysis record."""
        analysis_type = AnalysisTypeEnum(analysis_type)
        inputs = dict(inputs or {})
        started = time.monotonic()

        try:
            record = self.store.create_analysis(
                company_id=company_id,
                professional_id=professional_id,
                patient_id=patient["id"],
                analysis_type=analysis_type.value,
                input_data=inputs,
                status=ReviewStatus.DRAFT.value,
            )
        except sqlite3.Error as e:
            logger.exception("Could not create %s analysis record", analysis_type.value)
            raise PersistenceError(f"Could not create analysis record: {e}") from e

        analysis_id = record["id"]
        logger.info(
            "Analysis %s started (%s, company %s)",
            analysis_id, analysis_type.value, company_id,
        )

        try:
            return await self._execute(
                analysis_id, analysis_type, company_id, patient, inputs, started,
            )
        except AnalysisError as e:
            e.analysis_id = analysis_id
            self._mark_error(
                company_id, analysis_id, e.category, e.message,
                raw_output=e.raw_text if isinstance(e, MalformedResponse) else None,
            )
            raise
        except BaseException as e:
            # Cancellation or a bug; the record must not stay in draft.
            self._mark_error(
                company_id, analysis_id, "InternalError",
                f"Run aborted ({type(e).__name__})",
            )
            raise

    def _stage_config(self, analysis_type: AnalysisTypeEnum) -> tuple[AnalysisTypeConfig, str]:
        stage = getattr(self.config, analysis_type.value, None)
        if stage is None:
            raise ConfigurationError(
                f"No configuration for analysis type '{analysis_type.value}'",
                missing=[analysis_type.value],
            )
        missing = [
            name for name in ("model", "system_prompt", "user_prompt_template")
            if not (getattr(stage, name, None) or "").strip()
        ]
        if missing:
            raise ConfigurationError(
                f"Configuration for '{analysis_type.value}' is incomplete: "
                + ", ".join(missing),
                missing=missing,
            )
        api_key = self.config.api_keys.for_provider(stage.provider)
        if not api_key:
            raise ConfigurationError(
                f"No API key configured for provider '{stage.provider.value}'",
                missing=[f"{stage.provider.value}_api_key"],
            )
        return stage, api_key

    async def _retrieve(
        self,
        analysis_type: AnalysisTypeEnum,
        stage: AnalysisTypeConfig,
        company_id: str,
        values: Mapping[str, str],
    ) -> tuple[str, dict[str, Any]]:
        if not stage.rag_enabled:
            return "", {"enabled": False}
        if self.retriever is None:
            return "", {"enabled": True, "used": False, "reason": "no retriever"}

        query = build_rag_query(analysis_type, values)
        try:
            snippets = await self.retriever.search(
                query,
                company_id=company_id,
                limit=stage.rag_max_results,
                score_threshold=stage.rag_threshold,
            )
        except Exception as e:
            # Retrieval is optional context; the run proceeds without it.
            logger.warning("RAG search failed (%s); continuing without context", type(e).__name__)
            return "", {"enabled": True, "used": False, "error": type(e).__name__}

        return format_rag_context(snippets), {
            "enabled": True,
            "used": bool(snippets),
            "documentsFound": len(snippets),
            "threshold": stage.rag_threshold,
            "sources": [
                {"id": s.source_id, "name": s.source_name, "score": round(s.score, 4)}
                for s in snippets
            ],
        }

    async def _execute(
        self,
        analysis_id: str,
        analysis_type: AnalysisTypeEnum,
        company_id: str,
        patient: Mapping[str, Any],
        inputs: Mapping[str, Any],
        started: float,
    ) -> dict[str, Any]:
        stage, api_key = self._stage_config(analysis_type)

        try:
            previous, _ = self.store.list_analyses(
                company_id,
                patient_id=patient["id"],
                statuses=USABLE_STATUSES,
                limit=_PREVIOUS_LIMIT,
            )
        except sqlite3.Error as e:
            raise PersistenceError(f"Could not load previous analyses: {e}") from e
        values = build_values(patient, previous, inputs)

        rag_context, rag_metadata = await self._retrieve(
            analysis_type, stage, company_id, values,
        )
        values["ragContext"] = rag_context

        # Rendered once; retries below reuse the same prompt.
        user_prompt = render_template(stage.user_prompt_template, values)
        system_prompt = stage.system_prompt + schema_instruction(analysis_type)

        client = self.client_factory(
            provider=stage.provider.value, api_key=api_key, model=stage.model,
        )
        retry_state = RetryState()
        response = await with_retry(
            client.complete,
            max_attempts=self.max_attempts,
            timeout_seconds=self.timeout_for(stage.provider.value),
            state=retry_state,
            system_prompt=system_prompt,
            user_prompt=user_prompt,
            max_tokens=stage.max_tokens,
            temperature=stage.temperature,
        )

        result = parse_and_validate_response(response.text, analysis_type)

        price = price_for(stage.provider.value, stage.model)
        ai_metadata = {
            "model": response.model or stage.model,
            "provider": stage.provider.value,
            "promptTokens": response.prompt_tokens,
            "completionTokens": response.completion_tokens,
            "totalTokens": response.prompt_tokens + response.completion_tokens,
            "cost": round(
                compute_cost(response.prompt_tokens, response.completion_tokens, price), 6,
            ),
            "processingTime": round(time.monotonic() - started, 3),
            "temperature": stage.temperature,
            "maxTokens": stage.max_tokens,
            "configVersion": self.config.version,
            "attempts": retry_state.attempts,
        }

        target = transition(ReviewStatus.DRAFT, ReviewStatus.COMPLETED, analysis_id)
        try:
            ok = self.store.update_analysis(
                company_id,
                analysis_id,
                {
                    "status": target.value,
                    "analysis": result,
                    "raw_output": response.text,
                    "ai_metadata": ai_metadata,
                    "rag_metadata": rag_metadata,
                },
                expected_status=ReviewStatus.DRAFT.value,
            )
        except sqlite3.Error as e:
            logger.exception("Could not persist analysis %s", analysis_id)
            raise PersistenceError(f"Could not save analysis result: {e}") from e
        if not ok:
            raise InvalidTransition(
                "unknown", target.value, analysis_id=analysis_id,
                message="Analysis record left draft state during the run",
            )

        logger.info(
            "Analysis %s completed (%s, %d tokens, %d attempt(s), %.1fs)",
            analysis_id, analysis_type.value, ai_metadata["totalTokens"],
            retry_state.attempts, ai_metadata["processingTime"],
        )
        return self.store.get_analysis(company_id, analysis_id)

    def _mark_error(
        self,
        company_id: str,
        analysis_id: str,
        category: str,
        message: str,
        raw_output: Optional[str] = None,
    ) -> None:
        fields: dict[str, Any] = {
            "status": transition(ReviewStatus.DRAFT, ReviewStatus.ERROR, analysis_id).value,
            "error_category": category,
            "error_message": message,
        }
        if raw_output:
            fields["raw_output"] = raw_output
        try:
            self.store.update_analysis(
                company_id, analysis_id, fields, expected_status=ReviewStatus.DRAFT.value,
            )
        except sqlite3.Error:
            logger.exception("Could not record failure of analysis %s", analysis_id)
        logger.warning(
            "Analysis %s failed: %s", analysis_id, category,
        )
