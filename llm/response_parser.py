"""
Parse and validate the raw text returned by a provider.

Steps:
1. Strip a single surrounding markdown code fence, if present
2. Decode JSON (must be an object)
3. Validate against the stage's result schema
4. Return the validated structure as plain JSON-compatible data

Any failure raises MalformedResponse carrying the raw text, so the caller can
store it on the error record for inspection.
"""

from __future__ import annotations

import json
import logging
import re

from pydantic import ValidationError

from analysis.errors import MalformedResponse
from api.config_models import AnalysisTypeEnum
from llm.schemas import result_schema

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"^```(?:json|JSON)?\s*\n(.*)\n\s*```$", re.DOTALL)


def strip_code_fence(text: str) -> str:
    stripped = text.strip()
    match = _FENCE_RE.match(stripped)
    if match:
        return match.group(1).strip()
    return stripped


def _format_errors(exc: ValidationError) -> list[str]:
    errors = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err["loc"]) or "<root>"
        errors.append(f"{loc}: {err['msg']}")
    return errors


def parse_and_validate_response(raw_text: str, analysis_type: AnalysisTypeEnum) -> dict:
    """
    Parse ``raw_text`` into the result structure for ``analysis_type``.

    Raises MalformedResponse when the text is not JSON, is not an object, or
    does not satisfy the stage's schema. Nothing partial is ever returned.
    """
    if not raw_text or not raw_text.strip():
        raise MalformedResponse("Provider returned an empty response", raw_text=raw_text or "")

    text = strip_code_fence(raw_text)

    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedResponse(
            f"Response is not valid JSON: {e.msg} at line {e.lineno} column {e.colno}",
            raw_text=raw_text,
        ) from e

    if not isinstance(data, dict):
        raise MalformedResponse(
            f"Response must be a JSON object, got {type(data).__name__}",
            raw_text=raw_text,
        )

    model = result_schema(analysis_type)
    try:
        validated = model.model_validate_json(text, strict=True)
    except ValidationError as e:
        errors = _format_errors(e)
        logger.warning(
            "%s response failed schema validation (%d errors)",
            analysis_type.value, len(errors),
        )
        raise MalformedResponse(
            f"Response does not match the {analysis_type.value} schema: "
            + "; ".join(errors[:5]),
            raw_text=raw_text,
            errors=errors,
        ) from e

    return validated.model_dump(mode="json", exclude_unset=True)


def validate_content(content: dict, analysis_type: AnalysisTypeEnum) -> dict:
    """Validate an already-decoded structure (used for professional edits)."""
    try:
        text = json.dumps(content, ensure_ascii=False)
    except (TypeError, ValueError) as e:
        raise MalformedResponse(f"Content is not JSON-serializable: {e}") from e
    return parse_and_validate_response(text, analysis_type)
