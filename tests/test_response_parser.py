"""Tests for llm.response_parser and the per-stage result schemas."""

import json

import pytest

from analysis.errors import MalformedResponse
from api.config_models import AnalysisTypeEnum
from conftest import sample_result
from llm.response_parser import (
    parse_and_validate_response,
    strip_code_fence,
    validate_content,
)
from llm.schemas import RESULT_SCHEMAS, schema_instruction


class TestStripCodeFence:
    def test_json_fence(self):
        assert strip_code_fence('```json\n{"a": 1}\n```') == '{"a": 1}'

    def test_bare_fence(self):
        assert strip_code_fence('```\n{"a": 1}\n```') == '{"a": 1}'

    def test_no_fence(self):
        assert strip_code_fence('  {"a": 1}  ') == '{"a": 1}'


class TestValidResults:
    @pytest.mark.parametrize("analysis_type", list(AnalysisTypeEnum))
    def test_returned_unchanged(self, analysis_type):
        result = sample_result(analysis_type.value)
        parsed = parse_and_validate_response(json.dumps(result), analysis_type)
        assert parsed == result

    def test_fenced_response(self):
        result = sample_result("tcm")
        raw = "```json\n" + json.dumps(result) + "\n```"
        assert parse_and_validate_response(raw, AnalysisTypeEnum.TCM) == result

    def test_extra_fields_kept(self):
        result = sample_result("laboratory")
        result["clinicianNote"] = "extra"
        parsed = parse_and_validate_response(json.dumps(result), AnalysisTypeEnum.LABORATORY)
        assert parsed["clinicianNote"] == "extra"


class TestRejection:
    def test_not_json(self):
        with pytest.raises(MalformedResponse) as exc_info:
            parse_and_validate_response("not json", AnalysisTypeEnum.LABORATORY)
        assert exc_info.value.raw_text == "not json"

    def test_empty(self):
        with pytest.raises(MalformedResponse):
            parse_and_validate_response("   ", AnalysisTypeEnum.LABORATORY)

    def test_top_level_array(self):
        with pytest.raises(MalformedResponse):
            parse_and_validate_response("[1, 2]", AnalysisTypeEnum.LABORATORY)

    def test_missing_required_field(self):
        result = sample_result("laboratory")
        del result["summary"]
        with pytest.raises(MalformedResponse) as exc_info:
            parse_and_validate_response(json.dumps(result), AnalysisTypeEnum.LABORATORY)
        assert any(e.startswith("summary") for e in exc_info.value.errors)

    def test_score_out_of_range(self):
        result = sample_result("ifm")
        result["systemsAssessment"]["energy"]["score"] = 150
        with pytest.raises(MalformedResponse) as exc_info:
            parse_and_validate_response(json.dumps(result), AnalysisTypeEnum.IFM)
        assert any("systemsAssessment.energy.score" in e for e in exc_info.value.errors)

    def test_score_as_string_not_coerced(self):
        result = sample_result("ifm")
        result["systemsAssessment"]["energy"]["score"] = "85"
        with pytest.raises(MalformedResponse):
            parse_and_validate_response(json.dumps(result), AnalysisTypeEnum.IFM)

    def test_unknown_system_status(self):
        result = sample_result("ifm")
        result["systemsAssessment"]["transport"]["status"] = "fine"
        with pytest.raises(MalformedResponse):
            parse_and_validate_response(json.dumps(result), AnalysisTypeEnum.IFM)

    def test_missing_system(self):
        result = sample_result("ifm")
        del result["systemsAssessment"]["structuralIntegrity"]
        with pytest.raises(MalformedResponse):
            parse_and_validate_response(json.dumps(result), AnalysisTypeEnum.IFM)

    def test_intervention_priority_out_of_range(self):
        result = sample_result("treatment_plan")
        result["interventions"][0]["priority"] = 9
        with pytest.raises(MalformedResponse):
            parse_and_validate_response(json.dumps(result), AnalysisTypeEnum.TREATMENT_PLAN)

    def test_timeline_category(self):
        result = sample_result("chronology")
        result["timeline"][0]["category"] = "holiday"
        with pytest.raises(MalformedResponse):
            parse_and_validate_response(json.dumps(result), AnalysisTypeEnum.CHRONOLOGY)

    def test_wrong_stage_shape(self):
        with pytest.raises(MalformedResponse):
            parse_and_validate_response(
                json.dumps(sample_result("tcm")), AnalysisTypeEnum.LABORATORY,
            )


class TestValidateContent:
    def test_valid(self):
        result = sample_result("chronology")
        assert validate_content(result, AnalysisTypeEnum.CHRONOLOGY) == result

    def test_invalid(self):
        with pytest.raises(MalformedResponse):
            validate_content({"timeline": "soon"}, AnalysisTypeEnum.CHRONOLOGY)


class TestSchemaInstruction:
    def test_every_stage_has_a_schema(self):
        assert set(RESULT_SCHEMAS) == set(AnalysisTypeEnum)

    def test_contains_schema_fields(self):
        text = schema_instruction(AnalysisTypeEnum.IFM)
        assert "systemsAssessment" in text
        assert "structuralIntegrity" in text
        assert "JSON" in text
