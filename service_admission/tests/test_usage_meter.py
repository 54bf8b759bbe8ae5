"""
Unit tests for the usage and cost meter.
"""

import json

import pytest

from shared.errors import NoUsageFound
from service_admission.app.metering.meter import UNKNOWN_MODEL, UsageMeter
from service_admission.app.metering.pricing import DEFAULT_PRICING


class TestParseUsage:
    """Token extraction from provider responses."""

    @pytest.fixture
    def meter(self, metrics):
        return UsageMeter(DEFAULT_PRICING, metrics=metrics)

    def test_openai_usage_block(self, meter):
        body = b'{"usage":{"prompt_tokens":100,"completion_tokens":50,"total_tokens":150}}'

        usage = meter.parse_usage(body, "gpt-4")

        assert (usage.input_tokens, usage.output_tokens, usage.total_tokens) == (100, 50, 150)
        assert usage.model_name == "gpt-4"
        assert usage.cost == pytest.approx(0.006)

    def test_output_only_fragment_uses_pattern_fallback(self, meter):
        usage = meter.parse_usage(b'... "output_tokens": 20 ...', "claude-3-haiku")

        assert (usage.input_tokens, usage.output_tokens, usage.total_tokens) == (0, 20, 20)
        assert usage.cost == pytest.approx(0.000025)

    def test_anthropic_usage_block(self, meter):
        body = json.dumps({
            "id": "msg_1",
            "model": "claude-3-sonnet",
            "usage": {"input_tokens": 1200, "output_tokens": 300},
        })

        usage = meter.parse_usage(body, "claude-3-sonnet")

        assert (usage.input_tokens, usage.output_tokens, usage.total_tokens) == (1200, 300, 1500)
        assert usage.cost == pytest.approx(1.2 * 0.003 + 0.3 * 0.015)

    def test_gemini_usage_metadata(self, meter):
        body = {"usageMetadata": {"promptTokenCount": 10, "candidatesTokenCount": 4, "totalTokenCount": 14}}

        usage = meter.parse_usage(json.dumps(body), "gemini-pro")

        assert (usage.input_tokens, usage.output_tokens, usage.total_tokens) == (10, 4, 14)

    def test_top_level_counters(self, meter):
        usage = meter.parse_usage('{"input_tokens": 7, "output_tokens": 3}', "gpt-4")
        assert usage.total_tokens == 10

    def test_explicit_total_is_kept(self, meter):
        body = '{"usage":{"prompt_tokens":10,"completion_tokens":5,"total_tokens":18}}'
        assert meter.parse_usage(body, "gpt-4").total_tokens == 18

    def test_mixed_family_fields_both_count(self, meter):
        usage = meter.parse_usage('{"usage":{"prompt_tokens":10,"output_tokens":5}}', "gpt-4")
        assert (usage.input_tokens, usage.output_tokens) == (10, 5)

    def test_zero_field_does_not_mask_a_later_family(self, meter):
        usage = meter.parse_usage('{"usage":{"prompt_tokens":0,"input_tokens":100,"output_tokens":5}}', "gpt-4")
        assert (usage.input_tokens, usage.output_tokens, usage.total_tokens) == (100, 5, 105)

    def test_malformed_json_falls_back_to_patterns(self, meter):
        body = '{"usage": {"prompt_tokens": 12, "completion_tokens": 8}'
        usage = meter.parse_usage(body, "gpt-4")
        assert (usage.input_tokens, usage.output_tokens) == (12, 8)

    def test_structured_zeros_fall_back_to_patterns(self, meter):
        body = '{"usage": {"prompt_tokens": 0}, "meta": {"completion_tokens": 9}}'
        usage = meter.parse_usage(body, "gpt-4")
        assert (usage.input_tokens, usage.output_tokens, usage.total_tokens) == (0, 9, 9)

    def test_booleans_are_not_counts(self, meter):
        usage = meter.parse_usage('{"usage":{"prompt_tokens":true,"completion_tokens":5}}', "gpt-4")
        assert (usage.input_tokens, usage.output_tokens) == (0, 5)

    def test_negative_counts_clamp_to_zero(self, meter):
        usage = meter.parse_usage('{"usage":{"prompt_tokens":-40,"completion_tokens":10}}', "gpt-4")
        assert usage.input_tokens == 0
        assert usage.cost >= 0

    @pytest.mark.parametrize("body", [
        b"",
        b"not json at all",
        b'{"choices": []}',
        b'{"usage": {"prompt_tokens": 0, "completion_tokens": 0}}',
    ])
    def test_no_usage_raises(self, meter, metrics, body):
        with pytest.raises(NoUsageFound):
            meter.parse_usage(body, "gpt-4")
        assert metrics.get_sample("usage_not_found_total") == 1.0

    def test_metered_tokens_are_counted(self, meter, metrics):
        meter.parse_usage('{"usage":{"prompt_tokens":100,"completion_tokens":50}}', "gpt-4")

        assert metrics.get_sample("usage_metered_total", model="gpt-4") == 1.0
        assert metrics.get_sample("usage_tokens_total", model="gpt-4", direction="input") == 100.0
        assert metrics.get_sample("usage_tokens_total", model="gpt-4", direction="output") == 50.0


class TestExtractModel:
    """Model name search order."""

    @pytest.fixture
    def meter(self):
        return UsageMeter()

    def test_request_field_wins(self, meter):
        assert meter.extract_model(b'{"model":"gpt-4"}', b'{"model":"gpt-4-0613"}') == "gpt-4"

    def test_response_field_when_request_has_none(self, meter):
        assert meter.extract_model(b'{"messages":[]}', b'{"model":"claude-3-opus"}') == "claude-3-opus"

    def test_json_pattern_in_non_json_body(self, meter):
        assert meter.extract_model(b'data: {"model": "gpt-3.5-turbo", "x": 1', None) == "gpt-3.5-turbo"

    def test_query_parameter_pattern(self, meter):
        assert meter.extract_model(b"prompt=hi&model=claude-3-haiku", b"") == "claude-3-haiku"

    def test_versioned_path_pattern(self, meter):
        assert meter.extract_model(b"POST /v1/gpt-4-turbo/completions", b"") == "gpt-4-turbo"

    def test_unknown_when_nothing_matches(self, meter):
        assert meter.extract_model(b"hello", b"world") == UNKNOWN_MODEL
        assert meter.extract_model(None, None) == UNKNOWN_MODEL

    def test_empty_model_field_is_skipped(self, meter):
        assert meter.extract_model(b'{"model":""}', b'{"model":"gpt-4"}') == "gpt-4"

    def test_meter_combines_extraction_and_parsing(self, meter):
        usage = meter.meter(b'{"model":"gpt-4"}', b'{"usage":{"prompt_tokens":1000,"completion_tokens":1000}}')

        assert usage.model_name == "gpt-4"
        assert usage.cost == pytest.approx(0.09)
        assert usage.to_dict()["total_tokens"] == 2000


class TestComputeCost:
    """Pricing lookups and arithmetic."""

    def test_unknown_model_uses_default_pricing(self, metrics):
        meter = UsageMeter(metrics=metrics)

        assert meter.compute_cost(1000, 1000, "mystery-model") == pytest.approx(0.003)
        assert meter.compute_cost(1000, 1000, "mystery-model") == meter.compute_cost(1000, 1000, "default")
        assert metrics.get_sample("pricing_default_fallback_total", model="mystery-model") == 2.0

    def test_missing_and_negative_counts_are_zero(self):
        meter = UsageMeter()

        assert meter.compute_cost(None, None, "gpt-4") == 0.0
        assert meter.compute_cost(-100, 1000, "gpt-4") == pytest.approx(0.06)

    def test_exact_lookup_by_default(self):
        meter = UsageMeter()
        assert meter.compute_cost(1000, 0, "claude-3-opus-20240229") == pytest.approx(0.001)

    def test_normalized_lookup_when_enabled(self):
        meter = UsageMeter(normalize_model_names=True)

        assert meter.compute_cost(1000, 0, "Claude-3-Opus-20240229") == pytest.approx(0.015)
        assert meter.compute_cost(1000, 0, "gpt-4-turbo-2024-04-09") == pytest.approx(0.01)
        assert meter.compute_cost(1000, 0, "unheard-of-2024") == pytest.approx(0.001)
