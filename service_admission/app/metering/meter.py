"""
Usage and cost meter for proxied AI provider calls.
"""

import json
from dataclasses import asdict, dataclass
from decimal import Decimal
from typing import Any, Dict, Optional, Union

from shared.errors import NoUsageFound
from shared.logging import get_logger
from shared.metrics import MetricsCollector

from .pricing import DEFAULT_PRICING, PricingTable
from .rules import MODEL_RULES, USAGE_CONTAINERS, USAGE_FIELDS, USAGE_RULES

UNKNOWN_MODEL = "unknown"
_THOUSAND = Decimal(1000)

Body = Union[bytes, str, None]


@dataclass(frozen=True)
class TokenUsage:
    """Token counts and cost of one proxied call."""
    input_tokens: int
    output_tokens: int
    total_tokens: int
    model_name: str
    cost: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _text(body: Body) -> str:
    if body is None:
        return ""
    if isinstance(body, bytes):
        return body.decode("utf-8", errors="replace")
    return body


def _load_json(body: Body) -> Optional[Any]:
    text = _text(body)
    if not text.strip():
        return None
    try:
        return json.loads(text)
    except ValueError:
        return None


def _count(value: Any) -> Optional[int]:
    """Integer token count or None; negatives clamp to zero."""
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return max(0, value)


class UsageMeter:
    """Extracts model names and token usage from raw bodies and prices them.

    Holds no mutable state beyond the injected read-only pricing table, so a
    single instance can serve concurrent requests.
    """

    def __init__(
        self,
        pricing: PricingTable = DEFAULT_PRICING,
        metrics: Optional[MetricsCollector] = None,
        normalize_model_names: bool = False,
    ):
        self.pricing = pricing
        self.metrics = metrics
        self.normalize_model_names = normalize_model_names
        self.logger = get_logger("admission.usage_meter")

    def extract_model(self, request_body: Body = None, response_body: Body = None) -> str:
        """Find the model name in the request, then the response.

        Structured ``model`` fields are tried first, then the textual rules
        in ``MODEL_RULES`` against both bodies.
        """
        for body in (request_body, response_body):
            document = _load_json(body)
            if isinstance(document, dict):
                model = document.get("model")
                if isinstance(model, str) and model:
                    return model

        texts = [_text(request_body), _text(response_body)]
        for rule in MODEL_RULES:
            for text in texts:
                model = rule.search(text)
                if model:
                    self.logger.debug("Model extracted by pattern", rule=rule.name, model=model)
                    return model

        return UNKNOWN_MODEL

    def _structured_counts(self, document: Any) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        if not isinstance(document, dict):
            return counts

        sources = [document[name] for name in USAGE_CONTAINERS if isinstance(document.get(name), dict)]
        sources.append(document)
        for source in sources:
            for field, counter in USAGE_FIELDS:
                if counts.get(counter):
                    continue
                value = _count(source.get(field))
                if value is not None:
                    counts[counter] = value
        return counts

    def _pattern_counts(self, text: str) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for rule in USAGE_RULES:
            if counts.get(rule.target):
                continue
            value = rule.search(text)
            if value is not None:
                counts[rule.target] = int(value)
        return counts

    def parse_usage(self, response_body: Body, model_name: str) -> TokenUsage:
        """Extract token usage from ``response_body`` and price it.

        Raises ``NoUsageFound`` when neither the structured parse nor the
        pattern fallback yields a non-zero input or output count.
        """
        counts = self._structured_counts(_load_json(response_body))
        if not counts.get("input") and not counts.get("output"):
            counts = self._pattern_counts(_text(response_body))

        input_tokens = counts.get("input", 0)
        output_tokens = counts.get("output", 0)
        if input_tokens == 0 and output_tokens == 0:
            if self.metrics:
                self.metrics.increment_counter("usage_not_found_total")
            self.logger.warning("No token usage found in response", model=model_name)
            raise NoUsageFound(details={"model": model_name})

        total_tokens = counts.get("total") or input_tokens + output_tokens
        usage = TokenUsage(
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_tokens=total_tokens,
            model_name=model_name,
            cost=self.compute_cost(input_tokens, output_tokens, model_name),
        )

        if self.metrics:
            self.metrics.increment_counter("usage_metered_total", model=model_name)
            self.metrics.increment_counter("usage_tokens_total", input_tokens, model=model_name, direction="input")
            self.metrics.increment_counter("usage_tokens_total", output_tokens, model=model_name, direction="output")
        return usage

    def compute_cost(self, input_tokens: Optional[int], output_tokens: Optional[int], model: Optional[str]) -> float:
        """Cost in USD: tokens / 1000 times the model's per-1K prices."""
        pricing, fallback = self.pricing.resolve(model, normalize=self.normalize_model_names)
        if fallback and model != "default":
            self.logger.info("Pricing fell back to default", model=model)
            if self.metrics:
                self.metrics.increment_counter("pricing_default_fallback_total", model=model or UNKNOWN_MODEL)

        input_count = Decimal(max(0, input_tokens or 0))
        output_count = Decimal(max(0, output_tokens or 0))
        cost = (input_count / _THOUSAND) * pricing.input_per_1k + (output_count / _THOUSAND) * pricing.output_per_1k
        return float(cost)

    def meter(self, request_body: Body, response_body: Body) -> TokenUsage:
        """Extract the model and usage of one proxied call."""
        model = self.extract_model(request_body, response_body)
        return self.parse_usage(response_body, model)
