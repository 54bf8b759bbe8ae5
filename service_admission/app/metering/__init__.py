"""
Usage metering package for the Admission service.

Turns raw upstream response bodies into token usage records and prices
them against an immutable model pricing table. Nothing here persists
usage; records are handed to the caller.
"""

from .meter import TokenUsage, UsageMeter, UNKNOWN_MODEL
from .pricing import DEFAULT_PRICING, ModelPricing, PricingTable, normalize_model_name
from .rules import ExtractionRule, MODEL_RULES, USAGE_RULES

__all__ = [
    "TokenUsage",
    "UsageMeter",
    "UNKNOWN_MODEL",
    "DEFAULT_PRICING",
    "ModelPricing",
    "PricingTable",
    "normalize_model_name",
    "ExtractionRule",
    "MODEL_RULES",
    "USAGE_RULES",
]
