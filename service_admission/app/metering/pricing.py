"""
Model pricing table.

Prices are USD per 1,000 tokens and held as ``Decimal``. A table is
immutable once built and must carry a ``default`` entry used for any
model it does not list.
"""

import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping, Optional, Tuple, Union

import yaml

from shared.errors import ConfigurationError

DEFAULT_MODEL = "default"

# Trailing release markers: -20240229, -2024-04-09, -0613, -latest, -preview
_VERSION_SUFFIX = re.compile(r"-(\d{8}|\d{4}-\d{2}-\d{2}|\d{4}|latest|preview)$")


@dataclass(frozen=True)
class ModelPricing:
    """Per-token pricing for a specific model."""
    input_per_1k: Decimal
    output_per_1k: Decimal


def _price(value: Any, field: str, model: str) -> Decimal:
    try:
        price = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ConfigurationError("Invalid price", {"model": model, "field": field, "value": repr(value)})
    if not price.is_finite() or price < 0:
        raise ConfigurationError("Price must be a non-negative number", {"model": model, "field": field})
    return price


def normalize_model_name(model: str) -> str:
    """Lower-case ``model`` and strip release suffixes.

    >>> normalize_model_name("Claude-3-Opus-20240229")
    'claude-3-opus'
    """
    name = model.strip().lower()
    while True:
        stripped = _VERSION_SUFFIX.sub("", name)
        if stripped == name:
            return name
        name = stripped


class PricingTable:
    """Read-only mapping from model name to ``ModelPricing``."""

    def __init__(self, prices: Mapping[str, ModelPricing]):
        if DEFAULT_MODEL not in prices:
            raise ConfigurationError("Pricing table requires a 'default' entry")
        self._prices = MappingProxyType(dict(prices))

    @property
    def prices(self) -> Mapping[str, ModelPricing]:
        return self._prices

    @property
    def default(self) -> ModelPricing:
        return self._prices[DEFAULT_MODEL]

    def __contains__(self, model: str) -> bool:
        return model in self._prices

    def resolve(self, model: Optional[str], normalize: bool = False) -> Tuple[ModelPricing, bool]:
        """Return ``(pricing, is_default_fallback)`` for ``model``.

        Lookup is exact unless ``normalize`` is set, in which case a miss is
        retried with the normalized name before falling back.
        """
        if model and model in self._prices:
            return self._prices[model], model == DEFAULT_MODEL
        if model and normalize:
            normalized = normalize_model_name(model)
            if normalized in self._prices:
                return self._prices[normalized], normalized == DEFAULT_MODEL
        return self.default, True

    @classmethod
    def from_mapping(cls, data: Mapping[str, Mapping[str, Any]]) -> "PricingTable":
        """Build a table from ``{model: {input_per_1k, output_per_1k}}``."""
        prices = {}
        for model, entry in data.items():
            if not isinstance(entry, Mapping):
                raise ConfigurationError("Pricing entry must be a mapping", {"model": model})
            try:
                prices[str(model)] = ModelPricing(
                    input_per_1k=_price(entry["input_per_1k"], "input_per_1k", model),
                    output_per_1k=_price(entry["output_per_1k"], "output_per_1k", model),
                )
            except KeyError as e:
                raise ConfigurationError("Pricing entry missing field", {"model": model, "field": str(e)})
        return cls(prices)

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "PricingTable":
        """Load a table from a YAML file with a top-level ``models`` mapping."""
        try:
            with open(path, "r") as f:
                raw = yaml.safe_load(f)
        except OSError as e:
            raise ConfigurationError("Cannot read pricing file", {"path": str(path), "error": str(e)})
        except yaml.YAMLError as e:
            raise ConfigurationError("Invalid YAML in pricing file", {"path": str(path), "error": str(e)})

        if not isinstance(raw, dict) or not isinstance(raw.get("models"), dict):
            raise ConfigurationError("Pricing file must contain a 'models' mapping", {"path": str(path)})
        return cls.from_mapping(raw["models"])


DEFAULT_PRICING = PricingTable({
    "gpt-4": ModelPricing(Decimal("0.03"), Decimal("0.06")),
    "gpt-4-turbo": ModelPricing(Decimal("0.01"), Decimal("0.03")),
    "gpt-3.5-turbo": ModelPricing(Decimal("0.0015"), Decimal("0.002")),
    "claude-3-opus": ModelPricing(Decimal("0.015"), Decimal("0.075")),
    "claude-3-sonnet": ModelPricing(Decimal("0.003"), Decimal("0.015")),
    "claude-3-haiku": ModelPricing(Decimal("0.00025"), Decimal("0.00125")),
    DEFAULT_MODEL: ModelPricing(Decimal("0.001"), Decimal("0.002")),
})
