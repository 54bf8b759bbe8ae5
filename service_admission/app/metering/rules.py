"""
Named extraction rules for upstream AI provider payloads.

Rules are evaluated in the order listed. Adding a provider format means
adding a rule or a field alias here; the meter's control flow does not
change.
"""

import re
from dataclasses import dataclass
from typing import Optional, Pattern, Tuple


@dataclass(frozen=True)
class ExtractionRule:
    """A regex whose first capture group yields a value for ``target``."""

    name: str
    pattern: Pattern[str]
    target: str = ""

    def search(self, text: str) -> Optional[str]:
        match = self.pattern.search(text)
        return match.group(1) if match else None


MODEL_RULES: Tuple[ExtractionRule, ...] = (
    ExtractionRule("json_model_field", re.compile(r'"model"\s*:\s*"([^"]+)"')),
    ExtractionRule("query_model_param", re.compile(r"model=([a-zA-Z0-9\-_]+)")),
    ExtractionRule("versioned_path", re.compile(r"/v1/([a-zA-Z0-9\-_]+)/")),
)

USAGE_RULES: Tuple[ExtractionRule, ...] = (
    ExtractionRule("input_tokens", re.compile(r'"input_tokens"\s*:\s*(\d+)'), "input"),
    ExtractionRule("output_tokens", re.compile(r'"output_tokens"\s*:\s*(\d+)'), "output"),
    ExtractionRule("prompt_tokens", re.compile(r'"prompt_tokens"\s*:\s*(\d+)'), "input"),
    ExtractionRule("completion_tokens", re.compile(r'"completion_tokens"\s*:\s*(\d+)'), "output"),
    ExtractionRule("total_tokens", re.compile(r'"total_tokens"\s*:\s*(\d+)'), "total"),
)

# Containers searched for structured usage, then the document root.
USAGE_CONTAINERS: Tuple[str, ...] = ("usage", "usageMetadata")

# (field name, counter) in priority order; the first field found for a counter wins.
USAGE_FIELDS: Tuple[Tuple[str, str], ...] = (
    ("prompt_tokens", "input"),
    ("completion_tokens", "output"),
    ("input_tokens", "input"),
    ("output_tokens", "output"),
    ("promptTokenCount", "input"),
    ("candidatesTokenCount", "output"),
    ("total_tokens", "total"),
    ("totalTokenCount", "total"),
)
