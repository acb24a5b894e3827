"""Validation of raw model output into ``StructuredAnalysis`` records."""

from __future__ import annotations

import json
import re
from typing import Any

from pydantic import TypeAdapter, ValidationError

from copilot.analysis.types import StructuredAnalysis
from copilot.errors import SchemaValidationError

_ANALYSIS_ADAPTER: TypeAdapter[StructuredAnalysis] = TypeAdapter(StructuredAnalysis)
_CODE_FENCE_RE = re.compile(r"^\s*```(?:json)?\s*\n?|\n?\s*```\s*$", re.IGNORECASE)


def validate_analysis(payload: Any) -> StructuredAnalysis:
    """Validate decoded JSON into an analysis, failing on the first violated constraint."""

    try:
        return _ANALYSIS_ADAPTER.validate_python(payload)
    except ValidationError as exc:
        first = exc.errors(include_url=False)[0]
        raise SchemaValidationError(_format_location(first.get("loc", ())), first.get("msg", "invalid value")) from exc


def parse_analysis_output(raw_text: str) -> StructuredAnalysis:
    """Strip incidental code fences, decode JSON, and validate."""

    if not raw_text or not raw_text.strip():
        raise SchemaValidationError("<root>", "model returned an empty response")
    cleaned = strip_code_fences(raw_text)
    try:
        decoded = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise SchemaValidationError("<root>", f"response is not valid JSON ({exc.msg})") from exc
    return validate_analysis(decoded)


def strip_code_fences(raw_text: str) -> str:
    return _CODE_FENCE_RE.sub("", raw_text).strip()


def _format_location(loc: tuple[Any, ...]) -> str:
    # The first element is the union tag ("SAFE"/"RISK"); callers care about the wire path.
    parts = [str(part) for part in loc]
    if parts and parts[0] in {"SAFE", "RISK"}:
        parts = parts[1:]
    return ".".join(parts) or "<root>"
