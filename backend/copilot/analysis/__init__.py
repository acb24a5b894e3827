"""Transcript analysis: engines, validation, and escalation policy."""

from copilot.analysis.engine import AnalysisEngine, LLMAnalysisEngine, build_analysis_engine
from copilot.analysis.policy import (
    ConfidenceThresholds,
    confidence_level,
    derive_session_status,
    requires_human_review,
    review_reasons,
)
from copilot.analysis.types import RiskAnalysis, SafeAnalysis, StructuredAnalysis, TranscriptAnalysisRequest
from copilot.analysis.validator import parse_analysis_output, validate_analysis

__all__ = [
    "AnalysisEngine",
    "ConfidenceThresholds",
    "LLMAnalysisEngine",
    "RiskAnalysis",
    "SafeAnalysis",
    "StructuredAnalysis",
    "TranscriptAnalysisRequest",
    "build_analysis_engine",
    "confidence_level",
    "derive_session_status",
    "parse_analysis_output",
    "requires_human_review",
    "review_reasons",
    "validate_analysis",
]
