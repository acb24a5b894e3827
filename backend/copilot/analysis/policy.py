"""Escalation policy deciding whether an AI analysis needs a human supervisor."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal

from copilot.analysis.types import RiskAnalysis, StructuredAnalysis

if TYPE_CHECKING:
    from copilot.config import Settings

ConfidenceLevel = Literal["high", "medium", "low", "very_low"]
DerivedStatus = Literal["risk", "flagged_for_review", "safe"]


@dataclass(frozen=True, slots=True)
class ConfidenceThresholds:
    """Thresholds for confidence banding and mandatory review."""

    high: float = 0.75
    medium: float = 0.55
    low: float = 0.40
    auto_review: float = 0.60
    low_quality: float = 3.0

    @classmethod
    def from_settings(cls, settings: Settings) -> ConfidenceThresholds:
        return cls(
            high=settings.confidence_high,
            medium=settings.confidence_medium,
            low=settings.confidence_low,
            auto_review=settings.auto_review_threshold,
            low_quality=settings.low_quality_threshold,
        )


DEFAULT_THRESHOLDS = ConfidenceThresholds()


def confidence_level(score: float, thresholds: ConfidenceThresholds = DEFAULT_THRESHOLDS) -> ConfidenceLevel:
    """Band a model-reported confidence score."""

    if score >= thresholds.high:
        return "high"
    if score >= thresholds.medium:
        return "medium"
    if score >= thresholds.low:
        return "low"
    return "very_low"


def review_reasons(
    analysis: StructuredAnalysis,
    thresholds: ConfidenceThresholds = DEFAULT_THRESHOLDS,
) -> list[str]:
    """Return every escalation trigger that applies to the analysis.

    All triggers are evaluated independently so the quality check still runs
    when the risk and confidence checks pass.
    """

    reasons: list[str] = []
    if isinstance(analysis, RiskAnalysis):
        reasons.append("risk_flagged")
    if analysis.confidence_score < thresholds.auto_review:
        reasons.append("low_confidence")
    if analysis.overall_quality_score < thresholds.low_quality:
        reasons.append("low_quality")
    return reasons


def requires_human_review(
    analysis: StructuredAnalysis,
    thresholds: ConfidenceThresholds = DEFAULT_THRESHOLDS,
) -> bool:
    return bool(review_reasons(analysis, thresholds))


def derive_session_status(
    analysis: StructuredAnalysis,
    thresholds: ConfidenceThresholds = DEFAULT_THRESHOLDS,
) -> DerivedStatus:
    """Map an analysis to the session status a supervisor sees."""

    if isinstance(analysis, RiskAnalysis):
        return "risk"
    if requires_human_review(analysis, thresholds):
        return "flagged_for_review"
    return "safe"
