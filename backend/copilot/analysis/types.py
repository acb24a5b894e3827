"""Typed analysis records shared by the engine, policy, and persistence layers.

``StructuredAnalysis`` is a tagged union on ``riskFlag``: a SAFE analysis
cannot carry risk details and a RISK analysis must carry at least one, so the
coupling between the two fields is checked by the type rather than by callers.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Discriminator, Field, Strict, StringConstraints, Tag
from pydantic.alias_generators import to_camel

RiskType = Literal["self_harm", "crisis", "abuse", "safeguarding", "other"]
RiskSeverity = Literal["low", "medium", "high", "critical"]

NonEmptyText = Annotated[str, Strict(), StringConstraints(min_length=1)]
DescriptiveText = Annotated[str, Strict(), StringConstraints(min_length=10)]
ShortText = Annotated[str, Strict(), StringConstraints(min_length=1, max_length=300)]
Score = Annotated[float, Strict(), Field(ge=0, le=10)]


@dataclass(frozen=True, slots=True)
class TranscriptAnalysisRequest:
    """One unit of analysis work."""

    session_id: str
    transcript: str
    concept: str


class _WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        allow_inf_nan=False,
        extra="ignore",
    )


class DimensionScore(_WireModel):
    score: Score
    justification: DescriptiveText
    evidence: DescriptiveText


class ConceptScore(DimensionScore):
    concept_taught: Annotated[bool, Strict()]
    concept_name: Annotated[str, Strict()]


class RiskDetail(_WireModel):
    type: RiskType
    severity: RiskSeverity
    quote: NonEmptyText
    context: NonEmptyText
    recommended_action: NonEmptyText


class _AnalysisBase(_WireModel):
    summary: Annotated[str, Strict(), StringConstraints(min_length=100, max_length=1000)]
    concept_adherence: ConceptScore
    participant_engagement: DimensionScore
    safety_protocol: DimensionScore
    therapeutic_alliance: DimensionScore
    overall_quality_score: Score
    confidence_score: Annotated[float, Strict(), Field(ge=0, le=1)]
    key_strengths: Annotated[list[ShortText], Field(min_length=1, max_length=5)]
    areas_for_improvement: Annotated[list[ShortText], Field(min_length=1, max_length=5)]

    def to_payload(self) -> dict[str, Any]:
        """Serialize using the camelCase wire keys."""

        return self.model_dump(mode="json", by_alias=True)


class SafeAnalysis(_AnalysisBase):
    risk_flag: Literal["SAFE"]
    risk_details: Annotated[list[RiskDetail], Field(max_length=0)] = Field(default_factory=list)


class RiskAnalysis(_AnalysisBase):
    risk_flag: Literal["RISK"]
    risk_details: Annotated[list[RiskDetail], Field(min_length=1)]


def _risk_flag_of(value: Any) -> str | None:
    if isinstance(value, dict):
        flag = value.get("riskFlag", value.get("risk_flag"))
        return flag if isinstance(flag, str) else None
    return getattr(value, "risk_flag", None)


StructuredAnalysis = Annotated[
    Union[
        Annotated[SafeAnalysis, Tag("SAFE")],
        Annotated[RiskAnalysis, Tag("RISK")],
    ],
    Discriminator(
        _risk_flag_of,
        custom_error_type="invalid_risk_flag",
        custom_error_message="riskFlag must be 'SAFE' or 'RISK'",
    ),
]
