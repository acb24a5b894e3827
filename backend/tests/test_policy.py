"""Tests for confidence banding and escalation rules."""

from __future__ import annotations

import unittest

from copilot.analysis.mock_engine import build_mock_payload
from copilot.analysis.policy import (
    DEFAULT_THRESHOLDS,
    ConfidenceThresholds,
    confidence_level,
    derive_session_status,
    requires_human_review,
    review_reasons,
)
from copilot.analysis.validator import validate_analysis
from copilot.config import Settings

_SAFE_TRANSCRIPT = "Fellow: Today we practise growth mindset together as a group. " * 20
_RISK_TRANSCRIPT = "Participant: Sometimes I feel like it would be better if I wasn't here."


def _analysis(transcript: str = _SAFE_TRANSCRIPT, **overrides):
    payload = build_mock_payload(transcript, "Growth Mindset")
    payload.update(overrides)
    return validate_analysis(payload)


class ConfidenceLevelTests(unittest.TestCase):
    def test_bands_are_inclusive_at_their_lower_bound(self) -> None:
        self.assertEqual(confidence_level(0.75), "high")
        self.assertEqual(confidence_level(0.7499), "medium")
        self.assertEqual(confidence_level(0.55), "medium")
        self.assertEqual(confidence_level(0.5499), "low")
        self.assertEqual(confidence_level(0.40), "low")
        self.assertEqual(confidence_level(0.3999), "very_low")
        self.assertEqual(confidence_level(0.0), "very_low")

    def test_thresholds_are_read_from_settings(self) -> None:
        settings = Settings(_env_file=None, confidence_high=0.9, auto_review_threshold=0.7)
        thresholds = ConfidenceThresholds.from_settings(settings)

        self.assertEqual(thresholds.high, 0.9)
        self.assertEqual(thresholds.auto_review, 0.7)
        self.assertEqual(confidence_level(0.8, thresholds), "medium")


class EscalationTests(unittest.TestCase):
    def test_confident_good_safe_analysis_needs_no_review(self) -> None:
        analysis = _analysis()

        self.assertEqual(review_reasons(analysis), [])
        self.assertFalse(requires_human_review(analysis))
        self.assertEqual(derive_session_status(analysis), "safe")

    def test_risk_always_requires_review_and_wins_status(self) -> None:
        analysis = _analysis(_RISK_TRANSCRIPT, confidenceScore=0.99, overallQualityScore=9.5)

        self.assertEqual(review_reasons(analysis), ["risk_flagged"])
        self.assertTrue(requires_human_review(analysis))
        self.assertEqual(derive_session_status(analysis), "risk")

    def test_confidence_below_auto_review_threshold_flags_session(self) -> None:
        flagged = _analysis(confidenceScore=0.59)
        at_threshold = _analysis(confidenceScore=0.60)

        self.assertEqual(review_reasons(flagged), ["low_confidence"])
        self.assertEqual(derive_session_status(flagged), "flagged_for_review")
        self.assertEqual(derive_session_status(at_threshold), "safe")

    def test_low_quality_is_checked_even_when_other_triggers_fire(self) -> None:
        analysis = _analysis(_RISK_TRANSCRIPT, confidenceScore=0.3, overallQualityScore=2.0)

        self.assertEqual(review_reasons(analysis), ["risk_flagged", "low_confidence", "low_quality"])
        self.assertEqual(derive_session_status(analysis), "risk")

    def test_low_quality_alone_flags_session(self) -> None:
        analysis = _analysis(overallQualityScore=2.9)

        self.assertEqual(review_reasons(analysis), ["low_quality"])
        self.assertEqual(derive_session_status(analysis), "flagged_for_review")

    def test_stricter_thresholds_escalate_more(self) -> None:
        analysis = _analysis(confidenceScore=0.7)
        strict = ConfidenceThresholds(auto_review=0.8)

        self.assertFalse(requires_human_review(analysis, DEFAULT_THRESHOLDS))
        self.assertTrue(requires_human_review(analysis, strict))


if __name__ == "__main__":
    unittest.main()
