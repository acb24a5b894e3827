"""Run the configured analysis engine against one sample transcript.

Uses the real model when OPENAI_API_KEY is set, otherwise the mock engine
(requires ANALYSIS_MOCK_MODE=true).

Usage (from repo root):
    python backend/scripts/smoke_analysis_engine.py

Usage (from backend/):
    python scripts/smoke_analysis_engine.py
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from copilot.analysis.engine import build_analysis_engine
from copilot.analysis.policy import ConfidenceThresholds, confidence_level, derive_session_status, review_reasons
from copilot.config import get_settings

_CONCEPT = "Growth Mindset"
_TRANSCRIPT = (
    "Fellow: Welcome back everyone. Today we are exploring growth mindset, the belief that we can get better "
    "at things through effort and practice. "
    "Participant 1: I always thought some people are just smart and others are not. "
    "Fellow: Many people think that. But research shows the brain changes when we practise. "
    "Participant 2: When I started playing guitar my fingers hurt and I was terrible, now I can play three songs. "
    "Fellow: That is a perfect example. What is one thing you gave up on that you could try again with a growth mindset? "
    "Participant 3: Chemistry. I stopped trying because I failed the first test. "
    "Fellow: What would a small next step look like? "
    "Participant 3: Maybe asking the teacher to explain the parts I missed."
)


def main() -> None:
    settings = get_settings()
    engine = build_analysis_engine(settings)
    thresholds = ConfidenceThresholds.from_settings(settings)
    analysis = engine.analyze(_TRANSCRIPT, _CONCEPT)
    print(
        json.dumps(
            {
                "model": engine.model_name,
                "prompt_version": engine.prompt_version,
                "status": derive_session_status(analysis, thresholds),
                "confidence_level": confidence_level(analysis.confidence_score, thresholds),
                "review_reasons": review_reasons(analysis, thresholds),
                "analysis": analysis.to_payload(),
            },
            indent=2,
        )
    )


if __name__ == "__main__":
    main()
