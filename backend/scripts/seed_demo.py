"""Seed demo therapy sessions for one supervisor and optionally analyse them.

Usage (from repository root):
    python backend/scripts/seed_demo.py

Usage (from backend directory):
    python scripts/seed_demo.py --run-batch
    # or
    python -m scripts.seed_demo
"""

from __future__ import annotations

import argparse
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

from sqlalchemy import delete

# Make `copilot` imports work whether the script is run from repo root or backend/.
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from copilot.config import get_settings
from copilot.db.base import Base
from copilot.db.session import SessionLocal, engine
from copilot.models.audit_log_entry import AuditLogEntry
from copilot.models.therapy_session import TherapySession
from copilot.services.batch import BatchCoordinator
from copilot.services.cache import build_cache


DEFAULT_SUPERVISOR_ID = "sup-demo-001"

_DEMO_SESSIONS: tuple[tuple[str, str, str, str], ...] = (
    (
        "Amani W.",
        "group-a",
        "Growth Mindset",
        "Fellow: Today we are talking about growth mindset, the idea that our abilities can grow with effort. "
        "Participant 1: So if I fail a maths test it does not mean I am bad at maths forever? "
        "Fellow: Exactly. A growth mindset says the brain is like a muscle. "
        "Participant 2: I used to think I could never speak in public, but I practised and now it is easier. "
        "Fellow: That is a great example of growth mindset in action. What could each of you practise this week?",
    ),
    (
        "Brian O.",
        "group-b",
        "Gratitude",
        "Fellow: Let us start with a check-in. How has the week been? "
        "Participant 1: Honestly it has been really hard. Sometimes I feel like it would be better if I wasn't here. "
        "Fellow: Thank you for telling us. That sounds very heavy, and I want to make sure you are safe. "
        "Can we talk after the session with my supervisor? "
        "Participant 1: Okay. "
        "Fellow: Today we will also look at gratitude and noticing small good things.",
    ),
    (
        "Cynthia M.",
        "group-c",
        "Values Clarification",
        "Fellow: Good afternoon everyone. Let us talk about what happened at school this week. "
        "Participant 1: The exams were long and the teachers were strict. "
        "Participant 2: Football practice was cancelled again. "
        "Fellow: That sounds frustrating. Does anyone have plans for the holidays?",
    ),
    (
        "David K.",
        "group-a",
        "Behavioural Activation",
        "Fellow: This week we are learning behavioural activation, which means planning small activities "
        "that lift our mood even when we do not feel like doing them. "
        "Participant 1: Like going for a walk when I feel low? "
        "Fellow: Yes. Let us each write down one activation activity for tomorrow and rate our mood before and after. "
        "Participant 2: I will help my mother in the garden. "
        "Fellow: Wonderful. Behavioural activation works best when the activity is small and specific.",
    ),
)


def build_demo_sessions(supervisor_id: str) -> list[TherapySession]:
    """Return deterministic demo sessions, newest first."""

    base = datetime(2026, 2, 24, 14, 0, 0, tzinfo=timezone.utc)
    return [
        TherapySession(
            supervisor_id=supervisor_id,
            fellow_name=fellow_name,
            group_id=group_id,
            session_date=base - timedelta(days=idx),
            assigned_concept=concept,
            transcript=transcript,
            status="pending",
        )
        for idx, (fellow_name, group_id, concept, transcript) in enumerate(_DEMO_SESSIONS)
    ]


def reset_supervisor(db, supervisor_id: str) -> None:
    """Remove existing sessions and audit rows for the demo supervisor."""

    db.execute(delete(AuditLogEntry).where(AuditLogEntry.supervisor_id == supervisor_id))
    db.execute(delete(TherapySession).where(TherapySession.supervisor_id == supervisor_id))
    db.commit()


def parse_args() -> argparse.Namespace:
    """Parse script CLI arguments."""

    parser = argparse.ArgumentParser(description="Seed demo therapy sessions for one supervisor.")
    parser.add_argument(
        "--supervisor-id",
        default=DEFAULT_SUPERVISOR_ID,
        help=f"Supervisor ID to seed (default: {DEFAULT_SUPERVISOR_ID})",
    )
    parser.add_argument(
        "--no-reset",
        action="store_true",
        help="Do not delete existing sessions for the supervisor before seeding.",
    )
    parser.add_argument(
        "--run-batch",
        action="store_true",
        help="Analyse the seeded sessions as one batch with the configured engine.",
    )
    return parser.parse_args()


def main() -> None:
    """Seed demo data and print a short summary."""

    args = parse_args()
    supervisor_id: str = args.supervisor_id
    Base.metadata.create_all(bind=engine)

    with SessionLocal() as db:
        if not args.no_reset:
            reset_supervisor(db, supervisor_id)
        sessions = build_demo_sessions(supervisor_id)
        db.add_all(sessions)
        db.commit()
        session_ids = [session.id for session in sessions]

    print("Seed complete")
    print(f"supervisor_id={supervisor_id}")
    print(f"sessions_created={len(session_ids)}")

    if args.run_batch:
        settings = get_settings()
        coordinator = BatchCoordinator.from_settings(settings, SessionLocal, cache=build_cache(settings))
        try:
            batch_id = coordinator.submit(supervisor_id, session_ids)
            result = coordinator.run(batch_id)
        finally:
            coordinator.shutdown()
        print(f"batch_id={result.batch_id}")
        print(f"batch_status={result.status}")
        print(f"processed={result.processed} failed={result.failed}")
        for error in result.errors:
            print(f"  error session_id={error['sessionId']} message={error['errorMessage']}")

    print()
    print("Inspect (send header X-Supervisor-Id):")
    print("  GET /sessions")
    for session_id in session_ids:
        print(f"  POST /sessions/{session_id}/analysis")


if __name__ == "__main__":
    main()
