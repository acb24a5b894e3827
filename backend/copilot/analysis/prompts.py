"""Versioned prompt templates for transcript analysis."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from string import Template

from copilot.errors import ConfigurationError

ANALYSIS_PROMPT_VERSION = "analysis.v1"
_PROMPT_FILES: dict[str, Path] = {
    "analysis.v1": Path(__file__).resolve().parent / "templates" / "analysis_v1.txt",
}


@lru_cache(maxsize=8)
def _get_prompt_template(version: str = ANALYSIS_PROMPT_VERSION) -> Template:
    prompt_file = _PROMPT_FILES.get(version)
    if prompt_file is None:
        raise ConfigurationError(f"Analysis prompt version is not registered: {version}")
    try:
        prompt_text = prompt_file.read_text(encoding="utf-8").strip()
    except OSError as exc:
        raise ConfigurationError(f"Failed to load analysis prompt file: {prompt_file}") from exc
    if not prompt_text:
        raise ConfigurationError(f"Analysis prompt file is empty: {prompt_file}")
    return Template(prompt_text)


def build_analysis_prompt(transcript: str, concept: str, *, version: str = ANALYSIS_PROMPT_VERSION) -> str:
    """Embed the transcript verbatim and the assigned concept into the prompt."""

    # Values are substituted once; "$" inside the transcript is never re-expanded.
    return _get_prompt_template(version).substitute(transcript=transcript, concept=concept)
