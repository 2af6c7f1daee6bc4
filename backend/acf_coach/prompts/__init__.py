"""Prompt templates for the coaching model calls."""

from acf_coach.prompts.coaching_prompts import (
    STAGE_CONTEXTS,
    StageContext,
    SUMMARY_SYSTEM_PROMPT,
    EXTRACTION_SYSTEM_PROMPT,
    get_coach_system_prompt,
    get_summary_user_prompt,
    get_extraction_prompt,
)

__all__ = [
    "STAGE_CONTEXTS",
    "StageContext",
    "SUMMARY_SYSTEM_PROMPT",
    "EXTRACTION_SYSTEM_PROMPT",
    "get_coach_system_prompt",
    "get_summary_user_prompt",
    "get_extraction_prompt",
]
