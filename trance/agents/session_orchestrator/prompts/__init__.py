#!/usr/bin/env python3
"""
Prompts module for the session plan reviewer.

Contains the reviewer system prompt and the templates for:
- Plan review (whole-plan confirmation)
- Step feedback (per-step sign-off)
"""

from .plan_review import (
    PLAN_REVIEW_SYSTEM_PROMPT,
    get_plan_review_prompt,
    get_step_feedback_prompt,
    format_plan_steps,
)

__all__ = [
    "PLAN_REVIEW_SYSTEM_PROMPT",
    "get_plan_review_prompt",
    "get_step_feedback_prompt",
    "format_plan_steps",
]
