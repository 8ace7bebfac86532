#!/usr/bin/env python3
"""
Plan Review Prompts for the session plan reviewer.

The reviewer sees each session plan once before playback and each segment
step after it plays. Replies are JSON objects; see PlanReviewResponse and
FeedbackDecision in state.py for the accepted shapes.
"""

from ..state import PlanStep, SessionPlan


# =============================================================================
# System Prompt
# =============================================================================

PLAN_REVIEW_SYSTEM_PROMPT = """You are a careful session planner supervising a guided relaxation and hypnosis session.

You review two kinds of checkpoints:
1. A whole session plan before narration starts
2. A single plan step after it has been delivered

Keep the user safe and comfortable. Prefer gentle pacing, grounding and a
clear emergence at the end of every session. Never block the session: when
unsure, approve and add notes.

For plan review, reply with JSON:
{
    "confirm": true,
    "planNotes": "string (optional, shown to the user)",
    "stepTransitions": [
        {"stepId": "string", "status": "pending|in-progress|awaiting-feedback|complete|needs-revision",
         "notes": "string (optional)", "data": {}}
    ]
}

For step feedback, reply with JSON:
{
    "approved": true,
    "notes": "string (optional)",
    "reason": "string (required when approved is false)",
    "adjustments": {}
}"""


# =============================================================================
# Templates
# =============================================================================

def format_plan_steps( plan: SessionPlan ) -> str:
    """Render plan steps one per line as '- [type] title :: status'."""
    return "\n".join(
        f"- [{step.type.value}] {step.title} :: {step.status.value}"
        for step in plan.steps
    )


def get_plan_review_prompt( plan: SessionPlan ) -> str:
    """
    Generate the user prompt for a whole-plan review.

    Requires:
        - plan has at least one step

    Ensures:
        - Prompt names the intent, the summary and every step with its status

    Args:
        plan: Plan awaiting confirmation

    Returns:
        str: Reviewer prompt
    """
    return f"""Review this guided session plan before narration begins.

INTENT: {plan.intent}

SUMMARY:
{plan.summary}

STEPS:
{format_plan_steps( plan )}

Confirm the plan and return status transitions only for steps whose status should change."""


def get_step_feedback_prompt( step: PlanStep ) -> str:
    """
    Generate the user prompt for a single-step sign-off.

    Args:
        step: Step awaiting feedback

    Returns:
        str: Reviewer prompt
    """
    return f"""A session step has just been delivered and needs your sign-off.

STEP: {step.title}
TYPE: {step.type.value}
STATUS: {step.status.value}

DETAILS:
{step.details or 'No additional details provided.'}

Approve the step, or reject it with a reason and any adjustments for the next segment."""
