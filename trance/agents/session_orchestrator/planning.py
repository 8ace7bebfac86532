#!/usr/bin/env python3
"""
Plan State Machine for guided sessions.

Pure functions over SessionPlan values. Every operation returns a new plan
and leaves its input untouched, so a plan held by a subscriber or a snapshot
never changes underneath it.

Step lifecycle:
    pending -> in-progress -> awaiting-feedback -> complete
                                               \\-> needs-revision
"""

import logging
import uuid
from typing import Any, Optional, Sequence

from .state import (
    PlanStep,
    PlanStepStatus,
    PlanStepType,
    ScriptSegment,
    SessionContext,
    SessionPlan,
    StepFeedback,
)

logger = logging.getLogger( __name__ )

# Checked in insertion order; the first keyword found in the goal name wins
GOAL_INTENT_KEYWORDS = {
    "calm"         : "stress-relief",
    "stress"       : "stress-relief",
    "overwhelm"    : "stress-relief",
    "anxious"      : "stress-relief",
    "focus"        : "focus-enhancement",
    "productivity" : "motivation",
    "motivate"     : "motivation",
    "sleep"        : "sleep-support",
    "habit"        : "habit-building",
    "confidence"   : "confidence-boost",
}

EGO_STATE_INTENTS = {
    "guardian" : "grounding-and-safety",
    "sage"     : "insight-coaching",
}

DEFAULT_INTENT    = "general-support"
DEFAULT_GOAL      = "your desired transformation"
DEFAULT_EGO_STATE = "inner guide"

DETAILS_PREVIEW_CHARS = 140
TEXT_PREVIEW_CHARS    = 280


def generate_id( prefix: str ) -> str:
    """Generate a unique identifier such as 'plan_1f0c...'."""
    return f"{prefix}_{uuid.uuid4()}"


def _context_value( context: Any, name: str ) -> Any:
    if context is None:
        return None
    if isinstance( context, dict ):
        return context.get( name )
    return getattr( context, name, None )


def _goal_name( context: Any ) -> str:
    goal_name = _context_value( context, "goal_name" )
    if not goal_name:
        goal = _context_value( context, "goal" ) or {}
        goal_name = goal.get( "name" ) if isinstance( goal, dict ) else None
    return str( goal_name or "" )


def infer_session_intent( context: Any ) -> str:
    """
    Derive the session intent label from the goal name and ego state.

    Requires:
        - context is a SessionContext, a dict with the same snake_case keys, or None

    Ensures:
        - Returns the intent of the first goal keyword contained in the goal name
        - Falls back to the ego state mapping, then to 'general-support'

    Args:
        context: Session context

    Returns:
        str: Intent label
    """
    raw_goal   = _goal_name( context ).lower()
    ego_state  = str( _context_value( context, "ego_state" ) or "" ).lower()

    if not raw_goal and not ego_state:
        return DEFAULT_INTENT

    for keyword, intent in GOAL_INTENT_KEYWORDS.items():
        if keyword in raw_goal:
            return intent

    for keyword, intent in EGO_STATE_INTENTS.items():
        if keyword in ego_state:
            return intent

    return DEFAULT_INTENT


def create_session_plan(
    context     : Any,
    revision_of : Optional[ str ] = None,
    feedback    : Optional[ StepFeedback ] = None,
) -> SessionPlan:
    """
    Build the canonical four-step plan for a session.

    Requires:
        - context is a SessionContext, a dict, or None

    Ensures:
        - Steps are gather_context, generate_script, a placeholder play_segment, wrap_up
        - Every step is pending and indices are 0..3
        - needs_confirmation is True
        - metadata records goal, ego state and whether a revision was requested

    Args:
        context: Session context
        revision_of: ID of the plan this one supersedes
        feedback: Feedback that triggered the revision, if any

    Returns:
        SessionPlan: New unconfirmed plan
    """
    intent     = infer_session_intent( context )
    goal       = _goal_name( context ) or DEFAULT_GOAL
    ego_state  = _context_value( context, "ego_state" ) or DEFAULT_EGO_STATE
    length_sec = _context_value( context, "length_sec" ) or 600

    steps = [
        PlanStep(
            id      = generate_id( "step" ),
            type    = PlanStepType.GATHER_CONTEXT,
            title   = "Clarify current state and desired outcome",
            details = f"Review conversation and preferences to understand how to guide the user toward {goal}.",
            index   = 0,
            data    = {
                "ego_state"    : ego_state,
                "goal"         : goal,
                "user_signals" : _context_value( context, "user_signals" ),
            },
        ),
        PlanStep(
            id      = generate_id( "step" ),
            type    = PlanStepType.GENERATE_SCRIPT,
            title   = "Design tailored hypnosis narrative",
            details = "Draft a multi-segment hypnosis journey aligned with the inferred need.",
            index   = 1,
            data    = {
                "intent"             : intent,
                "goal"               : goal,
                "estimated_duration" : length_sec,
            },
        ),
        PlanStep(
            id      = generate_id( "step" ),
            type    = PlanStepType.PLAY_SEGMENT,
            title   = "Guide the user through each segment with check-ins",
            details = "Deliver the hypnosis audio one segment at a time, pausing for feedback between steps.",
            index   = 2,
            data    = { "placeholder": True },
        ),
        PlanStep(
            id      = generate_id( "step" ),
            type    = PlanStepType.WRAP_UP,
            title   = "Integrate insights and capture reflections",
            details = "Close the session, invite reflections, and store outcomes for future personalization.",
            index   = 3,
        ),
    ]

    return SessionPlan(
        id                 = generate_id( "plan" ),
        intent             = intent,
        summary            = f"Support the user with {intent.replace( '-', ' ', 1 )} using the {ego_state} ego state focus and goal \"{goal}\".",
        needs_confirmation = True,
        steps              = steps,
        metadata           = {
            "goal"               : goal,
            "ego_state"          : ego_state,
            "revision_requested" : feedback is not None and feedback.approved is False,
            "feedback_notes"     : feedback.notes if feedback is not None else None,
        },
        revision_of        = revision_of,
    )


def _reindex( steps: list[ PlanStep ] ) -> list[ PlanStep ]:
    return [ step.model_copy( update={ "index": idx } ) for idx, step in enumerate( steps ) ]


def materialize_plan_with_segments( plan: SessionPlan, segments: Sequence[ ScriptSegment ] ) -> SessionPlan:
    """
    Replace the segment placeholder with one play_segment step per segment.

    A second call replaces the previously materialized segment steps, so the
    operation is idempotent with respect to the segment list.

    Requires:
        - plan has at least one play_segment step (placeholder or materialized)

    Ensures:
        - Segment steps are pending, titled 'Guide segment N', in segment order
        - data carries segment_id, approx_sec and a text_preview of at most 280 chars
        - details is at most 140 chars
        - All step indices are dense and zero-based

    Args:
        plan: Current plan
        segments: Ordered script segments

    Returns:
        SessionPlan: New plan with materialized segment steps
    """
    segment_steps = [
        PlanStep(
            id      = generate_id( "step" ),
            type    = PlanStepType.PLAY_SEGMENT,
            title   = f"Guide segment {position + 1}",
            details = segment.text[ :DETAILS_PREVIEW_CHARS ] if segment.text else "Deliver hypnosis content.",
            data    = {
                "segment_id"   : segment.id,
                "approx_sec"   : segment.approx_sec,
                "text_preview" : segment.text[ :TEXT_PREVIEW_CHARS ] if segment.text else None,
            },
        )
        for position, segment in enumerate( segments )
    ]

    new_steps = []
    inserted  = False
    for step in plan.steps:
        if step.type == PlanStepType.PLAY_SEGMENT:
            if not inserted:
                new_steps.extend( segment_steps )
                inserted = True
            continue
        new_steps.append( step )

    if not inserted:
        logger.warning( f"Plan {plan.id} has no play_segment step; segments not materialized" )
        return plan.model_copy( deep=True )

    return plan.model_copy( update={ "steps": _reindex( new_steps ) }, deep=True )


def update_plan_step_status(
    plan    : SessionPlan,
    step_id : str,
    status  : PlanStepStatus,
    patch   : Optional[ dict[ str, Any ] ] = None,
) -> SessionPlan:
    """
    Set one step's status, merging an optional field patch into it.

    Requires:
        - patch keys are PlanStep field names

    Ensures:
        - Returns a new plan; the input plan is unchanged
        - An unknown step_id yields a plan equal to the input
        - Never raises for unknown ids

    Args:
        plan: Current plan
        step_id: Step to update
        status: New status
        patch: Optional field overrides (details, data, ...)

    Returns:
        SessionPlan: Updated plan
    """
    update = dict( patch or {} )
    update[ "status" ] = status
    update.pop( "id", None )
    update.pop( "index", None )

    steps = [
        step.model_copy( update=update, deep=True ) if step.id == step_id else step.model_copy( deep=True )
        for step in plan.steps
    ]

    return plan.model_copy( update={ "steps": steps }, deep=True )


def find_plan_step( plan: Optional[ SessionPlan ], step_id: Optional[ str ] ) -> Optional[ PlanStep ]:
    """Get the step with step_id, or None."""
    if plan is None or not step_id:
        return None
    return next( ( step for step in plan.steps if step.id == step_id ), None )


def find_segment_step( plan: Optional[ SessionPlan ], segment_id: Optional[ str ] ) -> Optional[ PlanStep ]:
    """Get the play_segment step bound to segment_id, or None."""
    if plan is None or not segment_id:
        return None
    return next(
        ( step for step in plan.steps
          if step.type == PlanStepType.PLAY_SEGMENT and step.data.get( "segment_id" ) == segment_id ),
        None,
    )


def all_segment_steps_complete( plan: Optional[ SessionPlan ] ) -> bool:
    """
    Check whether every play_segment step is complete.

    Ensures:
        - False for None or a plan with zero play_segment steps
    """
    if plan is None:
        return False

    segment_steps = plan.steps_of_type( PlanStepType.PLAY_SEGMENT )
    if not segment_steps:
        return False

    return all( step.status == PlanStepStatus.COMPLETE for step in segment_steps )


def merge_plan_patch( plan: SessionPlan, patch: Optional[ SessionPlan ] ) -> SessionPlan:
    """
    Apply a confirmation patch to the live plan.

    Steps in the patch replace same-id steps of the live plan. Live steps the
    patch does not mention are kept as they are, and patch steps whose id is no
    longer in the live plan are dropped. Summary and metadata come from the
    patch when it carries them.

    Requires:
        - patch.id == plan.id when patch is given

    Ensures:
        - needs_confirmation is False on the result
        - Step order and indices follow the live plan

    Args:
        plan: Live plan
        patch: Reviewed copy of the plan, or None to confirm as-is

    Returns:
        SessionPlan: Confirmed plan
    """
    if patch is None:
        return plan.model_copy( update={ "needs_confirmation": False }, deep=True )

    patched = { step.id: step for step in patch.steps }
    steps   = []
    for step in plan.steps:
        source = patched.get( step.id, step )
        steps.append( source.model_copy( update={ "index": step.index }, deep=True ) )

    dropped = set( patched ) - { step.id for step in plan.steps }
    if dropped:
        logger.warning( f"Ignoring {len( dropped )} patch step(s) not present in plan {plan.id}" )

    metadata = dict( plan.metadata )
    metadata.update( patch.metadata )

    return plan.model_copy(
        update = {
            "summary"            : patch.summary or plan.summary,
            "metadata"           : metadata,
            "steps"              : steps,
            "needs_confirmation" : False,
        },
        deep = True,
    )


def create_plan_revision( plan: SessionPlan, context: Any, feedback: Optional[ StepFeedback ] = None ) -> SessionPlan:
    """
    Build a fresh plan that supersedes plan.

    Ensures:
        - revision_of is plan.id
        - metadata.revision_requested reflects a rejecting feedback
        - Segment steps are carried over as pending when plan was materialized
    """
    revision = create_session_plan( context, revision_of=plan.id, feedback=feedback )

    segment_steps = [
        step for step in plan.steps_of_type( PlanStepType.PLAY_SEGMENT )
        if not step.data.get( "placeholder" )
    ]
    if not segment_steps:
        return revision

    segments = [
        ScriptSegment(
            id         = step.data[ "segment_id" ],
            text       = step.data.get( "text_preview" ) or step.details or "",
            approx_sec = step.data.get( "approx_sec" ),
        )
        for step in segment_steps
    ]

    return materialize_plan_with_segments( revision, segments )


def quick_smoke_test():
    """Quick smoke test for plan state machine."""
    import trance.utils.util as cu

    cu.print_banner( "Plan State Machine Smoke Test", prepend_nl=True )

    try:
        context = SessionContext( ego_state="sage", goal_name="Deep Focus" )

        print( "Testing intent inference..." )
        assert infer_session_intent( context ) == "focus-enhancement"
        assert infer_session_intent( None ) == DEFAULT_INTENT
        print( "✓ Intent inference works" )

        print( "Testing plan creation and materialization..." )
        plan = create_session_plan( context )
        assert len( plan.steps ) == 4
        segments = [ ScriptSegment( id=f"s{i}", text=f"Segment {i}" ) for i in range( 3 ) ]
        plan = materialize_plan_with_segments( plan, segments )
        plan = materialize_plan_with_segments( plan, segments )
        assert len( plan.steps_of_type( PlanStepType.PLAY_SEGMENT ) ) == 3
        assert [ step.index for step in plan.steps ] == list( range( 6 ) )
        print( f"✓ Materialized plan has {len( plan.steps )} steps" )

        print( "Testing status updates..." )
        step = find_segment_step( plan, "s1" )
        updated = update_plan_step_status( plan, step.id, PlanStepStatus.COMPLETE )
        assert find_plan_step( updated, step.id ).status == PlanStepStatus.COMPLETE
        assert find_plan_step( plan, step.id ).status == PlanStepStatus.PENDING
        print( "✓ Status updates return new plans" )

        print( "\n✓ Plan State Machine smoke test completed successfully" )

    except Exception as e:
        print( f"\n✗ Smoke test failed: {e}" )
        import traceback
        traceback.print_exc()


if __name__ == "__main__":
    quick_smoke_test()
