#!/usr/bin/env python3
"""
State Schemas for the guided session orchestrator.

Pydantic models for plans, steps, script segments, feedback and the session
snapshot; dataclasses for runtime-only records that hold live resources.
Wire payloads use camelCase aliases; Python code uses snake_case names.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class PlanStepType( str, Enum ):
    """The four step kinds a session plan is built from."""
    GATHER_CONTEXT  = "gather_context"
    GENERATE_SCRIPT = "generate_script"
    PLAY_SEGMENT    = "play_segment"
    WRAP_UP         = "wrap_up"


class PlanStepStatus( str, Enum ):
    """
    Status of a single plan step.

    AWAITING_FEEDBACK is a checkpoint: the step is done from the playback
    point of view but needs a reviewer decision before it counts as complete.
    """
    PENDING           = "pending"
    IN_PROGRESS       = "in-progress"
    AWAITING_FEEDBACK = "awaiting-feedback"
    COMPLETE          = "complete"
    NEEDS_REVISION    = "needs-revision"


class PlayState( str, Enum ):
    """Playback state machine: stopped -> playing -> {paused <-> playing} -> stopped."""
    STOPPED = "stopped"
    PLAYING = "playing"
    PAUSED  = "paused"


class NarrationProvider( str, Enum ):
    """Where a segment's narration comes from."""
    SYNTH           = "synth"
    FALLBACK_SPEECH = "fallback-speech"
    NONE            = "none"


class SessionEventType( str, Enum ):
    """Lifecycle events published by the orchestrator."""
    SESSION_START            = "session-start"
    PLAY                     = "play"
    PAUSE                    = "pause"
    END                      = "end"
    AUDIO_ELEMENT            = "audio-element"
    SEGMENT_READY            = "segment-ready"
    PLAN_CONFIRMATION_NEEDED = "plan-confirmation-needed"
    FEEDBACK_REQUIRED        = "feedback-required"
    STATE_CHANGE             = "state-change"
    ERROR                    = "error"


class WireModel( BaseModel ):
    """Base for models that travel as camelCase JSON."""

    model_config = ConfigDict(
        alias_generator  = to_camel,
        populate_by_name = True,
        use_enum_values  = False,
    )

    def to_wire( self ) -> dict:
        """Serialize to a JSON-compatible camelCase dict."""
        return self.model_dump( mode="json", by_alias=True )


# =============================================================================
# Plan Models
# =============================================================================

class PlanStep( WireModel ):
    """
    One unit of plan work. Owned by exactly one SessionPlan.

    index is dense and zero-based; it is re-issued whenever steps are
    replaced, so consumers must not cache positions across mutations.
    """

    id      : str
    type    : PlanStepType
    title   : str
    status  : PlanStepStatus = PlanStepStatus.PENDING
    details : Optional[ str ] = None
    data    : dict[ str, Any ] = Field( default_factory=dict )
    index   : int = 0


class SessionPlan( WireModel ):
    """
    Ordered plan describing how a session will proceed.

    Before materialization one placeholder play_segment step stands in for
    the eventual per-segment steps.
    """

    id                 : str
    created_at         : str = Field( default_factory=lambda: datetime.now().isoformat() )
    intent             : str
    summary            : str
    needs_confirmation : bool = True
    steps              : list[ PlanStep ] = Field( default_factory=list )
    metadata           : dict[ str, Any ] = Field( default_factory=dict )
    revision_of        : Optional[ str ] = None

    def steps_of_type( self, step_type: PlanStepType ) -> list[ PlanStep ]:
        """Get the steps of one kind, in plan order."""
        return [ step for step in self.steps if step.type == step_type ]


class StepFeedback( WireModel ):
    """Ephemeral decision about one step; consumed once by a status transition."""

    step_id     : Optional[ str ] = None
    approved    : bool
    notes       : Optional[ str ] = None
    reason      : Optional[ str ] = None
    adjustments : Optional[ dict[ str, Any ] ] = None


class PlanTransition( WireModel ):
    """Reviewer-requested status change for one step."""

    step_id : str
    status  : PlanStepStatus
    notes   : Optional[ str ] = None
    data    : Optional[ dict[ str, Any ] ] = None


class PlanReviewResponse( WireModel ):
    """Reviewer reply in plan-review mode."""

    confirm          : bool = True
    plan_notes       : Optional[ str ] = None
    step_transitions : list[ PlanTransition ] = Field( default_factory=list )


class FeedbackDecision( WireModel ):
    """Reviewer reply in step-feedback mode."""

    approved    : bool = True
    notes       : Optional[ str ] = None
    reason      : Optional[ str ] = None
    adjustments : Optional[ dict[ str, Any ] ] = None


# =============================================================================
# Script Models
# =============================================================================

class ScriptSegment( WireModel ):
    """One narrated beat of a session, with optional synthesis hints."""

    id         : str
    text       : str
    approx_sec : Optional[ float ] = None
    mood       : Optional[ str ] = None
    voice      : Optional[ str ] = None
    sfx        : Optional[ str ] = None


class SessionScript( WireModel ):
    """Ordered narration segments returned by a script source."""

    title    : str = "Guided Session"
    segments : list[ ScriptSegment ] = Field( default_factory=list )
    metadata : dict[ str, Any ] = Field( default_factory=dict )

    def get_segment_count( self ) -> int:
        """Get total number of segments."""
        return len( self.segments )

    def get_total_word_count( self ) -> int:
        """Get total word count across all segments."""
        return sum( len( segment.text.split() ) for segment in self.segments )


# =============================================================================
# Session Input
# =============================================================================

class StartSessionOptions( WireModel ):
    """Caller input for a new session."""

    goal_id         : Optional[ str ] = None
    ego_state       : str = "guardian"
    length_sec      : Optional[ int ] = None
    locale          : str = "en-US"
    level           : int = 1
    streak          : int = 0
    user_prefs      : dict[ str, Any ] = Field( default_factory=dict )
    goal            : Optional[ dict[ str, Any ] ] = None
    action          : Optional[ dict[ str, Any ] ] = None
    method          : Optional[ dict[ str, Any ] ] = None
    protocol        : Optional[ dict[ str, Any ] ] = None
    custom_protocol : Optional[ dict[ str, Any ] ] = None
    user_signals    : Optional[ dict[ str, Any ] ] = None


class SessionContext( WireModel ):
    """
    Normalized session context handed to planning and the script provider.

    Unknown keys are kept so memory or caller extensions travel with the context.
    """

    model_config = ConfigDict(
        alias_generator  = to_camel,
        populate_by_name = True,
        extra            = "allow",
    )

    ego_state                 : str = "guardian"
    goal_id                   : str = "transformation"
    goal_name                 : str = "personal transformation"
    action_name               : str = "transformation"
    method_name               : str = "guided relaxation"
    protocol_name             : str = "custom session"
    length_sec                : int = 600
    custom_protocol_goals     : str = ""
    custom_protocol_induction : str = ""
    custom_protocol_duration  : int = 600
    protocol_description      : str = ""
    protocol_duration         : int = 600
    user_level                : int = 1
    user_experience           : str = "beginner"
    current_time              : str = Field( default_factory=lambda: datetime.now().isoformat() )
    session_unique_id         : str = ""
    prompt_variation          : int = 1
    session_type              : str = "guided_session"
    locale                    : str = "en-US"
    goal                      : Optional[ dict[ str, Any ] ] = None
    action                    : Optional[ dict[ str, Any ] ] = None
    method                    : Optional[ dict[ str, Any ] ] = None
    protocol                  : Optional[ dict[ str, Any ] ] = None
    custom_protocol           : Optional[ dict[ str, Any ] ] = None
    user_prefs                : Optional[ dict[ str, Any ] ] = None
    user_signals              : Optional[ dict[ str, Any ] ] = None


# =============================================================================
# Session Snapshot
# =============================================================================

class SessionState( WireModel ):
    """
    Consolidated session snapshot. Consumers receive copies.

    awaiting_plan_confirmation mirrors plan.needs_confirmation and
    awaiting_feedback_for_step_id names the step in awaiting-feedback, if any.
    """

    play_state                    : PlayState = PlayState.STOPPED
    current_segment_index         : int = 0
    current_segment_id            : Optional[ str ] = None
    total_segments                : int = 0
    buffered_ahead                : int = 0
    plan                          : Optional[ SessionPlan ] = None
    error                         : Optional[ str ] = None
    is_initialized                : bool = False
    awaiting_plan_confirmation    : bool = False
    awaiting_feedback_for_step_id : Optional[ str ] = None


# =============================================================================
# Runtime Records
# =============================================================================

@dataclass
class PlayableSegment:
    """
    A script segment resolved for playback.

    audio is a live AudioHandle (see narration.py) owned by this segment;
    it is None when narration falls back to on-device speech.
    """

    segment            : ScriptSegment
    index              : int
    audio              : Any = None
    narration_provider : NarrationProvider = NarrationProvider.NONE
    narration_error    : Optional[ str ] = None

    @property
    def id( self ) -> str:
        return self.segment.id

    @property
    def text( self ) -> str:
        return self.segment.text

    def release( self ) -> None:
        """Dispose of the audio handle, if any."""
        if self.audio is not None:
            self.audio.release()
            self.audio = None


@dataclass
class SessionEvent:
    """One typed lifecycle event."""

    type      : SessionEventType
    payload   : Any = None
    timestamp : str = field( default_factory=lambda: datetime.now().isoformat() )


def quick_smoke_test():
    """Quick smoke test for state schemas."""
    import trance.utils.util as cu

    cu.print_banner( "Session State Smoke Test", prepend_nl=True )

    try:
        print( "Testing PlanStepStatus enum..." )
        assert PlanStepStatus.IN_PROGRESS.value == "in-progress"
        assert len( PlanStepStatus ) == 5
        print( f"✓ PlanStepStatus enum valid ({len( PlanStepStatus )} statuses)" )

        print( "Testing camelCase wire format..." )
        segment = ScriptSegment.model_validate( { "id": "s1", "text": "Breathe in.", "approxSec": 12 } )
        assert segment.approx_sec == 12
        assert segment.to_wire()[ "approxSec" ] == 12
        print( "✓ ScriptSegment accepts and emits camelCase" )

        print( "Testing SessionState defaults..." )
        state = SessionState()
        assert state.play_state == PlayState.STOPPED
        assert state.awaiting_feedback_for_step_id is None
        print( "✓ SessionState defaults valid" )

        print( "\n✓ Session State smoke test completed successfully" )

    except Exception as e:
        print( f"\n✗ Smoke test failed: {e}" )
        import traceback
        traceback.print_exc()


if __name__ == "__main__":
    quick_smoke_test()
