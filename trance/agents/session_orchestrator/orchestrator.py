#!/usr/bin/env python3
"""
Session Orchestrator - single entry point for a guided session.

Wires the plan state machine, the segment playback pipeline and the plan
review agent together, and republishes one consolidated SessionState plus a
typed lifecycle event stream.

Design Pattern: Facade with a single plan writer
- The plan is replaced, never edited in place; every replacement goes
  through one PlanMutationQueue
- The pipeline alone moves the segment index and play state
- Checkpoint handlers run in the background; callers observe their effect
  through state-change events or get_current_state()
"""

import logging
from typing import Any, Callable, Optional, Union

from .config import SessionConfig
from .errors import SessionInitError
from .events import SessionEventChannel
from .monitor import ExecutionMonitor, TelemetrySink
from .mutations import PlanMutationQueue
from .narration import AudioOutput, HeadlessAudioOutput, SpeechNarrator, create_speech_narrator
from .plan_reviewer import PlanReviewAgent
from .planning import (
    all_segment_steps_complete,
    create_plan_revision,
    create_session_plan,
    find_plan_step,
    find_segment_step,
    materialize_plan_with_segments,
    merge_plan_patch,
    update_plan_step_status,
)
from .playback import SegmentPlaybackPipeline
from .script_client import ScriptProviderClient
from .script_sources import ScriptSource, build_default_sources
from .session_context import map_start_options_to_context
from .state import (
    PlanStepStatus,
    PlanStepType,
    PlayableSegment,
    PlayState,
    SessionContext,
    SessionEventType,
    SessionPlan,
    SessionState,
    StartSessionOptions,
    StepFeedback,
)
from .tts_client import NarrationSynthesizerClient

logger = logging.getLogger( __name__ )


class SessionOrchestrator:
    """
    Facade over one guided session at a time.

    Requires:
        - Methods are awaited from a running event loop

    Ensures:
        - start() raises only SessionInitError
        - Every plan replacement publishes a state-change event
        - get_current_state() returns a copy the caller may keep
        - dispose() is idempotent
    """

    def __init__(
        self,
        config          : Optional[ SessionConfig ] = None,
        script_client   : Optional[ ScriptProviderClient ] = None,
        synthesizer     = None,
        audio_output    : Optional[ AudioOutput ] = None,
        speech_narrator : Optional[ SpeechNarrator ] = None,
        sources         : Optional[ list[ ScriptSource ] ] = None,
        reviewer        : Optional[ PlanReviewAgent ] = None,
        enable_reviewer : bool = True,
        telemetry_sink  : Optional[ TelemetrySink ] = None,
        enable_monitor  : bool = True,
        debug           : bool = False,
        verbose         : bool = False,
    ):
        """
        Initialize the orchestrator.

        Args:
            config: Session configuration (defaults if None)
            script_client: Script provider client (built from config if None)
            synthesizer: Object with async synthesize( text, voice_id, model, cache_key )
            audio_output: Synthesized audio player (headless if None)
            speech_narrator: Device speech narrator (pyttsx3 when available)
            sources: Script source chain (remote, canned, emergency if None)
            reviewer: Plan review agent (built from config if None)
            enable_reviewer: Attach a reviewer to the checkpoint events
            telemetry_sink: Callable( event_name, record ) for lifecycle telemetry
            enable_monitor: Attach the execution monitor
            debug: Enable debug output
            verbose: Enable verbose output
        """
        self.config  = config or SessionConfig()
        self.debug   = debug
        self.verbose = verbose

        self.events = SessionEventChannel( debug=debug )

        self._script_client   = script_client
        self._synthesizer     = synthesizer
        self._audio_output    = audio_output
        self._speech_narrator = speech_narrator
        self._sources         = sources

        self._plan           : Optional[ SessionPlan ] = None
        self._context        : Optional[ SessionContext ] = None
        self._pipeline       : Optional[ SegmentPlaybackPipeline ] = None
        self._is_initialized = False
        self._error          : Optional[ str ] = None
        self._disposed       = False

        self._mutations = PlanMutationQueue( get_plan=lambda: self._plan, set_plan=self._set_plan, debug=debug )

        self.reviewer = None
        if enable_reviewer:
            self.reviewer = reviewer or PlanReviewAgent( self, config=self.config, debug=debug, verbose=verbose )
            self.reviewer.attach()

        self.monitor = None
        if enable_monitor:
            self.monitor = ExecutionMonitor( self, sink=telemetry_sink, debug=debug )
            self.monitor.attach()

        if self.debug:
            print( f"[SessionOrchestrator] Initialized (reviewer: {'on' if self.reviewer else 'off'})" )

    # =========================================================================
    # Lazy Collaborators
    # =========================================================================

    @property
    def script_client( self ) -> ScriptProviderClient:
        """Lazy initialization of the script provider client."""
        if self._script_client is None:
            self._script_client = ScriptProviderClient( config=self.config, debug=self.debug, verbose=self.verbose )
        return self._script_client

    @property
    def synthesizer( self ):
        """Lazy initialization of the narration synthesizer client."""
        if self._synthesizer is None:
            self._synthesizer = NarrationSynthesizerClient( config=self.config, debug=self.debug, verbose=self.verbose )
        return self._synthesizer

    @property
    def audio_output( self ) -> AudioOutput:
        if self._audio_output is None:
            self._audio_output = HeadlessAudioOutput( debug=self.debug )
        return self._audio_output

    @property
    def speech_narrator( self ) -> SpeechNarrator:
        if self._speech_narrator is None:
            self._speech_narrator = create_speech_narrator( self.config.device_speech, debug=self.debug )
        return self._speech_narrator

    @property
    def plan( self ) -> Optional[ SessionPlan ]:
        return self._plan

    @property
    def pipeline( self ) -> Optional[ SegmentPlaybackPipeline ]:
        return self._pipeline

    # =========================================================================
    # Session Lifecycle
    # =========================================================================

    async def start( self, options: Union[ StartSessionOptions, dict ] ) -> SessionState:
        """
        Start a new session, replacing any previous one.

        Requires:
            - options is StartSessionOptions or a dict accepted by it

        Ensures:
            - plan-confirmation-needed is emitted with the new plan before the script resolves
            - The plan carries one play_segment step per script segment
            - is_initialized is True on return

        Raises:
            SessionInitError: If initialization ends with zero segments

        Args:
            options: Caller start options

        Returns:
            SessionState: Snapshot after initialization
        """
        if isinstance( options, dict ):
            options = StartSessionOptions.model_validate( options )

        await self._teardown_session()

        context = map_start_options_to_context( options, default_length_sec=self.config.default_length_sec )
        plan    = create_session_plan( context )

        self._context = context
        self._error   = None
        await self._mutations.apply( lambda _: plan, "create-plan" )

        self.events.emit( SessionEventType.SESSION_START, { "plan_id": plan.id, "goal": context.goal_name, "ego_state": context.ego_state } )
        self.events.emit( SessionEventType.PLAN_CONFIRMATION_NEEDED, plan.model_copy( deep=True ) )

        pipeline = self._build_pipeline()
        self._pipeline = pipeline

        try:
            script = await pipeline.initialize( context )
        except SessionInitError as e:
            self._error = str( e )
            logger.error( f"Session initialization failed: {e}" )
            self.events.emit( SessionEventType.ERROR, self._error )
            self._publish_state()
            raise

        def materialize( current: Optional[ SessionPlan ] ) -> Optional[ SessionPlan ]:
            if current is None or current.id != plan.id:
                return None
            return materialize_plan_with_segments( current, script.segments )

        await self._mutations.apply( materialize, "materialize-segments" )

        self._is_initialized = True
        self._publish_state()

        if self.debug:
            print( f"[SessionOrchestrator] Session ready: {len( script.segments )} segments, intent '{plan.intent}'" )

        return self.get_current_state()

    def _build_pipeline( self ) -> SegmentPlaybackPipeline:
        sources = self._sources if self._sources is not None else build_default_sources( self.script_client )

        pipeline = SegmentPlaybackPipeline(
            synthesizer     = self.synthesizer,
            sources         = sources,
            audio_output    = self.audio_output,
            speech_narrator = self.speech_narrator,
            events          = self.events,
            config          = self.config,
            debug           = self.debug,
            verbose         = self.verbose,
        )
        pipeline.on_segment_start  = self._on_segment_start
        pipeline.on_segment_finish = self._on_segment_finish
        pipeline.on_change         = self._publish_state
        return pipeline

    async def _teardown_session( self ) -> None:
        if self._pipeline is not None:
            await self._pipeline.dispose()
            self._pipeline = None
        await self._mutations.drain()
        self._plan           = None
        self._context        = None
        self._is_initialized = False

    async def dispose( self ) -> None:
        """
        End the session and release every resource.

        Ensures:
            - Playback and prefetch are cancelled and audio handles released
            - Reviewer, monitor and event listeners are detached
            - Safe to call more than once
        """
        if self._disposed:
            return
        self._disposed = True

        if self._pipeline is not None:
            await self._pipeline.dispose()

        self._mutations.close()

        if self.reviewer is not None:
            self.reviewer.detach()
        if self.monitor is not None:
            self.monitor.detach()

        self._publish_state()
        self.events.clear()

        if self.debug:
            print( "[SessionOrchestrator] Disposed" )

    async def wait_idle( self ) -> None:
        """Wait until reviewer handlers and queued plan mutations have settled."""
        if self.reviewer is not None:
            await self.reviewer.wait_idle()
        await self._mutations.drain()

    # =========================================================================
    # Checkpoints
    # =========================================================================

    async def confirm_plan( self, patch: Optional[ SessionPlan ] = None, plan_id: Optional[ str ] = None ) -> bool:
        """
        Confirm the active plan, optionally merging a reviewed copy into it.

        Ensures:
            - A plan_id or patch id that no longer matches the active plan is discarded
            - needs_confirmation is False after a successful confirmation

        Args:
            patch: Reviewed copy of the plan
            plan_id: Plan the confirmation was computed for

        Returns:
            bool: True if the confirmation was applied
        """
        applied = False

        def confirm( current: Optional[ SessionPlan ] ) -> Optional[ SessionPlan ]:
            nonlocal applied
            target_id = plan_id or ( patch.id if patch is not None else None )
            if current is None or ( target_id is not None and target_id != current.id ):
                logger.info( f"Discarding confirmation for stale plan {target_id}" )
                return None
            applied = True
            return merge_plan_patch( current, patch )

        await self._mutations.apply( confirm, "confirm-plan" )
        return applied

    async def submit_step_feedback( self, feedback: StepFeedback ) -> bool:
        """
        Resolve a feedback checkpoint for one step.

        Ensures:
            - approved -> complete, notes and adjustments merged into step data
            - rejected -> needs-revision with the reason recorded
            - Unknown step ids are a no-op

        Returns:
            bool: True if a step was updated
        """
        applied = False

        def resolve( current: Optional[ SessionPlan ] ) -> Optional[ SessionPlan ]:
            nonlocal applied
            step = find_plan_step( current, feedback.step_id )
            if step is None:
                logger.info( f"Ignoring feedback for unknown step {feedback.step_id}" )
                return None

            data = dict( step.data )
            if feedback.notes:
                data[ "feedback_notes" ] = feedback.notes
            if feedback.adjustments:
                data[ "adjustments" ] = { **data.get( "adjustments", {} ), **feedback.adjustments }

            applied = True
            if feedback.approved:
                return update_plan_step_status( current, step.id, PlanStepStatus.COMPLETE, { "data": data } )

            data[ "revision_reason" ] = feedback.reason or feedback.notes or "Reviewer requested changes."
            return update_plan_step_status( current, step.id, PlanStepStatus.NEEDS_REVISION, { "data": data } )

        updated = await self._mutations.apply( resolve, "step-feedback" )

        if updated is not None and all_segment_steps_complete( updated ) and self.verbose:
            print( "[SessionOrchestrator] All segment steps complete; wrap-up awaits an explicit advance" )

        return applied

    async def complete_wrap_up( self, notes: Optional[ str ] = None ) -> bool:
        """
        Advance the wrap_up step to complete.

        Ensures:
            - Refused, with error set, until every segment step is complete

        Returns:
            bool: True if wrap_up was completed
        """
        applied = False

        def wrap_up( current: Optional[ SessionPlan ] ) -> Optional[ SessionPlan ]:
            nonlocal applied
            if not all_segment_steps_complete( current ):
                return None
            step = next( iter( current.steps_of_type( PlanStepType.WRAP_UP ) ), None )
            if step is None:
                return None
            applied = True
            data = { **step.data, "reflections": notes } if notes else dict( step.data )
            return update_plan_step_status( current, step.id, PlanStepStatus.COMPLETE, { "data": data } )

        await self._mutations.apply( wrap_up, "complete-wrap-up" )

        if not applied:
            self._error = "Wrap-up requires every segment step to be complete"
            self._publish_state()
        return applied

    async def revise_plan( self, feedback: Optional[ StepFeedback ] = None ) -> Optional[ SessionPlan ]:
        """
        Supersede the active plan with a revision that needs confirmation again.

        Ensures:
            - The new plan's revision_of is the old plan id
            - Playback is paused and plan-confirmation-needed is emitted

        Returns:
            SessionPlan: The revision, or None without an active plan
        """
        if self._plan is None:
            return None

        def revise( current: Optional[ SessionPlan ] ) -> Optional[ SessionPlan ]:
            if current is None:
                return None
            return create_plan_revision( current, self._context, feedback )

        revision = await self._mutations.apply( revise, "revise-plan" )
        if revision is None:
            return None

        if self._pipeline is not None:
            await self._pipeline.pause()

        self.events.emit( SessionEventType.PLAN_CONFIRMATION_NEEDED, revision.model_copy( deep=True ) )
        return revision

    # =========================================================================
    # Playback Progress
    # =========================================================================

    async def _on_segment_start( self, segment: PlayableSegment ) -> None:
        def start_step( current: Optional[ SessionPlan ] ) -> Optional[ SessionPlan ]:
            step = find_segment_step( current, segment.id )
            if step is None or step.status == PlanStepStatus.COMPLETE:
                return None
            return update_plan_step_status( current, step.id, PlanStepStatus.IN_PROGRESS )

        await self._mutations.apply( start_step, f"segment-start-{segment.id}" )

    async def _on_segment_finish( self, segment: PlayableSegment ) -> None:
        status = PlanStepStatus.AWAITING_FEEDBACK if self.config.request_step_feedback else PlanStepStatus.COMPLETE

        def finish_step( current: Optional[ SessionPlan ] ) -> Optional[ SessionPlan ]:
            step = find_segment_step( current, segment.id )
            if step is None or step.status == PlanStepStatus.COMPLETE:
                return None
            return update_plan_step_status( current, step.id, status )

        updated = await self._mutations.apply( finish_step, f"segment-finish-{segment.id}" )

        if updated is not None and status == PlanStepStatus.AWAITING_FEEDBACK:
            step = find_segment_step( updated, segment.id )
            if step is not None:
                self.events.emit( SessionEventType.FEEDBACK_REQUIRED, step.model_copy( deep=True ) )

    # =========================================================================
    # Playback Controls
    # =========================================================================

    async def play( self ) -> None:
        """
        Start or resume playback.

        Ensures:
            - Refused, with error set, while the plan awaits confirmation
        """
        if self._pipeline is None:
            self._error = "No session started"
            self._publish_state()
            return

        if self._plan is not None and self._plan.needs_confirmation:
            self._error = "Plan is awaiting confirmation"
            self._publish_state()
            return

        self._error = None
        await self._pipeline.play()

    async def pause( self ) -> None:
        if self._pipeline is not None:
            await self._pipeline.pause()

    async def next( self ) -> None:
        if self._pipeline is not None:
            await self._pipeline.next()

    async def prev( self ) -> None:
        if self._pipeline is not None:
            await self._pipeline.prev()

    async def restart( self ) -> None:
        """Restart playback at the first segment whose step is not complete."""
        if self._pipeline is None or self._pipeline.script is None:
            return

        from_index = 0
        for index, segment in enumerate( self._pipeline.script.segments ):
            step = find_segment_step( self._plan, segment.id )
            if step is not None and step.status != PlanStepStatus.COMPLETE:
                from_index = index
                break

        if self._plan is not None and self._plan.needs_confirmation:
            self._error = "Plan is awaiting confirmation"
            self._publish_state()
            return

        await self._pipeline.restart( from_index )

    # =========================================================================
    # State
    # =========================================================================

    def _set_plan( self, plan: SessionPlan ) -> None:
        self._plan = plan
        self._publish_state()

    def get_current_state( self ) -> SessionState:
        """
        Build a consolidated snapshot.

        Ensures:
            - awaiting_plan_confirmation mirrors plan.needs_confirmation
            - awaiting_feedback_for_step_id names the first awaiting-feedback step
            - The returned object shares nothing with live session data
        """
        plan     = self._plan
        pipeline = self._pipeline

        awaiting_step = None
        if plan is not None:
            awaiting_step = next(
                ( step.id for step in plan.steps if step.status == PlanStepStatus.AWAITING_FEEDBACK ), None
            )

        state = SessionState(
            play_state                    = pipeline.play_state if pipeline else PlayState.STOPPED,
            current_segment_index         = pipeline.current_index if pipeline else 0,
            current_segment_id            = pipeline.current_segment_id if pipeline else None,
            total_segments                = pipeline.total_segments if pipeline else 0,
            buffered_ahead                = pipeline.buffered_ahead if pipeline else 0,
            plan                          = plan,
            error                         = self._error or ( pipeline.error if pipeline else None ),
            is_initialized                = self._is_initialized,
            awaiting_plan_confirmation    = plan.needs_confirmation if plan else False,
            awaiting_feedback_for_step_id = awaiting_step,
        )

        return state.model_copy( deep=True )

    def _publish_state( self ) -> None:
        self.events.emit( SessionEventType.STATE_CHANGE, self.get_current_state() )

    def on( self, event_type: SessionEventType, callback: Callable[ [ Any ], Any ] ) -> Callable[ [], None ]:
        """Register a lifecycle listener; returns an unsubscribe function."""
        return self.events.on( event_type, callback )


def quick_smoke_test():
    """Quick smoke test for SessionOrchestrator with mock providers."""
    import asyncio

    import trance.utils.util as cu
    from .mock_clients import MockScriptProviderClient, MockSynthesizerClient
    from .narration import HeadlessSpeechNarrator

    cu.print_banner( "Session Orchestrator Smoke Test", prepend_nl=True )

    try:
        async def run():
            session = SessionOrchestrator(
                config          = SessionConfig( settle_delay_seconds=0.0 ),
                script_client   = MockScriptProviderClient(),
                synthesizer     = MockSynthesizerClient( fail_segment_ids=[ "mock-breath" ] ),
                audio_output    = HeadlessAudioOutput( time_scale=0.0 ),
                speech_narrator = HeadlessSpeechNarrator( time_scale=0.0 ),
                enable_monitor  = False,
            )

            ended = asyncio.Event()
            session.on( SessionEventType.END, lambda event: ended.set() )

            print( "Testing start..." )
            state = await session.start( { "egoState": "sage", "goal": { "name": "Deep Focus" } } )
            assert state.is_initialized and state.total_segments == 4
            await session.wait_idle()
            assert not session.get_current_state().awaiting_plan_confirmation
            print( f"✓ Session started with {state.total_segments} segments, plan confirmed" )

            print( "Testing playback to the end..." )
            await session.play()
            await asyncio.wait_for( ended.wait(), timeout=5.0 )
            await session.wait_idle()
            assert all_segment_steps_complete( session.plan )
            print( "✓ Every segment step complete" )

            print( "Testing wrap-up..." )
            assert await session.complete_wrap_up( "Felt calm" )
            print( "✓ Wrap-up complete" )

            await session.dispose()
            await session.dispose()
            print( "✓ Dispose is idempotent" )

        asyncio.run( run() )
        print( "\n✓ Session Orchestrator smoke test completed successfully" )

    except Exception as e:
        print( f"\n✗ Smoke test failed: {e}" )
        import traceback
        traceback.print_exc()


if __name__ == "__main__":
    quick_smoke_test()
