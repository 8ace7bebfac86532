#!/usr/bin/env python3
"""
Plan Review Agent for guided sessions.

Intercepts the two session checkpoints and resolves each through a remote
reviewer:
1. plan-confirmation-needed: heuristic status bump, immediate confirmation,
   then reviewer transitions and notes
2. feedback-required: reviewer approval or rejection of one step

Every failure degrades to "proceed": a plan is always confirmed and a
feedback checkpoint is always answered. Handlers run as background tasks, so
their outcome is visible only through the session state that follows.
"""

import asyncio
import logging
from typing import Callable, Optional

from pydantic import ValidationError

from .config import SessionConfig
from .errors import ProviderError
from .events import spawn_background
from .prompts import PLAN_REVIEW_SYSTEM_PROMPT, get_plan_review_prompt, get_step_feedback_prompt
from .remote import post_json
from .state import (
    FeedbackDecision,
    PlanReviewResponse,
    PlanStep,
    PlanStepStatus,
    PlanStepType,
    PlanTransition,
    SessionEvent,
    SessionEventType,
    SessionPlan,
    StepFeedback,
)

logger = logging.getLogger( __name__ )

AUTO_APPROVE_NOTES = "Auto-approved due to assistant failure."


class PlanReviewAgent:
    """
    Reviewer-backed resolver for plan and step checkpoints.

    Requires:
        - session exposes async confirm_plan( patch, plan_id ), async submit_step_feedback( feedback )
          and an events channel
        - endpoint is the reviewer URL, or None to approve everything locally

    Ensures:
        - At most one confirmation per plan id is in flight
        - Handler failures are logged and never propagate
    """

    def __init__(
        self,
        session,
        endpoint : Optional[ str ] = None,
        config   : Optional[ SessionConfig ] = None,
        debug    : bool = False,
        verbose  : bool = False,
    ):
        self.session  = session
        self.config   = config or SessionConfig()
        self.endpoint = endpoint if endpoint is not None else self.config.reviewer_url
        self.debug    = debug
        self.verbose  = verbose

        self.processing_plan_id : Optional[ str ] = None

        self._tasks        : set[ asyncio.Task ] = set()
        self._unsubscribes : list[ Callable[ [], None ] ] = []

        if self.debug:
            print( f"[PlanReviewAgent] Initialized (endpoint: {self.endpoint or 'none, auto-approving'})" )

    # =========================================================================
    # Event Wiring
    # =========================================================================

    def attach( self ) -> None:
        """Subscribe to the session's checkpoint events."""
        if self._unsubscribes:
            return

        events = self.session.events
        self._unsubscribes = [
            events.on( SessionEventType.PLAN_CONFIRMATION_NEEDED, self._on_plan_confirmation_needed ),
            events.on( SessionEventType.FEEDBACK_REQUIRED, self._on_feedback_required ),
        ]

    def detach( self ) -> None:
        """Unsubscribe and cancel handlers still in flight."""
        for unsubscribe in self._unsubscribes:
            unsubscribe()
        self._unsubscribes = []

        for task in list( self._tasks ):
            task.cancel()
        self._tasks.clear()

    def _spawn( self, coro, name: str ) -> None:
        task = spawn_background( coro, name=name )
        self._tasks.add( task )
        task.add_done_callback( self._tasks.discard )

    def _on_plan_confirmation_needed( self, event: SessionEvent ) -> None:
        self._spawn( self.handle_plan_confirmation( event.payload ), name="plan-review" )

    def _on_feedback_required( self, event: SessionEvent ) -> None:
        self._spawn( self.handle_feedback_request( event.payload ), name="step-feedback" )

    async def wait_idle( self ) -> None:
        """Wait for every handler in flight to finish."""
        while self._tasks:
            await asyncio.gather( *list( self._tasks ), return_exceptions=True )

    # =========================================================================
    # Plan Confirmation
    # =========================================================================

    async def handle_plan_confirmation( self, plan: Optional[ SessionPlan ] ) -> None:
        """
        Resolve a plan-confirmation checkpoint.

        Requires:
            - plan is the plan carried by plan-confirmation-needed, or None

        Ensures:
            - None, already-confirmed and duplicate in-flight plans are ignored
            - The heuristic-bumped plan is confirmed before the reviewer is consulted
            - On reviewer success the reviewed plan is confirmed as well
            - On failure the heuristic plan is confirmed only if that has not happened yet
            - processing_plan_id is cleared on exit

        Args:
            plan: Plan awaiting confirmation
        """
        if plan is None or not plan.needs_confirmation or self.processing_plan_id == plan.id:
            return

        self.processing_plan_id = plan.id
        bumped    = self._mark_steps_in_progress( plan )
        confirmed = False

        try:
            await self.session.confirm_plan( plan.model_copy( update={ "steps": bumped } ), plan_id=plan.id )
            confirmed = True

            response = await self._request_plan_review( plan )
            if not response.confirm:
                logger.warning( f"Reviewer declined plan {plan.id}; proceeding with reviewer transitions" )

            steps   = self._apply_transitions( bumped, response.step_transitions )
            summary = plan.summary
            if response.plan_notes:
                summary = f"{plan.summary}\n\nAI Research Notes: {response.plan_notes}"

            patch = plan.model_copy(
                update = {
                    "summary"  : summary,
                    "steps"    : steps,
                    "metadata" : { **plan.metadata, "reviewer_confirmed": response.confirm },
                }
            )
            await self.session.confirm_plan( patch, plan_id=plan.id )

            if self.debug:
                print( f"[PlanReviewAgent] Plan {plan.id} reviewed ({len( response.step_transitions )} transitions)" )

        except Exception as e:
            logger.error( f"Failed to process plan confirmation for {plan.id}: {e}" )
            if not confirmed:
                await self.session.confirm_plan( plan.model_copy( update={ "steps": bumped } ), plan_id=plan.id )

        finally:
            self.processing_plan_id = None

    @staticmethod
    def _mark_steps_in_progress( plan: SessionPlan ) -> list[ PlanStep ]:
        """Context gathering is done once a plan exists; script generation has started."""
        steps = []
        for step in plan.steps:
            if step.type == PlanStepType.GATHER_CONTEXT:
                steps.append( step.model_copy( update={ "status": PlanStepStatus.COMPLETE }, deep=True ) )
            elif step.type == PlanStepType.GENERATE_SCRIPT:
                steps.append( step.model_copy( update={ "status": PlanStepStatus.IN_PROGRESS }, deep=True ) )
            else:
                steps.append( step.model_copy( deep=True ) )
        return steps

    @staticmethod
    def _apply_transitions( steps: list[ PlanStep ], transitions: list[ PlanTransition ] ) -> list[ PlanStep ]:
        """
        Apply reviewer transitions keyed by step id.

        Ensures:
            - Empty transitions complete the generate_script step
            - Steps without a transition keep their values, except an in-progress
              generate_script step, which completes
            - Transition data merges into step data; notes land in data.research_notes
        """
        if not transitions:
            return [
                step.model_copy( update={ "status": PlanStepStatus.COMPLETE }, deep=True )
                if step.type == PlanStepType.GENERATE_SCRIPT else step.model_copy( deep=True )
                for step in steps
            ]

        by_step_id = { transition.step_id: transition for transition in transitions }

        updated = []
        for step in steps:
            transition = by_step_id.get( step.id )

            if transition is None:
                if step.type == PlanStepType.GENERATE_SCRIPT and step.status == PlanStepStatus.IN_PROGRESS:
                    updated.append( step.model_copy( update={ "status": PlanStepStatus.COMPLETE }, deep=True ) )
                else:
                    updated.append( step.model_copy( deep=True ) )
                continue

            data = { **step.data, **( transition.data or {} ) }
            data[ "research_notes" ] = transition.notes or step.data.get( "research_notes" )

            updated.append( step.model_copy( update={ "status": transition.status, "data": data }, deep=True ) )

        return updated

    async def _request_plan_review( self, plan: SessionPlan ) -> PlanReviewResponse:
        """
        Ask the reviewer about a plan.

        Raises:
            ProviderError: On transport failure, non-2xx status or malformed reply
        """
        if not self.endpoint:
            return PlanReviewResponse( confirm=True )

        payload = {
            "mode"         : "plan-review",
            "systemPrompt" : PLAN_REVIEW_SYSTEM_PROMPT.strip(),
            "userPrompt"   : get_plan_review_prompt( plan ),
            "plan"         : plan.to_wire(),
        }

        data = await self._post_json( self.endpoint, payload )

        try:
            return PlanReviewResponse.model_validate( data )
        except ValidationError as e:
            raise ProviderError( f"Malformed plan review reply: {e.error_count()} validation error(s)" ) from e

    # =========================================================================
    # Step Feedback
    # =========================================================================

    async def handle_feedback_request( self, step: Optional[ PlanStep ] ) -> None:
        """
        Resolve a feedback-required checkpoint.

        Ensures:
            - Exactly one decision is submitted for step
            - Reviewer failure submits an approval with AUTO_APPROVE_NOTES

        Args:
            step: Step awaiting feedback
        """
        if step is None:
            return

        try:
            decision = await self._request_step_feedback( step )
            feedback = StepFeedback(
                step_id     = step.id,
                approved    = decision.approved,
                notes       = decision.notes,
                reason      = decision.reason,
                adjustments = decision.adjustments,
            )
        except Exception as e:
            logger.error( f"Step feedback request failed for {step.id}: {e}" )
            feedback = StepFeedback( step_id=step.id, approved=True, notes=AUTO_APPROVE_NOTES )

        if self.verbose:
            print( f"[PlanReviewAgent] Step {step.id} approved={feedback.approved}" )

        try:
            await self.session.submit_step_feedback( feedback )
        except Exception as e:
            logger.error( f"Failed to submit step feedback for {step.id}: {e}" )

    async def _request_step_feedback( self, step: PlanStep ) -> FeedbackDecision:
        """
        Ask the reviewer about one step.

        Raises:
            ProviderError: On transport failure, non-2xx status or malformed reply
        """
        if not self.endpoint:
            return FeedbackDecision( approved=True )

        payload = {
            "mode"         : "step-feedback",
            "systemPrompt" : PLAN_REVIEW_SYSTEM_PROMPT.strip(),
            "userPrompt"   : get_step_feedback_prompt( step ),
            "step"         : step.to_wire(),
        }

        data = await self._post_json( self.endpoint, payload )

        try:
            return FeedbackDecision.model_validate( data )
        except ValidationError as e:
            raise ProviderError( f"Malformed feedback reply: {e.error_count()} validation error(s)" ) from e

    async def _post_json( self, url: str, payload: dict ) -> dict:
        return await post_json(
            url,
            payload,
            api_key         = self.config.api_key,
            timeout_seconds = self.config.request_timeout_seconds,
        )
