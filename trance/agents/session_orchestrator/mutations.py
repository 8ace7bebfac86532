#!/usr/bin/env python3
"""
Serialized plan mutations.

Every write to the live plan goes through one worker task that applies
plan -> plan functions in FIFO order, so concurrent writers (playback
progress, reviewer confirmation, step feedback) never interleave inside a
read-modify-write. Two writes to the same step still resolve by the last
one applied.
"""

import asyncio
import logging
from typing import Callable, Optional

from .state import SessionPlan

logger = logging.getLogger( __name__ )

PlanMutation = Callable[ [ Optional[ SessionPlan ] ], Optional[ SessionPlan ] ]


class PlanMutationQueue:
    """
    Single-writer queue over the live plan.

    Requires:
        - get_plan returns the current plan
        - set_plan stores a plan and publishes it

    Ensures:
        - Mutations run one at a time in submission order
        - A mutation returning None leaves the plan unchanged
        - A failing mutation is logged; its caller receives the exception
    """

    def __init__(
        self,
        get_plan : Callable[ [], Optional[ SessionPlan ] ],
        set_plan : Callable[ [ SessionPlan ], None ],
        debug    : bool = False,
    ):
        self.get_plan = get_plan
        self.set_plan = set_plan
        self.debug    = debug

        self._queue  : Optional[ asyncio.Queue ] = None
        self._worker : Optional[ asyncio.Task ]  = None

    def _ensure_worker( self ) -> asyncio.Queue:
        if self._worker is None or self._worker.done():
            self._queue  = asyncio.Queue()
            self._worker = asyncio.create_task( self._run(), name="plan-mutations" )
        return self._queue

    async def _run( self ) -> None:
        while True:
            mutation, label, future = await self._queue.get()
            try:
                if future.cancelled():
                    continue

                updated = mutation( self.get_plan() )
                if updated is not None:
                    self.set_plan( updated )

                if self.debug:
                    print( f"[PlanMutationQueue] Applied '{label}'" )

                future.set_result( updated )

            except Exception as e:
                logger.error( f"Plan mutation '{label}' failed: {e!r}" )
                if not future.done():
                    future.set_exception( e )
            finally:
                self._queue.task_done()

    async def apply( self, mutation: PlanMutation, label: str = "mutation" ) -> Optional[ SessionPlan ]:
        """
        Queue a mutation and wait for it to be applied.

        Args:
            mutation: Function from the current plan to the new plan (or None for no change)
            label: Name used in diagnostics

        Returns:
            SessionPlan: The plan the mutation produced, or None
        """
        queue  = self._ensure_worker()
        future = asyncio.get_running_loop().create_future()
        await queue.put( ( mutation, label, future ) )
        return await future

    async def drain( self ) -> None:
        """Wait until every queued mutation has been applied."""
        if self._queue is not None and self._worker is not None and not self._worker.done():
            await self._queue.join()

    def close( self ) -> None:
        """Stop the worker; queued mutations are cancelled."""
        if self._queue is not None:
            while not self._queue.empty():
                _, _, future = self._queue.get_nowait()
                if not future.done():
                    future.cancel()
        if self._worker is not None:
            self._worker.cancel()
        self._worker = None
        self._queue  = None
