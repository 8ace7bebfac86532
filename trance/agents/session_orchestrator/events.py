#!/usr/bin/env python3
"""
Session event channel.

Publishes typed SessionEvents to two kinds of consumers:
1. Listeners registered with on(), called synchronously in registration order
2. Subscribers holding an asyncio.Queue from subscribe(), for async iteration

A listener that returns an awaitable has it scheduled as a background task.
"""

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Optional

from .state import SessionEvent, SessionEventType

logger = logging.getLogger( __name__ )

Listener = Callable[ [ SessionEvent ], Any ]


def _log_task_result( task: asyncio.Task ) -> None:
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.error( f"Background task '{task.get_name()}' failed: {error!r}" )


def spawn_background( coro: Awaitable, name: Optional[ str ] = None ) -> asyncio.Task:
    """
    Run coro as a fire-and-forget task whose failure is logged, not raised.

    Requires:
        - Called with a running event loop
    """
    task = asyncio.ensure_future( coro )
    if name:
        task.set_name( name )
    task.add_done_callback( _log_task_result )
    return task


class SessionEventChannel:
    """
    Fan-out channel for session lifecycle events.

    Ensures:
        - Listeners for one event type run in registration order
        - A failing listener is logged and does not stop later listeners
        - Every subscriber queue receives every event after it subscribed
    """

    def __init__( self, debug: bool = False ):
        self.debug        = debug
        self._listeners   : dict[ SessionEventType, list[ Listener ] ] = {}
        self._subscribers : list[ asyncio.Queue ] = []
        self._tasks       : set[ asyncio.Task ] = set()

    def on( self, event_type: SessionEventType, callback: Listener ) -> Callable[ [], None ]:
        """
        Register a listener for one event type.

        Returns:
            Callable: Unsubscribe function
        """
        self._listeners.setdefault( event_type, [] ).append( callback )

        def unsubscribe() -> None:
            listeners = self._listeners.get( event_type, [] )
            if callback in listeners:
                listeners.remove( callback )

        return unsubscribe

    def subscribe( self, maxsize: int = 0 ) -> asyncio.Queue:
        """Get a queue that receives every subsequent event."""
        queue: asyncio.Queue = asyncio.Queue( maxsize=maxsize )
        self._subscribers.append( queue )
        return queue

    def unsubscribe( self, queue: asyncio.Queue ) -> None:
        if queue in self._subscribers:
            self._subscribers.remove( queue )

    def emit( self, event_type: SessionEventType, payload: Any = None ) -> SessionEvent:
        """
        Publish an event to listeners and subscribers.

        Args:
            event_type: Event type
            payload: Event payload (plan, step, state, message...)

        Returns:
            SessionEvent: The published event
        """
        event = SessionEvent( type=event_type, payload=payload )

        if self.debug:
            print( f"[SessionEventChannel] {event_type.value}" )

        for callback in list( self._listeners.get( event_type, [] ) ):
            try:
                result = callback( event )
            except Exception as e:
                logger.error( f"Listener for '{event_type.value}' failed: {e!r}" )
                continue

            if inspect.isawaitable( result ):
                task = spawn_background( result, name=f"listener-{event_type.value}" )
                self._tasks.add( task )
                task.add_done_callback( self._tasks.discard )

        for queue in list( self._subscribers ):
            try:
                queue.put_nowait( event )
            except asyncio.QueueFull:
                logger.warning( f"Subscriber queue full, dropping '{event_type.value}' event" )

        return event

    def listener_count( self, event_type: Optional[ SessionEventType ] = None ) -> int:
        if event_type is not None:
            return len( self._listeners.get( event_type, [] ) )
        return sum( len( listeners ) for listeners in self._listeners.values() )

    def clear( self ) -> None:
        """Drop every listener and subscriber and cancel pending listener tasks."""
        self._listeners.clear()
        self._subscribers.clear()
        for task in list( self._tasks ):
            task.cancel()
        self._tasks.clear()
