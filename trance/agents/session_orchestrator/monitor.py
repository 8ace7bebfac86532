#!/usr/bin/env python3
"""
Execution Monitor for guided sessions.

Observes the session event channel and forwards lifecycle telemetry, each
record paired with a compact snapshot of the session state, to a sink.
The default sink writes to the log.
"""

import logging
from typing import Any, Callable, Optional

from .state import SessionEvent, SessionEventType, SessionState

logger = logging.getLogger( __name__ )

TelemetrySink = Callable[ [ str, dict ], Any ]

MONITORED_EVENTS = (
    SessionEventType.SESSION_START,
    SessionEventType.PLAY,
    SessionEventType.PAUSE,
    SessionEventType.AUDIO_ELEMENT,
    SessionEventType.END,
    SessionEventType.PLAN_CONFIRMATION_NEEDED,
    SessionEventType.FEEDBACK_REQUIRED,
    SessionEventType.ERROR,
)


def to_session_snapshot( state: SessionState ) -> dict:
    """Flatten a SessionState into the fields telemetry records carry."""
    plan = state.plan
    return {
        "play_state"                    : state.play_state.value,
        "current_segment_index"         : state.current_segment_index,
        "current_segment_id"            : state.current_segment_id,
        "total_segments"                : state.total_segments,
        "buffered_ahead"                : state.buffered_ahead,
        "plan_id"                       : plan.id if plan else None,
        "intent"                        : plan.intent if plan else None,
        "awaiting_plan_confirmation"    : state.awaiting_plan_confirmation,
        "awaiting_feedback_for_step_id" : state.awaiting_feedback_for_step_id,
        "error"                         : state.error,
    }


def log_sink( event_name: str, record: dict ) -> None:
    logger.info( f"session telemetry: {event_name} {record}" )


class ExecutionMonitor:
    """
    Telemetry forwarder for one orchestrator.

    Requires:
        - session exposes an events channel and get_current_state()

    Ensures:
        - Every monitored event reaches the sink as ( event_name, record )
        - A failing sink is logged and never disturbs the session
    """

    def __init__( self, session, sink: Optional[ TelemetrySink ] = None, debug: bool = False ):
        self.session = session
        self.sink    = sink or log_sink
        self.debug   = debug

        self._unsubscribes : list[ Callable[ [], None ] ] = []

    def attach( self ) -> None:
        if self._unsubscribes:
            return
        self._unsubscribes = [
            self.session.events.on( event_type, self._forward ) for event_type in MONITORED_EVENTS
        ]

    def detach( self ) -> None:
        for unsubscribe in self._unsubscribes:
            unsubscribe()
        self._unsubscribes = []

    def _forward( self, event: SessionEvent ) -> None:
        record = { "snapshot": to_session_snapshot( self.session.get_current_state() ), "timestamp": event.timestamp }

        if event.type == SessionEventType.PLAN_CONFIRMATION_NEEDED and event.payload is not None:
            record[ "plan_id" ] = event.payload.id
        elif event.type == SessionEventType.FEEDBACK_REQUIRED and event.payload is not None:
            record[ "step_id" ] = event.payload.id
        elif event.type == SessionEventType.AUDIO_ELEMENT and isinstance( event.payload, dict ):
            record[ "segment_id" ] = event.payload.get( "segment_id" )
        elif event.type == SessionEventType.ERROR:
            record[ "message" ] = str( event.payload )

        if self.debug:
            print( f"[ExecutionMonitor] {event.type.value}" )

        try:
            self.sink( event.type.value, record )
        except Exception as e:
            logger.error( f"Telemetry sink failed for '{event.type.value}': {e!r}" )
