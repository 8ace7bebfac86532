#!/usr/bin/env python3
"""
Mapping from caller start options to the normalized session context.
"""

import random
import time
import uuid
from datetime import datetime
from typing import Any, Optional

from .state import SessionContext, StartSessionOptions

DEFAULT_LENGTH_SEC = 600


def _field( record: Optional[ dict[ str, Any ] ], *names: str ) -> Any:
    """Get the first non-empty value among names from an optional dict."""
    if not record:
        return None
    for name in names:
        value = record.get( name )
        if value:
            return value
    return None


def map_start_options_to_context(
    options            : StartSessionOptions,
    default_length_sec : int = DEFAULT_LENGTH_SEC,
) -> SessionContext:
    """
    Normalize start options into a SessionContext.

    Requires:
        - options is a StartSessionOptions

    Ensures:
        - Names fall back goal/action/method/protocol name -> id -> generic default
        - length_sec defaults to default_length_sec
        - session_type is custom_protocol, predefined_protocol or guided_session
        - session_unique_id is unique per call

    Args:
        options: Caller start options
        default_length_sec: Session length used when options carry none

    Returns:
        SessionContext: Normalized context
    """
    length_sec      = options.length_sec or default_length_sec
    custom_protocol = options.custom_protocol
    protocol        = options.protocol
    user_prefs      = options.user_prefs or {}

    if custom_protocol:
        session_type = "custom_protocol"
    elif protocol:
        session_type = "predefined_protocol"
    else:
        session_type = "guided_session"

    goals = _field( custom_protocol, "goals" ) or []

    return SessionContext(
        ego_state                 = options.ego_state,
        goal_id                   = options.goal_id or _field( options.goal, "id" ) or "transformation",
        goal_name                 = _field( options.goal, "name" ) or options.goal_id or "personal transformation",
        action_name               = _field( options.action, "name", "id" ) or "transformation",
        method_name               = _field( options.method, "name", "id" ) or "guided relaxation",
        protocol_name             = _field( protocol, "name" ) or _field( custom_protocol, "name" ) or "custom session",
        length_sec                = length_sec,
        custom_protocol_goals     = ", ".join( goals ),
        custom_protocol_induction = _field( custom_protocol, "induction" ) or "",
        custom_protocol_duration  = _field( custom_protocol, "duration" ) or length_sec,
        protocol_description      = _field( protocol, "description" ) or "",
        protocol_duration         = _field( protocol, "duration" ) or length_sec,
        user_level                = user_prefs.get( "level" ) or options.level or 1,
        user_experience           = user_prefs.get( "experience" ) or "beginner",
        current_time              = datetime.now().isoformat(),
        session_unique_id         = f"{int( time.time() * 1000 )}_{uuid.uuid4().hex[ :9 ]}",
        prompt_variation          = random.randint( 1, 5 ),
        session_type              = session_type,
        locale                    = options.locale,
        goal                      = options.goal,
        action                    = options.action,
        method                    = options.method,
        protocol                  = protocol,
        custom_protocol           = custom_protocol,
        user_prefs                = options.user_prefs,
        user_signals              = options.user_signals,
    )
