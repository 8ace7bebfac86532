#!/usr/bin/env python3
"""
Script sources and the fallback chain that resolves a session script.

Sources are tried in order: the remote provider, a canned relaxation script
shaped to the session, and finally a fixed three-segment emergency script.
The chain always yields a playable script.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Optional, Sequence

from .errors import ProviderError
from .script_client import ScriptProviderClient
from .state import ScriptSegment, SessionContext, SessionScript

logger = logging.getLogger( __name__ )

EGO_STATE_ADAPTATIONS = {
    "guardian"  : "Feel completely safe and protected as you begin this journey...",
    "rebel"     : "You're breaking free from old limitations as you start this session...",
    "healer"    : "Feel healing energy beginning to flow through you...",
    "explorer"  : "You're embarking on an exciting journey of discovery...",
    "mystic"    : "Connect with the deeper wisdom within you...",
    "sage"      : "Access the ancient wisdom that lies within...",
    "child"     : "Approach this with wonder and curiosity...",
    "performer" : "Step into your most authentic, expressive self...",
    "shadow"    : "Embrace all aspects of yourself with compassion...",
}

EXPERIENCE_PREFIXES = {
    "beginner"    : "This is a safe and gentle process... You remain in complete control at all times...",
    "new"         : "This is a safe and gentle process... You remain in complete control at all times...",
    "experienced" : "You know this process well... Allow yourself to go deeper more quickly...",
}

# prompt_variation -> ( induction prefix, deepening modifier, suggestion suffix )
SCRIPT_VARIATIONS = {
    1 : ( "", "", "" ),
    2 : ( "Take your time to settle in... ", "even more deeply... ", "... and these changes happen naturally and easily" ),
    3 : ( "Allow yourself to begin this journey... ", "further and further... ", "... becoming more true for you each day" ),
}

# Share of the session length given to each canned segment
CANNED_PHASES = ( ( "induction", 0.20 ), ( "deepening", 0.25 ), ( "suggestions", 0.40 ), ( "emergence", 0.15 ) )


def validate_script( script: Optional[ SessionScript ] ) -> bool:
    """
    Check a script is playable.

    Ensures:
        - True iff script has at least one segment and every segment has non-empty id and text
    """
    if script is None or not script.segments:
        return False
    return all( segment.id and segment.text and segment.text.strip() for segment in script.segments )


class ScriptSource( ABC ):
    """A place a session script can come from."""

    name = "source"

    @abstractmethod
    async def fetch( self, context: SessionContext ) -> SessionScript:
        """
        Produce a script for context.

        Raises:
            ProviderError: When this source cannot produce a script
        """


class RemoteScriptSource( ScriptSource ):
    """Script from the remote provider."""

    name = "remote"

    def __init__( self, client: ScriptProviderClient ):
        self.client = client

    async def fetch( self, context: SessionContext ) -> SessionScript:
        script = await self.client.generate( context )
        script.metadata.setdefault( "source", self.name )
        return script


class CannedScriptSource( ScriptSource ):
    """
    Fixed four-phase relaxation script shaped by ego state, goals, experience
    level and prompt variation. Needs no network.
    """

    name = "canned"

    def _goals( self, context: SessionContext ) -> list[ str ]:
        if context.custom_protocol_goals:
            return [ goal.strip() for goal in context.custom_protocol_goals.split( "," ) if goal.strip() ]
        return [ context.goal_name or "personal growth" ]

    async def fetch( self, context: SessionContext ) -> SessionScript:
        goals      = self._goals( context )
        focus      = goals[ 0 ].lower()
        ego_prefix = EGO_STATE_ADAPTATIONS.get( context.ego_state, "" )
        experience = EXPERIENCE_PREFIXES.get( context.user_experience, "" )

        induction_prefix, deepening_modifier, suggestion_suffix = SCRIPT_VARIATIONS.get(
            context.prompt_variation, SCRIPT_VARIATIONS[ 1 ]
        )

        induction = (
            f"Close your eyes and focus on your intention to {focus}... "
            f"Feel your commitment to positive change... "
            f"Your subconscious mind is ready to help you achieve {focus}..."
        )
        induction = " ".join( part for part in ( ego_prefix, experience, induction_prefix + induction ) if part )

        deepening = (
            f"Going {deepening_modifier}deeper into this state of transformation... "
            f"Your mind is open to new possibilities for {' and '.join( goals ).lower()}... "
            f"Each breath takes you closer to your goals..."
        )

        suggestions = " ".join(
            f"You are naturally capable of {goal.lower()}... {goal} comes easily to you... "
            f"You embody {goal.lower()} in all that you do..."
            for goal in goals
        )
        suggestions = (
            f"{suggestions} These changes integrate naturally into your daily life... "
            f"You maintain these positive changes effortlessly...{suggestion_suffix}"
        )

        emergence = "Return with confidence in your ability to achieve your goals... 1, 2, 3, 4, 5, empowered and ready."

        texts = { "induction": induction, "deepening": deepening, "suggestions": suggestions, "emergence": emergence }
        segments = [
            ScriptSegment( id=f"canned-{phase}", text=texts[ phase ], approx_sec=round( context.length_sec * share ) )
            for phase, share in CANNED_PHASES
        ]

        return SessionScript(
            title    = f"{context.goal_name.title()} Session",
            segments = segments,
            metadata = { "source": self.name, "variation": context.prompt_variation },
        )


class EmergencyScriptSource( ScriptSource ):
    """Three-segment last-resort script."""

    name = "emergency"

    async def fetch( self, context: SessionContext ) -> SessionScript:
        return build_emergency_script( context )


def build_emergency_script( context: Optional[ SessionContext ] ) -> SessionScript:
    """
    Build the fixed intro/relax/end script.

    Ensures:
        - Exactly three segments
        - metadata.is_emergency is True
    """
    ego_state = str( getattr( context, "ego_state", None ) or "guardian" )
    goal_name = str( getattr( context, "goal_name", None ) or "personal transformation" )

    return SessionScript(
        title    = f"Emergency {ego_state} Session",
        segments = [
            ScriptSegment(
                id         = "emergency-intro",
                text       = f"Welcome to your emergency {ego_state} session for {goal_name}. Close your eyes and breathe deeply.",
                approx_sec = 15,
            ),
            ScriptSegment(
                id         = "emergency-relax",
                text       = "Take three slow, deep breaths. Feel your body beginning to relax with each exhale.",
                approx_sec = 30,
            ),
            ScriptSegment(
                id         = "emergency-end",
                text       = "Count from 1 to 5 and open your eyes feeling refreshed and calm.",
                approx_sec = 15,
            ),
        ],
        metadata = { "is_emergency": True, "source": "fallback" },
    )


def build_default_sources( client: Optional[ ScriptProviderClient ] ) -> list[ ScriptSource ]:
    """Standard chain: remote (when a client exists), canned, emergency."""
    sources: list[ ScriptSource ] = []
    if client is not None:
        sources.append( RemoteScriptSource( client ) )
    sources.append( CannedScriptSource() )
    sources.append( EmergencyScriptSource() )
    return sources


async def resolve_session_script(
    sources : Sequence[ ScriptSource ],
    context : SessionContext,
    debug   : bool = False,
) -> SessionScript:
    """
    Walk the source chain and return the first playable script.

    Requires:
        - sources is ordered by preference

    Ensures:
        - Each failure or invalid script is logged and skipped
        - Returns the emergency script when every source fails
        - Never returns a script with zero segments

    Args:
        sources: Ordered script sources
        context: Normalized session context
        debug: Print per-source diagnostics

    Returns:
        SessionScript: Playable script
    """
    for source in sources:
        try:
            script = await source.fetch( context )
        except asyncio.CancelledError:
            raise
        except ProviderError as e:
            logger.warning( f"Script source '{source.name}' failed: {e}" )
            continue
        except Exception as e:
            logger.warning( f"Script source '{source.name}' raised unexpectedly: {e!r}" )
            continue

        if not validate_script( script ):
            logger.warning( f"Script source '{source.name}' returned an unplayable script" )
            continue

        if debug:
            print( f"[resolve_session_script] Using '{source.name}' script with {script.get_segment_count()} segments" )

        return script

    logger.error( "All script sources failed, using emergency script" )
    return build_emergency_script( context )
