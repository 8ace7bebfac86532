#!/usr/bin/env python3
"""
Script Provider client for the session orchestrator.

Requests a personalized multi-segment narration script for a session context.
Every failure surfaces as ProviderError so the fallback chain in
script_sources.py can move on to the next source.
"""

import logging
from typing import Optional

from pydantic import ValidationError

from .config import SessionConfig
from .errors import ProviderError
from .remote import post_json
from .state import SessionContext, SessionScript

logger = logging.getLogger( __name__ )

SCRIPT_SYSTEM_PROMPT = "Create a unique, dynamic hypnosis script"


class ScriptProviderClient:
    """
    HTTP client for the remote script provider.

    Requires:
        - config.script_url is set

    Ensures:
        - generate() returns a SessionScript with at least one segment
        - generate() raises ProviderError for HTTP errors, malformed payloads and empty scripts
    """

    def __init__( self, config: Optional[ SessionConfig ] = None, debug: bool = False, verbose: bool = False ):
        self.config  = config or SessionConfig()
        self.debug   = debug
        self.verbose = verbose

        if self.debug:
            print( f"[ScriptProviderClient] Initialized (endpoint: {self.config.script_url or 'MISSING'})" )

    def _build_user_context( self, context: SessionContext ) -> dict:
        """Wire form of the context with the critical names forced to clean strings."""
        user_ctx = context.to_wire()
        user_ctx[ "egoState" ]     = str( context.ego_state or "guardian" )
        user_ctx[ "goalName" ]     = str( context.goal_name or "personal transformation" )
        user_ctx[ "actionName" ]   = str( context.action_name or "transformation work" )
        user_ctx[ "methodName" ]   = str( context.method_name or "guided relaxation" )
        user_ctx[ "protocolName" ] = str( context.protocol_name or "custom session" )
        return user_ctx

    async def generate( self, context: SessionContext ) -> SessionScript:
        """
        Generate a session script for context.

        Requires:
            - context is a SessionContext

        Ensures:
            - Returns a validated SessionScript with non-empty segments

        Raises:
            ProviderError: On missing endpoint, HTTP error, malformed payload or empty segments

        Args:
            context: Normalized session context

        Returns:
            SessionScript: Provider script
        """
        if not self.config.script_url:
            raise ProviderError( "Script provider endpoint not configured" )

        if self.debug:
            print( f"[ScriptProviderClient] Generating script for '{context.goal_name}' with {context.ego_state}" )

        payload = {
            "userCtx"   : self._build_user_context( context ),
            "templates" : {
                "systemPrompt"  : SCRIPT_SYSTEM_PROMPT,
                "requireUnique" : True,
            },
        }

        data = await self._post_json( self.config.script_url, payload )

        try:
            script = SessionScript.model_validate( data )
        except ValidationError as e:
            raise ProviderError( f"Malformed script payload: {e.error_count()} validation error(s)" ) from e

        if not script.segments:
            raise ProviderError( "No segments returned from script provider" )

        if self.debug:
            print( f"[ScriptProviderClient] Generated {script.get_segment_count()} segments" )

        return script

    async def _post_json( self, url: str, payload: dict ) -> dict:
        return await post_json(
            url,
            payload,
            api_key         = self.config.api_key,
            timeout_seconds = self.config.request_timeout_seconds,
        )
