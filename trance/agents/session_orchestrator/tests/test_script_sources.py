#!/usr/bin/env python3
"""
Unit tests for the script provider client and the script fallback chain.

Run with: pytest -v trance/agents/session_orchestrator/tests/test_script_sources.py
"""

import asyncio

import pytest
from unittest.mock import AsyncMock, patch

from trance.agents.session_orchestrator.config import SessionConfig
from trance.agents.session_orchestrator.errors import ProviderError
from trance.agents.session_orchestrator.mock_clients import MOCK_SCRIPT_RESPONSE, MockScriptProviderClient
from trance.agents.session_orchestrator.script_client import SCRIPT_SYSTEM_PROMPT, ScriptProviderClient
from trance.agents.session_orchestrator.script_sources import (
    EGO_STATE_ADAPTATIONS,
    CannedScriptSource,
    EmergencyScriptSource,
    RemoteScriptSource,
    ScriptSource,
    build_default_sources,
    build_emergency_script,
    resolve_session_script,
    validate_script,
)
from trance.agents.session_orchestrator.state import ScriptSegment, SessionContext, SessionScript


class StaticScriptSource( ScriptSource ):
    """Source that returns a fixed script."""

    name = "static"

    def __init__( self, script: SessionScript ):
        self.script = script

    async def fetch( self, context: SessionContext ) -> SessionScript:
        return self.script


class BrokenScriptSource( ScriptSource ):
    """Source whose fetch fails with an unexpected error."""

    name = "broken"

    async def fetch( self, context: SessionContext ) -> SessionScript:
        raise RuntimeError( "provider client bug" )


class TestValidateScript:
    """Tests for script validation."""

    def test_valid_script( self ):
        """Test a valid script."""
        script = SessionScript( segments=[ ScriptSegment( id="a", text="Breathe." ) ] )
        assert validate_script( script ) is True

    def test_missing_or_empty( self ):
        """Test missing and empty scripts."""
        assert validate_script( None ) is False
        assert validate_script( SessionScript() ) is False

    def test_blank_segment_text( self ):
        """Test blank segment text."""
        script = SessionScript( segments=[ ScriptSegment( id="a", text="Breathe." ), ScriptSegment( id="b", text="   " ) ] )
        assert validate_script( script ) is False


class TestScriptProviderClient:
    """Tests for ScriptProviderClient."""

    def _client( self ) -> ScriptProviderClient:
        return ScriptProviderClient( config=SessionConfig( script_url="http://scripts.test/generate" ) )

    def test_generate_returns_script( self ):
        """Test script generation."""
        client = self._client()
        context = SessionContext( ego_state="sage", goal_name="Deep Focus" )

        with patch.object( client, "_post_json", AsyncMock( return_value=MOCK_SCRIPT_RESPONSE ) ) as post:
            script = asyncio.run( client.generate( context ) )

        assert script.get_segment_count() == 4
        assert script.segments[ 0 ].id == "mock-arrival"
        assert script.segments[ 1 ].approx_sec == 30

        url, payload = post.await_args.args
        assert url == "http://scripts.test/generate"
        assert payload[ "userCtx" ][ "egoState" ] == "sage"
        assert payload[ "userCtx" ][ "goalName" ] == "Deep Focus"
        assert payload[ "templates" ] == { "systemPrompt": SCRIPT_SYSTEM_PROMPT, "requireUnique": True }

    def test_empty_segments_raise( self ):
        """Test empty segments."""
        client = self._client()
        with patch.object( client, "_post_json", AsyncMock( return_value={ "title": "Empty", "segments": [] } ) ):
            with pytest.raises( ProviderError ):
                asyncio.run( client.generate( SessionContext() ) )

    def test_malformed_payload_raises( self ):
        """Test a malformed payload."""
        client = self._client()
        with patch.object( client, "_post_json", AsyncMock( return_value={ "segments": "not-a-list" } ) ):
            with pytest.raises( ProviderError, match="Malformed" ):
                asyncio.run( client.generate( SessionContext() ) )

    def test_http_error_propagates( self ):
        """Test HTTP error propagation."""
        client = self._client()
        with patch.object( client, "_post_json", AsyncMock( side_effect=ProviderError( "boom", status=500 ) ) ):
            with pytest.raises( ProviderError ) as excinfo:
                asyncio.run( client.generate( SessionContext() ) )
        assert excinfo.value.status == 500
        assert str( excinfo.value ) == "HTTP 500: boom"

    def test_missing_endpoint( self ):
        """Test a missing script endpoint."""
        client = ScriptProviderClient( config=SessionConfig() )
        with pytest.raises( ProviderError, match="not configured" ):
            asyncio.run( client.generate( SessionContext() ) )


class TestCannedScriptSource:
    """Tests for the canned script."""

    def test_four_phases_share_session_length( self ):
        """Test canned phase durations."""
        context = SessionContext( ego_state="sage", goal_name="deep focus", length_sec=600, prompt_variation=1 )
        script = asyncio.run( CannedScriptSource().fetch( context ) )

        assert [ segment.id for segment in script.segments ] == [
            "canned-induction", "canned-deepening", "canned-suggestions", "canned-emergence",
        ]
        assert [ segment.approx_sec for segment in script.segments ] == [ 120, 150, 240, 90 ]
        assert script.segments[ 0 ].text.startswith( EGO_STATE_ADAPTATIONS[ "sage" ] )
        assert script.metadata[ "source" ] == "canned"
        assert validate_script( script )

    def test_custom_goals_in_suggestions( self ):
        """Test custom goals in the canned script."""
        context = SessionContext( goal_name="evening", custom_protocol_goals="Calm, Sleep" )
        script = asyncio.run( CannedScriptSource().fetch( context ) )
        suggestions = script.segments[ 2 ].text
        assert "capable of calm" in suggestions
        assert "capable of sleep" in suggestions

    def test_variation_changes_text( self ):
        """Test prompt variation."""
        plain  = asyncio.run( CannedScriptSource().fetch( SessionContext( prompt_variation=1 ) ) )
        varied = asyncio.run( CannedScriptSource().fetch( SessionContext( prompt_variation=2 ) ) )
        assert "Take your time to settle in" in varied.segments[ 0 ].text
        assert "Take your time to settle in" not in plain.segments[ 0 ].text


class TestEmergencyScript:
    """Tests for the emergency script."""

    def test_three_segments( self ):
        """Test the emergency script segments."""
        script = build_emergency_script( SessionContext( ego_state="healer", goal_name="rest" ) )
        assert [ segment.id for segment in script.segments ] == [ "emergency-intro", "emergency-relax", "emergency-end" ]
        assert "healer" in script.segments[ 0 ].text
        assert "rest" in script.segments[ 0 ].text
        assert script.metadata[ "is_emergency" ] is True

    def test_without_context( self ):
        """Test the emergency script without a context."""
        script = build_emergency_script( None )
        assert script.get_segment_count() == 3
        assert "guardian" in script.title.lower()


class TestResolveSessionScript:
    """Tests for the fallback chain."""

    def test_remote_first( self ):
        """Test the remote source is preferred."""
        sources = build_default_sources( MockScriptProviderClient() )
        script = asyncio.run( resolve_session_script( sources, SessionContext() ) )
        assert script.segments[ 0 ].id == "mock-arrival"
        assert script.metadata[ "source" ] == "mock"

    def test_remote_failure_falls_back_to_canned( self ):
        """Test canned fallback on provider failure."""
        client = MockScriptProviderClient( fail=True )
        sources = build_default_sources( client )
        script = asyncio.run( resolve_session_script( sources, SessionContext() ) )
        assert client.call_count == 1
        assert script.metadata[ "source" ] == "canned"

    def test_invalid_script_is_skipped( self ):
        """Test an unplayable script is skipped."""
        broken = StaticScriptSource( SessionScript( segments=[ ScriptSegment( id="x", text="" ) ] ) )
        script = asyncio.run( resolve_session_script( [ broken, EmergencyScriptSource() ], SessionContext() ) )
        assert script.metadata[ "is_emergency" ] is True

    def test_unexpected_error_falls_through( self ):
        """Test a source raising a non-provider error is skipped for the next one."""
        sources = [ BrokenScriptSource(), CannedScriptSource() ]
        script = asyncio.run( resolve_session_script( sources, SessionContext() ) )
        assert script.metadata[ "source" ] == "canned"

    def test_every_source_failing_yields_emergency( self ):
        """Test the emergency last resort."""
        failing = RemoteScriptSource( MockScriptProviderClient( fail=True ) )
        script = asyncio.run( resolve_session_script( [ failing ], SessionContext() ) )
        assert script.get_segment_count() == 3
        assert script.metadata[ "source" ] == "fallback"

    def test_empty_chain_yields_emergency( self ):
        """Test an empty source chain."""
        script = asyncio.run( resolve_session_script( [], SessionContext() ) )
        assert script.metadata[ "is_emergency" ] is True

    def test_default_sources_without_client( self ):
        """Test default sources without a client."""
        sources = build_default_sources( None )
        assert [ source.name for source in sources ] == [ "canned", "emergency" ]
