#!/usr/bin/env python3
"""
Mock clients for dry-run mode and tests of the session orchestrator.

Provide canned responses that simulate the remote services without making
real requests.

Usage:
    from .mock_clients import MockScriptProviderClient, MockSynthesizerClient, MockReviewerAgent

    if dry_run:
        script_client = MockScriptProviderClient( debug=True )
        synthesizer   = MockSynthesizerClient( debug=True )
"""

import asyncio
from typing import Iterable, Optional

from .errors import ProviderError
from .plan_reviewer import PlanReviewAgent
from .state import NarrationProvider, SessionContext, SessionScript
from .tts_client import NarrationResult


# =============================================================================
# Mock Response Data
# =============================================================================

MOCK_SCRIPT_RESPONSE = {
    "title"    : "Mock Session: Dry Run",
    "segments" : [
        { "id": "mock-arrival",   "text": "Settle into a comfortable position and let your eyes close.", "approxSec": 20 },
        { "id": "mock-breath",    "text": "Breathe in slowly for four counts, and out for six.", "approxSec": 30 },
        { "id": "mock-deepening", "text": "With every breath you drift a little deeper into calm.", "approxSec": 40 },
        { "id": "mock-return",    "text": "Counting up from one to five, you return refreshed and clear.", "approxSec": 20 },
    ],
    "metadata" : { "source": "mock" },
}


# =============================================================================
# Mock Script Provider
# =============================================================================

class MockScriptProviderClient:
    """
    Script provider that returns MOCK_SCRIPT_RESPONSE, or fails on request.

    Ensures:
        - call_count counts every generate() call
        - fail=True raises ProviderError like an HTTP 500
    """

    def __init__( self, config=None, fail: bool = False, response: Optional[ dict ] = None, delay_seconds: float = 0.0, debug: bool = False, verbose: bool = False ):
        self.config        = config
        self.fail          = fail
        self.response      = response or MOCK_SCRIPT_RESPONSE
        self.delay_seconds = delay_seconds
        self.debug         = debug
        self.verbose       = verbose
        self.call_count    = 0

    async def generate( self, context: SessionContext ) -> SessionScript:
        self.call_count += 1
        if self.delay_seconds:
            await asyncio.sleep( self.delay_seconds )

        if self.debug:
            print( f"[MockScriptProviderClient] generate() call #{self.call_count} for '{context.goal_name}'" )

        if self.fail:
            raise ProviderError( "Mock script provider failure", status=500 )

        script = SessionScript.model_validate( self.response )
        if not script.segments:
            raise ProviderError( "No segments returned from script provider" )
        return script


# =============================================================================
# Mock Synthesizer
# =============================================================================

class MockSynthesizerClient:
    """
    Deterministic synthesizer.

    Ensures:
        - Text containing any fail_texts, or a cache key naming any fail_segment_ids,
          resolves to a non-synth result
        - Everything else resolves to mock:// audio URLs
        - requests records ( text, cache_key ) for every call
    """

    def __init__(
        self,
        fail_segment_ids : Iterable[ str ] = (),
        fail_texts       : Iterable[ str ] = (),
        fail_status      : int = 500,
        delay_seconds    : float = 0.0,
        debug            : bool = False,
    ):
        self.fail_segment_ids = set( fail_segment_ids )
        self.fail_texts       = set( fail_texts )
        self.fail_status      = fail_status
        self.delay_seconds    = delay_seconds
        self.debug            = debug
        self.requests         : list[ tuple[ str, str ] ] = []

    def _should_fail( self, text: str, cache_key: str ) -> bool:
        if any( needle in text for needle in self.fail_texts ):
            return True
        return any( f"-{segment_id}-" in cache_key for segment_id in self.fail_segment_ids )

    async def synthesize( self, text: str, voice_id: Optional[ str ] = None, model: Optional[ str ] = None, cache_key: Optional[ str ] = None ) -> NarrationResult:
        cache_key = cache_key or text[ :32 ]
        self.requests.append( ( text, cache_key ) )

        if self.delay_seconds:
            await asyncio.sleep( self.delay_seconds )

        if self._should_fail( text, cache_key ):
            if self.debug:
                print( f"[MockSynthesizerClient] Failing {cache_key}" )
            if self.fail_status in ( 401, 402, 429 ):
                return NarrationResult( provider=NarrationProvider.FALLBACK_SPEECH, error="Synthesizer unavailable - using device voice" )
            return NarrationResult( provider=NarrationProvider.NONE, error=f"HTTP {self.fail_status}: mock failure" )

        return NarrationResult( provider=NarrationProvider.SYNTH, audio_url=f"mock://audio/{cache_key}" )


# =============================================================================
# Mock Reviewer
# =============================================================================

class MockReviewerAgent( PlanReviewAgent ):
    """
    PlanReviewAgent whose reviewer replies are scripted.

    Ensures:
        - plan-review requests return plan_reply (or raise ProviderError with fail_status)
        - step-feedback requests return feedback_reply (or raise ProviderError with fail_status)
        - requests records every payload sent
    """

    def __init__(
        self,
        session,
        plan_reply     : Optional[ dict ] = None,
        feedback_reply : Optional[ dict ] = None,
        fail_status    : Optional[ int ] = None,
        config         = None,
        debug          : bool = False,
        verbose        : bool = False,
    ):
        super().__init__( session, endpoint="mock://reviewer", config=config, debug=debug, verbose=verbose )
        self.plan_reply     = plan_reply if plan_reply is not None else { "confirm": True, "stepTransitions": [] }
        self.feedback_reply = feedback_reply if feedback_reply is not None else { "approved": True }
        self.fail_status    = fail_status
        self.requests       : list[ dict ] = []

    async def _post_json( self, url: str, payload: dict ) -> dict:
        self.requests.append( payload )
        await asyncio.sleep( 0 )

        if self.fail_status is not None:
            raise ProviderError( "Mock reviewer failure", status=self.fail_status )

        if payload[ "mode" ] == "plan-review":
            return self.plan_reply
        return self.feedback_reply


def quick_smoke_test():
    """Quick smoke test for mock clients."""
    import trance.utils.util as cu

    cu.print_banner( "Session Mock Clients Smoke Test", prepend_nl=True )

    try:
        async def run():
            client = MockScriptProviderClient()
            script = await client.generate( SessionContext() )
            assert script.get_segment_count() == 4
            print( f"✓ Mock script has {script.get_segment_count()} segments" )

            synthesizer = MockSynthesizerClient( fail_segment_ids=[ "mock-breath" ] )
            ok     = await synthesizer.synthesize( "hello", cache_key="script-mock-arrival-v-m" )
            failed = await synthesizer.synthesize( "hello", cache_key="script-mock-breath-v-m" )
            assert ok.has_audio and not failed.has_audio
            print( "✓ Mock synthesizer fails only the configured segment" )

        asyncio.run( run() )
        print( "\n✓ Mock clients smoke test completed successfully" )

    except Exception as e:
        print( f"\n✗ Smoke test failed: {e}" )
        import traceback
        traceback.print_exc()


if __name__ == "__main__":
    quick_smoke_test()
