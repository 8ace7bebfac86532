#!/usr/bin/env python3
"""
Narration Synthesizer client for the session orchestrator.

Turns segment text into a playable audio URL through the remote synthesizer
proxy. Failures never raise: every call resolves to a NarrationResult, and
the pipeline narrates with the device voice whenever no audio URL comes back.

Design Pattern: circuit breaker around the remote call
- Three consecutive failures open the circuit for thirty seconds
- While open, calls fail fast without touching the network
- The first call after the timeout is a half-open probe
"""

import asyncio
import hashlib
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

import aiohttp

from .config import SessionConfig
from .errors import ProviderError
from .state import NarrationProvider

logger = logging.getLogger( __name__ )

FALLBACK_STATUSES = ( 401, 402, 429 )
FALLBACK_MESSAGE  = "Synthesizer unavailable - using device voice"


# =============================================================================
# Data Classes
# =============================================================================

@dataclass
class NarrationResult:
    """
    Outcome of one synthesis request.

    Ensures:
        - audio_url is non-empty only when provider is SYNTH
        - error describes the failure when provider is not SYNTH
    """

    provider  : NarrationProvider
    audio_url : str = ""
    error     : Optional[ str ] = None
    cached    : bool = False

    @property
    def has_audio( self ) -> bool:
        return self.provider == NarrationProvider.SYNTH and bool( self.audio_url )


# =============================================================================
# Circuit Breaker
# =============================================================================

class NarrationCircuitBreaker:
    """
    Consecutive-failure circuit breaker for the synthesizer.

    Requires:
        - failure_threshold >= 1
        - timeout_seconds >= 0

    Ensures:
        - state is one of CLOSED, OPEN, HALF_OPEN
        - A success closes the circuit and resets the failure count
        - Reaching failure_threshold failures opens the circuit
    """

    CLOSED    = "CLOSED"
    OPEN      = "OPEN"
    HALF_OPEN = "HALF_OPEN"

    def __init__(
        self,
        failure_threshold : int   = 3,
        timeout_seconds   : float = 30.0,
        time_source       : Callable[ [], float ] = time.monotonic,
        debug             : bool  = False,
    ):
        self.failure_threshold = failure_threshold
        self.timeout_seconds   = timeout_seconds
        self.time_source       = time_source
        self.debug             = debug

        self.state             = self.CLOSED
        self.failure_count     = 0
        self.last_failure_time = 0.0

    def before_call( self ) -> None:
        """
        Gate a call on the circuit state.

        Raises:
            ProviderError: If the circuit is open and the timeout has not elapsed
        """
        if self.state == self.OPEN:
            if self.time_source() - self.last_failure_time < self.timeout_seconds:
                raise ProviderError( "Voice service temporarily unavailable" )
            self.state = self.HALF_OPEN
            if self.debug:
                print( "[NarrationCircuitBreaker] Half-open probe" )

    def record_success( self ) -> None:
        self.failure_count = 0
        self.state         = self.CLOSED

    def record_failure( self ) -> None:
        self.failure_count    += 1
        self.last_failure_time = self.time_source()

        if self.failure_count >= self.failure_threshold:
            if self.state != self.OPEN:
                logger.warning( f"Synthesizer circuit opened after {self.failure_count} failures" )
            self.state = self.OPEN

    def get_status( self ) -> dict:
        return {
            "state"             : self.state,
            "failure_count"     : self.failure_count,
            "last_failure_time" : self.last_failure_time,
        }


# =============================================================================
# Synthesizer Client
# =============================================================================

class NarrationSynthesizerClient:
    """
    Client for the remote narration synthesizer proxy.

    Requires:
        - config.tts_url is set for remote synthesis

    Ensures:
        - synthesize() never raises
        - Successful URLs are cached by cache_key
        - 401/402/429 failures resolve to FALLBACK_SPEECH, others to NONE
    """

    def __init__(
        self,
        config    : Optional[ SessionConfig ] = None,
        breaker   : Optional[ NarrationCircuitBreaker ] = None,
        cache_dir : Optional[ Path ] = None,
        debug     : bool = False,
        verbose   : bool = False,
    ):
        self.config    = config or SessionConfig()
        self.debug     = debug
        self.verbose   = verbose
        self.breaker   = breaker or NarrationCircuitBreaker(
            failure_threshold = self.config.breaker_failure_threshold,
            timeout_seconds   = self.config.breaker_timeout_seconds,
            debug             = debug,
        )
        self.cache_dir = cache_dir or Path.home() / ".trance" / "audio-cache"

        self._url_cache : dict[ str, str ] = {}

        if self.debug:
            print( f"[NarrationSynthesizerClient] Initialized (endpoint: {self.config.tts_url or 'MISSING'})" )

    async def synthesize(
        self,
        text      : str,
        voice_id  : Optional[ str ] = None,
        model     : Optional[ str ] = None,
        cache_key : Optional[ str ] = None,
    ) -> NarrationResult:
        """
        Synthesize text into a playable audio URL.

        Requires:
            - text is a string

        Ensures:
            - Returns SYNTH with audio_url on success
            - Returns FALLBACK_SPEECH for auth, quota and rate-limit failures
            - Returns NONE with the error message for every other failure
            - Never raises

        Args:
            text: Narration text
            voice_id: Synthesizer voice (defaults to config.voice.voice_id)
            model: Synthesizer model (defaults to config.voice.model)
            cache_key: Cache key for the rendered audio

        Returns:
            NarrationResult: Outcome with provider tag
        """
        voice_id  = voice_id or self.config.voice.voice_id
        model     = model or self.config.voice.model
        cache_key = cache_key or self._default_cache_key( text, voice_id, model )
        started   = time.monotonic()

        if cache_key in self._url_cache:
            if self.debug:
                print( f"[NarrationSynthesizerClient] Cache hit for {cache_key}" )
            return NarrationResult( provider=NarrationProvider.SYNTH, audio_url=self._url_cache[ cache_key ], cached=True )

        try:
            self.breaker.before_call()
            try:
                audio_url = await self._call_synthesizer( text, voice_id, model, cache_key )
            except ( ProviderError, aiohttp.ClientError, asyncio.TimeoutError ):
                self.breaker.record_failure()
                raise
            self.breaker.record_success()

        except ( ProviderError, aiohttp.ClientError, asyncio.TimeoutError ) as e:
            return self._failure_result( e )

        self._url_cache[ cache_key ] = audio_url

        if self.verbose:
            elapsed = time.monotonic() - started
            print( f"[NarrationSynthesizerClient] Synthesized {len( text )} chars in {elapsed:.2f}s" )

        return NarrationResult( provider=NarrationProvider.SYNTH, audio_url=audio_url )

    def _failure_result( self, error: Exception ) -> NarrationResult:
        status = getattr( error, "status", None )

        if status in FALLBACK_STATUSES:
            logger.warning( f"Synthesizer auth/rate issue ({status}), falling back to device voice" )
            return NarrationResult( provider=NarrationProvider.FALLBACK_SPEECH, error=FALLBACK_MESSAGE )

        message = str( error ) or error.__class__.__name__
        logger.warning( f"Synthesis failed: {message}" )
        return NarrationResult( provider=NarrationProvider.NONE, error=message )

    async def _call_synthesizer( self, text: str, voice_id: str, model: str, cache_key: str ) -> str:
        """
        Validate and send one synthesis request.

        Raises:
            ProviderError: On local validation failure or a bad response
        """
        if len( text ) > self.config.max_text_chars:
            raise ProviderError( f"Text too long (max {self.config.max_text_chars} characters)" )

        if not self.config.tts_url:
            raise ProviderError( "Synthesizer endpoint not configured" )

        voice = self.config.voice
        payload = {
            "text"       : text,
            "voiceId"    : voice_id,
            "model"      : model,
            "cacheKey"   : cache_key,
            "stability"  : voice.stability,
            "similarity" : voice.similarity,
            "style"      : voice.style,
            "mode"       : self.config.synthesis_mode,
        }

        return await self._post_synthesis( payload )

    async def _post_synthesis( self, payload: dict ) -> str:
        """
        POST a synthesis request and turn the reply into an audio URL.

        A JSON reply must carry audioUrl; a binary reply is written to the
        audio cache directory and returned as a file URI.

        Raises:
            ProviderError: On non-2xx status, empty audio or a malformed reply
        """
        headers = { "Content-Type": "application/json" }
        if self.config.api_key:
            headers[ "Authorization" ] = f"Bearer {self.config.api_key}"

        timeout = aiohttp.ClientTimeout( total=self.config.request_timeout_seconds )

        async with aiohttp.ClientSession( timeout=timeout ) as session:
            async with session.post( self.config.tts_url, headers=headers, json=payload ) as response:
                if response.status >= 400:
                    error_text = await response.text()
                    status     = response.status
                    if "Free Tier usage disabled" in error_text:
                        status = 401
                    raise ProviderError( f"Proxy error: {error_text[ :200 ]}", status=status )

                if response.content_type == "application/json":
                    try:
                        data = await response.json()
                    except ValueError as e:
                        raise ProviderError( f"Invalid JSON from synthesizer: {e}" ) from e
                    audio_url = data.get( "audioUrl" ) if isinstance( data, dict ) else None
                    if not audio_url:
                        raise ProviderError( "Synthesizer reply missing audioUrl" )
                    return audio_url

                audio_bytes = await response.read()

        if not audio_bytes:
            raise ProviderError( "Received empty audio response" )

        return await asyncio.to_thread( self._write_audio, payload[ "cacheKey" ], audio_bytes )

    def _write_audio( self, cache_key: str, audio_bytes: bytes ) -> str:
        self.cache_dir.mkdir( parents=True, exist_ok=True )
        digest = hashlib.sha256( cache_key.encode( "utf-8" ) ).hexdigest()[ :24 ]
        path = self.cache_dir / f"{digest}.mp3"
        path.write_bytes( audio_bytes )
        return path.as_uri()

    @staticmethod
    def _default_cache_key( text: str, voice_id: str, model: str ) -> str:
        digest = hashlib.sha256( text.encode( "utf-8" ) ).hexdigest()[ :16 ]
        return f"text-{digest}-{voice_id}-{model}"


def build_cache_key( title: Optional[ str ], segment_id: str, voice_id: str, model: str ) -> str:
    """Cache key for a script segment's narration."""
    return f"{title or 'script'}-{segment_id}-{voice_id}-{model}"
