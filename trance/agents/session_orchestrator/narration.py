#!/usr/bin/env python3
"""
Narration outputs for the segment playback pipeline.

Two output kinds exist:
1. AudioOutput plays synthesized audio referenced by an AudioHandle
2. SpeechNarrator speaks segment text on the device when no audio exists

Each output exposes a coroutine that returns when narration finishes, plus
pause/resume/stop controls. Cancelling the coroutine stops narration.

Headless implementations advance a clock instead of driving a device; they
back the dry-run CLI and the tests.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional

from .config import DeviceSpeechSettings

logger = logging.getLogger( __name__ )

DEFAULT_SEGMENT_SECONDS = 20.0


@dataclass
class AudioHandle:
    """
    Reference to a synthesized audio resource.

    Requires:
        - url is the location returned by the synthesizer

    Ensures:
        - release() is idempotent
    """

    url              : str
    duration_seconds : Optional[ float ] = None
    released         : bool = field( default=False )

    def release( self ) -> None:
        """Mark the resource as released so no further playback uses it."""
        if not self.released:
            self.released = True
            logger.debug( f"Released audio handle {self.url}" )


class AudioOutput( ABC ):
    """Plays synthesized audio handles."""

    @abstractmethod
    async def play( self, handle: AudioHandle ) -> None:
        """Play handle to completion. Raises on playback error."""

    @abstractmethod
    def pause( self ) -> None:
        """Suspend the active playback."""

    @abstractmethod
    def resume( self ) -> None:
        """Resume a suspended playback."""

    @abstractmethod
    def stop( self ) -> None:
        """Stop the active playback immediately."""


class SpeechNarrator( ABC ):
    """Speaks text with the device voice."""

    @abstractmethod
    async def speak( self, text: str ) -> None:
        """Speak text to completion."""

    @abstractmethod
    def pause( self ) -> None:
        """Suspend the active utterance."""

    @abstractmethod
    def resume( self ) -> None:
        """Resume a suspended utterance."""

    @abstractmethod
    def cancel( self ) -> None:
        """Cancel the active utterance immediately."""


class _ClockPlayback:
    """
    Clock-driven stand-in for a device: counts down a duration in ticks and
    holds the countdown while paused.
    """

    def __init__( self, time_scale: float = 1.0, tick_seconds: float = 0.05 ):
        self.time_scale   = time_scale
        self.tick_seconds = tick_seconds
        self._running     = asyncio.Event()
        self._running.set()

    async def _count_down( self, seconds: float ) -> None:
        remaining = max( 0.0, seconds * self.time_scale )
        while remaining > 0:
            await self._running.wait()
            step = min( self.tick_seconds, remaining )
            await asyncio.sleep( step )
            remaining -= step

    def _hold( self ) -> None:
        self._running.clear()

    def _release_hold( self ) -> None:
        self._running.set()


class HeadlessAudioOutput( _ClockPlayback, AudioOutput ):
    """
    AudioOutput that "plays" each handle for its duration without a device.

    Ensures:
        - played lists the URL of every handle that played to completion
        - Released handles raise RuntimeError, like a revoked media URL
    """

    def __init__( self, time_scale: float = 1.0, tick_seconds: float = 0.05, debug: bool = False ):
        super().__init__( time_scale=time_scale, tick_seconds=tick_seconds )
        self.debug  = debug
        self.played : list[ str ] = []

    async def play( self, handle: AudioHandle ) -> None:
        if handle.released:
            raise RuntimeError( f"Audio handle already released: {handle.url}" )

        if self.debug:
            print( f"[HeadlessAudioOutput] Playing {handle.url}" )

        await self._count_down( handle.duration_seconds or DEFAULT_SEGMENT_SECONDS )
        self.played.append( handle.url )

    def pause( self ) -> None:
        self._hold()

    def resume( self ) -> None:
        self._release_hold()

    def stop( self ) -> None:
        self._release_hold()


class HeadlessSpeechNarrator( _ClockPlayback, SpeechNarrator ):
    """
    SpeechNarrator that estimates speaking time from a words-per-minute rate.

    Ensures:
        - spoken lists every utterance that finished
    """

    def __init__(
        self,
        settings     : Optional[ DeviceSpeechSettings ] = None,
        time_scale   : float = 1.0,
        tick_seconds : float = 0.05,
        debug        : bool  = False,
    ):
        super().__init__( time_scale=time_scale, tick_seconds=tick_seconds )
        self.settings = settings or DeviceSpeechSettings()
        self.debug    = debug
        self.spoken   : list[ str ] = []

    def estimate_seconds( self, text: str ) -> float:
        """Estimate how long the device voice needs for text."""
        words = len( text.split() )
        return words / ( self.settings.words_per_minute * self.settings.rate ) * 60.0

    async def speak( self, text: str ) -> None:
        if self.debug:
            print( f"[HeadlessSpeechNarrator] Speaking {len( text )} chars" )

        await self._count_down( self.estimate_seconds( text ) )
        self.spoken.append( text )

    def pause( self ) -> None:
        self._hold()

    def resume( self ) -> None:
        self._release_hold()

    def cancel( self ) -> None:
        self._release_hold()


class Pyttsx3SpeechNarrator( SpeechNarrator ):
    """
    On-device speech through pyttsx3.

    pyttsx3 has no pause primitive, so pause() stops the engine and resume()
    speaks the interrupted utterance again from its start. Pitch is not
    exposed by the engine and is ignored.

    Requires:
        - pyttsx3 can initialize a driver on this host
    """

    def __init__( self, settings: Optional[ DeviceSpeechSettings ] = None, debug: bool = False ):
        import pyttsx3

        self.settings     = settings or DeviceSpeechSettings()
        self.debug        = debug
        self._engine      = pyttsx3.init()
        self._running     = asyncio.Event()
        self._interrupted = False
        self._cancelled   = False

        base_rate = self._engine.getProperty( "rate" ) or 200
        self._engine.setProperty( "rate", int( base_rate * self.settings.rate ) )
        self._engine.setProperty( "volume", self.settings.volume )

        if self.debug:
            print( f"[Pyttsx3SpeechNarrator] Initialized (rate: {int( base_rate * self.settings.rate )})" )

    def _say_blocking( self, text: str ) -> None:
        self._engine.say( text )
        self._engine.runAndWait()

    async def speak( self, text: str ) -> None:
        self._running.set()
        self._cancelled = False
        while True:
            await self._running.wait()
            if self._cancelled:
                return
            self._interrupted = False
            await asyncio.to_thread( self._say_blocking, text )
            if not self._interrupted or self._cancelled:
                return

    def pause( self ) -> None:
        self._running.clear()
        self._interrupted = True
        self._engine.stop()

    def resume( self ) -> None:
        self._running.set()

    def cancel( self ) -> None:
        self._cancelled   = True
        self._interrupted = True
        self._engine.stop()
        self._running.set()


def create_speech_narrator( settings: Optional[ DeviceSpeechSettings ] = None, debug: bool = False ) -> SpeechNarrator:
    """
    Get the best available device narrator.

    Ensures:
        - Returns a Pyttsx3SpeechNarrator when the speech engine initializes
        - Otherwise logs a warning and returns a HeadlessSpeechNarrator
    """
    try:
        return Pyttsx3SpeechNarrator( settings=settings, debug=debug )
    except ( RuntimeError, OSError ) as e:
        logger.warning( f"Device speech engine unavailable ({e}); narrating silently" )
        return HeadlessSpeechNarrator( settings=settings, debug=debug )
