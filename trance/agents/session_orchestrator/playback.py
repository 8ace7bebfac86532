#!/usr/bin/env python3
"""
Segment Playback Pipeline for guided sessions.

Sequences narration segment by segment, keeps a lookahead window of
synthesized audio ready, and degrades to device speech whenever no audio is
available.

State machine:
    stopped -> playing -> { paused <-> playing } -> stopped

Design Pattern: one playback task per run
- The playback task narrates the current segment, waits the settle delay,
  advances the index and continues until the last segment ends
- Prefetch tasks resolve segments concurrently; playback consumes them strictly
  in index order
- Only this class mutates current_index and play_state
"""

import asyncio
import inspect
import logging
from typing import Any, Callable, Optional, Sequence

from .config import SessionConfig
from .errors import SessionInitError
from .events import SessionEventChannel, spawn_background
from .narration import AudioHandle, AudioOutput, SpeechNarrator
from .script_sources import ScriptSource, resolve_session_script
from .state import (
    NarrationProvider,
    PlayableSegment,
    PlayState,
    SessionContext,
    SessionEventType,
    SessionScript,
)
from .tts_client import build_cache_key

logger = logging.getLogger( __name__ )

SegmentHook = Callable[ [ PlayableSegment ], Any ]


class SegmentPlaybackPipeline:
    """
    Playback engine for one session script.

    Requires:
        - synthesizer exposes async synthesize( text, voice_id, model, cache_key ) -> NarrationResult
        - sources is an ordered script source chain

    Ensures:
        - initialize() never leaves zero segments without raising SessionInitError
        - At most one segment narrates at a time
        - A segment's audio handle is released when playback moves past it
        - dispose() is idempotent
    """

    def __init__(
        self,
        synthesizer,
        sources         : Sequence[ ScriptSource ],
        audio_output    : AudioOutput,
        speech_narrator : SpeechNarrator,
        events          : Optional[ SessionEventChannel ] = None,
        config          : Optional[ SessionConfig ] = None,
        debug           : bool = False,
        verbose         : bool = False,
    ):
        self.synthesizer     = synthesizer
        self.sources         = list( sources )
        self.audio_output    = audio_output
        self.speech_narrator = speech_narrator
        self.events          = events or SessionEventChannel()
        self.config          = config or SessionConfig()
        self.debug           = debug
        self.verbose         = verbose

        # Set by the owner; each may be sync or async
        self.on_segment_start  : Optional[ SegmentHook ] = None
        self.on_segment_finish : Optional[ SegmentHook ] = None
        self.on_change         : Optional[ Callable[ [], Any ] ] = None

        self.script        : Optional[ SessionScript ] = None
        self.segments      : list[ Optional[ PlayableSegment ] ] = []
        self.current_index : int = 0
        self.play_state    : PlayState = PlayState.STOPPED
        self.error         : Optional[ str ] = None
        self.finished      : bool = False

        self._inflight      : dict[ int, asyncio.Task ] = {}
        self._playback_task : Optional[ asyncio.Task ] = None
        self._active_output : Optional[ str ] = None
        self._not_paused    = asyncio.Event()
        self._not_paused.set()
        self._disposed      = False

    # =========================================================================
    # Derived State
    # =========================================================================

    @property
    def total_segments( self ) -> int:
        return len( self.segments )

    @property
    def current_segment_id( self ) -> Optional[ str ]:
        if self.script is None or not 0 <= self.current_index < len( self.script.segments ):
            return None
        return self.script.segments[ self.current_index ].id

    @property
    def buffered_ahead( self ) -> int:
        """Resolved segments past the current index."""
        return sum( 1 for segment in self.segments[ self.current_index + 1: ] if segment is not None )

    @property
    def is_disposed( self ) -> bool:
        return self._disposed

    def get_segment( self, index: int ) -> Optional[ PlayableSegment ]:
        if 0 <= index < len( self.segments ):
            return self.segments[ index ]
        return None

    async def _call_hook( self, hook: Optional[ Callable ], *args ) -> None:
        if hook is None:
            return
        try:
            result = hook( *args )
            if inspect.isawaitable( result ):
                await result
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error( f"Playback hook {getattr( hook, '__name__', hook )} failed: {e!r}" )

    def _notify( self ) -> None:
        if self.on_change is None:
            return
        try:
            self.on_change()
        except Exception as e:
            logger.error( f"Playback change hook failed: {e!r}" )

    # =========================================================================
    # Initialization & Prefetch
    # =========================================================================

    async def initialize( self, context: SessionContext ) -> SessionScript:
        """
        Resolve the script through the source chain and prefetch the first window.

        Ensures:
            - current_index is 0 and play_state is stopped
            - The first window of segments is resolved

        Raises:
            SessionInitError: If the resolved script has zero segments

        Args:
            context: Normalized session context

        Returns:
            SessionScript: The script being played
        """
        script = await resolve_session_script( self.sources, context, debug=self.debug )

        if not script.segments:
            raise SessionInitError( "Session script has no segments" )

        self.script        = script
        self.segments      = [ None ] * len( script.segments )
        self.current_index = 0
        self.play_state    = PlayState.STOPPED
        self.error         = None
        self.finished      = False

        if self.debug:
            print( f"[SegmentPlaybackPipeline] Script '{script.title}' with {len( script.segments )} segments" )

        self._notify()
        await self.prefetch()

        return script

    def _window( self ) -> range:
        end = min( self.current_index + self.config.prefetch_depth + 1, len( self.segments ) )
        return range( self.current_index, end )

    async def prefetch( self ) -> None:
        """
        Resolve every unresolved segment in the lookahead window concurrently.

        Ensures:
            - Window is [current_index, current_index + prefetch_depth]
            - A failing segment resolves to device speech; the batch still completes
        """
        if self.script is None or self._disposed:
            return

        tasks = []
        for index in self._window():
            if self.segments[ index ] is not None:
                continue
            task = self._inflight.get( index )
            if task is None:
                task = asyncio.create_task( self._resolve_segment( index ), name=f"prefetch-{index}" )
                self._inflight[ index ] = task
            tasks.append( task )

        if not tasks:
            return

        results = await asyncio.gather( *tasks, return_exceptions=True )
        for result in results:
            if isinstance( result, Exception ) and not isinstance( result, asyncio.CancelledError ):
                logger.error( f"Prefetch task failed: {result!r}" )

        self._notify()

    def _schedule_prefetch( self ) -> None:
        if not self._disposed:
            spawn_background( self.prefetch(), name="prefetch-window" )

    async def _resolve_segment( self, index: int ) -> PlayableSegment:
        script_segment = self.script.segments[ index ]
        voice          = self.config.voice
        voice_id       = script_segment.voice or voice.voice_id
        cache_key      = build_cache_key( self.script.title, script_segment.id, voice_id, voice.model )

        try:
            result = await self.synthesizer.synthesize( script_segment.text, voice_id, voice.model, cache_key )
            error  = result.error
            audio  = AudioHandle( url=result.audio_url, duration_seconds=script_segment.approx_sec ) if result.has_audio else None
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning( f"Synthesis for segment {script_segment.id} raised: {e!r}" )
            error = str( e ) or e.__class__.__name__
            audio = None

        playable = PlayableSegment(
            segment            = script_segment,
            index              = index,
            audio              = audio,
            narration_provider = NarrationProvider.SYNTH if audio is not None else NarrationProvider.FALLBACK_SPEECH,
            narration_error    = error,
        )

        self._inflight.pop( index, None )

        if self._disposed:
            playable.release()
            return playable

        stale = self.segments[ index ]
        if stale is not None:
            stale.release()
        self.segments[ index ] = playable

        if self.verbose:
            print( f"[SegmentPlaybackPipeline] Segment {index} ({script_segment.id}) ready via {playable.narration_provider.value}" )

        self.events.emit( SessionEventType.SEGMENT_READY, script_segment.id )

        return playable

    async def _ensure_resolved( self, index: int ) -> PlayableSegment:
        segment = self.segments[ index ]
        if segment is not None:
            return segment

        task = self._inflight.get( index )
        if task is None:
            task = asyncio.create_task( self._resolve_segment( index ), name=f"prefetch-{index}" )
            self._inflight[ index ] = task
        return await task

    # =========================================================================
    # Playback
    # =========================================================================

    async def play( self ) -> None:
        """
        Start or resume narration of the current segment.

        Ensures:
            - No-op when already playing
            - Resumes paused narration in place
            - Reports an unresolved current segment through error and schedules prefetch
        """
        if self._disposed or self.script is None:
            self.error = "Session is not initialized"
            self._notify()
            return

        if self.play_state == PlayState.PLAYING:
            return

        if self.finished:
            self.error = "Session has ended; restart to play again"
            self._notify()
            return

        if self.play_state == PlayState.PAUSED and self._playback_task is not None and not self._playback_task.done():
            self._resume_outputs()
            self.play_state = PlayState.PLAYING
            self.events.emit( SessionEventType.PLAY )
            self._notify()
            return

        segment = self.get_segment( self.current_index )
        if segment is None:
            self.error = f"Segment {self.current_index + 1} is not ready for playback"
            logger.warning( self.error )
            self._schedule_prefetch()
            self._notify()
            return

        self.error = None
        self._not_paused.set()
        self.play_state     = PlayState.PLAYING
        self._playback_task = asyncio.create_task( self._run_playback(), name="segment-playback" )

        self.events.emit( SessionEventType.PLAY )
        self._notify()
        self._schedule_prefetch()

    async def _run_playback( self ) -> None:
        while True:
            await self._not_paused.wait()
            segment = await self._ensure_resolved( self.current_index )
            await self._narrate( segment )
            await asyncio.sleep( self.config.settle_delay_seconds )

            if not self._advance():
                return

            self._schedule_prefetch()

    async def _narrate( self, segment: PlayableSegment ) -> None:
        await self._call_hook( self.on_segment_start, segment )

        # A pause that landed while resolving or in the start hook holds here
        await self._not_paused.wait()

        try:
            if segment.audio is not None and not segment.audio.released:
                self._active_output = "audio"
                self.events.emit( SessionEventType.AUDIO_ELEMENT, { "segment_id": segment.id, "url": segment.audio.url } )
                await self.audio_output.play( segment.audio )
            else:
                self._active_output = "speech"
                await self.speech_narrator.speak( segment.text )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning( f"Playback of segment {segment.id} failed, treating as ended: {e!r}" )
        finally:
            self._active_output = None

        if self.debug:
            print( f"[SegmentPlaybackPipeline] Segment {segment.index} ({segment.id}) finished" )

        await self._call_hook( self.on_segment_finish, segment )

    def _release_current( self ) -> None:
        segment = self.get_segment( self.current_index )
        if segment is not None and segment.audio is not None:
            segment.release()
            self.segments[ self.current_index ] = None

    def _advance( self ) -> bool:
        """
        Move past the segment that just finished.

        Returns:
            bool: False when the finished segment was the last one
        """
        self._release_current()

        if self.current_index >= len( self.segments ) - 1:
            self._stop_at_end()
            return False

        self.current_index += 1
        self._notify()
        return True

    def _stop_at_end( self ) -> None:
        self.play_state = PlayState.STOPPED
        self.finished   = True
        self.events.emit( SessionEventType.END )
        self._notify()

    def _pause_outputs( self ) -> None:
        self._not_paused.clear()
        if self._active_output == "audio":
            self.audio_output.pause()
        elif self._active_output == "speech":
            self.speech_narrator.pause()

    def _resume_outputs( self ) -> None:
        self._not_paused.set()
        if self._active_output == "audio":
            self.audio_output.resume()
        elif self._active_output == "speech":
            self.speech_narrator.resume()

    async def _cancel_playback( self ) -> None:
        task = self._playback_task
        self._playback_task = None

        self.audio_output.stop()
        self.speech_narrator.cancel()
        self._active_output = None
        self._not_paused.set()

        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def pause( self ) -> None:
        """Pause the active narration; buffered segments are kept."""
        if self.play_state != PlayState.PLAYING:
            return

        self._pause_outputs()
        self.play_state = PlayState.PAUSED
        self.events.emit( SessionEventType.PAUSE )
        self._notify()

    async def next( self ) -> None:
        """
        Cancel narration and move to the next segment.

        Ensures:
            - At the last segment: stops and emits end
            - Otherwise increments current_index by exactly one
            - Playback resumes only if it was playing
        """
        if self.script is None or self._disposed:
            return

        if self.finished:
            return

        was_playing = self.play_state == PlayState.PLAYING
        await self._cancel_playback()

        if self.current_index >= len( self.segments ) - 1:
            self._release_current()
            self._stop_at_end()
            return

        self._release_current()
        self.current_index += 1
        await self._after_move( was_playing )

    async def prev( self ) -> None:
        """Cancel narration and move to the previous segment; no-op at the first."""
        if self.script is None or self._disposed or self.current_index == 0:
            return

        was_playing = self.play_state == PlayState.PLAYING
        await self._cancel_playback()

        self._release_current()
        self.current_index -= 1
        await self._after_move( was_playing )

    async def _after_move( self, was_playing: bool ) -> None:
        self.finished = False
        if was_playing:
            self.play_state = PlayState.STOPPED
            await self._ensure_resolved( self.current_index )
            await self.play()
            return

        self._notify()
        self._schedule_prefetch()

    async def restart( self, from_index: int = 0 ) -> None:
        """
        Restart playback at from_index.

        Requires:
            - 0 <= from_index < total_segments (clamped otherwise)
        """
        if self.script is None or self._disposed:
            return

        await self._cancel_playback()
        self._release_current()

        self.current_index = max( 0, min( from_index, len( self.segments ) - 1 ) )
        self.play_state    = PlayState.STOPPED
        self.finished      = False
        self.error         = None

        await self.prefetch()
        await self.play()

    async def dispose( self ) -> None:
        """
        Cancel narration and prefetch, release every audio handle, clear hooks.

        Ensures:
            - Safe to call more than once
        """
        if self._disposed:
            return
        self._disposed = True

        await self._cancel_playback()

        for task in list( self._inflight.values() ):
            task.cancel()
        self._inflight.clear()

        for segment in self.segments:
            if segment is not None:
                segment.release()

        self.play_state = PlayState.STOPPED
        self._notify()

        self.on_segment_start  = None
        self.on_segment_finish = None
        self.on_change         = None

        if self.debug:
            print( "[SegmentPlaybackPipeline] Disposed" )
