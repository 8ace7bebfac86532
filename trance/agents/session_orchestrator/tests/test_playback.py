#!/usr/bin/env python3
"""
Unit tests for the segment playback pipeline.

Headless outputs run with time_scale=0 so every segment "plays" instantly,
except where a test needs narration to be in flight.

Run with: pytest -v trance/agents/session_orchestrator/tests/test_playback.py
"""

import asyncio

import pytest
from unittest.mock import AsyncMock, patch

from trance.agents.session_orchestrator.config import SessionConfig
from trance.agents.session_orchestrator.errors import SessionInitError
from trance.agents.session_orchestrator.mock_clients import (
    MOCK_SCRIPT_RESPONSE,
    MockScriptProviderClient,
    MockSynthesizerClient,
)
from trance.agents.session_orchestrator.narration import AudioHandle, HeadlessAudioOutput, HeadlessSpeechNarrator
from trance.agents.session_orchestrator.playback import SegmentPlaybackPipeline
from trance.agents.session_orchestrator.script_sources import build_default_sources
from trance.agents.session_orchestrator.state import (
    NarrationProvider,
    PlayState,
    SessionContext,
    SessionEventType,
    SessionScript,
)

MOCK_TEXTS = [ segment[ "text" ] for segment in MOCK_SCRIPT_RESPONSE[ "segments" ] ]


def make_pipeline( synthesizer=None, time_scale: float = 0.0, **config_overrides ) -> SegmentPlaybackPipeline:
    config = SessionConfig( settle_delay_seconds=0.0, **config_overrides )
    return SegmentPlaybackPipeline(
        synthesizer     = synthesizer or MockSynthesizerClient(),
        sources         = build_default_sources( MockScriptProviderClient() ),
        audio_output    = HeadlessAudioOutput( time_scale=time_scale, tick_seconds=0.01 ),
        speech_narrator = HeadlessSpeechNarrator( time_scale=time_scale, tick_seconds=0.01 ),
        config          = config,
    )


def record_events( pipeline: SegmentPlaybackPipeline, *event_types ) -> list:
    seen = []
    for event_type in event_types:
        pipeline.events.on( event_type, lambda event: seen.append( event.type ) )
    return seen


class TestInitialize:
    """Tests for script resolution and the first prefetch window."""

    def test_prefetches_first_window( self ):
        """Test the first prefetch window."""
        async def run():
            pipeline = make_pipeline()
            ready = []
            pipeline.events.on( SessionEventType.SEGMENT_READY, lambda event: ready.append( event.payload ) )

            script = await pipeline.initialize( SessionContext() )
            return pipeline, script, ready

        pipeline, script, ready = asyncio.run( run() )

        assert script.get_segment_count() == 4
        assert pipeline.total_segments == 4
        assert pipeline.current_index == 0
        assert pipeline.current_segment_id == "mock-arrival"
        assert pipeline.play_state == PlayState.STOPPED
        assert sorted( ready ) == sorted( [ "mock-arrival", "mock-breath", "mock-deepening" ] )
        assert pipeline.buffered_ahead == 2
        assert pipeline.get_segment( 3 ) is None

    def test_zero_lookahead_resolves_current_only( self ):
        """Test zero lookahead."""
        async def run():
            pipeline = make_pipeline( prefetch_depth=0 )
            await pipeline.initialize( SessionContext() )
            return pipeline

        pipeline = asyncio.run( run() )
        assert pipeline.get_segment( 0 ) is not None
        assert pipeline.buffered_ahead == 0

    def test_empty_script_raises( self ):
        """Test SessionInitError on an empty script."""
        async def run():
            pipeline = make_pipeline()
            with patch(
                "trance.agents.session_orchestrator.playback.resolve_session_script",
                AsyncMock( return_value=SessionScript( segments=[] ) ),
            ):
                await pipeline.initialize( SessionContext() )

        with pytest.raises( SessionInitError ):
            asyncio.run( run() )

    def test_failed_synthesis_resolves_to_device_speech( self ):
        """Test device speech for failed synthesis."""
        async def run():
            pipeline = make_pipeline( synthesizer=MockSynthesizerClient( fail_segment_ids=[ "mock-breath" ] ) )
            await pipeline.initialize( SessionContext() )
            return pipeline

        pipeline = asyncio.run( run() )
        failed = pipeline.get_segment( 1 )
        assert failed.narration_provider == NarrationProvider.FALLBACK_SPEECH
        assert failed.audio is None
        assert "HTTP 500" in failed.narration_error
        assert pipeline.get_segment( 0 ).narration_provider == NarrationProvider.SYNTH


class TestPlayback:
    """Tests for sequential narration."""

    def test_plays_every_segment_then_ends( self ):
        """Test playback through every segment."""
        async def run():
            pipeline = make_pipeline()
            started, finished = [], []
            pipeline.on_segment_start  = lambda segment: started.append( segment.id )
            pipeline.on_segment_finish = lambda segment: finished.append( segment.id )
            events = record_events( pipeline, SessionEventType.PLAY, SessionEventType.END )

            await pipeline.initialize( SessionContext() )
            await pipeline.play()
            await asyncio.wait_for( pipeline._playback_task, timeout=5.0 )
            return pipeline, started, finished, events

        pipeline, started, finished, events = asyncio.run( run() )

        ids = [ "mock-arrival", "mock-breath", "mock-deepening", "mock-return" ]
        assert started == ids
        assert finished == ids
        assert events == [ SessionEventType.PLAY, SessionEventType.END ]
        assert pipeline.finished is True
        assert pipeline.play_state == PlayState.STOPPED
        assert pipeline.current_index == 3
        assert len( pipeline.audio_output.played ) == 4
        assert pipeline.speech_narrator.spoken == []

    def test_audio_element_precedes_synthesized_narration( self ):
        """Test audio-element emission."""
        async def run():
            pipeline = make_pipeline()
            elements = []
            pipeline.events.on( SessionEventType.AUDIO_ELEMENT, lambda event: elements.append( event.payload ) )
            await pipeline.initialize( SessionContext() )
            await pipeline.play()
            await asyncio.wait_for( pipeline._playback_task, timeout=5.0 )
            return pipeline, elements

        pipeline, elements = asyncio.run( run() )
        assert [ element[ "segment_id" ] for element in elements ] == [ "mock-arrival", "mock-breath", "mock-deepening", "mock-return" ]
        assert [ element[ "url" ] for element in elements ] == pipeline.audio_output.played

    def test_failed_segment_is_spoken( self ):
        """Test a failed segment is spoken."""
        async def run():
            pipeline = make_pipeline( synthesizer=MockSynthesizerClient( fail_segment_ids=[ "mock-breath" ] ) )
            await pipeline.initialize( SessionContext() )
            await pipeline.play()
            await asyncio.wait_for( pipeline._playback_task, timeout=5.0 )
            return pipeline

        pipeline = asyncio.run( run() )
        assert pipeline.speech_narrator.spoken == [ MOCK_TEXTS[ 1 ] ]
        assert len( pipeline.audio_output.played ) == 3
        assert pipeline.finished is True

    def test_audio_released_after_playing( self ):
        """Test audio release after playback."""
        async def run():
            pipeline = make_pipeline()
            handles = []
            pipeline.on_segment_start = lambda segment: handles.append( segment.audio )
            await pipeline.initialize( SessionContext() )
            await pipeline.play()
            await asyncio.wait_for( pipeline._playback_task, timeout=5.0 )
            return pipeline, handles

        pipeline, handles = asyncio.run( run() )
        assert all( isinstance( handle, AudioHandle ) and handle.released for handle in handles )
        assert pipeline.get_segment( 0 ) is None

    def test_play_while_playing_is_noop( self ):
        """Test play while playing."""
        async def run():
            pipeline = make_pipeline( time_scale=1.0 )
            events = record_events( pipeline, SessionEventType.PLAY )
            await pipeline.initialize( SessionContext() )
            await pipeline.play()
            task = pipeline._playback_task
            await pipeline.play()
            same_task = pipeline._playback_task is task
            await pipeline.dispose()
            return events, same_task

        events, same_task = asyncio.run( run() )
        assert events == [ SessionEventType.PLAY ]
        assert same_task

    def test_play_before_initialize_sets_error( self ):
        """Test play before initialize."""
        async def run():
            pipeline = make_pipeline()
            await pipeline.play()
            return pipeline

        pipeline = asyncio.run( run() )
        assert pipeline.error == "Session is not initialized"
        assert pipeline.play_state == PlayState.STOPPED

    def test_play_after_end_requires_restart( self ):
        """Test play after the end."""
        async def run():
            pipeline = make_pipeline()
            await pipeline.initialize( SessionContext() )
            await pipeline.play()
            await asyncio.wait_for( pipeline._playback_task, timeout=5.0 )
            await pipeline.play()
            return pipeline

        pipeline = asyncio.run( run() )
        assert pipeline.play_state == PlayState.STOPPED
        assert "restart" in pipeline.error

    def test_unresolved_current_segment_reports_error( self ):
        """Test play with an unresolved current segment."""
        async def run():
            pipeline = make_pipeline( prefetch_depth=0 )
            await pipeline.initialize( SessionContext() )
            await pipeline.next()
            await pipeline.play()
            error, state = pipeline.error, pipeline.play_state

            await pipeline.prefetch()
            await pipeline.play()
            resumed = pipeline.play_state
            await pipeline.dispose()
            return error, state, resumed

        error, state, resumed = asyncio.run( run() )
        assert error == "Segment 2 is not ready for playback"
        assert state == PlayState.STOPPED
        assert resumed == PlayState.PLAYING


class TestPauseResume:
    """Tests for pausing narration in flight."""

    def test_pause_then_resume( self ):
        """Test pause and resume of narration in flight."""
        async def run():
            pipeline = make_pipeline( time_scale=1.0 )
            events = record_events( pipeline, SessionEventType.PLAY, SessionEventType.PAUSE )
            await pipeline.initialize( SessionContext() )

            await pipeline.play()
            await asyncio.sleep( 0.05 )
            await pipeline.pause()
            paused_state = pipeline.play_state
            held = not pipeline.audio_output._running.is_set()
            await pipeline.pause()

            await pipeline.play()
            resumed_state = pipeline.play_state
            released = pipeline.audio_output._running.is_set()

            await pipeline.dispose()
            return events, paused_state, held, resumed_state, released, pipeline

        events, paused_state, held, resumed_state, released, pipeline = asyncio.run( run() )
        assert paused_state == PlayState.PAUSED
        assert held
        assert resumed_state == PlayState.PLAYING
        assert released
        assert events == [ SessionEventType.PLAY, SessionEventType.PAUSE, SessionEventType.PLAY ]
        assert pipeline.current_index == 0

    def test_pause_while_next_segment_resolves( self ):
        """Test a pause during pending synthesis holds the segment and the index."""
        async def run():
            pipeline = make_pipeline( synthesizer=MockSynthesizerClient( delay_seconds=0.3 ), prefetch_depth=0 )
            ended = asyncio.Event()
            pipeline.events.on( SessionEventType.END, lambda event: ended.set() )
            await pipeline.initialize( SessionContext() )

            await pipeline.play()
            await asyncio.sleep( 0.1 )
            index_at_pause = pipeline.current_index
            await pipeline.pause()

            await asyncio.sleep( 0.6 )
            index_while_paused  = pipeline.current_index
            played_while_paused = len( pipeline.audio_output.played )
            state_while_paused  = pipeline.play_state

            await pipeline.play()
            await asyncio.wait_for( ended.wait(), timeout=5.0 )
            played_after = len( pipeline.audio_output.played )

            await pipeline.dispose()
            return index_at_pause, index_while_paused, played_while_paused, state_while_paused, played_after

        index_at_pause, index_while_paused, played_while_paused, state_while_paused, played_after = asyncio.run( run() )
        assert index_at_pause == 1
        assert index_while_paused == 1
        assert played_while_paused == 1
        assert state_while_paused == PlayState.PAUSED
        assert played_after == 4

    def test_pause_when_stopped_is_noop( self ):
        """Test pause while stopped."""
        async def run():
            pipeline = make_pipeline()
            events = record_events( pipeline, SessionEventType.PAUSE )
            await pipeline.initialize( SessionContext() )
            await pipeline.pause()
            return pipeline, events

        pipeline, events = asyncio.run( run() )
        assert pipeline.play_state == PlayState.STOPPED
        assert events == []


class TestNavigation:
    """Tests for next, prev and restart."""

    def test_next_moves_exactly_one( self ):
        """Test next moves one segment."""
        async def run():
            pipeline = make_pipeline()
            await pipeline.initialize( SessionContext() )
            await pipeline.next()
            return pipeline

        pipeline = asyncio.run( run() )
        assert pipeline.current_index == 1
        assert pipeline.current_segment_id == "mock-breath"
        assert pipeline.play_state == PlayState.STOPPED

    def test_next_on_last_segment_ends( self ):
        """Test next on the last segment."""
        async def run():
            pipeline = make_pipeline()
            events = record_events( pipeline, SessionEventType.END )
            await pipeline.initialize( SessionContext() )
            for _ in range( 3 ):
                await pipeline.next()
            at_last = pipeline.current_index
            await pipeline.next()
            return pipeline, events, at_last

        pipeline, events, at_last = asyncio.run( run() )
        assert at_last == 3
        assert pipeline.current_index == 3
        assert pipeline.finished is True
        assert pipeline.play_state == PlayState.STOPPED
        assert events == [ SessionEventType.END ]

    def test_next_after_natural_end_is_noop( self ):
        """Test next after the session ended does not emit a second end."""
        async def run():
            pipeline = make_pipeline()
            events = record_events( pipeline, SessionEventType.END )
            ended = asyncio.Event()
            pipeline.events.on( SessionEventType.END, lambda event: ended.set() )
            await pipeline.initialize( SessionContext() )

            await pipeline.play()
            await asyncio.wait_for( ended.wait(), timeout=5.0 )
            await pipeline.next()
            return pipeline, events

        pipeline, events = asyncio.run( run() )
        assert events == [ SessionEventType.END ]
        assert pipeline.current_index == 3
        assert pipeline.play_state == PlayState.STOPPED

    def test_prev_at_first_is_noop( self ):
        """Test prev at the first segment."""
        async def run():
            pipeline = make_pipeline()
            await pipeline.initialize( SessionContext() )
            await pipeline.prev()
            return pipeline

        pipeline = asyncio.run( run() )
        assert pipeline.current_index == 0
        assert pipeline.error is None

    def test_prev_after_next( self ):
        """Test prev after next."""
        async def run():
            pipeline = make_pipeline()
            await pipeline.initialize( SessionContext() )
            await pipeline.next()
            await pipeline.next()
            await pipeline.prev()
            return pipeline

        pipeline = asyncio.run( run() )
        assert pipeline.current_index == 1

    def test_next_while_playing_keeps_playing( self ):
        """Test next during playback."""
        async def run():
            pipeline = make_pipeline( time_scale=1.0 )
            await pipeline.initialize( SessionContext() )
            await pipeline.play()
            await asyncio.sleep( 0.02 )
            await pipeline.next()
            state = ( pipeline.current_index, pipeline.play_state )
            await pipeline.dispose()
            return state

        index, play_state = asyncio.run( run() )
        assert index == 1
        assert play_state == PlayState.PLAYING

    def test_restart_from_index( self ):
        """Test restart from an index."""
        async def run():
            pipeline = make_pipeline()
            await pipeline.initialize( SessionContext() )
            await pipeline.play()
            await asyncio.wait_for( pipeline._playback_task, timeout=5.0 )
            pipeline.audio_output.played.clear()

            await pipeline.restart( 2 )
            await asyncio.wait_for( pipeline._playback_task, timeout=5.0 )
            return pipeline

        pipeline = asyncio.run( run() )
        assert len( pipeline.audio_output.played ) == 2
        assert "-mock-deepening-" in pipeline.audio_output.played[ 0 ]
        assert pipeline.finished is True


class TestDispose:
    """Tests for teardown."""

    def test_dispose_is_idempotent( self ):
        """Test repeated dispose."""
        async def run():
            pipeline = make_pipeline( time_scale=1.0 )
            await pipeline.initialize( SessionContext() )
            buffered = [ pipeline.get_segment( i ).audio for i in range( 3 ) ]
            await pipeline.play()
            await asyncio.sleep( 0.02 )

            await pipeline.dispose()
            await pipeline.dispose()
            return pipeline, buffered

        pipeline, buffered = asyncio.run( run() )
        assert pipeline.is_disposed
        assert pipeline.play_state == PlayState.STOPPED
        assert all( handle.released for handle in buffered )
        assert pipeline.on_segment_start is None
        assert pipeline.on_change is None

    def test_controls_after_dispose( self ):
        """Test controls after dispose."""
        async def run():
            pipeline = make_pipeline()
            await pipeline.initialize( SessionContext() )
            await pipeline.dispose()
            await pipeline.next()
            await pipeline.play()
            return pipeline

        pipeline = asyncio.run( run() )
        assert pipeline.current_index == 0
        assert pipeline.error == "Session is not initialized"
