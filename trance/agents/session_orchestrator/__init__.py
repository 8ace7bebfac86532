#!/usr/bin/env python3
"""
Trance Guided Session Orchestrator.

Runs one guided relaxation session end to end: builds a reviewable plan,
resolves a narration script through a fallback chain, synthesizes segment
audio ahead of playback and narrates segment by segment, with reviewer
checkpoints for plan confirmation and per-segment feedback.

Key Features:
- Four-step plan (gather context, generate script, play segments, wrap up)
  materialized into one step per script segment
- Script fallback chain: remote provider, canned script, emergency script
- Two-segment synthesis lookahead behind a circuit breaker, with on-device
  speech when no audio is available
- Reviewer agent that confirms plans and answers feedback checkpoints, and
  approves on its own failure
- Typed lifecycle events and consolidated state snapshots

Architecture:
- SessionOrchestrator: Facade and single plan writer
- SegmentPlaybackPipeline: Prefetch and playback state machine
- PlanReviewAgent: Checkpoint resolver
- ExecutionMonitor: Telemetry forwarder
- SessionConfig: Configuration dataclass for all settings

Usage:
    from trance.agents.session_orchestrator import SessionOrchestrator, SessionConfig

    session = SessionOrchestrator( config=SessionConfig.from_environment() )
    state   = await session.start( { "egoState": "sage", "goal": { "name": "Deep Focus" } } )

    await session.wait_idle()
    await session.play()
"""

__version__ = "0.1.0"

from .config import SessionConfig, VoiceSettings, DeviceSpeechSettings
from .errors import TranceError, ProviderError, SessionInitError
from .state import (
    PlanStepType,
    PlanStepStatus,
    PlayState,
    NarrationProvider,
    SessionEventType,
    PlanStep,
    SessionPlan,
    StepFeedback,
    ScriptSegment,
    SessionScript,
    StartSessionOptions,
    SessionContext,
    SessionState,
    SessionEvent,
)

from .orchestrator import SessionOrchestrator
from .playback import SegmentPlaybackPipeline
from .plan_reviewer import PlanReviewAgent
from .monitor import ExecutionMonitor
from .tts_client import NarrationSynthesizerClient, NarrationCircuitBreaker, NarrationResult
from .script_client import ScriptProviderClient
from .narration import HeadlessAudioOutput, HeadlessSpeechNarrator, create_speech_narrator

__all__ = [
    # Version
    "__version__",
    # Config
    "SessionConfig",
    "VoiceSettings",
    "DeviceSpeechSettings",
    # Errors
    "TranceError",
    "ProviderError",
    "SessionInitError",
    # State
    "PlanStepType",
    "PlanStepStatus",
    "PlayState",
    "NarrationProvider",
    "SessionEventType",
    "PlanStep",
    "SessionPlan",
    "StepFeedback",
    "ScriptSegment",
    "SessionScript",
    "StartSessionOptions",
    "SessionContext",
    "SessionState",
    "SessionEvent",
    # Orchestration
    "SessionOrchestrator",
    "SegmentPlaybackPipeline",
    "PlanReviewAgent",
    "ExecutionMonitor",
    # Clients
    "NarrationSynthesizerClient",
    "NarrationCircuitBreaker",
    "NarrationResult",
    "ScriptProviderClient",
    # Narration
    "HeadlessAudioOutput",
    "HeadlessSpeechNarrator",
    "create_speech_narrator",
]
