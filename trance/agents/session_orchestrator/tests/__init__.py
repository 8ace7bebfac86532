#!/usr/bin/env python3
"""
Tests for the Trance Guided Session Orchestrator.

Test structure:
- test_planning.py - Plan state machine, context mapping and schemas
- test_script_sources.py - Script provider client and fallback chain
- test_tts_client.py - Synthesizer client and circuit breaker
- test_playback.py - Segment playback pipeline
- test_plan_reviewer.py - Plan review agent checkpoints
- test_orchestrator.py - Orchestrator facade, events and telemetry
- test_config_loader.py - Service configuration loading

Run tests:
    pytest trance/agents/session_orchestrator/tests/
"""
