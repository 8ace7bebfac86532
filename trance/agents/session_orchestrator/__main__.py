#!/usr/bin/env python3
"""
Entry point for the Trance Guided Session Orchestrator.

Run with: python -m trance.agents.session_orchestrator

Usage:
    # Run a session against the configured services
    python -m trance.agents.session_orchestrator --goal "Deep Focus" --ego-state sage

    # Dry run with mock providers and headless playback
    python -m trance.agents.session_orchestrator --goal "Better Sleep" --dry-run

    # Run all module smoke tests
    python -m trance.agents.session_orchestrator --smoke-test
"""

import argparse
import asyncio
import logging
import sys

# Headless playback speed during dry runs: one second of narration per 50ms
DRY_RUN_TIME_SCALE = 0.05


def run_all_smoke_tests():
    """Run smoke tests for all session orchestrator modules."""
    import trance.utils.util as cu

    cu.print_banner( "Session Orchestrator - Full Smoke Test Suite", prepend_nl=True )

    modules = [
        ( "config", "trance.agents.session_orchestrator.config" ),
        ( "state", "trance.agents.session_orchestrator.state" ),
        ( "planning", "trance.agents.session_orchestrator.planning" ),
        ( "mock_clients", "trance.agents.session_orchestrator.mock_clients" ),
        ( "orchestrator", "trance.agents.session_orchestrator.orchestrator" ),
    ]

    results = []

    for name, module_path in modules:
        try:
            print( f"\n{'='*60}" )
            print( f"Running: {name}" )
            print( '='*60 )

            module = __import__( module_path, fromlist=[ "quick_smoke_test" ] )
            module.quick_smoke_test()
            results.append( ( name, "PASSED", None ) )

        except Exception as e:
            results.append( ( name, "FAILED", str( e ) ) )

    # Summary table
    print( f"\n{'='*60}" )
    print( "SMOKE TEST SUMMARY" )
    print( '='*60 )

    passed = sum( 1 for _, status, _ in results if status == "PASSED" )
    failed = sum( 1 for _, status, _ in results if status == "FAILED" )

    for name, status, error in results:
        status_icon = "✓" if status == "PASSED" else "✗"
        print( f"  {status_icon} {name}: {status}" )
        if error:
            print( f"      Error: {error[:60]}" )

    print( f"\nTotal: {passed} passed, {failed} failed out of {len( results )} modules" )

    return failed == 0


def build_session( args ):
    """Build an orchestrator wired for a real or a dry run."""
    from .config import SessionConfig
    from .orchestrator import SessionOrchestrator

    if not args.dry_run:
        config = SessionConfig.from_environment( args.env )
        return SessionOrchestrator( config=config, debug=args.debug, verbose=args.verbose )

    from .mock_clients import MockScriptProviderClient, MockSynthesizerClient
    from .narration import HeadlessAudioOutput, HeadlessSpeechNarrator

    config = SessionConfig( settle_delay_seconds=0.1 )
    return SessionOrchestrator(
        config          = config,
        script_client   = MockScriptProviderClient( debug=args.debug ),
        synthesizer     = MockSynthesizerClient( debug=args.debug ),
        audio_output    = HeadlessAudioOutput( time_scale=DRY_RUN_TIME_SCALE, debug=args.debug ),
        speech_narrator = HeadlessSpeechNarrator( time_scale=DRY_RUN_TIME_SCALE, debug=args.debug ),
        debug           = args.debug,
        verbose         = args.verbose,
    )


async def run_session( args ):
    """Run one session from start to wrap-up."""
    from .errors import SessionInitError
    from .state import SessionEventType
    import trance.utils.util as cu

    cu.print_banner( "Trance Guided Session", prepend_nl=True )

    session = build_session( args )
    ended   = asyncio.Event()

    session.on( SessionEventType.END, lambda event: ended.set() )
    session.on( SessionEventType.ERROR, lambda event: print( f"  ✗ {event.payload}" ) )
    session.on( SessionEventType.FEEDBACK_REQUIRED, lambda event: print( f"  … checkpoint: {event.payload.title}" ) )

    options = {
        "egoState"  : args.ego_state,
        "goal"      : { "name": args.goal },
        "lengthSec" : args.length,
    }

    try:
        try:
            state = await session.start( options )
        except SessionInitError as e:
            print( f"\nError: {e}" )
            return 1

        plan = state.plan
        print( f"  Intent:   {plan.intent}" )
        print( f"  Summary:  {cu.truncate_string( plan.summary, max_len=100 )}" )
        print( f"  Segments: {state.total_segments}" )

        await session.wait_idle()
        if session.get_current_state().awaiting_plan_confirmation:
            print( "  Plan still awaiting confirmation; confirming as-is" )
            await session.confirm_plan()

        await session.play()
        await ended.wait()
        await session.wait_idle()

        if await session.complete_wrap_up():
            print( "\n✓ Session complete" )
        else:
            print( f"\n✗ Wrap-up refused: {session.get_current_state().error}" )

        for step in session.plan.steps:
            print( f"  [{step.status.value:>17}] {step.title}" )

        return 0

    finally:
        await session.dispose()


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description = "Trance Guided Session Orchestrator - plan, narrate and review a guided session",
        formatter_class = argparse.RawDescriptionHelpFormatter,
        epilog = """
Examples:
  # Focus session with the sage ego state
  python -m trance.agents.session_orchestrator --goal "Deep Focus" --ego-state sage

  # Dry run without any network access
  python -m trance.agents.session_orchestrator --goal "Better Sleep" --dry-run

  # Run all smoke tests
  python -m trance.agents.session_orchestrator --smoke-test
"""
    )

    parser.add_argument(
        "--goal", "-g",
        default = "personal transformation",
        help    = "Goal name for the session (default: personal transformation)"
    )

    parser.add_argument(
        "--ego-state", "-e",
        default = "guardian",
        help    = "Ego state that guides the narration (default: guardian)"
    )

    parser.add_argument(
        "--length", "-l",
        type    = int,
        default = None,
        help    = "Session length in seconds (default: 600)"
    )

    parser.add_argument(
        "--env",
        default = None,
        help    = "Service environment from ~/.trance/config (default: TRANCE_ENV)"
    )

    parser.add_argument(
        "--dry-run",
        action = "store_true",
        help   = "Use mock providers and headless playback"
    )

    parser.add_argument(
        "--smoke-test",
        action = "store_true",
        help   = "Run all module smoke tests"
    )

    parser.add_argument(
        "--debug", "-d",
        action = "store_true",
        help   = "Enable debug output"
    )

    parser.add_argument(
        "--verbose", "-v",
        action = "store_true",
        help   = "Enable verbose output"
    )

    args = parser.parse_args()

    import trance.utils.util as cu

    cu.init( args.debug )
    logging.basicConfig( level=logging.DEBUG if args.debug else logging.WARNING )

    if args.smoke_test:
        success = run_all_smoke_tests()
        sys.exit( 0 if success else 1 )

    exit_code = asyncio.run( run_session( args ) )
    sys.exit( exit_code )


if __name__ == "__main__":
    main()
