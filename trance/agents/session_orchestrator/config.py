#!/usr/bin/env python3
"""
Configuration for the guided session orchestrator.

Design decisions:
- Lookahead of two synthesized segments keeps narration ahead of playback
- Remote synthesizer is guarded by a circuit breaker; on-device speech is the fallback
- Reviewer checkpoints resolve to "approve" on failure rather than retrying
"""

from dataclasses import dataclass, field
from typing import Literal, Optional


@dataclass
class VoiceSettings:
    """
    Synthesizer voice configuration.

    Requires:
        - voice_id is a valid synthesizer voice ID

    Ensures:
        - All expressive parameters are within valid ranges (0.0-1.0)
    """

    voice_id   : str   = "pNInz6obpgDQGcFmaJgB"
    model      : Literal[ "flash-v2.5", "v3" ] = "v3"
    stability  : float = 0.7
    similarity : float = 0.8
    style      : float = 0.3

    def __post_init__( self ):
        """Validate parameter ranges."""
        assert 0.0 <= self.stability <= 1.0, "stability must be 0.0-1.0"
        assert 0.0 <= self.similarity <= 1.0, "similarity must be 0.0-1.0"
        assert 0.0 <= self.style <= 1.0, "style must be 0.0-1.0"


@dataclass
class DeviceSpeechSettings:
    """
    On-device speech parameters used when no synthesized audio is available.

    Ensures:
        - rate is a multiplier of the engine's default speaking rate
        - volume is within 0.0-1.0
    """

    rate   : float = 0.7
    pitch  : float = 0.8
    volume : float = 0.9
    words_per_minute : int = 150

    def __post_init__( self ):
        """Validate parameter ranges."""
        assert self.rate > 0.0, "rate must be positive"
        assert 0.0 <= self.volume <= 1.0, "volume must be 0.0-1.0"
        assert self.words_per_minute > 0, "words_per_minute must be positive"


@dataclass
class SessionConfig:
    """
    Configuration for the session orchestrator.

    Requires:
        - All numeric values must be non-negative

    Ensures:
        - Provides sensible defaults for all parameters
        - Endpoints are optional; a missing reviewer endpoint auto-approves checkpoints
    """

    # === Remote Services ===
    script_url               : Optional[ str ] = None
    tts_url                  : Optional[ str ] = None
    reviewer_url             : Optional[ str ] = None
    api_key                  : Optional[ str ] = None
    request_timeout_seconds  : float = 8.0

    # === Narration ===
    voice                    : VoiceSettings        = field( default_factory=VoiceSettings )
    device_speech            : DeviceSpeechSettings = field( default_factory=DeviceSpeechSettings )
    max_text_chars           : int   = 5000
    synthesis_mode           : Literal[ "live", "pre-gen" ] = "pre-gen"

    # === Synthesizer Circuit Breaker ===
    breaker_failure_threshold : int   = 3
    breaker_timeout_seconds   : float = 30.0

    # === Playback ===
    prefetch_depth           : int   = 2
    settle_delay_seconds     : float = 0.5

    # === Plan ===
    default_length_sec       : int   = 600
    request_step_feedback    : bool  = True

    def __post_init__( self ):
        """Validate numeric ranges."""
        assert self.prefetch_depth >= 0, "prefetch_depth must be >= 0"
        assert self.settle_delay_seconds >= 0.0, "settle_delay_seconds must be >= 0"
        assert self.request_timeout_seconds > 0.0, "request_timeout_seconds must be positive"
        assert self.breaker_failure_threshold >= 1, "breaker_failure_threshold must be >= 1"
        assert self.max_text_chars > 0, "max_text_chars must be positive"

    @classmethod
    def from_environment( cls, env: Optional[ str ] = None, **overrides ) -> "SessionConfig":
        """
        Build a config whose endpoints come from the service config loader.

        Requires:
            - env is an optional environment name from ~/.trance/config

        Ensures:
            - Endpoints resolved via env vars > config file > localhost defaults
            - api_key loaded from the resolved key file when it exists
            - Keyword overrides win over resolved values

        Args:
            env: Environment name (defaults to TRANCE_ENV or the file's default)
            **overrides: Any SessionConfig field

        Returns:
            SessionConfig: Fully resolved configuration
        """
        import logging
        from trance.utils.config_loader import get_service_config, load_api_key

        services = get_service_config( env )

        api_key = None
        try:
            api_key = load_api_key( services[ "api_key_file" ] )
        except ValueError as e:
            logging.getLogger( __name__ ).warning( f"No API key loaded: {e}" )

        values = {
            "script_url"   : services[ "script_url" ],
            "tts_url"      : services[ "tts_url" ],
            "reviewer_url" : services[ "reviewer_url" ],
            "api_key"      : api_key,
        }
        values.update( overrides )

        return cls( **values )


def quick_smoke_test():
    """Quick smoke test for SessionConfig."""
    import trance.utils.util as cu

    cu.print_banner( "SessionConfig Smoke Test", prepend_nl=True )

    try:
        print( "Testing default config..." )
        config = SessionConfig()
        assert config.prefetch_depth == 2
        assert config.voice.model == "v3"
        assert config.settle_delay_seconds == 0.5
        print( "✓ Default config created" )

        print( "Testing VoiceSettings validation..." )
        try:
            VoiceSettings( stability=1.5 )
            print( "✗ Should have raised AssertionError" )
        except AssertionError:
            print( "✓ VoiceSettings validates parameters correctly" )

        print( "\n✓ SessionConfig smoke test completed successfully" )

    except Exception as e:
        print( f"\n✗ Smoke test failed: {e}" )
        import traceback
        traceback.print_exc()


if __name__ == "__main__":
    quick_smoke_test()
