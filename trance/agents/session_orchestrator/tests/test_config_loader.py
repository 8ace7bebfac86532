#!/usr/bin/env python3
"""
Unit tests for service configuration loading and SessionConfig.from_environment.

Run with: pytest -v trance/agents/session_orchestrator/tests/test_config_loader.py
"""

import pytest

from trance.agents.session_orchestrator.config import SessionConfig
from trance.utils.config_loader import (
    ENV_VAR_NAMES,
    get_service_config,
    load_api_key,
    validate_service_config,
)

CONFIG_FILE = """
[environments]
default = staging

[staging]
script_url = https://staging.example.com/generate-script
tts_url = https://staging.example.com/tts-proxy

[production]
script_url = https://api.example.com/generate-script
"""


@pytest.fixture( autouse=True )
def clean_environment( monkeypatch ):
    """Clear every TRANCE_* override."""
    for var_name in ENV_VAR_NAMES.values():
        monkeypatch.delenv( var_name, raising=False )
    monkeypatch.delenv( "TRANCE_ENV", raising=False )


class TestGetServiceConfig:
    """Tests for precedence: env vars > config file > defaults."""

    def test_defaults_without_file( self, tmp_path ):
        """Test localhost defaults when no config file exists."""
        config = get_service_config( config_path=tmp_path / "missing" )
        assert config[ "script_url" ].startswith( "http://localhost:54321" )
        assert config[ "reviewer_url" ].endswith( "/api/agent/research" )

    def test_file_default_environment( self, tmp_path ):
        """Test the file's default environment supplies endpoints."""
        path = tmp_path / "config"
        path.write_text( CONFIG_FILE )
        config = get_service_config( config_path=path )
        assert config[ "script_url" ] == "https://staging.example.com/generate-script"
        assert config[ "reviewer_url" ].startswith( "http://localhost:54321" )

    def test_explicit_environment( self, tmp_path ):
        """Test an explicit environment section."""
        path = tmp_path / "config"
        path.write_text( CONFIG_FILE )
        config = get_service_config( env="production", config_path=path )
        assert config[ "script_url" ] == "https://api.example.com/generate-script"

    def test_env_var_wins( self, tmp_path, monkeypatch ):
        """Test environment variables override the config file."""
        path = tmp_path / "config"
        path.write_text( CONFIG_FILE )
        monkeypatch.setenv( "TRANCE_SCRIPT_URL", "https://override.example.com/script" )
        config = get_service_config( config_path=path )
        assert config[ "script_url" ] == "https://override.example.com/script"

    def test_unknown_environment( self, tmp_path ):
        """Test an unknown environment name."""
        path = tmp_path / "config"
        path.write_text( CONFIG_FILE )
        with pytest.raises( ValueError, match="not found" ):
            get_service_config( env="qa", config_path=path )

    def test_missing_environments_section( self, tmp_path ):
        """Test a config file without an environments section."""
        path = tmp_path / "config"
        path.write_text( "[staging]\nscript_url = https://x.example.com\n" )
        with pytest.raises( ValueError, match="environments" ):
            get_service_config( config_path=path )


class TestValidation:
    """Tests for URL and key validation."""

    def test_malformed_url( self ):
        """Test URL validation."""
        config = {
            "script_url"   : "ftp://nope",
            "tts_url"      : "https://ok.example.com",
            "reviewer_url" : "https://ok.example.com",
            "api_key_file" : "/tmp/key",
        }
        with pytest.raises( ValueError, match="Invalid URL" ):
            validate_service_config( config )

    def test_load_api_key( self, tmp_path ):
        """Test API key loading strips whitespace."""
        key_file = tmp_path / "key"
        key_file.write_text( "  secret-key\n" )
        assert load_api_key( str( key_file ) ) == "secret-key"

    def test_empty_api_key( self, tmp_path ):
        """Test an empty key file."""
        key_file = tmp_path / "key"
        key_file.write_text( "" )
        with pytest.raises( ValueError, match="empty" ):
            load_api_key( str( key_file ) )


class TestFromEnvironment:
    """Tests for SessionConfig.from_environment."""

    def test_resolves_endpoints_and_key( self, tmp_path, monkeypatch ):
        """Test endpoints and key resolved from the environment."""
        key_file = tmp_path / "key"
        key_file.write_text( "abc123" )
        monkeypatch.setenv( "TRANCE_SCRIPT_URL", "https://scripts.example.com/generate" )
        monkeypatch.setenv( "TRANCE_API_KEY_FILE", str( key_file ) )
        monkeypatch.setenv( "HOME", str( tmp_path ) )

        config = SessionConfig.from_environment( prefetch_depth=1 )

        assert config.script_url == "https://scripts.example.com/generate"
        assert config.api_key == "abc123"
        assert config.prefetch_depth == 1

    def test_missing_key_file_leaves_key_empty( self, tmp_path, monkeypatch ):
        """Test a missing key file leaves api_key unset."""
        monkeypatch.setenv( "TRANCE_API_KEY_FILE", str( tmp_path / "absent" ) )
        monkeypatch.setenv( "HOME", str( tmp_path ) )

        config = SessionConfig.from_environment()

        assert config.api_key is None
        assert config.tts_url.startswith( "http://localhost:54321" )
