"""
Configuration Loader for the remote session services.

Resolves the script provider, narration synthesizer and plan reviewer
endpoints, plus the credential file used to authenticate against them,
from multiple sources with a defined precedence order.
"""

import os
import re
from pathlib import Path
from typing import Dict, Optional
from configparser import ConfigParser

import trance.utils.util as cu

SERVICE_KEYS = ( "script_url", "tts_url", "reviewer_url", "api_key_file" )

ENV_VAR_NAMES = {
    "script_url"   : "TRANCE_SCRIPT_URL",
    "tts_url"      : "TRANCE_TTS_URL",
    "reviewer_url" : "TRANCE_REVIEWER_URL",
    "api_key_file" : "TRANCE_API_KEY_FILE",
}

DEFAULT_BASE_URL = "http://localhost:54321"


def get_default_service_config() -> Dict[str, str]:
    """
    Hardcoded local development defaults.

    Returns:
        dict: Default value for every key in SERVICE_KEYS
    """
    project_root = cu.get_project_root()

    return {
        "script_url"   : f"{DEFAULT_BASE_URL}/functions/v1/generate-script",
        "tts_url"      : f"{DEFAULT_BASE_URL}/functions/v1/tts-proxy",
        "reviewer_url" : f"{DEFAULT_BASE_URL}/api/agent/research",
        "api_key_file" : f"{project_root}/conf/keys/trance-api-key-dev",
    }


def get_service_config( env: Optional[str] = None, config_path: Optional[Path] = None ) -> Dict[str, str]:
    """
    Load remote service configuration with precedence order.

    Requires:
        - env is optional environment name (overrides default)

    Ensures:
        - returns dict with every key in SERVICE_KEYS
        - precedence per key: env vars > config file > hardcoded defaults
        - raises ValueError if the config file is present but invalid

    Precedence Order:
        1. Environment variables (TRANCE_SCRIPT_URL, TRANCE_TTS_URL, ...)
        2. Config file (~/.trance/config) with TRANCE_ENV or 'env' parameter
        3. Hardcoded defaults (localhost)

    Args:
        env: Optional environment name to use (overrides TRANCE_ENV and config default)
        config_path: Optional config file location (defaults to ~/.trance/config)

    Returns:
        dict: {'script_url': str, 'tts_url': str, 'reviewer_url': str, 'api_key_file': str}

    Raises:
        ValueError: If config invalid (unknown environment, malformed URL)
    """
    resolved = get_default_service_config()

    # Priority 2: config file overrides defaults
    if config_path is None:
        config_path = Path.home() / '.trance' / 'config'

    if config_path.exists():
        config = _load_config_file( config_path )

        if env:
            env_name = env
        elif os.getenv( 'TRANCE_ENV' ):
            env_name = os.getenv( 'TRANCE_ENV' )
        else:
            env_name = config.get( 'environments', 'default', fallback='local' )

        if env_name not in config:
            raise ValueError( f"Environment '{env_name}' not found in {config_path}" )

        env_config = config[ env_name ]
        for key in SERVICE_KEYS:
            if key in env_config:
                resolved[ key ] = env_config[ key ]

    # Priority 1: environment variables override everything
    for key, var_name in ENV_VAR_NAMES.items():
        value = os.getenv( var_name )
        if value:
            resolved[ key ] = value

    validate_service_config( resolved )

    return resolved


def _load_config_file( config_path: Path ) -> ConfigParser:
    """
    Load and parse INI config file.

    Requires:
        - config_path is valid Path to config file

    Ensures:
        - returns ConfigParser with loaded config
        - raises ValueError if file malformed or missing [environments]

    Args:
        config_path: Path to INI config file

    Returns:
        ConfigParser: Loaded configuration

    Raises:
        ValueError: If file cannot be read or is malformed
    """
    config = ConfigParser()

    try:
        config.read( config_path )
    except Exception as e:
        raise ValueError( f"Failed to read config file {config_path}: {e}" )

    if 'environments' not in config:
        raise ValueError( f"Config file missing [environments] section: {config_path}" )

    return config


def load_api_key( api_key_file: str ) -> str:
    """
    Load API key from file.

    Requires:
        - api_key_file is path to a readable key file

    Ensures:
        - returns stripped API key string
        - raises ValueError if file missing or empty

    Args:
        api_key_file: Path to API key file

    Returns:
        str: API key (stripped)

    Raises:
        ValueError: If file not found, unreadable, or empty
    """
    key_file = Path( api_key_file )

    if not key_file.exists():
        raise ValueError( f"API key file not found: {key_file}" )

    if not key_file.is_file():
        raise ValueError( f"API key file path is not a file: {key_file}" )

    try:
        with open( key_file, 'r' ) as f:
            api_key = f.read().strip()
    except Exception as e:
        raise ValueError( f"Cannot read API key file {key_file}: {e}" )

    if not api_key:
        raise ValueError( f"API key file is empty: {key_file}" )

    return api_key


def validate_service_config( config: Dict[str, str] ) -> None:
    """
    Validate service configuration.

    Requires:
        - config is dict with every key in SERVICE_KEYS

    Ensures:
        - raises ValueError if any URL is missing or malformed
        - returns None if config valid

    Args:
        config: Configuration dict

    Raises:
        ValueError: If any validation check fails
    """
    for key in ( "script_url", "tts_url", "reviewer_url" ):
        url = config.get( key )
        if not url:
            raise ValueError( f"Missing '{key}' in config" )

        if not re.match( r'^https?://.+', url ):
            raise ValueError( f"Invalid URL format for '{key}': {url}" )

    if not config.get( "api_key_file" ):
        raise ValueError( "Missing 'api_key_file' in config" )
