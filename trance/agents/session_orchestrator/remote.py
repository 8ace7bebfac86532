#!/usr/bin/env python3
"""
JSON-over-HTTP helper shared by the remote service clients.
"""

import asyncio
import logging
from typing import Optional

import aiohttp

from .errors import ProviderError

logger = logging.getLogger( __name__ )


async def post_json(
    url             : str,
    payload         : dict,
    api_key         : Optional[ str ] = None,
    timeout_seconds : float = 8.0,
) -> dict:
    """
    POST payload as JSON and decode a JSON object reply.

    Requires:
        - url is an absolute http(s) URL

    Ensures:
        - Returns the decoded reply when it is a JSON object

    Raises:
        ProviderError: On transport failure, timeout, non-2xx status or a non-object reply

    Args:
        url: Endpoint URL
        payload: JSON-serializable request body
        api_key: Bearer token, if the service needs one
        timeout_seconds: Total request timeout

    Returns:
        dict: Decoded reply
    """
    headers = { "Content-Type": "application/json" }
    if api_key:
        headers[ "Authorization" ] = f"Bearer {api_key}"

    timeout = aiohttp.ClientTimeout( total=timeout_seconds )

    try:
        async with aiohttp.ClientSession( timeout=timeout ) as session:
            async with session.post( url, headers=headers, json=payload ) as response:
                if response.status >= 400:
                    error_text = await response.text()
                    raise ProviderError( f"Request to {url} failed: {error_text[ :200 ]}", status=response.status )

                try:
                    data = await response.json( content_type=None )
                except ValueError as e:
                    raise ProviderError( f"Invalid JSON from {url}: {e}", status=response.status ) from e

    except ( aiohttp.ClientError, asyncio.TimeoutError ) as e:
        raise ProviderError( f"{url} unreachable: {e!r}" ) from e

    if not isinstance( data, dict ):
        raise ProviderError( f"Expected JSON object from {url}, got {type( data ).__name__}" )

    return data
