#!/usr/bin/env python3
"""
Exceptions for the session orchestrator.

Provider failures are always recovered locally; only SessionInitError is
allowed to escape to the caller of SessionOrchestrator.start().
"""

from typing import Optional


class TranceError( Exception ):
    """Base class for session orchestrator errors."""


class ProviderError( TranceError ):
    """
    A remote provider (script, synthesizer, reviewer) failed or returned garbage.

    Requires:
        - message is a non-empty string

    Ensures:
        - status is the HTTP status when one was received, else None
    """

    def __init__( self, message: str, status: Optional[ int ] = None ):
        super().__init__( message )
        self.status = status

    def __str__( self ) -> str:
        base = super().__str__()
        return f"HTTP {self.status}: {base}" if self.status is not None else base


class SessionInitError( TranceError ):
    """Initialization ended with zero playable segments."""
