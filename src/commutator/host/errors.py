from __future__ import annotations


class CommutatorError(Exception):
    """Base class for commutator host failures."""


class ConfigurationError(CommutatorError, ValueError):
    """Invalid session configuration; the session must not start."""


class TransportError(CommutatorError):
    """The device link failed while a session was running."""
