from __future__ import annotations


class BotError(Exception):
    """Base class for every error the bot raises on purpose."""


class ConfigError(BotError, ValueError):
    """Fatal misconfiguration. The process must not start."""


class DataSourceError(BotError):
    """Candidate fetch failed or returned a malformed payload."""


class TransportError(BotError):
    """Chat API call failed (network, HTTP status or ok=false)."""


class InvalidCommandState(BotError):
    """Operator action not allowed right now. Reported, nothing mutated."""
