"""Exception types raised across the engine's public seams.

Most components report failure through result objects (``ClickAttemptResult``,
``QuizResult``); exceptions are reserved for the handler contract ("run to
completion or raise") and for configuration problems.
"""

from __future__ import annotations


class EngineError(Exception):
    """Base class for engine errors."""


class ConfigError(EngineError):
    """Configuration is missing a required value or is malformed."""


class TabError(EngineError):
    """No usable tab exists in the browsing context."""


class HandlerError(EngineError):
    """A type-specific activity handler could not finish its activity."""

    retryable = True

    def __init__(self, message: str, *, retryable: bool | None = None):
        super().__init__(message)
        if retryable is not None:
            self.retryable = retryable


class QuizFailedError(HandlerError):
    """The quiz state machine gave up (refresh failed, exhausted, no candidates)."""

    retryable = False

    def __init__(self, reason: str):
        super().__init__(f"Quiz failed: {reason}", retryable=False)
        self.reason = reason


class ActivityTimeoutError(EngineError):
    """A handler did not finish before its deadline."""

    retryable = False

    def __init__(self, label: str, timeout_ms: int):
        super().__init__(f"{label} timed out after {timeout_ms}ms")
        self.label = label
        self.timeout_ms = timeout_ms
