"""Exception hierarchy shared by the lifecycle manager, queue and session."""

from __future__ import annotations

from typing import Optional


class BgRemoverError(Exception):
    """Base class for all errors raised by this package."""


class InitializationError(BgRemoverError):
    """The startup model load failed; nothing can be processed this session."""


class SwitchError(BgRemoverError):
    def __init__(self, message: str, model_id: Optional[str] = None):
        super().__init__(message)
        self.model_id = model_id


class SoftFallbackError(SwitchError):
    """The engine declined the model and asked for the default one instead."""


class HardSwitchError(SwitchError):
    """A model switch failed in a way the user has to be told about."""


class PerJobError(BgRemoverError):
    def __init__(self, job_id: int, message: str):
        super().__init__(message)
        self.job_id = job_id


class EngineFallbackError(BgRemoverError):
    """
    Structured signal from an inference engine that the requested model
    cannot run here and the caller should fall back to the default model.
    """

    def __init__(self, message: str, fallback_model_id: Optional[str] = None):
        super().__init__(message)
        self.fallback_model_id = fallback_model_id


class ModelStateError(BgRemoverError):
    """An operation was requested from a model status that does not allow it."""


class SessionBlockedError(BgRemoverError):
    """The session shows a blocking error (or was redirected) and refuses work."""
