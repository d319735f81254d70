"""
Failure classification applied wherever an error originates.

    startup load failure      -> FATAL          (session blocked until reload)
    switch, engine fallback   -> SOFT_FALLBACK  (silently revert to default)
    switch, anything else     -> HARD           (blocking error + revert action)

Per-image failures stay inside the processing queue, which only marks the
failing job FAILED.
"""

from __future__ import annotations

from enum import Enum
import logging
from typing import Optional

from . import config
from .errors import EngineFallbackError, SoftFallbackError

logger = logging.getLogger(__name__)

# Message fragment older engines used instead of raising EngineFallbackError.
LEGACY_FALLBACK_HINT = "Falling back"


class Outcome(str, Enum):
    FATAL = "fatal"
    SOFT_FALLBACK = "soft_fallback"
    HARD = "hard"


class ErrorRecoveryPolicy:
    def __init__(self, legacy_fallback_matching: Optional[bool] = None):
        if legacy_fallback_matching is None:
            legacy_fallback_matching = config.get_settings().legacy_fallback_matching
        self.legacy_fallback_matching = legacy_fallback_matching

    def is_soft_fallback(self, exc: Optional[BaseException]) -> bool:
        if isinstance(exc, (EngineFallbackError, SoftFallbackError)):
            return True
        if self.legacy_fallback_matching and exc is not None:
            return LEGACY_FALLBACK_HINT in str(exc)
        return False

    def classify_startup(self, exc: Optional[BaseException]) -> Outcome:
        return Outcome.FATAL

    def classify_switch(self, exc: Optional[BaseException]) -> Outcome:
        outcome = Outcome.SOFT_FALLBACK if self.is_soft_fallback(exc) else Outcome.HARD
        logger.debug("switch failure classified as %s: %s", outcome.value, exc)
        return outcome
