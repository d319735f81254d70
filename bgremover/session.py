"""
One background-removal session: detect -> initialize -> accept jobs.

The session owns the single blocking error the presentation layer shows
(startup failure or a hard model-switch failure) and the explicit recovery
action that goes with it.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
from typing import Callable, List, Optional, Sequence

import requests

from . import config
from .device import DeviceProfile, detect
from .engine import InferenceEngine
from .errors import HardSwitchError, InitializationError, SessionBlockedError
from .jobs import ImageJob
from .lifecycle import ModelLifecycleManager, ModelStatus
from .policy import ErrorRecoveryPolicy, Outcome
from .processing_queue import FileInput, ImageProcessingQueue

logger = logging.getLogger(__name__)

RECOVERY_REVERT = "revert"


@dataclass(frozen=True)
class SessionError:
    kind: str  # "initialization" | "switch"
    message: str
    outcome: Outcome
    recovery: Optional[str] = None

    @property
    def blocking(self) -> bool:
        return self.outcome in (Outcome.FATAL, Outcome.HARD)

    def as_dict(self) -> dict:
        return {
            "kind": self.kind,
            "message": self.message,
            "outcome": self.outcome.value,
            "recovery": self.recovery,
        }


class BackgroundRemovalSession:
    def __init__(
        self,
        engine: InferenceEngine,
        settings: Optional[config.Settings] = None,
        detector: Optional[Callable[[], DeviceProfile]] = None,
    ):
        self.engine = engine
        self.settings = settings or config.get_settings()
        self._detector = detector or (lambda: detect(user_agent=self.settings.client_user_agent))
        self.policy = ErrorRecoveryPolicy(self.settings.legacy_fallback_matching)
        self.profile: Optional[DeviceProfile] = None
        self.lifecycle: Optional[ModelLifecycleManager] = None
        self.queue: Optional[ImageProcessingQueue] = None
        self.error: Optional[SessionError] = None

    @property
    def redirect_url(self) -> Optional[str]:
        if self.profile is not None and self.profile.should_redirect:
            return self.settings.redirect_url
        return None

    async def start(self) -> bool:
        """
        Detect the device once, then load the startup model.

        Returns False when the session was redirected or the model could not
        be loaded; `error` then carries the fatal error for display.
        """
        if self.profile is not None:
            raise RuntimeError("Session already started")

        self.profile = self._detector()
        if self.profile.should_redirect:
            logger.info("Redirecting session to %s", self.settings.redirect_url)
            return False

        self.lifecycle = ModelLifecycleManager(
            self.engine,
            self.profile,
            policy=self.policy,
            compatible_model_id=self.settings.default_model_id,
        )
        self.queue = ImageProcessingQueue(self.engine, self.lifecycle)
        self.queue.start()

        if not await self.lifecycle.initialize():
            self._set_initialization_error()
            return False
        return True

    def _set_initialization_error(self) -> None:
        reason = self.lifecycle.last_error or InitializationError(
            "Failed to initialize background removal model"
        )
        outcome = self.policy.classify_startup(reason)
        self.error = SessionError(kind="initialization", message=str(reason), outcome=outcome)
        logger.error("Session initialization failed (%s): %s", outcome.value, reason)

    def _require_active(self) -> ModelLifecycleManager:
        if self.redirect_url is not None:
            raise SessionBlockedError(f"Session redirected to {self.redirect_url}")
        if self.lifecycle is None:
            raise SessionBlockedError("Session has not been started")
        return self.lifecycle

    async def switch_model(self, model_id: str) -> bool:
        """
        Switch the active model.

        A rejected request (unknown id, model not READY) raises and leaves any
        current error in place. A hard failure becomes the session error; the
        revert action is offered while a non-default model is still active.
        """
        lifecycle = self._require_active()
        try:
            switched = await lifecycle.switch_model(model_id)
        except HardSwitchError as exc:
            outcome = self.policy.classify_switch(exc)
            if outcome is Outcome.SOFT_FALLBACK:
                logger.warning("Model switch to %s fell back: %s", model_id, exc)
                self.error = None
                return False
            recovery = None
            if lifecycle.active_model_id != lifecycle.compatible_model_id:
                recovery = RECOVERY_REVERT
            self.error = SessionError(
                kind="switch", message=str(exc), outcome=outcome, recovery=recovery
            )
            logger.error("Model switch to %s failed: %s", model_id, exc)
            return False
        self.error = None
        return switched

    async def recover(self) -> bool:
        """Revert to the broadly compatible model and clear the blocking error."""
        lifecycle = self._require_active()
        target = lifecycle.compatible_model_id
        if lifecycle.status is ModelStatus.FAILED or lifecycle.status is ModelStatus.UNINITIALIZED:
            if not await lifecycle.initialize(target):
                self._set_initialization_error()
                return False
            self.error = None
            return True
        await self.switch_model(target)
        return self.error is None

    def submit(self, files: Sequence[FileInput]) -> List[ImageJob]:
        self._require_active()
        if self.error is not None and self.error.blocking:
            raise SessionBlockedError(self.error.message)
        return self.queue.submit(files)

    def delete_job(self, job_id: int) -> None:
        if self.queue is not None:
            self.queue.delete(job_id)

    def jobs(self) -> List[ImageJob]:
        return self.queue.jobs() if self.queue is not None else []

    def get_job(self, job_id: int) -> Optional[ImageJob]:
        return self.queue.get(job_id) if self.queue is not None else None

    def _fetch_sample(self, url: str) -> bytes:
        resp = requests.get(url, timeout=(5, self.settings.request_timeout_seconds))
        resp.raise_for_status()
        return resp.content

    async def load_sample(self, index: int) -> Optional[ImageJob]:
        """Fetch one of the demo images and submit it like an upload."""
        urls = self.settings.sample_image_urls
        if not 0 <= index < len(urls):
            raise IndexError(f"No sample image #{index}")
        try:
            payload = await asyncio.to_thread(self._fetch_sample, urls[index])
        except Exception as exc:  # noqa: BLE001
            logger.error("Error loading sample image %s: %s", urls[index], exc)
            return None
        jobs = self.submit([("sample-image.jpg", payload)])
        return jobs[0]

    def notice(self) -> Optional[str]:
        if self.profile is None or self.profile.should_redirect:
            return None
        if self.profile.is_ios:
            return "Using optimized iOS background removal"
        if not self.profile.webgpu_supported:
            return "WebGPU is not supported in your browser. Using cross-browser compatible model."
        return None

    def snapshot(self) -> dict:
        lifecycle = self.lifecycle
        return {
            "status": lifecycle.status.value if lifecycle else ModelStatus.UNINITIALIZED.value,
            "activeModelId": lifecycle.active_model_id if lifecycle else None,
            "selectableModels": [
                {"id": spec.model_id, "label": spec.label}
                for spec in (lifecycle.selectable_models() if lifecycle else [])
            ],
            "deviceInfo": lifecycle.get_info().as_dict() if lifecycle else None,
            "notice": self.notice(),
            "error": self.error.as_dict() if self.error else None,
            "redirectUrl": self.redirect_url,
        }

    async def close(self) -> None:
        if self.queue is not None:
            await self.queue.stop()
