"""
Model lifecycle: which model is active and whether jobs may run against it.

    UNINITIALIZED --initialize--> INITIALIZING --ok--> READY
                                               --error--> FAILED
    READY --switch--> SWITCHING --ok--> READY(new)
                                --soft fallback--> READY(default)
                                --hard failure--> READY(previous)
                                --default unavailable--> FAILED
    FAILED --initialize--> INITIALIZING

One `asyncio.Lock` covers every engine call, so a model load and an image
inference are never outstanding at the same time.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
import logging
from typing import List, Optional

from . import config
from .catalog import IOS_MODEL_ID, MODELS, ModelSpec, ModelTier, eligible_models
from .device import DeviceProfile
from .engine import InferenceEngine
from .errors import HardSwitchError, InitializationError, ModelStateError, SoftFallbackError
from .policy import ErrorRecoveryPolicy, Outcome

logger = logging.getLogger(__name__)


class ModelStatus(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    SWITCHING = "switching"
    FAILED = "failed"


_TRANSITIONS = {
    ModelStatus.UNINITIALIZED: {ModelStatus.INITIALIZING},
    ModelStatus.INITIALIZING: {ModelStatus.READY, ModelStatus.FAILED},
    ModelStatus.READY: {ModelStatus.SWITCHING},
    ModelStatus.SWITCHING: {ModelStatus.READY, ModelStatus.FAILED},
    ModelStatus.FAILED: {ModelStatus.INITIALIZING},
}


@dataclass(frozen=True)
class ModelState:
    active_model_id: Optional[str]
    status: ModelStatus


@dataclass(frozen=True)
class DeviceInfo:
    webgpu_supported: bool
    is_ios: bool

    def as_dict(self) -> dict:
        return {"webGPUSupported": self.webgpu_supported, "isIOS": self.is_ios}


class ModelLifecycleManager:
    def __init__(
        self,
        engine: InferenceEngine,
        profile: DeviceProfile,
        policy: Optional[ErrorRecoveryPolicy] = None,
        compatible_model_id: Optional[str] = None,
    ):
        self.engine = engine
        self.profile = profile
        self.policy = policy or ErrorRecoveryPolicy()
        self.compatible_model_id = compatible_model_id or config.get_settings().default_model_id
        self.engine_lock = asyncio.Lock()
        self.last_error: Optional[BaseException] = None
        self._status = ModelStatus.UNINITIALIZED
        self._active_model_id: Optional[str] = None
        self._ready = asyncio.Event()

    @property
    def status(self) -> ModelStatus:
        return self._status

    @property
    def active_model_id(self) -> Optional[str]:
        return self._active_model_id

    @property
    def state(self) -> ModelState:
        return ModelState(active_model_id=self._active_model_id, status=self._status)

    def get_info(self) -> DeviceInfo:
        return DeviceInfo(webgpu_supported=self.profile.webgpu_supported, is_ios=self.profile.is_ios)

    def startup_model_id(self) -> str:
        return IOS_MODEL_ID if self.profile.is_ios else self.compatible_model_id

    def is_eligible(self, model_id: str) -> bool:
        eligible = eligible_models(self.profile.webgpu_supported, self.profile.is_ios)
        return any(spec.model_id == model_id for spec in eligible)

    def selectable_models(self) -> List[ModelSpec]:
        """Options to offer the user; iOS devices get the fixed iOS path only."""
        eligible = eligible_models(self.profile.webgpu_supported, self.profile.is_ios)
        if self.profile.is_ios:
            return [spec for spec in eligible if spec.tier is ModelTier.IOS]
        return [spec for spec in eligible if spec.tier is not ModelTier.IOS]

    async def wait_ready(self) -> None:
        await self._ready.wait()

    def _transition(self, new_status: ModelStatus) -> None:
        if new_status not in _TRANSITIONS[self._status]:
            raise ModelStateError(
                f"Illegal model transition {self._status.value} -> {new_status.value}"
            )
        logger.debug("model status %s -> %s", self._status.value, new_status.value)
        self._status = new_status
        if new_status is ModelStatus.READY:
            self._ready.set()
        else:
            self._ready.clear()

    async def _load(self, model_id: str) -> bool:
        """Engine load that never raises; the reason ends up in `last_error`."""
        try:
            ok = await self.engine.initialize_model(model_id)
        except Exception as exc:  # noqa: BLE001
            logger.error("Engine failed to initialize %s: %s", model_id, exc)
            self.last_error = exc
            return False
        if not ok:
            self.last_error = InitializationError(f"Failed to initialize {model_id}")
        return bool(ok)

    async def initialize(self, model_id: Optional[str] = None) -> bool:
        """
        Load the startup model (or `model_id`) and return whether it is ready.

        Concurrent calls are serialized; a call that finds the requested model
        already READY succeeds without touching the engine.
        """
        target = model_id or self.startup_model_id()
        if target not in MODELS:
            raise ValueError(f"Unknown model id: {target}")

        async with self.engine_lock:
            if self._status is ModelStatus.READY:
                if target == self._active_model_id:
                    return True
                raise ModelStateError("A model is already active; use switch_model")

            self._transition(ModelStatus.INITIALIZING)
            self.last_error = None
            if not self.is_eligible(target):
                self.last_error = InitializationError(f"{target} is not supported on this device")
                ok = False
            else:
                ok = await self._load(target)

            if ok:
                self._active_model_id = target
                self._transition(ModelStatus.READY)
                logger.info("Model %s initialized", target)
            else:
                self._transition(ModelStatus.FAILED)
                logger.error("Model %s failed to initialize: %s", target, self.last_error)
            return ok

    async def switch_model(self, new_model_id: str) -> bool:
        """
        Replace the active model.

        Returns True when `new_model_id` is active afterwards and False when
        the request was silently reverted to the compatible default. Raises
        HardSwitchError for any other failure; the previous model then stays
        active.
        """
        if new_model_id not in MODELS:
            raise ValueError(f"Unknown model id: {new_model_id}")
        if self._status is not ModelStatus.READY:
            raise ModelStateError(f"Cannot switch models while {self._status.value}")
        if new_model_id == self._active_model_id:
            return True

        previous = self._active_model_id
        # Mark SWITCHING before waiting for the lock so no new job starts.
        self._transition(ModelStatus.SWITCHING)
        async with self.engine_lock:
            self.last_error = None
            if not self.is_eligible(new_model_id):
                self.last_error = SoftFallbackError(
                    f"{new_model_id} is not supported on this device. "
                    f"Falling back to {self.compatible_model_id}",
                    model_id=new_model_id,
                )
            elif await self._load(new_model_id):
                self._active_model_id = new_model_id
                self._transition(ModelStatus.READY)
                logger.info("Switched model %s -> %s", previous, new_model_id)
                return True

            failure = self.last_error
            if self.policy.classify_switch(failure) is Outcome.SOFT_FALLBACK:
                return await self._fall_back_to_compatible(new_model_id, failure)

            self._transition(ModelStatus.READY)
            logger.error("Switch to %s failed, keeping %s: %s", new_model_id, previous, failure)
            raise HardSwitchError(
                str(failure) or "Failed to switch models", model_id=new_model_id
            ) from failure

    async def _fall_back_to_compatible(self, requested: str, failure: BaseException) -> bool:
        """Runs with the engine lock held and status SWITCHING."""
        target = self.compatible_model_id
        if self._active_model_id != target and not await self._load(target):
            self._transition(ModelStatus.FAILED)
            raise HardSwitchError(
                f"Failed to fall back to {target}", model_id=target
            ) from self.last_error
        self._active_model_id = target
        self._transition(ModelStatus.READY)
        logger.info("Switch to %s fell back to %s: %s", requested, target, failure)
        return False
