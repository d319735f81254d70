"""
Pytest configuration and fixtures.
"""
import asyncio
from typing import Dict, List, Optional, Sequence, Union

import pytest

from bgremover.catalog import DEFAULT_MODEL_ID
from bgremover.config import Settings
from bgremover.device import DeviceProfile
from bgremover.engine import InferenceEngine, ModelInfo
from bgremover.lifecycle import ModelLifecycleManager
from bgremover.policy import ErrorRecoveryPolicy

SAFARI_IPHONE_UA = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1"
)
CHROME_IPHONE_UA = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) CriOS/118.0.5993.69 Mobile/15E148 Safari/604.1"
)
DESKTOP_CHROME_UA = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/118.0.0.0 Safari/537.36"
)


class FakeEngine(InferenceEngine):
    """
    Scripted engine: records every call, fails on demand and can be held
    mid-call with asyncio events.
    """

    def __init__(self, accelerated: bool = False, ios: bool = False):
        self.accelerated = accelerated
        self.ios = ios
        self.calls: List[tuple] = []
        self.init_results: Dict[str, Union[bool, BaseException]] = {}
        self.fail_payloads = set()
        self.loaded: Optional[str] = None
        self.init_gate: Optional[asyncio.Event] = None
        self.process_gate: Optional[asyncio.Event] = None
        self.process_started: Optional[asyncio.Event] = None
        self.active_calls = 0
        self.max_active_calls = 0

    def _enter(self):
        self.active_calls += 1
        self.max_active_calls = max(self.max_active_calls, self.active_calls)

    def _exit(self):
        self.active_calls -= 1

    async def initialize_model(self, model_id: Optional[str] = None) -> bool:
        self._enter()
        try:
            self.calls.append(("init", model_id))
            if self.init_gate is not None:
                await self.init_gate.wait()
            await asyncio.sleep(0)
            result = self.init_results.get(model_id, True)
            if isinstance(result, BaseException):
                raise result
            if result:
                self.loaded = model_id
            return result
        finally:
            self._exit()

    async def process_images(self, files: Sequence[bytes]) -> List[bytes]:
        self._enter()
        try:
            self.calls.append(("process", list(files), self.loaded))
            if self.process_started is not None:
                self.process_started.set()
            if self.process_gate is not None:
                await self.process_gate.wait()
            await asyncio.sleep(0)
            outputs = []
            for payload in files:
                if payload in self.fail_payloads:
                    raise RuntimeError(f"inference failed for {payload!r}")
                outputs.append(b"cutout:" + payload + b"@" + self.loaded.encode())
            return outputs
        finally:
            self._exit()

    def get_model_info(self) -> ModelInfo:
        return ModelInfo(is_webgpu_supported=self.accelerated, is_ios=self.ios)

    def process_calls(self):
        return [call for call in self.calls if call[0] == "process"]


@pytest.fixture
def engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def engine_factory():
    return FakeEngine


@pytest.fixture
def user_agents() -> dict:
    return {
        "safari_iphone": SAFARI_IPHONE_UA,
        "chrome_iphone": CHROME_IPHONE_UA,
        "desktop_chrome": DESKTOP_CHROME_UA,
    }


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        models_dir=tmp_path,
        force_cpu=True,
        client_user_agent=None,
        legacy_fallback_matching=False,
    )


def make_profile(webgpu: bool = False, ios: bool = False, redirect: bool = False) -> DeviceProfile:
    return DeviceProfile(webgpu_supported=webgpu, is_ios=ios, should_redirect=redirect)


def make_lifecycle(engine: InferenceEngine, profile: DeviceProfile, legacy: bool = False):
    return ModelLifecycleManager(
        engine,
        profile,
        policy=ErrorRecoveryPolicy(legacy_fallback_matching=legacy),
        compatible_model_id=DEFAULT_MODEL_ID,
    )


@pytest.fixture
def profile_factory():
    return make_profile


@pytest.fixture
def lifecycle_factory():
    return make_lifecycle
