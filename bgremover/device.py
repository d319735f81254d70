"""
Device capability detection.

The profile is computed once per session from the client user agent and the
accelerators torch can see, and decides which models may be offered.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
import re
from typing import Callable, Optional

import torch

from . import config

logger = logging.getLogger(__name__)

_IOS_RE = re.compile(r"iPad|iPhone|iPod", re.IGNORECASE)
_WEBKIT_RE = re.compile(r"WebKit", re.IGNORECASE)
# Chrome, Opera and Firefox on iOS ship their own shells around WebKit.
_ALT_IOS_BROWSER_RE = re.compile(r"CriOS|OPiOS|FxiOS", re.IGNORECASE)
_TOUCH_RE = re.compile(r"Mobile", re.IGNORECASE)


@dataclass(frozen=True)
class DeviceProfile:
    webgpu_supported: bool
    is_ios: bool
    should_redirect: bool


def is_ios_device(user_agent: Optional[str]) -> bool:
    return bool(user_agent and _IOS_RE.search(user_agent))


def is_mobile_safari(user_agent: Optional[str]) -> bool:
    """True for Safari proper on an iPhone/iPad, which cannot host the engine."""
    if not is_ios_device(user_agent):
        return False
    if not _WEBKIT_RE.search(user_agent) or _ALT_IOS_BROWSER_RE.search(user_agent):
        return False
    return bool(_TOUCH_RE.search(user_agent))


def accelerator_available(force_cpu: bool = False) -> bool:
    """Probe CUDA first, then Apple MPS."""
    if force_cpu:
        return False
    if torch.cuda.is_available():
        return True
    mps = getattr(torch.backends, "mps", None)
    return bool(mps is not None and mps.is_available())


def select_torch_device(allow_accelerator: bool = True) -> torch.device:
    """Prefer CUDA -> Apple MPS -> CPU."""
    if allow_accelerator and torch.cuda.is_available():
        return torch.device("cuda")
    mps = getattr(torch.backends, "mps", None)
    if allow_accelerator and mps is not None and mps.is_available():
        return torch.device("mps")
    return torch.device("cpu")


def detect(
    user_agent: Optional[str] = None,
    accelerator_probe: Optional[Callable[[], bool]] = None,
) -> DeviceProfile:
    """
    Classify the runtime environment.

    A mobile Safari client short-circuits everything else: the profile only
    tells the caller to redirect. Otherwise iOS and accelerator support are
    reported independently.
    """
    if is_mobile_safari(user_agent):
        logger.info("Mobile Safari detected, session will be redirected")
        return DeviceProfile(webgpu_supported=False, is_ios=False, should_redirect=True)

    if accelerator_probe is None:
        settings = config.get_settings()
        webgpu = accelerator_available(force_cpu=settings.force_cpu)
    else:
        webgpu = bool(accelerator_probe())
    profile = DeviceProfile(
        webgpu_supported=webgpu,
        is_ios=is_ios_device(user_agent),
        should_redirect=False,
    )
    logger.info(
        "Device profile: accelerated=%s ios=%s", profile.webgpu_supported, profile.is_ios
    )
    return profile
