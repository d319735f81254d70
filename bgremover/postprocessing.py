"""Alpha matte cleanup and RGBA cutout encoding."""

from __future__ import annotations

from dataclasses import dataclass
from io import BytesIO
import logging
from typing import Optional

import cv2
import numpy as np
from PIL import Image

from . import config

logger = logging.getLogger(__name__)


@dataclass
class MatteOptions:
    edge_band_low: float = 0.08
    edge_band_high: float = 0.92
    edge_smooth_blend: float = 0.55
    bilateral_sigma_color: float = 28.0
    alpha_high_clip: float = 0.995
    cc_keep_threshold: float = 0.05

    @classmethod
    def from_settings(cls, settings: Optional[config.Settings] = None) -> "MatteOptions":
        settings = settings or config.get_settings()
        return cls(
            edge_band_low=settings.edge_band_low,
            edge_band_high=settings.edge_band_high,
            edge_smooth_blend=settings.edge_smooth_blend,
            bilateral_sigma_color=settings.bilateral_sigma_color,
            alpha_high_clip=settings.alpha_high_clip,
            cc_keep_threshold=settings.cc_keep_threshold,
        )


def normalize_matte(raw: np.ndarray, minmax: bool) -> np.ndarray:
    """Bring a raw model output into [0, 1]."""
    matte = raw.astype(np.float32)
    if minmax:
        lo, hi = float(matte.min()), float(matte.max())
        if hi - lo > 1e-6:
            matte = (matte - lo) / (hi - lo)
        else:
            matte = np.zeros_like(matte)
    return np.clip(matte, 0.0, 1.0)


def keep_largest_component(alpha: np.ndarray, threshold: float) -> np.ndarray:
    """Zero out speckles that are not connected to the main subject."""
    mask = (alpha > threshold).astype(np.uint8)
    num_labels, labels, stats, _ = cv2.connectedComponentsWithStats(mask, connectivity=8)
    if num_labels <= 2:
        return alpha
    largest_label = 1 + np.argmax(stats[1:, cv2.CC_STAT_AREA])
    logger.debug("matte: dropping %d stray components", num_labels - 2)
    return np.where(labels == largest_label, alpha, 0.0)


def smooth_edge_band(alpha: np.ndarray, options: MatteOptions) -> np.ndarray:
    """Median + bilateral smoothing limited to the uncertain edge band."""
    band = (alpha > options.edge_band_low) & (alpha < options.edge_band_high)
    if not np.any(band):
        return alpha

    alpha_u8 = np.clip(alpha * 255.0, 0, 255).astype(np.uint8)
    median = cv2.medianBlur(alpha_u8, 3)
    bilateral = cv2.bilateralFilter(
        median, d=3, sigmaColor=options.bilateral_sigma_color, sigmaSpace=2
    )
    smooth = bilateral.astype(np.float32) / 255.0

    blend = float(np.clip(options.edge_smooth_blend, 0.0, 1.0))
    out = alpha.copy()
    out[band] = alpha[band] * (1.0 - blend) + smooth[band] * blend
    return out


def refine_alpha(alpha_raw: np.ndarray, options: Optional[MatteOptions] = None) -> np.ndarray:
    options = options or MatteOptions()
    alpha = np.clip(alpha_raw.astype(np.float32), 0.0, 1.0)
    alpha = np.where(alpha < 0.03, 0.0, alpha)
    alpha = np.where(alpha > options.alpha_high_clip, 1.0, alpha)
    alpha = keep_largest_component(alpha, options.cc_keep_threshold)
    return smooth_edge_band(alpha, options)


def compose_rgba_png(rgb_image: Image.Image, alpha: np.ndarray) -> bytes:
    rgb_np = np.array(rgb_image.convert("RGB")).astype(np.uint8)
    if alpha.shape[:2] != rgb_np.shape[:2]:
        raise ValueError(
            f"Matte size {alpha.shape[1]}x{alpha.shape[0]} does not match image "
            f"{rgb_np.shape[1]}x{rgb_np.shape[0]}"
        )
    alpha_u8 = np.clip(alpha * 255.0, 0, 255).astype(np.uint8)
    out = Image.fromarray(np.dstack((rgb_np, alpha_u8)))
    buf = BytesIO()
    out.save(buf, format="PNG")
    return buf.getvalue()
