"""
Image decoding and tensor preparation for the catalog models.

RMBG expects a fixed square input, MODNet a long-edge resize with sides
divisible by 32; both are normalized per channel with the catalog mean/std.
"""

from __future__ import annotations

from dataclasses import dataclass
from io import BytesIO
import math
from typing import Tuple

import numpy as np
from PIL import Image
import torch

from .catalog import ModelSpec


@dataclass
class PreprocessResult:
    tensor: torch.Tensor
    original_image: Image.Image
    orig_size: Tuple[int, int]  # (width, height)
    resized_size: Tuple[int, int]


def compute_resize_dims(width: int, height: int, spec: ModelSpec) -> Tuple[int, int]:
    if spec.resize_mode == "square":
        return spec.input_size, spec.input_size

    long_edge = max(width, height)
    scale = spec.input_size / long_edge if long_edge > spec.input_size else 1.0
    new_w = max(32, math.ceil(int(width * scale) / 32) * 32)
    new_h = max(32, math.ceil(int(height * scale) / 32) * 32)
    return new_w, new_h


def decode_image(image_bytes: bytes) -> Image.Image:
    try:
        return Image.open(BytesIO(image_bytes)).convert("RGB")
    except Exception as exc:  # noqa: BLE001
        raise ValueError("Invalid image data") from exc


def load_and_preprocess_image_from_bytes(
    image_bytes: bytes, spec: ModelSpec, device: torch.device
) -> PreprocessResult:
    """Decode an image and turn it into a normalized NCHW tensor for `spec`."""
    image = decode_image(image_bytes)
    orig_w, orig_h = image.size
    new_w, new_h = compute_resize_dims(orig_w, orig_h, spec)

    if (new_w, new_h) != (orig_w, orig_h):
        image_resized = image.resize((new_w, new_h), Image.BILINEAR)
    else:
        image_resized = image

    im_np = np.asarray(image_resized).astype("float32") / 255.0
    mean = np.asarray(spec.mean, dtype="float32")
    std = np.asarray(spec.std, dtype="float32")
    im_np = (im_np - mean) / std
    im_np = np.transpose(im_np, (2, 0, 1))  # HWC -> CHW

    tensor = torch.from_numpy(np.ascontiguousarray(im_np)).unsqueeze(0).to(device)

    return PreprocessResult(
        tensor=tensor,
        original_image=image,
        orig_size=(orig_w, orig_h),
        resized_size=(new_w, new_h),
    )
