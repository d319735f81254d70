"""
Closed set of background-removal models the service can run.

Each entry says which capability tier may select it and how the engine has
to shape tensors for it (input size, normalization, which output is the
matte).
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Tuple


class ModelTier(str, Enum):
    COMPATIBLE = "compatible"
    ACCELERATED = "accelerated"
    IOS = "ios"


@dataclass(frozen=True)
class ModelSpec:
    model_id: str
    label: str
    tier: ModelTier
    checkpoint: str
    input_size: int
    # "square" stretches to input_size x input_size, "long_edge" keeps aspect
    # ratio and rounds both sides up to a multiple of 32.
    resize_mode: str
    mean: Tuple[float, float, float]
    std: Tuple[float, float, float]
    output_index: int = 0
    minmax_output: bool = False


DEFAULT_MODEL_ID = "briaai/RMBG-1.4"
ACCELERATED_MODEL_ID = "Xenova/modnet"
IOS_MODEL_ID = "Xenova/modnet-ios"

MODELS: Dict[str, ModelSpec] = {
    DEFAULT_MODEL_ID: ModelSpec(
        model_id=DEFAULT_MODEL_ID,
        label="RMBG-1.4 (Cross-browser)",
        tier=ModelTier.COMPATIBLE,
        checkpoint="rmbg-1.4.pt",
        input_size=1024,
        resize_mode="square",
        mean=(0.5, 0.5, 0.5),
        std=(1.0, 1.0, 1.0),
        output_index=0,
        minmax_output=True,
    ),
    ACCELERATED_MODEL_ID: ModelSpec(
        model_id=ACCELERATED_MODEL_ID,
        label="MODNet (WebGPU)",
        tier=ModelTier.ACCELERATED,
        checkpoint="modnet.pt",
        input_size=512,
        resize_mode="long_edge",
        mean=(0.5, 0.5, 0.5),
        std=(0.5, 0.5, 0.5),
        output_index=-1,
    ),
    IOS_MODEL_ID: ModelSpec(
        model_id=IOS_MODEL_ID,
        label="MODNet (iOS optimized)",
        tier=ModelTier.IOS,
        checkpoint="modnet-ios.pt",
        input_size=512,
        resize_mode="long_edge",
        mean=(0.5, 0.5, 0.5),
        std=(0.5, 0.5, 0.5),
        output_index=-1,
    ),
}


def get_model_spec(model_id: str) -> ModelSpec:
    try:
        return MODELS[model_id]
    except KeyError:
        raise KeyError(f"Unknown model id: {model_id}") from None


def eligible_models(webgpu_supported: bool, is_ios: bool) -> List[ModelSpec]:
    """Models a device with the given capabilities may run."""
    eligible = []
    for spec in MODELS.values():
        if spec.tier is ModelTier.ACCELERATED and not webgpu_supported:
            continue
        if spec.tier is ModelTier.IOS and not is_ios:
            continue
        eligible.append(spec)
    return eligible
