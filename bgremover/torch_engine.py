"""
Local inference engine backed by TorchScript checkpoints.

The engine:
 - resolves catalog ids to checkpoints under `MODELS_DIR`,
 - loads them on CUDA -> Apple MPS -> CPU,
 - keeps exactly one model resident and only replaces it after a new load
   succeeded,
 - turns encoded images into RGBA PNG cutouts.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

import numpy as np
import torch
import torch.nn.functional as F

from . import config
from .catalog import DEFAULT_MODEL_ID, ModelSpec, ModelTier, get_model_spec
from .device import accelerator_available, is_ios_device, select_torch_device
from .engine import InferenceEngine, ModelInfo
from .errors import EngineFallbackError
from .postprocessing import MatteOptions, compose_rgba_png, normalize_matte, refine_alpha
from .preprocessing import PreprocessResult, load_and_preprocess_image_from_bytes

logger = logging.getLogger(__name__)


def _load_torchscript(model_path: Path, device: torch.device) -> torch.nn.Module:
    model = torch.jit.load(str(model_path), map_location=device)
    if hasattr(model, "eval"):
        model.eval()
    return model


def _select_output(output, index: int) -> torch.Tensor:
    """Models return a tensor, or a tuple/list of tensors (possibly nested once)."""
    if isinstance(output, (tuple, list)):
        output = output[index]
        if isinstance(output, (tuple, list)):
            output = output[0]
    if not isinstance(output, torch.Tensor):
        raise RuntimeError(f"Unexpected model output type: {type(output).__name__}")
    return output


class TorchInferenceEngine(InferenceEngine):
    def __init__(self, settings: Optional[config.Settings] = None):
        self.settings = settings or config.get_settings()
        self._accelerated = accelerator_available(force_cpu=self.settings.force_cpu)
        self._model: Optional[torch.nn.Module] = None
        self._spec: Optional[ModelSpec] = None
        self._device: torch.device = torch.device("cpu")
        self._matte_options = MatteOptions.from_settings(self.settings)

    @property
    def loaded_model_id(self) -> Optional[str]:
        return self._spec.model_id if self._spec else None

    def get_model_info(self) -> ModelInfo:
        return ModelInfo(
            is_webgpu_supported=self._accelerated,
            is_ios=is_ios_device(self.settings.client_user_agent),
        )

    def _device_for(self, spec: ModelSpec) -> torch.device:
        # The iOS path is tuned for CPU execution.
        return select_torch_device(
            allow_accelerator=self._accelerated and spec.tier is not ModelTier.IOS
        )

    def _load(self, spec: ModelSpec) -> Tuple[torch.nn.Module, torch.device]:
        model_path = self.settings.models_dir / spec.checkpoint
        if not model_path.exists():
            raise FileNotFoundError(f"Checkpoint for {spec.model_id} not found at {model_path}")
        device = self._device_for(spec)
        logger.info("Loading %s from %s on %s", spec.model_id, model_path, device)
        return _load_torchscript(model_path, device), device

    async def initialize_model(self, model_id: Optional[str] = None) -> bool:
        spec = get_model_spec(model_id or DEFAULT_MODEL_ID)
        if spec.tier is ModelTier.ACCELERATED and not self._accelerated:
            raise EngineFallbackError(
                f"{spec.model_id} needs a GPU accelerator. Falling back to {DEFAULT_MODEL_ID}",
                fallback_model_id=DEFAULT_MODEL_ID,
            )

        try:
            model, device = await asyncio.to_thread(self._load, spec)
        except Exception as exc:  # noqa: BLE001
            logger.error("Failed to load %s: %s", spec.model_id, exc)
            return False

        self._model, self._device, self._spec = model, device, spec
        logger.info("%s ready on %s", spec.model_id, device)
        return True

    def _run_inference(self, preprocessed: PreprocessResult) -> np.ndarray:
        """Run the current model and return a matte at the original resolution."""
        with torch.no_grad():
            output = self._model(preprocessed.tensor)
        pred = _select_output(output, self._spec.output_index)
        if pred.dim() == 3:
            pred = pred.unsqueeze(0)
        matte = F.interpolate(
            pred[:, :1].float(),
            size=(preprocessed.orig_size[1], preprocessed.orig_size[0]),
            mode="bilinear",
            align_corners=False,
        )
        return matte[0, 0].detach().cpu().numpy()

    def _process_one(self, image_bytes: bytes) -> bytes:
        preprocessed = load_and_preprocess_image_from_bytes(image_bytes, self._spec, self._device)
        raw = self._run_inference(preprocessed)
        alpha = refine_alpha(normalize_matte(raw, self._spec.minmax_output), self._matte_options)
        return compose_rgba_png(preprocessed.original_image, alpha)

    async def process_images(self, files: Sequence[bytes]) -> List[bytes]:
        if self._model is None or self._spec is None:
            raise RuntimeError("No model loaded")
        outputs: List[bytes] = []
        for image_bytes in files:
            outputs.append(await asyncio.to_thread(self._process_one, image_bytes))
        return outputs
