"""
Boundary contract with the inference engine.

The orchestration layer never touches tensors; it only loads a model by id,
hands over encoded image bytes and receives encoded cutouts back.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Sequence


@dataclass(frozen=True)
class ModelInfo:
    is_webgpu_supported: bool
    is_ios: bool


class InferenceEngine(ABC):
    """
    Engines are not safe for concurrent calls; callers serialize every
    `initialize_model` and `process_images` call.
    """

    @abstractmethod
    async def initialize_model(self, model_id: Optional[str] = None) -> bool:
        """
        Load `model_id` (or the engine default) and make it current.

        Returns False when the model could not be loaded. May raise
        `EngineFallbackError` when the model cannot run on this device and
        the default one should be used instead. A failed load leaves the
        previously loaded model usable.
        """

    @abstractmethod
    async def process_images(self, files: Sequence[bytes]) -> List[bytes]:
        """Run the current model over each input; one output per input, same order."""

    @abstractmethod
    def get_model_info(self) -> ModelInfo:
        """Read-only capability snapshot, independent of the loaded model."""
