"""
Sequential image processing queue.

Jobs run one at a time in submission order against whatever model is READY.
A failing job is marked FAILED and the worker moves on; nothing is retried.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Callable, Iterable, List, Optional, Sequence, Tuple, Union

from .engine import InferenceEngine
from .errors import PerJobError
from .jobs import ImageJob, JobRegistry, JobStatus, JobUpdate
from .lifecycle import ModelLifecycleManager, ModelStatus

logger = logging.getLogger(__name__)

FileInput = Union[bytes, Tuple[str, bytes]]
JobListener = Callable[[ImageJob], None]


def _normalize_files(files: Iterable[FileInput]) -> List[Tuple[str, bytes]]:
    normalized = []
    for item in files:
        if isinstance(item, (bytes, bytearray)):
            filename, payload = "image", bytes(item)
        else:
            filename, payload = item
            payload = bytes(payload)
        if not payload:
            raise ValueError(f"Empty image payload: {filename}")
        normalized.append((filename, payload))
    return normalized


class ImageProcessingQueue:
    def __init__(
        self,
        engine: InferenceEngine,
        lifecycle: ModelLifecycleManager,
        registry: Optional[JobRegistry] = None,
    ):
        self.engine = engine
        self.lifecycle = lifecycle
        self.registry = registry or JobRegistry()
        self._pending: asyncio.Queue = asyncio.Queue()
        self._updates: asyncio.Queue = asyncio.Queue()
        self._listeners: List[JobListener] = []
        self._worker: Optional[asyncio.Task] = None
        self._publisher: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def add_listener(self, listener: JobListener) -> None:
        self._listeners.append(listener)

    def start(self) -> None:
        if self.running:
            return
        self._publisher = asyncio.create_task(self._publish_loop(), name="bgremover-job-updates")
        self._worker = asyncio.create_task(self._work_loop(), name="bgremover-worker")
        logger.info("Image processing queue started")

    async def stop(self) -> None:
        for task in (self._worker, self._publisher):
            if task is None:
                continue
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._worker = self._publisher = None

    def submit(self, files: Sequence[FileInput]) -> List[ImageJob]:
        """Create one QUEUED job per file and schedule them in order."""
        normalized = _normalize_files(files)
        jobs = []
        for filename, payload in normalized:
            job = self.registry.create(payload, filename=filename)
            self._pending.put_nowait(job.id)
            jobs.append(job)
        logger.info("Queued %d image(s): %s", len(jobs), [job.id for job in jobs])
        return jobs

    def delete(self, job_id: int) -> None:
        """Hide a job; an in-flight inference for it still runs but its result is dropped."""
        if self.registry.remove(job_id):
            logger.info("Deleted job %s", job_id)

    def jobs(self) -> List[ImageJob]:
        return self.registry.list()

    def get(self, job_id: int) -> Optional[ImageJob]:
        return self.registry.get(job_id)

    async def drain(self) -> None:
        """Wait until every submitted job is terminal and all updates are applied."""
        await self._pending.join()
        await self._updates.join()

    def _post(self, update: JobUpdate) -> None:
        self._updates.put_nowait(update)

    async def _publish_loop(self) -> None:
        while True:
            update = await self._updates.get()
            try:
                job = self.registry.apply(update)
                if job is not None:
                    for listener in list(self._listeners):
                        try:
                            listener(job)
                        except Exception:  # noqa: BLE001
                            logger.exception("Job listener failed for job %s", job.id)
            finally:
                self._updates.task_done()

    async def _work_loop(self) -> None:
        while True:
            job_id = await self._pending.get()
            try:
                await self._process(job_id)
            finally:
                self._pending.task_done()

    async def _process(self, job_id: int) -> None:
        while True:
            if job_id not in self.registry:
                logger.debug("Skipping deleted job %s", job_id)
                return
            await self.lifecycle.wait_ready()
            async with self.lifecycle.engine_lock:
                if self.lifecycle.status is not ModelStatus.READY:
                    continue
                job = self.registry.get(job_id)
                if job is None:
                    continue
                self._post(JobUpdate(job_id, JobStatus.PROCESSING))
                model_id = self.lifecycle.active_model_id
                try:
                    outputs = await self.engine.process_images([job.source_file])
                    result = self._single_output(job_id, outputs)
                except Exception as exc:  # noqa: BLE001
                    logger.error("Error processing image %s with %s: %s", job_id, model_id, exc)
                    self._post(JobUpdate(job_id, JobStatus.FAILED))
                else:
                    logger.info("Processed image %s with %s", job_id, model_id)
                    self._post(JobUpdate(job_id, JobStatus.DONE, processed_file=result))
                return

    @staticmethod
    def _single_output(job_id: int, outputs) -> bytes:
        if not outputs or len(outputs) != 1:
            raise PerJobError(job_id, f"Engine returned {len(outputs or [])} outputs for 1 input")
        result = outputs[0]
        if not result:
            raise PerJobError(job_id, "Engine returned an empty image")
        return bytes(result)
