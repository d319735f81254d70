"""
Image jobs and the visible job set.

Workers never mutate jobs directly: they post `JobUpdate` messages and the
registry applies them, which keeps status transitions forward-only and lets
a deleted job stay deleted when a late result arrives.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
import itertools
import logging
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    DONE = "done"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (JobStatus.DONE, JobStatus.FAILED)


_ORDER = {
    JobStatus.QUEUED: 0,
    JobStatus.PROCESSING: 1,
    JobStatus.DONE: 2,
    JobStatus.FAILED: 2,
}


@dataclass(frozen=True)
class ImageJob:
    id: int
    source_file: bytes
    filename: str = "image"
    status: JobStatus = JobStatus.QUEUED
    processed_file: Optional[bytes] = None

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "filename": self.filename,
            "status": self.status.value,
            "hasProcessedFile": self.processed_file is not None,
        }


@dataclass(frozen=True)
class JobUpdate:
    job_id: int
    status: JobStatus
    processed_file: Optional[bytes] = None


class JobRegistry:
    """Ordered set of visible jobs; the single owner of job state."""

    def __init__(self):
        self._jobs: Dict[int, ImageJob] = {}
        self._ids = itertools.count(1)

    def create(self, source_file: bytes, filename: str = "image") -> ImageJob:
        job = ImageJob(id=next(self._ids), source_file=source_file, filename=filename)
        self._jobs[job.id] = job
        return job

    def get(self, job_id: int) -> Optional[ImageJob]:
        return self._jobs.get(job_id)

    def __contains__(self, job_id: int) -> bool:
        return job_id in self._jobs

    def __len__(self) -> int:
        return len(self._jobs)

    def list(self) -> List[ImageJob]:
        return list(self._jobs.values())

    def remove(self, job_id: int) -> bool:
        """Returns True if the job was visible; removing twice is a no-op."""
        return self._jobs.pop(job_id, None) is not None

    def apply(self, update: JobUpdate) -> Optional[ImageJob]:
        job = self._jobs.get(update.job_id)
        if job is None:
            logger.debug("Discarding update for deleted job %s", update.job_id)
            return None
        if job.status.terminal or _ORDER[update.status] <= _ORDER[job.status]:
            logger.warning(
                "Ignoring backwards transition for job %s: %s -> %s",
                job.id,
                job.status.value,
                update.status.value,
            )
            return None

        processed = job.processed_file
        if update.status is JobStatus.DONE:
            processed = update.processed_file
        job = replace(job, status=update.status, processed_file=processed)
        self._jobs[job.id] = job
        return job
