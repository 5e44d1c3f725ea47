from __future__ import annotations

import threading
import time
import uuid
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, List, Optional

from ..logging_config import get_logger
from ..models import JobStatusEnum
from ..utils.file_utils import remove_directory

logger = get_logger(__name__)


def _now() -> float:
    return time.time()


def _new_id() -> str:
    return uuid.uuid4().hex


@dataclass
class JobRecord:
    job_id: str
    work_dir: Path
    status: JobStatusEnum = JobStatusEnum.PROCESSING
    stage: str = "queued"
    output_path: Optional[Path] = None
    error: Optional[str] = None
    created_at: float = field(default_factory=_now)
    updated_at: float = field(default_factory=_now)


class JobStore:
    """In-memory job registry. The only state shared between jobs."""

    def __init__(self) -> None:
        self._jobs: Dict[str, JobRecord] = {}
        self._lock = threading.Lock()

    def create_job(self, work_root: Path) -> JobRecord:
        job_id = _new_id()
        now = _now()
        record = JobRecord(job_id=job_id, work_dir=Path(work_root) / job_id, created_at=now, updated_at=now)
        with self._lock:
            self._jobs[job_id] = record
        return replace(record)

    def set_stage(self, job_id: str, stage: str) -> None:
        with self._lock:
            record = self._jobs.get(job_id)
            if not record or record.status != JobStatusEnum.PROCESSING:
                return
            record.stage = stage
            record.updated_at = _now()

    def mark_done(self, job_id: str, output_path: Path) -> None:
        with self._lock:
            record = self._jobs.get(job_id)
            if not record or record.status != JobStatusEnum.PROCESSING:
                return
            record.status = JobStatusEnum.DONE
            record.stage = "done"
            record.output_path = Path(output_path)
            record.error = None
            record.updated_at = _now()

    def mark_error(self, job_id: str, error: str) -> None:
        with self._lock:
            record = self._jobs.get(job_id)
            if not record or record.status != JobStatusEnum.PROCESSING:
                return
            record.status = JobStatusEnum.ERROR
            record.stage = "error"
            record.output_path = None
            record.error = error or "unknown error"
            record.updated_at = _now()

    def get_job(self, job_id: str) -> Optional[JobRecord]:
        with self._lock:
            record = self._jobs.get(job_id)
            return replace(record) if record else None

    def delete(self, job_id: str) -> bool:
        with self._lock:
            record = self._jobs.pop(job_id, None)
        if not record:
            return False
        remove_directory(record.work_dir)
        return True

    def cleanup(self, ttl_seconds: float) -> List[str]:
        cutoff = _now() - ttl_seconds
        with self._lock:
            expired = [record for record in self._jobs.values() if record.created_at < cutoff]
            for record in expired:
                self._jobs.pop(record.job_id, None)

        for record in expired:
            remove_directory(record.work_dir)
            logger.info("Expired job removed", job_id=record.job_id, status=record.status.value)
        return [record.job_id for record in expired]

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)
