from __future__ import annotations

import logging
import threading
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Literal

from marquee_core.errors import AlreadyRunning, JobCancelled

log = logging.getLogger(__name__)

JobStatus = Literal["running", "completed", "failed", "cancelled"]
_TERMINAL = ("completed", "failed", "cancelled")


@dataclass
class JobLogEntry:
    ts: float
    level: str
    message: str
    data: dict[str, Any] = field(default_factory=dict)


class JobProgress:
    """
    In-memory tracker for one background job.

    - steps: coarse phases (e.g. "fetch", "embed", "write")
    - current/total: fine progress inside the active step
    - logs: bounded ring of recent entries, mirrored to the module logger
    - cancellation: a flag the job checks between batches
    """

    def __init__(self, job_type: str, *, job_id: str | None = None, total_steps: int = 1, max_logs: int = 200):
        self.job_id = job_id or uuid.uuid4().hex
        self.job_type = job_type
        self.total_steps = total_steps
        self.step_index = 0
        self.step_name: str | None = None
        self.current = 0
        self.total = 0
        self.status: JobStatus = "running"
        self.result: Any = None
        self.error: str | None = None
        self.started_at = time.time()
        self.finished_at: float | None = None
        self.logs: deque[JobLogEntry] = deque(maxlen=max_logs)
        self._cancel = threading.Event()

    # ---------- progress ----------
    def set_step(self, index: int, name: str, *, total: int = 0) -> None:
        self.step_index = index
        self.step_name = name
        self.current = 0
        self.total = total
        self.add_log("info", f"step {index}/{self.total_steps}: {name}")

    def update(self, current: int, *, total: int | None = None, message: str | None = None) -> None:
        self.current = current
        if total is not None:
            self.total = total
        if message:
            self.add_log("info", message)

    def add_log(self, level: str, message: str, **data: Any) -> None:
        self.logs.append(JobLogEntry(ts=time.time(), level=level, message=message, data=data))
        log.log(logging.getLevelName(level.upper()), "[%s %s] %s", self.job_type, self.job_id[:8], message)

    # ---------- lifecycle ----------
    def complete(self, result: Any = None) -> None:
        if self.status in _TERMINAL:
            return
        self.status = "cancelled" if self._cancel.is_set() else "completed"
        self.result = result
        self.finished_at = time.time()

    def fail(self, error: str) -> None:
        if self.status in _TERMINAL:
            return
        self.status = "failed"
        self.error = error
        self.finished_at = time.time()
        self.add_log("error", error)

    def request_cancel(self) -> None:
        self._cancel.set()

    @property
    def cancel_requested(self) -> bool:
        return self._cancel.is_set()

    def raise_if_cancelled(self) -> None:
        if self._cancel.is_set():
            raise JobCancelled(f"{self.job_type} job {self.job_id} cancelled")

    @property
    def duration_ms(self) -> int:
        end = self.finished_at or time.time()
        return int((end - self.started_at) * 1000)

    def snapshot(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "job_type": self.job_type,
            "status": self.status,
            "step": {"index": self.step_index, "name": self.step_name, "total_steps": self.total_steps},
            "progress": {"current": self.current, "total": self.total},
            "error": self.error,
            "duration_ms": self.duration_ms,
            "logs": [e.__dict__ for e in list(self.logs)[-20:]],
        }


class JobRegistry:
    """Jobs by id; at most one running job per job type."""

    def __init__(self) -> None:
        self._jobs: dict[str, JobProgress] = {}
        self._lock = threading.Lock()

    def start(self, job_type: str, *, total_steps: int = 1) -> JobProgress:
        with self._lock:
            for job in self._jobs.values():
                if job.job_type == job_type and job.status == "running":
                    raise AlreadyRunning(f"{job_type} job {job.job_id} is already running")
            job = JobProgress(job_type, total_steps=total_steps)
            self._jobs[job.job_id] = job
            return job

    def get(self, job_id: str) -> JobProgress | None:
        return self._jobs.get(job_id)

    def cancel(self, job_id: str) -> bool:
        job = self._jobs.get(job_id)
        if job is None or job.status != "running":
            return False
        job.request_cancel()
        return True

    def running(self) -> list[JobProgress]:
        return [j for j in self._jobs.values() if j.status == "running"]
