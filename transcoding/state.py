import logging
import os
import signal
import subprocess
import threading
from pathlib import Path
from typing import NamedTuple, Optional

logger = logging.getLogger(__name__)


class ActiveJob(NamedTuple):
    job_id: object
    work_dir: Path


class CurrentJob:
    """
    The job this process holds right now, if any, and the encoder it is
    running. One instance is created per worker and handed to both the poll
    loop and the signal/crash handlers, so they agree on what to release.
    """

    def __init__(self):
        self._lock = threading.RLock()  # re-entered when a signal lands mid-update
        self._active: Optional[ActiveJob] = None
        self._process: Optional[subprocess.Popen] = None

    def set(self, job_id, work_dir) -> None:
        with self._lock:
            self._active = ActiveJob(job_id, Path(work_dir))

    def clear(self) -> None:
        with self._lock:
            self._active = None
            self._process = None

    def get(self) -> Optional[ActiveJob]:
        with self._lock:
            return self._active

    def track_process(self, proc: Optional[subprocess.Popen]) -> None:
        with self._lock:
            self._process = proc

    @property
    def process(self) -> Optional[subprocess.Popen]:
        with self._lock:
            return self._process

    def kill_process(self) -> None:
        """Kill the encoder's whole process group; it runs in its own session."""
        proc = self.process
        if proc is None or proc.poll() is not None:
            return
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except OSError as e:
            logger.warning("Could not kill encoder pid %s: %s", proc.pid, e)

    def __bool__(self):
        return self.get() is not None
