"""
Worker process lifecycle: the poll loop, graceful shutdown and the last-resort
crash path.

    idle <-> processing -> idle | terminating

A shutdown signal never interrupts a running transcode; the job finishes,
reports, cleans up, and only then does the loop exit. A second signal kills the
encoder, drops the work directory and exits at once.
"""
import logging
import os
import signal
import sys
import threading
from pathlib import Path

from .queue import JobQueue
from .state import CurrentJob
from .tasks import process_job
from .utils import remove_work_dir

logger = logging.getLogger(__name__)

FORCED_EXIT_CODE = 130
CRASH_EXIT_CODE = 1


class Worker:
    def __init__(
        self,
        queue: JobQueue,
        poll_interval: float,
        temp_root,
        current: CurrentJob | None = None,
        ladder=None,
        exit=sys.exit,
        force_exit=os._exit,
    ):
        self.queue = queue
        self.poll_interval = poll_interval
        self.temp_root = Path(temp_root)
        self.current = current or CurrentJob()
        self.ladder = ladder
        self._exit = exit
        self._force_exit = force_exit
        self._shutdown = threading.Event()

    @property
    def shutting_down(self) -> bool:
        return self._shutdown.is_set()

    # -----------------------------------------------------
    # Signals
    # -----------------------------------------------------
    def install_signal_handlers(self):
        for sig in (signal.SIGTERM, signal.SIGINT):
            signal.signal(sig, self.request_shutdown)

    def request_shutdown(self, signum=None, frame=None):
        name = signal.Signals(signum).name if signum else "shutdown request"
        if self._shutdown.is_set():
            logger.warning("Received %s again; exiting immediately", name)
            self.current.kill_process()
            active = self.current.get()
            if active:
                remove_work_dir(active.work_dir)
            self._force_exit(FORCED_EXIT_CODE)
            return

        self._shutdown.set()
        active = self.current.get()
        if active:
            logger.info("Received %s; finishing job %s before exiting", name, active.job_id)
        else:
            logger.info("Received %s while idle; exiting", name)

    # -----------------------------------------------------
    # Crash path
    # -----------------------------------------------------
    def handle_crash(self, exc: BaseException):
        """
        For errors that escaped the per-job handling. The held job goes back to
        pending rather than failed, so some worker retries it.
        """
        logger.critical("Unexpected worker error: %s", exc, exc_info=exc)
        active = self.current.get()
        self.current.kill_process()
        if active:
            try:
                self.queue.release(active.job_id)
            except Exception:
                logger.exception("Could not release job %s", active.job_id)
            remove_work_dir(active.work_dir)
            self.current.clear()
        self._exit(CRASH_EXIT_CODE)

    # -----------------------------------------------------
    # Main loop
    # -----------------------------------------------------
    def run_once(self) -> bool:
        return process_job(self.queue, self.current, ladder=self.ladder, temp_root=self.temp_root)

    def run(self, once: bool = False):
        self.temp_root.mkdir(parents=True, exist_ok=True)
        logger.info(
            "Worker %s started, polling every %ss (temp dir %s)",
            self.queue.worker_id, self.poll_interval, self.temp_root,
        )

        while not self._shutdown.is_set():
            try:
                processed = self.run_once()
            except Exception as e:
                self.handle_crash(e)
                return
            if once:
                break
            if not processed:
                # No jobs available; a shutdown signal cuts the wait short.
                self._shutdown.wait(self.poll_interval)

        logger.info("Worker %s stopped", self.queue.worker_id)
