"""
Job queue client: the only code that writes transcode_jobs / videos status.

Calls fall in two groups. ``claim``, ``complete``, ``fail`` and ``release``
change ownership or terminal state and must reach the database.
``update_progress`` is fire-and-forget: a failed write is logged and dropped,
it never fails the job. So is the video-row half of ``complete`` and ``fail``
once the job row has been written.
"""
import logging
from typing import NamedTuple, Optional

from django.db import Error as DBError, close_old_connections, transaction
from django.db.models import F
from django.utils import timezone

from .exceptions import MAX_ERROR_CHARS
from .models import TranscodeJob, Video
from .s3 import object_url

logger = logging.getLogger(__name__)

# Candidates tried per claim() when other workers keep winning the race.
CLAIM_ATTEMPTS = 5


class Claim(NamedTuple):
    job: TranscodeJob
    video: Video


class JobQueue:
    def __init__(self, worker_id: str):
        self.worker_id = worker_id

    def _held(self, job_id):
        """Rows this worker may still write: claimed by us and not finished."""
        return TranscodeJob.objects.filter(
            pk=job_id, worker_id=self.worker_id, status=TranscodeJob.Status.PROCESSING
        )

    # -----------------------------------------------------
    # Claim
    # -----------------------------------------------------
    def claim(self) -> Optional[Claim]:
        """
        Take the next pending job (highest priority, then oldest) or return
        None. A datastore error is logged and reported as "no job" so the
        poll loop just waits and tries again.
        """
        try:
            close_old_connections()
            for _ in range(CLAIM_ATTEMPTS):
                with transaction.atomic():
                    candidate = (
                        TranscodeJob.objects.select_for_update(skip_locked=True)
                        .filter(status=TranscodeJob.Status.PENDING)
                        .order_by("-priority", "created_at")
                        .only("pk")
                        .first()
                    )
                    if candidate is None:
                        return None
                    won = self.try_claim(candidate.pk)
                if won:
                    job = TranscodeJob.objects.select_related("video").get(pk=candidate.pk)
                    logger.info("Claimed job %s (video %s)", job.pk, job.video_id)
                    return Claim(job, job.video)
                logger.debug("Job %s was claimed by another worker, trying the next one", candidate.pk)
        except DBError:
            logger.exception("Claiming a job failed; treating as no job available")
        return None

    def try_claim(self, job_id) -> bool:
        """
        Compare-and-set pending -> processing for one row. Exactly one caller
        can win it, whatever row locks the backend does or does not support.
        """
        now = timezone.now()
        updated = TranscodeJob.objects.filter(pk=job_id, status=TranscodeJob.Status.PENDING).update(
            status=TranscodeJob.Status.PROCESSING,
            worker_id=self.worker_id,
            started_at=now,
            completed_at=None,
            progress=0,
            current_step=None,
            error_message=None,
            updated_at=now,
        )
        return updated == 1

    # -----------------------------------------------------
    # Progress (best-effort)
    # -----------------------------------------------------
    def update_progress(self, job_id, percent: int, step: str | None = None) -> None:
        fields = {"progress": max(0, min(100, int(percent))), "updated_at": timezone.now()}
        if step:
            fields["current_step"] = step
        try:
            close_old_connections()
            self._held(job_id).update(**fields)
        except DBError as e:
            logger.warning("Progress update for job %s dropped: %s", job_id, e)

    # -----------------------------------------------------
    # Terminal transitions
    # -----------------------------------------------------
    def complete(
        self,
        job_id,
        video_id,
        hls_key: str,
        thumbnail_key: str,
        duration_seconds: float,
        width: int | None = None,
        height: int | None = None,
    ) -> bool:
        """
        Job -> completed first, then video -> ready. The job row is the record
        of "done": if the video update fails afterwards it is logged for
        reconciliation and not raised.
        """
        close_old_connections()
        now = timezone.now()
        updated = self._held(job_id).update(
            status=TranscodeJob.Status.COMPLETED,
            progress=100,
            current_step=None,
            completed_at=now,
            updated_at=now,
        )
        if not updated:
            logger.warning("Job %s is no longer held by %s; not completing it", job_id, self.worker_id)
            return False

        try:
            Video.objects.filter(pk=video_id).update(
                status=Video.Status.READY,
                hls_key=hls_key,
                hls_url=object_url(hls_key),
                thumbnail_key=thumbnail_key,
                thumbnail_url=object_url(thumbnail_key),
                duration_seconds=round(duration_seconds),
                width=width,
                height=height,
                error_message=None,
                updated_at=now,
            )
        except DBError:
            logger.error(
                "Job %s completed but video %s could not be marked ready; needs reconciliation",
                job_id, video_id, exc_info=True,
            )
        return True

    def fail(self, job_id, video_id, message: str) -> bool:
        close_old_connections()
        message = (message or "Unknown error")[:MAX_ERROR_CHARS]
        now = timezone.now()
        updated = self._held(job_id).update(
            status=TranscodeJob.Status.FAILED,
            error_message=message,
            completed_at=now,
            updated_at=now,
        )
        if not updated:
            logger.warning("Job %s is no longer held by %s; not failing it", job_id, self.worker_id)
            return False
        try:
            Video.objects.filter(pk=video_id).update(
                status=Video.Status.FAILED,
                error_message=message,
                updated_at=now,
            )
        except DBError:
            logger.error(
                "Job %s failed but video %s could not be marked failed; needs reconciliation",
                job_id, video_id, exc_info=True,
            )
        return True

    def release(self, job_id) -> bool:
        """Hand a claimed job back to the queue untouched, for a retry elsewhere."""
        close_old_connections()
        updated = self._held(job_id).update(
            status=TranscodeJob.Status.PENDING,
            worker_id=None,
            started_at=None,
            progress=0,
            current_step=None,
            retry_count=F("retry_count") + 1,
            updated_at=timezone.now(),
        )
        if updated:
            logger.warning("Released job %s back to pending", job_id)
        return bool(updated)
