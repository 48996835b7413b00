import logging
from django.conf import settings

from . import s3
from .exceptions import MAX_ERROR_CHARS
from .ffmpeg import MASTER_PLAYLIST, POSTER_NAME, transcode_to_hls
from .progress import ProgressWindow
from .queue import JobQueue
from .state import CurrentJob
from .utils import input_path_for, remove_work_dir, work_dir_for

logger = logging.getLogger(__name__)

# Overall job progress owned by each stage.
DOWNLOAD_DONE = 10
TRANSCODE_WINDOW = (DOWNLOAD_DONE, 95)
UPLOAD_START = 95


def hls_prefix(user_id, video_id) -> str:
    return f"users/{user_id}/hls/{video_id}"


def _error_message(exc: Exception) -> str:
    text = str(exc).strip() or exc.__class__.__name__
    return text[:MAX_ERROR_CHARS]


def process_job(queue: JobQueue, current: CurrentJob, ladder=None, temp_root=None) -> bool:
    """
    Claim and run one job: download -> transcode -> upload -> complete/fail.
    Returns False when there was nothing to claim, True otherwise (success
    or failure). The work directory is gone by the time this returns.
    """
    claim = queue.claim()
    if claim is None:
        return False

    job, video = claim
    work_dir = work_dir_for(temp_root or settings.WORKER_TEMP_DIR, video.id)
    current.set(job.id, work_dir)
    logger.info("Processing video %r (%s), job %s", video.title, video.id, job.id)

    try:
        if not video.original_key:
            raise ValueError(f"Video {video.id} has no source object key")

        input_abs = input_path_for(work_dir, video.original_key)
        output_dir = work_dir / "hls"
        remove_work_dir(work_dir)  # leftovers from an earlier, killed run of this video

        # Download original file
        logger.info("Downloading %s", video.original_key)
        queue.update_progress(job.id, 0, step="downloading")
        s3.download_file(video.original_key, input_abs)
        queue.update_progress(job.id, DOWNLOAD_DONE, step="transcoding")

        # Transcode to HLS, relaying progress into the 10..95 band
        def on_progress(percent: int):
            logger.debug("Job %s progress %d%%", job.id, percent)
            queue.update_progress(job.id, percent)

        result = transcode_to_hls(
            input_abs,
            output_dir,
            on_progress,
            ladder=ladder,
            window=ProgressWindow(*TRANSCODE_WINDOW),
            track_process=current.track_process,
        )

        # Upload playlists, segments and poster.jpg
        prefix = hls_prefix(video.user_id, video.id)
        queue.update_progress(job.id, UPLOAD_START, step="uploading")
        s3.upload_dir(output_dir, prefix)

        completed = queue.complete(
            job.id,
            video.id,
            hls_key=f"{prefix}/{MASTER_PLAYLIST}",
            thumbnail_key=f"{prefix}/{POSTER_NAME}",
            duration_seconds=result.duration,
            width=result.width,
            height=result.height,
        )
        if completed:
            logger.info("Completed video %s (%.1fs, %s)", video.id, result.duration, ", ".join(result.renditions))
        else:
            logger.warning("Job %s was taken from this worker before it finished; its result was not recorded", job.id)

    except Exception as e:
        logger.error("Job %s failed: %s", job.id, e, exc_info=True)
        queue.fail(job.id, video.id, _error_message(e))

    finally:
        remove_work_dir(work_dir)

    # Left set if fail() itself raised, so the crash path can release the job.
    current.clear()
    return True
