"""End-to-end tests of one job sequence with storage and ffmpeg faked out."""

import logging
from pathlib import Path
from unittest.mock import patch

import pytest
from django.db import DatabaseError, InterfaceError

from transcoding import s3, tasks
from transcoding.exceptions import TranscodeError
from transcoding.ffmpeg import TranscodeResult
from transcoding.models import TranscodeJob, Video
from transcoding.queue import JobQueue
from transcoding.state import CurrentJob

pytestmark = pytest.mark.django_db


def fake_transcode(progress_points=(10, 40, 80, 95)):
    """Writes a small HLS package the way ffmpeg would lay it out."""

    def _transcode(input_path, output_dir, on_progress, ladder=None, window=None, **kwargs):
        assert Path(input_path).exists()
        for rung in ("360p", "720p"):
            (output_dir / rung).mkdir(parents=True)
            (output_dir / rung / "playlist.m3u8").write_text("#EXTM3U\n")
            (output_dir / rung / "segment0.ts").write_bytes(b"\x47" * 188)
        (output_dir / "master.m3u8").write_text("#EXTM3U\n")
        (output_dir / "poster.jpg").write_bytes(b"\xff\xd8")
        for p in progress_points:
            on_progress(p)
        return TranscodeResult(
            duration=125.4,
            output_dir=output_dir,
            thumbnail_path=output_dir / "poster.jpg",
            width=1280,
            height=720,
            renditions=["360p", "720p"],
        )

    return _transcode


@pytest.fixture
def source(fake_s3):
    fake_s3.objects["uploads/clip.mp4"] = {"body": b"source video", "content_type": "video/mp4"}
    return fake_s3


def test_no_job_returns_false(settings):
    assert tasks.process_job(JobQueue("w1"), CurrentJob()) is False


def test_successful_job_round_trip(monkeypatch, settings, make_job, source):
    job, video = make_job()
    monkeypatch.setattr(tasks, "transcode_to_hls", fake_transcode())
    current = CurrentJob()

    assert tasks.process_job(JobQueue("w1"), current) is True

    job.refresh_from_db()
    video.refresh_from_db()
    assert job.status == TranscodeJob.Status.COMPLETED
    assert job.progress == 100
    assert video.status == Video.Status.READY
    assert video.hls_key == f"users/{video.user_id}/hls/{video.id}/master.m3u8"
    assert video.thumbnail_key == f"users/{video.user_id}/hls/{video.id}/poster.jpg"
    assert video.duration_seconds == 125

    # the keys written to the video point at objects that were actually uploaded
    assert s3.object_exists(video.hls_key)
    assert s3.object_exists(video.thumbnail_key)
    assert s3.object_exists(f"users/{video.user_id}/hls/{video.id}/720p/segment0.ts")

    assert not (settings.WORKER_TEMP_DIR / str(video.id)).exists()
    assert current.get() is None


def test_progress_stays_in_range_and_never_drops(monkeypatch, make_job, source):
    job, _ = make_job()
    monkeypatch.setattr(tasks, "transcode_to_hls", fake_transcode())
    q = JobQueue("w1")
    reported = []
    real_update = q.update_progress

    def record(job_id, percent, step=None):
        reported.append(percent)
        real_update(job_id, percent, step)

    monkeypatch.setattr(q, "update_progress", record)
    tasks.process_job(q, CurrentJob())

    assert reported == sorted(reported)
    assert all(0 <= p <= 100 for p in reported)
    assert reported[0] == 0 and reported[-1] == 95


def test_encoder_failure_marks_job_failed(monkeypatch, settings, make_job, source):
    job, video = make_job()

    def broken(input_path, output_dir, on_progress, **kwargs):
        output_dir.mkdir(parents=True)
        (output_dir / "poster.jpg").write_bytes(b"\xff\xd8")
        raise TranscodeError("FFmpeg exited with code 1", 1, "Error while decoding stream #0:0")

    monkeypatch.setattr(tasks, "transcode_to_hls", broken)

    assert tasks.process_job(JobQueue("w1"), CurrentJob()) is True

    job.refresh_from_db()
    video.refresh_from_db()
    assert job.status == TranscodeJob.Status.FAILED
    assert "code 1" in job.error_message
    assert "Error while decoding" in job.error_message
    assert video.status == Video.Status.FAILED
    assert not (settings.WORKER_TEMP_DIR / str(video.id)).exists()
    assert source.uploads == []


def test_missing_source_object_fails_job(monkeypatch, settings, make_job, fake_s3):
    job, video = make_job(original_key="uploads/gone.mp4")
    monkeypatch.setattr(tasks, "transcode_to_hls", fake_transcode())

    tasks.process_job(JobQueue("w1"), CurrentJob())

    job.refresh_from_db()
    assert job.status == TranscodeJob.Status.FAILED
    assert "uploads/gone.mp4" in job.error_message
    assert not (settings.WORKER_TEMP_DIR / str(video.id)).exists()


def test_video_without_source_key_fails_job(make_job, fake_s3):
    job, _ = make_job(original_key=None)

    tasks.process_job(JobQueue("w1"), CurrentJob())

    job.refresh_from_db()
    assert job.status == TranscodeJob.Status.FAILED
    assert "no source object key" in job.error_message


def test_upload_failure_marks_job_failed(monkeypatch, settings, make_job, source):
    job, video = make_job()
    monkeypatch.setattr(tasks, "transcode_to_hls", fake_transcode())

    def flaky_upload(local_dir, prefix):
        raise s3.StorageError("Upload of master.m3u8 failed: connection reset")

    monkeypatch.setattr(tasks.s3, "upload_dir", flaky_upload)
    tasks.process_job(JobQueue("w1"), CurrentJob())

    job.refresh_from_db()
    assert job.status == TranscodeJob.Status.FAILED
    assert "connection reset" in job.error_message
    assert not (settings.WORKER_TEMP_DIR / str(video.id)).exists()


def test_current_job_is_set_while_running(monkeypatch, make_job, source):
    job, _ = make_job()
    current = CurrentJob()
    seen = []
    inner = fake_transcode()

    def spy(*args, **kwargs):
        seen.append(current.get())
        return inner(*args, **kwargs)

    monkeypatch.setattr(tasks, "transcode_to_hls", spy)
    tasks.process_job(JobQueue("w1"), current)

    assert seen[0].job_id == job.pk
    assert current.get() is None


def test_dropped_connection_on_progress_does_not_fail_job(monkeypatch, make_job, source):
    job, _ = make_job()
    monkeypatch.setattr(tasks, "transcode_to_hls", fake_transcode())
    q = JobQueue("w1")
    real_held = q._held

    class ProgressWritesFail:
        def __init__(self, rows):
            self.rows = rows

        def update(self, **fields):
            if "status" not in fields:
                raise InterfaceError("connection already closed")
            return self.rows.update(**fields)

    monkeypatch.setattr(q, "_held", lambda job_id: ProgressWritesFail(real_held(job_id)))

    assert tasks.process_job(q, CurrentJob()) is True
    job.refresh_from_db()
    assert job.status == TranscodeJob.Status.COMPLETED


def test_failed_video_update_on_fail_stays_inside_the_job(make_job, fake_s3):
    job, video = make_job(original_key=None)
    current = CurrentJob()

    with patch.object(Video.objects, "filter", side_effect=DatabaseError("videos locked")):
        assert tasks.process_job(JobQueue("w1"), current) is True

    job.refresh_from_db()
    assert job.status == TranscodeJob.Status.FAILED
    assert current.get() is None


def test_stale_work_dir_is_not_uploaded(monkeypatch, settings, make_job, source):
    job, video = make_job()
    stale = settings.WORKER_TEMP_DIR / str(video.id) / "hls" / "1080p"
    stale.mkdir(parents=True)
    (stale / "segment0.ts").write_bytes(b"old")
    monkeypatch.setattr(tasks, "transcode_to_hls", fake_transcode())

    tasks.process_job(JobQueue("w1"), CurrentJob())

    assert not s3.object_exists(f"users/{video.user_id}/hls/{video.id}/1080p/segment0.ts")
    assert s3.object_exists(f"users/{video.user_id}/hls/{video.id}/720p/segment0.ts")


def test_job_lost_before_completion_is_not_logged_as_done(monkeypatch, make_job, source, caplog):
    make_job()
    monkeypatch.setattr(tasks, "transcode_to_hls", fake_transcode())
    q = JobQueue("w1")
    monkeypatch.setattr(q, "complete", lambda *a, **k: False)

    with caplog.at_level(logging.INFO, logger="transcoding.tasks"):
        assert tasks.process_job(q, CurrentJob()) is True

    assert "taken from this worker" in caplog.text
    assert "Completed video" not in caplog.text


def test_encoder_handle_is_passed_to_the_current_job(monkeypatch, make_job, source):
    make_job()
    current = CurrentJob()
    inner = fake_transcode()
    seen = []

    def spy(*args, track_process=None, **kwargs):
        seen.append(track_process)
        return inner(*args, **kwargs)

    monkeypatch.setattr(tasks, "transcode_to_hls", spy)
    tasks.process_job(JobQueue("w1"), current)

    assert seen == [current.track_process]
