import itertools
import uuid
from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from transcoding import queue as queue_module
from transcoding import s3


@pytest.fixture(autouse=True)
def worker_settings(settings, tmp_path):
    settings.S3_BUCKET = "media-test"
    settings.S3_PUBLIC_URL = "https://cdn.example.test"
    settings.WORKER_TEMP_DIR = tmp_path / "work"
    settings.FFMPEG_PATH = "ffmpeg"
    settings.FFPROBE_PATH = "ffprobe"
    return settings


@pytest.fixture(autouse=True)
def no_connection_recycling(monkeypatch):
    # Closing "old" connections would end the per-test transaction.
    monkeypatch.setattr(queue_module, "close_old_connections", lambda: None)


class FakeS3Client:
    """In-memory stand-in for the boto3 S3 client calls the worker makes."""

    def __init__(self, objects=None):
        self.objects = dict(objects or {})
        self.uploads = []

    def download_file(self, bucket, key, filename):
        if key not in self.objects:
            raise ClientError({"Error": {"Code": "404", "Message": "Not Found"}}, "HeadObject")
        with open(filename, "wb") as f:
            f.write(self.objects[key]["body"])

    def upload_file(self, filename, bucket, key, ExtraArgs=None):
        with open(filename, "rb") as f:
            body = f.read()
        content_type = (ExtraArgs or {}).get("ContentType")
        self.objects[key] = {"body": body, "content_type": content_type}
        self.uploads.append(key)

    def head_object(self, Bucket, Key):
        if Key not in self.objects:
            raise ClientError({"Error": {"Code": "404", "Message": "Not Found"}}, "HeadObject")
        return {"ContentLength": len(self.objects[Key]["body"])}

    def delete_object(self, Bucket, Key):
        self.objects.pop(Key, None)
        return {}


@pytest.fixture
def fake_s3(monkeypatch):
    client = FakeS3Client()
    monkeypatch.setattr(s3, "_client", client)
    return client


@pytest.fixture
def make_job(db):
    from django.utils import timezone
    from transcoding.models import TranscodeJob, Video

    base = timezone.now() - timedelta(hours=1)
    order = itertools.count()

    def _make(title="clip", original_key="uploads/clip.mp4", priority=0, status=TranscodeJob.Status.PENDING):
        video = Video.objects.create(
            user_id=uuid.uuid4(),
            title=title,
            original_key=original_key,
            original_size_bytes=1024,
            status=Video.Status.PROCESSING,
        )
        job = TranscodeJob.objects.create(video=video, priority=priority, status=status)
        # distinct, increasing enqueue times so claim order is deterministic
        TranscodeJob.objects.filter(pk=job.pk).update(created_at=base + timedelta(seconds=next(order)))
        job.refresh_from_db()
        return job, video

    return _make


@pytest.fixture
def mock_queue():
    q = MagicMock()
    q.worker_id = "worker-test"
    return q
