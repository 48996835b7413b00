import uuid
from django.db import models


class Video(models.Model):
    class Status(models.TextChoices):
        UPLOADING = "uploading"
        PROCESSING = "processing"
        READY = "ready"
        FAILED = "failed"
        DELETED = "deleted"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user_id = models.UUIDField()
    title = models.CharField(max_length=255, blank=True, default="")
    original_key = models.CharField(max_length=1024, null=True, blank=True)   # source object key
    original_size_bytes = models.BigIntegerField(default=0)
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.UPLOADING)

    # Filled in once the HLS package is uploaded
    hls_key = models.CharField(max_length=1024, null=True, blank=True)
    hls_url = models.TextField(null=True, blank=True)
    thumbnail_key = models.CharField(max_length=1024, null=True, blank=True)
    thumbnail_url = models.TextField(null=True, blank=True)
    duration_seconds = models.IntegerField(null=True, blank=True)
    width = models.IntegerField(null=True, blank=True)
    height = models.IntegerField(null=True, blank=True)
    error_message = models.TextField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "videos"

    def __str__(self):
        return self.title or str(self.id)


class TranscodeJob(models.Model):
    class Status(models.TextChoices):
        PENDING = "pending"
        PROCESSING = "processing"
        COMPLETED = "completed"
        FAILED = "failed"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    video = models.ForeignKey(Video, on_delete=models.CASCADE, related_name="transcode_jobs")
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.PENDING)
    priority = models.IntegerField(default=0)
    progress = models.PositiveSmallIntegerField(default=0)  # 0..100
    current_step = models.CharField(max_length=32, null=True, blank=True)
    error_message = models.TextField(null=True, blank=True)
    worker_id = models.CharField(max_length=255, null=True, blank=True)
    started_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    retry_count = models.IntegerField(default=0)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "transcode_jobs"
        indexes = [
            models.Index(fields=["status", "-priority", "created_at"], name="transcode_jobs_claim_idx"),
        ]

    def __str__(self):
        return f"{self.id} ({self.status})"
