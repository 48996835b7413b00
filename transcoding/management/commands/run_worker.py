from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
from django.core.management.base import BaseCommand, CommandError, CommandParser

from transcoding.ladder import load_ladder
from transcoding.lifecycle import Worker
from transcoding.queue import JobQueue


class Command(BaseCommand):
    help = "Runs the HLS transcoding worker: claims queued jobs and processes them one at a time."

    def add_arguments(self, parser: CommandParser):
        parser.add_argument("--worker-id", type=str, default=None, help="Override WORKER_ID")
        parser.add_argument("--poll-interval", type=float, default=None, help="Seconds to wait when the queue is empty")
        parser.add_argument("--once", action="store_true", help="Process at most one job, then exit")

    def handle(self, *args, **options):
        missing = [name for name in settings.WORKER_REQUIRED_SETTINGS if not getattr(settings, name, None)]
        if missing:
            raise CommandError(f"Missing required settings: {', '.join(missing)}. Please check your .env file.")

        try:
            ladder = load_ladder(settings.TRANSCODE_LADDER)
        except ImproperlyConfigured as e:
            raise CommandError(str(e))

        worker_id = options.get("worker_id") or settings.WORKER_ID
        poll_interval = options.get("poll_interval")
        if poll_interval is None:
            poll_interval = settings.WORKER_POLL_INTERVAL

        self.stdout.write(f"Worker {worker_id}: ladder {', '.join(r.name for r in ladder)}")

        worker = Worker(
            JobQueue(worker_id),
            poll_interval=poll_interval,
            temp_root=settings.WORKER_TEMP_DIR,
            ladder=ladder,
        )
        worker.install_signal_handlers()
        worker.run(once=options.get("once", False))
