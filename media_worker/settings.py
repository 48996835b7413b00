from pathlib import Path
import json
import os
import socket
from dotenv import load_dotenv
from django.core.exceptions import ImproperlyConfigured

# -----------------------------------------------------
# Helpers
# -----------------------------------------------------
def env(name: str, default=None, *, required: bool = False):
    val = os.getenv(name, default)
    if required and (val is None or (isinstance(val, str) and val.strip() == "")):
        raise ImproperlyConfigured(f"Missing required environment variable: {name}")
    return val

def env_bool(name: str, default: bool = False) -> bool:
    return str(os.getenv(name, str(default))).lower() in {"1", "true", "yes", "on"}

def env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ImproperlyConfigured(f"Environment variable {name} must be an integer, got {raw!r}")

# -----------------------------------------------------
# Paths & basics
# -----------------------------------------------------
BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(BASE_DIR / ".env")

DEBUG = env_bool("DEBUG", False)

# The worker never signs cookies or tokens; Django still wants a value.
SECRET_KEY = env("DJANGO_SECRET_KEY", "media-worker-no-http-surface")

ALLOWED_HOSTS = []

# -----------------------------------------------------
# Applications
# -----------------------------------------------------
INSTALLED_APPS = [
    # Local
    "transcoding",
]

# -----------------------------------------------------
# Database: the shared job queue (Postgres if DB_* env vars set, else SQLite)
# -----------------------------------------------------
if os.getenv("DB_HOST"):
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.postgresql",
            "NAME": env("DB_NAME", "postgres"),
            "USER": env("DB_USER", "postgres"),
            "PASSWORD": env("DB_PASSWORD", required=True),
            "HOST": env("DB_HOST"),
            "PORT": env("DB_PORT", "5432"),
            "CONN_MAX_AGE": env_int("DB_CONN_MAX_AGE", 60),  # keep-alive between polls
            "CONN_HEALTH_CHECKS": True,
            "OPTIONS": {
                **({"sslmode": os.getenv("DB_SSLMODE")} if os.getenv("DB_SSLMODE") else {})
            },
        }
    }
else:
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": BASE_DIR / "db.sqlite3",
        }
    }

# -----------------------------------------------------
# Internationalization
# -----------------------------------------------------
TIME_ZONE = "UTC"
USE_TZ = True

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

# -----------------------------------------------------
# Logging
# -----------------------------------------------------
LOG_LEVEL = env("LOG_LEVEL", "INFO").upper()

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "verbose": {
            "format": "{levelname} {asctime} {name} {message}",
            "style": "{",
        },
    },
    "handlers": {
        "console": {
            "level": "DEBUG",
            "class": "logging.StreamHandler",
            "formatter": "verbose",
        },
    },
    "root": {
        "handlers": ["console"],
        "level": LOG_LEVEL,
    },
    "loggers": {
        "botocore": {"level": "WARNING"},
        "boto3": {"level": "WARNING"},
        "urllib3": {"level": "WARNING"},
    },
}

# -----------------------------------------------------
# S3 / R2 / MinIO (env-driven; no hardcoded secrets)
# -----------------------------------------------------
R2_ACCOUNT_ID = os.getenv("R2_ACCOUNT_ID")
S3_ENDPOINT_URL = os.getenv("S3_ENDPOINT_URL") or (
    f"https://{R2_ACCOUNT_ID}.r2.cloudflarestorage.com" if R2_ACCOUNT_ID else "http://127.0.0.1:9000"
)
S3_REGION = os.getenv("S3_REGION", "auto")
S3_BUCKET = os.getenv("S3_BUCKET", "media-local")
S3_ACCESS_KEY = os.getenv("S3_ACCESS_KEY")          # set in .env
S3_SECRET_KEY = os.getenv("S3_SECRET_KEY")          # set in .env
S3_PUBLIC_URL = (os.getenv("S3_PUBLIC_URL") or f"{S3_ENDPOINT_URL}/{S3_BUCKET}").rstrip("/")
S3_MAX_ATTEMPTS = env_int("S3_MAX_ATTEMPTS", 5)

# -----------------------------------------------------
# Worker
# -----------------------------------------------------
WORKER_ID = env("WORKER_ID", f"worker-{socket.gethostname()}-{os.getpid()}")
WORKER_POLL_INTERVAL = env_int("POLL_INTERVAL", 10)  # seconds
WORKER_TEMP_DIR = Path(env("TEMP_DIR", "/tmp/media-worker"))
FFMPEG_PATH = env("FFMPEG_PATH", "ffmpeg")
FFPROBE_PATH = env("FFPROBE_PATH", "ffprobe")

# Settings the run_worker command refuses to start without.
WORKER_REQUIRED_SETTINGS = ["S3_BUCKET", "S3_ACCESS_KEY", "S3_SECRET_KEY", "S3_PUBLIC_URL"]

# -----------------------------------------------------
# Transcoding ladder & encoding profile
# -----------------------------------------------------
# CRF-based encoding; maxrate caps peaks for streaming, bufsize = 1.5x maxrate.
TRANSCODE_LADDER = [
    {"name": "360p", "width": 640, "height": 360, "crf": 24, "maxrate": "800k", "bufsize": "1200k"},
    {"name": "480p", "width": 854, "height": 480, "crf": 23, "maxrate": "1500k", "bufsize": "2250k"},
    {"name": "720p", "width": 1280, "height": 720, "crf": 23, "maxrate": "3000k", "bufsize": "4500k"},
    {"name": "1080p", "width": 1920, "height": 1080, "crf": 22, "maxrate": "5000k", "bufsize": "7500k"},
    {"name": "1440p", "width": 2560, "height": 1440, "crf": 22, "maxrate": "10000k", "bufsize": "15000k"},
    {"name": "2160p", "width": 3840, "height": 2160, "crf": 22, "maxrate": "20000k", "bufsize": "30000k"},
]
if os.getenv("TRANSCODE_LADDER_JSON"):
    try:
        TRANSCODE_LADDER = json.loads(os.environ["TRANSCODE_LADDER_JSON"])
    except json.JSONDecodeError as e:
        raise ImproperlyConfigured(f"TRANSCODE_LADDER_JSON is not valid JSON: {e}")

TRANSCODE_ENCODING = {
    "preset": env("ENCODE_PRESET", "slow"),
    "profile": env("ENCODE_PROFILE", "high"),
    "tune": env("ENCODE_TUNE", "film"),
    "audio_bitrate": env("ENCODE_AUDIO_BITRATE", "128k"),
    "keyframe_interval": env_int("ENCODE_KEYFRAME_INTERVAL", 48),  # frames
    "segment_seconds": env_int("HLS_SEGMENT_SECONDS", 4),
    "thumbnail_offset": "00:00:01",
    "thumbnail_width": 640,
}
