import logging
import shutil
from pathlib import Path

logger = logging.getLogger(__name__)

# HLS assets first; everything else is opaque binary.
CONTENT_TYPES = {
    ".m3u8": "application/vnd.apple.mpegurl",
    ".ts": "video/MP2T",
    ".m2ts": "video/MP2T",
    ".m4s": "video/iso.segment",
    ".mp4": "video/mp4",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".vtt": "text/vtt",
}
DEFAULT_CONTENT_TYPE = "application/octet-stream"


def content_type_for(path) -> str:
    """Content-Type for an upload, chosen by file extension."""
    return CONTENT_TYPES.get(Path(path).suffix.lower(), DEFAULT_CONTENT_TYPE)


def work_dir_for(temp_root, video_id) -> Path:
    """Per-job scratch space: <TEMP_DIR>/<video id>/"""
    return Path(temp_root) / str(video_id)


def input_path_for(work_dir: Path, source_key: str) -> Path:
    """Local copy of the source keeps its extension so ffprobe can sniff the container."""
    return work_dir / f"input{Path(source_key or '').suffix.lower()}"


def remove_work_dir(work_dir) -> None:
    """Delete a job's scratch directory. A missing directory is fine."""
    if work_dir is None:
        return
    shutil.rmtree(work_dir, ignore_errors=True)
    if Path(work_dir).exists():
        logger.warning("Work directory %s could not be fully removed", work_dir)
