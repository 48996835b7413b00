"""Errors raised inside a job sequence; each one ends in a failed job."""

# Longest error text stored on a job row.
MAX_ERROR_CHARS = 4000


class WorkerError(Exception):
    pass


class ProbeError(WorkerError):
    """ffprobe failed or reported something we cannot transcode."""


class TranscodeError(WorkerError):
    def __init__(self, message: str, returncode: int | None = None, stderr: str = ""):
        self.returncode = returncode
        self.stderr = stderr
        if stderr:
            message = f"{message}: {tail(stderr, MAX_ERROR_CHARS - 200)}"
        super().__init__(message)


class StorageError(WorkerError):
    pass


def tail(text: str, limit: int = MAX_ERROR_CHARS) -> str:
    """Keep the end of a long diagnostic; ffmpeg prints the cause last."""
    text = text.strip()
    if len(text) <= limit:
        return text
    return "..." + text[-(limit - 3):]
