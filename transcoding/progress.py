"""
Progress scraping for long ffmpeg runs.

ffmpeg reports how far it got as ``time=HH:MM:SS.ff`` on stderr. The parsing is
kept behind ProgressSource so the orchestration in ffmpeg.py never looks at
raw text.
"""
import re
from typing import Protocol


class ProgressSource(Protocol):
    def parse(self, line: str) -> float | None:
        """Return elapsed media seconds found in ``line``, or None."""


class FFmpegTimeProgress:
    # time=00:01:02.50 ; ffmpeg prints time=N/A before the first frame
    TIME_RE = re.compile(r"time=\s*(\d+):(\d{2}):(\d{2}(?:\.\d+)?)")

    def parse(self, line: str) -> float | None:
        matches = self.TIME_RE.findall(line)
        if not matches:
            return None
        # A single chunk can hold several status updates; the last is the newest.
        hours, minutes, seconds = matches[-1]
        try:
            return int(hours) * 3600 + int(minutes) * 60 + float(seconds)
        except ValueError:
            return None


def percent_of(elapsed: float, duration: float) -> int:
    """elapsed/duration as an integer percentage clamped to 0..100."""
    if duration <= 0:
        return 0
    return max(0, min(100, int(elapsed / duration * 100)))


class ProgressWindow:
    """
    Maps one stage's own 0..100 onto its slice of overall job progress, e.g.
    transcoding owns 10..95 and leaves room for download and upload.
    Never reports a value lower than one it already reported.
    """

    def __init__(self, start: int, end: int):
        if not 0 <= start <= end <= 100:
            raise ValueError(f"invalid progress window {start}..{end}")
        self.start = start
        self.end = end
        self.last = start

    def map(self, stage_percent: float) -> int:
        stage_percent = max(0.0, min(100.0, float(stage_percent)))
        overall = self.start + round((self.end - self.start) * stage_percent / 100)
        self.last = max(self.last, overall)
        return self.last
