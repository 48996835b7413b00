"""
ffprobe / ffmpeg orchestration: probe the source, pick the ladder, render a
poster frame and encode the multi-rendition HLS package.
"""
import logging
import math
import subprocess
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from django.conf import settings

from .exceptions import ProbeError, TranscodeError
from .ladder import Rung, load_ladder, select_ladder
from .progress import FFmpegTimeProgress, ProgressSource, ProgressWindow, percent_of

logger = logging.getLogger(__name__)

MASTER_PLAYLIST = "master.m3u8"
POSTER_NAME = "poster.jpg"
STDERR_TAIL_LINES = 200


@dataclass
class TranscodeResult:
    duration: float
    output_dir: Path
    thumbnail_path: Path
    width: int
    height: int
    renditions: list[str] = field(default_factory=list)


def _run_probe(args: list[str]) -> str:
    """
    Run ffprobe and return stdout. subprocess.run drains stdout and stderr
    together before waiting, so a chatty probe cannot block on a full pipe.
    """
    cmd = [settings.FFPROBE_PATH, "-v", "error", *args]
    try:
        result = subprocess.run(cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True, errors="replace")
    except OSError as e:
        raise ProbeError(f"could not start ffprobe: {e}") from e
    if result.returncode != 0:
        raise ProbeError(f"ffprobe exited with code {result.returncode}: {result.stderr.strip()[:500]}")
    return result.stdout


def probe_duration(input_path: Path) -> float:
    out = _run_probe([
        "-show_entries", "format=duration",
        "-of", "default=noprint_wrappers=1:nokey=1",
        str(input_path),
    ])
    try:
        duration = float(out.strip().splitlines()[0])
    except (IndexError, ValueError):
        raise ProbeError(f"ffprobe returned no usable duration: {out.strip()[:200]!r}")
    if not math.isfinite(duration) or duration <= 0:
        raise ProbeError(f"source has no playable duration ({duration})")
    return duration


def probe_resolution(input_path: Path) -> tuple[int, int]:
    out = _run_probe([
        "-select_streams", "v:0",
        "-show_entries", "stream=width,height",
        "-of", "csv=s=x:p=0",
        str(input_path),
    ])
    try:
        width, height = (int(v) for v in out.strip().splitlines()[0].split("x")[:2])
    except (IndexError, ValueError):
        raise ProbeError(f"ffprobe found no video stream: {out.strip()[:200]!r}")
    if width <= 0 or height <= 0:
        raise ProbeError(f"source has invalid dimensions {width}x{height}")
    return width, height


def generate_thumbnail(input_path: Path, output_path: Path, encoding: Optional[dict] = None) -> Path:
    """Grab one frame a second in, scaled to a fixed width. Falls back to the first frame for very short clips."""
    encoding = encoding or settings.TRANSCODE_ENCODING
    output_path.parent.mkdir(parents=True, exist_ok=True)

    for offset in (encoding["thumbnail_offset"], "0"):
        cmd = [
            settings.FFMPEG_PATH,
            "-y",
            "-ss", offset,
            "-i", str(input_path),
            "-vframes", "1",
            "-vf", f"scale={encoding['thumbnail_width']}:-2",
            str(output_path),
        ]
        # stdout/stderr captured (and thereby drained) even though only failures read them
        result = subprocess.run(
            cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE, start_new_session=True, text=True, errors="replace"
        )
        if result.returncode != 0:
            raise TranscodeError("ffmpeg thumbnail generation failed", result.returncode, result.stderr)
        if output_path.exists() and output_path.stat().st_size > 0:
            return output_path
        logger.info("No frame at offset %s, retrying poster from the first frame", offset)

    raise TranscodeError("ffmpeg produced no poster frame")


def build_hls_command(input_path: Path, output_dir: Path, ladder: list[Rung], encoding: dict) -> list[str]:
    """
    One ffmpeg invocation for the whole package: a scale branch per rung in
    filter_complex, independent x264 rate control per rendition, shared AAC
    audio, fixed GOP so every rendition cuts segments at the same frames.
    """
    gop = str(encoding["keyframe_interval"])
    branches = []
    stream_args = []
    var_stream_map = []

    for i, rung in enumerate(ladder):
        # decrease keeps aspect; the second scale forces even dimensions for x264
        branches.append(
            f"[0:v]scale=w={rung.width}:h={rung.height}:force_original_aspect_ratio=decrease,"
            f"scale=trunc(iw/2)*2:trunc(ih/2)*2[v{i}]"
        )
        stream_args += [
            "-map", f"[v{i}]",
            "-map", "0:a?",
            f"-c:v:{i}", "libx264",
            f"-crf:v:{i}", str(rung.crf),
            f"-maxrate:v:{i}", rung.maxrate,
            f"-bufsize:v:{i}", rung.bufsize,
            f"-c:a:{i}", "aac",
            f"-b:a:{i}", encoding["audio_bitrate"],
        ]
        var_stream_map.append(f"v:{i},a:{i},name:{rung.name}")

    return [
        settings.FFMPEG_PATH,
        "-i", str(input_path),
        "-filter_complex", ";".join(branches),
        "-preset", encoding["preset"],
        "-profile:v", encoding["profile"],
        "-tune", encoding["tune"],
        "-g", gop,
        "-keyint_min", gop,
        "-sc_threshold", "0",
        *stream_args,
        "-f", "hls",
        "-hls_time", str(encoding["segment_seconds"]),
        "-hls_playlist_type", "vod",
        "-var_stream_map", " ".join(var_stream_map),
        "-master_pl_name", MASTER_PLAYLIST,
        "-hls_segment_filename", str(output_dir / "%v" / "segment%d.ts"),
        "-y",
        str(output_dir / "%v" / "playlist.m3u8"),
    ]


def run_encoder(
    cmd: list[str],
    duration: float,
    on_progress: Callable[[int], None],
    window: ProgressWindow,
    source: Optional[ProgressSource] = None,
    track_process: Optional[Callable[[Optional[subprocess.Popen]], None]] = None,
) -> None:
    """
    Run the encoder, scraping stderr for progress as it arrives. stdout goes to
    DEVNULL and stderr is consumed line by line until EOF, so neither pipe can
    fill up while we wait on the process.
    """
    source = source or FFmpegTimeProgress()
    stderr_tail: deque[str] = deque(maxlen=STDERR_TAIL_LINES)
    reported = None

    try:
        proc = subprocess.Popen(
            cmd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
            start_new_session=True,  # a terminal Ctrl+C must not stop an in-flight encode
            text=True,          # universal newlines: ffmpeg's \r status lines split too
            errors="replace",
        )
    except OSError as e:
        raise TranscodeError(f"could not start ffmpeg: {e}") from e

    if track_process:
        track_process(proc)
    try:
        with proc:
            for line in proc.stderr:
                line = line.rstrip()
                if not line:
                    continue
                stderr_tail.append(line)
                elapsed = source.parse(line)
                if elapsed is None:
                    continue
                overall = window.map(percent_of(elapsed, duration))
                if overall != reported:
                    reported = overall
                    on_progress(overall)
            returncode = proc.wait()
    finally:
        if track_process:
            track_process(None)

    if returncode != 0:
        raise TranscodeError(f"FFmpeg exited with code {returncode}", returncode, "\n".join(stderr_tail))

    final = window.map(100)
    if final != reported:
        on_progress(final)


def transcode_to_hls(
    input_path: Path,
    output_dir: Path,
    on_progress: Callable[[int], None],
    ladder: Optional[tuple[Rung, ...]] = None,
    encoding: Optional[dict] = None,
    window: Optional[ProgressWindow] = None,
    track_process: Optional[Callable[[Optional[subprocess.Popen]], None]] = None,
) -> TranscodeResult:
    """
    Produce ``output_dir/master.m3u8``, one ``<rung>/playlist.m3u8`` plus
    segments per selected rung, and ``output_dir/poster.jpg``.

    ``on_progress`` receives overall job percentages inside ``window``
    (10..95 by default).
    ``track_process`` is handed the running encoder, then None once it exits.
    """
    ladder = ladder or load_ladder(settings.TRANSCODE_LADDER)
    encoding = encoding or settings.TRANSCODE_ENCODING
    window = window or ProgressWindow(10, 95)

    duration = probe_duration(input_path)
    width, height = probe_resolution(input_path)
    selected = select_ladder(ladder, height)
    logger.info(
        "Source %s: %.1fs %dx%d -> renditions %s",
        input_path.name, duration, width, height, [r.name for r in selected],
    )

    output_dir.mkdir(parents=True, exist_ok=True)
    thumbnail_path = generate_thumbnail(input_path, output_dir / POSTER_NAME, encoding)

    cmd = build_hls_command(input_path, output_dir, selected, encoding)
    logger.debug("Running %s", " ".join(cmd))
    run_encoder(cmd, duration, on_progress, window, track_process=track_process)

    return TranscodeResult(
        duration=duration,
        output_dir=output_dir,
        thumbnail_path=thumbnail_path,
        width=width,
        height=height,
        renditions=[r.name for r in selected],
    )
