from dataclasses import dataclass
from typing import Iterable

from django.core.exceptions import ImproperlyConfigured


@dataclass(frozen=True)
class Rung:
    """One rendition of the HLS ladder: target box plus rate control."""
    name: str
    width: int
    height: int
    crf: int
    maxrate: str
    bufsize: str


_RUNG_FIELDS = ("name", "width", "height", "crf", "maxrate", "bufsize")


def load_ladder(raw: Iterable[dict]) -> tuple[Rung, ...]:
    """
    Build the immutable ladder from the TRANSCODE_LADDER setting.
    Rungs come back ordered by height so the first one is always the lowest.
    """
    rungs = []
    for i, entry in enumerate(raw or []):
        missing = [f for f in _RUNG_FIELDS if f not in entry]
        if missing:
            raise ImproperlyConfigured(f"TRANSCODE_LADDER[{i}] is missing {missing}")
        try:
            rung = Rung(
                name=str(entry["name"]),
                width=int(entry["width"]),
                height=int(entry["height"]),
                crf=int(entry["crf"]),
                maxrate=str(entry["maxrate"]),
                bufsize=str(entry["bufsize"]),
            )
        except (TypeError, ValueError) as e:
            raise ImproperlyConfigured(f"TRANSCODE_LADDER[{i}] is invalid: {e}")
        if rung.width <= 0 or rung.height <= 0:
            raise ImproperlyConfigured(f"TRANSCODE_LADDER[{i}] ({rung.name}) needs positive dimensions")
        rungs.append(rung)

    if not rungs:
        raise ImproperlyConfigured("TRANSCODE_LADDER must define at least one rung")

    names = [r.name for r in rungs]
    if len(set(names)) != len(names):
        raise ImproperlyConfigured(f"TRANSCODE_LADDER rung names must be unique: {names}")

    return tuple(sorted(rungs, key=lambda r: (r.height, r.width)))


def select_ladder(rungs: tuple[Rung, ...], source_height: int) -> list[Rung]:
    """
    Keep every rung that does not upscale the source. A source smaller than the
    lowest rung still gets that one rung, never an empty package.
    """
    applicable = [r for r in rungs if r.height <= source_height]
    if not applicable:
        applicable = [min(rungs, key=lambda r: (r.height, r.width))]
    return applicable
