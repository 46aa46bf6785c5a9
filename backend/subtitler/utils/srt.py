"""SRT timecodes and transcript-to-cue translation."""
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping

from subtitler.errors import MalformedTranscript, SerializationFailed

logger = logging.getLogger(__name__)

_TIMESTAMP_RE = re.compile(r"^\s*(\d+):([0-5]\d):([0-5]\d)[,.](\d{1,3})\s*$")


@dataclass(frozen=True)
class Cue:
    """One timed subtitle entry."""
    index: int
    start: float
    end: float
    text: str


def format_timestamp(seconds: float) -> str:
    """
    Format seconds as ``HH:MM:SS,mmm``.

    Rounding happens once on the total millisecond count, so residue that
    rounds up carries into seconds, minutes and hours. Hours are unbounded.

    Args:
        seconds: Non-negative time in seconds

    Returns:
        SRT formatted timestamp
    """
    if seconds < 0:
        raise ValueError(f"Timestamp cannot be negative: {seconds}")

    total_ms = int(round(seconds * 1000))
    hours, rest = divmod(total_ms, 3_600_000)
    minutes, rest = divmod(rest, 60_000)
    secs, millis = divmod(rest, 1000)

    return f"{hours:02d}:{minutes:02d}:{secs:02d},{millis:03d}"


def parse_timestamp(value: str) -> float:
    """Parse ``HH:MM:SS,mmm`` (or ``.mmm``) back into seconds."""
    match = _TIMESTAMP_RE.match(value)
    if not match:
        raise ValueError(f"Invalid SRT timestamp: {value!r}")

    hours, minutes, secs, millis = match.groups()
    return int(hours) * 3600 + int(minutes) * 60 + int(secs) + int(millis.ljust(3, "0")) / 1000


def clean_text(text: str) -> str:
    """Collapse newlines to single spaces and trim."""
    return re.sub(r"\n+", " ", text or "").strip()


def _require(node: Any, key: str, path: str) -> Any:
    if not isinstance(node, Mapping) or key not in node:
        raise MalformedTranscript(f"Transcript is missing '{path}'")
    return node[key]


def nested_to_cues(payload: Dict[str, Any]) -> List[Cue]:
    """
    Flatten a channel/alternative/paragraph/sentence transcript into cues.

    One cue per sentence, numbered globally in document order across
    every nesting level.
    """
    cues: List[Cue] = []
    results = _require(payload, "results", "results")
    channels = _require(results, "channels", "results.channels")

    for channel in channels:
        for alternative in _require(channel, "alternatives", "channels[].alternatives"):
            paragraphs = _require(alternative, "paragraphs", "alternatives[].paragraphs")
            for paragraph in _require(paragraphs, "paragraphs", "paragraphs.paragraphs"):
                for sentence in _require(paragraph, "sentences", "paragraphs[].sentences"):
                    try:
                        start = float(sentence["start"])
                        end = float(sentence["end"])
                        text = clean_text(sentence["text"])
                    except (KeyError, TypeError, ValueError) as e:
                        raise MalformedTranscript(f"Invalid sentence entry: {e}") from e
                    cues.append(Cue(index=len(cues) + 1, start=start, end=end, text=text))

    logger.debug(f"Translated nested transcript into {len(cues)} cues")
    return cues


def segments_to_cues(segments: Iterable[Mapping[str, Any]]) -> List[Cue]:
    """One cue per ``{start, end, text}`` segment, in input order."""
    cues: List[Cue] = []
    for segment in segments:
        try:
            cues.append(
                Cue(
                    index=len(cues) + 1,
                    start=float(segment["start"]),
                    end=float(segment["end"]),
                    text=clean_text(segment["text"]),
                )
            )
        except (KeyError, TypeError, ValueError) as e:
            raise MalformedTranscript(f"Invalid segment entry: {e}") from e

    logger.debug(f"Translated segment transcript into {len(cues)} cues")
    return cues


def serialize_srt(cues: List[Cue]) -> str:
    """
    Render cues as SRT text.

    Raises:
        SerializationFailed: empty input, indices not ``1..K``, or bad timing
    """
    if not cues:
        raise SerializationFailed("Transcript produced no subtitle cues")

    blocks = []
    for position, cue in enumerate(cues, start=1):
        if cue.index != position:
            raise SerializationFailed(
                f"Cue index {cue.index} out of sequence (expected {position})"
            )
        if cue.start < 0 or cue.end < cue.start:
            raise SerializationFailed(
                f"Cue {cue.index} has invalid timing {cue.start} -> {cue.end}"
            )
        blocks.append(
            f"{cue.index}\n"
            f"{format_timestamp(cue.start)} --> {format_timestamp(cue.end)}\n"
            f"{cue.text}\n"
        )

    return "\n".join(blocks)
