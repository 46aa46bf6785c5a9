"""FFprobe wrapper utilities for extracting media metadata."""
import asyncio
import json
import logging
from typing import Optional, Dict, Any

logger = logging.getLogger(__name__)


async def get_media_info(file_path: str, ffprobe_binary: str = "ffprobe") -> Optional[Dict[str, Any]]:
    """
    Get container and audio stream metadata using ffprobe.

    Args:
        file_path: Path to media file
        ffprobe_binary: ffprobe executable

    Returns:
        Dictionary with media metadata or None if failed
    """
    try:
        process = await asyncio.create_subprocess_exec(
            ffprobe_binary,
            "-v", "quiet",
            "-print_format", "json",
            "-show_format",
            "-show_streams",
            file_path,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )

        stdout, stderr = await process.communicate()

        if process.returncode != 0:
            logger.warning(f"FFprobe failed for {file_path}: {stderr.decode(errors='replace')}")
            return None

        data = json.loads(stdout.decode())

        audio_stream = next(
            (s for s in data.get("streams", []) if s.get("codec_type") == "audio"),
            None
        )
        format_info = data.get("format", {})

        return {
            "has_audio": audio_stream is not None,
            "codec": (audio_stream or {}).get("codec_name", "unknown"),
            "sample_rate": int((audio_stream or {}).get("sample_rate", 0) or 0),
            "channels": int((audio_stream or {}).get("channels", 0) or 0),
            "duration": parse_duration(format_info.get("duration")),
            "size": int(format_info.get("size", 0) or 0),
        }

    except Exception as e:
        logger.warning(f"Error getting media info for {file_path}: {e}")
        return None


async def get_media_duration(file_path: str, ffprobe_binary: str = "ffprobe") -> Optional[float]:
    """Duration in seconds, or None when unknown."""
    info = await get_media_info(file_path, ffprobe_binary)
    if not info or not info["duration"]:
        return None
    return info["duration"]


def parse_duration(value: Any) -> float:
    """
    Parse an ffprobe duration field.

    Args:
        value: Duration as reported by ffprobe (string, number or None)

    Returns:
        Duration in seconds, 0.0 if unparseable
    """
    try:
        duration = float(value)
    except (ValueError, TypeError):
        return 0.0
    return duration if duration > 0 else 0.0
