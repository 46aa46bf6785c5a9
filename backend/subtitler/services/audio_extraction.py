"""Audio extraction: normalize any input media into mono 16kHz PCM WAV."""

import asyncio
import logging
import os
import signal
from contextlib import aclosing
from dataclasses import dataclass, field
from pathlib import Path
from typing import AsyncIterator, Awaitable, Callable, List, Optional

from subtitler.config import settings
from subtitler.errors import ExtractionFailed
from subtitler.utils.ffprobe import get_media_duration

logger = logging.getLogger(__name__)

SAMPLE_RATE = 16000
CHANNELS = 1
KILL_GRACE_SECONDS = 2.0


@dataclass
class ExtractionEvent:
    """One event of an extraction run."""

    kind: str  # start, progress, stderr, completed, failed
    percent: Optional[float] = None
    message: str = ""
    returncode: Optional[int] = None
    stderr: List[str] = field(default_factory=list)

    @property
    def terminal(self) -> bool:
        return self.kind in ("completed", "failed")


EventCallback = Callable[[ExtractionEvent], Awaitable[None]]


class AudioExtractor:
    """Runs ffmpeg to produce the canonical waveform used by every provider."""

    def __init__(self, ffmpeg_binary: str = "ffmpeg", ffprobe_binary: str = "ffprobe"):
        self.ffmpeg_binary = ffmpeg_binary
        self.ffprobe_binary = ffprobe_binary

    def build_command(self, input_path: Path, output_path: Path) -> List[str]:
        return [
            self.ffmpeg_binary,
            "-nostdin",
            "-hide_banner",
            "-loglevel", "error",
            "-y",
            "-i", str(input_path),
            "-vn",
            "-acodec", "pcm_s16le",
            "-ar", str(SAMPLE_RATE),
            "-ac", str(CHANNELS),
            "-progress", "pipe:1",
            "-nostats",
            str(output_path),
        ]

    async def stream(self, input_path: Path, output_path: Path) -> AsyncIterator[ExtractionEvent]:
        """
        Run one extraction and yield its events.

        The stream always ends with exactly one terminal event (``completed``
        or ``failed``). If the consumer stops early or is cancelled, the
        ffmpeg process group is terminated.

        Args:
            input_path: Source media file
            output_path: Destination WAV file

        Yields:
            ExtractionEvent instances
        """
        duration = await get_media_duration(str(input_path), self.ffprobe_binary)
        cmd = self.build_command(input_path, output_path)

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as e:
            yield ExtractionEvent(kind="failed", message=f"Could not start {self.ffmpeg_binary}: {e}")
            return

        # ffmpeg stalls once the stderr pipe fills, so it is read alongside stdout
        stderr_task = asyncio.create_task(process.stderr.read())

        try:
            yield ExtractionEvent(kind="start", message=" ".join(cmd))

            async for line in process.stdout:
                line_str = line.decode(errors="replace").strip()
                if "=" not in line_str:
                    continue

                key, value = line_str.split("=", 1)
                if key in ("out_time_ms", "out_time_us") and duration:
                    try:
                        # ffmpeg reports microseconds under both keys
                        elapsed = int(value) / 1_000_000
                    except ValueError:
                        continue
                    percent = min(elapsed / duration * 100, 100.0)
                    yield ExtractionEvent(kind="progress", percent=percent)
                elif key == "progress" and value == "end":
                    yield ExtractionEvent(kind="progress", percent=100.0)

            await process.wait()

            stderr_output = (await stderr_task).decode(errors="replace").strip()
            stderr_lines = [ln for ln in stderr_output.splitlines() if ln.strip()]
            for ln in stderr_lines:
                yield ExtractionEvent(kind="stderr", message=ln)

            if process.returncode == 0:
                yield ExtractionEvent(kind="completed", returncode=0, stderr=stderr_lines)
            else:
                message = stderr_lines[-1] if stderr_lines else "no error output"
                yield ExtractionEvent(
                    kind="failed",
                    returncode=process.returncode,
                    message=f"ffmpeg exited with code {process.returncode}: {message}",
                    stderr=stderr_lines,
                )

        finally:
            if process.returncode is None:
                await self._terminate(process)
            if not stderr_task.done():
                stderr_task.cancel()

    async def extract(
        self,
        input_path: Path,
        output_path: Path,
        on_event: Optional[EventCallback] = None,
    ) -> Path:
        """
        Extract audio and wait for the terminal event.

        Raises:
            ExtractionFailed: nonzero exit, unstartable tool, or empty output
        """
        output_path.parent.mkdir(parents=True, exist_ok=True)
        terminal: Optional[ExtractionEvent] = None

        async with aclosing(self.stream(input_path, output_path)) as events:
            async for event in events:
                if event.kind == "start":
                    logger.info(f"FFmpeg started: {event.message}")
                elif event.kind == "stderr":
                    logger.debug(f"FFmpeg stderr: {event.message}")
                if on_event:
                    await on_event(event)
                if event.terminal:
                    terminal = event

        if terminal is None or terminal.kind == "failed":
            message = terminal.message if terminal else "ffmpeg produced no terminal event"
            raise ExtractionFailed(message, stderr="\n".join(terminal.stderr) if terminal else "")

        if not output_path.exists():
            raise ExtractionFailed("FFmpeg completed but output file was not created")
        if output_path.stat().st_size == 0:
            raise ExtractionFailed("Audio file was created but is empty")

        logger.info(f"Extracted audio: {output_path} ({output_path.stat().st_size} bytes)")
        return output_path

    async def _terminate(self, process: asyncio.subprocess.Process):
        """Kill the ffmpeg process group, gracefully first."""
        logger.warning(f"Terminating ffmpeg process {process.pid}")
        try:
            os.killpg(os.getpgid(process.pid), signal.SIGTERM)
        except ProcessLookupError:
            return

        try:
            await asyncio.wait_for(process.wait(), timeout=KILL_GRACE_SECONDS)
        except asyncio.TimeoutError:
            try:
                os.killpg(os.getpgid(process.pid), signal.SIGKILL)
            except ProcessLookupError:
                pass  # Process already gone
            await process.wait()


# Global extractor instance
audio_extractor = AudioExtractor(settings.FFMPEG_BINARY, settings.FFPROBE_BINARY)
