"""Shared helpers for the test suite."""

import os
import stat
import tempfile
import unittest
from pathlib import Path
from typing import List, Optional

from sqlalchemy.pool import NullPool

from subtitler.database import create_session_factory, init_db
from subtitler.errors import ProviderError
from subtitler.services.job_repository import JobRepository
from subtitler.services.providers import TranscriptionProvider
from subtitler.utils.srt import Cue


def make_session_factory(db_path: Path):
    return create_session_factory(f"sqlite+aiosqlite:///{db_path}", poolclass=NullPool)


class DatabaseTestCase(unittest.IsolatedAsyncioTestCase):
    """Gives each test a fresh SQLite database and a temp directory."""

    async def asyncSetUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.engine, self.session_factory = make_session_factory(self.root / "test.db")
        await init_db(self.engine)
        self.repository = JobRepository(self.session_factory)

    async def asyncTearDown(self):
        await self.engine.dispose()
        self._tmp.cleanup()

    async def create_job(self, **overrides):
        fields = {
            "user_id": "user-1",
            "file_name": "talk.mp4",
            "file_url": "/api/v1/files/user-1/talk.mp4",
            "file_size": 1024,
            "file_type": "video/mp4",
            "language": "en",
        }
        fields.update(overrides)
        return await self.repository.create(**fields)


class FakeProvider(TranscriptionProvider):
    """Provider returning canned cues or raising ProviderError."""

    def __init__(self, name: str, cues: Optional[List[Cue]] = None, error: Optional[str] = None):
        self.name = name
        self.cues = cues if cues is not None else []
        self.error = error
        self.calls = []

    async def transcribe(self, audio_path: Path, language: str) -> List[Cue]:
        self.calls.append((audio_path, language))
        if self.error:
            raise ProviderError(self.name, self.error)
        return list(self.cues)


def sample_cues(*texts: str) -> List[Cue]:
    return [
        Cue(index=i, start=float(i - 1), end=float(i) - 0.25, text=text)
        for i, text in enumerate(texts, start=1)
    ]


def write_fake_ffmpeg(
    directory: Path,
    exit_code: int = 0,
    stderr: str = "",
    output: bytes = b"RIFF-fake-wave",
    stderr_flood: int = 0,
) -> Path:
    """
    Write a shell script standing in for ffmpeg.

    It first prints ``stderr_flood`` noise lines to stderr, then writes
    ``output`` to its last argument (the output path), prints a progress
    end marker, echoes ``stderr`` and exits with ``exit_code``.
    """
    script = directory / "fake-ffmpeg"
    lines = [
        "#!/bin/sh",
        "for last; do :; done",
    ]
    if stderr_flood:
        lines.append(
            f"i=0; while [ $i -lt {stderr_flood} ]; do "
            "echo '[mp3 @ 0x5581] Header missing, skipping corrupt frame' >&2; "
            "i=$((i+1)); done"
        )
    if output:
        lines.append(f"printf '%s' '{output.decode()}' > \"$last\"")
    else:
        lines.append(": > \"$last\"")
    lines.append("echo 'progress=end'")
    if stderr:
        lines.append(f"echo '{stderr}' >&2")
    lines.append(f"exit {exit_code}")

    script.write_text("\n".join(lines) + "\n")
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return script


MISSING_BINARY = os.path.join(tempfile.gettempdir(), "definitely-not-ffprobe")
