"""
Speech-to-text providers.

A provider takes the extracted waveform and a language hint and returns an
ordered list of cues. Any upstream problem (network, auth, bad payload,
unsupported language) surfaces as ``ProviderError``.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx

from subtitler.errors import MalformedTranscript, ProviderError
from subtitler.utils.srt import Cue, nested_to_cues, segments_to_cues

logger = logging.getLogger(__name__)


class TranscriptionProvider(ABC):
    """Abstract interface for a transcription back-end."""

    name: str = "provider"

    @abstractmethod
    async def transcribe(self, audio_path: Path, language: str) -> List[Cue]:
        """Transcribe the audio file. Raises ProviderError."""
        ...


class HttpTranscriptionProvider(TranscriptionProvider):
    """Shared plumbing for providers reached over HTTP."""

    def __init__(
        self,
        api_key: str,
        base_url: str,
        model: str,
        timeout: float = 600.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        timeout = httpx.Timeout(connect=10.0, read=self.timeout, write=self.timeout, pool=None)
        return httpx.AsyncClient(timeout=timeout, transport=self._transport)

    async def transcribe(self, audio_path: Path, language: str) -> List[Cue]:
        if not self.api_key:
            raise ProviderError(self.name, "API key is not configured")

        try:
            audio = await asyncio.to_thread(audio_path.read_bytes)
        except OSError as e:
            raise ProviderError(self.name, f"Could not read audio: {e}", cause=e) from e

        logger.info(f"Sending {len(audio)} bytes to {self.name} (language={language})")

        try:
            async with self._client() as client:
                response = await self._send(client, audio, language)
        except httpx.HTTPError as e:
            raise ProviderError(self.name, f"Request failed: {e}", cause=e) from e

        if not response.is_success:
            raise ProviderError(
                self.name,
                f"HTTP {response.status_code}: {response.text[:300]}",
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise ProviderError(self.name, "Response is not valid JSON", cause=e) from e

        try:
            cues = self._to_cues(payload)
        except MalformedTranscript as e:
            raise ProviderError(self.name, e.message, cause=e) from e

        logger.info(f"{self.name} returned {len(cues)} cues")
        return cues

    @abstractmethod
    async def _send(self, client: httpx.AsyncClient, audio: bytes, language: str) -> httpx.Response:
        ...

    @abstractmethod
    def _to_cues(self, payload: Any) -> List[Cue]:
        ...


class WhisperProvider(HttpTranscriptionProvider):
    """OpenAI-compatible Whisper endpoint returning segment transcripts."""

    name = "whisper"

    async def _send(self, client: httpx.AsyncClient, audio: bytes, language: str) -> httpx.Response:
        return await client.post(
            f"{self.base_url}/audio/transcriptions",
            headers={"Authorization": f"Bearer {self.api_key}"},
            files={"file": ("audio.wav", audio, "audio/wav")},
            data={
                "model": self.model,
                "response_format": "verbose_json",
                "language": language,
            },
        )

    def _to_cues(self, payload: Any) -> List[Cue]:
        if not isinstance(payload, dict) or not isinstance(payload.get("segments"), list):
            raise MalformedTranscript("Transcript is missing 'segments'")
        return segments_to_cues(payload["segments"])


class DeepgramProvider(HttpTranscriptionProvider):
    """Deepgram pre-recorded endpoint returning paragraph/sentence transcripts."""

    name = "deepgram"

    async def _send(self, client: httpx.AsyncClient, audio: bytes, language: str) -> httpx.Response:
        params: Dict[str, str] = {
            "model": self.model,
            "language": language,
            "smart_format": "true",
            "punctuate": "true",
            "paragraphs": "true",
        }
        return await client.post(
            f"{self.base_url}/listen",
            headers={
                "Authorization": f"Token {self.api_key}",
                "Content-Type": "audio/wav",
            },
            params=params,
            content=audio,
        )

    def _to_cues(self, payload: Any) -> List[Cue]:
        return nested_to_cues(payload)
