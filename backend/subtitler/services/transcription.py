"""Provider selection and fallback for transcription."""

import logging
from enum import Enum
from pathlib import Path
from typing import List, Optional

from subtitler.config import settings
from subtitler.errors import ProviderError, TranscriptionFailed
from subtitler.services.providers import (
    DeepgramProvider,
    TranscriptionProvider,
    WhisperProvider,
)
from subtitler.utils.srt import Cue

logger = logging.getLogger(__name__)


class ProviderPolicy(str, Enum):
    USE_PRIMARY = "use_primary"
    USE_FALLBACK_THEN_PRIMARY = "use_fallback_then_primary"


def choose_policy(language: Optional[str], default_language: str, force_primary: bool = False) -> ProviderPolicy:
    """
    Decide which providers a job may use.

    The primary provider alone handles forced requests and the default
    language. Every other language tries the fallback-capable provider
    first and retries once on the primary.
    """
    if force_primary:
        return ProviderPolicy.USE_PRIMARY
    if not language or language.strip().lower() == default_language.strip().lower():
        return ProviderPolicy.USE_PRIMARY
    return ProviderPolicy.USE_FALLBACK_THEN_PRIMARY


class TranscriptionService:
    """Runs a transcription through the provider attempt plan."""

    def __init__(
        self,
        primary: TranscriptionProvider,
        fallback: TranscriptionProvider,
        default_language: str = "en",
        force_primary: bool = False,
    ):
        self.primary = primary
        self.fallback = fallback
        self.default_language = default_language
        self.force_primary = force_primary

    def plan(self, language: Optional[str], force_primary: Optional[bool] = None) -> List[TranscriptionProvider]:
        """Ordered list of providers to attempt."""
        forced = self.force_primary if force_primary is None else force_primary
        policy = choose_policy(language, self.default_language, forced)
        if policy is ProviderPolicy.USE_PRIMARY:
            return [self.primary]
        return [self.fallback, self.primary]

    async def transcribe(
        self,
        audio_path: Path,
        language: Optional[str],
        force_primary: Optional[bool] = None,
    ) -> List[Cue]:
        """
        Transcribe with the planned providers.

        Raises:
            TranscriptionFailed: every planned provider failed; the last
                provider error is kept as the cause
        """
        attempts = self.plan(language, force_primary)
        language = language or self.default_language
        tried: List[str] = []

        for provider in attempts[:-1]:
            tried.append(provider.name)
            try:
                return await provider.transcribe(audio_path, language)
            except ProviderError as e:
                logger.warning(f"{provider.name} transcription failed, falling back: {e.message}")

        last = attempts[-1]
        tried.append(last.name)
        try:
            return await last.transcribe(audio_path, language)
        except ProviderError as e:
            logger.error(f"{last.name} transcription failed: {e.message}")
            raise TranscriptionFailed(e, tried) from e


# Global transcription service instance
transcription_service = TranscriptionService(
    primary=WhisperProvider(
        api_key=settings.OPENAI_API_KEY,
        base_url=settings.OPENAI_BASE_URL,
        model=settings.OPENAI_MODEL,
        timeout=settings.PROVIDER_TIMEOUT,
    ),
    fallback=DeepgramProvider(
        api_key=settings.DEEPGRAM_API_KEY,
        base_url=settings.DEEPGRAM_BASE_URL,
        model=settings.DEEPGRAM_MODEL,
        timeout=settings.PROVIDER_TIMEOUT,
    ),
    default_language=settings.DEFAULT_LANGUAGE,
    force_primary=settings.FORCE_PRIMARY_PROVIDER,
)
