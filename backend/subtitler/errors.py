"""
Error taxonomy for the conversion pipeline.

Every failure the orchestrator can turn into a ``failed`` job carries a
stable ``code`` and a human-readable ``message``; the message is what ends up
in the job record's ``error`` column.
"""

from typing import Optional


class PipelineError(Exception):
    """Base class for known pipeline failures."""

    code = "ERR_PIPELINE"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class SourceNotFound(PipelineError):
    code = "ERR_SOURCE_NOT_FOUND"


class ExtractionFailed(PipelineError):
    """The media tool exited nonzero or produced no usable audio."""

    code = "ERR_EXTRACTION_FAILED"

    def __init__(self, message: str, stderr: str = ""):
        self.stderr = stderr
        super().__init__(message)


class ProviderError(PipelineError):
    """A single transcription provider failed."""

    code = "ERR_PROVIDER"

    def __init__(self, provider: str, message: str, cause: Optional[BaseException] = None):
        self.provider = provider
        self.cause = cause
        super().__init__(f"{provider}: {message}")


class TranscriptionFailed(PipelineError):
    """Every provider in the attempt plan failed."""

    code = "ERR_TRANSCRIPTION_FAILED"

    def __init__(self, cause: ProviderError, attempts: list[str]):
        self.cause = cause
        self.attempts = attempts
        super().__init__(f"Transcription failed after {', '.join(attempts)}: {cause.message}")


class SerializationFailed(PipelineError):
    code = "ERR_SERIALIZATION_FAILED"


class PersistFailed(PipelineError):
    code = "ERR_PERSIST_FAILED"


class MalformedTranscript(PipelineError):
    code = "ERR_MALFORMED_TRANSCRIPT"
