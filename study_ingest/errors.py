"""
Exception hierarchy for the study-ingest pipeline.

    StudyIngestError
    +-- ValidationError            (bad input, never retried)
    |   +-- InvalidConfiguration   (chunking parameters, settings, empty text)
    |   +-- InputTooLarge          (single embedding input over the model limit)
    |   +-- QuestionValidationError
    +-- TransientProviderError     (retried by the RetryPolicy)
    |   +-- ProviderUnavailable
    +-- ProviderError              (non-transient provider failure)
    +-- ConfigurationError         (missing index / credentials)
    +-- ExtractionError            (fatal for the document)
    |   +-- UnsupportedFormat
    |   +-- ExtractionFailed
    +-- DocumentNotFound
    +-- DocumentNotReady
"""
from typing import Optional

from botocore.exceptions import (
    ClientError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

# Bedrock / AWS error codes worth another attempt
TRANSIENT_ERROR_CODES = frozenset({
    "ThrottlingException",
    "TooManyRequestsException",
    "ServiceUnavailableException",
    "InternalServerException",
    "ModelTimeoutException",
    "ModelNotReadyException",
    "RequestTimeout",
    "RequestTimeoutException",
})

TRANSIENT_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})


class StudyIngestError(Exception):
    """
    Base exception for all pipeline errors.

    Carries an optional provider name ("bedrock", "pinecone", "unstructured")
    which is prefixed in ``str()`` for log scanning.
    """

    default_message = "An unexpected error occurred"

    def __init__(self, message: Optional[str] = None, provider_name: Optional[str] = None):
        self.message = message or self.default_message
        self.provider_name = provider_name
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.provider_name:
            return f"[{self.provider_name}] {self.message}"
        return self.message


# =========================================================================
# Validation
# =========================================================================

class ValidationError(StudyIngestError):
    default_message = "Invalid input"


class InvalidConfiguration(ValidationError):
    default_message = "Invalid configuration"


class InputTooLarge(ValidationError):
    """A single input exceeds what the provider accepts; skip it or split it further."""

    default_message = "Input is too large for the provider"


class QuestionValidationError(ValidationError):
    default_message = "Invalid question"


# =========================================================================
# Providers
# =========================================================================

class TransientProviderError(StudyIngestError):
    default_message = "Transient provider failure"


class ProviderUnavailable(TransientProviderError):
    default_message = "External service is unavailable"


class ProviderError(StudyIngestError):
    default_message = "Provider call failed"


class ConfigurationError(StudyIngestError):
    default_message = "Missing or invalid external configuration"


# =========================================================================
# Extraction
# =========================================================================

class ExtractionError(StudyIngestError):
    default_message = "Text extraction failed"


class UnsupportedFormat(ExtractionError):
    default_message = "Unsupported file format"


class ExtractionFailed(ExtractionError):
    default_message = "Text extraction failed"


# =========================================================================
# Records
# =========================================================================

class DocumentNotFound(StudyIngestError):
    default_message = "Document not found"


class DocumentNotReady(StudyIngestError):
    default_message = "Document is still being processed"


# =========================================================================
# Classification
# =========================================================================

def _client_error_code(exc: ClientError) -> str:
    return exc.response.get("Error", {}).get("Code", "")


def _client_error_status(exc: ClientError) -> Optional[int]:
    return exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")


def is_retryable(exc: BaseException) -> bool:
    """
    Decide whether a failure is worth another attempt.

    Retryable: our TransientProviderError family, connection refused,
    timeouts, throttling / 5xx provider responses (botocore ClientError
    codes or any exception exposing an HTTP ``status``).
    Fatal: validation errors, not-found, configuration, everything else.
    """
    if isinstance(exc, TransientProviderError):
        return True
    if isinstance(exc, StudyIngestError):
        return False
    if isinstance(exc, (EndpointConnectionError, ConnectTimeoutError, ReadTimeoutError)):
        return True
    if isinstance(exc, ClientError):
        return (
            _client_error_code(exc) in TRANSIENT_ERROR_CODES
            or _client_error_status(exc) in TRANSIENT_STATUS_CODES
        )
    if isinstance(exc, (ConnectionError, TimeoutError)):
        return True
    status = getattr(exc, "status", None) or getattr(exc, "status_code", None)
    return status in TRANSIENT_STATUS_CODES


def is_input_too_large(exc: BaseException) -> bool:
    """Bedrock reports oversized inputs as a ValidationException mentioning the length."""
    if isinstance(exc, InputTooLarge):
        return True
    if isinstance(exc, ClientError) and _client_error_code(exc) == "ValidationException":
        message = exc.response.get("Error", {}).get("Message", "").lower()
        return any(word in message for word in ("too long", "too large", "max", "length", "token"))
    return False
