"""Error taxonomy shared by the pipeline, services and API."""


class ClipporaError(Exception):
    """Base class for all pipeline errors."""


class NotFoundError(ClipporaError):
    """A stored object or entity could not be located."""


class ClipValidationError(ClipporaError):
    """Model output violated clip invariants."""


class SelectionTimeoutError(ClipporaError):
    """A bounded external call exceeded its watchdog."""


class MediaToolError(ClipporaError):
    """An external media tool failed to spawn or exited non-zero."""


class TransactionError(ClipporaError):
    """A multi-row replace could not be committed and was rolled back."""


class ConfigurationError(ClipporaError):
    """A required credential or identifier is missing."""


class InvalidStateError(ClipporaError):
    """An entity was asked to make an illegal state change."""


class AudioGenerationError(ClipporaError):
    """The generative audio service rejected a request."""
