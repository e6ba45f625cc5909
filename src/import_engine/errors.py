"""
Exception hierarchy for the import engine.

Infrastructure failures (missing files, conversion tool failures,
datastore errors) are raised and must be mapped by the caller.
Validation outcomes are returned as data (ValidationResult), not raised.
"""


class ImportEngineError(Exception):
    """Base class for all import engine failures."""


class NotFoundError(ImportEngineError):
    """A version or job does not exist."""

    def __init__(self, kind: str, identifier: str):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} {identifier} not found")


class InvalidStateError(ImportEngineError):
    """Operation not allowed in the current lifecycle state."""


class InvalidScopeError(ImportEngineError, ValueError):
    """Scope selector could not be parsed."""


class ConversionError(ImportEngineError):
    """External vector conversion tool failed."""

    def __init__(self, message: str, returncode: int | None = None, stderr: str = ""):
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(message)


class ConversionTimeoutError(ConversionError):
    """External vector conversion tool exceeded its time limit."""


class EmptyImportError(ImportEngineError):
    """Canonical file has no features or no usable coordinates."""


class PersistenceError(ImportEngineError):
    """Datastore write failed; the surrounding transaction was rolled back."""


class ValidationRejectedError(ImportEngineError):
    """Publish was gated on validation and the import is invalid."""

    def __init__(self, error_count: int):
        self.error_count = error_count
        super().__init__(
            f"Cannot publish: {error_count} validation errors. "
            "Fix errors and re-validate."
        )
