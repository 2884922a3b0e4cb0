# errors.py
"""Error taxonomy for the mapping pipeline.

Every failure a stage can report belongs to one of six kinds:
``NotFound``, ``EmptyInput``, ``PreconditionNotMet``, ``ProviderFailure``,
``PersistenceFailure`` and ``DimensionMismatch``.  Concrete subclasses
name the specific condition (for example :class:`NoKeywordMappings`) so
callers can either catch the broad kind or the exact case.
"""

from typing import Any, Dict, Optional


class PipelineError(Exception):
    """Base exception for all pipeline errors."""

    kind = "PipelineError"

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        super().__init__(message)
        self.message = message
        self.original_error = original_error

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "error": type(self).__name__,
            "message": self.message,
        }


# ---- NotFound ---------------------------------------------------------
class NotFound(PipelineError):
    """A referenced regulation or entity does not exist."""

    kind = "NotFound"


class RegulationNotFound(NotFound):
    def __init__(self, regulation_id: Any):
        super().__init__(f"Regulation {regulation_id} not found")
        self.regulation_id = regulation_id


# ---- EmptyInput -------------------------------------------------------
class EmptyInput(PipelineError):
    """Input contained nothing usable."""

    kind = "EmptyInput"


class EmptyDocument(EmptyInput):
    """No clauses were recognized in the document text."""


class EmbeddingUnavailable(EmptyInput):
    """An embedding was requested for empty or whitespace-only text."""


class UnsupportedDocument(EmptyInput):
    """The document type cannot be converted to text."""


class UnreadableDocument(EmptyInput):
    """The document bytes could not be decoded as text."""


# ---- PreconditionNotMet -----------------------------------------------
class PreconditionNotMet(PipelineError):
    """A stage was invoked before the data it depends on exists."""

    kind = "PreconditionNotMet"


class RegulationAlreadyParsed(PreconditionNotMet):
    pass


class NoPendingRequirements(PreconditionNotMet):
    pass


class RegulationNotParsed(NoPendingRequirements):
    """Tagging was requested for a regulation that has no requirements."""


class NoTagsConfigured(PreconditionNotMet):
    pass


class NoTaggedRequirements(PreconditionNotMet):
    pass


class NoControlsConfigured(PreconditionNotMet):
    pass


class NoKeywordMappings(PreconditionNotMet):
    pass


# ---- ProviderFailure --------------------------------------------------
class ProviderFailure(PipelineError):
    """The embedding service failed."""

    kind = "ProviderFailure"


class EmbeddingProviderError(ProviderFailure):
    """Upstream embedding failure or malformed response."""


class StageTimeout(ProviderFailure):
    """The caller-supplied deadline expired before the stage finished."""


# ---- PersistenceFailure -----------------------------------------------
class PersistenceFailure(PipelineError):
    """A storage write failed; the stage's own work was rolled back."""

    kind = "PersistenceFailure"

    def __init__(
        self,
        message: str,
        original_error: Optional[Exception] = None,
        *,
        inserted: int = 0,
    ):
        super().__init__(message, original_error)
        self.inserted = inserted

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["inserted"] = self.inserted
        return data


# ---- DimensionMismatch ------------------------------------------------
class DimensionMismatch(PipelineError):
    """Two embedding vectors have different lengths."""

    kind = "DimensionMismatch"

    def __init__(self, left: int, right: int):
        super().__init__(f"Vectors must be same length (got {left} and {right})")
        self.left = left
        self.right = right
