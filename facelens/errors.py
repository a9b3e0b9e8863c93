class FacelensError(Exception):
    """Base class for all facelens errors."""


class PersistenceReadFailure(FacelensError):
    """Stored gallery data could not be decoded."""


class MediaAccessDenied(FacelensError):
    """The camera could not be opened (missing device or permission refused)."""


class SourceFailure(FacelensError):
    """A detector failed on a single frame."""


class EmbeddingSourceFailure(SourceFailure):
    """The face detector/embedding model failed on a single frame."""


class NameRequired(FacelensError, ValueError):
    """Enrollment was attempted without a name."""


class SubmitFailure(FacelensError):
    """Posting the gallery to the training server failed."""
