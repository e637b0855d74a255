"""Exception hierarchy for Mindtrail."""


class MindtrailError(Exception):
    """Base class for all Mindtrail errors."""


class GraphEditError(MindtrailError):
    """Raised when a graph edit would break graph integrity."""


class DiagramConversionError(MindtrailError):
    """Raised when a graph cannot be rendered as diagram markup."""


class TutorChannelError(MindtrailError):
    """Raised when the tutor channel fails to produce a reply."""


class EntityNotFoundError(TutorChannelError):
    """Raised when the tutor backend reports 'Requested entity was not found'.

    This usually means the configured API key or model is invalid.
    """


class SessionFinishedError(MindtrailError):
    """Raised when a finished session receives a task mutation."""
