"""
Error taxonomy shared by every layer.

Callers catch ``FlashmasterError`` to handle any domain failure, or one of
the concrete subclasses to react to a specific category.
"""


class FlashmasterError(Exception):
    """Base class for all domain errors."""


class NotFoundError(FlashmasterError):
    """A referenced deck, card or backup does not exist."""

    def __init__(self, kind: str, ident: str):
        self.kind = kind
        self.ident = ident
        super().__init__(f"{kind} not found: {ident}")


class ConflictError(FlashmasterError):
    """A write would violate a uniqueness rule (e.g. duplicate deck name)."""


class ValidationError(FlashmasterError):
    """Input rejected before any persistence attempt."""


class StorageError(FlashmasterError):
    """
    I/O or transaction failure inside a backend.

    Attributes:
        transient: True when retrying may succeed (locked file, lost
            connection, full disk). False for structural problems such as a
            corrupt file or an unsupported schema version.
    """

    def __init__(self, message: str, transient: bool = True):
        self.transient = transient
        super().__init__(message)
