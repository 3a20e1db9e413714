"""Error taxonomy shared by the realtime core."""


class SalesTrainerError(Exception):
    """Base class for all errors raised inside the service."""
    pass


class UpstreamConnectionError(SalesTrainerError):
    """The realtime AI engine socket could not be opened or failed mid-session."""
    pass


class PersistenceError(SalesTrainerError):
    """A write to the session store did not commit."""

    def __init__(self, operation: str, detail: str = ""):
        super().__init__(f"{operation} failed: {detail}" if detail else f"{operation} failed")
        self.operation = operation
        self.detail = detail


class ClassificationError(SalesTrainerError):
    """The outcome classifier returned nothing usable. Never leaves the classifier."""
    pass


class MalformedClientEvent(SalesTrainerError):
    """An inbound client frame could not be parsed or validated."""
    pass
