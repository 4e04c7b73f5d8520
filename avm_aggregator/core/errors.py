"""
Exception hierarchy for the aggregation service.

    AvmError
    ├── InvalidAddressError   address missing or unparseable, rejected before any fetch
    ├── NoEstimatesError      nothing to consolidate (distinct from a $0 estimate)
    ├── SourceFetchError      raised inside a fetcher, converted at its boundary
    ├── TransportError        the progress stream itself broke (client side)
    └── SweepFailedError      stream and fallback both failed; safe to retry
"""

class AvmError(Exception):
    def __init__(self, message: str, *args):
        self.message = message
        super().__init__(message, *args)

class InvalidAddressError(AvmError):
    pass

class NoEstimatesError(AvmError):
    def __init__(self, message: str = "No valuation estimates to consolidate"):
        super().__init__(message)

class SourceFetchError(AvmError):
    def __init__(self, message: str, source: str | None = None):
        self.source = source
        super().__init__(message)

class TransportError(AvmError):
    pass

class SweepFailedError(AvmError):
    retryable = True
