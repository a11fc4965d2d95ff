"""
Error taxonomy for the ingestion pipeline

A decoder that simply does not recognise a line returns None; only the
conditions below are raised.
"""


class GatewayError(Exception):
    """Base class for gateway errors"""


class ParseReject(GatewayError):
    """A decoder matched the line's shape but a field is unusable"""

    def __init__(self, protocol: str, reason: str):
        super().__init__(f"{protocol}: {reason}")
        self.protocol = protocol
        self.reason = reason


class StorageError(GatewayError):
    """Persisting a record failed or timed out"""


class TransportError(GatewayError):
    """Socket-level failure; the connection is torn down"""
