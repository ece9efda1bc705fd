"""Error taxonomy for the discovery pipeline.

Only SinkAuthError (at startup) and CheckpointCorrupt are fatal. Everything
else is caught per work unit or per entity and recorded in the error log.
"""


class DiscoveryError(Exception):
    """Base class for pipeline errors."""


class TransportError(DiscoveryError):
    """Network failure or timeout talking to a source."""

    def __init__(self, source: str, message: str):
        self.source = source
        super().__init__(f"{source}: {message}")


class BlockedError(TransportError):
    """Anti-bot challenge detected. Counts as a failure with a longer cooldown."""


class ExtractionError(DiscoveryError):
    """Page content could not be parsed."""


class MetadataUnavailable(DiscoveryError):
    """No registration data for a domain."""


class SinkError(DiscoveryError):
    """Output write failed. Buffered rows are kept for the next flush."""


class SinkAuthError(SinkError):
    """Output sink could not be opened or authorized."""


class CheckpointCorrupt(DiscoveryError):
    """Checkpoint file exists but cannot be decoded."""
