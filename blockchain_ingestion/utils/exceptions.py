"""
Ingestion exceptions.

Only AlreadyRunningError is meant to reach callers of a run; the others are
raised by the chain reader and absorbed per block by the orchestrator.
"""

from typing import Optional


class IngestionError(Exception):

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class AlreadyRunningError(IngestionError):
    """Raised when a run is requested while another one is in progress"""

    def __init__(self, message: str = "Ingestion is already running"):
        super().__init__(message)


class NetworkError(IngestionError):
    """Provider timeout, transport failure or RPC error response"""

    pass


class NotFoundError(IngestionError):
    """Provider has no block for the requested number (yet)"""

    def __init__(self, message: str, block_number: Optional[int] = None):
        self.block_number = block_number
        super().__init__(message)


class StorageError(IngestionError):
    """Write to the relational store failed"""

    pass
