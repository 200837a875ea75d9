"""
Error handling service for block ingestion.

Per-block failures are absorbed by the orchestrator; this service gives them
a consistent structured log shape so partial runs can be diagnosed afterwards.
"""

from typing import Any, Dict

import structlog

from blockchain_ingestion.utils.exceptions import (
    NetworkError,
    NotFoundError,
    StorageError,
)


class ErrorHandler:
    """Log ingestion errors with their context"""

    def __init__(self):
        """Initialize the error handler"""
        self.logger = structlog.get_logger()

    def handle_rpc_error(self, error: Exception, context: Dict[str, Any]) -> None:
        """
        Handle provider errors (timeouts, transport failures, missing blocks).

        Args:
            error: The exception that occurred
            context: Additional context about the error
        """
        if isinstance(error, NotFoundError):
            self.logger.warning(
                "Block not available from provider", error=str(error), context=context
            )
        else:
            self.logger.error("RPC error occurred", error=str(error), context=context)

    def handle_storage_error(self, error: Exception, context: Dict[str, Any]) -> None:
        """
        Handle database write errors.

        Args:
            error: The exception that occurred
            context: Additional context about the error
        """
        cause = error.__cause__ if error.__cause__ is not None else error
        self.logger.error(
            "Database error occurred",
            error=str(error),
            cause=type(cause).__name__,
            context=context,
        )

    def handle_block_error(self, error: Exception, context: Dict[str, Any]) -> None:
        """
        Dispatch a per-block failure to the matching handler.

        Args:
            error: The exception that occurred
            context: Additional context about the error
        """
        if isinstance(error, (NetworkError, NotFoundError)):
            self.handle_rpc_error(error, context)
        elif isinstance(error, StorageError):
            self.handle_storage_error(error, context)
        else:
            self.logger.error(
                "Unexpected error while processing block",
                error=str(error),
                error_type=type(error).__name__,
                context=context,
            )
