"""
Tests for ErrorHandler service.
"""

from unittest.mock import Mock

import pytest

from blockchain_ingestion.services.error_handler import ErrorHandler
from blockchain_ingestion.utils.exceptions import NetworkError, NotFoundError, StorageError


class TestErrorHandler:
    """Test ErrorHandler functionality"""

    @pytest.fixture
    def error_handler(self):
        """Create ErrorHandler instance with a mocked logger"""
        handler = ErrorHandler()
        handler.logger = Mock()
        return handler

    def test_handle_rpc_error(self, error_handler):
        error_handler.handle_rpc_error(NetworkError("RPC timeout"), {"block_number": 100})
        error_handler.logger.error.assert_called_once_with(
            "RPC error occurred", error="RPC timeout", context={"block_number": 100}
        )

    def test_handle_missing_block_is_warning(self, error_handler):
        error_handler.handle_rpc_error(NotFoundError("Block 101 not found", block_number=101), {})
        error_handler.logger.warning.assert_called_once()
        error_handler.logger.error.assert_not_called()

    def test_handle_storage_error_reports_cause(self, error_handler):
        try:
            try:
                raise KeyError("boom")
            except KeyError as e:
                raise StorageError("Failed to store block 1") from e
        except StorageError as error:
            error_handler.handle_storage_error(error, {"block_number": 1})

        kwargs = error_handler.logger.error.call_args.kwargs
        assert kwargs["cause"] == "KeyError"

    def test_handle_block_error_dispatch(self, error_handler):
        error_handler.handle_block_error(StorageError("disk full"), {"block_number": 1})
        error_handler.logger.error.assert_called_with(
            "Database error occurred",
            error="disk full",
            cause="StorageError",
            context={"block_number": 1},
        )

        error_handler.handle_block_error(ValueError("bad payload"), {"block_number": 2})
        assert error_handler.logger.error.call_args.args[0] == "Unexpected error while processing block"
