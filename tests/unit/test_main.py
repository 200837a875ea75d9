"""
Unit tests for blockchain_ingestion/main.py
"""

import pytest
from unittest.mock import patch, MagicMock
from blockchain_ingestion import main as main_module
from blockchain_ingestion.services.chain_reader import ConnectionCheck, NetworkInfo
from blockchain_ingestion.services.ingestion import IngestionStats, IngestionStatus

STATUS = IngestionStatus(is_running=False, last_processed_block=None, total_blocks=0, total_transactions=0)
STATS = IngestionStats(
    total_blocks=3,
    total_transactions=6,
    latest_block=100,
    oldest_block=98,
    average_transactions_per_block=2,
)


def _patched_main():
    return (
        patch("blockchain_ingestion.main.setup_logging"),
        patch("blockchain_ingestion.main.init_db"),
        patch("blockchain_ingestion.main.get_db", return_value=iter([MagicMock()])),
        patch("blockchain_ingestion.main.ChainReader"),
        patch("blockchain_ingestion.main.IngestionService"),
    )


def test_main_runs_test_ingestion():
    p_logging, p_init, p_db, p_reader, p_service = _patched_main()
    with p_logging, p_init as mock_init, p_db, p_reader, p_service as mock_service:
        service = mock_service.return_value
        service.get_ingestion_status.return_value = STATUS
        service.test_ingestion.return_value = STATS

        result = main_module.main(block_count=5)

        mock_init.assert_called_once()
        service.test_ingestion.assert_called_once_with(5)
        assert mock_service.call_args.kwargs["session_factory"] is main_module.SessionLocal
        assert result == STATS


def test_main_status_only():
    p_logging, p_init, p_db, p_reader, p_service = _patched_main()
    with p_logging, p_init, p_db, p_reader, p_service as mock_service:
        service = mock_service.return_value
        service.get_ingestion_status.return_value = STATUS
        service.get_ingestion_stats.return_value = STATS

        main_module.main(status_only=True)

        service.test_ingestion.assert_not_called()
        service.get_ingestion_stats.assert_called_once()


def test_main_exception_handling():
    p_logging, p_init, p_db, p_reader, p_service = _patched_main()
    with p_logging, p_init, p_db, p_reader as mock_reader, p_service, patch(
        "blockchain_ingestion.main.structlog.get_logger"
    ) as mock_logger:
        mock_reader.side_effect = Exception("fail")
        with pytest.raises(Exception):
            main_module.main()
        mock_logger.return_value.error.assert_called()


def test_check_setup_success(db_session):
    reader = MagicMock()
    reader.test_connection.return_value = ConnectionCheck(success=True, block_number=12345)
    reader.get_network_info.return_value = NetworkInfo(chain_id=1, name="mainnet")
    engine = db_session.get_bind()

    with patch("blockchain_ingestion.main.setup_logging"), patch(
        "blockchain_ingestion.main.engine", engine
    ):
        assert main_module.check_setup(reader=reader) is True


def test_check_setup_rpc_failure(db_session):
    reader = MagicMock()
    reader.test_connection.return_value = ConnectionCheck(success=False, error="Connection failed")
    engine = db_session.get_bind()

    with patch("blockchain_ingestion.main.setup_logging"), patch(
        "blockchain_ingestion.main.engine", engine
    ):
        assert main_module.check_setup(reader=reader) is False
    reader.get_network_info.assert_not_called()
