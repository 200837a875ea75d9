"""
Main entry point for the blockchain ingestion core.
"""

import structlog
from dataclasses import asdict
from sqlalchemy import inspect, text
from sqlalchemy.orm import Session
from .database.connection import SessionLocal, engine, get_db, init_db
from .services.chain_reader import ChainReader
from .services.ingestion import IngestionService
from .utils.logging import setup_logging
from .config import settings

REQUIRED_TABLES = ("blocks", "transactions")


def main(block_count=None, status_only=False, debug=False):
    """Main application entry point"""
    setup_logging("DEBUG" if debug else settings.LOG_LEVEL)

    logger = structlog.get_logger()
    logger.info(
        "Starting blockchain ingestion",
        rpc_url=settings.ETH_RPC_URL,
        block_count=block_count,
    )

    try:
        init_db()
        db_session: Session = next(get_db())
        reader = ChainReader(db_session, rpc_url=settings.ETH_RPC_URL)
        service = IngestionService(db_session, reader, session_factory=SessionLocal)

        logger.info("Current ingestion status", **asdict(service.get_ingestion_status()))
        if status_only:
            logger.info("Ingestion statistics", **asdict(service.get_ingestion_stats()))
            return

        stats = service.test_ingestion(block_count)

        logger.info("Final ingestion status", **asdict(service.get_ingestion_status()))
        return stats

    except Exception as e:
        logger.error("Unhandled exception", error=str(e))
        raise


def check_setup(reader=None) -> bool:
    """Verify database connectivity, schema and RPC connectivity."""
    setup_logging(settings.LOG_LEVEL)
    logger = structlog.get_logger()

    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
        logger.info("Database connection successful")
    except Exception as e:
        logger.error("Database connection failed", error=str(e))
        return False

    tables = inspect(engine).get_table_names()
    missing = [table for table in REQUIRED_TABLES if table not in tables]
    if missing:
        logger.error("Database schema incomplete", missing_tables=missing)
        return False
    logger.info("Database schema is properly set up", tables=list(REQUIRED_TABLES))

    if reader is None:
        reader = ChainReader(next(get_db()), rpc_url=settings.ETH_RPC_URL)

    connection_check = reader.test_connection()
    if not connection_check.success:
        logger.error("Ethereum RPC connection failed", error=connection_check.error)
        return False
    logger.info(
        "Ethereum RPC connection successful",
        block_number=connection_check.block_number,
        rpc_url=reader.provider_url,
    )

    try:
        network = reader.get_network_info()
    except Exception as e:
        logger.error("Failed to get network information", error=str(e))
        return False
    logger.info("Network", name=network.name, chain_id=network.chain_id)

    return True


if __name__ == "__main__":
    main()
