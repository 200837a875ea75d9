"""Block ingestion orchestrator."""

import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional

import structlog
from sqlalchemy import desc, func
from sqlalchemy.orm import Session

from blockchain_ingestion.config import settings
from blockchain_ingestion.models.block import Block
from blockchain_ingestion.models.transaction import Transaction
from blockchain_ingestion.utils.exceptions import AlreadyRunningError
from .chain_reader import ChainReaderInterface
from .error_handler import ErrorHandler


class IngestionState(Enum):
    IDLE = "idle"
    RUNNING = "running"


@dataclass
class IngestionResult:

    requested: int
    head: int
    start_block: int
    end_block: int
    blocks_processed: int = 0
    blocks_failed: int = 0
    transactions_stored: int = 0
    failed_blocks: List[int] = field(default_factory=list)
    duration: float = 0.0


@dataclass
class IngestionStatus:

    is_running: bool
    last_processed_block: Optional[int]
    total_blocks: int
    total_transactions: int


@dataclass
class IngestionStats:

    total_blocks: int
    total_transactions: int
    latest_block: int
    oldest_block: int
    average_transactions_per_block: int


class IngestionService:
    """
    Single-flight backward scan from the chain head.

    Blocks are fetched and stored one at a time. A failing block is logged and
    skipped; the rest of the range is still processed.
    """

    def __init__(
        self,
        db_session: Session,
        chain_reader: ChainReaderInterface,
        session_factory: Optional[Callable[[], Session]] = None,
    ):
        self.db = db_session
        self.reader = chain_reader
        # When set, status and stats queries never touch the ingestion session
        self.session_factory = session_factory
        self.error_handler = ErrorHandler()
        self.logger = structlog.get_logger()

        self._state = IngestionState.IDLE
        self._state_lock = threading.Lock()

    @property
    def state(self) -> IngestionState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is IngestionState.RUNNING

    def _enter_running(self) -> None:
        with self._state_lock:
            if self._state is IngestionState.RUNNING:
                raise AlreadyRunningError()
            self._state = IngestionState.RUNNING

    def _enter_idle(self) -> None:
        with self._state_lock:
            self._state = IngestionState.IDLE

    def start_ingestion(self, block_count: Optional[int] = None) -> IngestionResult:
        """
        Ingest the `block_count` most recent blocks, newest first.

        Args:
            block_count: Number of blocks ending at the current head

        Returns:
            IngestionResult: Counters for the run, including skipped blocks

        Raises:
            ValueError: If block_count is below 1
            AlreadyRunningError: If another run is in progress
            NetworkError: If the chain head cannot be read
        """
        if block_count is None:
            block_count = settings.DEFAULT_BLOCK_COUNT
        if isinstance(block_count, bool) or not isinstance(block_count, int) or block_count < 1:
            raise ValueError(f"block_count must be a positive integer, got {block_count!r}")

        self._enter_running()
        start_time = time.time()
        try:
            self.logger.info("Starting ingestion", block_count=block_count)

            try:
                head = self.reader.current_head()
            except Exception as e:
                self.logger.error("Failed to read chain head", error=str(e))
                raise

            end_block = head.number
            start_block = max(0, head.number - block_count + 1)
            self.logger.info(
                "Chain head",
                head=head.number,
                start_block=start_block,
                end_block=end_block,
            )

            result = IngestionResult(
                requested=block_count,
                head=head.number,
                start_block=start_block,
                end_block=end_block,
            )

            for number in range(end_block, start_block - 1, -1):
                try:
                    self._process_block(number, result)
                    result.blocks_processed += 1
                except Exception as e:
                    result.blocks_failed += 1
                    result.failed_blocks.append(number)
                    self.error_handler.handle_block_error(e, {"block_number": number})

            result.duration = time.time() - start_time
            self.logger.info(
                "Ingestion completed",
                successful=result.blocks_processed,
                failed=result.blocks_failed,
                transactions_stored=result.transactions_stored,
                total_time=result.duration,
            )
            return result

        finally:
            self._enter_idle()

    def _process_block(self, number: int, result: IngestionResult) -> None:
        self.logger.debug("Processing block", number=number)

        block = self.reader.read_block(number)
        self.reader.persist_block(block)

        # Block-level isolation: the first failing transaction ends this block's work
        transactions = self.reader.read_transactions(number)
        stored = 0
        for tx in transactions:
            if self.reader.persist_transaction(tx):
                stored += 1
                result.transactions_stored += 1

        self.logger.info(
            "Block processed",
            number=number,
            block_hash=block.hash,
            transactions=len(transactions),
            transactions_stored=stored,
        )

    @contextmanager
    def _query_session(self):
        if self.session_factory is None:
            yield self.db
            return
        session = self.session_factory()
        try:
            yield session
        finally:
            session.close()

    def get_ingestion_status(self) -> IngestionStatus:
        with self._query_session() as db:
            last_block = db.query(Block.number).order_by(desc(Block.number)).first()
            total_blocks = db.query(Block).count()
            total_transactions = db.query(Transaction).count()

        return IngestionStatus(
            is_running=self.is_running,
            last_processed_block=int(last_block.number) if last_block else None,
            total_blocks=total_blocks,
            total_transactions=total_transactions,
        )

    def get_ingestion_stats(self) -> IngestionStats:
        with self._query_session() as db:
            total_blocks, latest_block, oldest_block = db.query(
                func.count(Block.id), func.max(Block.number), func.min(Block.number)
            ).one()
            total_transactions = db.query(Transaction).count()

        average = 0
        if total_blocks > 0:
            # Round half up without going through float
            average = (2 * total_transactions + total_blocks) // (2 * total_blocks)

        return IngestionStats(
            total_blocks=total_blocks,
            total_transactions=total_transactions,
            latest_block=int(latest_block) if latest_block is not None else 0,
            oldest_block=int(oldest_block) if oldest_block is not None else 0,
            average_transactions_per_block=average,
        )

    def test_ingestion(self, block_count: Optional[int] = None) -> IngestionStats:
        """Run a small ingestion and return the resulting statistics."""
        if block_count is None:
            block_count = settings.TEST_BLOCK_COUNT

        self.logger.info("Testing ingestion", block_count=block_count)
        self.start_ingestion(block_count)

        stats = self.get_ingestion_stats()
        self.logger.info(
            "Test ingestion results",
            total_blocks=stats.total_blocks,
            total_transactions=stats.total_transactions,
            latest_block=stats.latest_block,
            oldest_block=stats.oldest_block,
            average_transactions_per_block=stats.average_transactions_per_block,
        )
        return stats
