"""
Chain reader service: EVM JSON-RPC reads and idempotent block/transaction writes.
"""

import time
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import wraps
from typing import Any, Dict, List, Optional

import structlog
from requests.exceptions import ConnectionError as RequestsConnectionError
from requests.exceptions import HTTPError, RequestException, Timeout
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from web3 import Web3
from web3.exceptions import (
    BlockNotFound,
    ProviderConnectionError,
    TimeExhausted,
    Web3Exception,
)
from web3.middleware import ExtraDataToPOAMiddleware

from blockchain_ingestion.config import settings
from blockchain_ingestion.models.block import Block
from blockchain_ingestion.models.transaction import Transaction
from blockchain_ingestion.utils.exceptions import (
    NetworkError,
    NotFoundError,
    StorageError,
)

logger = structlog.get_logger()

TRANSIENT_RPC_ERRORS = (
    ConnectionError,
    RequestsConnectionError,
    Timeout,
    ProviderConnectionError,
    TimeExhausted,
)

# Rate limiting and gateway/server failures
TRANSIENT_HTTP_STATUSES = {408, 425, 429, 500, 502, 503, 504}


def _is_transient(error: Exception) -> bool:
    if isinstance(error, HTTPError):
        response = error.response
        return response is not None and response.status_code in TRANSIENT_HTTP_STATUSES
    return isinstance(error, TRANSIENT_RPC_ERRORS)

KNOWN_NETWORKS = {
    1: "mainnet",
    10: "optimism",
    56: "bnb",
    137: "matic",
    8453: "base",
    17000: "holesky",
    42161: "arbitrum",
    11155111: "sepolia",
}


@dataclass(frozen=True)
class BlockSummary:

    number: int
    hash: str
    parent_hash: str
    timestamp: datetime
    gas_used: int
    gas_limit: int


@dataclass(frozen=True)
class TransactionRecord:

    hash: str
    block_number: int
    transaction_index: int
    from_address: str
    to_address: Optional[str]
    value: int
    gas_used: int
    gas_price: int
    status: int


@dataclass
class ConnectionCheck:

    success: bool
    block_number: Optional[int] = None
    error: Optional[str] = None


@dataclass
class NetworkInfo:

    chain_id: int
    name: str


def retry_on_rpc_error(
    max_retries: Optional[int] = None,
    base_delay: Optional[float] = None,
    max_delay: Optional[float] = None,
):
    """
    Decorator for automatic retry with exponential backoff on transient RPC errors.

    Missing blocks are never retried. Transport errors, timeouts and HTTP
    429/5xx responses are retried. Any failure left after the last attempt,
    and any other HTTP or web3 error, is raised as NetworkError.

    Args:
        max_retries: Maximum number of retry attempts (default from settings)
        base_delay: Base delay in seconds between retries (default from settings)
        max_delay: Maximum delay in seconds between retries (default from settings)
    """

    def decorator(func):
        @wraps(func)
        def wrapper(self, *args, **kwargs):
            retries = settings.RPC_MAX_RETRIES if max_retries is None else max_retries
            base = settings.RPC_RETRY_BASE_DELAY if base_delay is None else base_delay
            ceiling = settings.RPC_RETRY_MAX_DELAY if max_delay is None else max_delay
            last_exception = None

            for attempt in range(retries + 1):
                try:
                    return func(self, *args, **kwargs)
                except NotFoundError:
                    raise
                except BlockNotFound as e:
                    raise NotFoundError(str(e)) from e
                except TRANSIENT_RPC_ERRORS + (RequestException,) as e:
                    if not _is_transient(e):
                        logger.error("RPC request failed", function=func.__name__, error=str(e))
                        raise NetworkError(f"{func.__name__} failed: {e}") from e

                    last_exception = e

                    if attempt == retries:
                        logger.error(
                            "RPC call failed after all retries",
                            function=func.__name__,
                            error=str(e),
                            attempts=attempt + 1,
                        )
                        break

                    delay = min(base * (2**attempt), ceiling)
                    jitter = random.uniform(0, delay * 0.1)  # nosec B311
                    actual_delay = delay + jitter

                    logger.info(
                        "RPC call failed, retrying",
                        function=func.__name__,
                        error=str(e),
                        attempt=attempt + 1,
                        max_retries=retries,
                        retry_delay=actual_delay,
                    )

                    time.sleep(actual_delay)
                except Web3Exception as e:
                    logger.error("RPC call rejected", function=func.__name__, error=str(e))
                    raise NetworkError(f"{func.__name__} failed: {e}") from e

            raise NetworkError(
                f"{func.__name__} failed after {retries + 1} attempts: {last_exception}"
            ) from last_exception

        return wrapper

    return decorator


def _hex(value: Any) -> str:
    if isinstance(value, str):
        return value
    return Web3.to_hex(value)


class ChainReaderInterface(ABC):
    """Operations the ingestion orchestrator depends on"""

    @abstractmethod
    def current_head(self) -> BlockSummary:
        """Return the latest block known to the provider"""
        raise NotImplementedError

    @abstractmethod
    def read_block(self, number: int) -> BlockSummary:
        """Return the block with the given number"""
        raise NotImplementedError

    @abstractmethod
    def read_transactions(self, number: int) -> List[TransactionRecord]:
        """Return the block's transactions in on-chain order"""
        raise NotImplementedError

    @abstractmethod
    def persist_block(self, block: BlockSummary) -> bool:
        """Insert the block unless its number is already stored"""
        raise NotImplementedError

    @abstractmethod
    def persist_transaction(self, tx: TransactionRecord) -> bool:
        """Insert the transaction unless its hash is already stored"""
        raise NotImplementedError


class ChainReader(ChainReaderInterface):
    """
    EVM chain reader backed by a web3 HTTP provider and a SQLAlchemy session.
    """

    def __init__(
        self,
        db_session: Session,
        rpc_url: str = None,
        request_timeout: int = None,
        web3: Optional[Web3] = None,
    ):
        """
        Initialize the chain reader.

        Args:
            db_session: Database session used for persistence
            rpc_url: RPC URL (default from settings)
            request_timeout: HTTP timeout in seconds (default from settings)
            web3: Pre-built Web3 client, mainly for tests
        """
        self.db = db_session
        self.rpc_url = rpc_url or settings.ETH_RPC_URL
        self.request_timeout = request_timeout or settings.RPC_REQUEST_TIMEOUT
        self.fetch_receipts = settings.FETCH_RECEIPTS

        if not self.rpc_url:
            raise ValueError("Ethereum RPC URL is required")

        self.w3 = web3 if web3 is not None else self._create_client()

        logger.info(
            "Chain reader initialized",
            rpc_url=self.rpc_url,
            fetch_receipts=self.fetch_receipts,
        )

    @property
    def provider_url(self) -> str:
        return self.rpc_url

    def _create_client(self) -> Web3:
        w3 = Web3(
            Web3.HTTPProvider(
                self.rpc_url,
                request_kwargs={"timeout": self.request_timeout},
            )
        )
        if settings.POA_CHAIN:
            w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
        return w3

    @retry_on_rpc_error()
    def _fetch_block(self, identifier, full_transactions: bool = False) -> Dict[str, Any]:
        try:
            block = self.w3.eth.get_block(identifier, full_transactions=full_transactions)
        except BlockNotFound as e:
            raise NotFoundError(
                f"Block {identifier} not found",
                block_number=identifier if isinstance(identifier, int) else None,
            ) from e
        if block is None:
            raise NotFoundError(
                f"Block {identifier} not found",
                block_number=identifier if isinstance(identifier, int) else None,
            )
        return block

    @retry_on_rpc_error()
    def _fetch_transaction(self, tx_hash) -> Dict[str, Any]:
        tx = self.w3.eth.get_transaction(tx_hash)
        if tx is None:
            raise NetworkError(f"Transaction {_hex(tx_hash)} missing from provider")
        return tx

    @retry_on_rpc_error()
    def _fetch_receipts(self, number: int) -> Dict[str, Dict[str, Any]]:
        receipts = self.w3.eth.get_block_receipts(number)
        return {_hex(r["transactionHash"]): r for r in receipts}

    @staticmethod
    def _to_block_summary(block: Dict[str, Any]) -> BlockSummary:
        return BlockSummary(
            number=int(block["number"]),
            hash=_hex(block["hash"]),
            parent_hash=_hex(block["parentHash"]),
            timestamp=datetime.fromtimestamp(int(block["timestamp"]), tz=timezone.utc),
            gas_used=int(block["gasUsed"]),
            gas_limit=int(block["gasLimit"]),
        )

    @staticmethod
    def _to_transaction_record(
        tx: Dict[str, Any], block_number: int, receipt: Optional[Dict[str, Any]] = None
    ) -> TransactionRecord:
        gas_price = tx.get("gasPrice") or tx.get("maxFeePerGas") or 0
        if receipt is not None:
            gas_used = receipt["gasUsed"]
            status = receipt.get("status", 1)
            gas_price = receipt.get("effectiveGasPrice") or gas_price
        else:
            # Without receipts only the gas limit is known
            gas_used = tx["gas"]
            status = 1

        return TransactionRecord(
            hash=_hex(tx["hash"]),
            block_number=block_number,
            transaction_index=int(tx.get("transactionIndex", 0)),
            from_address=tx["from"],
            to_address=tx.get("to"),
            value=int(tx["value"]),
            gas_used=int(gas_used),
            gas_price=int(gas_price),
            status=int(status),
        )

    def current_head(self) -> BlockSummary:
        return self._to_block_summary(self._fetch_block("latest"))

    def read_block(self, number: int) -> BlockSummary:
        return self._to_block_summary(self._fetch_block(number))

    def read_transactions(self, number: int) -> List[TransactionRecord]:
        """
        Read a block's transactions ordered by transaction index.

        Args:
            number: Block number

        Returns:
            List[TransactionRecord]: Empty for blocks without transactions

        Raises:
            NotFoundError: If the provider has no such block
            NetworkError: If the provider fails after retries
        """
        block = self._fetch_block(number, full_transactions=True)
        transactions = []
        for tx in block.get("transactions", []):
            # Hash-only entries appear when the provider ignores full_transactions
            if isinstance(tx, (bytes, str)):
                logger.debug("Fetching hash-only transaction", block_number=number, hash=_hex(tx))
                tx = self._fetch_transaction(tx)
            transactions.append(tx)
        transactions.sort(key=lambda tx: int(tx.get("transactionIndex", 0)))

        receipts = self._fetch_receipts(number) if self.fetch_receipts and transactions else {}

        return [
            self._to_transaction_record(tx, number, receipts.get(_hex(tx["hash"])))
            for tx in transactions
        ]

    def _insert_ignore(self, model, values: Dict[str, Any], key: str) -> bool:
        dialect = self.db.get_bind().dialect.name

        if dialect == "postgresql":
            stmt = postgresql.insert(model).values(**values)
        elif dialect == "sqlite":
            stmt = sqlite.insert(model).values(**values)
        else:
            return self._add_if_absent(model, values, key)

        stmt = stmt.on_conflict_do_nothing(index_elements=[key])
        result = self.db.execute(stmt)
        self.db.commit()
        return result.rowcount > 0

    def _add_if_absent(self, model, values: Dict[str, Any], key: str) -> bool:
        lookup = {key: values[key]}
        if self.db.query(model).filter_by(**lookup).first():
            return False
        try:
            self.db.add(model(**values))
            self.db.commit()
            return True
        except IntegrityError:
            self.db.rollback()
            if self.db.query(model).filter_by(**lookup).first():
                logger.info("Concurrent insert detected, keeping existing row", **lookup)
                return False
            raise

    def persist_block(self, block: BlockSummary) -> bool:
        """
        Store a block; an already stored number is left untouched.

        Returns:
            bool: True if a new row was inserted

        Raises:
            StorageError: If the write fails
        """
        values = {
            "number": block.number,
            "hash": block.hash,
            "parent_hash": block.parent_hash,
            "timestamp": block.timestamp,
            "gas_used": block.gas_used,
            "gas_limit": block.gas_limit,
        }
        try:
            inserted = self._insert_ignore(Block, values, "number")
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError(f"Failed to store block {block.number}: {e}") from e

        if not inserted:
            logger.debug("Block already stored, skipping", number=block.number)
        return inserted

    def persist_transaction(self, tx: TransactionRecord) -> bool:
        """
        Store a transaction; an already stored hash is left untouched.

        Returns:
            bool: True if a new row was inserted

        Raises:
            StorageError: If the write fails
        """
        values = {
            "hash": tx.hash,
            "block_number": tx.block_number,
            "from_address": tx.from_address,
            "to_address": tx.to_address,
            "value": str(tx.value),
            "gas_used": tx.gas_used,
            "gas_price": str(tx.gas_price),
            "status": tx.status,
        }
        try:
            inserted = self._insert_ignore(Transaction, values, "hash")
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError(f"Failed to store transaction {tx.hash}: {e}") from e

        if not inserted:
            logger.debug("Transaction already stored, skipping", hash=tx.hash)
        return inserted

    def test_connection(self) -> ConnectionCheck:
        """
        Test the provider connection.

        Returns:
            ConnectionCheck: success flag with the head number or the error
        """
        try:
            return ConnectionCheck(success=True, block_number=int(self.w3.eth.block_number))
        except Exception as e:
            logger.warning("RPC connection test failed", rpc_url=self.rpc_url, error=str(e))
            return ConnectionCheck(success=False, error=str(e))

    @retry_on_rpc_error()
    def get_network_info(self) -> NetworkInfo:
        chain_id = int(self.w3.eth.chain_id)
        return NetworkInfo(chain_id=chain_id, name=KNOWN_NETWORKS.get(chain_id, "unknown"))
