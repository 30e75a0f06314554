"""Async ledger client wrapping the synchronous algod REST client.

The algod SDK client blocks on HTTP, so every call runs in a small thread
pool and is exposed as a coroutine. Read-only calls are retried with
exponential backoff on transport failures. Group submission is never
retried: once a group may have reached the network, the only safe follow-up
is to wait for it or re-read state.
"""
import asyncio
import base64
import urllib.error
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional, Union

import structlog
from algosdk import error as algosdk_error
from algosdk import transaction
from algosdk.v2client import algod

from trade_escrow.core.config import AlgodConfig, algod_config
from trade_escrow.core.errors import (
    BoxReferenceMissing, ConfirmationTimeout, ContractLogicRejected,
    InsufficientBalance, SubmissionError, Unclassified
)

logger = structlog.get_logger(__name__)

GlobalStateValue = Union[int, bytes]


class RetryConfig:
    """Configuration for retry logic."""
    DEFAULT_MAX_RETRIES = 3
    DEFAULT_BASE_DELAY = 0.5  # seconds
    DEFAULT_MAX_DELAY = 8.0  # seconds
    DEFAULT_EXPONENTIAL_BASE = 2.0


TRANSPORT_ERRORS = (urllib.error.URLError, ConnectionError, TimeoutError)


def with_retry(
    max_retries: int = RetryConfig.DEFAULT_MAX_RETRIES,
    base_delay: float = RetryConfig.DEFAULT_BASE_DELAY,
    max_delay: float = RetryConfig.DEFAULT_MAX_DELAY,
    exponential_base: float = RetryConfig.DEFAULT_EXPONENTIAL_BASE,
    retryable_exceptions: tuple = TRANSPORT_ERRORS
):
    """Decorator for adding retry logic with exponential backoff.

    Only apply this to read-only calls.

    Args:
        max_retries: Maximum number of retry attempts
        base_delay: Initial delay between retries in seconds
        max_delay: Maximum delay between retries in seconds
        exponential_base: Base for exponential backoff calculation
        retryable_exceptions: Tuple of exceptions that should trigger a retry
    """
    def decorator(func):
        async def wrapper(*args, **kwargs):
            last_exception = None

            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)
                except retryable_exceptions as e:
                    last_exception = e
                    if attempt < max_retries:
                        delay = min(
                            base_delay * (exponential_base ** attempt),
                            max_delay
                        )
                        logger.warning(
                            f"{func.__name__}.retry_attempt",
                            attempt=attempt + 1,
                            max_retries=max_retries,
                            delay=delay,
                            error=str(e)
                        )
                        await asyncio.sleep(delay)

            logger.error(
                f"{func.__name__}.max_retries_exceeded",
                max_retries=max_retries,
                last_error=str(last_exception)
            )
            raise last_exception

        wrapper.__name__ = func.__name__
        wrapper.__doc__ = func.__doc__
        return wrapper
    return decorator


# =============================================================================
# Rejection Classification
# =============================================================================

_BOX_MARKERS = ("invalid box reference", "box read budget", "box write budget")
_CONTRACT_MARKERS = ("assert failed", "err opcode", "rejected by logic", "rejected by approvalprogram")
_BALANCE_MARKERS = ("overspend", "below min")
_LOGIC_MARKERS = ("logic eval error",)


def classify_rejection(message: str) -> SubmissionError:
    """Map a ledger rejection message to a SubmissionError subclass.

    Logic-eval messages carry a trace of recent opcodes, so only exact
    algod phrases are matched, and contract failures are checked before
    the balance phrases. The original message is kept verbatim.
    """
    lowered = message.lower()
    if any(marker in lowered for marker in _BOX_MARKERS):
        return BoxReferenceMissing(message)
    if any(marker in lowered for marker in _CONTRACT_MARKERS):
        return ContractLogicRejected(message)
    if any(marker in lowered for marker in _BALANCE_MARKERS):
        return InsufficientBalance(message)
    if any(marker in lowered for marker in _LOGIC_MARKERS):
        return ContractLogicRejected(message)
    return Unclassified(message)


def _is_not_found(error: algosdk_error.AlgodHTTPError) -> bool:
    return getattr(error, "code", None) == 404 or "not found" in str(error).lower()


# =============================================================================
# Ledger Client
# =============================================================================

class AlgodLedgerClient:
    """Async facade over algod for the calls the escrow protocol needs.

    Attributes:
        algod: Underlying synchronous SDK client
    """

    def __init__(self, algod_client: algod.AlgodClient, max_workers: int = 4):
        self.algod = algod_client
        self._executor = ThreadPoolExecutor(max_workers=max_workers)

    async def _call(self, fn, *args, **kwargs):
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(self._executor, lambda: fn(*args, **kwargs))

    @with_retry()
    async def suggested_params(self) -> transaction.SuggestedParams:
        """Fetch current network parameters (fee, validity window, genesis)."""
        return await self._call(self.algod.suggested_params)

    @with_retry()
    async def get_box(self, app_id: int, name: bytes) -> Optional[bytes]:
        """Fetch an application box.

        Returns:
            Raw box value, or None if the box does not exist
        """
        try:
            response = await self._call(self.algod.application_box_by_name, app_id, name)
        except algosdk_error.AlgodHTTPError as e:
            if _is_not_found(e):
                logger.debug("ledger.box_not_found", app_id=app_id, box=name.hex())
                return None
            raise
        return base64.b64decode(response["value"])

    @with_retry()
    async def get_global_state(self, app_id: int) -> Dict[str, GlobalStateValue]:
        """Fetch application global state as a key -> int/bytes mapping."""
        info = await self._call(self.algod.application_info, app_id)
        state: Dict[str, GlobalStateValue] = {}
        for item in info.get("params", {}).get("global-state", []):
            key = base64.b64decode(item["key"]).decode("utf-8", errors="replace")
            value = item["value"]
            if value.get("type") == 2:
                state[key] = int(value.get("uint", 0))
            else:
                state[key] = base64.b64decode(value.get("bytes", ""))
        return state

    @with_retry()
    async def is_opted_in(self, address: str, asset_id: int) -> bool:
        """Check whether an account holds (or can hold) an asset."""
        try:
            await self._call(self.algod.account_asset_info, address, asset_id)
        except algosdk_error.AlgodHTTPError as e:
            if _is_not_found(e):
                return False
            raise
        return True

    async def send_group(self, signed_transactions: List[bytes]) -> str:
        """Submit a signed transaction group. Never retried.

        Returns:
            Transaction id of the first transaction in the group

        Raises:
            SubmissionError: Classified ledger rejection
        """
        payload = base64.b64encode(b"".join(signed_transactions)).decode("ascii")
        try:
            tx_id = await self._call(self.algod.send_raw_transaction, payload)
        except algosdk_error.AlgodHTTPError as e:
            rejection = classify_rejection(str(e))
            logger.error(
                "ledger.group_rejected",
                group_size=len(signed_transactions),
                category=type(rejection).__name__,
                error=str(e),
            )
            raise rejection from e

        logger.info("ledger.group_submitted", tx_id=tx_id, group_size=len(signed_transactions))
        return tx_id

    async def wait_for_confirmation(self, tx_id: str, max_rounds: int) -> Dict[str, Any]:
        """Wait a bounded number of rounds for a transaction to confirm.

        Returns:
            Pending transaction info including 'confirmed-round' and 'logs'

        Polls are retried like any other read. If they keep failing the
        outcome is unknown, which is reported the same way as a timeout.

        Raises:
            SubmissionError: If the node evicted the transaction from its pool
            ConfirmationTimeout: If it is still pending after max_rounds, or
                the node could not be polled
        """
        try:
            status = await self._status()
            current_round = status.get("last-round", 0)

            for _ in range(max_rounds):
                info = await self._pending_info(tx_id)
                if info.get("confirmed-round", 0) > 0:
                    logger.info(
                        "ledger.transaction_confirmed",
                        tx_id=tx_id,
                        confirmed_round=info["confirmed-round"],
                    )
                    return info
                if info.get("pool-error"):
                    raise classify_rejection(info["pool-error"])
                current_round += 1
                await self._status_after_block(current_round)
        except TRANSPORT_ERRORS + (algosdk_error.AlgodHTTPError,) as e:
            # The group is already submitted; only its outcome is unknown
            logger.warning(
                "ledger.confirmation_poll_failed",
                tx_id=tx_id,
                rounds=max_rounds,
                error=str(e),
            )
            raise ConfirmationTimeout(tx_id, max_rounds) from e

        logger.warning("ledger.confirmation_timeout", tx_id=tx_id, rounds=max_rounds)
        raise ConfirmationTimeout(tx_id, max_rounds)

    @with_retry()
    async def _status(self) -> Dict[str, Any]:
        return await self._call(self.algod.status)

    @with_retry()
    async def _pending_info(self, tx_id: str) -> Dict[str, Any]:
        """Pending info; a txid the node has not indexed yet reads as pending."""
        try:
            return await self._call(self.algod.pending_transaction_info, tx_id)
        except algosdk_error.AlgodHTTPError as e:
            if _is_not_found(e):
                return {"confirmed-round": 0, "pool-error": ""}
            raise

    @with_retry()
    async def _status_after_block(self, round_number: int) -> Dict[str, Any]:
        return await self._call(self.algod.status_after_block, round_number)

    async def close(self):
        """Release the executor threads."""
        self._executor.shutdown(wait=False)


def create_ledger_client(
    config: Optional[AlgodConfig] = None
) -> AlgodLedgerClient:
    """Create a ledger client from algod configuration.

    Args:
        config: Algod settings (default from environment)

    Returns:
        AlgodLedgerClient
    """
    config = config or algod_config
    client = algod.AlgodClient(config.token, config.address, headers=config.headers)
    logger.info("ledger.client_created", network=config.network, address=config.address)
    return AlgodLedgerClient(client, max_workers=config.executor_workers)
