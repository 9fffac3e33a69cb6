"""Transaction status polling.

Polling is the authoritative source of transaction status. A poller runs on
a fixed interval and stops on the first terminal status, on cancellation or
when its attempt budget is spent.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from rampkit.anchors.models import TransactionStatus, is_terminal
from rampkit.flow.states import FlowError, TerminalStatusError, Transaction

logger = logging.getLogger(__name__)

FetchTransaction = Callable[[str], Awaitable[Optional[Transaction]]]


class StatusTracker:
    """Records observed statuses per transaction.

    Once a terminal status is seen it sticks: later observations of other
    statuses are logged and ignored.
    """

    def __init__(self):
        self._history: dict[str, list[TransactionStatus]] = {}

    def observe(self, transaction_id: str, status: TransactionStatus) -> TransactionStatus:
        """Record a status and return the effective one."""
        history = self._history.setdefault(transaction_id, [])

        if history and is_terminal(history[-1]):
            if status != history[-1]:
                logger.warning(
                    f"Ignoring {status.value} for {transaction_id}: "
                    f"already terminal ({history[-1].value})"
                )
            return history[-1]

        if not history or history[-1] != status:
            history.append(status)
            logger.debug(f"Transaction {transaction_id} -> {status.value}")
        return status

    def current(self, transaction_id: str) -> Optional[TransactionStatus]:
        history = self._history.get(transaction_id)
        return history[-1] if history else None

    def history(self, transaction_id: str) -> list[TransactionStatus]:
        return list(self._history.get(transaction_id, []))

    def is_terminal(self, transaction_id: str) -> bool:
        status = self.current(transaction_id)
        return status is not None and is_terminal(status)


class TransactionPoller:
    """Fixed-interval poller for one transaction.

    Only one wait runs at a time. ``cancel()`` stops it from any task; the
    awaiting caller then sees ``asyncio.CancelledError``.
    """

    def __init__(
        self,
        fetch: FetchTransaction,
        transaction_id: str,
        interval: float = 5.0,
        tracker: Optional[StatusTracker] = None,
        on_update: Optional[Callable[[Transaction], None]] = None,
        lock: Optional[asyncio.Lock] = None,
    ):
        self.fetch = fetch
        self.transaction_id = transaction_id
        self.interval = interval
        self.tracker = tracker or StatusTracker()
        self.on_update = on_update
        self._lock = lock or asyncio.Lock()
        self._task: Optional[asyncio.Task] = None
        self._cancelled = False
        self.polls = 0
        self.last: Optional[Transaction] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def poll_once(self) -> Optional[Transaction]:
        """Fetch the transaction once and record its status."""
        async with self._lock:
            transaction = await self.fetch(self.transaction_id)
        self.polls += 1

        if transaction is None:
            logger.warning(f"Transaction {self.transaction_id} not found (poll {self.polls})")
            return None

        status = self.tracker.observe(self.transaction_id, transaction.status)
        if status != transaction.status:
            transaction = transaction.model_copy(update={"status": status})

        self.last = transaction
        if self.on_update is not None:
            self.on_update(transaction)
        return transaction

    async def wait_until_terminal(self, max_attempts: Optional[int] = None) -> Transaction:
        """Poll until the transaction reaches a terminal status.

        Raises:
            FlowError: If ``max_attempts`` polls pass without a terminal status
            asyncio.CancelledError: If the poller is cancelled
        """
        return await self._spawn(self._until_terminal(max_attempts))

    async def wait_for_signable(self, max_attempts: int) -> Transaction:
        """Poll until the transaction carries a signable envelope.

        Raises:
            TerminalStatusError: If the transaction ends before becoming signable
            FlowError: If ``max_attempts`` polls pass without an envelope
            asyncio.CancelledError: If the poller is cancelled
        """
        return await self._spawn(self._until_signable(max_attempts))

    def cancel(self) -> None:
        """Stop polling. Safe to call repeatedly or when idle."""
        self._cancelled = True
        if self._task is not None and not self._task.done():
            logger.info(f"Cancelling poller for {self.transaction_id}")
            self._task.cancel()

    async def _spawn(self, coro: Awaitable[Transaction]) -> Transaction:
        if self._cancelled:
            coro.close()
            raise asyncio.CancelledError()
        if self.running:
            coro.close()
            raise FlowError(
                f"Already polling {self.transaction_id}", "POLL_IN_PROGRESS"
            )
        self._task = asyncio.ensure_future(coro)
        return await self._task

    async def _until_terminal(self, max_attempts: Optional[int]) -> Transaction:
        attempts = 0
        while True:
            transaction = await self.poll_once()
            attempts += 1
            if transaction is not None and is_terminal(transaction.status):
                logger.info(
                    f"Transaction {self.transaction_id} terminal: {transaction.status.value}"
                )
                return transaction
            if max_attempts is not None and attempts >= max_attempts:
                raise FlowError(
                    f"Transaction {self.transaction_id} not terminal after {attempts} polls",
                    "POLL_TIMEOUT",
                )
            await asyncio.sleep(self.interval)

    async def _until_signable(self, max_attempts: int) -> Transaction:
        attempts = 0
        while True:
            transaction = await self.poll_once()
            attempts += 1
            if transaction is not None:
                if getattr(transaction, "signable_transaction", None):
                    logger.info(
                        f"Signable transaction ready for {self.transaction_id} "
                        f"after {attempts} polls"
                    )
                    return transaction
                if is_terminal(transaction.status):
                    raise TerminalStatusError(self.transaction_id, transaction.status.value)
            if attempts >= max_attempts:
                raise FlowError(
                    f"No signable transaction for {self.transaction_id} after {attempts} polls",
                    "SIGNABLE_TIMEOUT",
                )
            await asyncio.sleep(self.interval)
