"""
Per-chain counter-lock scheduler.

Each destination chain gets one FIFO queue drained by a single worker task,
so at most one lock transaction per chain is in flight. Jobs are never
retried: a failed job is logged and dropped, leaving the swap visible as
stuck through the control API.
"""

import asyncio
import logging
from typing import Dict, Optional

from ..core import (
    SwapRecord, SolverError, InsufficientFundsError, SourceLockError, TimelockError,
    compute_lock_total, compute_solver_timelock, TIMELOCK_BUFFER,
)
from ..chains.base import ChainClient, LockRequest
from ..events import HTLC_PENDING

log = logging.getLogger(__name__)


class LockScheduler:
    """
    Serializes counter-locks on one destination chain.

    Jobs whose record has no counterparty address yet are parked until
    resume() is called for them.
    """

    def __init__(self, destination: ChainClient, source: ChainClient,
                 timelock_buffer: int = TIMELOCK_BUFFER):
        self.destination = destination
        self.source = source
        self.timelock_buffer = timelock_buffer

        self._queue: "asyncio.Queue[SwapRecord]" = asyncio.Queue()
        self._parked: Dict[str, SwapRecord] = {}
        self._worker: Optional[asyncio.Task] = None
        self.active: Optional[str] = None   # swap id of the in-flight job

    @property
    def tag(self) -> str:
        return f"[{self.destination.name.capitalize()}]"

    @property
    def queued(self) -> int:
        return self._queue.qsize()

    @property
    def parked(self) -> int:
        return len(self._parked)

    def is_parked(self, swap_id: str) -> bool:
        return swap_id in self._parked

    def enqueue(self, record: SwapRecord):
        self._queue.put_nowait(record)
        log.info(f"{self.tag} Queued counter-lock for swap {record.swap_id} "
                 f"(queue depth {self._queue.qsize()})")

    def resume(self, swap_id: str) -> bool:
        """Re-enqueue a parked job. Returns False if nothing was parked."""
        record = self._parked.pop(swap_id, None)
        if record is None:
            return False
        log.info(f"{self.tag} Resuming parked swap {swap_id}")
        self.enqueue(record)
        return True

    def start(self):
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run())

    async def stop(self):
        if self._worker is None:
            return
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None

    async def join(self):
        """Wait until every queued job has reached a terminal outcome."""
        await self._queue.join()

    async def _run(self):
        while True:
            record = await self._queue.get()
            self.active = record.swap_id
            try:
                await self.process(record)
            except SolverError as e:
                log.error(f"{self.tag} Lock for swap {record.swap_id} dropped: {e}")
            except Exception:
                log.exception(f"{self.tag} Unexpected error locking swap {record.swap_id}")
            finally:
                self.active = None
                self._queue.task_done()

    async def _user_timelock(self, record: SwapRecord) -> int:
        """
        Read the user's HTLC on the source chain and return its timelock.

        The on-chain lock is the only trusted source: a timelock already on
        the record (from an event or a notification) must agree with it.
        """
        source = self.source.name
        htlc = await self.source.get_htlc(record.swap_id)
        if htlc is None:
            raise SourceLockError(f"No user lock for swap {record.swap_id} on {source}")
        if htlc.status != HTLC_PENDING:
            raise SourceLockError(f"User lock for swap {record.swap_id} is {htlc.status} on {source}")
        if htlc.amount != record.amount:
            raise SourceLockError(
                f"User lock amount {htlc.amount} on {source} does not match {record.amount}"
            )
        if not htlc.timelock:
            raise TimelockError(f"User timelock for swap {record.swap_id} unknown on {source}")
        if record.user_timelock and record.user_timelock != htlc.timelock:
            raise SourceLockError(
                f"Reported timelock {record.user_timelock} does not match "
                f"{htlc.timelock} on {source}"
            )

        record.user_timelock = htlc.timelock
        return htlc.timelock

    async def process(self, record: SwapRecord) -> Optional[str]:
        """
        Run one counter-lock job.

        Returns the lock tx hash, or None when the job was skipped or parked.
        Raises SolverError subclasses on failure.
        """
        dest = self.destination

        if record.solver_locked:
            log.debug(f"{self.tag} Swap {record.swap_id} already locked, skipping")
            return None

        if not record.counterparty_address:
            self._parked[record.swap_id] = record
            log.warning(f"{self.tag} Swap {record.swap_id} has no receiver address yet, parked")
            return None

        reward, total = compute_lock_total(record.amount, dest.reward_divisor)

        balance = await dest.get_balance()
        if balance < total:
            raise InsufficientFundsError(
                f"Balance {balance} < required {total} on {dest.name}"
            )

        user_timelock = await self._user_timelock(record)
        now = await dest.get_timestamp()
        timelock = compute_solver_timelock(user_timelock, self.timelock_buffer, now)

        if await dest.htlc_exists(record.swap_id):
            log.info(f"{self.tag} HTLC for swap {record.swap_id} already exists, marking locked")
            record.mark_solver_locked()
            return None

        request = LockRequest(
            record=record,
            amount=total,
            reward=reward,
            timelock=timelock,
            reward_timelock=timelock - dest.reward_timelock_offset,
            receiver=record.counterparty_address,
        )
        tx_hash = await dest.lock(request)
        record.mark_solver_locked()
        log.info(f"{self.tag} Locked {total} (reward {reward}) for swap {record.swap_id}: {tx_hash}")
        return tx_hash
