"""
Chain event watcher.

One watcher per chain polls HTLC events over block ranges, registers new
user locks, and hands revealed secrets to the redeem executor. The block
high-water mark only advances after a whole pass succeeds, so a failed pass
re-scans the same range on the next cycle.
"""

import asyncio
import logging
from typing import Callable, Dict, Optional

from ..core import SwapDirection, SwapRecord, SolverError
from ..chains.base import ChainClient
from ..events import ChainEvent, Locked, Redeemed, Refunded
from .executor import RedeemExecutor
from .registry import SwapRegistry
from .scheduler import LockScheduler

log = logging.getLogger(__name__)


class EventWatcher:
    """Polls one chain and routes its events."""

    def __init__(self, client: ChainClient, registry: SwapRegistry,
                 schedulers: Dict[str, LockScheduler], executor: RedeemExecutor,
                 lookback_blocks: int = 10, poll_interval: float = 10,
                 on_cycle: Optional[Callable[[], None]] = None):
        self.client = client
        self.registry = registry
        self.schedulers = schedulers
        self.executor = executor
        self.lookback_blocks = lookback_blocks
        self.poll_interval = poll_interval
        self.on_cycle = on_cycle

        self.next_block: Optional[int] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def tag(self) -> str:
        return f"[{self.client.name.capitalize()}]"

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self):
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run())

    async def stop(self):
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def run(self):
        """Poll, process, sleep. Iterations never overlap."""
        log.info(f"{self.tag} Watcher started (every {self.poll_interval}s)")
        while True:
            try:
                await self.poll_once()
            except SolverError as e:
                log.warning(f"{self.tag} Poll failed, will retry: {e}")
            except Exception:
                log.exception(f"{self.tag} Unexpected watcher error")

            if self.on_cycle:
                self.on_cycle()
            await asyncio.sleep(self.poll_interval)

    # -------------------------------------------------------------------------
    # Polling
    # -------------------------------------------------------------------------

    async def poll_once(self) -> int:
        """One full pass. Returns the number of events seen."""
        tip = await self.client.get_block_number()
        if self.next_block is None:
            self.next_block = max(tip - self.lookback_blocks, 0)
            log.info(f"{self.tag} Starting scan at block {self.next_block} (tip {tip})")

        count = 0
        if self.next_block <= tip:
            events = await self.client.get_events(self.next_block, tip)
            for event in events:
                self.handle(event)
            count = len(events)

        await self.reconcile()
        self.next_block = max(self.next_block, tip + 1)
        return count

    def handle(self, event: ChainEvent):
        if isinstance(event, Locked):
            self._on_locked(event)
        elif isinstance(event, Redeemed):
            self._on_redeemed(event)
        elif isinstance(event, Refunded):
            self._on_refunded(event)

    def _on_locked(self, event: Locked):
        if not event.is_source:
            # Destination-side locks are the solver's own counter-locks
            return

        if not self.client.accepts_destination(event.dst_chain):
            log.debug(f"{self.tag} Ignoring lock {event.swap_id} for {event.dst_chain}")
            return

        solver = self.client.solver_address
        if event.sender and solver and event.sender.lower() == solver.lower():
            return

        direction = SwapDirection.from_source(self.client.name)

        def factory() -> SwapRecord:
            return SwapRecord(
                swap_id=event.swap_id,
                direction=direction,
                amount=event.amount,
                hashlock_high=event.hashlock_high,
                hashlock_low=event.hashlock_low,
                counterparty_address=event.dst_address,
                user_timelock=event.timelock,
            )

        record, created = self.registry.upsert_if_absent(event.swap_id, factory)
        scheduler = self.schedulers[direction.destination]

        if created:
            log.info(f"{self.tag} New swap {event.swap_id}: {event.amount} "
                     f"({direction.value}) receiver={event.dst_address or 'pending'}")
            scheduler.enqueue(record)
            return

        if not record.counterparty_address and event.dst_address:
            record.counterparty_address = event.dst_address
            scheduler.resume(record.swap_id)

    def _on_redeemed(self, event: Redeemed):
        record = self.registry.get(event.swap_id)
        if record is None:
            return
        # Only the user's redeem of the solver's counter-lock reveals a usable secret
        if record.direction.destination != self.client.name:
            return
        if record.user_redeemed:
            return

        log.info(f"{self.tag} User redeemed swap {event.swap_id}, secret revealed")
        record.mark_user_redeemed()
        self.executor.fire(record, event.secret)

    def _on_refunded(self, event: Refunded):
        if event.swap_id in self.registry:
            log.warning(f"{self.tag} HTLC for swap {event.swap_id} was refunded")

    async def reconcile(self):
        """Read HTLC state for swaps awaiting a user redeem on this chain."""
        for record in self.registry.list():
            if record.direction.destination != self.client.name:
                continue
            if not record.solver_locked or record.user_redeemed:
                continue

            try:
                htlc = await self.client.get_htlc(record.swap_id)
            except SolverError as e:
                log.warning(f"{self.tag} State check for swap {record.swap_id} failed: {e}")
                continue

            if htlc is None or not htlc.redeemed or htlc.secret is None:
                continue
            if record.user_redeemed:
                continue

            log.info(f"{self.tag} Swap {record.swap_id} redeemed on-chain (state check)")
            record.mark_user_redeemed()
            self.executor.fire(record, htlc.secret)
