"""
SolverEngine: owns the registry, chain clients, lock schedulers, watchers
and redeem executor for one solver process.
"""

import logging
from typing import Dict, Optional, Tuple

from ..config import SolverConfig
from ..core import (
    SwapDirection, SwapRecord, SolverError, CHAIN_AZTEC, CHAIN_BASE, TOKEN_DECIMALS,
)
from ..chains.base import ChainClient
from .executor import RedeemExecutor
from .registry import SwapRegistry
from .scheduler import LockScheduler
from .watcher import EventWatcher

log = logging.getLogger(__name__)

STATUS_ACCEPTED = "accepted"
STATUS_ALREADY_TRACKING = "already_tracking"


def format_amount(amount: int, decimals: int = TOKEN_DECIMALS) -> str:
    """Human-readable token amount (base units -> decimal string)."""
    whole, frac = divmod(amount, 10 ** decimals)
    return f"{whole}.{frac:0{decimals}d}"


class SolverEngine:
    """
    Wires the solver together.

    Args:
        config: Solver configuration
        clients: Chain clients keyed by chain name (CHAIN_AZTEC, CHAIN_BASE)
        registry: Optional pre-built registry
    """

    def __init__(self, config: SolverConfig, clients: Dict[str, ChainClient],
                 registry: SwapRegistry = None):
        self.config = config
        self.clients = clients
        self.registry = registry or SwapRegistry()
        self.executor = RedeemExecutor(self.registry, clients)

        self.schedulers: Dict[str, LockScheduler] = {
            CHAIN_AZTEC: LockScheduler(clients[CHAIN_AZTEC], clients[CHAIN_BASE],
                                       config.timelock_buffer),
            CHAIN_BASE: LockScheduler(clients[CHAIN_BASE], clients[CHAIN_AZTEC],
                                      config.timelock_buffer),
        }

        lookback = {
            CHAIN_AZTEC: config.aztec.lookback_blocks,
            CHAIN_BASE: config.evm.lookback_blocks,
        }
        self.watchers: Dict[str, EventWatcher] = {
            name: EventWatcher(
                client, self.registry, self.schedulers, self.executor,
                lookback_blocks=lookback[name],
                poll_interval=config.poll_interval,
                on_cycle=self.log_status if name == CHAIN_BASE else None,
            )
            for name, client in clients.items()
        }
        self.running = False

    @classmethod
    def from_config(cls, config: SolverConfig) -> "SolverEngine":
        """Build the engine with real network clients."""
        from ..chains.aztec import AztecClient
        from ..chains.evm import EVMClient

        evm = EVMClient(
            config.evm,
            peer_chain_name=config.aztec.chain_name,
            peer_solver_address=config.aztec.solver_address,
            token_symbol=config.token_symbol,
            tx_timeout=config.tx_timeout,
        )
        aztec = AztecClient(
            config.aztec,
            peer_chain_name=config.evm.chain_name,
            peer_solver_address=evm.solver_address,
            token_symbol=config.token_symbol,
            tx_timeout=config.tx_timeout,
        )
        return cls(config, {CHAIN_AZTEC: aztec, CHAIN_BASE: evm})

    @property
    def aztec(self) -> ChainClient:
        return self.clients[CHAIN_AZTEC]

    @property
    def base(self) -> ChainClient:
        return self.clients[CHAIN_BASE]

    # -------------------------------------------------------------------------
    # Intake
    # -------------------------------------------------------------------------

    def notify_lock(self, swap_id: str, direction: SwapDirection, amount: int,
                    hashlock_high: int, hashlock_low: int,
                    user_address: Optional[str] = None,
                    timelock: Optional[int] = None) -> Tuple[str, SwapRecord]:
        """
        Register a user lock reported out of band.

        Returns (status, record), status being "accepted" for a new swap or
        "already_tracking". A known swap that was waiting for its receiver
        address gets it filled in and its parked lock job resumed.
        """
        def factory() -> SwapRecord:
            return SwapRecord(
                swap_id=swap_id,
                direction=direction,
                amount=amount,
                hashlock_high=hashlock_high,
                hashlock_low=hashlock_low,
                counterparty_address=user_address or None,
                user_timelock=timelock or None,
            )

        record, created = self.registry.upsert_if_absent(swap_id, factory)
        scheduler = self.schedulers[record.direction.destination]

        if created:
            log.info(f"[HTTP] Received lock notification for swap {swap_id}")
            scheduler.enqueue(record)
            return STATUS_ACCEPTED, record

        if not record.counterparty_address and user_address:
            record.counterparty_address = user_address
            if not record.user_timelock and timelock:
                record.user_timelock = timelock
            scheduler.resume(swap_id)
        return STATUS_ALREADY_TRACKING, record

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def report_balances(self) -> Dict[str, Optional[int]]:
        """Log solver addresses and balances; None where a balance read failed."""
        balances = {}
        for name, client in self.clients.items():
            tag = f"[{name.capitalize()}]"
            try:
                balance = await client.get_balance()
            except SolverError as e:
                log.warning(f"{tag} Could not read solver balance: {e}")
                balances[name] = None
                continue

            balances[name] = balance
            log.info(f"{tag} Solver {client.solver_address}: "
                     f"{format_amount(balance)} {self.config.token_symbol}")
            if balance == 0:
                log.warning(f"{tag} Solver balance is zero, counter-locks on this chain will fail")
        return balances

    async def start(self):
        if self.running:
            return
        log.info("[Solver] Starting")
        await self.report_balances()
        for scheduler in self.schedulers.values():
            scheduler.start()
        for watcher in self.watchers.values():
            watcher.start()
        self.running = True

    async def stop(self):
        log.info("[Solver] Stopping")
        for watcher in self.watchers.values():
            await watcher.stop()
        for scheduler in self.schedulers.values():
            await scheduler.stop()
        await self.executor.drain()
        for client in self.clients.values():
            await client.close()
        self.running = False

    # -------------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------------

    def status_summary(self) -> Dict[str, int]:
        records = self.registry.list()
        return {
            "swaps": len(records),
            "awaitingLock": sum(1 for r in records if not r.solver_locked),
            "awaitingRedeem": sum(1 for r in records if r.solver_locked and not r.user_redeemed),
            "redeeming": self.executor.inflight,
            "aztecQueue": self.schedulers[CHAIN_AZTEC].queued,
            "baseQueue": self.schedulers[CHAIN_BASE].queued,
            "parked": sum(s.parked for s in self.schedulers.values()),
        }

    def log_status(self):
        status = self.status_summary()
        log.debug("[Solver] " + " ".join(f"{k}={v}" for k, v in status.items()))
