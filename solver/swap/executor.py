"""
Redeem executor.

Redeems are fired as independent tasks the moment a secret is revealed;
they are not queued behind locks or each other.
"""

import asyncio
import logging
from typing import Dict, Optional, Set

from ..core import SwapRecord, SolverError, InvalidSecretError
from ..chains.base import ChainClient
from ..hashlock import verify_secret
from .registry import SwapRegistry

log = logging.getLogger(__name__)


class RedeemExecutor:
    """Claims the user's source-chain HTLC with the revealed secret."""

    def __init__(self, registry: SwapRegistry, clients: Dict[str, ChainClient]):
        self.registry = registry
        self.clients = clients
        self._inflight: Set[asyncio.Task] = set()
        self._redeeming: Set[str] = set()

    @property
    def inflight(self) -> int:
        return len(self._inflight)

    async def redeem(self, record: SwapRecord, secret: int) -> Optional[str]:
        """
        Redeem on the swap's source chain.

        On success the record is marked terminal and dropped from the
        registry. Failures are logged only.
        """
        if record.solver_redeemed or record.swap_id in self._redeeming:
            return None

        client = self.clients[record.direction.source]
        tag = f"[{client.name.capitalize()}]"
        self._redeeming.add(record.swap_id)
        try:
            if not verify_secret(secret, record.hashlock_high, record.hashlock_low):
                raise InvalidSecretError(f"Secret does not match hashlock {record.hashlock}")

            log.info(f"{tag} Redeeming swap {record.swap_id}")
            tx_hash = await client.redeem(record.swap_id, secret)
        except SolverError as e:
            log.error(f"{tag} Redeem for swap {record.swap_id} failed: {e}")
            return None
        except Exception:
            log.exception(f"{tag} Unexpected error redeeming swap {record.swap_id}")
            return None
        finally:
            self._redeeming.discard(record.swap_id)

        record.mark_solver_redeemed()
        self.registry.remove(record.swap_id)
        log.info(f"{tag} Swap {record.swap_id} complete: {tx_hash}")
        return tx_hash

    def fire(self, record: SwapRecord, secret: int) -> asyncio.Task:
        task = asyncio.create_task(self.redeem(record, secret))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task

    async def drain(self):
        """Wait for every in-flight redeem."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)
