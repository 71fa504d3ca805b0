"""
Common interface for chain clients.

The watcher, scheduler and executor only talk to chains through this
interface, so tests can swap in in-memory fakes.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional

from ..core import SwapRecord
from ..events import ChainEvent, HTLCState


@dataclass
class LockRequest:
    """Everything a destination chain needs to counter-lock one swap."""
    record: SwapRecord
    amount: int           # Total locked (swap amount + reward)
    reward: int
    timelock: int
    reward_timelock: int
    receiver: str         # User's address on this chain


class ChainClient(ABC):
    """Thin adapter over one ledger."""

    name: str = ""
    # Chain name the other side of this deployment uses in lock events
    peer_chain_name: str = ""
    # Destination contract requires reward * divisor >= amount (0 = no reward)
    reward_divisor: int = 0
    # Reward timelock offset before the main timelock (seconds)
    reward_timelock_offset: int = 0

    @property
    @abstractmethod
    def solver_address(self) -> str:
        """Solver's own address on this chain."""

    @abstractmethod
    async def get_block_number(self) -> int:
        """Current chain tip."""

    @abstractmethod
    async def get_timestamp(self) -> int:
        """Timestamp of the latest block (Unix seconds)."""

    @abstractmethod
    async def get_events(self, from_block: int, to_block: int) -> List[ChainEvent]:
        """Decoded HTLC events in [from_block, to_block]; malformed logs are skipped."""

    @abstractmethod
    async def get_balance(self) -> int:
        """Solver's token balance in base units."""

    @abstractmethod
    async def get_htlc(self, swap_id: str) -> Optional[HTLCState]:
        """Contract state of the HTLC for swap_id, or None if absent."""

    async def htlc_exists(self, swap_id: str) -> bool:
        return await self.get_htlc(swap_id) is not None

    @abstractmethod
    async def lock(self, request: LockRequest) -> str:
        """Submit the counter-lock and wait for confirmation. Returns tx hash."""

    @abstractmethod
    async def redeem(self, swap_id: str, secret: int) -> str:
        """Redeem the user's HTLC with the revealed secret. Returns tx hash."""

    def accepts_destination(self, dst_chain: Optional[str]) -> bool:
        """Whether a lock naming dst_chain is meant for this deployment's other chain.

        An unreadable destination (None) is accepted.
        """
        if not dst_chain or not self.peer_chain_name:
            return True
        return self.peer_chain_name.upper() in dst_chain.strip().upper()

    async def close(self):
        """Release network resources."""
