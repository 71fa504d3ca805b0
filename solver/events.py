"""
Decoded chain events.

Each chain client turns its own log format into one of these variants so the
watcher logic can treat both chains the same way.
"""

from dataclasses import dataclass
from typing import Optional, Union


@dataclass(frozen=True)
class Locked:
    """An HTLC lock.

    is_source is True for a user's source-side lock (Aztec SrcLocked, or a
    Base TokenLocked) and False for a destination-side lock (Aztec DstLocked).
    """
    chain: str
    swap_id: str
    hashlock_high: int
    hashlock_low: int
    amount: int
    is_source: bool = True
    timelock: Optional[int] = None
    sender: Optional[str] = None
    dst_chain: Optional[str] = None
    dst_address: Optional[str] = None   # None when the address is still pending
    block_number: Optional[int] = None


@dataclass(frozen=True)
class Redeemed:
    """An HTLC redeem, revealing the secret."""
    chain: str
    swap_id: str
    secret: int
    redeemer: Optional[str] = None
    block_number: Optional[int] = None


@dataclass(frozen=True)
class Refunded:
    """An HTLC refund after timelock expiry."""
    chain: str
    swap_id: str
    block_number: Optional[int] = None


ChainEvent = Union[Locked, Redeemed, Refunded]


# HTLC status values shared by both clients
HTLC_PENDING = "pending"
HTLC_REDEEMED = "redeemed"
HTLC_REFUNDED = "refunded"


@dataclass(frozen=True)
class HTLCState:
    """Contract-side view of one HTLC."""
    swap_id: str
    status: str
    amount: int = 0
    timelock: Optional[int] = None
    secret: Optional[int] = None

    @property
    def redeemed(self) -> bool:
        return self.status == HTLC_REDEEMED
