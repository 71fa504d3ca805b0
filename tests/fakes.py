"""
In-memory chain clients for solver tests.

FakeChainClient implements the chain client interface with dict-backed
HTLC state and block-indexed events, and records every lock and redeem.
"""

import asyncio
import os
import sys
from typing import Dict, List, Optional

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from solver.chains.base import ChainClient, LockRequest
from solver.config import SolverConfig, AztecConfig, EVMConfig
from solver.core import (
    CHAIN_AZTEC, CHAIN_BASE,
    AZTEC_REWARD_DIVISOR, AZTEC_REWARD_TIMELOCK_OFFSET, BASE_REWARD_TIMELOCK_OFFSET,
)
from solver.events import (
    ChainEvent, Locked, Redeemed, HTLCState, HTLC_PENDING, HTLC_REDEEMED,
)
from solver.hashlock import sha256_hashlock, split_secret, normalize_swap_id

NOW = 1_700_000_000
USER_TIMELOCK = NOW + 2 * 3600

SOLVER_EVM = "0x" + "ab" * 20
SOLVER_AZTEC = "0x" + "cd" * 32
USER_EVM = "0x" + "12" * 20
USER_AZTEC = "0x" + "34" * 32


class FakeChainClient(ChainClient):
    """Dict-backed chain."""

    def __init__(self, name: str, peer_chain_name: str, solver_address: str,
                 reward_divisor: int = 0, reward_timelock_offset: int = 0,
                 balance: int = 10 ** 12, timestamp: int = NOW, block_number: int = 100):
        self.name = name
        self.peer_chain_name = peer_chain_name
        self.reward_divisor = reward_divisor
        self.reward_timelock_offset = reward_timelock_offset
        self._solver_address = solver_address

        self.balance = balance
        self.timestamp = timestamp
        self.block_number = block_number
        self.events: Dict[int, List[ChainEvent]] = {}
        self.htlcs: Dict[str, HTLCState] = {}

        self.lock_requests: List[LockRequest] = []
        self.redeems: List[tuple] = []
        self.trace: List[tuple] = []
        self.event_queries: List[tuple] = []

        self.lock_delay = 0.0
        self.lock_error: Optional[Exception] = None
        self.redeem_error: Optional[Exception] = None
        self.events_error: Optional[Exception] = None
        self.closed = False

    @property
    def solver_address(self) -> str:
        return self._solver_address

    async def get_block_number(self) -> int:
        return self.block_number

    async def get_timestamp(self) -> int:
        return self.timestamp

    async def get_events(self, from_block: int, to_block: int) -> List[ChainEvent]:
        self.event_queries.append((from_block, to_block))
        if self.events_error is not None:
            raise self.events_error
        events = []
        for block in range(from_block, to_block + 1):
            events.extend(self.events.get(block, []))
        return events

    async def get_balance(self) -> int:
        return self.balance

    async def get_htlc(self, swap_id: str) -> Optional[HTLCState]:
        return self.htlcs.get(swap_id)

    async def lock(self, request: LockRequest) -> str:
        swap_id = request.record.swap_id
        self.trace.append(("start", swap_id))
        if self.lock_delay:
            await asyncio.sleep(self.lock_delay)
        if self.lock_error is not None:
            self.trace.append(("fail", swap_id))
            raise self.lock_error
        self.lock_requests.append(request)
        self.balance -= request.amount
        self.htlcs[swap_id] = HTLCState(
            swap_id=swap_id, status=HTLC_PENDING,
            amount=request.amount, timelock=request.timelock,
        )
        self.trace.append(("end", swap_id))
        return f"0xlock{len(self.lock_requests)}"

    async def redeem(self, swap_id: str, secret: int) -> str:
        if self.redeem_error is not None:
            raise self.redeem_error
        self.redeems.append((swap_id, secret))
        return f"0xredeem{len(self.redeems)}"

    async def close(self):
        self.closed = True

    # -------------------------------------------------------------------------
    # Test helpers
    # -------------------------------------------------------------------------

    def add_user_htlc(self, swap_id: str, amount: int = 10_000_000, timelock: int = USER_TIMELOCK):
        """A user's pending lock on this chain."""
        self.htlcs[swap_id] = HTLCState(
            swap_id=swap_id, status=HTLC_PENDING, amount=amount, timelock=timelock,
        )

    def emit(self, event: ChainEvent, block: int = None):
        """
        Add an event at block (default: a new block past the tip).

        A source-side Locked event also creates the user's HTLC.
        """
        if isinstance(event, Locked) and event.is_source:
            self.add_user_htlc(event.swap_id, event.amount, event.timelock)
        if block is None:
            self.block_number += 1
            block = self.block_number
        self.block_number = max(self.block_number, block)
        self.events.setdefault(block, []).append(event)

    def user_redeems(self, swap_id: str, secret: int, emit: bool = True):
        """The user claims the solver's HTLC, revealing secret."""
        htlc = self.htlcs[swap_id]
        self.htlcs[swap_id] = HTLCState(
            swap_id=swap_id, status=HTLC_REDEEMED,
            amount=htlc.amount, timelock=htlc.timelock, secret=secret,
        )
        if emit:
            self.emit(Redeemed(chain=self.name, swap_id=swap_id, secret=secret))


def make_clients(**kwargs) -> Dict[str, FakeChainClient]:
    """Aztec and Base fakes with the real reward and timelock rules."""
    aztec = FakeChainClient(
        CHAIN_AZTEC, "BASE_SEPOLIA", SOLVER_AZTEC,
        reward_divisor=AZTEC_REWARD_DIVISOR,
        reward_timelock_offset=AZTEC_REWARD_TIMELOCK_OFFSET,
        **kwargs,
    )
    base = FakeChainClient(
        CHAIN_BASE, "AZTEC_DEVNET", SOLVER_EVM,
        reward_timelock_offset=BASE_REWARD_TIMELOCK_OFFSET,
        **kwargs,
    )
    return {CHAIN_AZTEC: aztec, CHAIN_BASE: base}


def make_config(**overrides) -> SolverConfig:
    config = SolverConfig(
        aztec=AztecConfig(
            solver_address=SOLVER_AZTEC,
            train_address="0x" + "a1" * 32,
            token_address="0x" + "a2" * 32,
        ),
        evm=EVMConfig(
            private_key="0x" + "11" * 32,
            train_address="0x" + "b1" * 20,
            token_address="0x" + "b2" * 20,
        ),
        poll_interval=0.01,
    )
    for key, value in overrides.items():
        setattr(config, key, value)
    return config


def make_secret(seed: int = 1):
    """Return (secret, hashlock_high, hashlock_low)."""
    secret = int.from_bytes(os.urandom(31), "big") * 256 + seed
    high, low = split_secret(sha256_hashlock(secret))
    return secret, high, low


def swap_id(n: int) -> str:
    return normalize_swap_id(n)


def user_lock(chain: str, n: int, high: int, low: int, amount: int = 10_000_000,
              dst_address: Optional[str] = None, dst_chain: Optional[str] = None,
              sender: Optional[str] = None, timelock: int = USER_TIMELOCK) -> Locked:
    """A user's source-side lock on chain."""
    if chain == CHAIN_AZTEC:
        dst_chain = dst_chain if dst_chain is not None else "BASE_SEPOLIA"
    else:
        dst_chain = dst_chain if dst_chain is not None else "AZTEC_DEVNET"
        sender = sender or USER_EVM
    return Locked(
        chain=chain,
        swap_id=swap_id(n),
        hashlock_high=high,
        hashlock_low=low,
        amount=amount,
        is_source=True,
        timelock=timelock,
        sender=sender,
        dst_chain=dst_chain,
        dst_address=dst_address,
    )
