"""
Core types and interfaces for the swap solver.
"""

import time
from enum import Enum
from dataclasses import dataclass, field
from typing import Optional, Dict, Any

from .hashlock import hashlock_bytes32


class SwapDirection(Enum):
    """Which chain the user locked on first."""
    AZTEC_TO_BASE = "aztec_to_base"   # User locks on Aztec, receives on Base
    BASE_TO_AZTEC = "base_to_aztec"   # User locks on Base, receives on Aztec

    @property
    def source(self) -> str:
        """Chain holding the user's lock (solver redeems here)."""
        return CHAIN_AZTEC if self is SwapDirection.AZTEC_TO_BASE else CHAIN_BASE

    @property
    def destination(self) -> str:
        """Chain holding the solver's counter-lock (user redeems here)."""
        return CHAIN_BASE if self is SwapDirection.AZTEC_TO_BASE else CHAIN_AZTEC

    @classmethod
    def from_source(cls, chain: str) -> "SwapDirection":
        if chain == CHAIN_AZTEC:
            return cls.AZTEC_TO_BASE
        if chain == CHAIN_BASE:
            return cls.BASE_TO_AZTEC
        raise ValueError(f"Unknown chain: {chain}")


class SwapState(Enum):
    """Swap lifecycle states, derived from the record flags."""
    CREATED = "created"                   # User lock seen, counter-lock pending
    SOLVER_LOCKED = "solver_locked"       # Counter-lock confirmed on destination
    USER_REDEEMED = "user_redeemed"       # User redeemed, secret revealed
    SOLVER_REDEEMED = "solver_redeemed"   # Solver redeemed on source (terminal)


# =============================================================================
# Errors
# =============================================================================

class SolverError(Exception):
    """Base class for solver errors."""


class ConfigError(SolverError):
    """Missing or invalid configuration."""


class ChainError(SolverError):
    """RPC or transport failure talking to a chain."""


class TransactionError(ChainError):
    """Transaction reverted, failed or timed out."""

    def __init__(self, message: str, tx_hash: Optional[str] = None):
        super().__init__(message)
        self.tx_hash = tx_hash


class InsufficientFundsError(SolverError):
    """Solver balance is below the required lock total."""


class SourceLockError(SolverError):
    """User lock on the source chain is missing or does not match the swap."""


class TimelockError(SolverError):
    """No safe solver timelock exists for this swap."""


class InvalidSecretError(SolverError):
    """Revealed secret does not match the swap hashlock."""


# =============================================================================
# Swap record
# =============================================================================

@dataclass
class SwapRecord:
    """
    In-memory state of one swap.

    Flags only move forward: solver_locked, then user_redeemed, then
    solver_redeemed. The hashlock halves never change after creation.
    """
    swap_id: str                      # 0x + 64 hex chars
    direction: SwapDirection
    amount: int                       # Token base units (6 decimals)
    hashlock_high: int
    hashlock_low: int
    counterparty_address: Optional[str] = None   # Receiver on destination chain
    user_timelock: Optional[int] = None          # Unix seconds, source chain
    solver_locked: bool = False
    user_redeemed: bool = False
    solver_redeemed: bool = False
    created_at: int = field(default_factory=lambda: int(time.time() * 1000))

    @property
    def hashlock(self) -> str:
        """Hashlock as a bytes32 hex string (Base representation)."""
        return hashlock_bytes32(self.hashlock_high, self.hashlock_low)

    @property
    def state(self) -> SwapState:
        if self.solver_redeemed:
            return SwapState.SOLVER_REDEEMED
        if self.user_redeemed:
            return SwapState.USER_REDEEMED
        if self.solver_locked:
            return SwapState.SOLVER_LOCKED
        return SwapState.CREATED

    def mark_solver_locked(self):
        self.solver_locked = True

    def mark_user_redeemed(self):
        # A redeem of our HTLC proves the counter-lock landed, even if the
        # lock confirmation itself was lost to a timeout.
        self.solver_locked = True
        self.user_redeemed = True

    def mark_solver_redeemed(self):
        self.mark_user_redeemed()
        self.solver_redeemed = True

    def to_summary(self) -> Dict[str, Any]:
        """Listing view used by GET /swaps."""
        return {
            "swapId": self.swap_id,
            "direction": self.direction.value,
            "amount": str(self.amount),
            "solverLocked": self.solver_locked,
            "userRedeemed": self.user_redeemed,
            "solverRedeemed": self.solver_redeemed,
            "createdAt": self.created_at,
        }

    def to_dict(self) -> Dict[str, Any]:
        """Detail view used by GET /swap/{id}."""
        data = self.to_summary()
        data.update({
            "state": self.state.value,
            "hashlock": self.hashlock,
            "hashlockHigh": str(self.hashlock_high),
            "hashlockLow": str(self.hashlock_low),
            "counterpartyAddress": self.counterparty_address,
            "userTimelock": self.user_timelock,
        })
        return data


# =============================================================================
# Lock arithmetic
# =============================================================================

def compute_reward(amount: int, reward_divisor: int) -> int:
    """
    Smallest reward satisfying reward * divisor >= amount.

    A divisor of 0 means the destination contract does not require a reward.
    """
    if amount < 0:
        raise ValueError("amount must be non-negative")
    if not reward_divisor:
        return 0
    return (amount + reward_divisor - 1) // reward_divisor


def compute_lock_total(amount: int, reward_divisor: int) -> tuple[int, int]:
    """Return (reward, total) to lock on the destination chain."""
    reward = compute_reward(amount, reward_divisor)
    return reward, amount + reward


def compute_solver_timelock(user_timelock: int, buffer_seconds: int, now: int) -> int:
    """
    Solver timelock: the user's timelock minus the safety buffer.

    Raises TimelockError if that moment is not strictly in the future,
    since the destination contract would reject it and the solver could
    not refund in time anyway.
    """
    if buffer_seconds <= 0:
        raise ValueError("timelock buffer must be positive")
    timelock = user_timelock - buffer_seconds
    if timelock <= now:
        raise TimelockError(
            f"User timelock {user_timelock} leaves no room for a "
            f"{buffer_seconds}s buffer at chain time {now}"
        )
    return timelock


# =============================================================================
# Constants
# =============================================================================

CHAIN_AZTEC = "aztec"
CHAIN_BASE = "base"

TOKEN_DECIMALS = 6

# Timing defaults (seconds)
POLL_INTERVAL = 10
TX_TIMEOUT = 600
TIMELOCK_BUFFER = 3600

# Look-back windows seeded on startup (blocks)
AZTEC_LOOKBACK_BLOCKS = 10
BASE_LOOKBACK_BLOCKS = 100

# Aztec Train contract requires reward * 10 >= amount
AZTEC_REWARD_DIVISOR = 10
BASE_REWARD_DIVISOR = 0

# Reward timelock sits this far before the main timelock
AZTEC_REWARD_TIMELOCK_OFFSET = 300
BASE_REWARD_TIMELOCK_OFFSET = 100
