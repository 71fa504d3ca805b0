"""
zkzkp2p solver - cross-chain HTLC counterparty between Aztec and Base.

Watches both chains for user locks, counter-locks on the opposite chain,
and redeems the user's lock once the secret is revealed.

Usage:
    from solver import load_config, SolverEngine

    config = load_config()
    engine = SolverEngine.from_config(config)
    await engine.start()
"""

from .core import (
    SwapDirection,
    SwapState,
    SwapRecord,
    SolverError,
    ConfigError,
    ChainError,
    TransactionError,
    InsufficientFundsError,
    SourceLockError,
    TimelockError,
    InvalidSecretError,
    compute_reward,
    compute_lock_total,
    compute_solver_timelock,
    CHAIN_AZTEC,
    CHAIN_BASE,
)
from .hashlock import (
    split_secret,
    join_secret,
    hashlock_bytes32,
    sha256_hashlock,
    verify_secret,
    normalize_swap_id,
)
from .config import SolverConfig, AztecConfig, EVMConfig, load_config
from .swap import SolverEngine, SwapRegistry

__version__ = "0.1.0"
__all__ = [
    # Core types
    "SwapDirection",
    "SwapState",
    "SwapRecord",
    # Errors
    "SolverError",
    "ConfigError",
    "ChainError",
    "TransactionError",
    "InsufficientFundsError",
    "SourceLockError",
    "TimelockError",
    "InvalidSecretError",
    # Arithmetic
    "compute_reward",
    "compute_lock_total",
    "compute_solver_timelock",
    "CHAIN_AZTEC",
    "CHAIN_BASE",
    # Hashlock codec
    "split_secret",
    "join_secret",
    "hashlock_bytes32",
    "sha256_hashlock",
    "verify_secret",
    "normalize_swap_id",
    # Config
    "SolverConfig",
    "AztecConfig",
    "EVMConfig",
    "load_config",
    # Engine
    "SolverEngine",
    "SwapRegistry",
]
