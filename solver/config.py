"""
Solver configuration.

Loaded from the environment, with an optional dotenv file
(.env.solver by default) taking precedence.
"""

import os
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Mapping

from dotenv import dotenv_values

from .core import (
    ConfigError,
    POLL_INTERVAL, TX_TIMEOUT, TIMELOCK_BUFFER,
    AZTEC_LOOKBACK_BLOCKS, BASE_LOOKBACK_BLOCKS,
)

log = logging.getLogger(__name__)

DEFAULT_ENV_FILE = ".env.solver"

REQUIRED_KEYS = [
    "EVM_SOLVER_PRIVATE_KEY",
    "AZTEC_SOLVER_ADDRESS",
    "AZTEC_TRAIN_ADDRESS",
    "AZTEC_TOKEN_ADDRESS",
    "BASE_TRAIN_ADDRESS",
    "BASE_TOKEN_ADDRESS",
]


@dataclass
class AztecConfig:
    """Aztec (chain A) configuration."""
    node_url: str = "https://devnet.aztec-labs.com"
    wallet_url: str = "http://localhost:8090"
    chain_id: str = "1674512022"  # Aztec devnet
    solver_address: str = ""
    train_address: str = ""
    token_address: str = ""
    chain_name: str = "AZTEC_DEVNET"
    lookback_blocks: int = AZTEC_LOOKBACK_BLOCKS


@dataclass
class EVMConfig:
    """Base (chain B) configuration."""
    rpc_url: str = "https://sepolia.base.org"
    chain_id: int = 84532  # Base Sepolia
    private_key: str = ""
    train_address: str = ""
    token_address: str = ""
    chain_name: str = "BASE_SEPOLIA"
    lookback_blocks: int = BASE_LOOKBACK_BLOCKS


@dataclass
class SolverConfig:
    """Top-level solver configuration."""
    aztec: AztecConfig
    evm: EVMConfig
    token_symbol: str = "USDC"
    poll_interval: float = POLL_INTERVAL
    tx_timeout: int = TX_TIMEOUT
    timelock_buffer: int = TIMELOCK_BUFFER
    http_host: str = "0.0.0.0"
    http_port: int = 3001
    log_level: str = "INFO"


def _int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw in (None, ""):
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{key} must be an integer, got {raw!r}")


def _float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw in (None, ""):
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{key} must be a number, got {raw!r}")


def load_config(env: Optional[Mapping[str, str]] = None,
                env_file: Optional[str] = None) -> SolverConfig:
    """
    Build SolverConfig.

    Args:
        env: Mapping to read from (default: os.environ merged with the dotenv file)
        env_file: Dotenv path (default: $SOLVER_ENV_FILE or .env.solver)

    Raises:
        ConfigError listing every missing required key
    """
    if env is None:
        merged = dict(os.environ)
        path = Path(env_file or os.environ.get("SOLVER_ENV_FILE", DEFAULT_ENV_FILE))
        if path.exists():
            file_values = {k: v for k, v in dotenv_values(path).items() if v is not None}
            merged.update(file_values)
            log.info(f"Loaded {len(file_values)} settings from {path}")
        env = merged

    missing = [key for key in REQUIRED_KEYS if not env.get(key)]
    if missing:
        raise ConfigError(f"Missing required env vars: {', '.join(missing)}")

    aztec = AztecConfig(
        node_url=env.get("AZTEC_NODE_URL") or AztecConfig.node_url,
        wallet_url=env.get("AZTEC_WALLET_URL") or AztecConfig.wallet_url,
        chain_id=env.get("AZTEC_CHAIN_ID") or AztecConfig.chain_id,
        solver_address=env["AZTEC_SOLVER_ADDRESS"],
        train_address=env["AZTEC_TRAIN_ADDRESS"],
        token_address=env["AZTEC_TOKEN_ADDRESS"],
        chain_name=env.get("AZTEC_CHAIN_NAME") or AztecConfig.chain_name,
        lookback_blocks=_int(env, "AZTEC_LOOKBACK_BLOCKS", AZTEC_LOOKBACK_BLOCKS),
    )

    evm = EVMConfig(
        rpc_url=env.get("BASE_SEPOLIA_RPC") or EVMConfig.rpc_url,
        chain_id=_int(env, "BASE_CHAIN_ID", EVMConfig.chain_id),
        private_key=env["EVM_SOLVER_PRIVATE_KEY"],
        train_address=env["BASE_TRAIN_ADDRESS"],
        token_address=env["BASE_TOKEN_ADDRESS"],
        chain_name=env.get("BASE_CHAIN_NAME") or EVMConfig.chain_name,
        lookback_blocks=_int(env, "BASE_LOOKBACK_BLOCKS", BASE_LOOKBACK_BLOCKS),
    )

    config = SolverConfig(
        aztec=aztec,
        evm=evm,
        token_symbol=env.get("TOKEN_SYMBOL") or "USDC",
        poll_interval=_float(env, "SOLVER_POLL_INTERVAL", POLL_INTERVAL),
        tx_timeout=_int(env, "SOLVER_TX_TIMEOUT", TX_TIMEOUT),
        timelock_buffer=_int(env, "SOLVER_TIMELOCK_BUFFER", TIMELOCK_BUFFER),
        http_host=env.get("SOLVER_HTTP_HOST") or "0.0.0.0",
        http_port=_int(env, "SOLVER_HTTP_PORT", 3001),
        log_level=(env.get("LOG_LEVEL") or "INFO").upper(),
    )

    if config.timelock_buffer <= 0:
        raise ConfigError("SOLVER_TIMELOCK_BUFFER must be positive")
    if config.poll_interval <= 0:
        raise ConfigError("SOLVER_POLL_INTERVAL must be positive")

    return config
