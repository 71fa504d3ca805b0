"""
Aztec client for the swap solver.

Reads come from an Aztec node over JSON-RPC. Contract simulations and
transactions go through a wallet service holding the solver's account,
using Azguard-style operations (simulate_views / send_transaction).

Public logs from the Train contract are untyped arrays of field elements.
The first field is an event tag; the rest are read positionally.
"""

import re
import asyncio
import logging
from typing import Optional, Dict, Any, List, Iterable, Union

import httpx

from ..config import AztecConfig
from ..core import (
    ChainError, TransactionError, CHAIN_AZTEC,
    AZTEC_REWARD_DIVISOR, AZTEC_REWARD_TIMELOCK_OFFSET, TX_TIMEOUT,
)
from ..events import (
    ChainEvent, Locked, Redeemed, Refunded, HTLCState,
    HTLC_PENDING, HTLC_REDEEMED, HTLC_REFUNDED,
)
from ..hashlock import join_secret, split_secret, normalize_swap_id, pad_string
from .base import ChainClient, LockRequest

log = logging.getLogger(__name__)

# Event tags emitted by the Train contract (first log field)
EVENT_SIG_SRC_LOCKED = 0x1A2B3C4D
EVENT_SIG_DST_LOCKED = 0x2B3C4D5E
EVENT_SIG_REDEEMED = 0x4F8B9A3E
EVENT_SIG_REFUNDED = 0x2D17C6B8

# Minimum field count per event
SRC_LOCKED_FIELDS = 13
DST_LOCKED_FIELDS = 11
REDEEMED_FIELDS = 6
REFUNDED_FIELDS = 3

# Strings are space-padded ASCII, 30 bytes per field
STRING_SLOT_BYTES = 30
ADDRESS_PAD_LENGTH = 90

# SrcLocked slots
SRC_DST_CHAIN_SLOT = 8
SRC_DST_ADDRESS_SLOTS = (10, 11, 12)

# get_htlc().claimed values
AZTEC_HTLC_PENDING = 1
AZTEC_HTLC_REFUNDED = 2
AZTEC_HTLC_REDEEMED = 3

# htlc_id used for single-HTLC swaps
DEFAULT_HTLC_ID = 0

EVM_ADDRESS_RE = re.compile(r"0x[0-9a-fA-F]{40}")
AZTEC_ADDRESS_RE = re.compile(r"0x[0-9a-fA-F]{64}")

RECEIPT_POLL_INTERVAL = 2.0


# =============================================================================
# Log decoding
# =============================================================================

def field_to_int(value: Union[str, int]) -> int:
    """Field element from a log (hex string or int) to int."""
    if isinstance(value, int):
        return value
    text = str(value).strip()
    return int(text, 16) if text.lower().startswith("0x") else int(text)


def _slot_bytes(value: int) -> bytes:
    width = max(STRING_SLOT_BYTES, (value.bit_length() + 7) // 8)
    return value.to_bytes(width, "big")


def decode_padded_string(slots: Iterable[Union[str, int]]) -> Optional[str]:
    """
    Join space-padded ASCII slots into a string.

    Returns None if the bytes are not clean printable ASCII.
    """
    try:
        raw = b"".join(_slot_bytes(field_to_int(s)) for s in slots)
        text = raw.decode("utf-8").strip("\x00").strip()
    except (ValueError, UnicodeDecodeError, OverflowError):
        return None
    if not text.isprintable() or not text.isascii():
        return None
    return text


def extract_evm_address(slots: Iterable[Union[str, int]]) -> Optional[str]:
    """
    Recover an EVM address from padded string slots.

    Tolerant: garbled or partially populated slots give None, never an error.
    """
    try:
        raw = b"".join(_slot_bytes(field_to_int(s)) for s in slots)
    except (ValueError, TypeError, OverflowError):
        return None
    match = EVM_ADDRESS_RE.search(raw.decode("utf-8", errors="ignore"))
    return match.group(0) if match else None


def decode_public_log(fields: List[Union[str, int]],
                      block_number: Optional[int] = None) -> Optional[ChainEvent]:
    """
    Decode one Train contract public log.

    Returns None for logs with an unknown tag.
    Raises ValueError if a known tag has too few or unreadable fields.
    """
    if len(fields) < 2:
        return None

    sig = field_to_int(fields[0])

    if sig == EVENT_SIG_SRC_LOCKED:
        if len(fields) < SRC_LOCKED_FIELDS:
            raise ValueError(f"SrcLocked has {len(fields)} fields, need {SRC_LOCKED_FIELDS}")
        return Locked(
            chain=CHAIN_AZTEC,
            swap_id=normalize_swap_id(field_to_int(fields[1])),
            hashlock_high=field_to_int(fields[2]),
            hashlock_low=field_to_int(fields[3]),
            timelock=field_to_int(fields[4]),
            amount=field_to_int(fields[6]),
            is_source=True,
            dst_chain=decode_padded_string([fields[SRC_DST_CHAIN_SLOT]]),
            dst_address=extract_evm_address(fields[i] for i in SRC_DST_ADDRESS_SLOTS),
            block_number=block_number,
        )

    if sig == EVENT_SIG_DST_LOCKED:
        if len(fields) < DST_LOCKED_FIELDS:
            raise ValueError(f"DstLocked has {len(fields)} fields, need {DST_LOCKED_FIELDS}")
        return Locked(
            chain=CHAIN_AZTEC,
            swap_id=normalize_swap_id(field_to_int(fields[1])),
            hashlock_high=field_to_int(fields[3]),
            hashlock_low=field_to_int(fields[4]),
            timelock=field_to_int(fields[7]),
            amount=field_to_int(fields[10]),
            is_source=False,
            block_number=block_number,
        )

    if sig == EVENT_SIG_REDEEMED:
        if len(fields) < REDEEMED_FIELDS:
            raise ValueError(f"TokenRedeemed has {len(fields)} fields, need {REDEEMED_FIELDS}")
        return Redeemed(
            chain=CHAIN_AZTEC,
            swap_id=normalize_swap_id(field_to_int(fields[1])),
            secret=join_secret(field_to_int(fields[4]), field_to_int(fields[5])),
            block_number=block_number,
        )

    if sig == EVENT_SIG_REFUNDED:
        if len(fields) < REFUNDED_FIELDS:
            raise ValueError(f"TokenRefunded has {len(fields)} fields, need {REFUNDED_FIELDS}")
        return Refunded(
            chain=CHAIN_AZTEC,
            swap_id=normalize_swap_id(field_to_int(fields[1])),
            block_number=block_number,
        )

    return None


# =============================================================================
# Client
# =============================================================================

class AztecClient(ChainClient):
    """
    Aztec node + wallet service client.

    The wallet service holds the solver's account keys and pays fees via the
    sponsored FPC; this process only knows the solver's address.
    """

    name = CHAIN_AZTEC
    reward_divisor = AZTEC_REWARD_DIVISOR
    reward_timelock_offset = AZTEC_REWARD_TIMELOCK_OFFSET

    def __init__(self, config: AztecConfig, peer_chain_name: str = "BASE_SEPOLIA",
                 peer_solver_address: str = "", token_symbol: str = "USDC",
                 tx_timeout: int = TX_TIMEOUT, http: httpx.AsyncClient = None):
        self.config = config
        self.peer_chain_name = peer_chain_name
        self.peer_solver_address = peer_solver_address
        self.token_symbol = token_symbol
        self.tx_timeout = tx_timeout
        self._http = http or httpx.AsyncClient(timeout=30.0)
        self._rpc_id = 0

    @property
    def solver_address(self) -> str:
        return self.config.solver_address

    @property
    def account(self) -> str:
        """CAIP account id used by the wallet service."""
        return f"aztec:{self.config.chain_id}:{self.config.solver_address}"

    async def close(self):
        if not self._http.is_closed:
            await self._http.aclose()

    # -------------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------------

    async def _call_node(self, method: str, params: list = None) -> Any:
        """Make JSON-RPC call to the Aztec node."""
        self._rpc_id += 1
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params or [],
            "id": self._rpc_id,
        }

        try:
            response = await self._http.post(self.config.node_url, json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            raise ChainError(f"Aztec node {method} failed: {e}")
        except ValueError as e:
            raise ChainError(f"Aztec node {method} returned invalid JSON: {e}")

        if data.get("error"):
            raise ChainError(f"Aztec node {method} error: {data['error']}")

        return data.get("result")

    async def _execute(self, operation: Dict[str, Any]) -> Any:
        """Run one wallet operation and return its result."""
        url = self.config.wallet_url.rstrip("/") + "/execute"
        try:
            response = await self._http.post(url, json=[operation], timeout=self.tx_timeout)
            response.raise_for_status()
            results = response.json()
        except httpx.HTTPError as e:
            raise ChainError(f"Aztec wallet {operation['kind']} failed: {e}")
        except ValueError as e:
            raise ChainError(f"Aztec wallet returned invalid JSON: {e}")

        if not results or results[0].get("status") != "ok":
            error = results[0].get("error") if results else "empty response"
            raise ChainError(f"Aztec wallet {operation['kind']} failed: {error}")

        return results[0].get("result")

    def _call(self, contract: str, method: str, args: list) -> Dict[str, Any]:
        return {"kind": "call", "contract": contract, "method": method, "args": args}

    async def _simulate(self, contract: str, method: str, args: list) -> Any:
        result = await self._execute({
            "kind": "simulate_views",
            "account": self.account,
            "calls": [self._call(contract, method, args)],
        })
        if isinstance(result, dict) and "decoded" in result:
            return result["decoded"][0]
        if isinstance(result, list):
            return result[0]
        return result

    async def _send(self, actions: list) -> str:
        """Send through the wallet and wait for the receipt, both within tx_timeout."""
        sent = {}

        async def submit():
            tx_hash = await self._execute({
                "kind": "send_transaction",
                "account": self.account,
                "actions": actions,
            })
            if not tx_hash:
                raise TransactionError("Wallet returned no transaction hash")
            sent["tx_hash"] = str(tx_hash)
            await self._wait_for_tx(sent["tx_hash"])

        try:
            await asyncio.wait_for(submit(), timeout=self.tx_timeout)
        except asyncio.TimeoutError:
            tx_hash = sent.get("tx_hash")
            if tx_hash is None:
                raise TransactionError(f"Aztec wallet did not send within {self.tx_timeout}s")
            raise TransactionError(f"Aztec tx {tx_hash} not mined after {self.tx_timeout}s",
                                   tx_hash=tx_hash)
        return sent["tx_hash"]

    async def _wait_for_tx(self, tx_hash: str):
        """Poll the node until the tx is mined. The caller bounds the wait."""
        while True:
            receipt = await self._call_node("node_getTxReceipt", [tx_hash]) or {}
            status = str(receipt.get("status", "pending")).lower()
            if status == "success":
                return receipt
            if status not in ("pending", ""):
                raise TransactionError(
                    f"Aztec tx {tx_hash} failed: {status} {receipt.get('error', '')}".strip(),
                    tx_hash=tx_hash,
                )
            await asyncio.sleep(RECEIPT_POLL_INTERVAL)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def get_block_number(self) -> int:
        return field_to_int(await self._call_node("node_getBlockNumber"))

    async def get_timestamp(self) -> int:
        header = await self._call_node("node_getBlockHeader", ["latest"]) or {}
        timestamp = header.get("globalVariables", {}).get("timestamp")
        if timestamp is None:
            raise ChainError("Aztec block header has no timestamp")
        return field_to_int(timestamp)

    async def get_events(self, from_block: int, to_block: int) -> List[ChainEvent]:
        # toBlock is exclusive on the node
        result = await self._call_node("node_getPublicLogs", [{
            "fromBlock": from_block,
            "toBlock": to_block + 1,
            "contractAddress": self.config.train_address,
        }]) or {}

        events = []
        for entry in result.get("logs", []):
            try:
                payload = entry.get("log", {})
                fields = payload.get("fields") or payload.get("data") or []
                block_number = entry.get("id", {}).get("blockNumber")
                event = decode_public_log(fields, block_number)
                if event is not None:
                    events.append(event)
            except (ValueError, TypeError, AttributeError) as e:
                log.warning(f"[Aztec] Skipping malformed log: {e}")
        return events

    async def get_balance(self) -> int:
        balance = await self._simulate(
            self.config.token_address, "balance_of_public", [self.solver_address]
        )
        return field_to_int(balance)

    async def htlc_exists(self, swap_id: str) -> bool:
        exists = await self._simulate(
            self.config.train_address, "has_htlc", [swap_id, str(DEFAULT_HTLC_ID)]
        )
        return bool(exists)

    async def get_htlc(self, swap_id: str) -> Optional[HTLCState]:
        if not await self.htlc_exists(swap_id):
            return None

        htlc = await self._simulate(
            self.config.train_address, "get_htlc", [swap_id, str(DEFAULT_HTLC_ID)]
        )
        if not isinstance(htlc, dict):
            raise ChainError(f"Unexpected get_htlc result: {htlc!r}")

        claimed = field_to_int(htlc.get("claimed", 0))
        secret = None
        status = HTLC_PENDING
        if claimed == AZTEC_HTLC_REDEEMED:
            status = HTLC_REDEEMED
            secret = join_secret(field_to_int(htlc.get("secret_high", 0)),
                                 field_to_int(htlc.get("secret_low", 0)))
        elif claimed == AZTEC_HTLC_REFUNDED:
            status = HTLC_REFUNDED

        timelock = htlc.get("timelock")
        return HTLCState(
            swap_id=swap_id,
            status=status,
            amount=field_to_int(htlc.get("amount", 0)),
            timelock=field_to_int(timelock) if timelock is not None else None,
            secret=secret,
        )

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def lock(self, request: LockRequest) -> str:
        """
        lock_dst on the Train contract.

        The public authwit letting Train pull the tokens is sent in the same
        transaction as the lock.
        """
        record = request.record
        train = self.config.train_address
        token = self.config.token_address

        transfer = self._call(token, "transfer_in_public", [
            self.solver_address, train, str(request.amount), "0",
        ])
        transfer["caller"] = train
        authwit = {"kind": "add_public_authwit", "content": transfer}

        lock_call = self._call(train, "lock_dst", [
            record.swap_id,
            str(DEFAULT_HTLC_ID),
            str(record.hashlock_high),
            str(record.hashlock_low),
            str(request.reward),
            str(request.reward_timelock),
            str(request.timelock),
            request.receiver,
            token,
            str(request.amount),
            pad_string(self.token_symbol, STRING_SLOT_BYTES),
            pad_string(self.peer_chain_name, STRING_SLOT_BYTES),
            pad_string(self.token_symbol, STRING_SLOT_BYTES),
            pad_string(self.peer_solver_address, ADDRESS_PAD_LENGTH),
        ])

        log.info(f"[Aztec] lock_dst swap={record.swap_id} amount={request.amount} "
                 f"reward={request.reward} timelock={request.timelock}")
        return await self._send([authwit, lock_call])

    async def redeem(self, swap_id: str, secret: int) -> str:
        secret_high, secret_low = split_secret(secret)
        return await self._send([
            self._call(self.config.train_address, "redeem", [
                swap_id, str(DEFAULT_HTLC_ID), str(secret_high), str(secret_low),
            ])
        ])
