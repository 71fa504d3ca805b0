"""
Base (EVM) client for the swap solver.

Interacts with the Train ERC20 HTLC contract and the settlement token using
web3.py's async API. Events come back typed, so decoding is field access.
"""

import asyncio
import logging
from typing import Optional, Dict, Any, List, Mapping

from web3 import AsyncWeb3
from web3.exceptions import TimeExhausted, Web3Exception
from eth_account import Account

from ..config import EVMConfig
from ..core import (
    ChainError, TransactionError, CHAIN_BASE,
    BASE_REWARD_DIVISOR, BASE_REWARD_TIMELOCK_OFFSET, TX_TIMEOUT,
)
from ..events import (
    ChainEvent, Locked, Redeemed, Refunded, HTLCState,
    HTLC_PENDING, HTLC_REDEEMED, HTLC_REFUNDED,
)
from ..hashlock import bytes32_to_parts, normalize_swap_id
from .base import ChainClient, LockRequest

log = logging.getLogger(__name__)

ZERO_ADDRESS = "0x" + "0" * 40

# getHTLCDetails().claimed values
EVM_HTLC_PENDING = 1
EVM_HTLC_REFUNDED = 2
EVM_HTLC_REDEEMED = 3

# Gas limits
LOCK_GAS = 300000
REDEEM_GAS = 150000
APPROVE_GAS = 100000

LOCK_PARAM_COMPONENTS = [
    {"name": "Id", "type": "bytes32"},
    {"name": "hashlock", "type": "bytes32"},
    {"name": "reward", "type": "uint256"},
    {"name": "rewardTimelock", "type": "uint48"},
    {"name": "timelock", "type": "uint48"},
    {"name": "srcReceiver", "type": "address"},
    {"name": "srcAsset", "type": "string"},
    {"name": "dstChain", "type": "string"},
    {"name": "dstAddress", "type": "string"},
    {"name": "dstAsset", "type": "string"},
    {"name": "amount", "type": "uint256"},
    {"name": "tokenContract", "type": "address"},
]

# Contract ABI (minimal - only what the solver uses)
TRAIN_ERC20_ABI = [
    {
        "name": "TokenLocked",
        "type": "event",
        "anonymous": False,
        "inputs": [
            {"name": "Id", "type": "bytes32", "indexed": True},
            {"name": "hashlock", "type": "bytes32", "indexed": False},
            {"name": "dstChain", "type": "string", "indexed": False},
            {"name": "dstAddress", "type": "string", "indexed": False},
            {"name": "dstAsset", "type": "string", "indexed": False},
            {"name": "sender", "type": "address", "indexed": True},
            {"name": "srcReceiver", "type": "address", "indexed": True},
            {"name": "srcAsset", "type": "string", "indexed": False},
            {"name": "amount", "type": "uint256", "indexed": False},
            {"name": "reward", "type": "uint256", "indexed": False},
            {"name": "rewardTimelock", "type": "uint48", "indexed": False},
            {"name": "timelock", "type": "uint48", "indexed": False},
            {"name": "tokenContract", "type": "address", "indexed": False},
        ],
    },
    {
        "name": "TokenRedeemed",
        "type": "event",
        "anonymous": False,
        "inputs": [
            {"name": "Id", "type": "bytes32", "indexed": True},
            {"name": "redeemAddress", "type": "address", "indexed": False},
            {"name": "secret", "type": "uint256", "indexed": False},
            {"name": "hashlock", "type": "bytes32", "indexed": False},
        ],
    },
    {
        "name": "TokenRefunded",
        "type": "event",
        "anonymous": False,
        "inputs": [
            {"name": "Id", "type": "bytes32", "indexed": True},
            {"name": "refundAddress", "type": "address", "indexed": False},
        ],
    },
    {
        "name": "lock",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "params", "type": "tuple", "components": LOCK_PARAM_COMPONENTS},
        ],
        "outputs": [{"name": "", "type": "bytes32"}],
    },
    {
        "name": "redeem",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "Id", "type": "bytes32"},
            {"name": "secret", "type": "uint256"},
        ],
        "outputs": [{"name": "", "type": "bool"}],
    },
    {
        "name": "getHTLCDetails",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "Id", "type": "bytes32"}],
        "outputs": [
            {
                "name": "",
                "type": "tuple",
                "components": [
                    {"name": "amount", "type": "uint256"},
                    {"name": "hashlock", "type": "bytes32"},
                    {"name": "secret", "type": "uint256"},
                    {"name": "tokenContract", "type": "address"},
                    {"name": "timelock", "type": "uint48"},
                    {"name": "claimed", "type": "uint8"},
                    {"name": "sender", "type": "address"},
                    {"name": "srcReceiver", "type": "address"},
                ],
            }
        ],
    },
]

ERC20_ABI = [
    {
        "name": "approve",
        "type": "function",
        "inputs": [
            {"name": "spender", "type": "address"},
            {"name": "amount", "type": "uint256"}
        ],
        "outputs": [{"name": "", "type": "bool"}]
    },
    {
        "name": "allowance",
        "type": "function",
        "stateMutability": "view",
        "inputs": [
            {"name": "owner", "type": "address"},
            {"name": "spender", "type": "address"}
        ],
        "outputs": [{"name": "", "type": "uint256"}]
    },
    {
        "name": "balanceOf",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "account", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}]
    },
]

EVENT_NAMES = ("TokenLocked", "TokenRedeemed", "TokenRefunded")


def _text(value: Any) -> str:
    return str(value or "").strip()


def decode_event_log(event: Mapping[str, Any]) -> Optional[ChainEvent]:
    """
    Decode one Train contract event (as returned by web3 get_logs).

    Returns None for events the solver does not use.
    Raises KeyError/ValueError on malformed payloads.
    """
    name = event["event"]
    args = event["args"]
    block_number = event.get("blockNumber")
    swap_id = normalize_swap_id(bytes(args["Id"]))

    if name == "TokenLocked":
        high, low = bytes32_to_parts(bytes(args["hashlock"]))
        return Locked(
            chain=CHAIN_BASE,
            swap_id=swap_id,
            hashlock_high=high,
            hashlock_low=low,
            amount=int(args["amount"]),
            is_source=True,
            timelock=int(args["timelock"]),
            sender=args.get("sender"),
            dst_chain=_text(args.get("dstChain")),
            dst_address=_text(args.get("dstAddress")) or None,
            block_number=block_number,
        )

    if name == "TokenRedeemed":
        return Redeemed(
            chain=CHAIN_BASE,
            swap_id=swap_id,
            secret=int(args["secret"]),
            redeemer=args.get("redeemAddress"),
            block_number=block_number,
        )

    if name == "TokenRefunded":
        return Refunded(chain=CHAIN_BASE, swap_id=swap_id, block_number=block_number)

    return None


class EVMClient(ChainClient):
    """
    Base Sepolia client using web3.py async.

    Transaction submission holds a lock from nonce lookup to broadcast so that
    concurrent locks and redeems never reuse a nonce.
    """

    name = CHAIN_BASE
    reward_divisor = BASE_REWARD_DIVISOR
    reward_timelock_offset = BASE_REWARD_TIMELOCK_OFFSET

    def __init__(self, config: EVMConfig, peer_chain_name: str = "AZTEC_DEVNET",
                 peer_solver_address: str = "", token_symbol: str = "USDC",
                 tx_timeout: int = TX_TIMEOUT, w3: AsyncWeb3 = None):
        self.config = config
        self.peer_chain_name = peer_chain_name
        self.peer_solver_address = peer_solver_address
        self.token_symbol = token_symbol
        self.tx_timeout = tx_timeout

        private_key = config.private_key
        if private_key and not private_key.startswith("0x"):
            private_key = "0x" + private_key
        self.account = Account.from_key(private_key)

        self.w3 = w3 or AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(config.rpc_url))
        self.train_address = AsyncWeb3.to_checksum_address(config.train_address)
        self.token_address = AsyncWeb3.to_checksum_address(config.token_address)
        self.train = self.w3.eth.contract(address=self.train_address, abi=TRAIN_ERC20_ABI)
        self.token = self.w3.eth.contract(address=self.token_address, abi=ERC20_ABI)

        self._send_lock = asyncio.Lock()

    @property
    def solver_address(self) -> str:
        return self.account.address

    def accepts_destination(self, dst_chain: Optional[str]) -> bool:
        # Base events carry a typed string; an empty one is not ours
        if not dst_chain:
            return False
        return super().accepts_destination(dst_chain)

    async def close(self):
        provider = self.w3.provider
        if hasattr(provider, "disconnect"):
            await provider.disconnect()

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def get_block_number(self) -> int:
        try:
            return await self.w3.eth.block_number
        except (Web3Exception, OSError) as e:
            raise ChainError(f"Base block_number failed: {e}")

    async def get_timestamp(self) -> int:
        try:
            block = await self.w3.eth.get_block("latest")
        except (Web3Exception, OSError) as e:
            raise ChainError(f"Base get_block failed: {e}")
        return int(block["timestamp"])

    async def get_events(self, from_block: int, to_block: int) -> List[ChainEvent]:
        events = []
        for name in EVENT_NAMES:
            try:
                logs = await getattr(self.train.events, name).get_logs(
                    from_block=from_block, to_block=to_block
                )
            except (Web3Exception, OSError) as e:
                raise ChainError(f"Base get_logs {name} failed: {e}")

            for entry in logs:
                try:
                    event = decode_event_log(entry)
                    if event is not None:
                        events.append(event)
                except (KeyError, ValueError, TypeError) as e:
                    log.warning(f"[Base] Skipping malformed {name} log: {e}")
        return events

    async def get_balance(self) -> int:
        try:
            return await self.token.functions.balanceOf(self.solver_address).call()
        except (Web3Exception, OSError) as e:
            raise ChainError(f"Base balanceOf failed: {e}")

    async def get_allowance(self) -> int:
        try:
            return await self.token.functions.allowance(
                self.solver_address, self.train_address
            ).call()
        except (Web3Exception, OSError) as e:
            raise ChainError(f"Base allowance failed: {e}")

    async def get_htlc(self, swap_id: str) -> Optional[HTLCState]:
        try:
            details = await self.train.functions.getHTLCDetails(
                bytes.fromhex(swap_id[2:])
            ).call()
        except (Web3Exception, OSError) as e:
            raise ChainError(f"Base getHTLCDetails failed: {e}")

        amount, _hashlock, secret, _token, timelock, claimed, sender, _receiver = details
        if not sender or sender.lower() == ZERO_ADDRESS:
            return None

        status = HTLC_PENDING
        if claimed == EVM_HTLC_REDEEMED:
            status = HTLC_REDEEMED
        elif claimed == EVM_HTLC_REFUNDED:
            status = HTLC_REFUNDED

        return HTLCState(
            swap_id=swap_id,
            status=status,
            amount=int(amount),
            timelock=int(timelock),
            secret=int(secret) if status == HTLC_REDEEMED else None,
        )

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def _transact(self, function, gas: int, label: str) -> str:
        """Sign, send and wait for one contract call."""
        try:
            async with self._send_lock:
                nonce = await self.w3.eth.get_transaction_count(self.solver_address, "pending")
                gas_price = int(await self.w3.eth.gas_price * 1.1)  # 10% buffer

                tx = await function.build_transaction({
                    "from": self.solver_address,
                    "nonce": nonce,
                    "gas": gas,
                    "gasPrice": gas_price,
                    "chainId": self.config.chain_id,
                })
                signed = self.account.sign_transaction(tx)
                tx_hash = await self.w3.eth.send_raw_transaction(signed.raw_transaction)

            tx_hex = AsyncWeb3.to_hex(tx_hash)
            log.info(f"[Base] {label} TX: {tx_hex}")
            receipt = await self.w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self.tx_timeout
            )
        except TimeExhausted:
            raise TransactionError(f"{label} {tx_hex} not mined after {self.tx_timeout}s",
                                   tx_hash=tx_hex)
        except (Web3Exception, OSError) as e:
            raise TransactionError(f"{label} failed: {e}")

        if receipt["status"] != 1:
            raise TransactionError(f"{label} reverted", tx_hash=tx_hex)
        return tx_hex

    async def ensure_allowance(self, amount: int):
        """Approve the Train contract for amount if the allowance is short."""
        allowance = await self.get_allowance()
        if allowance >= amount:
            return
        log.info(f"[Base] Allowance {allowance} < {amount}, approving...")
        await self._transact(
            self.token.functions.approve(self.train_address, amount),
            APPROVE_GAS, "Approve",
        )

    async def lock(self, request: LockRequest) -> str:
        record = request.record
        await self.ensure_allowance(request.amount)

        params = (
            bytes.fromhex(record.swap_id[2:]),
            bytes.fromhex(record.hashlock[2:]),
            request.reward,
            request.reward_timelock,
            request.timelock,
            AsyncWeb3.to_checksum_address(request.receiver),
            self.token_symbol,
            self.peer_chain_name,
            self.peer_solver_address,
            self.token_symbol,
            request.amount,
            self.token_address,
        )

        log.info(f"[Base] Locking {request.amount} {self.token_symbol} for swap {record.swap_id}")
        return await self._transact(self.train.functions.lock(params), LOCK_GAS, "Lock")

    async def redeem(self, swap_id: str, secret: int) -> str:
        return await self._transact(
            self.train.functions.redeem(bytes.fromhex(swap_id[2:]), secret),
            REDEEM_GAS, "Redeem",
        )
