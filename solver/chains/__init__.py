"""Chain clients."""

from .base import ChainClient, LockRequest
from .aztec import AztecClient, decode_public_log
from .evm import EVMClient, decode_event_log

__all__ = [
    "ChainClient",
    "LockRequest",
    "AztecClient",
    "decode_public_log",
    "EVMClient",
    "decode_event_log",
]
