"""
Control API for the solver.

A thin HTTP surface over the engine's in-memory registry. The engine is
read from app.state.engine, set by server.py at startup (or by tests).
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from starlette.exceptions import HTTPException as StarletteHTTPException

from solver.chains.aztec import AZTEC_ADDRESS_RE, EVM_ADDRESS_RE
from solver.core import SwapDirection, SolverError
from solver.hashlock import U128_MASK, normalize_swap_id, parse_uint
from solver.swap.engine import SolverEngine

log = logging.getLogger(__name__)

router = APIRouter()


# =============================================================================
# MODELS
# =============================================================================

class QuoteRequest(BaseModel):
    direction: SwapDirection
    amount: int

    @field_validator("amount", mode="before")
    @classmethod
    def _amount(cls, v):
        return parse_uint(v)


class NotifyLockRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    swap_id: str = Field(..., alias="swapId")
    direction: SwapDirection
    amount: int
    hashlock_high: int = Field(..., alias="hashlockHigh")
    hashlock_low: int = Field(..., alias="hashlockLow")
    user_address: Optional[str] = Field(None, alias="userAddress")
    timelock: Optional[int] = None   # User's source-chain timelock (Unix seconds)

    @field_validator("swap_id", mode="before")
    @classmethod
    def _swap_id(cls, v):
        # Clients post the id in decimal; internally it is 0x + 64 hex
        if isinstance(v, bool) or not isinstance(v, (int, str)):
            raise ValueError("swapId must be a decimal or hex string")
        return normalize_swap_id(v)

    @field_validator("amount", "timelock", mode="before")
    @classmethod
    def _uint(cls, v):
        if v is None:
            return v
        return parse_uint(v)

    @field_validator("hashlock_high", "hashlock_low", mode="before")
    @classmethod
    def _half(cls, v):
        value = parse_uint(v)
        if value > U128_MASK:
            raise ValueError("hashlock half must fit in 128 bits")
        return value

    @field_validator("user_address")
    @classmethod
    def _address(cls, v):
        if v is None:
            return v
        return v.strip() or None

    @model_validator(mode="after")
    def _address_matches_direction(self):
        # userAddress receives the counter-lock on the destination chain
        if self.user_address is None:
            return self
        if self.direction == SwapDirection.AZTEC_TO_BASE:
            pattern, kind = EVM_ADDRESS_RE, "a Base address (0x + 40 hex)"
        else:
            pattern, kind = AZTEC_ADDRESS_RE, "an Aztec address (0x + 64 hex)"
        if not pattern.fullmatch(self.user_address):
            raise ValueError(f"userAddress must be {kind} for {self.direction.value}")
        return self


def get_engine(request: Request) -> SolverEngine:
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(503, "Solver not started")
    return engine


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.get("/health")
async def health(engine: SolverEngine = Depends(get_engine)):
    """Liveness check."""
    return {"status": "ok", "pendingSwaps": len(engine.registry)}


@router.get("/info")
async def info(engine: SolverEngine = Depends(get_engine)):
    """Solver addresses, live balances and contract addresses."""
    try:
        evm_balance = await engine.base.get_balance()
        aztec_balance = await engine.aztec.get_balance()
    except SolverError as e:
        log.error(f"[HTTP] Balance read failed: {e}")
        raise HTTPException(500, str(e))

    config = engine.config
    return {
        "solverEvmAddress": engine.base.solver_address,
        "solverAztecAddress": engine.aztec.solver_address,
        "evmBalance": str(evm_balance),
        "aztecBalance": str(aztec_balance),
        "baseTrainAddress": config.evm.train_address,
        "aztecTrainAddress": config.aztec.train_address,
        "baseTokenAddress": config.evm.token_address,
        "aztecTokenAddress": config.aztec.token_address,
    }


@router.get("/swaps")
async def list_swaps(engine: SolverEngine = Depends(get_engine)):
    return {"swaps": [record.to_summary() for record in engine.registry.list()]}


@router.get("/swap/{swap_id}")
async def get_swap(swap_id: str, engine: SolverEngine = Depends(get_engine)):
    try:
        key = normalize_swap_id(swap_id)
    except ValueError:
        raise HTTPException(404, "Swap not found")

    record = engine.registry.get(key)
    if record is None:
        raise HTTPException(404, "Swap not found")
    return record.to_dict()


@router.post("/quote")
async def quote(req: QuoteRequest, engine: SolverEngine = Depends(get_engine)):
    """1:1 quote (same token on both chains, no fee model)."""
    return {
        "inputAmount": str(req.amount),
        "outputAmount": str(req.amount),
        "direction": req.direction.value,
        "solverEvmAddress": engine.base.solver_address,
        "solverAztecAddress": engine.aztec.solver_address,
        "timelockSeconds": engine.config.timelock_buffer,
    }


@router.post("/notify-lock")
async def notify_lock(req: NotifyLockRequest, engine: SolverEngine = Depends(get_engine)):
    """Out-of-band fast path for a user lock the watchers may not have seen yet."""
    status, record = engine.notify_lock(
        swap_id=req.swap_id,
        direction=req.direction,
        amount=req.amount,
        hashlock_high=req.hashlock_high,
        hashlock_low=req.hashlock_low,
        user_address=req.user_address,
        timelock=req.timelock,
    )
    return {"status": status, "swapId": record.swap_id}


# =============================================================================
# ERRORS
# =============================================================================

def _validation_message(exc: RequestValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())[1:])
        parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return "; ".join(parts)


def register_error_handlers(app: FastAPI):
    """Render every error as {"error": message}."""

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        return JSONResponse({"error": exc.detail}, status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        for err in exc.errors():
            if err.get("type") == "json_invalid":
                detail = (err.get("ctx") or {}).get("error", "")
                message = f"{err.get('msg')}: {detail}" if detail else str(err.get("msg"))
                log.warning(f"[HTTP] Malformed JSON on {request.url.path}: {message}")
                return JSONResponse({"error": message}, status_code=500)
        return JSONResponse({"error": _validation_message(exc)}, status_code=400)

    @app.exception_handler(Exception)
    async def unexpected_error(request: Request, exc: Exception):
        log.exception(f"[HTTP] Error handling {request.method} {request.url.path}")
        return JSONResponse({"error": str(exc)}, status_code=500)
