"""REST API endpoints for the zk-note client."""

import logging
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from zknote.config import get_settings
from zknote.core.withdrawal import ClientContext, NoteClient
from zknote.exceptions import CorruptedLogError, FormatError, LedgerRevert, MerkleTreeError
from zknote.models.schemas import (
    DepositRequest,
    DepositResponse,
    HealthResponse,
    WithdrawalRequest,
    WithdrawalResponse,
)

# Configure logging
logger = logging.getLogger(__name__)

# Process-wide client, created on first use
_client: Optional[NoteClient] = None


def get_client() -> NoteClient:
    """Get or create the process-wide client."""
    global _client
    if _client is None:
        settings = get_settings()
        logging.basicConfig(level=settings.log_level.upper())
        _client = NoteClient(ClientContext.from_settings(settings))
    return _client


def reset_client():
    """Reset the process-wide client (for testing)."""
    global _client
    _client = None


# Initialize FastAPI
app = FastAPI(
    title="zk-note API",
    description="Deposit notes and zero-knowledge withdrawals",
    version="0.1.0",
)


# Custom exception handler for validation errors - convert 422 to 400
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Convert Pydantic validation errors (422) to 400 Bad Request."""
    error_messages = []

    for error in exc.errors():
        field = " -> ".join(str(loc) for loc in error["loc"])
        error_messages.append(f"{field}: {error['msg']}")

    return JSONResponse(status_code=400, content={"detail": "; ".join(error_messages)})


@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse(status="operational")


@app.post("/deposit", response_model=DepositResponse)
def deposit(request: DepositRequest, client: NoteClient = Depends(get_client)):
    """
    Create a note and publish its commitment.

    The note in the response is the only way to withdraw; it is not stored
    server-side.
    """
    try:
        note = client.deposit(request.currency, request.amount)
    except FormatError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except LedgerRevert as e:
        logger.warning("Deposit reverted: %s", e.reason)
        raise HTTPException(status_code=409, detail=str(e.reason))

    return DepositResponse(note=note)


@app.post("/withdraw", response_model=WithdrawalResponse)
def withdraw(request: WithdrawalRequest, client: NoteClient = Depends(get_client)):
    """
    Withdraw a note to ``recipient``.

    Rejections are reported in the body with their reason; only a corrupted
    ledger state produces an error status.
    """
    try:
        outcome = client.withdraw(
            request.note,
            request.recipient,
            refund=request.refund,
            relayer=request.relayer,
            fee=request.fee,
        )
    except (CorruptedLogError, MerkleTreeError) as e:
        logger.error("Cannot reconstruct deposit tree: %s", e, exc_info=True)
        raise HTTPException(status_code=503, detail=f"Ledger state unusable: {e}")

    return WithdrawalResponse(**outcome.to_dict())
