import logging

from fastapi import APIRouter, Depends

from mint_engine.api.deps import get_orchestrator
from mint_engine.api.models import ApiResponse, ConfirmPaymentRequest, MintStats, PaymentStatusResponse, PriceResponse, SessionSummary, ok
from mint_engine.core.security import get_current_identity
from mint_engine.jobs.models import Identity
from mint_engine.services.mint import MintOrchestrator

router = APIRouter()
logger = logging.getLogger("mint_engine.api.routes.mint")


@router.post("/request", response_model=ApiResponse[SessionSummary])
async def request_mint(  # noqa: B008
  identity: Identity = Depends(get_current_identity),  # noqa: B008
  orchestrator: MintOrchestrator = Depends(get_orchestrator),  # noqa: B008
) -> ApiResponse[SessionSummary]:
  """Reserve the next token and start a mint session."""
  return ok(await orchestrator.start(identity))


@router.get("/status/{session_id}", response_model=ApiResponse[SessionSummary])
async def get_mint_status(  # noqa: B008
  session_id: str,
  identity: Identity = Depends(get_current_identity),  # noqa: B008
  orchestrator: MintOrchestrator = Depends(get_orchestrator),  # noqa: B008
) -> ApiResponse[SessionSummary]:
  """Poll a session; lapsed sessions are expired on read."""
  return ok(await orchestrator.get_status(session_id, identity))


@router.post("/confirm-payment", response_model=ApiResponse[SessionSummary])
async def confirm_payment(  # noqa: B008
  payload: ConfirmPaymentRequest,
  identity: Identity = Depends(get_current_identity),  # noqa: B008
  orchestrator: MintOrchestrator = Depends(get_orchestrator),  # noqa: B008
) -> ApiResponse[SessionSummary]:
  """Record the payment transaction and queue the inscription."""
  return ok(await orchestrator.confirm_payment(payload.session_id, payload.tx_hash, identity))


@router.post("/cancel/{session_id}", response_model=ApiResponse[SessionSummary])
async def cancel_mint(  # noqa: B008
  session_id: str,
  identity: Identity = Depends(get_current_identity),  # noqa: B008
  orchestrator: MintOrchestrator = Depends(get_orchestrator),  # noqa: B008
) -> ApiResponse[SessionSummary]:
  return ok(await orchestrator.cancel(session_id, identity))


@router.get("/payment-status/{session_id}", response_model=ApiResponse[PaymentStatusResponse])
async def get_payment_status(  # noqa: B008
  session_id: str,
  identity: Identity = Depends(get_current_identity),  # noqa: B008
  orchestrator: MintOrchestrator = Depends(get_orchestrator),  # noqa: B008
) -> ApiResponse[PaymentStatusResponse]:
  """Report whether the payment address has seen funds; never changes the session."""
  return ok(await orchestrator.check_payment(session_id, identity))


@router.get("/stats", response_model=ApiResponse[MintStats])
async def get_stats(orchestrator: MintOrchestrator = Depends(get_orchestrator)) -> ApiResponse[MintStats]:  # noqa: B008
  return ok(await orchestrator.stats())


@router.get("/price", response_model=ApiResponse[PriceResponse])
async def get_price(orchestrator: MintOrchestrator = Depends(get_orchestrator)) -> ApiResponse[PriceResponse]:  # noqa: B008
  return ok(orchestrator.price())
