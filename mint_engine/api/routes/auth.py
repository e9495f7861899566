from fastapi import APIRouter, Depends

from mint_engine.api.deps import get_auth_service
from mint_engine.api.models import ApiResponse, ChallengeRequest, ChallengeResponse, UserInfo, VerifyRequest, VerifyResponse, ok
from mint_engine.core.security import get_current_identity
from mint_engine.jobs.models import Identity
from mint_engine.services.auth import AuthService

router = APIRouter()


@router.post("/challenge", response_model=ApiResponse[ChallengeResponse])
async def issue_challenge(  # noqa: B008
  payload: ChallengeRequest | None = None,
  auth_service: AuthService = Depends(get_auth_service),  # noqa: B008
) -> ApiResponse[ChallengeResponse]:
  """Issue a single-use nonce for the wallet to sign."""
  wallet_address = payload.wallet_address if payload is not None else None
  return ok(await auth_service.issue_challenge(wallet_address))


@router.post("/verify", response_model=ApiResponse[VerifyResponse])
async def verify_signature(  # noqa: B008
  payload: VerifyRequest,
  auth_service: AuthService = Depends(get_auth_service),  # noqa: B008
) -> ApiResponse[VerifyResponse]:
  """Exchange a signed challenge for a bearer token."""
  return ok(await auth_service.verify(payload.nonce, payload.signature, payload.wallet_address))


@router.get("/me", response_model=ApiResponse[UserInfo])
async def get_me(identity: Identity = Depends(get_current_identity)) -> ApiResponse[UserInfo]:  # noqa: B008
  return ok(UserInfo(id=identity.user_id, wallet_address=identity.wallet_address))
