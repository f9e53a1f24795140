import hmac
import os
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status

from runtime_state import RuntimeState, get_runtime

_API_KEY_ENV = "FOOD_MEMORY_API_KEY"
_API_KEY_HEADER = "X-API-Key"
_API_KEY_ALLOW_INSECURE_LOCAL_ENV = "FOOD_MEMORY_ALLOW_INSECURE_LOCAL"
_TRUTHY_ENV_VALUES = {"1", "true", "yes", "on"}
_LOOPBACK_CLIENT_HOSTS = {"127.0.0.1", "::1", "localhost"}


def _get_configured_api_key() -> str:
    return str(os.getenv(_API_KEY_ENV) or "").strip()


def _allow_insecure_local_without_api_key() -> bool:
    value = str(os.getenv(_API_KEY_ALLOW_INSECURE_LOCAL_ENV) or "").strip().lower()
    return value in _TRUTHY_ENV_VALUES


def _is_loopback_request(request: Request) -> bool:
    client = getattr(request, "client", None)
    host = str(getattr(client, "host", "") or "").strip().lower()
    return host in _LOOPBACK_CLIENT_HOSTS


def _extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization or not isinstance(authorization, str):
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer":
        return None
    token = token.strip()
    return token if token else None


def _unauthorized(reason: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"error": "Unauthorized", "reason": reason},
        headers={"WWW-Authenticate": "Bearer"},
    )


async def require_api_key(
    request: Request,
    x_api_key: Optional[str] = Header(default=None, alias=_API_KEY_HEADER),
    authorization: Optional[str] = Header(default=None, alias="Authorization"),
) -> None:
    """Gate for every write endpoint; runs before body handling."""
    configured = _get_configured_api_key()
    if not configured:
        if _allow_insecure_local_without_api_key() and _is_loopback_request(request):
            return
        raise _unauthorized(
            "insecure_local_override_requires_loopback"
            if _allow_insecure_local_without_api_key()
            else "api_key_not_configured"
        )

    provided = str(x_api_key or "").strip() or _extract_bearer_token(authorization)
    if not provided or not hmac.compare_digest(provided, configured):
        raise _unauthorized("invalid_or_missing_api_key")


router = APIRouter(
    prefix="/maintenance",
    tags=["maintenance"],
    dependencies=[Depends(require_api_key)],
)


@router.post("/backfill-locations")
async def backfill_locations(runtime: RuntimeState = Depends(get_runtime)):
    """
    Fill missing neighborhood/borough labels by reverse geocoding and
    rename neighborhoods that have a preferred display name.
    """
    try:
        return await runtime.backfill.run()
    except Exception as exc:
        raise HTTPException(status_code=500, detail=f"Backfill failed: {exc}")
