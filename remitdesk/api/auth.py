from fastapi import Header, HTTPException
from remitdesk.settings import settings


def require_api_key(x_api_key: str = Header(default="", alias="x-api-key")):
    """
    API key is optional.
    - If API_KEY env is empty: allow all requests.
    - If API_KEY env is set: require matching x-api-key header.
    """
    if not settings.API_KEY:
        return
    if x_api_key != settings.API_KEY:
        raise HTTPException(status_code=401, detail="Invalid API key")


def require_admin(x_admin_key: str = Header(default="", alias="x-admin-key")):
    if not settings.ADMIN_RBAC_ENABLED:
        return
    # Enabled without a configured key means nobody gets in
    if not settings.ADMIN_API_KEY:
        raise HTTPException(status_code=403, detail="Admin access disabled (no key configured)")
    if x_admin_key != settings.ADMIN_API_KEY:
        raise HTTPException(status_code=403, detail="Invalid admin key")


def get_principal_id(x_principal_id: str = Header(default="", alias="x-principal-id")) -> str:
    """Principal identity comes from the upstream token issuer; fall back to the demo principal."""
    return (x_principal_id or "").strip() or settings.DEFAULT_PRINCIPAL_ID
