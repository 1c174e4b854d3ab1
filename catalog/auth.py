import secrets
from typing import Optional

from fastapi import Header, Request, Response

from .errors import AuthError
from .quota import Admission, QuotaGate

API_KEY_HEADER = "X-API-Key"
ADMIN_KEY_HEADER = "X-Admin-Key"


def admit_request(
    request: Request,
    response: Response,
    api_key: Optional[str] = Header(default=None, alias=API_KEY_HEADER),
) -> Admission:
    """
    Resolve the caller's plan from the API key and count the request.

    Runs before any cache or store work; raises AuthError / QuotaExceeded.
    """
    gate: QuotaGate = request.app.state.gate
    admission = gate.admit(api_key)
    response.headers["X-Quota-Limit"] = str(admission.ceiling)
    response.headers["X-Quota-Remaining"] = str(admission.remaining)
    return admission


def require_admin(
    request: Request,
    admin_key: Optional[str] = Header(default=None, alias=ADMIN_KEY_HEADER),
) -> None:
    if not admin_key:
        raise AuthError("Missing admin key")
    expected = request.app.state.settings.admin_api_key
    if not expected or not secrets.compare_digest(admin_key, expected):
        raise AuthError("Admin key rejected", status_code=403)
