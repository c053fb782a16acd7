import hmac
import logging
from typing import Optional

from .errors import AuthorizationError

logger = logging.getLogger(__name__)

API_KEY_HEADER = "X-API-Key"
TOKEN_QUERY_PARAM = "token"
CARRIER_HINT = (
    "Provide the access token as 'Authorization: Bearer <token>', "
    f"as the '{API_KEY_HEADER}' header, or as the '?{TOKEN_QUERY_PARAM}=' query parameter."
)


def _query_value(query, name: str) -> Optional[str]:
    if not query:
        return None
    value = query.get(name)
    if isinstance(value, (list, tuple)):
        value = value[0] if value else None
    return value


def extract_token(headers, query) -> Optional[str]:
    """First carrier present wins: bearer header, then API key header, then query string."""
    authorization = ((headers.get("Authorization") if headers else None) or "").strip()
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() == "bearer" and credentials.strip():
        return credentials.strip()

    api_key = ((headers.get(API_KEY_HEADER) if headers else None) or "").strip()
    if api_key:
        return api_key

    query_token = (_query_value(query, TOKEN_QUERY_PARAM) or "").strip()
    if query_token:
        return query_token
    return None


class AccessGuard:
    def __init__(self, secret: str):
        self.secret = secret or ""

    def check(self, headers, query) -> None:
        if not self.secret:
            logger.warning("protected request rejected: access token is not configured")
            raise AuthorizationError("Access token is not configured on the server.", hint=CARRIER_HINT)

        provided = extract_token(headers, query)
        if provided is None:
            raise AuthorizationError("Access token required.", hint=CARRIER_HINT)

        if not hmac.compare_digest(provided.encode("utf-8"), self.secret.encode("utf-8")):
            logger.warning("protected request rejected: invalid access token")
            raise AuthorizationError("Invalid access token.", hint=CARRIER_HINT)
