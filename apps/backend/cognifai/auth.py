from __future__ import annotations

import uuid
from datetime import UTC, datetime

from fastapi import HTTPException, Request, status
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from .config import settings
from .logging import logger

_SESSION_SALT = "cognifai.session"


def _build_serializer() -> URLSafeTimedSerializer:
    """Construct a serializer for signing and verifying session tokens."""

    secret = settings.session_secret_key.strip()
    if not secret:
        raise RuntimeError("SESSION_SECRET_KEY is not configured")
    return URLSafeTimedSerializer(secret, salt=_SESSION_SALT)


def session_max_age() -> int:
    """Return the configured session lifetime in seconds (at least one minute)."""

    return max(60, int(settings.session_max_age_seconds or 60 * 60 * 24 * 14))


def issue_session_token(uid: str) -> str:
    """Generate a signed session token tied to the Firebase uid."""

    serializer = _build_serializer()
    payload = {
        "sid": uuid.uuid4().hex,
        "sub": uid,
        "issued_at": datetime.now(UTC).replace(microsecond=0).isoformat(),
    }
    return serializer.dumps(payload)


def verify_session_token(token: str) -> dict:
    """Decode a signed session token and return the embedded payload."""

    serializer = _build_serializer()
    return serializer.loads(token, max_age=session_max_age())


def _session_log_context(
    request: Request, *, reason: str, user_id: str | None
) -> dict[str, object]:
    """AccessLog と同じキー（path/client_ip/user_agent/request_id）で失敗理由を記録する。"""

    client_ip = request.client.host if request.client else "unknown"
    return {
        "user_id": user_id,
        "reason": reason,
        "path": request.url.path,
        "client_ip": client_ip,
        "user_agent": request.headers.get("user-agent"),
        "request_id": getattr(request.state, "request_id", None),
    }


def read_session_cookie(request: Request, cookie_name: str) -> str | None:
    """Read the session cookie, parsing the raw header when Starlette could not.

    値に JSON をそのまま含む非 RFC 準拠の Cookie が混ざると `request.cookies`
    が空になることがあるため、その場合は Cookie ヘッダーを `;` 区切りで分解する。
    """

    value = request.cookies.get(cookie_name)
    if value:
        return value

    raw_header = request.headers.get("cookie")
    if not raw_header:
        return None
    for part in raw_header.split(";"):
        part = part.strip()
        if not part or "=" not in part:
            continue
        name, raw_value = part.split("=", 1)
        if name.strip() == cookie_name:
            return raw_value.strip()
    return None


def _unauthorized(request: Request, reason: str, detail: str) -> HTTPException:
    logger.warning(
        "session_validation_failed",
        **_session_log_context(request, reason=reason, user_id=None),
    )
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


async def get_current_user_id(request: Request) -> str:
    """Resolve the authenticated Firebase uid from the session cookie.

    DISABLE_SESSION_AUTH=true の場合は Cookie を見ずに DEV_USER_ID を返す
    （本番 + strict モードでは設定段階で拒否される）。
    """

    if settings.disable_session_auth:
        request.state.user_id = settings.dev_user_id
        return settings.dev_user_id

    raw_token = read_session_cookie(request, settings.session_cookie_name)
    if not raw_token:
        raise _unauthorized(request, "missing_cookie", "Session cookie is missing")

    try:
        payload = verify_session_token(raw_token)
    except SignatureExpired as exc:
        raise _unauthorized(request, "expired", "Session expired") from exc
    except BadSignature as exc:
        raise _unauthorized(request, "bad_signature", "Invalid session token") from exc

    sub = payload.get("sub") if isinstance(payload, dict) else None
    if not sub:
        raise _unauthorized(request, "missing_sub", "Invalid session payload")

    request.state.user_id = sub
    return str(sub)
