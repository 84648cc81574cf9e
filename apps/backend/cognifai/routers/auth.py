from __future__ import annotations

import hashlib
from datetime import UTC, datetime
from functools import partial
from http import HTTPStatus

import anyio
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from google.auth.transport import requests as google_requests
from google.oauth2 import id_token
from pydantic import BaseModel, Field

from ..auth import get_current_user_id, issue_session_token, session_max_age
from ..config import settings
from ..logging import logger
from ..store import AppFirestoreStore, get_store

router = APIRouter(prefix="/api/auth", tags=["auth"])
_google_request = google_requests.Request()


class FirebaseAuthRequest(BaseModel):
    """Payload containing a Firebase Authentication ID token from the app."""

    id_token: str = Field(..., min_length=1, description="Firebase ID token issued on the client")


class FirebaseAuthResponse(BaseModel):
    user: dict


def _hash_for_log(value: str | None) -> str | None:
    """Hash sensitive identifiers before logging to avoid leaking PII."""

    if not value:
        return None
    digest = hashlib.sha256(value.lower().encode("utf-8")).hexdigest()
    return digest[:12]


def _set_session_cookie(response: JSONResponse, token: str) -> None:
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite="lax",
        max_age=session_max_age(),
    )


@router.post("/firebase", response_model=FirebaseAuthResponse)
async def authenticate_with_firebase(
    payload: FirebaseAuthRequest,
    request: Request,
    store: AppFirestoreStore = Depends(get_store),
) -> JSONResponse:
    """Verify a Firebase ID token, upsert the user and issue a signed session cookie."""

    if not settings.firebase_project_id:
        logger.error("firebase_auth_failed", user_id=None, reason="missing_project_id")
        raise HTTPException(
            status_code=HTTPStatus.INTERNAL_SERVER_ERROR,
            detail="Firebase authentication is not configured",
        )

    skew = max(0, int(settings.firebase_clock_skew_seconds or 0))
    try:
        claims = id_token.verify_firebase_token(
            payload.id_token,
            _google_request,
            audience=settings.firebase_project_id,
            clock_skew_in_seconds=skew,
        )
    except ValueError as exc:
        logger.warning(
            "firebase_auth_failed",
            user_id=None,
            reason="invalid_token",
            error=repr(exc)[:200],
        )
        raise HTTPException(status_code=HTTPStatus.UNAUTHORIZED, detail="Invalid ID token") from exc

    claims = claims or {}
    uid = claims.get("user_id") or claims.get("sub")
    email = claims.get("email") or ""
    display_name = claims.get("name") or email
    if not uid:
        logger.warning("firebase_auth_failed", user_id=None, reason="missing_uid")
        raise HTTPException(
            status_code=HTTPStatus.UNAUTHORIZED,
            detail="ID token is missing required claims",
        )

    user = await anyio.to_thread.run_sync(
        partial(
            store.record_user_login,
            uid=uid,
            email=email,
            display_name=display_name,
            login_at=datetime.now(UTC),
        )
    )
    response = JSONResponse(
        status_code=HTTPStatus.OK,
        content={"user": jsonable_encoder(user)},
    )
    _set_session_cookie(response, issue_session_token(uid))
    request.state.user_id = uid
    logger.info(
        "firebase_auth_succeeded",
        user_id=uid,
        email_hash=_hash_for_log(email),
        display_name_hash=_hash_for_log(display_name),
    )
    return response


@router.post("/logout")
async def logout() -> JSONResponse:
    """Clear the session cookie. 未ログインでも 200 を返す。"""

    response = JSONResponse(status_code=HTTPStatus.OK, content={"ok": True})
    response.delete_cookie(
        key=settings.session_cookie_name,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite="lax",
    )
    return response


@router.delete("/me")
async def delete_account_data(
    user_id: str = Depends(get_current_user_id),
    store: AppFirestoreStore = Depends(get_store),
) -> JSONResponse:
    """Delete every topic, question and progress record owned by the user."""

    deleted = await anyio.to_thread.run_sync(store.delete_user_data, user_id)
    response = JSONResponse(
        status_code=HTTPStatus.OK, content={"ok": True, "deletedDocuments": deleted}
    )
    response.delete_cookie(
        key=settings.session_cookie_name,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite="lax",
    )
    return response
