"""Ownership checks mirroring firestore.rules (owner-only access)."""

from typing import Protocol, TypeVar

from fastapi import HTTPException, status

from .logging import logger


class _Owned(Protocol):
    user_id: str


_T = TypeVar("_T", bound=_Owned)


def ensure_owner(record: _T | None, user_id: str, *, kind: str) -> _T:
    """Return the record when it belongs to user_id, otherwise raise 404.

    他ユーザーのレコードは存在自体を明かさないよう 403 ではなく 404 を返す。
    """

    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{kind} not found")
    if record.user_id != user_id:
        logger.warning("ownership_check_failed", kind=kind, user_id=user_id)
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{kind} not found")
    return record
