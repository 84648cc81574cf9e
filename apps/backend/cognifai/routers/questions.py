from __future__ import annotations

import anyio
from fastapi import APIRouter, Depends, Response, status

from ..auth import get_current_user_id
from ..models.topic import Question, QuestionUpdateRequest
from ..permissions import ensure_owner
from ..store import AppFirestoreStore, get_store

router = APIRouter(prefix="/api/questions", tags=["questions"])


async def _owned_question(
    store: AppFirestoreStore, question_id: str, user_id: str
) -> Question:
    question = await anyio.to_thread.run_sync(store.get_question, question_id)
    return ensure_owner(question, user_id, kind="Question")


@router.get("/{question_id}", response_model=Question)
async def get_question(
    question_id: str,
    user_id: str = Depends(get_current_user_id),
    store: AppFirestoreStore = Depends(get_store),
) -> Question:
    return await _owned_question(store, question_id, user_id)


@router.patch("/{question_id}", response_model=Question)
async def update_question(
    question_id: str,
    req: QuestionUpdateRequest,
    user_id: str = Depends(get_current_user_id),
    store: AppFirestoreStore = Depends(get_store),
) -> Question:
    await _owned_question(store, question_id, user_id)
    # options は null を明示すると選択肢の削除になるため exclude_none しない
    updates = {
        key: value
        for key, value in req.model_dump(by_alias=True, exclude_unset=True).items()
        if value is not None or key in ("options", "source")
    }
    updated = await anyio.to_thread.run_sync(store.update_question, question_id, updates)
    return ensure_owner(updated, user_id, kind="Question")


@router.delete("/{question_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_question(
    question_id: str,
    user_id: str = Depends(get_current_user_id),
    store: AppFirestoreStore = Depends(get_store),
) -> Response:
    """問題と、その問題に対する進捗を削除し、トピックの問題数を再計算する。"""

    await _owned_question(store, question_id, user_id)
    await anyio.to_thread.run_sync(store.delete_question, question_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
