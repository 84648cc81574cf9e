from __future__ import annotations

from functools import partial

import anyio
from fastapi import APIRouter, Depends, HTTPException, Query, status

from ..auth import get_current_user_id
from ..dependencies import get_review_flow
from ..flows.review import ReviewFlow
from ..models.common import SessionType
from ..models.progress import (
    AnswerRequest,
    AnswerResponse,
    OverallProgressStats,
    ReviewQueueResponse,
    SessionSummary,
    SessionSummaryRequest,
)
from ..permissions import ensure_owner
from ..store import AppFirestoreStore, get_store

router = APIRouter(prefix="/api/review", tags=["review"])


@router.get("/queue", response_model=ReviewQueueResponse)
async def review_queue(
    session_type: SessionType = Query(default=SessionType.spaced, alias="sessionType"),
    limit: int | None = Query(default=None, ge=0, le=200),
    user_id: str = Depends(get_current_user_id),
    flow: ReviewFlow = Depends(get_review_flow),
) -> ReviewQueueResponse:
    """期限到来済みの問題をセッション種別で選別し、優先度順に返す。"""

    items = await anyio.to_thread.run_sync(
        partial(flow.review_queue, user_id, session_type, limit)
    )
    return ReviewQueueResponse(session_type=session_type, items=items)


@router.post("/answer", response_model=AnswerResponse)
async def submit_answer(
    req: AnswerRequest,
    user_id: str = Depends(get_current_user_id),
    store: AppFirestoreStore = Depends(get_store),
    flow: ReviewFlow = Depends(get_review_flow),
) -> AnswerResponse:
    """自己採点 1 件を反映し、更新後の進捗レコードを返す。"""

    question = await anyio.to_thread.run_sync(store.get_question, req.question_id)
    question = ensure_owner(question, user_id, kind="Question")
    if question.topic_id != req.topic_id:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="topicId does not match the question",
        )
    record = await anyio.to_thread.run_sync(
        partial(
            flow.process_answer,
            user_id,
            req.question_id,
            req.topic_id,
            req.performance,
            req.response_time,
        )
    )
    return AnswerResponse(progress=record)


@router.post("/summary", response_model=SessionSummary)
async def session_summary(
    req: SessionSummaryRequest,
    user_id: str = Depends(get_current_user_id),
) -> SessionSummary:
    return ReviewFlow.summarize(req)


@router.get("/stats", response_model=OverallProgressStats)
async def overall_stats(
    user_id: str = Depends(get_current_user_id),
    flow: ReviewFlow = Depends(get_review_flow),
) -> OverallProgressStats:
    return await anyio.to_thread.run_sync(flow.overall_progress, user_id)
