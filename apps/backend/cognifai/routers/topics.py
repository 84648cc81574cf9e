from __future__ import annotations

from functools import partial

import anyio
from fastapi import APIRouter, Depends, Response, status

from ..auth import get_current_user_id
from ..dependencies import get_question_generation_flow, get_review_flow
from ..flows.question_generation import QuestionGenerationFlow
from ..flows.review import ReviewFlow
from ..models.progress import TopicProgressStats
from ..models.topic import (
    GenerateQuestionsRequest,
    GenerateQuestionsResponse,
    Question,
    QuestionCreateRequest,
    Topic,
    TopicCreateRequest,
    TopicUpdateRequest,
)
from ..permissions import ensure_owner
from ..store import AppFirestoreStore, get_store

router = APIRouter(prefix="/api/topics", tags=["topics"])


async def _owned_topic(store: AppFirestoreStore, topic_id: str, user_id: str) -> Topic:
    topic = await anyio.to_thread.run_sync(store.get_topic, topic_id)
    return ensure_owner(topic, user_id, kind="Topic")


@router.get("", response_model=list[Topic])
async def list_topics(
    user_id: str = Depends(get_current_user_id),
    store: AppFirestoreStore = Depends(get_store),
) -> list[Topic]:
    """ログインユーザーのトピック一覧（作成日時の新しい順）。"""

    return await anyio.to_thread.run_sync(store.list_topics, user_id)


@router.post("", response_model=Topic, status_code=status.HTTP_201_CREATED)
async def create_topic(
    req: TopicCreateRequest,
    user_id: str = Depends(get_current_user_id),
    store: AppFirestoreStore = Depends(get_store),
) -> Topic:
    return await anyio.to_thread.run_sync(
        partial(
            store.create_topic,
            user_id,
            title=req.title,
            description=req.description,
            color=req.color,
        )
    )


@router.get("/{topic_id}", response_model=Topic)
async def get_topic(
    topic_id: str,
    user_id: str = Depends(get_current_user_id),
    store: AppFirestoreStore = Depends(get_store),
) -> Topic:
    return await _owned_topic(store, topic_id, user_id)


@router.patch("/{topic_id}", response_model=Topic)
async def update_topic(
    topic_id: str,
    req: TopicUpdateRequest,
    user_id: str = Depends(get_current_user_id),
    store: AppFirestoreStore = Depends(get_store),
) -> Topic:
    await _owned_topic(store, topic_id, user_id)
    updates = req.model_dump(by_alias=True, exclude_unset=True, exclude_none=True)
    updated = await anyio.to_thread.run_sync(store.update_topic, topic_id, updates)
    return ensure_owner(updated, user_id, kind="Topic")


@router.delete("/{topic_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_topic(
    topic_id: str,
    user_id: str = Depends(get_current_user_id),
    store: AppFirestoreStore = Depends(get_store),
) -> Response:
    """トピックと配下の問題・進捗をまとめて削除する。"""

    await _owned_topic(store, topic_id, user_id)
    await anyio.to_thread.run_sync(store.delete_topic, topic_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{topic_id}/progress", response_model=TopicProgressStats)
async def topic_progress(
    topic_id: str,
    user_id: str = Depends(get_current_user_id),
    store: AppFirestoreStore = Depends(get_store),
    flow: ReviewFlow = Depends(get_review_flow),
) -> TopicProgressStats:
    await _owned_topic(store, topic_id, user_id)
    return await anyio.to_thread.run_sync(flow.topic_progress, user_id, topic_id)


@router.get("/{topic_id}/questions", response_model=list[Question])
async def list_questions(
    topic_id: str,
    user_id: str = Depends(get_current_user_id),
    store: AppFirestoreStore = Depends(get_store),
) -> list[Question]:
    await _owned_topic(store, topic_id, user_id)
    return await anyio.to_thread.run_sync(store.list_questions, topic_id)


@router.post(
    "/{topic_id}/questions",
    response_model=Question,
    status_code=status.HTTP_201_CREATED,
)
async def create_question(
    topic_id: str,
    req: QuestionCreateRequest,
    user_id: str = Depends(get_current_user_id),
    store: AppFirestoreStore = Depends(get_store),
) -> Question:
    await _owned_topic(store, topic_id, user_id)
    return await anyio.to_thread.run_sync(
        partial(
            store.create_question,
            user_id,
            topic_id,
            question=req.question,
            answer=req.answer,
            options=req.options,
            type=req.type,
            difficulty=req.difficulty,
            source=req.source,
        )
    )


@router.post("/{topic_id}/generate", response_model=GenerateQuestionsResponse)
async def generate_questions(
    topic_id: str,
    req: GenerateQuestionsRequest,
    user_id: str = Depends(get_current_user_id),
    store: AppFirestoreStore = Depends(get_store),
    flow: QuestionGenerationFlow = Depends(get_question_generation_flow),
) -> GenerateQuestionsResponse:
    """AI で問題を生成する。save=True なら generatedByAI=True として保存する。

    Gemini 呼び出しは同期 HTTP のためワーカースレッドへオフロードする。
    """

    topic = await _owned_topic(store, topic_id, user_id)
    generated, saved = await anyio.to_thread.run_sync(
        partial(
            flow.generate_for_topic,
            topic,
            req.count,
            req.difficulty,
            save=req.save,
        )
    )
    return GenerateQuestionsResponse(
        questions=generated, saved_ids=[question.id for question in saved]
    )
