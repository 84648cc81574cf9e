"""FastAPI dependencies that assemble flows from the shared store and settings."""

from __future__ import annotations

from fastapi import Depends

from .flows.question_generation import QuestionGenerationFlow
from .flows.review import ReviewFlow
from .providers import get_llm_provider
from .store import AppFirestoreStore, get_store


def get_review_flow(store: AppFirestoreStore = Depends(get_store)) -> ReviewFlow:
    return ReviewFlow(store)


def get_question_generation_flow(
    store: AppFirestoreStore = Depends(get_store),
) -> QuestionGenerationFlow:
    # プロバイダ未設定時は ConfigurationError（main.py で 503 に変換）
    return QuestionGenerationFlow(get_llm_provider(), store)
