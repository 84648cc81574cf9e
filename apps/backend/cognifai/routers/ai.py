from __future__ import annotations

import anyio
from fastapi import APIRouter, Depends

from ..auth import get_current_user_id
from ..config import settings
from ..errors import ConfigurationError
from ..logging import logger
from ..models.topic import AIStatusResponse
from ..providers import get_llm_provider

router = APIRouter(prefix="/api/ai", tags=["ai"])


@router.get("/status", response_model=AIStatusResponse)
async def ai_status(user_id: str = Depends(get_current_user_id)) -> AIStatusResponse:
    """問題生成 AI へ疎通できるかを返す（プロフィール画面の接続テスト用）。

    プロバイダ未設定は 503 にせず connected=false として返す。
    """

    try:
        llm = get_llm_provider()
    except ConfigurationError as exc:
        logger.warning(
            "llm_connection_test_failed",
            provider=settings.llm_provider,
            error=str(exc)[:200],
            error_class=exc.__class__.__name__,
        )
        return AIStatusResponse(connected=False, provider=settings.llm_provider)

    connected = await anyio.to_thread.run_sync(llm.test_connection)
    return AIStatusResponse(connected=connected, provider=llm.provider, model=llm.model)
