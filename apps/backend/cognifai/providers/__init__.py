"""問題生成に使う外部 AI プロバイダの公開 API。"""

from __future__ import annotations

from .llm import GeminiLLM, get_llm_provider

__all__ = [
    "GeminiLLM",
    "get_llm_provider",
]
