"""問題生成に使う LLM プロバイダ。

Gemini は REST API（generateContent）を httpx で直接呼び出し、OpenAI は公式 SDK
を利用する。どちらも `complete(prompt) -> str` の同期インターフェースに揃え、
失敗は ConfigurationError / RequestError として呼び出し元へ伝播させる。
"""

from __future__ import annotations

from typing import Any

import httpx
from openai import APIError, APIStatusError, OpenAI

from ..config import Settings, settings
from ..errors import ConfigurationError, RequestError
from ..logging import logger

_CONNECTION_TEST_PROMPT = "Generate a simple test question about mathematics."


class _LLMBase:
    """LLM クライアントが実装すべき最小インターフェース。"""

    provider = "base"
    model = ""

    def complete(self, prompt: str) -> str:  # pragma: no cover - interface definition
        raise NotImplementedError

    def test_connection(self) -> bool:
        """Send a tiny prompt and report whether the provider answered."""

        try:
            self.complete(_CONNECTION_TEST_PROMPT)
        except (ConfigurationError, RequestError) as exc:
            logger.warning(
                "llm_connection_test_failed",
                provider=self.provider,
                model=self.model,
                error=str(exc)[:200],
                error_class=exc.__class__.__name__,
            )
            return False
        return True


class _LocalEchoLLM(_LLMBase):
    """外部 API を呼ばないローカル開発用 LLM。常に空文字を返す。"""

    provider = "local"
    model = "echo"

    def complete(self, prompt: str) -> str:
        logger.info(
            "llm_generate_call",
            provider=self.provider,
            model=self.model,
            prompt_chars=len(prompt),
        )
        return ""


class GeminiLLM(_LLMBase):
    """Gemini generateContent を httpx で呼び出すクライアント。"""

    provider = "gemini"

    def __init__(
        self,
        *,
        api_key: str | None,
        model: str,
        base_url: str,
        timeout_ms: int = 60000,
        temperature: float = 0.7,
        max_output_tokens: int = 2048,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._api_key = (api_key or "").strip()
        self.model = model
        self._base_url = base_url.rstrip("/")
        self._timeout = max(1, int(timeout_ms)) / 1000.0
        self._temperature = temperature
        self._max_output_tokens = max_output_tokens
        self._transport = transport

    def _endpoint(self) -> str:
        return f"{self._base_url}/{self.model}:generateContent"

    def _payload(self, prompt: str) -> dict[str, Any]:
        return {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": self._temperature,
                "topK": 40,
                "topP": 0.95,
                "maxOutputTokens": self._max_output_tokens,
            },
        }

    @staticmethod
    def _extract_text(data: Any) -> str:
        """`candidates[0].content.parts[0].text` を取り出す。形が違えば RequestError。"""

        candidates = data.get("candidates") if isinstance(data, dict) else None
        if not candidates or not isinstance(candidates, list):
            raise RequestError("Invalid response from Gemini API: no candidates")
        first = candidates[0]
        content = first.get("content") if isinstance(first, dict) else None
        if not isinstance(content, dict):
            raise RequestError("Invalid response from Gemini API: no content")
        parts = content.get("parts")
        if not isinstance(parts, list) or not parts or not isinstance(parts[0], dict):
            raise RequestError("Invalid response from Gemini API: no content parts")
        return str(parts[0].get("text") or "")

    def complete(self, prompt: str) -> str:
        if not self._api_key:
            raise ConfigurationError("Gemini API key not configured")

        logger.info(
            "llm_generate_call",
            provider=self.provider,
            model=self.model,
            prompt_chars=len(prompt),
        )
        try:
            with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
                resp = client.post(
                    self._endpoint(),
                    headers={"x-goog-api-key": self._api_key},
                    json=self._payload(prompt),
                )
        except httpx.HTTPError as exc:
            logger.warning(
                "llm_generate_failed",
                provider=self.provider,
                model=self.model,
                error=str(exc)[:200],
                error_class=exc.__class__.__name__,
            )
            raise RequestError(f"Gemini API request failed: {exc.__class__.__name__}") from exc

        if not resp.is_success:
            logger.warning(
                "llm_generate_failed",
                provider=self.provider,
                model=self.model,
                status_code=resp.status_code,
            )
            raise RequestError(
                f"Gemini API request failed: {resp.status_code} {resp.reason_phrase}",
                status_code=resp.status_code,
            )
        try:
            data = resp.json()
        except ValueError as exc:
            raise RequestError("Invalid response from Gemini API: body is not JSON") from exc

        text = self._extract_text(data)
        logger.info(
            "llm_generate_result",
            provider=self.provider,
            model=self.model,
            content_chars=len(text),
        )
        return text


class _OpenAILLM(_LLMBase):  # pragma: no cover - オンライン利用が前提
    """OpenAI Chat Completions を利用する LLM ラッパー。"""

    provider = "openai"

    def __init__(
        self,
        *,
        api_key: str | None,
        model: str,
        timeout_ms: int = 60000,
        temperature: float = 0.7,
        max_tokens: int = 2048,
    ) -> None:
        if not (api_key or "").strip():
            raise ConfigurationError("OpenAI API key not configured")
        self._client = OpenAI(api_key=api_key, timeout=max(1, int(timeout_ms)) / 1000.0)
        self.model = model
        self._temperature = float(max(0.0, min(2.0, temperature)))
        self._max_tokens = max_tokens

    def complete(self, prompt: str) -> str:
        logger.info(
            "llm_generate_call",
            provider=self.provider,
            model=self.model,
            prompt_chars=len(prompt),
        )
        try:
            resp = self._client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                temperature=self._temperature,
                max_tokens=self._max_tokens,
            )
        except APIStatusError as exc:
            raise RequestError(
                f"OpenAI API request failed: {exc.status_code}",
                status_code=exc.status_code,
            ) from exc
        except APIError as exc:
            raise RequestError(f"OpenAI API request failed: {exc.__class__.__name__}") from exc

        choices = getattr(resp, "choices", None) or []
        if not choices:
            raise RequestError("Invalid response from OpenAI API: no choices")
        text = (choices[0].message.content or "").strip()
        logger.info(
            "llm_generate_result",
            provider=self.provider,
            model=self.model,
            content_chars=len(text),
        )
        return text


def get_llm_provider(
    config: Settings | None = None, *, transport: httpx.BaseTransport | None = None
) -> _LLMBase:
    """設定に応じた LLM クライアントを返す。

    - gemini: GEMINI_API_KEY が未設定でも生成自体は作成し、呼び出し時に
      ConfigurationError を送出する（接続テストで False を返せるように）
    - openai: OPENAI_API_KEY 必須
    - local: strict モード無効時のみ許可
    """

    cfg = config or settings
    provider = (cfg.llm_provider or "").strip().lower()
    if provider == "gemini":
        return GeminiLLM(
            api_key=cfg.gemini_api_key,
            model=cfg.llm_model,
            base_url=cfg.gemini_api_url,
            timeout_ms=cfg.llm_timeout_ms,
            temperature=cfg.llm_temperature,
            max_output_tokens=cfg.llm_max_tokens,
            transport=transport,
        )
    if provider == "openai":
        return _OpenAILLM(
            api_key=cfg.openai_api_key,
            model=cfg.llm_model,
            timeout_ms=cfg.llm_timeout_ms,
            temperature=cfg.llm_temperature,
            max_tokens=cfg.llm_max_tokens,
        )
    if provider == "local" and not cfg.strict_mode:
        return _LocalEchoLLM()
    raise ConfigurationError(f"Unsupported LLM provider: {cfg.llm_provider!r}")
