"""Logging utilities and sanitisation helpers.

構造化ログの初期化と、機密情報を含むイベントを安全にマスクする
ヘルパーをまとめて提供する。Gemini/OpenAI の API キーやセッション
トークンがログへ混入しないよう、ここで一元的にフィルタリングする。
"""

from typing import Any

import logging
import structlog
from structlog import contextvars as structlog_contextvars
from .config import settings


_SENSITIVE_KEYWORDS = ("api_key", "token", "secret", "authorization", "password", "cookie", "key")
_MASK_PLACEHOLDER = "***"
_VISIBLE_CHARS = 4


def _mask_secret_value(raw: object) -> str:
    """Return a masked representation of a secret-like value.

    8文字以下は `***`、それより長い値は先頭と末尾の4文字だけを残す。
    """

    text = "" if raw is None else str(raw).strip()
    if len(text) <= _VISIBLE_CHARS * 2:
        return _MASK_PLACEHOLDER
    return f"{text[:_VISIBLE_CHARS]}…{text[-_VISIBLE_CHARS:]}"


def _is_sensitive_key(key: str) -> bool:
    lowered = key.lower()
    return any(keyword in lowered for keyword in _SENSITIVE_KEYWORDS)


def _known_secrets() -> tuple[str, ...]:
    """Collect secret literals currently configured for this process."""

    candidates = (settings.gemini_api_key, settings.openai_api_key, settings.session_secret_key)
    return tuple(secret for secret in candidates if secret)


def _scrub(value: Any, secrets: tuple[str, ...], key_hint: str | None = None) -> Any:
    """Mask one log value, descending into dicts and lists.

    例外メッセージや上流のエラーボディにキーが混入することがあるため、
    既知のリテラルは文字列中でも置換する。
    """

    if isinstance(value, dict):
        return {k: _scrub(v, secrets, str(k)) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_scrub(item, secrets, key_hint) for item in value]
    sensitive = bool(key_hint) and _is_sensitive_key(key_hint)
    if isinstance(value, str):
        for secret in secrets:
            value = value.replace(secret, _mask_secret_value(secret))
        return _mask_secret_value(value) if sensitive else value
    return _mask_secret_value(value) if sensitive else value


def _sanitize_event_dict(
    logger: structlog.types.WrappedLogger,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """structlog processor: キー名と既知シークレットの両面でイベントをマスクする。"""

    secrets = _known_secrets()
    for key, value in list(event_dict.items()):
        event_dict[key] = _scrub(value, secrets, None if key == "event" else str(key))
    return event_dict


def configure_logging() -> None:
    """Configure structlog for application-wide logging.

    標準 logging を LOG_LEVEL で初期化し、structlog の出力を
    ISO タイムスタンプ付き JSON に揃える。SENTRY_DSN があれば
    ERROR 以上を Sentry へ送る。
    """
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO
    # force=True で uvicorn 側のハンドラも揃える
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[logging.StreamHandler()],
        force=True,
    )
    # httpx は INFO でリクエスト URL をそのまま出力するため WARNING 以上に絞る
    for noisy in ("httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(max(level, logging.WARNING))
    structlog.configure(
        processors=[
            structlog_contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            _sanitize_event_dict,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
    )

    if settings.sentry_dsn:
        import sentry_sdk
        from sentry_sdk.integrations.logging import LoggingIntegration

        sentry_sdk.init(
            dsn=settings.sentry_dsn,
            environment=settings.environment,
            integrations=[LoggingIntegration(level=level, event_level=logging.ERROR)],
        )


logger = structlog.get_logger()
