from typing import Annotated

from pydantic import AliasChoices, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


_MIN_SESSION_SECRET_KEY_LENGTH = 32
_PLACEHOLDER_SESSION_SECRETS = frozenset({
    "change-me",
    "changeme",
    "change-me-to-random-value",
    "please-change-me",
})


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    環境変数から読み込まれるアプリ設定クラス。
    - environment: 実行環境（development/staging/production など）
    - llm_provider: 問題生成に利用する LLM プロバイダ（gemini/openai/local）
    - srs_*: 間隔反復スケジューラの調整値
    """

    environment: str = Field(
        default="development",
        description="Runtime environment / 実行環境",
    )

    # --- Firestore / Firebase ---
    gcp_project_id: str | None = Field(
        default=None,
        description="GCP project id / GCP プロジェクトID",
        validation_alias=AliasChoices("gcp_project_id", "google_cloud_project"),
    )
    firestore_project_id: str | None = Field(
        default=None,
        description="Firestore project id (falls back to gcp_project_id) / Firestore のプロジェクトID",
    )
    firestore_emulator_host: str | None = Field(
        default=None,
        description="Firestore emulator host:port / Firestore エミュレータの接続先",
    )
    firebase_project_id: str | None = Field(
        default=None,
        description="Firebase project id used as ID token audience / Firebase ID トークンの audience",
    )
    firebase_clock_skew_seconds: int = Field(
        default=60,
        description=(
            "Allowed clock skew when verifying Firebase ID tokens (seconds) / "
            "Firebase ID トークン検証時に許容する時計ずれ（秒）"
        ),
    )

    # --- Session ---
    session_secret_key: str = Field(
        default="",
        description="Secret key for signing session cookies / セッションクッキー署名用シークレット",
    )
    session_cookie_name: str = Field(
        default="cg_session",
        description="Session cookie name / セッションクッキー名",
    )
    session_cookie_secure: bool = Field(
        default=False,
        description="Whether to mark session cookie as Secure / セッションクッキーにSecure属性を付与するか",
    )
    session_max_age_seconds: int = Field(
        default=60 * 60 * 24 * 14,
        description="Session lifetime in seconds / セッションの寿命（秒）",
    )
    disable_session_auth: bool = Field(
        default=False,
        description=(
            "Disable session cookie authentication (development/testing only) / "
            "セッションクッキー認証を無効化する（開発・テスト用途のみ）"
        ),
    )
    dev_user_id: str = Field(
        default="demo-user",
        description=(
            "Principal used when session auth is disabled / "
            "認証無効時にすべてのリクエストが扱うユーザーID"
        ),
    )

    # --- LLM ---
    llm_provider: str = Field(
        default="gemini",
        description="LLM service provider / 利用するLLMプロバイダ",
    )
    llm_model: str = Field(
        default="gemini-2.0-flash-exp",
        description="LLM model name / 利用するLLMモデル名",
    )
    gemini_api_key: str | None = Field(default=None, description="Gemini API Key")
    gemini_api_url: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta/models",
        description="Gemini REST base URL / Gemini REST API のベースURL",
    )
    openai_api_key: str | None = Field(default=None, description="OpenAI API Key")
    llm_timeout_ms: int = Field(
        default=60000,
        description="Per-request timeout for LLM calls (ms) / LLM呼出しのタイムアウト(ms)",
    )
    llm_temperature: float = Field(
        default=0.7,
        description="Sampling temperature for question generation / 問題生成時の温度",
    )
    llm_max_tokens: int = Field(
        default=2048,
        description="Max tokens for LLM completion output / LLM出力の最大トークン数",
    )

    # --- SRS（間隔反復）---
    srs_initial_interval_hours: float = Field(
        default=5.0,
        description="Interval after the first successful answer (hours) / 初回間隔（時間）",
    )
    srs_min_interval_hours: float = Field(
        default=1.0,
        description="Minimum review interval (hours) / 最小間隔（時間）",
    )
    srs_max_interval_hours: float = Field(
        default=168.0,
        description="Maximum review interval (hours) / 最大間隔（時間）",
    )
    srs_hard_penalty: float = Field(
        default=2.0,
        description="Divisor applied on 'hard' answers / hard 回答時の除数",
    )
    srs_easy_bonus: float = Field(
        default=2.5,
        description="Multiplier applied on 'easy' answers / easy 回答時の乗数",
    )
    review_default_limit: int = Field(
        default=20,
        description="Default size of a review queue / 復習キューの既定件数",
    )
    review_due_fetch_limit: int = Field(
        default=200,
        description=(
            "Max due records fetched from Firestore before selection / "
            "選別前に Firestore から取得する期限到来レコードの上限"
        ),
    )

    # --- HTTP ---
    allowed_cors_origins: Annotated[tuple[str, ...], NoDecode] = Field(
        default=(),
        description=(
            "Comma separated CORS origins / CORS で許可するオリジンのカンマ区切り一覧"
        ),
        validation_alias=AliasChoices("allowed_cors_origins", "cors_allowed_origins"),
    )
    sentry_dsn: str | None = Field(
        default=None, description="Sentry DSN (enable if set)"
    )
    log_level: str = Field(
        default="INFO", description="Root log level / ルートロガーのレベル (DEBUG, INFO, ...)"
    )

    # --- Strict mode ---
    strict_mode: bool = Field(
        default=True,
        description="Fail fast on missing/invalid configuration (disable only for tests)",
    )

    # Pydantic v2 settings config
    # - env_file: .env を読み込む
    # - extra: .env に存在する未使用キーを無視
    # - case_sensitive: 環境変数キーの大小文字を区別しない
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        case_sensitive=False,
    )

    @field_validator("session_secret_key", mode="after")
    @classmethod
    def _validate_session_secret(cls, value: str) -> str:
        """Ensure session secret keys are safely randomised before accepting them.

        既知のプレースホルダーや短い文字列のまま起動するとセッションを偽造される
        恐れがあるため、環境変数の読み込み段階で検証し、危険な値は即座に拒否する。
        """

        secret = (value or "").strip()
        if not secret:
            raise ValueError(
                "SESSION_SECRET_KEY must be a non-empty random string",
            )

        if secret.casefold() in _PLACEHOLDER_SESSION_SECRETS:
            raise ValueError(
                "SESSION_SECRET_KEY must not use placeholder values like 'change-me'",
            )

        if len(secret) < _MIN_SESSION_SECRET_KEY_LENGTH:
            raise ValueError(
                "SESSION_SECRET_KEY must be at least 32 characters long",
            )

        return secret

    @field_validator("allowed_cors_origins", mode="before")
    @classmethod
    def _normalise_allowed_cors_origins(
        cls, raw_origins: object
    ) -> tuple[str, ...] | object:  # pragma: no cover - pydantic handles typing
        """Convert environment input into a deduplicated tuple of origins."""

        if raw_origins is None:
            candidates: list[str] = []
        elif isinstance(raw_origins, str):
            candidates = raw_origins.split(",")
        else:
            try:
                candidates = list(raw_origins)
            except TypeError:
                return raw_origins

        normalised: list[str] = []
        seen: set[str] = set()
        for candidate in candidates:
            if not isinstance(candidate, str):
                continue
            trimmed = candidate.strip()
            if not trimmed or trimmed in seen:
                continue
            seen.add(trimmed)
            normalised.append(trimmed)

        return tuple(normalised)

    @field_validator("llm_provider", mode="after")
    @classmethod
    def _normalise_llm_provider(cls, value: str) -> str:
        return (value or "").strip().lower()

    @model_validator(mode="after")
    def _apply_environment_sensitive_defaults(self) -> "Settings":
        """Harmonise environment defaults without overriding explicit choices.

        ENVIRONMENT=production のときだけ Secure 属性を既定で有効化し、明示的に
        設定された値は上書きしない。本番で認証無効化フラグが立っている場合は
        strict モードで起動を拒否する。
        """

        environment_name = (self.environment or "").lower()
        is_secure_explicitly_configured = "session_cookie_secure" in self.model_fields_set
        if environment_name == "production" and not is_secure_explicitly_configured:
            self.session_cookie_secure = True

        if (
            environment_name == "production"
            and self.disable_session_auth
            and self.strict_mode
        ):
            raise ValueError(
                "DISABLE_SESSION_AUTH must not be enabled in production",
            )

        if self.srs_min_interval_hours > self.srs_max_interval_hours:
            raise ValueError(
                "SRS_MIN_INTERVAL_HOURS must not exceed SRS_MAX_INTERVAL_HOURS",
            )

        return self


settings = Settings()
