from typing import Annotated

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic_settings.sources.types import NoDecode


DEFAULT_DB_PATH = ".data/lingualeap.sqlite3"


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    環境変数（および `.env`）から読み込まれるアプリ設定クラス。
    - environment: 実行環境（development/staging/production など）
    - vocabulary_db_path: 語彙・学習状態を保存する SQLite のパス
    - review_session_limit: 1 回の復習セッションで返す既定件数
    """

    environment: str = Field(
        default="development",
        description="Runtime environment / 実行環境",
    )

    # --- データ永続化設定 ---
    vocabulary_db_path: str = Field(
        default=DEFAULT_DB_PATH,
        description="Path to SQLite database for vocabulary persistence / 語彙用SQLite DBパス",
        validation_alias=AliasChoices("vocabulary_db_path", "lingualeap_db_path"),
    )

    # --- 復習/クイズ ---
    review_session_limit: int = Field(
        default=20,
        ge=1,
        description="Default number of due words per review session / 復習セッションの既定出題数",
    )
    review_limit_max: int = Field(
        default=100,
        ge=1,
        description="Upper bound for the review/list `limit` query parameter / limit の上限",
    )
    quiz_default_limit: int = Field(
        default=10,
        ge=1,
        description="Default number of quiz words / クイズの既定出題数",
    )
    practice_max_attempts: int = Field(
        default=3,
        ge=1,
        description=(
            "Max optimistic-concurrency attempts when recording practice / "
            "練習結果の書き込みで競合時に再試行する最大回数"
        ),
    )

    # --- Operations/Observability ---
    rate_limit_per_min_ip: int = Field(
        default=240,
        description="Per-IP API requests per minute / IP単位の毎分上限",
    )
    log_level: str = Field(
        default="INFO",
        description="Root log level / ログレベル",
    )
    sentry_dsn: str | None = Field(
        default=None, description="Sentry DSN (enable if set)"
    )
    allowed_cors_origins: Annotated[tuple[str, ...], NoDecode] = Field(
        default=(),
        description=(
            "Comma separated CORS origins / CORS で許可するオリジンのカンマ区切り一覧"
        ),
        validation_alias=AliasChoices("allowed_cors_origins", "cors_allowed_origins"),
    )

    # --- Auto seed on startup (optional) ---
    auto_seed_on_startup: bool = Field(
        default=False,
        description="Insert demo vocabulary on startup when the store is empty / 起動時にデモ語彙を投入",
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

    @field_validator("allowed_cors_origins", mode="before")
    @classmethod
    def _normalise_allowed_cors_origins(
        cls, raw_origins: object
    ) -> tuple[str, ...] | object:  # pragma: no cover - pydantic handles typing
        """Convert environment input into a deduplicated tuple of origins.

        `.env` の値は空白や重複が混ざりやすいため、トリムと重複排除を行う。
        """

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

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalise_log_level(cls, raw_level: object) -> object:
        if isinstance(raw_level, str):
            level = raw_level.strip().upper()
            if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
                raise ValueError(f"unsupported LOG_LEVEL: {raw_level!r}")
            return level
        return raw_level


settings = Settings()
