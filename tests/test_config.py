"""設定の読み込みと正規化を検証するテスト群。"""

import pytest
from pydantic import ValidationError

from lingualeap.config import DEFAULT_DB_PATH, Settings


@pytest.fixture(autouse=True)
def _clear_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in (
        "VOCABULARY_DB_PATH",
        "LINGUALEAP_DB_PATH",
        "ALLOWED_CORS_ORIGINS",
        "CORS_ALLOWED_ORIGINS",
        "LOG_LEVEL",
        "REVIEW_SESSION_LIMIT",
        "AUTO_SEED_ON_STARTUP",
    ):
        monkeypatch.delenv(key, raising=False)


def test_defaults():
    config = Settings(_env_file=None)

    assert config.vocabulary_db_path == DEFAULT_DB_PATH
    assert config.review_session_limit == 20
    assert config.practice_max_attempts == 3
    assert config.allowed_cors_origins == ()
    assert config.log_level == "INFO"
    assert config.auto_seed_on_startup is False


def test_settings_reads_cors_origins_from_env(monkeypatch):
    """`CORS_ALLOWED_ORIGINS` から値を読み込み、トリムと重複排除を行う。"""

    monkeypatch.setenv(
        "CORS_ALLOWED_ORIGINS",
        " https://app.example.com ,https://admin.example.com,https://app.example.com ",
    )

    config = Settings(_env_file=None)

    assert config.allowed_cors_origins == (
        "https://app.example.com",
        "https://admin.example.com",
    )


def test_empty_cors_origins_become_empty_tuple(monkeypatch):
    monkeypatch.setenv("ALLOWED_CORS_ORIGINS", " , ,")

    assert Settings(_env_file=None).allowed_cors_origins == ()


def test_db_path_alias(monkeypatch):
    monkeypatch.setenv("LINGUALEAP_DB_PATH", "/tmp/alias.sqlite3")

    assert Settings(_env_file=None).vocabulary_db_path == "/tmp/alias.sqlite3"


def test_log_level_is_normalised(monkeypatch):
    monkeypatch.setenv("LOG_LEVEL", " debug ")
    assert Settings(_env_file=None).log_level == "DEBUG"

    monkeypatch.setenv("LOG_LEVEL", "chatty")
    with pytest.raises(ValidationError):
        Settings(_env_file=None)


def test_review_session_limit_must_be_positive(monkeypatch):
    monkeypatch.setenv("REVIEW_SESSION_LIMIT", "0")

    with pytest.raises(ValidationError):
        Settings(_env_file=None)
