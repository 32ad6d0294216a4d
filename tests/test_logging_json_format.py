import io
import json
import sys
import tempfile
import types
from contextlib import contextmanager, redirect_stderr, redirect_stdout
from pathlib import Path


def _drop_lingualeap_modules(*, keep_config: bool) -> None:
    for name in list(sys.modules.keys()):
        if name == "lingualeap.config" and keep_config:
            continue
        if name.startswith("lingualeap."):
            sys.modules.pop(name)


@contextmanager
def _use_fake_settings() -> object:
    """Install a lightweight Settings stub during a test and restore afterwards.

    ログ検証では最小限の属性のみを持つスタブを使い、テスト終了後は
    モジュールを元に戻して他テストへの影響を遮断する。
    """

    original_config = sys.modules.get("lingualeap.config")
    fake_config = types.ModuleType("lingualeap.config")
    db_dir = Path(tempfile.mkdtemp(prefix="lingualeap-logging-"))

    class _Settings:
        environment = "development"
        vocabulary_db_path = str(db_dir / "store.sqlite3")
        review_session_limit = 20
        review_limit_max = 100
        quiz_default_limit = 10
        practice_max_attempts = 3
        rate_limit_per_min_ip = 120
        log_level = "INFO"
        sentry_dsn: str | None = None
        allowed_cors_origins = ()
        auto_seed_on_startup = False

    fake_config.settings = _Settings()
    fake_config.Settings = _Settings
    _drop_lingualeap_modules(keep_config=False)
    sys.modules["lingualeap.config"] = fake_config
    try:
        yield fake_config.settings
    finally:
        if original_config is not None:
            sys.modules["lingualeap.config"] = original_config
        else:
            sys.modules.pop("lingualeap.config", None)
        _drop_lingualeap_modules(keep_config=True)


def _json_lines(buffer_text: str) -> list[dict]:
    records = []
    for line in buffer_text.splitlines():
        line = line.strip()
        if not line.startswith("{"):
            continue
        records.append(json.loads(line))
    return records


def _events(records: list[dict], name: str) -> list[dict]:
    return [record for record in records if record.get("event") == name]


def test_structlog_outputs_pure_json_without_stdlib_prefix():
    buf_out = io.StringIO()
    buf_err = io.StringIO()

    with redirect_stdout(buf_out), redirect_stderr(buf_err):
        with _use_fake_settings():
            from lingualeap.logging import configure_logging, logger

            configure_logging()
            logger.info(
                "request_complete",
                path="/healthz",
                method="GET",
                latency_ms=1.23,
                request_id="test-request-id",
            )

    raw = buf_err.getvalue().strip() or buf_out.getvalue().strip()
    lines = [ln for ln in raw.splitlines() if ln.strip()]
    message_text = lines[-1] if lines else ""

    assert message_text, "no log output captured"
    assert not message_text.startswith("INFO:"), message_text

    data = json.loads(message_text)
    assert data.get("event") == "request_complete"
    assert data.get("level") in {"info", "INFO"}
    assert data.get("path") == "/healthz"
    assert "timestamp" in data
    assert data.get("request_id") == "test-request-id"


def test_request_complete_log_contains_request_id_and_status_code() -> None:
    buf_out = io.StringIO()
    buf_err = io.StringIO()

    with redirect_stdout(buf_out), redirect_stderr(buf_err):
        with _use_fake_settings():
            from fastapi.testclient import TestClient

            from lingualeap.main import app

            with TestClient(app) as client:
                response = client.get("/healthz", headers={"X-Request-ID": "req-abcdef12"})

            assert response.status_code == 200

    records = _events(_json_lines(buf_err.getvalue() + buf_out.getvalue()), "request_complete")

    assert records, "request_complete log line not found"
    assert records[-1]["request_id"] == "req-abcdef12"
    assert records[-1]["status_code"] == 200
    assert records[-1]["is_error"] is False


def test_domain_events_carry_bound_request_id() -> None:
    buf_out = io.StringIO()
    buf_err = io.StringIO()

    with redirect_stdout(buf_out), redirect_stderr(buf_err):
        with _use_fake_settings():
            from fastapi.testclient import TestClient

            from lingualeap.main import app

            with TestClient(app) as client:
                created = client.post(
                    "/api/vocabulary",
                    json={
                        "word": "Merci",
                        "translation": "Thank you",
                        "language": "French",
                        "part_of_speech": "interjection",
                        "gender": "masculine",
                    },
                    headers={"X-Request-ID": "req-create-0001"},
                )
                assert created.status_code == 201
                item_id = created.json()["id"]
                practiced = client.post(
                    f"/api/vocabulary/{item_id}/practice",
                    json={"correct": True, "response_time": 1.5},
                    headers={"X-Request-ID": "req-practice-0001"},
                )
                assert practiced.status_code == 200

    records = _json_lines(buf_err.getvalue() + buf_out.getvalue())
    created_events = _events(records, "vocabulary_created")
    review_events = _events(records, "review_recorded")

    assert created_events and created_events[-1]["request_id"] == "req-create-0001"
    assert review_events and review_events[-1]["request_id"] == "req-practice-0001"
    assert review_events[-1]["item_id"] == item_id
    assert review_events[-1]["interval_days"] == 1


def test_sensitive_values_are_masked_in_logs() -> None:
    buf_out = io.StringIO()
    buf_err = io.StringIO()
    dsn = "https://abcdef0123456789@o1.ingest.sentry.io/42"

    with redirect_stdout(buf_out), redirect_stderr(buf_err):
        with _use_fake_settings() as fake_settings:
            from lingualeap.logging import configure_logging, logger

            configure_logging()
            # Sentry 初期化を避けるため、設定後に DSN を差し込む
            fake_settings.sentry_dsn = dsn
            logger.info(
                "config_dump",
                sentry_dsn=dsn,
                nested={"auth_token": "tok-0123456789"},
                message=f"connecting with {dsn}",
                word="Hola",
            )

    raw = buf_err.getvalue() + buf_out.getvalue()
    data = _events(_json_lines(raw), "config_dump")[-1]

    assert dsn not in raw
    assert "tok-0123456789" not in raw
    assert data["sentry_dsn"] == "http…o/42"
    assert data["nested"]["auth_token"] == "tok-…6789"
    assert data["word"] == "Hola"
