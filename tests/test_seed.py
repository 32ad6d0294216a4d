import importlib.util
import sys
from pathlib import Path

import pytest

from lingualeap.models.vocabulary import VocabularyCreateRequest
from lingualeap.seed import DEMO_VOCABULARY, seed_demo_vocabulary
from lingualeap.store import VocabularySQLiteStore


@pytest.fixture()
def store(tmp_path: Path) -> VocabularySQLiteStore:
    return VocabularySQLiteStore(str(tmp_path / "seed.sqlite3"))


def test_demo_vocabulary_passes_request_validation():
    for payload in DEMO_VOCABULARY:
        VocabularyCreateRequest.model_validate(payload)


def test_seed_inserts_demo_words_into_empty_store(store):
    inserted = seed_demo_vocabulary(store)

    assert inserted == len(DEMO_VOCABULARY)
    assert store.count_items() == len(DEMO_VOCABULARY)
    due = store.due_for_review(language="Spanish", limit=100)
    assert {record.word for record in due} >= {"Hola", "Gracias", "Uno"}


def test_seed_is_skipped_when_store_has_data(store):
    store.create_item(
        {
            "word": "Gato",
            "translation": "Cat",
            "language": "Spanish",
            "part_of_speech": "noun",
            "gender": "masculine",
        }
    )

    assert seed_demo_vocabulary(store) == 0
    assert store.count_items() == 1


def test_forced_seed_only_adds_missing_words(store):
    seed_demo_vocabulary(store)

    assert seed_demo_vocabulary(store, force=True) == 0
    assert store.count_items() == len(DEMO_VOCABULARY)


def _drop_lingualeap_modules() -> None:
    for name in list(sys.modules.keys()):
        if name == "lingualeap" or name.startswith("lingualeap."):
            sys.modules.pop(name)


def _run_seed_script(monkeypatch: pytest.MonkeyPatch, *argv: str) -> None:
    script = Path(__file__).resolve().parents[1] / "scripts" / "seed_demo.py"
    spec = importlib.util.spec_from_file_location("seed_demo_script", script)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)

    monkeypatch.setattr(sys, "argv", [str(script), *argv])
    # 設定とストアのシングルトンを実行ごとに読み直す
    _drop_lingualeap_modules()
    try:
        module.main()
    finally:
        _drop_lingualeap_modules()


def test_seed_script_reports_skip_once_when_data_exists(tmp_path, monkeypatch, capsys):
    db_path = tmp_path / "script.sqlite3"
    monkeypatch.setenv("VOCABULARY_DB_PATH", str(db_path))
    monkeypatch.setattr(sys, "path", list(sys.path))

    _run_seed_script(monkeypatch, "--db-path", str(db_path))
    first = capsys.readouterr().out
    _run_seed_script(monkeypatch, "--db-path", str(db_path))
    second = capsys.readouterr().out

    assert f"Seeded {len(DEMO_VOCABULARY)} vocabulary words" in first
    assert [line for line in second.splitlines() if line.strip()] == [
        "Vocabulary already present. Skipping seed."
    ]
