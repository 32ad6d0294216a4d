from __future__ import annotations

from typing import Any

from .logging import logger
from .store import DuplicateWordError, VocabularySQLiteStore


def _word(
    word: str,
    translation: str,
    language: str,
    part_of_speech: str,
    *,
    gender: str | None = None,
    categories: tuple[str, ...] = (),
    pronunciation: str | None = None,
    example: tuple[str, str] | None = None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "word": word,
        "translation": translation,
        "language": language,
        "part_of_speech": part_of_speech,
        "gender": gender,
        "difficulty": "beginner",
        "level": "A1",
        "categories": list(categories),
        "pronunciation": pronunciation,
        "source": "official",
        "verified": True,
    }
    if example is not None:
        payload["examples"] = [{"sentence": example[0], "translation": example[1]}]
    return payload


# 初回レッスン相当のスターターセット（挨拶と数字）
DEMO_VOCABULARY: tuple[dict[str, Any], ...] = (
    _word("Hola", "Hello", "Spanish", "interjection", gender="neuter",
          categories=("greetings",), pronunciation="OH-lah",
          example=("¡Hola! ¿Cómo estás?", "Hello! How are you?")),
    _word("Adiós", "Goodbye", "Spanish", "interjection", gender="neuter",
          categories=("greetings",), pronunciation="ah-DYOHS"),
    _word("Buenos días", "Good morning", "Spanish", "interjection", gender="masculine",
          categories=("greetings", "time"), pronunciation="BWEH-nohs DEE-ahs"),
    _word("Gracias", "Thank you", "Spanish", "interjection", gender="feminine",
          categories=("greetings",), pronunciation="GRAH-syahs"),
    _word("Por favor", "Please", "Spanish", "adverb", gender="neuter",
          categories=("greetings",), pronunciation="pohr fah-VOHR"),
    _word("Uno", "One", "Spanish", "noun", gender="masculine",
          categories=("numbers",), pronunciation="OO-noh"),
    _word("Dos", "Two", "Spanish", "noun", gender="masculine",
          categories=("numbers",), pronunciation="dohs"),
    _word("Tres", "Three", "Spanish", "noun", gender="masculine",
          categories=("numbers",), pronunciation="trehs"),
    _word("Bonjour", "Hello", "French", "interjection", gender="masculine",
          categories=("greetings",), pronunciation="bohn-ZHOOR",
          example=("Bonjour, madame !", "Hello, madam!")),
    _word("Merci", "Thank you", "French", "interjection", gender="masculine",
          categories=("greetings",), pronunciation="mehr-SEE"),
    _word("Au revoir", "Goodbye", "French", "interjection", gender="masculine",
          categories=("greetings",), pronunciation="oh ruh-VWAHR"),
    _word("Un", "One", "French", "noun", gender="masculine",
          categories=("numbers",), pronunciation="uhn"),
)


def seed_demo_vocabulary(store: VocabularySQLiteStore, *, force: bool = False) -> int:
    """Insert the demo vocabulary and return how many words were added.

    ストアが空でない場合は何もしない（`force=True` で既存語を残したまま不足分のみ追加）。
    登録済みの (word, language) は重複エラーを無視してスキップする。
    """

    if not force and store.count_items() > 0:
        logger.info("seed_skipped", reason="store_not_empty")
        return 0

    inserted = 0
    for payload in DEMO_VOCABULARY:
        try:
            store.create_item(payload)
        except DuplicateWordError:
            continue
        inserted += 1
    logger.info("seed_completed", inserted=inserted, total=len(DEMO_VOCABULARY))
    return inserted
