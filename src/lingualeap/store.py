from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager, suppress
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Callable, Iterator, Mapping

from .config import settings
from .id_factory import generate_vocabulary_id
from .logging import logger
from .srs import LearningState, ReviewOutcome, record_review, select_due_items


_JSON_LIST_FIELDS = ("categories", "tags", "examples")
_CATALOGUE_FIELDS = (
    "word",
    "translation",
    "language",
    "native_language",
    "part_of_speech",
    "gender",
    "difficulty",
    "level",
    "frequency",
    "categories",
    "tags",
    "pronunciation",
    "cultural_notes",
    "examples",
    "source",
    "verified",
)
_SORT_COLUMNS = {
    "word": "word_key",
    "translation": "casefold(translation)",
    "created_at": "created_at",
    "difficulty": (
        "CASE difficulty WHEN 'beginner' THEN 0 WHEN 'intermediate' THEN 1 ELSE 2 END"
    ),
    "level": "level",
    "mastery_level": "mastery_level",
    "next_review": "next_review",
}
_SELECT_COLUMNS = """
    id, word, translation, language, native_language, part_of_speech, gender,
    difficulty, level, frequency, categories, tags, pronunciation, cultural_notes,
    examples, source, verified, is_active,
    times_reviewed, correct_answers, incorrect_answers, mastery_level,
    average_response_time, last_reviewed, next_review,
    version, created_at, updated_at
"""


class DuplicateWordError(ValueError):
    """The (word, language) pair is already registered."""


class ConcurrentModificationError(RuntimeError):
    """A review could not be committed because the item kept changing underneath."""

    def __init__(self, item_id: str, attempts: int) -> None:
        super().__init__(f"vocabulary item {item_id} was modified concurrently ({attempts} attempts)")
        self.item_id = item_id
        self.attempts = attempts


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _to_iso(value: datetime) -> str:
    # 文字列比較で時系列順になるよう、常に UTC・マイクロ秒まで揃えた形式で保存する
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="microseconds")


def _parse_iso(raw: str) -> datetime:
    parsed = datetime.fromisoformat(raw)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _from_iso(raw: str | None) -> datetime | None:
    if not raw:
        return None
    return _parse_iso(raw)


def _casefold(value: object) -> str | None:
    # SQLite の lower() は ASCII のみを畳み込むため、Python 側の casefold を使う
    if value is None:
        return None
    return str(value).casefold()


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


@dataclass(frozen=True)
class VocabularyRecord:
    """A persisted vocabulary word: catalogue fields plus learning state."""

    id: str
    word: str
    translation: str
    language: str
    part_of_speech: str
    native_language: str = "English"
    gender: str | None = None
    difficulty: str = "beginner"
    level: str = "A1"
    frequency: str = "common"
    categories: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    pronunciation: str | None = None
    cultural_notes: str | None = None
    examples: list[dict[str, Any]] = field(default_factory=list)
    source: str = "official"
    verified: bool = False
    is_active: bool = True
    learning: LearningState = field(default_factory=LearningState)
    version: int = 1
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def catalogue(self) -> dict[str, Any]:
        """Return the catalogue fields (everything the scheduler does not own)."""

        return {name: getattr(self, name) for name in _CATALOGUE_FIELDS}


@dataclass(frozen=True)
class ReviewLogEntry:
    reviewed_at: datetime
    correct: bool
    response_time: float
    mastery_level: float
    interval_days: int
    next_review: datetime


@dataclass(frozen=True)
class GroupStats:
    language: str
    difficulty: str
    level: str
    count: int
    avg_mastery: float
    total_reviews: int


@dataclass(frozen=True)
class VocabularyStats:
    groups: list[GroupStats]
    due_now: int
    reviewed_today: int


class VocabularySQLiteStore:
    """SQLite-backed store for vocabulary items, learning state and review history.

    - 学習状態の更新は `record_practice` のみが行う（スケジューラの計算結果を書き込む）
    - 書き込みは version 列による楽観的排他制御。競合時は読み直して再計算する
    - 削除は is_active=0 の論理削除
    """

    def __init__(
        self,
        db_path: str,
        *,
        max_attempts: int = 3,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.db_path = db_path
        self.max_attempts = max(1, int(max_attempts))
        self._clock = clock
        self._ensure_dirs()
        self._init_db()

    # --- low-level helpers ---
    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            self.db_path, timeout=10.0, isolation_level=None, check_same_thread=False
        )
        conn.row_factory = sqlite3.Row
        conn.create_function("casefold", 1, _casefold, deterministic=True)
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA foreign_keys=ON;")
        return conn

    @contextmanager
    def _conn(self) -> Iterator[sqlite3.Connection]:
        conn = self._connect()
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """BEGIN IMMEDIATE ... COMMIT, rolling back on any exception."""

        with self._conn() as conn:
            conn.execute("BEGIN IMMEDIATE;")
            try:
                yield conn
            except BaseException:
                with suppress(sqlite3.Error):
                    conn.execute("ROLLBACK;")
                raise
            conn.execute("COMMIT;")

    def _ensure_dirs(self) -> None:
        if self.db_path == ":memory:":
            return
        p = Path(self.db_path)
        if p.parent and not p.parent.exists():
            p.parent.mkdir(parents=True, exist_ok=True)

    def _init_db(self) -> None:
        with self._transaction() as conn:
            self._ensure_vocabulary_table(conn)
            self._ensure_reviews_table(conn)

    def _ensure_vocabulary_table(self, conn: sqlite3.Connection) -> None:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS vocabulary (
                id TEXT PRIMARY KEY,
                word TEXT NOT NULL,
                word_key TEXT NOT NULL,
                translation TEXT NOT NULL,
                language TEXT NOT NULL,
                native_language TEXT NOT NULL DEFAULT 'English',
                part_of_speech TEXT NOT NULL,
                gender TEXT,
                difficulty TEXT NOT NULL DEFAULT 'beginner',
                level TEXT NOT NULL DEFAULT 'A1',
                frequency TEXT NOT NULL DEFAULT 'common',
                categories TEXT NOT NULL DEFAULT '[]',
                tags TEXT NOT NULL DEFAULT '[]',
                pronunciation TEXT,
                cultural_notes TEXT,
                examples TEXT NOT NULL DEFAULT '[]',
                source TEXT NOT NULL DEFAULT 'official',
                verified INTEGER NOT NULL DEFAULT 0,
                is_active INTEGER NOT NULL DEFAULT 1,
                times_reviewed INTEGER NOT NULL DEFAULT 0,
                correct_answers INTEGER NOT NULL DEFAULT 0,
                incorrect_answers INTEGER NOT NULL DEFAULT 0,
                mastery_level REAL NOT NULL DEFAULT 0,
                average_response_time REAL NOT NULL DEFAULT 0,
                last_reviewed TEXT,
                next_review TEXT NOT NULL,
                version INTEGER NOT NULL DEFAULT 1,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                CHECK (times_reviewed = correct_answers + incorrect_answers),
                CHECK (mastery_level >= 0 AND mastery_level <= 5)
            );
            """
        )
        conn.execute(
            "CREATE UNIQUE INDEX IF NOT EXISTS idx_vocabulary_word_language "
            "ON vocabulary(word_key, language);"
        )
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_vocabulary_next_review ON vocabulary(next_review);"
        )
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_vocabulary_language_level "
            "ON vocabulary(language, difficulty, level);"
        )

    def _ensure_reviews_table(self, conn: sqlite3.Connection) -> None:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS reviews (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                item_id TEXT NOT NULL,
                reviewed_at TEXT NOT NULL,
                correct INTEGER NOT NULL,
                response_time REAL NOT NULL,
                mastery_level REAL NOT NULL,
                interval_days INTEGER NOT NULL,
                next_review TEXT NOT NULL,
                FOREIGN KEY(item_id) REFERENCES vocabulary(id) ON DELETE CASCADE
            );
            """
        )
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_reviews_item ON reviews(item_id, reviewed_at);"
        )
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_reviews_reviewed_at ON reviews(reviewed_at);"
        )

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> VocabularyRecord:
        learning = LearningState(
            times_reviewed=int(row["times_reviewed"]),
            correct_answers=int(row["correct_answers"]),
            incorrect_answers=int(row["incorrect_answers"]),
            mastery_level=float(row["mastery_level"]),
            average_response_time=float(row["average_response_time"]),
            last_reviewed=_from_iso(row["last_reviewed"]),
            next_review=_from_iso(row["next_review"]),
        )
        return VocabularyRecord(
            id=row["id"],
            word=row["word"],
            translation=row["translation"],
            language=row["language"],
            native_language=row["native_language"],
            part_of_speech=row["part_of_speech"],
            gender=row["gender"],
            difficulty=row["difficulty"],
            level=row["level"],
            frequency=row["frequency"],
            categories=json.loads(row["categories"] or "[]"),
            tags=json.loads(row["tags"] or "[]"),
            pronunciation=row["pronunciation"],
            cultural_notes=row["cultural_notes"],
            examples=json.loads(row["examples"] or "[]"),
            source=row["source"],
            verified=bool(row["verified"]),
            is_active=bool(row["is_active"]),
            learning=learning,
            version=int(row["version"]),
            created_at=_from_iso(row["created_at"]),
            updated_at=_from_iso(row["updated_at"]),
        )

    @staticmethod
    def _column_values(payload: Mapping[str, Any]) -> dict[str, Any]:
        """Encode catalogue fields for SQLite (lists as JSON, bools as ints)."""

        values: dict[str, Any] = {}
        for name in _CATALOGUE_FIELDS:
            if name not in payload:
                continue
            value = payload[name]
            if name in _JSON_LIST_FIELDS:
                value = json.dumps(list(value or []), ensure_ascii=False)
            elif name == "verified":
                value = 1 if value else 0
            values[name] = value
        if "word" in values:
            values["word_key"] = _casefold(values["word"])
        return values

    def _fetch_one(self, conn: sqlite3.Connection, item_id: str) -> VocabularyRecord | None:
        row = conn.execute(
            f"SELECT {_SELECT_COLUMNS} FROM vocabulary WHERE id = ?;", (item_id,)
        ).fetchone()
        return self._row_to_record(row) if row is not None else None

    # --- catalogue CRUD ---
    def create_item(self, payload: Mapping[str, Any]) -> VocabularyRecord:
        """Insert a new word. Its learning state starts empty and due immediately."""

        now = _to_iso(self._clock())
        item_id = generate_vocabulary_id()
        values = self._column_values(payload)
        values.update(
            {
                "id": item_id,
                "next_review": now,
                "created_at": now,
                "updated_at": now,
            }
        )
        columns = ", ".join(values)
        placeholders = ", ".join("?" for _ in values)
        try:
            with self._transaction() as conn:
                conn.execute(
                    f"INSERT INTO vocabulary({columns}) VALUES ({placeholders});",
                    tuple(values.values()),
                )
                record = self._fetch_one(conn, item_id)
        except sqlite3.IntegrityError as exc:
            raise DuplicateWordError(
                f"{payload.get('word')!r} already exists for {payload.get('language')}"
            ) from exc
        if record is None:
            raise RuntimeError(f"vocabulary item {item_id} vanished after insert")
        logger.info("vocabulary_created", item_id=item_id, language=record.language)
        return record

    def get_item(self, item_id: str) -> VocabularyRecord | None:
        with self._conn() as conn:
            return self._fetch_one(conn, item_id)

    def list_items(
        self,
        *,
        language: str | None = None,
        difficulty: str | None = None,
        level: str | None = None,
        category: str | None = None,
        search: str | None = None,
        limit: int = 20,
        offset: int = 0,
        sort_by: str = "word",
        sort_order: str = "asc",
    ) -> tuple[list[VocabularyRecord], int]:
        """Return one page of active words and the total number of matches."""

        clauses = ["is_active = 1"]
        params: list[Any] = []
        if language:
            clauses.append("language = ?")
            params.append(language)
        if difficulty:
            clauses.append("difficulty = ?")
            params.append(difficulty)
        if level:
            clauses.append("level = ?")
            params.append(level)
        if category:
            clauses.append(
                "EXISTS (SELECT 1 FROM json_each(vocabulary.categories) WHERE json_each.value = ?)"
            )
            params.append(category)
        if search and search.strip():
            pattern = f"%{_escape_like(search.strip().casefold())}%"
            clauses.append(
                "(word_key LIKE ? ESCAPE '\\' OR casefold(translation) LIKE ? ESCAPE '\\' "
                "OR casefold(tags) LIKE ? ESCAPE '\\')"
            )
            params.extend([pattern, pattern, pattern])
        where = " AND ".join(clauses)
        order_column = _SORT_COLUMNS.get(sort_by, _SORT_COLUMNS["word"])
        direction = "DESC" if sort_order.lower() == "desc" else "ASC"

        with self._conn() as conn:
            total = int(
                conn.execute(
                    f"SELECT COUNT(1) AS c FROM vocabulary WHERE {where};", tuple(params)
                ).fetchone()["c"]
            )
            rows = conn.execute(
                f"""
                SELECT {_SELECT_COLUMNS} FROM vocabulary
                WHERE {where}
                ORDER BY {order_column} {direction}, id ASC
                LIMIT ? OFFSET ?;
                """,
                (*params, max(0, int(limit)), max(0, int(offset))),
            ).fetchall()
        return [self._row_to_record(row) for row in rows], total

    def update_item(self, item_id: str, changes: Mapping[str, Any]) -> VocabularyRecord | None:
        """Update catalogue fields. Learning state columns are never touched here."""

        values = self._column_values(changes)
        try:
            with self._transaction() as conn:
                if self._fetch_one(conn, item_id) is None:
                    return None
                if values:
                    assignments = ", ".join(f"{name} = ?" for name in values)
                    conn.execute(
                        f"""
                        UPDATE vocabulary
                        SET {assignments}, version = version + 1, updated_at = ?
                        WHERE id = ?;
                        """,
                        (*values.values(), _to_iso(self._clock()), item_id),
                    )
                record = self._fetch_one(conn, item_id)
        except sqlite3.IntegrityError as exc:
            raise DuplicateWordError(
                f"{changes.get('word')!r} already exists for {changes.get('language')}"
            ) from exc
        logger.info("vocabulary_updated", item_id=item_id, fields=sorted(values))
        return record

    def deactivate_item(self, item_id: str) -> bool:
        """Soft-delete a word. Returns False when the id is unknown."""

        with self._transaction() as conn:
            cur = conn.execute(
                """
                UPDATE vocabulary
                SET is_active = 0, version = version + 1, updated_at = ?
                WHERE id = ?;
                """,
                (_to_iso(self._clock()), item_id),
            )
            deactivated = cur.rowcount > 0
        if deactivated:
            logger.info("vocabulary_deactivated", item_id=item_id)
        return deactivated

    # --- review flow ---
    def record_practice(
        self,
        item_id: str,
        correct: bool,
        response_time: float = 0.0,
        *,
        now: datetime | None = None,
    ) -> tuple[VocabularyRecord, ReviewOutcome] | None:
        """Apply one review event to an item and persist the new learning state.

        読み取り → スケジューラで再計算 → version 一致時のみ書き込み、の順で実行する。
        version が変わっていた場合は読み直して再計算し、`max_attempts` 回失敗すると
        ConcurrentModificationError を送出する。未登録の ID には None を返す。
        """

        for attempt in range(1, self.max_attempts + 1):
            record = self.get_item(item_id)
            if record is None:
                return None
            reviewed_at = now or self._clock()
            outcome = record_review(record.learning, correct, response_time, reviewed_at)
            if self._commit_review(item_id, record.version, correct, response_time, outcome):
                updated = replace(
                    record,
                    learning=outcome.state,
                    version=record.version + 1,
                    updated_at=outcome.reviewed_at,
                )
                logger.info(
                    "review_recorded",
                    item_id=item_id,
                    correct=correct,
                    mastery_level=outcome.state.mastery_level,
                    interval_days=outcome.interval_days,
                    attempt=attempt,
                )
                return updated, outcome
            logger.warning("practice_conflict", item_id=item_id, attempt=attempt)
        raise ConcurrentModificationError(item_id, self.max_attempts)

    def _commit_review(
        self,
        item_id: str,
        expected_version: int,
        correct: bool,
        response_time: float,
        outcome: ReviewOutcome,
    ) -> bool:
        """Write the outcome iff the row is still at ``expected_version``."""

        state = outcome.state
        reviewed_at = _to_iso(outcome.reviewed_at)
        next_review = _to_iso(outcome.next_review)
        with self._transaction() as conn:
            cur = conn.execute(
                """
                UPDATE vocabulary
                SET times_reviewed = ?, correct_answers = ?, incorrect_answers = ?,
                    mastery_level = ?, average_response_time = ?,
                    last_reviewed = ?, next_review = ?,
                    version = version + 1, updated_at = ?
                WHERE id = ? AND version = ?;
                """,
                (
                    state.times_reviewed,
                    state.correct_answers,
                    state.incorrect_answers,
                    state.mastery_level,
                    state.average_response_time,
                    reviewed_at,
                    next_review,
                    reviewed_at,
                    item_id,
                    expected_version,
                ),
            )
            if cur.rowcount == 0:
                return False
            conn.execute(
                """
                INSERT INTO reviews(
                    item_id, reviewed_at, correct, response_time, mastery_level, interval_days, next_review
                ) VALUES (?, ?, ?, ?, ?, ?, ?);
                """,
                (
                    item_id,
                    reviewed_at,
                    1 if correct else 0,
                    float(response_time),
                    state.mastery_level,
                    outcome.interval_days,
                    next_review,
                ),
            )
        return True

    def due_for_review(
        self,
        *,
        language: str | None = None,
        as_of: datetime | None = None,
        limit: int = 20,
    ) -> list[VocabularyRecord]:
        """Active words whose next review is at or before ``as_of``, oldest-due first."""

        if limit <= 0:
            return []
        cutoff = as_of or self._clock()
        clauses = ["is_active = 1", "next_review <= ?"]
        params: list[Any] = [_to_iso(cutoff)]
        if language:
            clauses.append("language = ?")
            params.append(language)
        with self._conn() as conn:
            rows = conn.execute(
                f"""
                SELECT {_SELECT_COLUMNS} FROM vocabulary
                WHERE {' AND '.join(clauses)}
                ORDER BY next_review ASC, id ASC
                LIMIT ?;
                """,
                (*params, int(limit)),
            ).fetchall()
        return select_due_items(
            (self._row_to_record(row) for row in rows), cutoff, limit
        )

    def quiz_items(
        self,
        *,
        language: str,
        difficulty: str | None = None,
        level: str | None = None,
        limit: int = 10,
    ) -> list[VocabularyRecord]:
        """Random sample of active words that have been reviewed at least once."""

        clauses = ["is_active = 1", "language = ?", "times_reviewed > 0"]
        params: list[Any] = [language]
        if difficulty:
            clauses.append("difficulty = ?")
            params.append(difficulty)
        if level:
            clauses.append("level = ?")
            params.append(level)
        with self._conn() as conn:
            rows = conn.execute(
                f"""
                SELECT {_SELECT_COLUMNS} FROM vocabulary
                WHERE {' AND '.join(clauses)}
                ORDER BY RANDOM()
                LIMIT ?;
                """,
                (*params, max(0, int(limit))),
            ).fetchall()
        return [self._row_to_record(row) for row in rows]

    def list_reviews(self, item_id: str, limit: int = 50) -> list[ReviewLogEntry]:
        """直近のレビュー履歴を新しい順に最大 limit 件返す。"""

        with self._conn() as conn:
            rows = conn.execute(
                """
                SELECT reviewed_at, correct, response_time, mastery_level, interval_days, next_review
                FROM reviews
                WHERE item_id = ?
                ORDER BY reviewed_at DESC, id DESC
                LIMIT ?;
                """,
                (item_id, max(0, int(limit))),
            ).fetchall()
        entries: list[ReviewLogEntry] = []
        for row in rows:
            entries.append(
                ReviewLogEntry(
                    reviewed_at=_parse_iso(row["reviewed_at"]),
                    correct=bool(row["correct"]),
                    response_time=float(row["response_time"]),
                    mastery_level=float(row["mastery_level"]),
                    interval_days=int(row["interval_days"]),
                    next_review=_parse_iso(row["next_review"]),
                )
            )
        return entries

    # --- stats ---
    def get_stats(self, language: str | None = None) -> VocabularyStats:
        """Aggregate active words by (language, difficulty, level).

        - due_now: next_review <= now の件数
        - reviewed_today: 当日 00:00 UTC 以降に記録されたレビュー件数
        """

        now = self._clock().astimezone(UTC)
        today_start = datetime(now.year, now.month, now.day, tzinfo=UTC)
        language_clause = " AND language = ?" if language else ""
        joined_language_clause = " AND v.language = ?" if language else ""
        language_params: tuple[Any, ...] = (language,) if language else ()
        with self._conn() as conn:
            rows = conn.execute(
                f"""
                SELECT language, difficulty, level,
                       COUNT(1) AS c,
                       AVG(mastery_level) AS avg_mastery,
                       SUM(times_reviewed) AS total_reviews
                FROM vocabulary
                WHERE is_active = 1{language_clause}
                GROUP BY language, difficulty, level
                ORDER BY language ASC, difficulty ASC, level ASC;
                """,
                language_params,
            ).fetchall()
            due_now = int(
                conn.execute(
                    f"SELECT COUNT(1) AS c FROM vocabulary "
                    f"WHERE is_active = 1 AND next_review <= ?{language_clause};",
                    (_to_iso(now), *language_params),
                ).fetchone()["c"]
            )
            reviewed_today = int(
                conn.execute(
                    f"""
                    SELECT COUNT(1) AS c FROM reviews r
                    JOIN vocabulary v ON v.id = r.item_id
                    WHERE r.reviewed_at >= ?{joined_language_clause};
                    """,
                    (_to_iso(today_start), *language_params),
                ).fetchone()["c"]
            )
        groups = [
            GroupStats(
                language=row["language"],
                difficulty=row["difficulty"],
                level=row["level"],
                count=int(row["c"]),
                avg_mastery=round(float(row["avg_mastery"] or 0.0), 4),
                total_reviews=int(row["total_reviews"] or 0),
            )
            for row in rows
        ]
        return VocabularyStats(groups=groups, due_now=due_now, reviewed_today=reviewed_today)

    def count_items(self) -> int:
        with self._conn() as conn:
            return int(conn.execute("SELECT COUNT(1) AS c FROM vocabulary;").fetchone()["c"])


# module-level singleton store (wired to settings)
store = VocabularySQLiteStore(
    db_path=settings.vocabulary_db_path,
    max_attempts=settings.practice_max_attempts,
)
