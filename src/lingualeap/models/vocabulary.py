from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, StrictBool, model_validator

from .common import (
    GENDERED_LANGUAGES,
    Category,
    CefrLevel,
    ContentSource,
    Difficulty,
    Frequency,
    Gender,
    Language,
    PartOfSpeech,
)


class ExampleSentence(BaseModel):
    """Usage example attached to a vocabulary word."""

    model_config = ConfigDict(str_strip_whitespace=True)

    sentence: str = Field(min_length=1, max_length=300)
    translation: str = Field(min_length=1, max_length=300)
    context: str | None = Field(default=None, description="例文が使われる場面（任意）")


class VocabularyFields(BaseModel):
    """Catalogue fields shared by create requests and stored items."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    word: str = Field(min_length=1, max_length=100, description="見出し語（1..100文字）")
    translation: str = Field(min_length=1, max_length=200, description="訳語（1..200文字）")
    language: Language
    native_language: str = Field(default="English", min_length=1, max_length=50)
    part_of_speech: PartOfSpeech
    gender: Gender | None = None
    difficulty: Difficulty = Difficulty.beginner
    level: CefrLevel = CefrLevel.A1
    frequency: Frequency = Frequency.common
    categories: list[Category] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    pronunciation: str | None = Field(default=None, max_length=200)
    cultural_notes: str | None = Field(default=None, max_length=500)
    examples: list[ExampleSentence] = Field(default_factory=list)
    source: ContentSource = ContentSource.official
    verified: bool = False


class VocabularyCreateRequest(VocabularyFields):
    """Request model for registering a vocabulary word.

    学習状態（mastery 等）は受け付けない。新規語は作成直後から復習対象になる。
    """

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {
                    "word": "Hola",
                    "translation": "Hello",
                    "language": "Spanish",
                    "part_of_speech": "interjection",
                    "gender": "neuter",
                    "categories": ["greetings"],
                    "pronunciation": "OH-lah",
                }
            ]
        },
    )

    @model_validator(mode="after")
    def _require_gender_for_gendered_languages(self) -> "VocabularyCreateRequest":
        if self.language in GENDERED_LANGUAGES and self.gender is None:
            raise ValueError(f"gender is required for {self.language.value} vocabulary")
        return self


class VocabularyUpdateRequest(BaseModel):
    """Partial update of catalogue fields. Unset fields are left unchanged."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    word: str | None = Field(default=None, min_length=1, max_length=100)
    translation: str | None = Field(default=None, min_length=1, max_length=200)
    language: Language | None = None
    native_language: str | None = Field(default=None, min_length=1, max_length=50)
    part_of_speech: PartOfSpeech | None = None
    gender: Gender | None = None
    difficulty: Difficulty | None = None
    level: CefrLevel | None = None
    frequency: Frequency | None = None
    categories: list[Category] | None = None
    tags: list[str] | None = None
    pronunciation: str | None = Field(default=None, max_length=200)
    cultural_notes: str | None = Field(default=None, max_length=500)
    examples: list[ExampleSentence] | None = None
    source: ContentSource | None = None
    verified: bool | None = None


class LearningStateModel(BaseModel):
    times_reviewed: int = Field(ge=0)
    correct_answers: int = Field(ge=0)
    incorrect_answers: int = Field(ge=0)
    mastery_level: float = Field(ge=0.0, le=5.0)
    mastery_status: str
    accuracy_rate: float = Field(ge=0.0, le=1.0)
    average_response_time: float = Field(ge=0.0)
    last_reviewed: datetime | None = None
    next_review: datetime | None = None


class VocabularyItem(VocabularyFields):
    """Stored vocabulary word including its learning state."""

    id: str
    is_active: bool = True
    learning: LearningStateModel
    created_at: datetime
    updated_at: datetime


class VocabularyListResponse(BaseModel):
    items: list[VocabularyItem]
    total: int
    page: int
    limit: int
    total_pages: int
    prev_page: int | None = None
    next_page: int | None = None


class ReviewQueueResponse(BaseModel):
    """Words due for review, oldest-due first."""

    language: Language
    count: int
    items: list[VocabularyItem]


class QuizWord(BaseModel):
    id: str
    word: str
    translation: str
    part_of_speech: PartOfSpeech
    difficulty: Difficulty
    level: CefrLevel
    pronunciation: str | None = None
    example: ExampleSentence | None = None


class QuizResponse(BaseModel):
    language: Language
    count: int
    items: list[QuizWord]


class PracticeRequest(BaseModel):
    """Outcome of a single review event (flashcard flip, quiz answer)."""

    correct: StrictBool
    response_time: float = Field(
        default=0.0,
        ge=0.0,
        allow_inf_nan=False,
        description="回答までの秒数。計測できない場合は 0",
    )


class PracticeResponse(BaseModel):
    item_id: str
    times_reviewed: int
    mastery_level: float
    mastery_status: str
    accuracy_rate: float
    accuracy_percent: float
    interval_days: int
    last_reviewed: datetime
    next_review: datetime


class ReviewHistoryEntry(BaseModel):
    reviewed_at: datetime
    correct: bool
    response_time: float
    mastery_level: float
    interval_days: int
    next_review: datetime


class ReviewHistoryResponse(BaseModel):
    item_id: str
    items: list[ReviewHistoryEntry]


class DifficultyBreakdown(BaseModel):
    difficulty: Difficulty
    level: CefrLevel
    count: int
    avg_mastery: float
    total_reviews: int


class LanguageStats(BaseModel):
    language: Language
    total_words: int
    total_reviews: int
    difficulties: list[DifficultyBreakdown]


class VocabularyStatsResponse(BaseModel):
    """進捗の見える化用の統計レスポンス。

    - languages: 言語別の語数/レビュー数と難易度×CEFR の内訳
    - due_now: 現在時点で出題すべき件数
    - reviewed_today: 当日（UTC）レビュー済み件数
    """

    languages: list[LanguageStats]
    due_now: int
    reviewed_today: int
