import math

from fastapi import APIRouter, HTTPException, Query, status
from pydantic import ValidationError

from ..config import settings
from ..logging import logger
from ..metrics import registry
from ..models.common import CefrLevel, Category, Difficulty, Language, SortField, SortOrder
from ..models.vocabulary import (
    DifficultyBreakdown,
    ExampleSentence,
    LanguageStats,
    LearningStateModel,
    PracticeRequest,
    PracticeResponse,
    QuizResponse,
    QuizWord,
    ReviewHistoryEntry,
    ReviewHistoryResponse,
    ReviewQueueResponse,
    VocabularyCreateRequest,
    VocabularyItem,
    VocabularyListResponse,
    VocabularyStatsResponse,
    VocabularyUpdateRequest,
)
from ..srs import InvalidInputError
from ..store import (
    ConcurrentModificationError,
    DuplicateWordError,
    VocabularyRecord,
    store,
)

router = APIRouter(tags=["vocabulary"])

_NOT_FOUND = "Vocabulary word not found"


def _to_item(record: VocabularyRecord) -> VocabularyItem:
    learning = record.learning
    return VocabularyItem(
        id=record.id,
        **record.catalogue(),
        is_active=record.is_active,
        learning=LearningStateModel(
            times_reviewed=learning.times_reviewed,
            correct_answers=learning.correct_answers,
            incorrect_answers=learning.incorrect_answers,
            mastery_level=learning.mastery_level,
            mastery_status=learning.mastery_status,
            accuracy_rate=learning.accuracy_rate,
            average_response_time=learning.average_response_time,
            last_reviewed=learning.last_reviewed,
            next_review=learning.next_review,
        ),
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


def _clamp_limit(limit: int | None, default: int) -> int:
    value = default if limit is None else limit
    return max(1, min(value, settings.review_limit_max))


@router.get(
    "",
    response_model=VocabularyListResponse,
    summary="語彙一覧を取得（フィルタ・検索・ページング）",
)
async def list_vocabulary(
    language: Language | None = None,
    difficulty: Difficulty | None = None,
    level: CefrLevel | None = None,
    category: Category | None = None,
    search: str | None = Query(default=None, max_length=100, description="見出し語/訳語/タグの部分一致"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    sort_by: SortField = SortField.word,
    sort_order: SortOrder = SortOrder.asc,
) -> VocabularyListResponse:
    """有効な語彙をページ単位で返す。"""
    records, total = store.list_items(
        language=language.value if language else None,
        difficulty=difficulty.value if difficulty else None,
        level=level.value if level else None,
        category=category.value if category else None,
        search=search,
        limit=limit,
        offset=(page - 1) * limit,
        sort_by=sort_by.value,
        sort_order=sort_order.value,
    )
    total_pages = math.ceil(total / limit) if total else 0
    return VocabularyListResponse(
        items=[_to_item(r) for r in records],
        total=total,
        page=page,
        limit=limit,
        total_pages=total_pages,
        prev_page=page - 1 if page > 1 else None,
        next_page=page + 1 if page < total_pages else None,
    )


@router.post(
    "",
    response_model=VocabularyItem,
    status_code=status.HTTP_201_CREATED,
    summary="語彙を登録",
)
async def create_vocabulary(req: VocabularyCreateRequest) -> VocabularyItem:
    """語彙を新規登録する。作成直後から復習対象（next_review=now）。"""
    try:
        record = store.create_item(req.model_dump(mode="json"))
    except DuplicateWordError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return _to_item(record)


@router.get(
    "/review/{language}",
    response_model=ReviewQueueResponse,
    summary="復習期限が来た語彙を取得",
)
async def get_words_for_review(
    language: Language,
    limit: int | None = Query(default=None, ge=1, description="出題数（既定: REVIEW_SESSION_LIMIT）"),
) -> ReviewQueueResponse:
    """next_review <= now の語彙を期限の古い順に返す。"""
    records = store.due_for_review(
        language=language.value,
        limit=_clamp_limit(limit, settings.review_session_limit),
    )
    return ReviewQueueResponse(
        language=language,
        count=len(records),
        items=[_to_item(r) for r in records],
    )


@router.get(
    "/quiz/{language}",
    response_model=QuizResponse,
    summary="学習済み語彙からクイズ用にランダム抽出",
)
async def get_quiz_words(
    language: Language,
    difficulty: Difficulty | None = None,
    level: CefrLevel | None = None,
    limit: int | None = Query(default=None, ge=1),
) -> QuizResponse:
    records = store.quiz_items(
        language=language.value,
        difficulty=difficulty.value if difficulty else None,
        level=level.value if level else None,
        limit=_clamp_limit(limit, settings.quiz_default_limit),
    )
    items = [
        QuizWord(
            id=r.id,
            word=r.word,
            translation=r.translation,
            part_of_speech=r.part_of_speech,
            difficulty=r.difficulty,
            level=r.level,
            pronunciation=r.pronunciation,
            example=ExampleSentence.model_validate(r.examples[0]) if r.examples else None,
        )
        for r in records
    ]
    return QuizResponse(language=language, count=len(items), items=items)


@router.get("/stats", response_model=VocabularyStatsResponse, summary="語彙統計（全言語）")
@router.get("/stats/{language}", response_model=VocabularyStatsResponse, summary="語彙統計（言語別）")
async def get_vocabulary_stats(language: Language | None = None) -> VocabularyStatsResponse:
    """言語ごとの語数・レビュー数と、難易度×CEFR レベル別の平均 mastery を返す。"""
    stats = store.get_stats(language=language.value if language else None)
    per_language: dict[str, LanguageStats] = {}
    for group in stats.groups:
        entry = per_language.setdefault(
            group.language,
            LanguageStats(language=group.language, total_words=0, total_reviews=0, difficulties=[]),
        )
        entry.total_words += group.count
        entry.total_reviews += group.total_reviews
        entry.difficulties.append(
            DifficultyBreakdown(
                difficulty=group.difficulty,
                level=group.level,
                count=group.count,
                avg_mastery=group.avg_mastery,
                total_reviews=group.total_reviews,
            )
        )
    return VocabularyStatsResponse(
        languages=[per_language[key] for key in sorted(per_language)],
        due_now=stats.due_now,
        reviewed_today=stats.reviewed_today,
    )


@router.get("/{item_id}", response_model=VocabularyItem, summary="語彙を取得")
async def get_vocabulary(item_id: str) -> VocabularyItem:
    record = store.get_item(item_id)
    if record is None:
        raise HTTPException(status_code=404, detail=_NOT_FOUND)
    return _to_item(record)


@router.put("/{item_id}", response_model=VocabularyItem, summary="語彙を更新（指定項目のみ）")
async def update_vocabulary(item_id: str, req: VocabularyUpdateRequest) -> VocabularyItem:
    """カタログ項目を部分更新する。学習状態はこの API では変更できない。"""
    record = store.get_item(item_id)
    if record is None:
        raise HTTPException(status_code=404, detail=_NOT_FOUND)

    changes = req.model_dump(mode="json", exclude_unset=True)
    # 言語変更時の gender 必須チェック等は、既存値とマージした結果で検証する
    try:
        merged = VocabularyCreateRequest.model_validate({**record.catalogue(), **changes})
    except ValidationError as exc:
        raise HTTPException(
            status_code=422, detail=exc.errors(include_url=False, include_context=False)
        ) from exc
    validated = merged.model_dump(mode="json")
    try:
        updated = store.update_item(item_id, {key: validated[key] for key in changes})
    except DuplicateWordError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    if updated is None:
        raise HTTPException(status_code=404, detail=_NOT_FOUND)
    return _to_item(updated)


@router.delete("/{item_id}", summary="語彙を論理削除")
async def delete_vocabulary(item_id: str) -> dict[str, str]:
    if not store.deactivate_item(item_id):
        raise HTTPException(status_code=404, detail=_NOT_FOUND)
    return {"status": "deleted"}


@router.post(
    "/{item_id}/practice",
    response_model=PracticeResponse,
    summary="練習結果を記録して次回復習日時を更新",
)
async def record_practice(item_id: str, req: PracticeRequest) -> PracticeResponse:
    """Record one review outcome and return the rescheduled learning state."""
    try:
        result = store.record_practice(item_id, req.correct, req.response_time)
    except InvalidInputError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except ConcurrentModificationError as exc:
        registry.record_conflict()
        logger.warning("practice_conflict_exhausted", item_id=item_id, attempts=exc.attempts)
        raise HTTPException(
            status_code=409, detail="Vocabulary word was modified concurrently; retry"
        ) from exc
    if result is None:
        raise HTTPException(status_code=404, detail=_NOT_FOUND)

    _, outcome = result
    state = outcome.state
    registry.record_review(correct=req.correct, interval_days=outcome.interval_days)
    return PracticeResponse(
        item_id=item_id,
        times_reviewed=state.times_reviewed,
        mastery_level=state.mastery_level,
        mastery_status=state.mastery_status,
        accuracy_rate=outcome.accuracy_rate,
        accuracy_percent=round(outcome.accuracy_rate * 100, 2),
        interval_days=outcome.interval_days,
        last_reviewed=outcome.reviewed_at,
        next_review=outcome.next_review,
    )


@router.get(
    "/{item_id}/reviews",
    response_model=ReviewHistoryResponse,
    summary="レビュー履歴（新しい順）",
)
async def list_review_history(
    item_id: str,
    limit: int = Query(default=50, ge=1, le=500),
) -> ReviewHistoryResponse:
    if store.get_item(item_id) is None:
        raise HTTPException(status_code=404, detail=_NOT_FOUND)
    entries = store.list_reviews(item_id, limit=limit)
    return ReviewHistoryResponse(
        item_id=item_id,
        items=[
            ReviewHistoryEntry(
                reviewed_at=e.reviewed_at,
                correct=e.correct,
                response_time=e.response_time,
                mastery_level=e.mastery_level,
                interval_days=e.interval_days,
                next_review=e.next_review,
            )
            for e in entries
        ],
    )
