from __future__ import annotations

from enum import Enum


class Language(str, Enum):
    """Target languages offered for study."""

    spanish = "Spanish"
    french = "French"
    german = "German"
    italian = "Italian"
    portuguese = "Portuguese"
    chinese = "Chinese"
    japanese = "Japanese"
    korean = "Korean"
    arabic = "Arabic"


# 文法上の性を持つ言語では gender が必須
GENDERED_LANGUAGES: frozenset[Language] = frozenset(
    {
        Language.spanish,
        Language.french,
        Language.german,
        Language.italian,
        Language.portuguese,
    }
)


class PartOfSpeech(str, Enum):
    noun = "noun"
    verb = "verb"
    adjective = "adjective"
    adverb = "adverb"
    preposition = "preposition"
    conjunction = "conjunction"
    interjection = "interjection"
    pronoun = "pronoun"
    article = "article"


class Gender(str, Enum):
    masculine = "masculine"
    feminine = "feminine"
    neuter = "neuter"


class Difficulty(str, Enum):
    beginner = "beginner"
    intermediate = "intermediate"
    advanced = "advanced"


class CefrLevel(str, Enum):
    A1 = "A1"
    A2 = "A2"
    B1 = "B1"
    B2 = "B2"
    C1 = "C1"
    C2 = "C2"


class Frequency(str, Enum):
    common = "common"
    uncommon = "uncommon"
    rare = "rare"


class Category(str, Enum):
    greetings = "greetings"
    family = "family"
    numbers = "numbers"
    colors = "colors"
    food = "food"
    drinks = "drinks"
    animals = "animals"
    body = "body"
    clothing = "clothing"
    house = "house"
    transport = "transport"
    work = "work"
    education = "education"
    weather = "weather"
    time = "time"
    emotions = "emotions"
    health = "health"
    sports = "sports"
    hobbies = "hobbies"
    travel = "travel"
    technology = "technology"
    nature = "nature"
    culture = "culture"


class ContentSource(str, Enum):
    official = "official"
    community = "community"
    ai_generated = "ai-generated"
    imported = "imported"


class SortField(str, Enum):
    word = "word"
    translation = "translation"
    created_at = "created_at"
    difficulty = "difficulty"
    level = "level"
    mastery_level = "mastery_level"
    next_review = "next_review"


class SortOrder(str, Enum):
    asc = "asc"
    desc = "desc"
