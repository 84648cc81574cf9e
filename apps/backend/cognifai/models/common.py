from enum import Enum

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class Performance(str, Enum):
    """Self-reported recall quality after the answer is revealed."""

    again = "again"
    hard = "hard"
    good = "good"
    easy = "easy"


class SessionType(str, Enum):
    immediate = "immediate"
    spaced = "spaced"
    manual = "manual"


class QuestionType(str, Enum):
    open = "open"
    multiple_choice = "multiple_choice"
    true_false = "true_false"


class Difficulty(str, Enum):
    easy = "easy"
    medium = "medium"
    hard = "hard"


class PerformanceTier(str, Enum):
    excellent = "excellent"
    good = "good"
    needs_improvement = "needs_improvement"


class FirestoreModel(BaseModel):
    """Base model whose aliases match the camelCase Firestore field names.

    Python 側は snake_case、Firestore ドキュメントと JSON レスポンスは camelCase。
    `model_dump(by_alias=True)` の結果をそのまま保存できる。
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        use_enum_values=True,
        validate_default=True,
    )
