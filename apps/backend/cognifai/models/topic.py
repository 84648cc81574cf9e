from datetime import datetime

from pydantic import Field, field_validator

from .common import Difficulty, FirestoreModel, QuestionType


class Topic(FirestoreModel):
    """A user's study topic.

    questionCount / completedQuestions は questions / progress からの非正規化値。
    """

    id: str
    user_id: str
    title: str
    description: str = ""
    color: str = "#007AFF"
    created_at: datetime
    updated_at: datetime
    question_count: int = 0
    completed_questions: int = 0


class Question(FirestoreModel):
    id: str
    topic_id: str
    user_id: str
    question: str
    answer: str
    options: list[str] | None = None
    type: QuestionType = QuestionType.open
    difficulty: Difficulty = Difficulty.medium
    created_at: datetime
    generated_by_ai: bool = Field(default=False, alias="generatedByAI")
    source: str | None = None


class GeneratedQuestion(FirestoreModel):
    """LLM の出力 1 件分。保存前なので id / topicId を持たない。"""

    question: str
    answer: str
    options: list[str] | None = None
    type: QuestionType = QuestionType.open
    difficulty: Difficulty = Difficulty.medium


class TopicCreateRequest(FirestoreModel):
    title: str = Field(min_length=1, max_length=200)
    description: str = Field(default="", max_length=2000)
    color: str = Field(default="#007AFF", max_length=32)

    @field_validator("title")
    @classmethod
    def _strip_title(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("title must not be blank")
        return stripped


class TopicUpdateRequest(FirestoreModel):
    title: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=2000)
    color: str | None = Field(default=None, max_length=32)


class QuestionCreateRequest(FirestoreModel):
    question: str = Field(min_length=1)
    answer: str = Field(min_length=1)
    options: list[str] | None = None
    type: QuestionType = QuestionType.open
    difficulty: Difficulty = Difficulty.medium
    source: str | None = None


class QuestionUpdateRequest(FirestoreModel):
    question: str | None = Field(default=None, min_length=1)
    answer: str | None = Field(default=None, min_length=1)
    options: list[str] | None = None
    type: QuestionType | None = None
    difficulty: Difficulty | None = None
    source: str | None = None


class GenerateQuestionsRequest(FirestoreModel):
    count: int = Field(default=5, ge=1, le=20)
    difficulty: Difficulty = Difficulty.medium
    save: bool = Field(
        default=True,
        description="Persist generated questions into the topic / 生成結果をトピックへ保存する",
    )


class GenerateQuestionsResponse(FirestoreModel):
    questions: list[GeneratedQuestion]
    saved_ids: list[str] = Field(default_factory=list)


class AIStatusResponse(FirestoreModel):
    connected: bool
    provider: str
    model: str = ""
