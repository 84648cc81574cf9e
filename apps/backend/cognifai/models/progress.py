from datetime import datetime

from pydantic import Field

from .common import FirestoreModel, Performance, PerformanceTier, SessionType
from .topic import Question


def progress_document_id(user_id: str, question_id: str) -> str:
    """Firestore の progress ドキュメントID（`{userId}_{questionId}`）。"""

    return f"{user_id}_{question_id}"


class ProgressRecord(FirestoreModel):
    """Per-user answer history and schedule for a single question.

    学習者 × 問題ごとの回答履歴と次回出題予定。初回回答時に作成され、
    以後の回答ごとに丸ごと書き換えられる。
    """

    user_id: str
    question_id: str
    topic_id: str
    correct_answers: int = Field(default=0, ge=0)
    total_attempts: int = Field(default=0, ge=0)
    consecutive_correct: int = Field(default=0, ge=0)
    last_answered_at: datetime
    next_review_at: datetime
    review_interval: float = Field(description="hours until the next review")
    mastery_level: int = Field(default=0, ge=0, le=100)
    is_completed: bool = False
    last_performance: Performance | None = None
    average_response_time: float | None = Field(
        default=None, description="seconds, exponentially weighted"
    )

    @property
    def id(self) -> str:
        return progress_document_id(self.user_id, self.question_id)

    def is_overdue(self, now: datetime) -> bool:
        return now > self.next_review_at


class AnswerRequest(FirestoreModel):
    """復習画面から送られる 1 問分の自己採点。"""

    question_id: str = Field(min_length=1)
    topic_id: str = Field(min_length=1)
    performance: Performance
    response_time: float | None = Field(default=None, ge=0)


class AnswerResponse(FirestoreModel):
    progress: ProgressRecord


class ReviewQueueItem(FirestoreModel):
    progress: ProgressRecord
    question: Question


class ReviewQueueResponse(FirestoreModel):
    session_type: SessionType
    items: list[ReviewQueueItem]


class SessionSummaryRequest(FirestoreModel):
    """Counters accumulated by the client over one review session."""

    questions_reviewed: int = Field(ge=0)
    correct_answers: int = Field(ge=0)
    duration_seconds: float = Field(ge=0)
    average_response_time: float = Field(default=0.0, ge=0)


class SessionSummary(FirestoreModel):
    accuracy: int
    questions_per_minute: float
    efficiency: int
    performance: PerformanceTier


class TopicProgressStats(FirestoreModel):
    """トピック単位の進捗集計（進捗タブのカード表示用）。"""

    topic_id: str | None = None
    total_questions: int = 0
    completed_questions: int = 0
    average_accuracy: int = 0
    completion_rate: int = 0


class OverallProgressStats(TopicProgressStats):
    total_topics: int = 0
    topics: list[TopicProgressStats] = Field(default_factory=list)
