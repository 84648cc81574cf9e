"""Spaced repetition scheduling.

SM-2 を簡略化した時間単位のスケジューラ。回答ごとの次回間隔・習熟度・完了判定と、
期限到来レコードからの復習キュー選別、セッション集計を純粋関数として提供する。
永続化は flows/review.py が担当し、ここでは I/O を一切行わない。
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from .models.common import Performance, PerformanceTier, SessionType
from .models.progress import (
    ProgressRecord,
    SessionSummary,
    TopicProgressStats,
)

MASTERY_THRESHOLD = 80
MASTERY_MIN_CORRECT = 3
MASTERY_MIN_INTERVAL_HOURS = 24.0
RESPONSE_TIME_WEIGHT = 0.3
IDEAL_RESPONSE_TIME_SECONDS = 15.0

_IMMEDIATE_WINDOW = timedelta(hours=1)
_SPACED_MIN_AGE = timedelta(hours=2)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


@dataclass(frozen=True)
class SRSConfig:
    """Interval tuning in hours."""

    initial_interval: float = 5.0
    min_interval: float = 1.0
    max_interval: float = 168.0
    hard_penalty: float = 2.0
    easy_bonus: float = 2.5

    @classmethod
    def from_settings(cls, settings) -> "SRSConfig":
        return cls(
            initial_interval=float(settings.srs_initial_interval_hours),
            min_interval=float(settings.srs_min_interval_hours),
            max_interval=float(settings.srs_max_interval_hours),
            hard_penalty=float(settings.srs_hard_penalty),
            easy_bonus=float(settings.srs_easy_bonus),
        )


DEFAULT_CONFIG = SRSConfig()


class SpacedRepetitionScheduler:
    """Computes intervals, mastery and the per-answer state transition."""

    def __init__(self, config: SRSConfig = DEFAULT_CONFIG) -> None:
        self.config = config

    def clamp_interval(self, hours: float) -> float:
        return min(max(hours, self.config.min_interval), self.config.max_interval)

    def next_interval(
        self,
        current_interval: float,
        performance: Performance | str,
        consecutive_correct: int = 0,
    ) -> float:
        """Return the next review interval in hours.

        - again: 最小間隔へリセット
        - hard: 現在間隔を hard_penalty で割る（最小間隔未満にはしない）
        - good: 連続正解 0 → 初回間隔、1 → 初回間隔×2、それ以降 → 現在間隔×2
        - easy: 連続正解 0 → 初回間隔×2、それ以降 → 現在間隔×easy_bonus
          ただし同条件の good を下回らない

        結果は常に [min_interval, max_interval] に収める。
        """

        cfg = self.config
        perf = Performance(performance)
        if perf is Performance.again:
            interval = cfg.min_interval
        elif perf is Performance.hard:
            interval = max(current_interval / cfg.hard_penalty, cfg.min_interval)
        elif perf is Performance.good:
            interval = self._good_interval(current_interval, consecutive_correct)
        else:
            if consecutive_correct == 0:
                interval = cfg.initial_interval * 2
            else:
                interval = current_interval * cfg.easy_bonus
            # 失敗直後（間隔が最小値）に easy を付けても good より早く出題されないように
            interval = max(
                interval, self._good_interval(current_interval, consecutive_correct)
            )
        return self.clamp_interval(interval)

    def _good_interval(self, current_interval: float, consecutive_correct: int) -> float:
        if consecutive_correct == 0:
            return self.config.initial_interval
        if consecutive_correct == 1:
            return self.config.initial_interval * 2
        return current_interval * 2

    def mastery_level(
        self,
        correct_answers: int,
        total_attempts: int,
        consecutive_correct: int,
        current_interval: float,
    ) -> int:
        """0..100 blend of accuracy (50), streak (30) and interval maturity (20)."""

        if total_attempts <= 0:
            return 0
        accuracy = correct_answers / total_attempts
        consistency_bonus = min(consecutive_correct * 10, 30)
        interval_bonus = min((current_interval / self.config.max_interval) * 20, 20)
        mastery = _round_half_up(accuracy * 50 + consistency_bonus + interval_bonus)
        return max(0, min(mastery, 100))

    @staticmethod
    def is_mastered(
        mastery_level: int, correct_answers: int, review_interval: float
    ) -> bool:
        return (
            mastery_level >= MASTERY_THRESHOLD
            and correct_answers >= MASTERY_MIN_CORRECT
            and review_interval >= MASTERY_MIN_INTERVAL_HOURS
        )

    def is_record_mastered(self, record: ProgressRecord) -> bool:
        return self.is_mastered(
            record.mastery_level, record.correct_answers, record.review_interval
        )

    @staticmethod
    def average_response_time(
        current_average: float | None,
        new_time: float | None,
        total_attempts: int,
    ) -> float | None:
        """Exponentially weighted response time, 30% on the newest sample."""

        if new_time is None:
            return current_average
        if current_average is None or total_attempts <= 1:
            return float(new_time)
        return current_average * (1 - RESPONSE_TIME_WEIGHT) + new_time * RESPONSE_TIME_WEIGHT

    def apply_answer(
        self,
        previous: ProgressRecord | None,
        *,
        user_id: str,
        question_id: str,
        topic_id: str,
        performance: Performance | str,
        response_time: float | None = None,
        now: datetime | None = None,
    ) -> ProgressRecord:
        """Return the record that results from answering once more.

        previous が None の場合は未回答（カウンタ 0、間隔は初回間隔）として扱う。
        """

        answered_at = now or _utcnow()
        perf = Performance(performance)
        is_correct = perf is not Performance.again

        prev_correct = previous.correct_answers if previous else 0
        prev_attempts = previous.total_attempts if previous else 0
        prev_streak = previous.consecutive_correct if previous else 0
        current_interval = (
            previous.review_interval if previous else self.config.initial_interval
        )

        correct_answers = prev_correct + 1 if is_correct else prev_correct
        total_attempts = prev_attempts + 1
        consecutive_correct = prev_streak + 1 if is_correct else 0

        interval = self.next_interval(current_interval, perf, consecutive_correct)
        mastery = self.mastery_level(
            correct_answers, total_attempts, consecutive_correct, interval
        )
        return ProgressRecord(
            user_id=user_id,
            question_id=question_id,
            topic_id=topic_id,
            correct_answers=correct_answers,
            total_attempts=total_attempts,
            consecutive_correct=consecutive_correct,
            last_answered_at=answered_at,
            next_review_at=answered_at + timedelta(hours=interval),
            review_interval=interval,
            mastery_level=mastery,
            is_completed=self.is_mastered(mastery, correct_answers, interval),
            last_performance=perf,
            average_response_time=self.average_response_time(
                previous.average_response_time if previous else None,
                response_time,
                total_attempts,
            ),
        )


def select_for_review(
    due_pool: Iterable[ProgressRecord],
    session_type: SessionType | str = SessionType.spaced,
    limit: int = 20,
    now: datetime | None = None,
) -> list[ProgressRecord]:
    """Filter a due pool by session type, prioritise and truncate.

    - immediate: 直近 1 時間以内に回答したもののみ
    - spaced: 最後の回答から 2 時間以上経過したもののみ
    - manual: すべて
    並び順は「期限超過」→「習熟度の低い順」。同順位は入力順を保つ。
    """

    current = now or _utcnow()
    kind = SessionType(session_type)
    records = list(due_pool)
    if kind is SessionType.immediate:
        threshold = current - _IMMEDIATE_WINDOW
        records = [r for r in records if r.last_answered_at >= threshold]
    elif kind is SessionType.spaced:
        threshold = current - _SPACED_MIN_AGE
        records = [r for r in records if r.last_answered_at <= threshold]

    records.sort(key=lambda r: (not r.is_overdue(current), r.mastery_level))
    return records[: max(0, int(limit))]


def summarize_session(
    questions_reviewed: int,
    correct_answers: int,
    duration_seconds: float,
    average_response_time: float,
) -> SessionSummary:
    accuracy = (
        correct_answers / questions_reviewed * 100 if questions_reviewed > 0 else 0.0
    )
    questions_per_minute = (
        questions_reviewed / (duration_seconds / 60) if duration_seconds > 0 else 0.0
    )
    efficiency = max(
        0.0, 100 - abs(average_response_time - IDEAL_RESPONSE_TIME_SECONDS) * 2
    )

    if accuracy >= 80 and efficiency >= 70:
        tier = PerformanceTier.excellent
    elif accuracy >= 60 and efficiency >= 50:
        tier = PerformanceTier.good
    else:
        tier = PerformanceTier.needs_improvement

    return SessionSummary(
        accuracy=_round_half_up(accuracy),
        questions_per_minute=_round_half_up(questions_per_minute * 10) / 10,
        efficiency=_round_half_up(efficiency),
        performance=tier,
    )


def progress_stats(
    records: Sequence[ProgressRecord], topic_id: str | None = None
) -> TopicProgressStats:
    """Aggregate tracked questions, completion and mean accuracy."""

    total = len(records)
    if total == 0:
        return TopicProgressStats(topic_id=topic_id)
    completed = sum(1 for r in records if r.is_completed)
    accuracy_sum = sum(
        r.correct_answers / r.total_attempts for r in records if r.total_attempts > 0
    )
    return TopicProgressStats(
        topic_id=topic_id,
        total_questions=total,
        completed_questions=completed,
        average_accuracy=_round_half_up(accuracy_sum / total * 100),
        completion_rate=_round_half_up(completed / total * 100),
    )
