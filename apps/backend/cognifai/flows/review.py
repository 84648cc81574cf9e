from __future__ import annotations

from datetime import UTC, datetime

from ..config import settings
from ..errors import StoreError
from ..logging import logger
from ..models.common import Performance, SessionType
from ..models.progress import (
    OverallProgressStats,
    ProgressRecord,
    ReviewQueueItem,
    SessionSummary,
    SessionSummaryRequest,
    TopicProgressStats,
)
from ..srs import SpacedRepetitionScheduler, SRSConfig, progress_stats, select_for_review, summarize_session
from ..store import AppFirestoreStore


class ReviewFlow:
    """Review session use cases on top of the scheduler and the Firestore store.

    - process_answer: 自己採点 1 件を progress へ反映（トランザクション内で読み書き）
    - review_queue: 期限到来レコードを取得し、セッション種別で選別して問題と結合
    - topic_progress / overall_progress: 進捗タブ用の集計
    - summarize: セッション終了時のサマリ
    """

    def __init__(
        self,
        store: AppFirestoreStore,
        scheduler: SpacedRepetitionScheduler | None = None,
    ) -> None:
        self._store = store
        self._scheduler = scheduler or SpacedRepetitionScheduler(
            SRSConfig.from_settings(settings)
        )

    def process_answer(
        self,
        user_id: str,
        question_id: str,
        topic_id: str,
        performance: Performance | str,
        response_time: float | None = None,
        *,
        now: datetime | None = None,
    ) -> ProgressRecord:
        answered_at = now or datetime.now(UTC)

        def _transition(previous: ProgressRecord | None) -> ProgressRecord:
            return self._scheduler.apply_answer(
                previous,
                user_id=user_id,
                question_id=question_id,
                topic_id=topic_id,
                performance=performance,
                response_time=response_time,
                now=answered_at,
            )

        record = self._store.apply_progress_transition(user_id, question_id, _transition)
        logger.info(
            "review_answer_processed",
            user_id=user_id,
            question_id=question_id,
            topic_id=topic_id,
            performance=record.last_performance,
            review_interval=record.review_interval,
            mastery_level=record.mastery_level,
            is_completed=record.is_completed,
        )

        # progress は確定済みなので、トピックの完了数更新の失敗は応答を失敗させない
        try:
            self._store.refresh_completed_count(topic_id, user_id)
        except StoreError as exc:
            logger.warning(
                "topic_completed_count_refresh_failed",
                topic_id=topic_id,
                error=str(exc)[:200],
            )
        return record

    def review_queue(
        self,
        user_id: str,
        session_type: SessionType | str = SessionType.spaced,
        limit: int | None = None,
        *,
        now: datetime | None = None,
    ) -> list[ReviewQueueItem]:
        current = now or datetime.now(UTC)
        size = settings.review_default_limit if limit is None else limit
        due_pool = self._store.list_due_progress(
            user_id, now=current, limit=settings.review_due_fetch_limit
        )
        selected = select_for_review(due_pool, session_type, size, now=current)

        items: list[ReviewQueueItem] = []
        for record in selected:
            question = self._store.get_question(record.question_id)
            # 削除済みの問題や他ユーザーの問題は出題しない
            if question is None or question.user_id != user_id:
                continue
            items.append(ReviewQueueItem(progress=record, question=question))
        logger.info(
            "review_queue_built",
            user_id=user_id,
            session_type=SessionType(session_type).value,
            due_pool=len(due_pool),
            selected=len(items),
        )
        return items

    def topic_progress(self, user_id: str, topic_id: str) -> TopicProgressStats:
        records = self._store.list_topic_progress(user_id, topic_id)
        return progress_stats(records, topic_id)

    def overall_progress(self, user_id: str) -> OverallProgressStats:
        records = self._store.list_user_progress(user_id)
        topics = self._store.list_topics(user_id)

        by_topic: dict[str, list[ProgressRecord]] = {}
        for record in records:
            by_topic.setdefault(record.topic_id, []).append(record)

        overall = progress_stats(records)
        return OverallProgressStats(
            **overall.model_dump(exclude={"topic_id"}),
            total_topics=len(topics),
            topics=[progress_stats(by_topic.get(t.id, []), t.id) for t in topics],
        )

    @staticmethod
    def summarize(req: SessionSummaryRequest) -> SessionSummary:
        return summarize_session(
            req.questions_reviewed,
            req.correct_answers,
            req.duration_seconds,
            req.average_response_time,
        )
