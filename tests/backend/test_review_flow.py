from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from cognifai.errors import StoreError
from cognifai.flows.review import ReviewFlow
from cognifai.models.progress import SessionSummaryRequest

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


@pytest.fixture()
def flow(store) -> ReviewFlow:
    return ReviewFlow(store)


@pytest.fixture()
def topic(store):
    return store.create_topic("u1", title="Biology")


def test_process_answer_creates_and_advances_progress(flow, store, topic) -> None:
    question = store.create_question("u1", topic.id, question="Powerhouse?", answer="Mitochondria")

    first = flow.process_answer("u1", question.id, topic.id, "good", 14, now=NOW)
    second = flow.process_answer(
        "u1", question.id, topic.id, "good", 10, now=NOW + timedelta(hours=10)
    )

    assert first.total_attempts == 1
    assert first.consecutive_correct == 1
    assert second.total_attempts == 2
    assert second.consecutive_correct == 2
    assert second.review_interval == 20
    assert store.get_progress("u1", question.id) == second


def test_process_answer_updates_completed_counter(flow, store, topic) -> None:
    question = store.create_question("u1", topic.id, question="q", answer="a")
    t = NOW
    for _ in range(6):
        record = flow.process_answer("u1", question.id, topic.id, "easy", 5, now=t)
        t = record.next_review_at

    assert record.is_completed is True
    assert store.get_topic(topic.id).completed_questions == 1


def test_process_answer_propagates_store_failure(flow, store, fake_client, topic) -> None:
    fake_client.fail_on.add("progress.get")

    with pytest.raises(StoreError):
        flow.process_answer("u1", "q1", topic.id, "hard", now=NOW)

    assert fake_client.documents("progress") == {}


def test_counter_refresh_failure_does_not_fail_the_answer(flow, store, fake_client, topic) -> None:
    fake_client.fail_on.add("topics.get")

    record = flow.process_answer("u1", "q1", topic.id, "good", now=NOW)

    assert record.total_attempts == 1
    fake_client.fail_on.clear()
    assert store.get_progress("u1", "q1") == record


def test_review_queue_joins_questions_and_drops_missing(flow, store, topic) -> None:
    kept = store.create_question("u1", topic.id, question="Kept", answer="a")
    gone = store.create_question("u1", topic.id, question="Gone", answer="a")
    flow.process_answer("u1", kept.id, topic.id, "again", now=NOW - timedelta(hours=5))
    flow.process_answer("u1", gone.id, topic.id, "again", now=NOW - timedelta(hours=5))
    store.questions._questions.document(gone.id).delete()

    items = flow.review_queue("u1", "spaced", 20, now=NOW)

    assert [item.question.id for item in items] == [kept.id]
    assert items[0].progress.question_id == kept.id


def test_review_queue_session_windows_and_limit(flow, store, topic) -> None:
    for i in range(3):
        question = store.create_question("u1", topic.id, question=f"Q{i}", answer="a")
        # 回答から 1 時間強: immediate の窓の外で、spaced の待機時間にも届かない
        flow.process_answer("u1", question.id, topic.id, "again", now=NOW - timedelta(minutes=61 + i))

    immediate = flow.review_queue("u1", "immediate", 2, now=NOW)
    spaced = flow.review_queue("u1", "spaced", 20, now=NOW)

    assert len(immediate) == 0
    assert len(spaced) == 0
    assert len(flow.review_queue("u1", "manual", 2, now=NOW)) == 2


def test_topic_and_overall_progress(flow, store, topic) -> None:
    other = store.create_topic("u1", title="Chemistry")
    q1 = store.create_question("u1", topic.id, question="q1", answer="a")
    q2 = store.create_question("u1", topic.id, question="q2", answer="a")
    q3 = store.create_question("u1", other.id, question="q3", answer="a")
    flow.process_answer("u1", q1.id, topic.id, "good", now=NOW)
    flow.process_answer("u1", q2.id, topic.id, "again", now=NOW)
    flow.process_answer("u1", q3.id, other.id, "good", now=NOW)

    topic_stats = flow.topic_progress("u1", topic.id)
    overall = flow.overall_progress("u1")

    assert topic_stats.total_questions == 2
    assert topic_stats.average_accuracy == 50
    assert overall.total_topics == 2
    assert overall.total_questions == 3
    assert overall.average_accuracy == 67
    assert {s.topic_id: s.total_questions for s in overall.topics} == {topic.id: 2, other.id: 1}


def test_summarize_delegates_to_session_summary() -> None:
    summary = ReviewFlow.summarize(
        SessionSummaryRequest(
            questions_reviewed=10, correct_answers=8, duration_seconds=300, average_response_time=12
        )
    )
    assert summary.performance == "excellent"
