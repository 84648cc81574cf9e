from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any

from google.api_core import exceptions as gexc
from google.cloud import firestore

from ..errors import StoreError
from ..id_factory import generate_question_id, generate_topic_id
from ..logging import logger
from ..models.progress import ProgressRecord, progress_document_id
from ..models.topic import GeneratedQuestion, Question, Topic
from .common import coerce_datetime, coerce_datetime_fields, normalize_non_negative_int

_BATCH_SIZE = 450


def _now() -> datetime:
    return datetime.now(UTC)


@contextmanager
def _firestore_call(operation: str, **context: Any) -> Iterator[None]:
    """Translate google.api_core failures into StoreError after logging them.

    ストリームは反復時に例外を送出するため、呼び出し側は list(...) まで
    この with ブロックの内側で完了させること。
    """

    try:
        yield
    except gexc.GoogleAPIError as exc:
        logger.error(
            "firestore_call_failed",
            operation=operation,
            error=str(exc)[:200],
            error_class=exc.__class__.__name__,
            **context,
        )
        raise StoreError(operation, str(exc)) from exc


def _extract_count_from_aggregation(
    aggregation: Sequence[Any] | None,
) -> int:
    """Extracts the numeric count from Firestore aggregation results."""

    if not aggregation:
        return 0
    result = aggregation[0]
    if isinstance(result, Sequence) and result:
        result = result[0]
    count_value: Any | None = None
    try:
        count_value = result["count"]  # type: ignore[index]
    except (KeyError, TypeError):
        aggregate_fields = getattr(result, "aggregate_fields", None)
        if isinstance(aggregate_fields, Mapping):
            count_value = aggregate_fields.get("count")
    if count_value is None and getattr(result, "alias", None) == "count":
        count_value = getattr(result, "value", None)
    return int(count_value or 0)


def _coerce_firestore_snapshot(
    candidate: Any,
) -> firestore.DocumentSnapshot | None:
    """Normalize Firestore transaction.get results (snapshot or generator) into a snapshot."""

    if candidate is None:
        return None
    if hasattr(candidate, "exists"):
        return candidate  # type: ignore[return-value]
    if isinstance(candidate, Iterator):
        return next(candidate, None)
    if isinstance(candidate, Iterable) and not isinstance(candidate, (str, bytes, Mapping)):
        iterator = iter(candidate)
        return next(iterator, None)
    return None


def _rollback_quietly(transaction: Any, operation: str) -> None:
    try:
        transaction._rollback()
    except (ValueError, gexc.GoogleAPIError) as exc:
        logger.warning(
            "firestore_rollback_failed",
            operation=operation,
            error=str(exc)[:200],
            error_class=exc.__class__.__name__,
        )


def _topic_from_snapshot(snapshot: Any) -> Topic:
    data = coerce_datetime_fields(dict(snapshot.to_dict() or {}), "createdAt", "updatedAt")
    data["id"] = snapshot.id
    data["questionCount"] = normalize_non_negative_int(data.get("questionCount"))
    data["completedQuestions"] = normalize_non_negative_int(data.get("completedQuestions"))
    return Topic.model_validate(data)


def _question_from_snapshot(snapshot: Any) -> Question:
    data = coerce_datetime_fields(dict(snapshot.to_dict() or {}), "createdAt")
    data["id"] = snapshot.id
    return Question.model_validate(data)


def _progress_from_snapshot(snapshot: Any) -> ProgressRecord:
    data = coerce_datetime_fields(
        dict(snapshot.to_dict() or {}), "lastAnsweredAt", "nextReviewAt"
    )
    for counter in ("correctAnswers", "totalAttempts", "consecutiveCorrect"):
        data[counter] = normalize_non_negative_int(data.get(counter))
    return ProgressRecord.model_validate(data)


def _progress_to_document(record: ProgressRecord) -> dict[str, Any]:
    return record.model_dump(by_alias=True)


class FirestoreBaseStore:
    """Firestore クライアント共通のヘルパー。"""

    def __init__(self, client: firestore.Client):
        self._client = client

    def _delete_in_batches(self, refs: Sequence[Any]) -> int:
        """WriteBatch の上限（500 書き込み）を超えないよう分割して削除する。"""

        deleted = 0
        for start in range(0, len(refs), _BATCH_SIZE):
            batch = self._client.batch()
            chunk = refs[start : start + _BATCH_SIZE]
            for ref in chunk:
                batch.delete(ref)
            batch.commit()
            deleted += len(chunk)
        return deleted


class FirestoreUserStore(FirestoreBaseStore):
    """Firebase Authentication の uid をキーにしたユーザードキュメント。"""

    def __init__(self, client: firestore.Client):
        super().__init__(client)
        self._users = client.collection("users")

    def record_user_login(
        self,
        *,
        uid: str,
        email: str,
        display_name: str | None,
        login_at: datetime | None = None,
    ) -> dict[str, Any]:
        login_time = (login_at or _now()).replace(microsecond=0)
        doc_ref = self._users.document(uid)
        with _firestore_call("users.record_login", user_id=uid):
            existing = doc_ref.get()
            created_at = (
                coerce_datetime((existing.to_dict() or {}).get("createdAt"))
                if existing.exists
                else None
            )
            doc_ref.set(
                {
                    "email": email,
                    "displayName": display_name or "",
                    "createdAt": created_at or login_time,
                    "lastLoginAt": login_time,
                },
                merge=True,
            )
        user = self.get_user(uid)
        if user is None:  # pragma: no cover - defensive fallback
            raise StoreError("users.record_login", "user document missing after write")
        return user

    def get_user(self, uid: str) -> dict[str, Any] | None:
        with _firestore_call("users.get", user_id=uid):
            doc = self._users.document(uid).get()
        if not doc.exists:
            return None
        data = coerce_datetime_fields(dict(doc.to_dict() or {}), "createdAt", "lastLoginAt")
        return {
            "id": uid,
            "email": str(data.get("email") or ""),
            "displayName": str(data.get("displayName") or ""),
            "createdAt": data.get("createdAt"),
            "lastLoginAt": data.get("lastLoginAt"),
        }

    def delete_user(self, uid: str) -> None:
        with _firestore_call("users.delete", user_id=uid):
            self._users.document(uid).delete()


class FirestoreTopicStore(FirestoreBaseStore):
    """topics コレクション。questionCount / completedQuestions もここで再計算する。"""

    def __init__(self, client: firestore.Client):
        super().__init__(client)
        self._topics = client.collection("topics")
        self._questions = client.collection("questions")
        self._progress = client.collection("progress")

    def create_topic(
        self,
        user_id: str,
        *,
        title: str,
        description: str = "",
        color: str = "#007AFF",
    ) -> Topic:
        now = _now()
        topic_id = generate_topic_id()
        payload = {
            "userId": user_id,
            "title": title,
            "description": description,
            "color": color,
            "createdAt": now,
            "updatedAt": now,
            "questionCount": 0,
            "completedQuestions": 0,
        }
        with _firestore_call("topics.create", user_id=user_id):
            self._topics.document(topic_id).set(payload)
        return Topic.model_validate({**payload, "id": topic_id})

    def list_topics(self, user_id: str) -> list[Topic]:
        query = self._topics.where("userId", "==", user_id).order_by(
            "createdAt", direction=firestore.Query.DESCENDING
        )
        with _firestore_call("topics.list", user_id=user_id):
            docs = list(query.stream())
        return [_topic_from_snapshot(doc) for doc in docs]

    def get_topic(self, topic_id: str) -> Topic | None:
        with _firestore_call("topics.get", topic_id=topic_id):
            doc = self._topics.document(topic_id).get()
        if not doc.exists:
            return None
        return _topic_from_snapshot(doc)

    def update_topic(self, topic_id: str, updates: Mapping[str, Any]) -> Topic | None:
        doc_ref = self._topics.document(topic_id)
        with _firestore_call("topics.update", topic_id=topic_id):
            if not doc_ref.get().exists:
                return None
            doc_ref.update({**dict(updates), "updatedAt": _now()})
        return self.get_topic(topic_id)

    def delete_topic(self, topic_id: str) -> bool:
        """トピック本体と配下の questions / progress をまとめて削除する。"""

        doc_ref = self._topics.document(topic_id)
        with _firestore_call("topics.delete", topic_id=topic_id):
            if not doc_ref.get().exists:
                return False
            refs = [
                doc.reference
                for doc in self._questions.where("topicId", "==", topic_id).stream()
            ]
            refs.extend(
                doc.reference
                for doc in self._progress.where("topicId", "==", topic_id).stream()
            )
            self._delete_in_batches(refs)
            doc_ref.delete()
        logger.info("topic_deleted", topic_id=topic_id, cascaded_documents=len(refs))
        return True

    def refresh_question_count(self, topic_id: str) -> int:
        query = self._questions.where("topicId", "==", topic_id)
        with _firestore_call("topics.refresh_question_count", topic_id=topic_id):
            count = _extract_count_from_aggregation(query.count().get())
            self._update_counter(topic_id, "questionCount", count)
        return count

    def refresh_completed_count(self, topic_id: str, user_id: str) -> int:
        query = (
            self._progress.where("userId", "==", user_id)
            .where("topicId", "==", topic_id)
            .where("isCompleted", "==", True)
        )
        with _firestore_call("topics.refresh_completed_count", topic_id=topic_id):
            count = _extract_count_from_aggregation(query.count().get())
            self._update_counter(topic_id, "completedQuestions", count)
        return count

    def _update_counter(self, topic_id: str, field: str, value: int) -> None:
        doc_ref = self._topics.document(topic_id)
        if doc_ref.get().exists:
            doc_ref.update({field: value, "updatedAt": _now()})


class FirestoreQuestionStore(FirestoreBaseStore):
    """questions コレクション。作成・削除のたびにトピックの件数を再計算する。"""

    def __init__(self, client: firestore.Client, topics: FirestoreTopicStore):
        super().__init__(client)
        self._questions = client.collection("questions")
        self._progress = client.collection("progress")
        self._topics = topics

    def create_question(
        self,
        user_id: str,
        topic_id: str,
        *,
        question: str,
        answer: str,
        options: list[str] | None = None,
        type: str = "open",
        difficulty: str = "medium",
        generated_by_ai: bool = False,
        source: str | None = None,
    ) -> Question:
        question_id = generate_question_id()
        model = Question(
            id=question_id,
            topic_id=topic_id,
            user_id=user_id,
            question=question,
            answer=answer,
            options=options,
            type=type,
            difficulty=difficulty,
            created_at=_now(),
            generated_by_ai=generated_by_ai,
            source=source,
        )
        with _firestore_call("questions.create", topic_id=topic_id):
            self._questions.document(question_id).set(
                model.model_dump(by_alias=True, exclude={"id"})
            )
        self._topics.refresh_question_count(topic_id)
        return model

    def create_generated_questions(
        self, user_id: str, topic_id: str, items: Sequence[GeneratedQuestion]
    ) -> list[Question]:
        """LLM 生成結果を 1 回の WriteBatch でまとめて保存する。"""

        now = _now()
        created: list[Question] = []
        with _firestore_call("questions.create_generated", topic_id=topic_id):
            for start in range(0, len(items), _BATCH_SIZE):
                batch = self._client.batch()
                for item in items[start : start + _BATCH_SIZE]:
                    model = Question(
                        id=generate_question_id(),
                        topic_id=topic_id,
                        user_id=user_id,
                        question=item.question,
                        answer=item.answer,
                        options=item.options,
                        type=item.type,
                        difficulty=item.difficulty,
                        created_at=now,
                        generated_by_ai=True,
                    )
                    batch.set(
                        self._questions.document(model.id),
                        model.model_dump(by_alias=True, exclude={"id"}),
                    )
                    created.append(model)
                batch.commit()
        if created:
            self._topics.refresh_question_count(topic_id)
        return created

    def list_questions(self, topic_id: str) -> list[Question]:
        query = self._questions.where("topicId", "==", topic_id).order_by(
            "createdAt", direction=firestore.Query.DESCENDING
        )
        with _firestore_call("questions.list", topic_id=topic_id):
            docs = list(query.stream())
        return [_question_from_snapshot(doc) for doc in docs]

    def get_question(self, question_id: str) -> Question | None:
        with _firestore_call("questions.get", question_id=question_id):
            doc = self._questions.document(question_id).get()
        if not doc.exists:
            return None
        return _question_from_snapshot(doc)

    def update_question(
        self, question_id: str, updates: Mapping[str, Any]
    ) -> Question | None:
        doc_ref = self._questions.document(question_id)
        with _firestore_call("questions.update", question_id=question_id):
            if not doc_ref.get().exists:
                return None
            if updates:
                doc_ref.update(dict(updates))
        return self.get_question(question_id)

    def delete_question(self, question_id: str) -> bool:
        doc_ref = self._questions.document(question_id)
        with _firestore_call("questions.delete", question_id=question_id):
            snapshot = doc_ref.get()
            if not snapshot.exists:
                return False
            data = snapshot.to_dict() or {}
            topic_id = str(data.get("topicId") or "")
            owner_id = str(data.get("userId") or "")
            refs = [
                doc.reference
                for doc in self._progress.where("questionId", "==", question_id).stream()
            ]
            self._delete_in_batches(refs)
            doc_ref.delete()
        if topic_id:
            self._topics.refresh_question_count(topic_id)
            if owner_id:
                self._topics.refresh_completed_count(topic_id, owner_id)
        return True


class FirestoreProgressStore(FirestoreBaseStore):
    """progress コレクション（`{userId}_{questionId}` キー）。"""

    def __init__(self, client: firestore.Client):
        super().__init__(client)
        self._progress = client.collection("progress")

    def get_progress(self, user_id: str, question_id: str) -> ProgressRecord | None:
        doc_id = progress_document_id(user_id, question_id)
        with _firestore_call("progress.get", progress_id=doc_id):
            doc = self._progress.document(doc_id).get()
        if not doc.exists:
            return None
        return _progress_from_snapshot(doc)

    def save_progress(self, record: ProgressRecord) -> None:
        with _firestore_call("progress.save", progress_id=record.id):
            self._progress.document(record.id).set(_progress_to_document(record))

    def apply_transition(
        self,
        user_id: str,
        question_id: str,
        transition: Callable[[ProgressRecord | None], ProgressRecord],
    ) -> ProgressRecord:
        """Read, transform and write one progress document inside a transaction.

        同じドキュメントへの並行書き込みはコミット時に失敗し StoreError として
        呼び出し元へ伝播する（自動リトライはしない）。
        """

        doc_ref = self._progress.document(progress_document_id(user_id, question_id))
        operation = "progress.apply_transition"
        with _firestore_call(operation, progress_id=doc_ref.id):
            transaction = self._client.transaction()
            transaction._begin()
            try:
                snapshot = _coerce_firestore_snapshot(transaction.get(doc_ref))
                previous = (
                    _progress_from_snapshot(snapshot)
                    if snapshot is not None and snapshot.exists
                    else None
                )
                updated = transition(previous)
                transaction.set(doc_ref, _progress_to_document(updated))
                transaction._commit()
            except BaseException:
                if transaction.in_progress:
                    _rollback_quietly(transaction, operation)
                raise
        return updated

    def list_due(
        self, user_id: str, *, now: datetime | None = None, limit: int = 200
    ) -> list[ProgressRecord]:
        """nextReviewAt <= now かつ未完了のレコードを期限の古い順に返す。"""

        cutoff = now or _now()
        query = (
            self._progress.where("userId", "==", user_id)
            .where("nextReviewAt", "<=", cutoff)
            .where("isCompleted", "==", False)
            .order_by("nextReviewAt")
            .limit(max(0, int(limit)))
        )
        with _firestore_call("progress.list_due", user_id=user_id):
            docs = list(query.stream())
        return [_progress_from_snapshot(doc) for doc in docs]

    def list_for_topic(self, user_id: str, topic_id: str) -> list[ProgressRecord]:
        query = self._progress.where("userId", "==", user_id).where(
            "topicId", "==", topic_id
        )
        with _firestore_call("progress.list_for_topic", topic_id=topic_id):
            docs = list(query.stream())
        return [_progress_from_snapshot(doc) for doc in docs]

    def list_for_user(self, user_id: str) -> list[ProgressRecord]:
        with _firestore_call("progress.list_for_user", user_id=user_id):
            docs = list(self._progress.where("userId", "==", user_id).stream())
        return [_progress_from_snapshot(doc) for doc in docs]


class AppFirestoreStore:
    """Firestore 版のアプリ永続化ストア。"""

    def __init__(self, *, client: firestore.Client | None = None) -> None:
        self._client = client or firestore.Client()
        self.users = FirestoreUserStore(self._client)
        self.topics = FirestoreTopicStore(self._client)
        self.questions = FirestoreQuestionStore(self._client, self.topics)
        self.progress = FirestoreProgressStore(self._client)

    # --- Users ---
    def record_user_login(
        self,
        *,
        uid: str,
        email: str,
        display_name: str | None,
        login_at: datetime | None = None,
    ) -> dict[str, Any]:
        return self.users.record_user_login(
            uid=uid, email=email, display_name=display_name, login_at=login_at
        )

    def get_user(self, uid: str) -> dict[str, Any] | None:
        return self.users.get_user(uid)

    def delete_user_data(self, uid: str) -> int:
        """ユーザーに紐づく progress / questions / topics / users を一括削除する。"""

        refs: list[Any] = []
        with _firestore_call("users.delete_data", user_id=uid):
            for name in ("progress", "questions", "topics"):
                collection = self._client.collection(name)
                refs.extend(
                    doc.reference
                    for doc in collection.where("userId", "==", uid).stream()
                )
            self.users._delete_in_batches(refs)
        self.users.delete_user(uid)
        logger.info("user_data_deleted", user_id=uid, deleted_documents=len(refs))
        return len(refs)

    # --- Topics ---
    def create_topic(self, user_id: str, **kwargs: Any) -> Topic:
        return self.topics.create_topic(user_id, **kwargs)

    def list_topics(self, user_id: str) -> list[Topic]:
        return self.topics.list_topics(user_id)

    def get_topic(self, topic_id: str) -> Topic | None:
        return self.topics.get_topic(topic_id)

    def update_topic(self, topic_id: str, updates: Mapping[str, Any]) -> Topic | None:
        return self.topics.update_topic(topic_id, updates)

    def delete_topic(self, topic_id: str) -> bool:
        return self.topics.delete_topic(topic_id)

    def refresh_completed_count(self, topic_id: str, user_id: str) -> int:
        return self.topics.refresh_completed_count(topic_id, user_id)

    # --- Questions ---
    def create_question(self, user_id: str, topic_id: str, **kwargs: Any) -> Question:
        return self.questions.create_question(user_id, topic_id, **kwargs)

    def create_generated_questions(
        self, user_id: str, topic_id: str, items: Sequence[GeneratedQuestion]
    ) -> list[Question]:
        return self.questions.create_generated_questions(user_id, topic_id, items)

    def list_questions(self, topic_id: str) -> list[Question]:
        return self.questions.list_questions(topic_id)

    def get_question(self, question_id: str) -> Question | None:
        return self.questions.get_question(question_id)

    def update_question(
        self, question_id: str, updates: Mapping[str, Any]
    ) -> Question | None:
        return self.questions.update_question(question_id, updates)

    def delete_question(self, question_id: str) -> bool:
        return self.questions.delete_question(question_id)

    # --- Progress ---
    def get_progress(self, user_id: str, question_id: str) -> ProgressRecord | None:
        return self.progress.get_progress(user_id, question_id)

    def save_progress(self, record: ProgressRecord) -> None:
        self.progress.save_progress(record)

    def apply_progress_transition(
        self,
        user_id: str,
        question_id: str,
        transition: Callable[[ProgressRecord | None], ProgressRecord],
    ) -> ProgressRecord:
        return self.progress.apply_transition(user_id, question_id, transition)

    def list_due_progress(
        self, user_id: str, *, now: datetime | None = None, limit: int = 200
    ) -> list[ProgressRecord]:
        return self.progress.list_due(user_id, now=now, limit=limit)

    def list_topic_progress(self, user_id: str, topic_id: str) -> list[ProgressRecord]:
        return self.progress.list_for_topic(user_id, topic_id)

    def list_user_progress(self, user_id: str) -> list[ProgressRecord]:
        return self.progress.list_for_user(user_id)
