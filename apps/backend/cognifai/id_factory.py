"""ID 生成ユーティリティ。

topics / questions の document ID は Firestore のパス制約に抵触しない文字だけで
構成する。progress は `{userId}_{questionId}` の複合キーのため生成不要
（models.progress.progress_document_id を参照）。
"""

from __future__ import annotations

import uuid


def generate_topic_id() -> str:
    return uuid.uuid4().hex


def generate_question_id() -> str:
    return uuid.uuid4().hex
