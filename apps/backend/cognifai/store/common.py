from __future__ import annotations

from datetime import UTC, datetime
from typing import Any


def normalize_non_negative_int(value: Any) -> int:
    """与えられた値を非負整数に正規化する。

    questionCount などの非正規化カウンタは古いクライアントが負値や文字列を
    書き込んでいる可能性があるため、読み出し時にゼロ以上へ矯正する。"""

    try:
        ivalue = int(value)
    except (TypeError, ValueError):
        return 0
    return ivalue if ivalue >= 0 else 0


def coerce_datetime(value: Any) -> datetime | None:
    """Firestore の値を timezone-aware な UTC datetime に揃える。

    - Firestore Timestamp（DatetimeWithNanoseconds）はそのまま datetime として扱う
    - tzinfo の無い値は UTC とみなす
    - ISO 8601 文字列（手動投入データ）も受け付ける
    """

    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return None
        return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)
    to_datetime = getattr(value, "to_datetime", None)
    if callable(to_datetime):
        return coerce_datetime(to_datetime())
    return None


def coerce_datetime_fields(data: dict[str, Any], *fields: str) -> dict[str, Any]:
    for name in fields:
        if name in data:
            data[name] = coerce_datetime(data[name])
    return data
