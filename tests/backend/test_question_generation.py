from __future__ import annotations

import json

import httpx
import pytest

from cognifai.errors import ConfigurationError, RequestError
from cognifai.flows.question_generation import (
    QuestionGenerationFlow,
    build_prompt,
    normalize_question_type,
    parse_generated_questions,
    parse_questions_from_text,
)
from cognifai.providers.llm import GeminiLLM, get_llm_provider

_GEMINI_JSON = """Here you go:
```json
{
  "questions": [
    {"question": "What is ATP?", "answer": "Energy currency", "type": "open", "difficulty": "easy"},
    {"question": "Which organelle?", "answer": "Mitochondria",
     "options": ["Nucleus", "Mitochondria", "Ribosome", "Golgi"], "type": "Multiple Choice"},
    {"question": "Cells have walls?", "answer": "False", "options": ["True", "False"], "type": "true/false"},
    {"question": "Odd", "answer": "x", "type": "essay"}
  ]
}
```"""


def _envelope(text: str) -> dict:
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


def _gemini(handler, api_key: str | None = "key-1234567890") -> GeminiLLM:
    return GeminiLLM(
        api_key=api_key,
        model="gemini-2.0-flash-exp",
        base_url="https://example.test/v1beta/models",
        transport=httpx.MockTransport(handler),
    )


def test_prompt_contains_topic_and_difficulty_instruction() -> None:
    prompt = build_prompt("Cell biology", "Organelles", 3, "hard")

    assert "Topic: Cell biology" in prompt
    assert "Description: Organelles" in prompt
    assert "Number of Questions: 3" in prompt
    assert "deep understanding, critical thinking" in prompt
    assert '"difficulty": "hard"' in prompt


def test_parse_generated_questions_normalises_types_and_forces_difficulty() -> None:
    questions = parse_generated_questions(_GEMINI_JSON, "medium")

    assert [q.type for q in questions] == ["open", "multiple_choice", "true_false", "open"]
    assert all(q.difficulty == "medium" for q in questions)
    assert questions[1].options == ["Nucleus", "Mitochondria", "Ribosome", "Golgi"]
    assert questions[0].options is None


def test_missing_questions_key_falls_back_to_line_parser() -> None:
    text = '{"items": []}\nQuestion 1: What is DNA?\nAnswer: Genetic material'

    questions = parse_generated_questions(text, "easy")

    assert len(questions) == 1
    assert questions[0].question == "What is DNA?"
    assert questions[0].answer == "Genetic material"
    assert questions[0].type == "open"


def test_line_parser_pairs_questions_and_answers() -> None:
    text = "\n".join(
        [
            "Question 1: What is 2+2?",
            "Answer: 4",
            "",
            "Question 2: Ratio of circle circumference: diameter?",
            "Answer: pi: about 3.14",
            "Question 3: Unanswered?",
        ]
    )

    questions = parse_questions_from_text(text, "easy")

    assert [(q.question, q.answer) for q in questions] == [
        ("What is 2+2?", "4"),
        ("Ratio of circle circumference: diameter?", "pi: about 3.14"),
    ]


def test_unparseable_text_yields_empty_list() -> None:
    assert parse_generated_questions("no structure at all", "medium") == []
    assert parse_generated_questions("{not json}", "medium") == []


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("multiple_choice", "multiple_choice"),
        ("Multiple Choice", "multiple_choice"),
        ("TRUE/FALSE", "true_false"),
        ("true_false", "true_false"),
        ("open", "open"),
        (None, "open"),
        (3, "open"),
    ],
)
def test_normalize_question_type(raw, expected) -> None:
    assert normalize_question_type(raw) == expected


def test_gemini_posts_prompt_and_extracts_text() -> None:
    captured: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = request.url
        captured["api_key"] = request.headers.get("x-goog-api-key")
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json=_envelope("hello"))

    assert _gemini(handler).complete("prompt text") == "hello"
    assert captured["url"].path == "/v1beta/models/gemini-2.0-flash-exp:generateContent"
    assert captured["api_key"] == "key-1234567890"
    assert "key" not in captured["url"].params
    assert captured["body"]["contents"][0]["parts"][0]["text"] == "prompt text"
    assert captured["body"]["generationConfig"]["topK"] == 40
    assert captured["body"]["generationConfig"]["maxOutputTokens"] == 2048


def test_gemini_without_api_key_raises_configuration_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:  # pragma: no cover - never called
        raise AssertionError("no request expected")

    with pytest.raises(ConfigurationError):
        _gemini(handler, api_key="  ").complete("prompt")


def test_gemini_http_failure_raises_request_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, json={"error": {"message": "quota"}})

    with pytest.raises(RequestError) as exc:
        _gemini(handler).complete("prompt")

    assert exc.value.status_code == 429


def test_gemini_envelope_without_candidates_raises_request_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"promptFeedback": {"blockReason": "SAFETY"}})

    with pytest.raises(RequestError):
        _gemini(handler).complete("prompt")


@pytest.mark.parametrize(
    "envelope",
    [
        {"candidates": ["oops"]},
        {"candidates": [None]},
        {"candidates": [{"content": []}]},
        {"candidates": [{"content": {"parts": "text"}}]},
        {"candidates": [{"content": {"parts": ["text"]}}]},
        ["not", "an", "object"],
    ],
)
def test_gemini_malformed_envelope_raises_request_error(envelope) -> None:
    with pytest.raises(RequestError):
        _gemini(lambda request: httpx.Response(200, json=envelope)).complete("prompt")


def test_gemini_transport_error_raises_request_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("boom", request=request)

    with pytest.raises(RequestError):
        _gemini(handler).complete("prompt")


def test_connection_test_reports_failures_as_false() -> None:
    ok = _gemini(lambda request: httpx.Response(200, json=_envelope("Q: 1+1?")))
    broken = _gemini(lambda request: httpx.Response(500))
    unconfigured = _gemini(lambda request: httpx.Response(200), api_key=None)

    assert ok.test_connection() is True
    assert broken.test_connection() is False
    assert unconfigured.test_connection() is False


def test_flow_generates_and_saves_for_topic(store) -> None:
    topic = store.create_topic("u1", title="Biology", description="Cells")
    llm = _gemini(lambda request: httpx.Response(200, json=_envelope(_GEMINI_JSON)))
    flow = QuestionGenerationFlow(llm, store)

    generated, saved = flow.generate_for_topic(topic, 4, "easy")

    assert len(generated) == 4
    assert len(saved) == 4
    assert all(q.generated_by_ai for q in saved)
    assert all(q.difficulty == "easy" for q in store.list_questions(topic.id))
    assert store.get_topic(topic.id).question_count == 4


def test_flow_without_save_does_not_write(store, fake_client) -> None:
    topic = store.create_topic("u1", title="Biology")
    llm = _gemini(lambda request: httpx.Response(200, json=_envelope(_GEMINI_JSON)))

    generated, saved = QuestionGenerationFlow(llm, store).generate_for_topic(topic, 4, save=False)

    assert len(generated) == 4
    assert saved == []
    assert fake_client.documents("questions") == {}


def test_provider_factory(monkeypatch) -> None:
    from cognifai.config import settings

    monkeypatch.setattr(settings, "llm_provider", "gemini")
    assert isinstance(get_llm_provider(), GeminiLLM)

    monkeypatch.setattr(settings, "llm_provider", "unknown")
    with pytest.raises(ConfigurationError):
        get_llm_provider()

    monkeypatch.setattr(settings, "llm_provider", "local")
    monkeypatch.setattr(settings, "strict_mode", True)
    with pytest.raises(ConfigurationError):
        get_llm_provider()

    monkeypatch.setattr(settings, "strict_mode", False)
    assert get_llm_provider().complete("anything") == ""
