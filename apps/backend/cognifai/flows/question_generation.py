"""AI question generation flow.

トピックのタイトルと説明から LLM に問題を作らせ、JSON 応答を GeneratedQuestion へ
正規化する。JSON として読めない応答は行単位の簡易パーサで救済する。
"""

from __future__ import annotations

import json
import re
from typing import Any

from ..logging import logger
from ..models.common import Difficulty, QuestionType
from ..models.topic import GeneratedQuestion, Question, Topic
from ..providers.llm import _LLMBase
from ..store import AppFirestoreStore

_JSON_BLOCK = re.compile(r"\{[\s\S]*\}")

_DIFFICULTY_INSTRUCTIONS = {
    Difficulty.easy.value: "Create basic, straightforward questions that test fundamental understanding.",
    Difficulty.medium.value: "Create moderately challenging questions that require some analysis and application.",
    Difficulty.hard.value: "Create complex questions that require deep understanding, critical thinking, and synthesis.",
}

_TYPE_ALIASES = {
    "multiple_choice": QuestionType.multiple_choice,
    "multiple choice": QuestionType.multiple_choice,
    "true_false": QuestionType.true_false,
    "true/false": QuestionType.true_false,
}


def build_prompt(title: str, description: str, count: int, difficulty: Difficulty | str) -> str:
    level = Difficulty(difficulty).value
    return f"""You are an expert educator creating learning questions for a spaced repetition system.

Topic: {title}
Description: {description}
Difficulty Level: {level}
Number of Questions: {count}

Instructions:
- {_DIFFICULTY_INSTRUCTIONS[level]}
- Create a mix of question types: open-ended, multiple choice, and true/false
- For multiple choice questions, provide 4 options with only one correct answer
- Make questions clear, concise, and educational
- Ensure answers are accurate and comprehensive
- Focus on key concepts and practical applications

Please generate exactly {count} questions in the following JSON format:

{{
  "questions": [
    {{
      "question": "Your question here",
      "answer": "Detailed answer here",
      "type": "open",
      "difficulty": "{level}"
    }},
    {{
      "question": "Your multiple choice question here",
      "answer": "Correct answer here",
      "options": ["Option A", "Option B", "Option C", "Option D"],
      "type": "multiple_choice",
      "difficulty": "{level}"
    }},
    {{
      "question": "Your true/false question here",
      "answer": "True/False with explanation",
      "options": ["True", "False"],
      "type": "true_false",
      "difficulty": "{level}"
    }}
  ]
}}

Generate the questions now:"""


def normalize_question_type(raw: Any) -> QuestionType:
    """Map free-form type labels onto the supported question types (default open)."""

    if not isinstance(raw, str):
        return QuestionType.open
    return _TYPE_ALIASES.get(raw.strip().lower(), QuestionType.open)


def _normalize_options(raw: Any) -> list[str] | None:
    if not isinstance(raw, list) or not raw:
        return None
    return [str(option) for option in raw]


def parse_questions_from_text(text: str, difficulty: Difficulty | str) -> list[GeneratedQuestion]:
    """Line based fallback: `Question: ...` / `Answer: ...` pairs become open questions."""

    questions: list[GeneratedQuestion] = []
    current_question = ""
    current_answer = ""

    def _flush() -> None:
        if current_question and current_answer:
            questions.append(
                GeneratedQuestion(
                    question=current_question,
                    answer=current_answer,
                    type=QuestionType.open,
                    difficulty=difficulty,
                )
            )

    for line in text.splitlines():
        if not line.strip():
            continue
        lowered = line.lower()
        if "question" in lowered and ":" in line:
            _flush()
            current_question = line.split(":", 1)[1].strip()
            current_answer = ""
        elif "answer" in lowered and ":" in line:
            current_answer = line.split(":", 1)[1].strip()
    _flush()
    return questions


def parse_generated_questions(text: str, difficulty: Difficulty | str) -> list[GeneratedQuestion]:
    """Parse the LLM output, forcing every item to the requested difficulty.

    最外の `{...}` を JSON として読み、`questions` 配列を取り出す。どこかで
    失敗した場合は parse_questions_from_text にフォールバックする（例外は投げない）。
    """

    match = _JSON_BLOCK.search(text or "")
    try:
        if match is None:
            raise ValueError("no JSON object found in response")
        parsed = json.loads(match.group(0))
        raw_questions = parsed.get("questions") if isinstance(parsed, dict) else None
        if not isinstance(raw_questions, list):
            raise ValueError("response JSON has no questions list")
    except ValueError as exc:
        logger.warning(
            "question_generation_parse_fallback",
            reason=str(exc)[:200],
            content_chars=len(text or ""),
        )
        return parse_questions_from_text(text or "", difficulty)

    questions: list[GeneratedQuestion] = []
    for item in raw_questions:
        if not isinstance(item, dict):
            continue
        questions.append(
            GeneratedQuestion(
                question=str(item.get("question") or ""),
                answer=str(item.get("answer") or ""),
                options=_normalize_options(item.get("options")),
                type=normalize_question_type(item.get("type")),
                difficulty=difficulty,
            )
        )
    return questions


class QuestionGenerationFlow:
    """Generate questions for a topic and optionally store them."""

    def __init__(self, llm: _LLMBase, store: AppFirestoreStore | None = None) -> None:
        self._llm = llm
        self._store = store

    def generate_questions(
        self,
        title: str,
        description: str,
        count: int = 5,
        difficulty: Difficulty | str = Difficulty.medium,
    ) -> list[GeneratedQuestion]:
        prompt = build_prompt(title, description, count, difficulty)
        text = self._llm.complete(prompt)
        questions = parse_generated_questions(text, difficulty)
        logger.info(
            "questions_generated",
            provider=self._llm.provider,
            model=self._llm.model,
            requested=count,
            generated=len(questions),
        )
        return questions

    def generate_for_topic(
        self,
        topic: Topic,
        count: int = 5,
        difficulty: Difficulty | str = Difficulty.medium,
        *,
        save: bool = True,
    ) -> tuple[list[GeneratedQuestion], list[Question]]:
        """トピック向けに生成し、save=True なら generatedByAI=True で保存する。"""

        generated = self.generate_questions(topic.title, topic.description, count, difficulty)
        # 空の問題・答えは保存しない
        usable = [q for q in generated if q.question.strip() and q.answer.strip()]
        if not save or self._store is None or not usable:
            return generated, []
        saved = self._store.create_generated_questions(topic.user_id, topic.id, usable)
        return generated, saved
