"""
Grading: score the user's answers, ask the LLM to explain each correct
answer, and store one immutable test record.
"""
import asyncio
import logging
import math
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from pymongo.errors import PyMongoError

import ai_client
from config import get_settings
from database import create_document
from errors import InvalidPayloadError, PersistenceError
from schemas import UNANSWERED, EvaluateTestIn, PerQuestionResult, Question

logger = logging.getLogger(__name__)

XP_PER_CORRECT = 10

Explainer = Callable[[str, List[str], str], Awaitable[Optional[str]]]


@dataclass
class GradedResult:
    per_question_results: List[PerQuestionResult]
    total_questions: int
    correct_count: int
    wrong_count: int
    score: int
    accuracy: int
    xp_earned: int

    def to_api(self) -> Dict[str, Any]:
        return {
            "score": self.score,
            "totalQuestions": self.total_questions,
            "correctCount": self.correct_count,
            "wrongCount": self.wrong_count,
            "accuracy": self.accuracy,
            "xpEarned": self.xp_earned,
            "perQuestionResults": [r.to_api() for r in self.per_question_results],
        }


def percentage(part: int, total: int) -> int:
    """Whole percent, halves rounded up; 0 when there is nothing to divide."""
    if total <= 0:
        return 0
    return int(math.floor(part * 100 / total + 0.5))


def normalize_answer(value: Any) -> int:
    if isinstance(value, bool):
        return UNANSWERED
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, int):
        return value
    return UNANSWERED


def _explanation_prompt(question: str, options: List[str], correct_text: str) -> str:
    numbered = "\n".join(f"{i + 1}. {opt}" for i, opt in enumerate(options))
    return f"""
You are a helpful exam tutor.

Question:
{question}

Options:
{numbered}

The correct answer is:
{correct_text}

Explain in 2-3 simple sentences why this answer is correct.
If useful, briefly mention why the other options are not correct.
Use very simple English for students.
"""


async def explain_answer(question: str, options: List[str], correct_text: str) -> Optional[str]:
    """Short tutor explanation, or None when the AI provider is not configured."""
    if not ai_client.is_ai_configured():
        return None
    text = await ai_client.chat_completion(
        _explanation_prompt(question, options, correct_text),
        temperature=0.3,
    )
    return text or None


async def grade(
    questions: Sequence[Question],
    user_answers: Sequence[Any],
    explain: Explainer = explain_answer,
    concurrency: Optional[int] = None,
) -> GradedResult:
    if not questions or not user_answers or len(questions) != len(user_answers):
        raise InvalidPayloadError()

    limit = concurrency or get_settings().explanation_concurrency
    semaphore = asyncio.Semaphore(max(1, limit))

    async def _explain(q: Question) -> Optional[str]:
        async with semaphore:
            try:
                return await explain(q.question, q.options, q.options[q.correct_option_index])
            except Exception as exc:
                # an explanation is optional; losing one never fails the grading
                logger.warning("AI explanation failed: %s", exc)
                return None

    explanations = await asyncio.gather(*(_explain(q) for q in questions))

    results = []
    for q, answer, explanation in zip(questions, user_answers, explanations):
        user_index = normalize_answer(answer)
        results.append(
            PerQuestionResult(
                question=q.question,
                options=list(q.options),
                correct_option_index=q.correct_option_index,
                user_option_index=user_index,
                is_correct=user_index == q.correct_option_index,
                ai_explanation=explanation,
            )
        )

    total = len(results)
    correct = sum(1 for r in results if r.is_correct)
    return GradedResult(
        per_question_results=results,
        total_questions=total,
        correct_count=correct,
        wrong_count=total - correct,
        score=correct,
        accuracy=percentage(correct, total),
        xp_earned=correct * XP_PER_CORRECT,
    )


async def evaluate_and_store(user_id: str, payload: EvaluateTestIn) -> Dict[str, Any]:
    result = await grade(payload.questions, payload.user_answers)
    doc = {
        "user_id": user_id,
        "difficulty": payload.difficulty,
        "total_questions": result.total_questions,
        "correct_count": result.correct_count,
        "wrong_count": result.wrong_count,
        "score": result.score,
        "accuracy": result.accuracy,
        "xp_earned": result.xp_earned,
        "time_used_seconds": payload.time_used_seconds,
        "note_ids": list(payload.selected_note_ids),
        "per_question_results": [r.model_dump() for r in result.per_question_results],
    }
    try:
        test_id = create_document("test", doc)
    except PyMongoError as exc:
        logger.error("Failed to store test result: %s", exc)
        raise PersistenceError("Failed to save test result") from exc
    logger.info("Stored test %s for user %s (%d/%d)", test_id, user_id, result.correct_count, result.total_questions)
    return {"testId": test_id, **result.to_api()}
