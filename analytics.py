"""
Dashboard statistics derived from a user's stored test records.
"""
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Mapping, Sequence, Set

from pymongo import ASCENDING

from database import collection, get_documents, to_object_id
from errors import NotFoundError
from grading import XP_PER_CORRECT, percentage

ONE_DAY = timedelta(days=1)


def load_tests(user_id: str) -> List[Dict[str, Any]]:
    """All of the user's tests, oldest first."""
    return get_documents("test", {"user_id": user_id}, sort=[("created_at", ASCENDING)])


def load_test(user_id: str, test_id: str) -> Dict[str, Any]:
    oid = to_object_id(test_id)
    test = collection("test").find_one({"_id": oid, "user_id": user_id}) if oid else None
    if not test:
        raise NotFoundError("Test not found")
    return test


def _question_totals(test: Mapping[str, Any]):
    """(total, correct) for a stored test, falling back to its per-question rows."""
    rows = test.get("per_question_results")
    rows = rows if isinstance(rows, list) else []
    total = test.get("total_questions")
    if not isinstance(total, int):
        total = len(rows)
    correct = test.get("correct_count")
    if not isinstance(correct, int):
        correct = sum(1 for r in rows if isinstance(r, Mapping) and r.get("is_correct"))
    return total, correct


def summarize(tests: Sequence[Mapping[str, Any]]) -> Dict[str, Any]:
    total_questions = 0
    total_correct = 0
    score_history = []
    by_difficulty: Dict[str, List[int]] = {}

    for index, test in enumerate(tests):
        total, correct = _question_totals(test)
        total_questions += total
        total_correct += correct
        score_history.append({"name": f"T{index + 1}", "accuracy": percentage(correct, total)})

        bucket = by_difficulty.setdefault(test.get("difficulty") or "unknown", [0, 0])
        bucket[0] += total
        bucket[1] += correct

    return {
        "totalTests": len(tests),
        "totalQuestionsAttempted": total_questions,
        "totalCorrect": total_correct,
        "totalWrong": total_questions - total_correct,
        "overallAccuracy": percentage(total_correct, total_questions),
        "xpPoints": total_correct * XP_PER_CORRECT,
        "scoreHistory": score_history,
        "difficultyStats": [
            {"difficulty": difficulty, "accuracy": percentage(correct, total)}
            for difficulty, (total, correct) in by_difficulty.items()
        ],
    }


def _utc_day(value: datetime) -> date:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).date()


def activity_days(tests: Iterable[Mapping[str, Any]]) -> Set[date]:
    return {_utc_day(t["created_at"]) for t in tests if isinstance(t.get("created_at"), datetime)}


def compute_streak(tests: Iterable[Mapping[str, Any]], now: datetime) -> Dict[str, int]:
    days = activity_days(tests)
    if not days:
        return {"currentStreakDays": 0, "longestStreakDays": 0}

    ordered = sorted(days)
    longest = run = 1
    for prev, cur in zip(ordered, ordered[1:]):
        if cur - prev == ONE_DAY:
            run += 1
        else:
            run = 1
        longest = max(longest, run)

    current = 0
    cursor = _utc_day(now)
    while cursor in days:
        current += 1
        cursor -= ONE_DAY

    return {"currentStreakDays": current, "longestStreakDays": longest}
