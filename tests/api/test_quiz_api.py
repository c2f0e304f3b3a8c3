import json
from datetime import datetime, timedelta, timezone

import pytest

import ai_client
import database

STUDY_TEXT = "The mitochondria produce ATP through cellular respiration in eukaryotic cells."

MODEL_REPLY = json.dumps(
    [
        {
            "question": "Q1. What do mitochondria produce?",
            "options": ["ATP", "DNA", "Glucose", "Oxygen", "Starch"],
            "correctIndex": 0,
        },
        {"question": "Which cells have mitochondria?", "options": ["Eukaryotic", "Prokaryotic"], "correctIndex": 1},
    ]
)


@pytest.fixture
def fake_model(monkeypatch):
    prompts = []

    async def _complete(prompt, **kwargs):
        prompts.append((prompt, kwargs))
        return MODEL_REPLY

    monkeypatch.setattr(ai_client, "chat_completion", _complete)
    return prompts


def _note(client, headers, title="Biology", content=STUDY_TEXT) -> str:
    resp = client.post("/api/notes", json={"title": title, "content": content}, headers=headers)
    return resp.json()["note"]["id"]


def _evaluate_payload(answers, difficulty="medium"):
    return {
        "questions": [
            {"question": "What do mitochondria produce?", "options": ["ATP", "DNA", "Glucose", "Oxygen"], "correctOptionIndex": 0},
            {"question": "Which cells have mitochondria?", "options": ["Eukaryotic", "Prokaryotic"], "correctOptionIndex": 0},
            {"question": "What is ATP?", "options": ["Energy carrier", "Enzyme", "Lipid"], "correctOptionIndex": 0},
        ],
        "userAnswers": answers,
        "difficulty": difficulty,
        "timeUsedSeconds": 95,
        "selectedNoteIds": [],
    }


def test_generate_from_notes(client, auth_headers, fake_model) -> None:
    note_id = _note(client, auth_headers)

    resp = client.post(
        "/api/generate-test",
        json={"noteIds": [note_id], "difficulty": "hard", "questionCount": 30},
        headers=auth_headers,
    )

    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["questionCount"] == 20
    assert body["degraded"] is False
    first = body["questions"][0]
    assert first["question"] == "What do mitochondria produce?"
    assert first["options"] == ["ATP", "DNA", "Glucose", "Oxygen"]
    assert first["correctOptionIndex"] == 0
    assert body["questions"][1]["correctOptionIndex"] == 1
    assert "Biology\n\n" + STUDY_TEXT in fake_model[0][0]


def test_generate_from_notes_needs_owned_notes(client, register, fake_model) -> None:
    alice = register(email="alice@studymail.com")
    bob = register(email="bob@studymail.com", name="Bob")
    note_id = _note(client, alice)

    empty = client.post("/api/generate-test", json={"noteIds": []}, headers=alice)
    foreign = client.post("/api/generate-test", json={"noteIds": [note_id]}, headers=bob)

    assert empty.status_code == 400
    assert empty.json()["message"] == "Please select at least one note."
    assert foreign.status_code == 400
    assert foreign.json()["message"].startswith("Selected notes not found")
    assert fake_model == []


def test_generate_from_notes_degraded_on_provider_failure(client, auth_headers, monkeypatch) -> None:
    from errors import UpstreamProviderError

    async def _down(prompt, **kwargs):
        raise UpstreamProviderError("AI service error. Please check API key or usage.")

    monkeypatch.setattr(ai_client, "chat_completion", _down)
    note_id = _note(client, auth_headers)

    resp = client.post("/api/generate-test", json={"noteIds": [note_id]}, headers=auth_headers)

    assert resp.status_code == 200
    assert resp.json()["degraded"] is True
    assert resp.json()["questions"][0]["question"] == "What does DBMS stand for?"


def test_generate_from_text(client, auth_headers, fake_model) -> None:
    resp = client.post(
        "/api/generate-test-from-text",
        json={"text": STUDY_TEXT, "difficulty": "easy", "numQuestions": 2},
        headers=auth_headers,
    )

    assert resp.status_code == 200
    body = resp.json()
    assert body["totalQuestions"] == 2
    # no option cap on the free-text path
    assert len(body["questions"][0]["options"]) == 5


def test_generate_from_short_text(client, auth_headers, fake_model) -> None:
    resp = client.post("/api/generate-test-from-text", json={"text": "Too short"}, headers=auth_headers)

    assert resp.status_code == 400
    assert resp.json()["success"] is False
    assert fake_model == []


def test_generate_without_provider_key(client, auth_headers) -> None:
    resp = client.post("/api/generate-test-from-text", json={"text": STUDY_TEXT}, headers=auth_headers)

    assert resp.status_code == 500
    assert "not configured" in resp.json()["message"]


def test_evaluate_stores_record(client, auth_headers, fake_db, monkeypatch) -> None:
    monkeypatch.setattr(ai_client, "is_ai_configured", lambda: True)

    async def _explain(prompt, **kwargs):
        return "Because it is correct."

    monkeypatch.setattr(ai_client, "chat_completion", _explain)

    resp = client.post("/api/evaluate-test", json=_evaluate_payload([0, 1, None]), headers=auth_headers)

    assert resp.status_code == 201, resp.text
    body = resp.json()
    assert body["totalQuestions"] == 3
    assert body["correctCount"] == 1
    assert body["wrongCount"] == 2
    assert body["score"] == 1
    assert body["accuracy"] == 33
    assert body["xpEarned"] == 10
    assert body["perQuestionResults"][2]["userOptionIndex"] == -1
    assert body["perQuestionResults"][0]["aiExplanation"] == "Because it is correct."

    stored = fake_db["test"].docs
    assert len(stored) == 1
    assert str(stored[0]["_id"]) == body["testId"]
    assert stored[0]["time_used_seconds"] == 95
    assert stored[0]["difficulty"] == "medium"


def test_evaluate_mismatch_persists_nothing(client, auth_headers, fake_db) -> None:
    resp = client.post("/api/evaluate-test", json=_evaluate_payload([0, 1]), headers=auth_headers)

    assert resp.status_code == 400
    assert resp.json() == {"success": False, "message": "Invalid questions / answers payload"}
    assert fake_db["test"].docs == []


def test_evaluate_without_provider_still_grades(client, auth_headers) -> None:
    resp = client.post("/api/evaluate-test", json=_evaluate_payload([0, 0, 0]), headers=auth_headers)

    assert resp.status_code == 201
    body = resp.json()
    assert body["accuracy"] == 100
    assert all(r["aiExplanation"] is None for r in body["perQuestionResults"])


def test_history_summary_and_detail(client, register) -> None:
    alice = register(email="alice@studymail.com")
    bob = register(email="bob@studymail.com", name="Bob")
    client.post("/api/evaluate-test", json=_evaluate_payload([0, 0, 0], "easy"), headers=alice)
    created = client.post("/api/evaluate-test", json=_evaluate_payload([1, 1, 1], "hard"), headers=alice).json()

    summary = client.get("/api/tests", headers=alice).json()
    assert summary["totalTests"] == 2
    assert summary["totalQuestionsAttempted"] == 6
    assert summary["totalCorrect"] == 3
    assert summary["xpPoints"] == 30
    assert summary["difficultyStats"] == [
        {"difficulty": "easy", "accuracy": 100},
        {"difficulty": "hard", "accuracy": 0},
    ]
    assert [s["name"] for s in summary["scoreHistory"]] == ["T1", "T2"]

    history = client.get("/api/test-history", headers=alice).json()["tests"]
    assert [t["difficulty"] for t in history] == ["easy", "hard"]

    detail = client.get(f"/api/tests/{created['testId']}", headers=alice)
    assert detail.status_code == 200
    assert detail.json()["test"]["perQuestionResults"][1]["isCorrect"] is False

    assert client.get(f"/api/tests/{created['testId']}", headers=bob).status_code == 404
    assert client.get("/api/tests", headers=bob).json()["totalTests"] == 0


def test_streak_endpoint(client, auth_headers, fake_db, monkeypatch) -> None:
    user_id = str(fake_db["user"].docs[0]["_id"])
    day = datetime(2024, 1, 1, 10, tzinfo=timezone.utc)
    for offset in (0, 1, 2, 4):
        fake_db["test"].insert_one(
            {"user_id": user_id, "created_at": day + timedelta(days=offset), "total_questions": 1, "correct_count": 1}
        )
    monkeypatch.setattr(database, "utcnow", lambda: datetime(2024, 1, 5, 18, tzinfo=timezone.utc))

    resp = client.get("/api/streak", headers=auth_headers)

    assert resp.json() == {"success": True, "currentStreakDays": 1, "longestStreakDays": 3}


def test_ask_ai(client, auth_headers, fake_model) -> None:
    resp = client.post("/api/ask-ai", json={"question": "What is osmosis?"}, headers=auth_headers)
    blank = client.post("/api/ask-ai", json={"question": "  "}, headers=auth_headers)

    assert resp.status_code == 200
    assert resp.json()["answer"] == MODEL_REPLY
    assert fake_model[0][1]["system_prompt"].startswith("You are a helpful study assistant")
    assert blank.status_code == 400
    assert blank.json()["message"] == "Question is required"
