"""
Quiz generation: prompt the LLM for multiple-choice questions and normalize
whatever comes back into canonical ``Question`` objects.

Model output is never trusted. It is parsed into plain Python values first and
a ``Question`` is only built once every field has been checked.
"""
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, List, Optional

import ai_client
import notes
from errors import (
    GenerationParseError,
    InsufficientInputError,
    NoValidQuestionsError,
    ProviderNotConfiguredError,
    UpstreamProviderError,
    ValidationError,
)
from schemas import Question, coerce_option_index

logger = logging.getLogger(__name__)

MIN_SOURCE_CHARS = 30
DEFAULT_QUESTION_COUNT = 5
INDEX_KEYS = ("correctIndex", "answerIndex", "correctOptionIndex")

_ENUMERATOR_RE = re.compile(r"^\s*(Q(uestion)?\s*\d+\.?\s*:?\s*)", re.IGNORECASE)


@dataclass(frozen=True)
class GenerationProfile:
    name: str
    max_count: int
    max_options: Optional[int]
    allow_fallback: bool
    insufficient_message: str


NOTES_PROFILE = GenerationProfile(
    name="notes",
    max_count=20,
    max_options=4,
    allow_fallback=True,
    insufficient_message="Selected notes do not contain enough text to generate questions.",
)

TEXT_PROFILE = GenerationProfile(
    name="text",
    max_count=50,
    max_options=None,
    allow_fallback=False,
    insufficient_message=(
        "Not enough text from PDF to generate questions. Please upload a clearer / longer PDF."
    ),
)


@dataclass
class GenerationResult:
    questions: List[Question]
    degraded: bool = False


# Served only when the provider call itself fails on the notes path.
DEGRADED_FALLBACK_QUESTIONS = (
    Question(
        question="What does DBMS stand for?",
        options=[
            "Database Management System",
            "Data Backup Management System",
            "Dynamic Buffer Management Service",
            "Disk Based Management Software",
        ],
        correct_option_index=0,
    ),
)


def degraded_generation(count: int) -> GenerationResult:
    questions = [q.model_copy(deep=True) for q in DEGRADED_FALLBACK_QUESTIONS[:count]]
    return GenerationResult(questions=questions, degraded=True)


def clamp_count(value: Any, ceiling: int) -> int:
    try:
        count = int(float(value))
    except (TypeError, ValueError, OverflowError):
        count = 0
    if not count:
        count = DEFAULT_QUESTION_COUNT
    return max(1, min(ceiling, count))


# -----------------------
# Prompts
# -----------------------

def _notes_prompt(text: str, difficulty: str, count: int) -> str:
    return f"""
You are a quiz generator.

Read the following study notes and create exactly {count} multiple-choice questions.

RULES:
- Each item must be a **clear question sentence**, not just a word.
  Example: "What does DBMS stand for?" is good, "DBMS" is not.
- DO NOT write "Q1", "Question 1" etc. Just the question text.
- Do NOT refer to "the notes" or "the given text"; ask about the subject itself.
- For each question:
    - Provide **exactly 4 options**.
    - Options must be realistic answers.
      DO NOT use options like "Not given", "I don't know", "All of the above".
- Mark the index of the correct option in "correctIndex" (0-based).
- Make questions suitable for difficulty: {difficulty.upper()}.

Return ONLY valid JSON, no Markdown, in this format:

[
  {{
    "question": "What does DBMS stand for?",
    "options": [
      "Database Management System",
      "Data Backup Management System",
      "Dynamic Buffer Management Service",
      "Disk Based Management Software"
    ],
    "correctIndex": 0
  }}
]

Notes:
{text}
"""


def _text_prompt(text: str, difficulty: str, count: int) -> str:
    return f"""
You are an expert exam generator.

Generate {count} multiple-choice questions (MCQs) ONLY from this study text:

"{text}"

Rules:
- Difficulty: {difficulty.upper()}.
- Each question must be normal exam style, not meta, not referencing the text.
- Do NOT say "Based on your notes" or "the given text".
- Each question must have 1 correct answer and 3 wrong but logical options.
- Do NOT use options like "All of the above", "None of the above" or "Not given".
- Questions must be clear and short (max 1-2 lines).
- Options must also be short (max 1 line).
- Use simple English for students.

Return ONLY valid JSON in this exact format (no extra text):

[
  {{
    "question": "What is ...?",
    "options": ["A", "B", "C", "D"],
    "answerIndex": 0
  }}
]
"""


def build_prompt(profile: GenerationProfile, text: str, difficulty: str, count: int) -> str:
    if profile.name == NOTES_PROFILE.name:
        return _notes_prompt(text, difficulty, count)
    return _text_prompt(text, difficulty, count)


# -----------------------
# Parsing & normalization
# -----------------------

def _loads_lenient(raw: str) -> Any:
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        pass
    # models like to wrap JSON in fences or prose; take the largest JSON-looking span
    arr_match = re.search(r"\[[\s\S]*\]", raw)
    obj_match = re.search(r"\{[\s\S]*\}", raw)
    candidates = [m.group(0) for m in (arr_match, obj_match) if m]
    for candidate in sorted(candidates, key=len, reverse=True):
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            continue
    raise GenerationParseError()


def parse_model_output(raw: str) -> List[Any]:
    """Turn the model's raw text into a list of untyped question candidates."""
    text = (raw or "").strip()
    if not text:
        raise GenerationParseError()
    data = _loads_lenient(text)
    if isinstance(data, dict):
        data = data.get("questions")
    if not isinstance(data, list):
        raise GenerationParseError()
    return data


def strip_enumerator(text: str) -> str:
    return _ENUMERATOR_RE.sub("", text, count=1).strip()


def normalize_question(raw: Any, max_options: Optional[int] = None) -> Optional[Question]:
    if not isinstance(raw, dict):
        return None
    text = raw.get("question")
    if not isinstance(text, str):
        return None
    text = strip_enumerator(text)
    if not text:
        return None

    raw_options = raw.get("options")
    if not isinstance(raw_options, list):
        return None
    # positions are kept: the correct index refers to the list as the model sent it
    options = ["" if o is None else str(o).strip() for o in raw_options]
    if max_options:
        options = options[:max_options]
    if len(options) < 2:
        return None

    raw_index = next((raw[k] for k in INDEX_KEYS if k in raw), None)
    return Question(
        question=text,
        options=options,
        correct_option_index=coerce_option_index(raw_index, len(options)),
    )


def normalize_questions(items: List[Any], desired_count: int, max_options: Optional[int] = None) -> List[Question]:
    questions: List[Question] = []
    for item in items:
        question = normalize_question(item, max_options)
        if question is None:
            continue
        questions.append(question)
        if len(questions) >= desired_count:
            break
    return questions


# -----------------------
# Operations
# -----------------------

async def generate(
    source_text: str,
    difficulty: str,
    desired_count: Any,
    profile: GenerationProfile = TEXT_PROFILE,
) -> GenerationResult:
    text = (source_text or "").strip()
    if len(text) < MIN_SOURCE_CHARS:
        raise InsufficientInputError(profile.insufficient_message)

    count = clamp_count(desired_count, profile.max_count)
    prompt = build_prompt(profile, text, difficulty, count)

    try:
        raw = await ai_client.chat_completion(prompt, temperature=0.7)
    except ProviderNotConfiguredError:
        raise
    except UpstreamProviderError:
        if not profile.allow_fallback:
            raise
        logger.warning("Quiz generation failed at provider, serving degraded fallback set")
        return degraded_generation(count)

    items = parse_model_output(raw)
    questions = normalize_questions(items, count, profile.max_options)
    if not questions:
        raise NoValidQuestionsError()
    logger.info("Generated %d/%d questions (%s path)", len(questions), count, profile.name)
    return GenerationResult(questions=questions)


async def generate_from_notes(user_id: str, note_ids: List[str], difficulty: str, question_count: Any) -> GenerationResult:
    if not note_ids:
        raise ValidationError("Please select at least one note.")
    selected = notes.find_owned_notes(user_id, note_ids)
    if not selected:
        raise ValidationError(
            "Selected notes not found for this user. Try refreshing notes and selecting again."
        )
    combined = "\n\n-----\n\n".join(
        f"{n.get('title') or ''}\n\n{n.get('content') or ''}" for n in selected
    )
    return await generate(combined, difficulty, question_count, NOTES_PROFILE)


async def generate_from_text(text: str, difficulty: str, num_questions: Any) -> GenerationResult:
    return await generate(text, difficulty, num_questions, TEXT_PROFILE)
