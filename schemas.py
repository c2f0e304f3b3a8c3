from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

# Smart Study Schemas

Difficulty = Literal["easy", "medium", "hard"]

UNANSWERED = -1


def coerce_option_index(value: Any, option_count: int) -> int:
    """Return value as an option index, or 0 when it is not a usable one."""
    if isinstance(value, bool):
        return 0
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if not isinstance(value, int):
        return 0
    if value < 0 or value >= option_count:
        return 0
    return value


class ApiModel(BaseModel):
    """Wire models: camelCase on the wire, snake_case in Python."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_api(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


# -----------------------
# Stored documents
# -----------------------

class User(BaseModel):
    email: EmailStr = Field(..., description="Unique email for login, stored lower-cased")
    name: str = Field(..., description="Full name")
    password_hash: str = Field(..., description="Hashed password")


class Note(BaseModel):
    user_id: str = Field(..., description="Owner user id")
    title: str = Field("", description="Note title")
    content: str = Field(..., description="Plain text content")


class Question(ApiModel):
    question: str
    options: List[str] = Field(..., min_length=2)
    correct_option_index: int = 0

    @field_validator("options", mode="before")
    @classmethod
    def _options_as_strings(cls, value):
        if isinstance(value, list):
            return [str(o) for o in value]
        return value

    @field_validator("correct_option_index", mode="before")
    @classmethod
    def _index_is_integer(cls, value):
        # bounds are checked once options are known
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return 0
        if isinstance(value, float) and not value.is_integer():
            return 0
        return int(value)

    @model_validator(mode="after")
    def _index_in_bounds(self):
        self.correct_option_index = coerce_option_index(self.correct_option_index, len(self.options))
        return self


class PerQuestionResult(ApiModel):
    question: str
    options: List[str]
    correct_option_index: int
    user_option_index: int = UNANSWERED
    is_correct: bool
    ai_explanation: Optional[str] = None


class TestRecord(ApiModel):
    id: str
    user_id: str
    difficulty: str = "easy"
    total_questions: int = 0
    correct_count: int = 0
    wrong_count: int = 0
    score: int = 0
    accuracy: int = 0
    xp_earned: int = 0
    time_used_seconds: Optional[int] = None
    note_ids: List[str] = Field(default_factory=list)
    per_question_results: List[PerQuestionResult] = Field(default_factory=list)
    created_at: Optional[datetime] = None

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "TestRecord":
        data = {k: v for k, v in doc.items() if k != "_id"}
        data["note_ids"] = [str(n) for n in doc.get("note_ids") or []]
        return cls(id=str(doc["_id"]), **data)


class NoteOut(ApiModel):
    id: str
    user_id: str
    title: str = ""
    content: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "NoteOut":
        return cls(
            id=str(doc["_id"]),
            user_id=str(doc.get("user_id", "")),
            title=doc.get("title") or "",
            content=doc.get("content") or "",
            created_at=doc.get("created_at"),
            updated_at=doc.get("updated_at"),
        )


# -----------------------
# Requests
# -----------------------

class RegisterIn(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=1)

    @field_validator("name", mode="before")
    @classmethod
    def _strip_name(cls, value):
        # min_length applies to the trimmed name
        return value.strip() if isinstance(value, str) else value


class LoginIn(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class NoteIn(ApiModel):
    title: str = ""
    content: str


class MergeNotesIn(ApiModel):
    note_ids: List[str]


class GenerateFromNotesIn(ApiModel):
    note_ids: List[str] = Field(default_factory=list)
    difficulty: Difficulty = "easy"
    question_count: Any = Field(
        default=5,
        validation_alias=AliasChoices("questionCount", "numQuestions", "question_count"),
    )


class GenerateFromTextIn(ApiModel):
    text: str = ""
    difficulty: Difficulty = "easy"
    num_questions: Any = Field(
        default=5,
        validation_alias=AliasChoices("numQuestions", "questionCount", "num_questions"),
    )


class EvaluateTestIn(ApiModel):
    questions: List[Question] = Field(default_factory=list)
    user_answers: List[Any] = Field(default_factory=list)
    difficulty: Difficulty = "easy"
    time_used_seconds: Optional[int] = None
    selected_note_ids: List[str] = Field(default_factory=list)


class AskAiIn(ApiModel):
    question: str = ""
