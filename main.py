import logging
import os
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, File, Form, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

import ai_client
import analytics
import database
import grading
import notes
import ocr
import quiz_generator
from auth import get_current_user, login_user, register_user
from config import get_settings
from errors import AppError, ValidationError
from schemas import (
    AskAiIn,
    EvaluateTestIn,
    GenerateFromNotesIn,
    GenerateFromTextIn,
    LoginIn,
    MergeNotesIn,
    NoteIn,
    NoteOut,
    RegisterIn,
    TestRecord,
)

settings = get_settings()
logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        if database.init_database() is not None:
            database.ensure_indexes()
    except Exception as e:
        logger.error("Database setup failed at startup: %s", e)
    yield
    await ai_client.close_ai_client()
    database.close_database()


app = FastAPI(title=settings.project_name, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# -----------------------
# Error envelope
# -----------------------

def fail(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "message": message})


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return fail(exc.status_code, exc.message)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = "Invalid request body"
    if errors:
        first = errors[0]
        if first.get("type") == "json_invalid":
            return fail(400, "Invalid JSON body")
        where = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        message = f"{where}: {first.get('msg')}" if where else str(first.get("msg"))
    return fail(400, message)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return fail(exc.status_code, str(exc.detail))


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return fail(500, "Internal server error")


def ok(**payload: Any) -> Dict[str, Any]:
    return {"success": True, **payload}


# -----------------------
# Routes
# -----------------------
@app.get("/")
def read_root():
    return {"message": "Smart Study backend running"}


@app.get("/api/health")
def health():
    response = {
        "backend": "running",
        "database": "not configured",
        "ai_provider": "configured" if ai_client.is_ai_configured() else "not configured",
        "ocr_provider": "configured" if get_settings().ocr_space_api_key else "not configured",
        "collections": [],
    }
    try:
        handle = database.init_database()
        if handle is not None:
            response["collections"] = handle.list_collection_names()[:10]
            response["database"] = "connected"
    except Exception as e:
        response["database"] = f"error: {str(e)[:50]}"
    return response


# Auth

@app.post("/api/auth/register", status_code=201)
def register(data: RegisterIn):
    token = register_user(data)
    return ok(message="Registration successful", token=token)


@app.post("/api/auth/login")
def login(data: LoginIn):
    token = login_user(data)
    return ok(message="Login success", token=token)


# Notes

@app.get("/api/notes")
def list_notes(current_user: Dict[str, Any] = Depends(get_current_user)):
    docs = notes.list_notes(current_user["_id"])
    return ok(notes=[NoteOut.from_document(d).to_api() for d in docs])


@app.post("/api/notes", status_code=201)
def create_note(data: NoteIn, current_user: Dict[str, Any] = Depends(get_current_user)):
    note = notes.create_note(current_user["_id"], data.title, data.content)
    return ok(note=NoteOut.from_document(note).to_api())


@app.post("/api/notes/merge", status_code=201)
def merge_notes(data: MergeNotesIn, current_user: Dict[str, Any] = Depends(get_current_user)):
    note = notes.merge_notes(current_user["_id"], data.note_ids)
    return ok(note=NoteOut.from_document(note).to_api())


@app.get("/api/notes/{note_id}")
def get_note(note_id: str, current_user: Dict[str, Any] = Depends(get_current_user)):
    note = notes.get_note(current_user["_id"], note_id)
    return ok(note=NoteOut.from_document(note).to_api())


@app.put("/api/notes/{note_id}")
def update_note(note_id: str, data: NoteIn, current_user: Dict[str, Any] = Depends(get_current_user)):
    note = notes.update_note(current_user["_id"], note_id, data.title, data.content)
    return ok(note=NoteOut.from_document(note).to_api())


@app.delete("/api/notes/{note_id}")
def delete_note(note_id: str, current_user: Dict[str, Any] = Depends(get_current_user)):
    notes.delete_note(current_user["_id"], note_id)
    return ok(message="Note deleted")


# OCR

async def _read_upload(file: Optional[UploadFile]) -> bytes:
    if file is None:
        raise ValidationError("No PDF file received")
    limits = get_settings()
    content = await file.read()
    if len(content) > limits.max_upload_bytes:
        raise ValidationError(f"File too large (max {limits.max_upload_mb} MB)")
    return content


@app.post("/api/upload-pdf-ocr")
async def upload_pdf_ocr(
    title: str = Form(""),
    file: Optional[UploadFile] = File(None),
    current_user: Dict[str, Any] = Depends(get_current_user),
):
    content = await _read_upload(file)
    result = await ocr.import_pdf_as_note(current_user["_id"], file.filename or "upload.pdf", content, title)
    result["note"] = NoteOut.from_document(result["note"]).to_api()
    return ok(**result)


@app.post("/api/upload-pdf-ocr-test")
async def upload_pdf_ocr_test(
    title: str = Form(""),
    file: Optional[UploadFile] = File(None),
    current_user: Dict[str, Any] = Depends(get_current_user),
):
    content = await _read_upload(file)
    result = await ocr.extract_pdf_for_test(file.filename or "Uploaded PDF", content, title)
    return ok(**result)


# Quiz generation & grading

@app.post("/api/generate-test")
async def generate_test(data: GenerateFromNotesIn, current_user: Dict[str, Any] = Depends(get_current_user)):
    result = await quiz_generator.generate_from_notes(
        current_user["_id"], data.note_ids, data.difficulty, data.question_count
    )
    return ok(
        difficulty=data.difficulty,
        questionCount=quiz_generator.clamp_count(data.question_count, quiz_generator.NOTES_PROFILE.max_count),
        questions=[q.to_api() for q in result.questions],
        degraded=result.degraded,
    )


@app.post("/api/generate-test-from-text")
async def generate_test_from_text(data: GenerateFromTextIn, current_user: Dict[str, Any] = Depends(get_current_user)):
    result = await quiz_generator.generate_from_text(data.text, data.difficulty, data.num_questions)
    return ok(
        totalQuestions=len(result.questions),
        questions=[q.to_api() for q in result.questions],
    )


@app.post("/api/evaluate-test", status_code=201)
async def evaluate_test(data: EvaluateTestIn, current_user: Dict[str, Any] = Depends(get_current_user)):
    result = await grading.evaluate_and_store(current_user["_id"], data)
    return ok(**result)


# History & analytics

@app.get("/api/tests")
def tests_summary(current_user: Dict[str, Any] = Depends(get_current_user)):
    return ok(**analytics.summarize(analytics.load_tests(current_user["_id"])))


@app.get("/api/tests/{test_id}")
def get_test(test_id: str, current_user: Dict[str, Any] = Depends(get_current_user)):
    test = analytics.load_test(current_user["_id"], test_id)
    return ok(test=TestRecord.from_document(test).to_api())


@app.get("/api/test-history")
def test_history(current_user: Dict[str, Any] = Depends(get_current_user)):
    tests = analytics.load_tests(current_user["_id"])
    return ok(tests=[TestRecord.from_document(t).to_api() for t in tests])


@app.get("/api/streak")
def streak(current_user: Dict[str, Any] = Depends(get_current_user)):
    tests = analytics.load_tests(current_user["_id"])
    return ok(**analytics.compute_streak(tests, database.utcnow()))


# Ask AI

ASK_AI_SYSTEM_PROMPT = "You are a helpful study assistant. Explain concepts simply and clearly for students."


@app.post("/api/ask-ai")
async def ask_ai(data: AskAiIn, current_user: Dict[str, Any] = Depends(get_current_user)):
    question = data.question.strip()
    if not question:
        raise ValidationError("Question is required")
    answer = await ai_client.chat_completion(question, system_prompt=ASK_AI_SYSTEM_PROMPT, temperature=0.4)
    return ok(answer=answer or "I could not generate an answer. Please try again.")


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
