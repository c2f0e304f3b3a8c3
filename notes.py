"""
Owner-scoped note storage. Every query filters on ``user_id``; a note that
belongs to someone else is indistinguishable from one that does not exist.
"""
import logging
from typing import Any, Dict, List

from pymongo import DESCENDING, ReturnDocument

from database import collection, create_document, get_documents, to_object_id, utcnow
from errors import NotFoundError, ValidationError
from schemas import Note

logger = logging.getLogger(__name__)

NOTE_NOT_FOUND = "Note not found for this user"


def _owned_filter(user_id: str, note_id: str) -> Dict[str, Any]:
    oid = to_object_id(note_id)
    if oid is None:
        raise NotFoundError(NOTE_NOT_FOUND)
    return {"_id": oid, "user_id": user_id}


def _clean(title: str, content: str):
    content = content or ""
    if not content.strip():
        raise ValidationError("Content is required")
    return (title or "").strip(), content


def list_notes(user_id: str) -> List[Dict[str, Any]]:
    return get_documents("note", {"user_id": user_id}, sort=[("created_at", DESCENDING)])


def get_note(user_id: str, note_id: str) -> Dict[str, Any]:
    note = collection("note").find_one(_owned_filter(user_id, note_id))
    if not note:
        raise NotFoundError(NOTE_NOT_FOUND)
    return note


def create_note(user_id: str, title: str, content: str) -> Dict[str, Any]:
    title, content = _clean(title, content)
    note_id = create_document("note", Note(user_id=user_id, title=title, content=content))
    return get_note(user_id, note_id)


def update_note(user_id: str, note_id: str, title: str, content: str) -> Dict[str, Any]:
    title, content = _clean(title, content)
    note = collection("note").find_one_and_update(
        _owned_filter(user_id, note_id),
        {"$set": {"title": title, "content": content, "updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if not note:
        raise NotFoundError(NOTE_NOT_FOUND)
    return note


def delete_note(user_id: str, note_id: str) -> None:
    result = collection("note").delete_one(_owned_filter(user_id, note_id))
    if not result.deleted_count:
        raise NotFoundError(NOTE_NOT_FOUND)
    logger.info("Deleted note %s", note_id)


def find_owned_notes(user_id: str, note_ids: List[str]) -> List[Dict[str, Any]]:
    """Return the caller's notes among note_ids, in request order; unknown ids are skipped."""
    oids = [oid for oid in (to_object_id(n) for n in note_ids) if oid is not None]
    if not oids:
        return []
    found = {
        doc["_id"]: doc
        for doc in get_documents("note", {"_id": {"$in": oids}, "user_id": user_id})
    }
    ordered = []
    for oid in oids:
        if oid in found:
            ordered.append(found.pop(oid))
    return ordered


def merge_notes(user_id: str, note_ids: List[str]) -> Dict[str, Any]:
    unique_ids = list(dict.fromkeys(note_ids or []))
    if len(unique_ids) < 2:
        raise ValidationError("Select at least 2 notes to merge.")
    sources = find_owned_notes(user_id, unique_ids)
    if len(sources) != len(unique_ids):
        raise NotFoundError("One or more notes were not found for this user")

    title = "Merged: " + " + ".join(n.get("title") or "Untitled" for n in sources[:3])
    content = "\n\n---\n\n".join(
        f"### Part {idx}: {n.get('title') or 'Untitled note'}\n\n{n.get('content') or ''}"
        for idx, n in enumerate(sources, start=1)
    )
    return create_note(user_id, title, content)
