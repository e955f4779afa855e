"""
Shaping of MongoDB documents into JSON-ready dicts.

Reference fields hold id strings; `populate_users` swaps them for small user
summaries the way the client expects them.
"""
from typing import Iterable, List, Optional

from bson import ObjectId

SUMMARY_FIELDS = ("name", "profile_pic")
SEARCH_FIELDS = ("name", "profile_pic", "class_name", "section", "school", "interests")


def to_public(doc: Optional[dict]) -> Optional[dict]:
    if not doc:
        return doc
    doc = {**doc}
    doc["id"] = str(doc.get("_id")) if doc.get("_id") else None
    doc.pop("_id", None)
    return doc


def user_to_public(u: Optional[dict]) -> Optional[dict]:
    u = to_public(u)
    if u:
        u.pop("password", None)
    return u


def user_summary(u: dict, fields: Iterable[str] = SUMMARY_FIELDS) -> dict:
    summary = {"id": str(u["_id"])}
    for f in fields:
        summary[f] = u.get(f)
    return summary


def populate_users(db, ids: Iterable[str], fields: Iterable[str] = SUMMARY_FIELDS) -> List[dict]:
    """Resolve user id strings to summaries, keeping order and dropping dangling ids."""
    ids = [i for i in ids if ObjectId.is_valid(i)]
    if not ids:
        return []
    projection = {f: 1 for f in fields}
    found = {str(u["_id"]): u for u in db["user"].find({"_id": {"$in": [ObjectId(i) for i in ids]}}, projection)}
    return [user_summary(found[i], fields) for i in ids if i in found]


def conversation_to_public(db, conversation: dict) -> dict:
    out = to_public(conversation)
    out["participants"] = populate_users(db, conversation.get("participants", []))
    return out


def message_to_public(message: dict, sender: Optional[dict] = None) -> dict:
    out = to_public(message)
    if sender is not None:
        out["sender"] = sender
    return out


def memory_to_public(db, memory: dict, full: bool = True) -> dict:
    """Populate a memory; `full` also resolves likes and comment authors."""
    out = to_public(memory)
    authors = populate_users(db, [memory["author"]])
    out["author"] = authors[0] if authors else None
    out["tagged_friends"] = populate_users(db, memory.get("tagged_friends", []))
    if full:
        out["likes"] = populate_users(db, memory.get("likes", []))
        out["comments"] = comments_to_public(db, memory.get("comments", []))
    return out


def comments_to_public(db, comments: List[dict]) -> List[dict]:
    authors = {u["id"]: u for u in populate_users(db, list(dict.fromkeys(c["author"] for c in comments)))}
    return [{**c, "author": authors.get(c["author"])} for c in comments]
