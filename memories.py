"""
Memory board: tagged photo posts with timeline events, likes and comments.

Only the author or a tagged friend may add photos or timeline events; any
signed-in user may like or comment.
"""
import logging
from datetime import date as date_type, datetime, time as time_type
from typing import Iterable, List, Union

from bson import ObjectId

from config import FEED_PAGE_SIZE
from database import parse_object_id
from errors import NotFound, PermissionDenied, ValidationError
from schemas import Comment as CommentSchema, Memory as MemorySchema, TimelineEvent as TimelineEventSchema
from serializers import comments_to_public, memory_to_public, populate_users
from social import friend_ids

logger = logging.getLogger(__name__)

NEWEST_FIRST = [("created_at", -1), ("_id", -1)]


def _split_ids(value: Union[str, Iterable[str], None]) -> List[str]:
    if not value:
        return []
    if isinstance(value, str):
        value = value.split(",")
    return [v.strip() for v in value if v and v.strip()]


def _tagged_friend_ids(db, author_id: str, tagged: Union[str, Iterable[str], None]) -> List[str]:
    """Keep well-formed ids of existing users other than the author."""
    candidates = [i for i in dict.fromkeys(_split_ids(tagged)) if ObjectId.is_valid(i) and i != author_id]
    if not candidates:
        return []
    existing = {str(u["_id"]) for u in db["user"].find({"_id": {"$in": [ObjectId(i) for i in candidates]}}, {"_id": 1})}
    return [i for i in candidates if i in existing]


def get_memory_doc(db, memory_id: str) -> dict:
    memory = db["memory"].find_one({"_id": parse_object_id(memory_id, "memory ID")})
    if not memory:
        raise NotFound("Memory not found")
    return memory


def _require_editor(memory: dict, user_id: str, action: str) -> None:
    if memory["author"] != user_id and user_id not in memory.get("tagged_friends", []):
        raise PermissionDenied(f"Unauthorized to add {action}")


def _timeline_event(date, time: str, event_text: str) -> dict:
    if not date or not time or not event_text:
        raise ValidationError("All timeline event fields are required")
    # BSON has no plain date type
    if isinstance(date, date_type) and not isinstance(date, datetime):
        date = datetime.combine(date, time_type.min)
    return TimelineEventSchema(date=date, time=time, event_text=event_text).model_dump()


def upload_memory(db, author: dict, title: str, tagged_friends=None, timeline_events=None) -> dict:
    """Create a memory, optionally seeded with timeline events (dicts of date, time, event_text)."""
    if not title or not title.strip():
        raise ValidationError("Title is required")
    author_id = str(author["_id"])
    events = [_timeline_event(e.get("date"), e.get("time"), e.get("event_text")) for e in timeline_events or []]
    doc = MemorySchema(
        title=title,
        author=author_id,
        tagged_friends=_tagged_friend_ids(db, author_id, tagged_friends),
        timeline_events=events,
    ).model_dump()
    doc["_id"] = db["memory"].insert_one(doc).inserted_id
    logger.info(f"Memory {doc['_id']} uploaded by {author_id}")
    return memory_to_public(db, doc)


def add_photo(db, memory_id: str, user: dict, photo_url: str) -> dict:
    if not photo_url:
        raise ValidationError("Photo URL is required")
    memory = get_memory_doc(db, memory_id)
    _require_editor(memory, str(user["_id"]), "photos")
    db["memory"].update_one({"_id": memory["_id"]}, {"$push": {"photos": photo_url}})
    return memory_to_public(db, get_memory_doc(db, memory_id))


def add_timeline_event(db, memory_id: str, user: dict, date, time: str, event_text: str) -> dict:
    event = _timeline_event(date, time, event_text)
    memory = get_memory_doc(db, memory_id)
    _require_editor(memory, str(user["_id"]), "timeline events")
    db["memory"].update_one({"_id": memory["_id"]}, {"$push": {"timeline_events": event}})
    return memory_to_public(db, get_memory_doc(db, memory_id))


def toggle_like(db, memory_id: str, user: dict) -> List[dict]:
    """Like if not yet liked, otherwise unlike. Returns the populated likers."""
    memory = get_memory_doc(db, memory_id)
    user_id = str(user["_id"])
    if user_id in memory.get("likes", []):
        db["memory"].update_one({"_id": memory["_id"]}, {"$pull": {"likes": user_id}})
    else:
        db["memory"].update_one({"_id": memory["_id"]}, {"$addToSet": {"likes": user_id}})
    return populate_users(db, get_memory_doc(db, memory_id).get("likes", []))


def add_comment(db, memory_id: str, user: dict, content: str) -> List[dict]:
    if not content or not content.strip():
        raise ValidationError("Comment content is required")
    memory = get_memory_doc(db, memory_id)
    comment = CommentSchema(author=str(user["_id"]), content=content).model_dump()
    db["memory"].update_one({"_id": memory["_id"]}, {"$push": {"comments": comment}})
    return comments_to_public(db, get_memory_doc(db, memory_id).get("comments", []))


def get_memory(db, memory_id: str) -> dict:
    return memory_to_public(db, get_memory_doc(db, memory_id))


def user_memories(db, user_id: str) -> List[dict]:
    parse_object_id(user_id, "User ID")
    cursor = db["memory"].find({"$or": [{"author": user_id}, {"tagged_friends": user_id}]}).sort(NEWEST_FIRST)
    return [memory_to_public(db, m, full=False) for m in cursor]


def friends_memories(db, user: dict) -> List[dict]:
    friends = friend_ids(db, str(user["_id"]))
    if not friends:
        return []
    cursor = db["memory"].find(
        {"$or": [{"author": {"$in": friends}}, {"tagged_friends": {"$in": friends}}]}
    ).sort(NEWEST_FIRST)
    return [memory_to_public(db, m, full=False) for m in cursor]


def feed(db, user: dict, offset: int = 0, limit: int = FEED_PAGE_SIZE) -> List[dict]:
    """
    One window of the memories feed.

    Own memories, then friends' memories, then everyone else's are
    concatenated and re-sorted newest first. The sort is stable, so bucket
    order only matters for memories created at the same instant.
    """
    if offset < 0:
        raise ValidationError("Offset must not be negative")
    user_id = str(user["_id"])
    friends = friend_ids(db, user_id)

    own = list(db["memory"].find({"author": user_id}).sort(NEWEST_FIRST))
    of_friends = list(db["memory"].find({"author": {"$in": friends}}).sort(NEWEST_FIRST)) if friends else []
    others = list(db["memory"].find({"author": {"$nin": friends + [user_id]}}).sort(NEWEST_FIRST))

    ordered = own + of_friends + others
    ordered.sort(key=lambda m: m["created_at"], reverse=True)
    return [memory_to_public(db, m) for m in ordered[offset:offset + limit]]
