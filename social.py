"""
Friend graph.

A pending request from A to B is A's id inside B's `friend_requests`.
Accepting it turns the pair into mutual `friends` entries; rejecting just
drops the pending entry so A may ask again.
"""
import logging
from typing import List

from pymongo.errors import PyMongoError

from database import parse_object_id
from errors import NotFound, ServerError, ValidationError
from serializers import populate_users
from users import get_user

logger = logging.getLogger(__name__)


def send_request(db, requester: dict, target_id: str) -> dict:
    requester_id = str(requester["_id"])
    if requester_id == target_id:
        raise ValidationError("Cannot send request to yourself")

    target = get_user(db, target_id)
    if requester_id in target.get("friend_requests", []):
        raise ValidationError("Friend request already sent")
    if target_id in requester.get("friends", []) or requester_id in target.get("friends", []):
        raise ValidationError("Already friends")

    res = db["user"].update_one(
        {"_id": target["_id"], "friend_requests": {"$ne": requester_id}, "friends": {"$ne": requester_id}},
        {"$addToSet": {"friend_requests": requester_id}},
    )
    if res.modified_count == 0:
        raise ValidationError("Friend request already sent")

    logger.info(f"Friend request {requester_id} -> {target_id}")
    return {"message": "Friend request sent successfully"}


def accept_request(db, user: dict, requester_id: str) -> dict:
    """Make the pair mutual friends, undoing the first write if the second fails."""
    user_id = str(user["_id"])
    requester_oid = parse_object_id(requester_id, "User ID")
    if db["user"].find_one({"_id": requester_oid}, {"_id": 1}) is None:
        raise NotFound("User not found")

    res = db["user"].update_one(
        {"_id": user["_id"], "friend_requests": requester_id},
        {"$pull": {"friend_requests": requester_id}, "$addToSet": {"friends": requester_id}},
    )
    if res.modified_count == 0:
        raise ValidationError("No friend request from this user")

    try:
        res = db["user"].update_one(
            {"_id": requester_oid},
            {"$addToSet": {"friends": user_id}, "$pull": {"friend_requests": user_id}},
        )
        if res.matched_count == 0:
            raise NotFound("User not found")
    except (PyMongoError, NotFound) as exc:
        logger.error(f"Friend accept {requester_id} -> {user_id} failed, rolling back: {exc}")
        db["user"].update_one(
            {"_id": user["_id"]},
            {"$pull": {"friends": requester_id}, "$addToSet": {"friend_requests": requester_id}},
        )
        if isinstance(exc, NotFound):
            raise
        raise ServerError("Server error")

    logger.info(f"Friend request accepted {requester_id} -> {user_id}")
    return {"message": "Friend request accepted"}


def reject_request(db, user: dict, requester_id: str) -> dict:
    parse_object_id(requester_id, "User ID")
    res = db["user"].update_one(
        {"_id": user["_id"], "friend_requests": requester_id},
        {"$pull": {"friend_requests": requester_id}},
    )
    if res.modified_count == 0:
        raise ValidationError("No friend request from this user")

    logger.info(f"Friend request rejected {requester_id} -> {user['_id']}")
    return {"message": "Friend request rejected"}


def get_friends(db, user: dict) -> List[dict]:
    return populate_users(db, user.get("friends", []))


def get_friend_requests(db, user: dict) -> List[dict]:
    return populate_users(db, user.get("friend_requests", []))


def friend_ids(db, user_id: str) -> List[str]:
    user = db["user"].find_one({"_id": parse_object_id(user_id, "User ID")}, {"friends": 1})
    return list(user.get("friends", [])) if user else []
