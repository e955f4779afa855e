"""
Accounts and profiles: signup, login, profile edits, search,
recommendations and the online flag mirrored from the realtime channel.
"""
import logging
import re
from typing import List, Optional

from pymongo.errors import DuplicateKeyError

from database import parse_object_id
from errors import NotFound, ValidationError
from schemas import User as UserSchema
from security import create_access_token, hash_password, verify_password
from serializers import SEARCH_FIELDS, memory_to_public, populate_users, user_summary, user_to_public

logger = logging.getLogger(__name__)

SETUP_FIELDS = ("profile_pic", "class_name", "section", "interests", "instagram_username")
EDITABLE_FIELDS = SETUP_FIELDS + ("bio", "cover_photo", "relationship_status")

# (field, weight) buckets for recommendations, strongest first
RECOMMENDATION_BUCKETS = (("class_name", 3), ("school", 2), ("interests", 1))


def get_user_by_email(db, email: str) -> Optional[dict]:
    return db["user"].find_one({"email": email})


def get_user(db, user_id: str) -> dict:
    user = db["user"].find_one({"_id": parse_object_id(user_id, "User ID")})
    if not user:
        raise NotFound("User not found")
    return user


def signup(db, name: str, email: str, password: str, school: str) -> dict:
    if not (name and email and password and school):
        raise ValidationError("All fields are required")
    if get_user_by_email(db, email):
        raise ValidationError("User already exists")

    user_doc = UserSchema(name=name, email=email, password=hash_password(password), school=school).model_dump()
    try:
        inserted_id = db["user"].insert_one(user_doc).inserted_id
    except DuplicateKeyError:
        raise ValidationError("User already exists")

    logger.info(f"User signed up: {inserted_id}")
    return {"message": "Signup successful", "token": create_access_token(str(inserted_id)), "user_id": str(inserted_id)}


def login(db, email: str, password: str) -> dict:
    user = get_user_by_email(db, email)
    if not user or not verify_password(password, user.get("password", "")):
        raise ValidationError("Invalid credentials")

    logger.info(f"User logged in: {user['_id']}")
    public = user_to_public(user)
    for key in ("friends", "friend_requests"):
        public.pop(key, None)
    return {"token": create_access_token(str(user["_id"])), "user": public}


def get_profile(db, user: dict) -> dict:
    user_id = str(user["_id"])
    created = list(db["memory"].find({"author": user_id}).sort("created_at", -1))
    tagged = list(db["memory"].find({"tagged_friends": user_id}).sort("created_at", -1))
    return {
        **user_to_public(user),
        "memory_count": len(created),
        "created_memories": [memory_to_public(db, m, full=False) for m in created],
        "tagged_memories": [memory_to_public(db, m, full=False) for m in tagged],
    }


def setup_profile(db, user: dict, fields: dict) -> dict:
    """First-run profile setup; every setup field is overwritten."""
    update = {k: fields.get(k) for k in SETUP_FIELDS}
    if update["interests"] is None:
        update["interests"] = []
    db["user"].update_one({"_id": user["_id"]}, {"$set": update})
    return user_to_public(db["user"].find_one({"_id": user["_id"]}))


def edit_profile(db, user: dict, fields: dict) -> dict:
    """Partial edit; only the supplied fields change."""
    update = {k: v for k, v in fields.items() if k in EDITABLE_FIELDS}
    if update:
        db["user"].update_one({"_id": user["_id"]}, {"$set": update})
    return user_to_public(db["user"].find_one({"_id": user["_id"]}))


def other_profile(db, user_id: str) -> dict:
    user = get_user(db, user_id)
    public = user_to_public(user)
    public.pop("friend_requests", None)
    public["friends"] = populate_users(db, user.get("friends", []))
    return public


def user_details(db, user_id: str) -> dict:
    """Plain public profile; friends stay as ids."""
    return user_to_public(get_user(db, user_id))


def _icontains(value: str) -> dict:
    return {"$regex": re.escape(value), "$options": "i"}


def search_users(
    db,
    user: dict,
    query: Optional[str] = None,
    school: Optional[str] = None,
    class_name: Optional[str] = None,
    section: Optional[str] = None,
    interests: Optional[str] = None,
) -> List[dict]:
    filters = {"_id": {"$ne": user["_id"]}}
    if query:
        filters["$or"] = [{f: _icontains(query)} for f in ("name", "school", "class_name", "section")]
    if school:
        filters["school"] = _icontains(school)
    if class_name:
        filters["class_name"] = _icontains(class_name)
    if section:
        filters["section"] = _icontains(section)
    if interests:
        wanted = [i.strip() for i in interests.split(",") if i.strip()]
        if wanted:
            filters["interests"] = {"$in": wanted}

    projection = {f: 1 for f in SEARCH_FIELDS}
    return [user_summary(u, SEARCH_FIELDS) for u in db["user"].find(filters, projection)]


def recommend_users(db, user: dict) -> List[dict]:
    """Weighted union of same class, same school and shared interests."""
    projection = {f: 1 for f in SEARCH_FIELDS}
    seen = set()
    recommendations = []
    for field, weight in RECOMMENDATION_BUCKETS:
        value = user.get(field)
        if not value:
            continue
        match = {"$in": value} if isinstance(value, list) else value
        for u in db["user"].find({field: match, "_id": {"$ne": user["_id"]}}, projection):
            key = str(u["_id"])
            if key in seen:
                continue
            seen.add(key)
            recommendations.append({**user_summary(u, SEARCH_FIELDS), "weight": weight})
    recommendations.sort(key=lambda r: r["weight"], reverse=True)
    return recommendations


def set_online(db, user_id: str, online: bool) -> None:
    db["user"].update_one({"_id": parse_object_id(user_id, "User ID")}, {"$set": {"online": online}})


def online_friends(db, user: dict) -> List[dict]:
    friends = populate_users(db, user.get("friends", []), fields=("name", "profile_pic", "online"))
    return [f for f in friends if f["online"]]
