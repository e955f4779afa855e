"""
Conversations and their messages, with per-recipient delivery and read
receipts. Receipts are never recorded for a message's own sender.
"""
import logging
from typing import Dict, List

from database import parse_object_id
from errors import NotFound, PermissionDenied, ValidationError
from schemas import Conversation as ConversationSchema, Message as MessageSchema
from serializers import conversation_to_public, message_to_public, populate_users

logger = logging.getLogger(__name__)


def create_conversation(db, creator: dict, participant_ids: List[str]) -> dict:
    creator_id = str(creator["_id"])
    participants = list(dict.fromkeys(str(p) for p in participant_ids))
    if creator_id not in participants:
        participants.append(creator_id)
    if len(participants) < 2:
        raise ValidationError("Not enough participants")

    oids = [parse_object_id(p, "participant ID") for p in participants]
    if db["user"].count_documents({"_id": {"$in": oids}}) != len(oids):
        raise NotFound("User not found")

    doc = ConversationSchema(participants=participants).model_dump()
    doc["_id"] = db["conversation"].insert_one(doc).inserted_id
    logger.info(f"Conversation {doc['_id']} created by {creator_id} with {len(participants)} participants")
    return conversation_to_public(db, doc)


def list_conversations(db, user: dict) -> List[dict]:
    cursor = db["conversation"].find({"participants": str(user["_id"])}).sort([("created_at", -1), ("_id", -1)])
    return [conversation_to_public(db, c) for c in cursor]


def get_conversation(db, conversation_id: str, user_id: str) -> dict:
    """Load a conversation the user takes part in."""
    conversation = db["conversation"].find_one({"_id": parse_object_id(conversation_id, "conversation ID")})
    if not conversation:
        raise NotFound("Conversation not found")
    if user_id not in conversation["participants"]:
        raise PermissionDenied("Unauthorized")
    return conversation


def is_participant(db, conversation_id: str, user_id: str) -> bool:
    try:
        get_conversation(db, conversation_id, user_id)
    except (NotFound, PermissionDenied, ValidationError):
        return False
    return True


def list_messages(db, conversation_id: str, user: dict) -> List[dict]:
    conversation = get_conversation(db, conversation_id, str(user["_id"]))
    # _id breaks created_at ties in insertion order
    messages = list(
        db["message"].find({"conversation_id": str(conversation["_id"])}).sort([("created_at", 1), ("_id", 1)])
    )
    senders = {u["id"]: u for u in populate_users(db, list(dict.fromkeys(m["sender_id"] for m in messages)))}
    return [message_to_public(m, senders.get(m["sender_id"])) for m in messages]


def post_message(db, conversation_id: str, sender: dict, content: str) -> dict:
    if not content or not content.strip():
        raise ValidationError("Missing parameters")
    sender_id = str(sender["_id"])
    conversation = get_conversation(db, conversation_id, sender_id)

    doc = MessageSchema(conversation_id=str(conversation["_id"]), sender_id=sender_id, content=content).model_dump()
    doc["_id"] = db["message"].insert_one(doc).inserted_id
    logger.info(f"Message {doc['_id']} posted to {conversation['_id']} by {sender_id}")
    return message_to_public(doc, {"id": sender_id, "name": sender.get("name"), "profile_pic": sender.get("profile_pic")})


def mark_delivered(db, message_id: str, recipient_id: str) -> dict:
    """Idempotently record delivery; returns the updated message."""
    message = db["message"].find_one({"_id": parse_object_id(message_id, "message ID")})
    if not message:
        raise NotFound("Message not found")
    get_conversation(db, message["conversation_id"], recipient_id)

    if message["sender_id"] != recipient_id:
        db["message"].update_one({"_id": message["_id"]}, {"$addToSet": {"delivered_to": recipient_id}})
        message = db["message"].find_one({"_id": message["_id"]})
    return message_to_public(message)


def mark_read(db, message_ids: List[str], reader_id: str) -> Dict[str, List[str]]:
    """
    Add the reader to `read_by` of every listed message they did not send.

    Messages outside the reader's conversations are skipped. Returns the
    marked message ids grouped by conversation id.
    """
    oids = [parse_object_id(m, "message ID") for m in message_ids]
    messages = list(db["message"].find({"_id": {"$in": oids}, "sender_id": {"$ne": reader_id}}))

    conversation_ids = {m["conversation_id"] for m in messages}
    allowed = {
        str(c["_id"])
        for c in db["conversation"].find(
            {"_id": {"$in": [parse_object_id(c) for c in conversation_ids]}, "participants": reader_id}
        )
    }

    grouped: Dict[str, List[str]] = {}
    for m in messages:
        if m["conversation_id"] in allowed:
            grouped.setdefault(m["conversation_id"], []).append(str(m["_id"]))

    to_update = [parse_object_id(m) for ids in grouped.values() for m in ids]
    if to_update:
        db["message"].update_many({"_id": {"$in": to_update}}, {"$addToSet": {"read_by": reader_id}})
    return grouped
