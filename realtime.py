"""
Realtime channel: presence, conversation topics and event relays.

PresenceRegistry and TopicRegistry hold all per-process connection state
behind locks. RealtimeGateway owns both and is the only place events are
fanned out; the Socket.IO server at the bottom of this module just forwards
its events into the gateway.
"""
import logging
import threading
from typing import Awaitable, Callable, Dict, FrozenSet, Optional, Set
from urllib.parse import parse_qs

import socketio
from fastapi.encoders import jsonable_encoder

import conversations
import users
from config import CORS_ORIGINS
from database import get_db
from errors import AppError, Unauthorized, ValidationError
from security import decode_access_token

logger = logging.getLogger(__name__)

Emitter = Callable[..., Awaitable[None]]


class PresenceRegistry:
    """
    Map of user id to the connection holding that user's slot.

    One slot per user: the latest connection wins. Every connection still
    remembers its user so that a displaced one can be told apart on
    disconnect.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._by_user: Dict[str, str] = {}
        self._by_sid: Dict[str, str] = {}

    def register(self, user_id: str, sid: str) -> Optional[str]:
        """Claim the slot; returns the displaced sid, if any."""
        with self._lock:
            previous = self._by_user.get(user_id)
            self._by_user[user_id] = sid
            self._by_sid[sid] = user_id
        return previous if previous != sid else None

    def unregister(self, sid: str) -> Optional[str]:
        """Forget a connection; returns the user id only if this sid held the slot."""
        with self._lock:
            user_id = self._by_sid.pop(sid, None)
            if user_id is not None and self._by_user.get(user_id) == sid:
                del self._by_user[user_id]
                return user_id
        return None

    def user_for(self, sid: str) -> Optional[str]:
        with self._lock:
            return self._by_sid.get(sid)

    def lookup(self, user_id: str) -> Optional[str]:
        with self._lock:
            return self._by_user.get(user_id)

    def is_online(self, user_id: str) -> bool:
        return self.lookup(user_id) is not None


class TopicRegistry:
    """Conversation id -> subscribed sids."""

    def __init__(self):
        self._lock = threading.Lock()
        self._topics: Dict[str, Set[str]] = {}

    def join(self, topic: str, sid: str) -> None:
        with self._lock:
            self._topics.setdefault(topic, set()).add(sid)

    def leave(self, topic: str, sid: str) -> None:
        with self._lock:
            subscribers = self._topics.get(topic)
            if subscribers is None:
                return
            subscribers.discard(sid)
            if not subscribers:
                del self._topics[topic]

    def drop(self, sid: str) -> None:
        """Remove a connection from every topic."""
        with self._lock:
            for topic in [t for t, subs in self._topics.items() if sid in subs]:
                self._topics[topic].discard(sid)
                if not self._topics[topic]:
                    del self._topics[topic]

    def subscribers(self, topic: str) -> FrozenSet[str]:
        with self._lock:
            return frozenset(self._topics.get(topic, ()))


class RealtimeGateway:
    def __init__(self, emit: Optional[Emitter] = None):
        self.presence = PresenceRegistry()
        self.topics = TopicRegistry()
        self._emit = emit

    def bind(self, emit: Emitter) -> None:
        self._emit = emit

    async def publish(self, topic: str, event: str, payload: dict, skip_sid: Optional[str] = None) -> None:
        if self._emit is None:
            logger.warning(f"No emitter bound, dropping {event} for {topic}")
            return
        # Socket.IO serializes with plain json, so datetimes and ObjectIds go out as strings
        payload = jsonable_encoder(payload)
        for sid in self.topics.subscribers(topic):
            if sid == skip_sid:
                continue
            await self._emit(event, payload, to=sid)

    def connect(self, db, sid: str, user_id: Optional[str]) -> None:
        if not user_id:
            logger.info(f"Anonymous connection {sid}")
            return
        users.set_online(db, user_id, True)
        displaced = self.presence.register(user_id, sid)
        if displaced:
            logger.info(f"User {user_id} moved from {displaced} to {sid}")
        logger.info(f"User {user_id} connected ({sid})")

    def disconnect(self, db, sid: str) -> None:
        self.topics.drop(sid)
        user_id = self.presence.unregister(sid)
        if user_id:
            users.set_online(db, user_id, False)
            logger.info(f"User {user_id} disconnected ({sid})")
        else:
            logger.info(f"Connection {sid} closed")

    def join(self, db, sid: str, conversation_id: str) -> bool:
        user_id = self.presence.user_for(sid)
        if not user_id or not conversations.is_participant(db, conversation_id, user_id):
            logger.warning(f"Connection {sid} may not join {conversation_id}")
            return False
        self.topics.join(conversation_id, sid)
        logger.info(f"User {user_id} joined conversation {conversation_id}")
        return True

    def leave(self, sid: str, conversation_id: str) -> None:
        self.topics.leave(conversation_id, sid)
        logger.info(f"Connection {sid} left conversation {conversation_id}")

    async def new_message(self, message: dict) -> None:
        # Sender's own connection gets it too
        await self.publish(message["conversation_id"], "new_message", message)

    async def read_receipts(self, grouped: Dict[str, list], reader_id: str, skip_sid: Optional[str] = None) -> None:
        for conversation_id, message_ids in grouped.items():
            await self.publish(
                conversation_id,
                "message_read_update",
                {"conversation_id": conversation_id, "message_ids": message_ids, "read_by": [reader_id]},
                skip_sid=skip_sid,
            )

    async def delivery_receipt(self, message: dict, recipient_id: str, skip_sid: Optional[str] = None) -> None:
        if message["sender_id"] == recipient_id:
            return
        await self.publish(
            message["conversation_id"],
            "message_delivered_update",
            {"message_id": message["id"], "conversation_id": message["conversation_id"], "delivered_to": [recipient_id]},
            skip_sid=skip_sid,
        )

    async def message_delivered(self, db, sid: str, data: dict) -> None:
        user_id = self._require_user(sid)
        _require_payload(data)
        message = conversations.mark_delivered(db, data.get("message_id"), user_id)
        await self.delivery_receipt(message, user_id, skip_sid=sid)

    async def messages_read(self, db, sid: str, data: dict) -> None:
        user_id = self._require_user(sid)
        _require_payload(data)
        if not isinstance(data.get("message_ids") or [], list):
            raise ValidationError("message_ids must be a list")
        grouped = conversations.mark_read(db, data.get("message_ids") or [], user_id)
        await self.read_receipts(grouped, user_id, skip_sid=sid)

    async def typing_indicator(self, sid: str, data: dict) -> None:
        user_id = self._require_user(sid)
        _require_payload(data)
        conversation_id = str(data.get("conversation_id"))
        if sid not in self.topics.subscribers(conversation_id):
            return
        await self.publish(
            conversation_id,
            "typing_indicator",
            {"conversation_id": conversation_id, "user_id": user_id, "is_typing": bool(data.get("is_typing"))},
            skip_sid=sid,
        )

    def _require_user(self, sid: str) -> str:
        user_id = self.presence.user_for(sid)
        if not user_id:
            raise Unauthorized("Connection is not identified")
        return user_id


def _require_payload(data) -> None:
    if not isinstance(data, dict):
        raise ValidationError("Payload must be an object")


gateway = RealtimeGateway()

sio = socketio.AsyncServer(
    async_mode="asgi",
    cors_allowed_origins="*" if CORS_ORIGINS == ["*"] else CORS_ORIGINS,
)
gateway.bind(sio.emit)


def identify(environ: dict, auth: Optional[dict]) -> Optional[str]:
    """A verified token from the auth payload wins over a bare userId query param."""
    token = (auth or {}).get("token")
    if token:
        return decode_access_token(token)
    query = parse_qs(environ.get("QUERY_STRING", ""))
    return (query.get("userId") or query.get("user_id") or [None])[0]


@sio.event
async def connect(sid, environ, auth=None):
    try:
        gateway.connect(get_db(), sid, identify(environ, auth))
    except AppError as exc:
        logger.warning(f"Rejected connection {sid}: {exc.message}")
        raise socketio.exceptions.ConnectionRefusedError(exc.message)


@sio.event
async def disconnect(sid, *args):
    try:
        gateway.disconnect(get_db(), sid)
    except AppError as exc:
        logger.warning(f"Disconnect of {sid} not recorded: {exc.message}")


@sio.event
async def join_conversation(sid, conversation_id):
    try:
        gateway.join(get_db(), sid, str(conversation_id))
    except AppError as exc:
        logger.warning(f"join_conversation from {sid} dropped: {exc.message}")


@sio.event
async def leave_conversation(sid, conversation_id):
    gateway.leave(sid, str(conversation_id))


@sio.event
async def message_delivered(sid, data):
    try:
        await gateway.message_delivered(get_db(), sid, data)
    except AppError as exc:
        logger.warning(f"message_delivered from {sid} dropped: {exc.message}")


@sio.event
async def messages_read(sid, data):
    try:
        await gateway.messages_read(get_db(), sid, data)
    except AppError as exc:
        logger.warning(f"messages_read from {sid} dropped: {exc.message}")


@sio.event
async def typing_indicator(sid, data):
    try:
        await gateway.typing_indicator(sid, data)
    except AppError as exc:
        logger.warning(f"typing_indicator from {sid} dropped: {exc.message}")
