import datetime
import logging
from contextlib import asynccontextmanager
from typing import List, Optional, Union

import socketio
from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr

import conversations
import database
import memories
import social
import users
from config import CORS_ORIGINS, HOST, LOG_LEVEL, PORT
from database import get_db
from errors import AppError
from realtime import gateway, sio
from schemas import RelationshipStatus
from security import get_current_user

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting Classmates API")
    if database.db is None:
        logger.warning("DATABASE_URL / DATABASE_NAME not set, data endpoints will fail")
    else:
        database.ensure_indexes(database.db)
    yield
    logger.info("Shutting down Classmates API")


# App setup
app = FastAPI(title="Classmates API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Socket.IO wraps the REST app; run this one under uvicorn
asgi_app = socketio.ASGIApp(sio, other_asgi_app=app)


# Error mapping
@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    details = [{"loc": list(e.get("loc", ())), "msg": e.get("msg")} for e in exc.errors()]
    return JSONResponse(status_code=400, content={"error": "Missing parameters", "details": details})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception on {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(status_code=500, content={"error": "Server error"})


# Models for requests/responses
class SignUpBody(BaseModel):
    name: str
    email: EmailStr
    password: str
    school: str


class LoginBody(BaseModel):
    email: EmailStr
    password: str


class ProfileSetupBody(BaseModel):
    profile_pic: Optional[str] = None
    class_name: Optional[str] = None
    section: Optional[str] = None
    interests: Optional[List[str]] = None
    instagram_username: Optional[str] = None


class ProfileEditBody(ProfileSetupBody):
    bio: Optional[str] = None
    cover_photo: Optional[str] = None
    relationship_status: Optional[RelationshipStatus] = None


class FriendBody(BaseModel):
    friend_id: str


class ConversationBody(BaseModel):
    participant_ids: List[str]


class MessageBody(BaseModel):
    content: str


class MarkReadBody(BaseModel):
    message_ids: List[str]


class PhotoBody(BaseModel):
    photo_url: str


class TimelineEventBody(BaseModel):
    date: datetime.date
    time: str
    event_text: str


class MemoryBody(BaseModel):
    title: str
    tagged_friends: Union[List[str], str, None] = None
    timeline_events: List[TimelineEventBody] = []


class CommentBody(BaseModel):
    content: str


# Auth Endpoints
@app.post("/signup", status_code=201)
def signup(body: SignUpBody, db=Depends(get_db)):
    return users.signup(db, body.name, body.email, body.password, body.school)


@app.post("/login")
def login(body: LoginBody, db=Depends(get_db)):
    return users.login(db, body.email, body.password)


# Users Endpoints
@app.get("/profile")
def get_profile(current=Depends(get_current_user), db=Depends(get_db)):
    return users.get_profile(db, current)


@app.post("/profile")
def setup_profile(body: ProfileSetupBody, current=Depends(get_current_user), db=Depends(get_db)):
    user = users.setup_profile(db, current, body.model_dump())
    return {"message": "Profile updated successfully", "user": user}


@app.put("/profile")
def edit_profile(body: ProfileEditBody, current=Depends(get_current_user), db=Depends(get_db)):
    update = {k: v for k, v in body.model_dump(exclude_unset=True).items() if v is not None}
    user = users.edit_profile(db, current, update)
    return {"message": "Profile updated successfully", "user": user}


@app.get("/otherProfile/{user_id}")
def other_profile(user_id: str, current=Depends(get_current_user), db=Depends(get_db)):
    return users.other_profile(db, user_id)


@app.get("/userDetails/{user_id}")
def user_details(user_id: str, current=Depends(get_current_user), db=Depends(get_db)):
    return users.user_details(db, user_id)


@app.get("/searchUsers")
def search_users(
    query: Optional[str] = None,
    school: Optional[str] = None,
    class_name: Optional[str] = Query(None, alias="class"),
    section: Optional[str] = None,
    interests: Optional[str] = None,
    current=Depends(get_current_user),
    db=Depends(get_db),
):
    return users.search_users(db, current, query, school, class_name, section, interests)


@app.get("/recommendUsers")
def recommend_users(current=Depends(get_current_user), db=Depends(get_db)):
    return users.recommend_users(db, current)


@app.get("/onlineFriends")
@app.get("/api/onlineFriends")
def online_friends(current=Depends(get_current_user), db=Depends(get_db)):
    return users.online_friends(db, current)


# Friend Endpoints
@app.post("/sendFriendRequest")
def send_friend_request(body: FriendBody, current=Depends(get_current_user), db=Depends(get_db)):
    return social.send_request(db, current, body.friend_id)


@app.post("/acceptFriendRequest")
def accept_friend_request(body: FriendBody, current=Depends(get_current_user), db=Depends(get_db)):
    return social.accept_request(db, current, body.friend_id)


@app.post("/rejectFriendRequest")
def reject_friend_request(body: FriendBody, current=Depends(get_current_user), db=Depends(get_db)):
    return social.reject_request(db, current, body.friend_id)


@app.get("/getFriends")
def get_friends(current=Depends(get_current_user), db=Depends(get_db)):
    return social.get_friends(db, current)


@app.get("/getFriendRequests")
def get_friend_requests(current=Depends(get_current_user), db=Depends(get_db)):
    return social.get_friend_requests(db, current)


# Conversation Endpoints
@app.get("/conversations")
def list_conversations(current=Depends(get_current_user), db=Depends(get_db)):
    return conversations.list_conversations(db, current)


@app.post("/conversations")
def create_conversation(body: ConversationBody, current=Depends(get_current_user), db=Depends(get_db)):
    return conversations.create_conversation(db, current, body.participant_ids)


# Registered before /messages/{conversation_id} so the literal path wins
@app.post("/messages/markAsRead")
async def mark_as_read(body: MarkReadBody, current=Depends(get_current_user), db=Depends(get_db)):
    reader_id = str(current["_id"])
    grouped = conversations.mark_read(db, body.message_ids, reader_id)
    updated = sum(len(ids) for ids in grouped.values())
    if not updated:
        return {"success": False, "message": "No messages needed to be marked as read"}
    await gateway.read_receipts(grouped, reader_id)
    return {"success": True, "updated_messages": updated}


@app.post("/messages/{message_id}/delivered")
async def mark_delivered(message_id: str, current=Depends(get_current_user), db=Depends(get_db)):
    recipient_id = str(current["_id"])
    message = conversations.mark_delivered(db, message_id, recipient_id)
    await gateway.delivery_receipt(message, recipient_id)
    return message


@app.get("/messages/{conversation_id}")
def list_messages(conversation_id: str, current=Depends(get_current_user), db=Depends(get_db)):
    return conversations.list_messages(db, conversation_id, current)


@app.post("/messages/{conversation_id}")
async def post_message(conversation_id: str, body: MessageBody, current=Depends(get_current_user), db=Depends(get_db)):
    message = conversations.post_message(db, conversation_id, current, body.content)
    await gateway.new_message(message)
    return message


# Memory Endpoints
@app.post("/uploadMemory")
def upload_memory(body: MemoryBody, current=Depends(get_current_user), db=Depends(get_db)):
    events = [e.model_dump() for e in body.timeline_events]
    memory = memories.upload_memory(db, current, body.title, body.tagged_friends, events)
    return {"message": "Memory uploaded successfully", "memory": memory}


@app.post("/memory/{memory_id}/addPhoto")
def add_photo(memory_id: str, body: PhotoBody, current=Depends(get_current_user), db=Depends(get_db)):
    memory = memories.add_photo(db, memory_id, current, body.photo_url)
    return {"message": "Photo added successfully", "memory": memory}


@app.post("/memory/{memory_id}/addTimelineEvent")
def add_timeline_event(memory_id: str, body: TimelineEventBody, current=Depends(get_current_user), db=Depends(get_db)):
    memory = memories.add_timeline_event(db, memory_id, current, body.date, body.time, body.event_text)
    return {"message": "Timeline event added successfully", "memory": memory}


@app.post("/memory/{memory_id}/like")
def like_memory(memory_id: str, current=Depends(get_current_user), db=Depends(get_db)):
    return {"message": "Like updated successfully", "likes": memories.toggle_like(db, memory_id, current)}


@app.post("/memory/{memory_id}/comment")
def comment_memory(memory_id: str, body: CommentBody, current=Depends(get_current_user), db=Depends(get_db)):
    return {"message": "Comment added successfully", "comments": memories.add_comment(db, memory_id, current, body.content)}


@app.get("/memory/{memory_id}")
def get_memory(memory_id: str, current=Depends(get_current_user), db=Depends(get_db)):
    return memories.get_memory(db, memory_id)


@app.get("/userMemories/{user_id}")
def user_memories(user_id: str, current=Depends(get_current_user), db=Depends(get_db)):
    return memories.user_memories(db, user_id)


@app.get("/friendsMemories")
def friends_memories(current=Depends(get_current_user), db=Depends(get_db)):
    return memories.friends_memories(db, current)


@app.get("/memories")
def memories_feed(current=Depends(get_current_user), db=Depends(get_db)):
    return memories.feed(db, current)


@app.get("/memories/more/{offset}")
def more_memories(offset: int, current=Depends(get_current_user), db=Depends(get_db)):
    return memories.feed(db, current, offset=offset)


@app.get("/")
def read_root():
    return {"message": "Classmates API is running"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(asgi_app, host=HOST, port=PORT)
