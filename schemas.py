"""
Database Schemas for Classmates

Each Pydantic model corresponds to a MongoDB collection.
Collection name is the lowercase class name (e.g., User -> "user").
References to other documents are stored as id strings.
"""
from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field

RelationshipStatus = Literal["Single", "In a relationship", "Married", "Complicated", ""]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(BaseModel):
    name: str = Field(..., description="Full name")
    email: EmailStr = Field(..., description="Email address")
    password: str = Field(..., description="Hashed password")
    school: str = Field(..., description="School name")
    class_name: Optional[str] = Field(None, description="Class, e.g. 10")
    section: Optional[str] = Field(None, description="Section within the class, e.g. B")
    interests: List[str] = Field(default_factory=list, description="Interest tags")
    instagram_username: Optional[str] = Field(None, description="Instagram handle")
    profile_pic: Optional[str] = Field(None, description="Profile image URL")
    cover_photo: str = Field("", description="Cover image URL")
    bio: str = Field("", description="Short biography")
    relationship_status: RelationshipStatus = Field("", description="Relationship status")
    friends: List[str] = Field(default_factory=list, description="Friend user IDs as strings")
    friend_requests: List[str] = Field(default_factory=list, description="User IDs with a pending request to this user")
    online: bool = Field(False, description="Mirrors presence on the realtime channel")


class Conversation(BaseModel):
    participants: List[str] = Field(..., min_length=2, description="Participant user IDs as strings")
    created_at: datetime = Field(default_factory=utcnow)


class Message(BaseModel):
    conversation_id: str = Field(..., description="Owning conversation ID")
    sender_id: str = Field(..., description="Author user ID")
    content: str = Field(..., description="Text content")
    created_at: datetime = Field(default_factory=utcnow)
    delivered_to: List[str] = Field(default_factory=list, description="Recipients that received the message")
    read_by: List[str] = Field(default_factory=list, description="Recipients that read the message")


class TimelineEvent(BaseModel):
    date: datetime = Field(..., description="Day the event happened")
    time: str = Field(..., description="Free-form time of day, e.g. 18:30")
    event_text: str = Field(..., description="What happened")
    created_at: datetime = Field(default_factory=utcnow)


class Comment(BaseModel):
    author: str = Field(..., description="Comment author user ID")
    content: str = Field(..., description="Comment text")
    created_at: datetime = Field(default_factory=utcnow)


class Memory(BaseModel):
    title: str = Field(..., description="Memory title")
    author: str = Field(..., description="Author user ID")
    tagged_friends: List[str] = Field(default_factory=list, description="Tagged user IDs, co-owners for edits")
    created_at: datetime = Field(default_factory=utcnow)
    photos: List[str] = Field(default_factory=list, description="Photo URLs in upload order")
    timeline_events: List[TimelineEvent] = Field(default_factory=list)
    likes: List[str] = Field(default_factory=list, description="User IDs that liked the memory")
    comments: List[Comment] = Field(default_factory=list)
