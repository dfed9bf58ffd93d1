from typing import List, Literal, Optional
from pydantic import BaseModel, EmailStr, Field
from datetime import datetime

# Each class name lowercased corresponds to collection name

CATEGORIES = ["Books", "Electronics", "Furniture", "Clothing", "Kitchen", "Sports", "Other"]
CONDITIONS = ["Like New", "Good", "Fair", "Poor"]

ItemStatus = Literal["available", "requested", "completed"]
RequestStatus = Literal["pending", "accepted", "declined", "completed"]
NotificationType = Literal["request", "accepted", "declined", "new_item", "message", "review"]

AI_ASSISTANT_ID = "ai-assistant"

class User(BaseModel):
    id: Optional[str] = None
    name: str
    email: EmailStr
    password: Optional[str] = None  # hashed
    eco_points: int = 0
    rating: float = 0.0
    review_count: int = 0
    bio: Optional[str] = None
    location: Optional[str] = None
    photo_url: Optional[str] = None
    total_donations: int = 0
    total_requests: int = 0
    blocked_users: List[str] = []
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

class Item(BaseModel):
    id: Optional[str] = None
    title: str = Field(..., min_length=1)
    description: str = ""
    category: Literal["Books", "Electronics", "Furniture", "Clothing", "Kitchen", "Sports", "Other"] = "Other"
    condition: Literal["Like New", "Good", "Fair", "Poor"] = "Good"
    image_url: Optional[str] = None
    owner_id: str
    owner_name: str
    status: ItemStatus = "available"
    location: Optional[str] = None
    expires_at: Optional[datetime] = None
    archived: bool = False
    tags: List[str] = []
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

class ItemRequest(BaseModel):
    id: Optional[str] = None
    item_id: str
    item_title: str
    sender_id: str
    sender_name: str
    receiver_id: str
    status: RequestStatus = "pending"
    message: Optional[str] = None
    conversation_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

class Conversation(BaseModel):
    id: Optional[str] = None
    participants: List[str]
    participant_names: List[str]
    last_message: Optional[str] = None
    last_message_time: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

class Message(BaseModel):
    id: Optional[str] = None
    conversation_id: str
    sender_id: str
    sender_name: str
    text: str
    owner_id: Optional[str] = None  # only set on assistant threads
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

class Notification(BaseModel):
    id: Optional[str] = None
    user_id: str
    type: NotificationType
    title: str
    message: str
    read: bool = False
    related_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

class Wishlist(BaseModel):
    id: Optional[str] = None
    user_id: str
    item_id: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

class Review(BaseModel):
    id: Optional[str] = None
    item_id: str
    reviewer_id: str
    reviewer_name: str
    rating: int = Field(..., ge=1, le=5)
    comment: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

class UserRating(BaseModel):
    id: Optional[str] = None
    rated_user_id: str
    rater_user_id: str
    rater_name: str
    rating: int = Field(..., ge=1, le=5)
    comment: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

class Report(BaseModel):
    id: Optional[str] = None
    reporter_id: str
    reported_user_id: Optional[str] = None
    reported_item_id: Optional[str] = None
    reason: str = Field(..., min_length=1)
    description: str = ""
    status: Literal["pending", "reviewed", "resolved"] = "pending"
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

def to_document(model: BaseModel) -> dict:
    return model.model_dump(exclude={"id", "created_at", "updated_at"})
