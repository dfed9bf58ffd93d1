import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile

from auth import get_user_from_token, public_user
from database import get_db, create_document, get_documents, get_by_id, map_doc, to_object_id
from schemas import UserRating, to_document
from storage import StorageError, UploadValidationError, upload_image

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["users"])

# Utils

def profile_view(user: dict) -> dict:
    """What other users get to see."""
    out = public_user(user)
    out.pop("email")
    out.pop("blocked_users")
    return out

async def is_blocked(user_id: str, other_user_id: str) -> bool:
    """True when ``user_id`` has blocked ``other_user_id``."""
    db = await get_db()
    user = await db["user"].find_one({"_id": to_object_id(user_id)}, {"blocked_users": 1})
    return bool(user) and other_user_id in user.get("blocked_users", [])

def average_rating(ratings: list) -> float:
    if not ratings:
        return 0.0
    return round(sum(ratings) / len(ratings), 1)

# Current user

@router.get("/me")
async def me(current_user: dict = Depends(get_user_from_token)):
    return public_user(current_user)

@router.put("/me")
async def update_me(
    name: Optional[str] = Form(None),
    bio: Optional[str] = Form(None),
    location: Optional[str] = Form(None),
    photo: Optional[UploadFile] = File(None),
    current_user: dict = Depends(get_user_from_token),
):
    db = await get_db()
    if name is not None and not name.strip():
        raise HTTPException(400, "Please enter your name")
    updates = {k: v for k, v in {"name": name.strip() if name else name, "bio": bio, "location": location}.items() if v is not None}
    if photo is not None and photo.filename:
        try:
            updates["photo_url"] = await upload_image(photo, str(current_user["_id"]), folder="avatars")
        except UploadValidationError as e:
            raise HTTPException(400, str(e))
        except StorageError as e:
            raise HTTPException(503, str(e))
    updates["updated_at"] = datetime.utcnow()
    await db["user"].update_one({"_id": current_user["_id"]}, {"$set": updates})
    if "name" in updates:
        # denormalised copy shown on listings
        await db["item"].update_many({"owner_id": str(current_user["_id"])}, {"$set": {"owner_name": updates["name"]}})
    return public_user(await db["user"].find_one({"_id": current_user["_id"]}))

@router.get("/me/dashboard")
async def dashboard(current_user: dict = Depends(get_user_from_token)):
    db = await get_db()
    user_id = str(current_user["_id"])
    items = await get_documents("item", {"owner_id": user_id})
    received = await db["itemrequest"].count_documents({"receiver_id": user_id})
    sent = await db["itemrequest"].count_documents({"sender_id": user_id})
    return {
        "items_count": len(items),
        "received_requests": received,
        "sent_requests": sent,
        "eco_points": current_user.get("eco_points", 0),
        "recent_items": [map_doc(d) for d in items[:3]],
    }

@router.get("/me/blocked")
async def blocked_users(current_user: dict = Depends(get_user_from_token)):
    db = await get_db()
    ids = [to_object_id(i) for i in current_user.get("blocked_users", [])]
    if not ids:
        return []
    docs = [d async for d in db["user"].find({"_id": {"$in": ids}})]
    return [profile_view(d) for d in docs]

# Other users

@router.get("/{user_id}")
async def get_profile(user_id: str):
    user = await get_by_id("user", user_id, "User not found")
    return profile_view(user)

@router.post("/{user_id}/block")
async def block_user(user_id: str, current_user: dict = Depends(get_user_from_token)):
    if user_id == str(current_user["_id"]):
        raise HTTPException(400, "You cannot block yourself")
    await get_by_id("user", user_id, "User not found")
    db = await get_db()
    await db["user"].update_one({"_id": current_user["_id"]}, {"$addToSet": {"blocked_users": user_id}})
    logger.info("User %s blocked %s", current_user["_id"], user_id)
    return {"ok": True, "blocked": True}

@router.delete("/{user_id}/block")
async def unblock_user(user_id: str, current_user: dict = Depends(get_user_from_token)):
    db = await get_db()
    await db["user"].update_one({"_id": current_user["_id"]}, {"$pull": {"blocked_users": user_id}})
    return {"ok": True, "blocked": False}

@router.get("/{user_id}/blocked")
async def check_blocked(user_id: str, current_user: dict = Depends(get_user_from_token)):
    return {"blocked": user_id in current_user.get("blocked_users", [])}

# Ratings

@router.get("/{user_id}/ratings")
async def list_ratings(user_id: str):
    await get_by_id("user", user_id, "User not found")
    docs = await get_documents("userrating", {"rated_user_id": user_id})
    return {
        "items": [map_doc(d) for d in docs],
        "average": average_rating([d["rating"] for d in docs]),
        "count": len(docs),
    }

@router.post("/{user_id}/ratings")
async def rate_user(user_id: str, rating: int = Form(...), comment: str = Form(""), current_user: dict = Depends(get_user_from_token)):
    rater_id = str(current_user["_id"])
    if user_id == rater_id:
        raise HTTPException(400, "You cannot rate yourself")
    if not 1 <= rating <= 5:
        raise HTTPException(400, "Rating must be between 1 and 5")
    rated = await get_by_id("user", user_id, "User not found")
    db = await get_db()
    existing = await db["userrating"].find_one({"rated_user_id": user_id, "rater_user_id": rater_id})
    if existing:
        await db["userrating"].update_one(
            {"_id": existing["_id"]},
            {"$set": {"rating": rating, "comment": comment, "rater_name": current_user["name"], "updated_at": datetime.utcnow()}},
        )
        doc = await db["userrating"].find_one({"_id": existing["_id"]})
    else:
        doc = await create_document("userrating", to_document(UserRating(
            rated_user_id=user_id,
            rater_user_id=rater_id,
            rater_name=current_user["name"],
            rating=rating,
            comment=comment,
        )))
    ratings = [d["rating"] async for d in db["userrating"].find({"rated_user_id": user_id}, {"rating": 1})]
    await db["user"].update_one(
        {"_id": rated["_id"]},
        {"$set": {"rating": average_rating(ratings), "review_count": len(ratings), "updated_at": datetime.utcnow()}},
    )
    return map_doc(doc)
