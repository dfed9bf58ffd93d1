import logging
import re
from datetime import datetime, timezone
from typing import Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, WebSocket

from auth import get_user_from_token
from config import ECO_POINTS_DONATION, ECO_POINTS_RECEIVED
from database import get_db, create_document, get_documents, get_by_id, map_doc
from live import MARKETPLACE, publish, stream_snapshots
from notifications import notify
from schemas import CATEGORIES, CONDITIONS, Item, Review, to_document
from storage import StorageError, UploadValidationError, delete_image, upload_image

logger = logging.getLogger(__name__)

router = APIRouter(tags=["items"])

# Utils

def parse_tags(tags: Optional[str]) -> list:
    if not tags:
        return []
    return [t.strip().lower() for t in tags.split(",") if t.strip()]

def parse_datetime(value: Optional[str], field: str) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        raise HTTPException(400, f"Invalid {field}")
    # stored as naive UTC, like everything Mongo hands back
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed

def check_choices(category: Optional[str], condition: Optional[str]):
    if category is not None and category not in CATEGORIES:
        raise HTTPException(400, f"Category must be one of: {', '.join(CATEGORIES)}")
    if condition is not None and condition not in CONDITIONS:
        raise HTTPException(400, f"Condition must be one of: {', '.join(CONDITIONS)}")

def is_expired(item: dict) -> bool:
    expires_at = item.get("expires_at")
    return expires_at is not None and datetime.utcnow() > expires_at

def marketplace_filter(q: Optional[str] = None, category: Optional[str] = None) -> dict:
    filter_q = {
        "status": "available",
        "archived": {"$ne": True},
        "$and": [{"$or": [{"expires_at": None}, {"expires_at": {"$gt": datetime.utcnow()}}]}],
    }
    if category and category != "All":
        filter_q["category"] = category
    if q:
        pattern = re.escape(q.strip())
        filter_q["$and"].append({"$or": [
            {"title": {"$regex": pattern, "$options": "i"}},
            {"description": {"$regex": pattern, "$options": "i"}},
        ]})
    return filter_q

async def marketplace_items(q: Optional[str] = None, category: Optional[str] = None, limit: Optional[int] = None):
    docs = await get_documents("item", marketplace_filter(q, category), limit=limit)
    return [map_doc(d) for d in docs]

async def store_image(image: Optional[UploadFile], user_id: str):
    """Returns (image_url, image_error). Bad files are rejected, storage failures are not fatal."""
    if image is None or not image.filename:
        return None, None
    try:
        return await upload_image(image, user_id), None
    except UploadValidationError as e:
        raise HTTPException(400, str(e))
    except StorageError as e:
        logger.warning("Saving item without image: %s", e)
        return None, f"{e} The item was saved without an image."

def require_owner(item: dict, user: dict):
    if str(item["owner_id"]) != str(user["_id"]):
        raise HTTPException(403, "Not owner")

async def complete_donation(item: dict, receiver_id: Optional[str] = None):
    """Mark an item completed and award eco points.

    The status update only matches items that are not completed yet, so the
    points are awarded once per item.
    """
    db = await get_db()
    res = await db["item"].update_one(
        {"_id": item["_id"], "status": {"$ne": "completed"}},
        {"$set": {"status": "completed", "updated_at": datetime.utcnow()}},
    )
    if res.modified_count == 0:
        return False
    await db["user"].update_one(
        {"_id": ObjectId(item["owner_id"])},
        {"$inc": {"eco_points": ECO_POINTS_DONATION, "total_donations": 1}},
    )
    if receiver_id:
        await db["user"].update_one({"_id": ObjectId(receiver_id)}, {"$inc": {"eco_points": ECO_POINTS_RECEIVED}})
    logger.info("Item %s completed, awarded eco points to %s", item["_id"], item["owner_id"])
    publish(MARKETPLACE)
    return True

# Items

@router.post("/items")
async def create_item(
    title: str = Form(...),
    description: str = Form(""),
    category: str = Form("Other"),
    condition: str = Form("Good"),
    location: Optional[str] = Form(None),
    tags: Optional[str] = Form(None),
    expires_at: Optional[str] = Form(None),
    image: Optional[UploadFile] = File(None),
    current_user: dict = Depends(get_user_from_token),
):
    if not title.strip():
        raise HTTPException(400, "Please enter a title")
    check_choices(category, condition)
    exp = parse_datetime(expires_at, "expires_at")
    user_id = str(current_user["_id"])
    image_url, image_error = await store_image(image, user_id)
    item = Item(
        title=title.strip(),
        description=description,
        category=category,
        condition=condition,
        image_url=image_url,
        owner_id=user_id,
        owner_name=current_user["name"],
        location=location,
        expires_at=exp,
        tags=parse_tags(tags),
    )
    item_doc = await create_document("item", to_document(item))
    logger.info("Item %s listed by %s", item_doc["_id"], user_id)
    publish(MARKETPLACE)
    result = map_doc(item_doc)
    if image_error:
        result["image_error"] = image_error
    return result

@router.get("/items")
async def list_items(q: Optional[str] = None, category: Optional[str] = None, limit: int = Query(100, ge=1, le=500)):
    if category and category != "All":
        check_choices(category, None)
    return await marketplace_items(q, category, limit)

@router.get("/items/mine")
async def my_items(current_user: dict = Depends(get_user_from_token)):
    docs = await get_documents("item", {"owner_id": str(current_user["_id"])})
    return [map_doc(d) for d in docs]

@router.get("/items/{item_id}")
async def get_item(item_id: str):
    doc = await get_by_id("item", item_id, "Item not found")
    doc = map_doc(doc)
    doc["expired"] = is_expired(doc)
    return doc

@router.put("/items/{item_id}")
async def update_item(
    item_id: str,
    title: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    category: Optional[str] = Form(None),
    condition: Optional[str] = Form(None),
    location: Optional[str] = Form(None),
    tags: Optional[str] = Form(None),
    expires_at: Optional[str] = Form(None),
    clear_expires_at: bool = Form(False),
    archived: Optional[bool] = Form(None),
    image: Optional[UploadFile] = File(None),
    current_user: dict = Depends(get_user_from_token),
):
    db = await get_db()
    doc = await get_by_id("item", item_id, "Item not found")
    require_owner(doc, current_user)
    check_choices(category, condition)
    if title is not None and not title.strip():
        raise HTTPException(400, "Please enter a title")
    updates = {k: v for k, v in {
        "title": title.strip() if title else title,
        "description": description,
        "category": category,
        "condition": condition,
        "location": location,
        "archived": archived,
        "expires_at": parse_datetime(expires_at, "expires_at"),
    }.items() if v is not None}
    if clear_expires_at:
        updates["expires_at"] = None
    if tags is not None:
        updates["tags"] = parse_tags(tags)
    image_url, image_error = await store_image(image, str(current_user["_id"]))
    if image_url:
        updates["image_url"] = image_url
        if doc.get("image_url"):
            await delete_image(doc["image_url"])
    updates["updated_at"] = datetime.utcnow()
    await db["item"].update_one({"_id": doc["_id"]}, {"$set": updates})
    publish(MARKETPLACE)
    new_doc = map_doc(await db["item"].find_one({"_id": doc["_id"]}))
    if image_error:
        new_doc["image_error"] = image_error
    return new_doc

@router.post("/items/{item_id}/complete")
async def complete_item(item_id: str, current_user: dict = Depends(get_user_from_token)):
    doc = await get_by_id("item", item_id, "Item not found")
    require_owner(doc, current_user)
    if doc.get("status") == "completed":
        raise HTTPException(409, "Item is already completed")
    # an accepted request is completed along with its item
    db = await get_db()
    receiver_id = None
    accepted = await db["itemrequest"].find_one({"item_id": item_id, "status": "accepted"})
    if accepted:
        res = await db["itemrequest"].update_one(
            {"_id": accepted["_id"], "status": "accepted"},
            {"$set": {"status": "completed", "updated_at": datetime.utcnow()}},
        )
        if res.modified_count:
            receiver_id = accepted["sender_id"]
    await complete_donation(doc, receiver_id=receiver_id)
    return {"ok": True, "receiver_id": receiver_id}

@router.delete("/items/{item_id}")
async def delete_item(item_id: str, current_user: dict = Depends(get_user_from_token)):
    db = await get_db()
    doc = await get_by_id("item", item_id, "Item not found")
    require_owner(doc, current_user)
    await db["item"].delete_one({"_id": doc["_id"]})
    await db["wishlist"].delete_many({"item_id": item_id})
    if doc.get("image_url"):
        await delete_image(doc["image_url"])
    logger.info("Item %s deleted", item_id)
    publish(MARKETPLACE)
    return {"ok": True}

# Reviews

@router.get("/items/{item_id}/reviews")
async def list_reviews(item_id: str):
    await get_by_id("item", item_id, "Item not found")
    docs = await get_documents("review", {"item_id": item_id})
    return [map_doc(d) for d in docs]

@router.post("/items/{item_id}/reviews")
async def add_review(item_id: str, rating: int = Form(...), comment: str = Form(""), current_user: dict = Depends(get_user_from_token)):
    item = await get_by_id("item", item_id, "Item not found")
    if str(item["owner_id"]) == str(current_user["_id"]):
        raise HTTPException(400, "You cannot review your own item")
    if not 1 <= rating <= 5:
        raise HTTPException(400, "Rating must be between 1 and 5")
    review = Review(
        item_id=item_id,
        reviewer_id=str(current_user["_id"]),
        reviewer_name=current_user["name"],
        rating=rating,
        comment=comment,
    )
    doc = await create_document("review", to_document(review))
    await notify(
        item["owner_id"], "review",
        f'New review on "{item["title"]}"',
        f'{current_user["name"]} rated your item {rating}/5',
        related_id=item_id,
    )
    return map_doc(doc)

# Live marketplace

@router.websocket("/ws/marketplace")
async def marketplace_feed(websocket: WebSocket, category: Optional[str] = None):
    await websocket.accept()
    await stream_snapshots(websocket, MARKETPLACE, lambda: marketplace_items(category=category, limit=100))
