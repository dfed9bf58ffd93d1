from typing import Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, Form, HTTPException, Query

from auth import get_user_from_token
from database import get_db, create_document, get_documents, get_by_id, map_doc, to_object_id
from schemas import Report, Wishlist, to_document

router = APIRouter(tags=["community"])

# Wishlist

@router.get("/wishlist")
async def get_wishlist(current_user: dict = Depends(get_user_from_token)):
    db = await get_db()
    entries = await get_documents("wishlist", {"user_id": str(current_user["_id"])})
    ids = [ObjectId(e["item_id"]) for e in entries]
    items = {str(d["_id"]): d async for d in db["item"].find({"_id": {"$in": ids}})}
    result = []
    for entry in entries:
        item = items.get(entry["item_id"])
        if not item:
            continue
        result.append({"id": str(entry["_id"]), "added_at": entry["created_at"], "item": map_doc(dict(item))})
    return result

@router.post("/wishlist/{item_id}/toggle")
async def toggle_wishlist(item_id: str, current_user: dict = Depends(get_user_from_token)):
    await get_by_id("item", item_id, "Item not found")
    db = await get_db()
    query = {"user_id": str(current_user["_id"]), "item_id": item_id}
    existing = await db["wishlist"].find_one(query)
    if existing:
        await db["wishlist"].delete_many(query)
        return {"wishlisted": False}
    doc = await create_document("wishlist", to_document(Wishlist(**query)))
    return {"wishlisted": True, "id": str(doc["_id"])}

@router.delete("/wishlist/{entry_id}")
async def remove_from_wishlist(entry_id: str, current_user: dict = Depends(get_user_from_token)):
    db = await get_db()
    res = await db["wishlist"].delete_one({"_id": to_object_id(entry_id), "user_id": str(current_user["_id"])})
    if res.deleted_count == 0:
        raise HTTPException(404, "Wishlist entry not found")
    return {"ok": True}

# Reports

@router.post("/reports")
async def create_report(
    reason: str = Form(...),
    description: str = Form(""),
    reported_user_id: Optional[str] = Form(None),
    reported_item_id: Optional[str] = Form(None),
    current_user: dict = Depends(get_user_from_token),
):
    if not reported_user_id and not reported_item_id:
        raise HTTPException(400, "A report must name a user or an item")
    if not reason.strip():
        raise HTTPException(400, "Please choose a reason")
    if reported_user_id:
        await get_by_id("user", reported_user_id, "User not found")
    if reported_item_id:
        await get_by_id("item", reported_item_id, "Item not found")
    report = Report(
        reporter_id=str(current_user["_id"]),
        reported_user_id=reported_user_id,
        reported_item_id=reported_item_id,
        reason=reason.strip(),
        description=description,
    )
    doc = await create_document("report", to_document(report))
    return map_doc(doc)

# Leaderboard

@router.get("/leaderboard")
async def leaderboard(limit: int = Query(100, ge=1, le=100)):
    db = await get_db()
    cursor = db["user"].find({}).sort([("eco_points", -1), ("created_at", 1)]).limit(limit)
    entries = []
    users = [u async for u in cursor]
    for rank, user in enumerate(users, start=1):
        entries.append({
            "user_id": str(user["_id"]),
            "user_name": user["name"],
            "eco_points": user.get("eco_points", 0),
            "items_donated": user.get("total_donations", 0),
            "rating": user.get("rating", 0.0),
            "rank": rank,
        })
    return entries