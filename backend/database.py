from datetime import datetime

from bson import ObjectId
from fastapi import HTTPException
from motor.motor_asyncio import AsyncIOMotorClient

from config import DATABASE_URL, DATABASE_NAME

_client: AsyncIOMotorClient | None = None
_db = None

async def get_db():
    global _client, _db
    if _client is None:
        _client = AsyncIOMotorClient(DATABASE_URL)
        _db = _client[DATABASE_NAME]
    return _db

def close_db():
    global _client, _db
    if _client is not None:
        _client.close()
    _client = None
    _db = None

async def create_document(collection_name: str, data: dict):
    db = await get_db()
    now = datetime.utcnow()
    data["created_at"] = now
    data["updated_at"] = now
    res = await db[collection_name].insert_one(data)
    data["_id"] = res.inserted_id
    return data

async def get_documents(collection_name: str, filter_dict: dict | None = None, limit: int | None = None, sort_dir: int = -1):
    db = await get_db()
    cursor = db[collection_name].find(filter_dict or {}).sort("created_at", sort_dir)
    if limit:
        cursor = cursor.limit(limit)
    return [doc async for doc in cursor]

async def get_by_id(collection_name: str, doc_id: str, not_found: str = "Not found"):
    db = await get_db()
    doc = await db[collection_name].find_one({"_id": to_object_id(doc_id)})
    if not doc:
        raise HTTPException(404, not_found)
    return doc

def to_object_id(value: str) -> ObjectId:
    if not ObjectId.is_valid(value):
        raise HTTPException(400, "Invalid id")
    return ObjectId(value)

def map_doc(doc: dict) -> dict:
    doc["id"] = str(doc.pop("_id"))
    return doc
