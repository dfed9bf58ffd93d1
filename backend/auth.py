import logging
from datetime import datetime, timedelta
from typing import Optional

from bson import ObjectId
from fastapi import APIRouter, BackgroundTasks, Depends, Form, HTTPException, status
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm
from jose import JWTError, jwt
from passlib.context import CryptContext

from config import SECRET_KEY, ALGORITHM, ACCESS_TOKEN_EXPIRE_MINUTES, RESET_TOKEN_EXPIRE_MINUTES
from database import get_db, create_document
from emails import send_email, password_reset_email
from schemas import User, to_document

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")

router = APIRouter(prefix="/auth", tags=["auth"])

# Utils

def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    expire = datetime.utcnow() + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)

def create_reset_token(user: dict) -> str:
    # carries a hash fragment, so the token stops matching once the password changes
    return create_access_token(
        {"sub": str(user["_id"]), "purpose": "reset", "pwd": user.get("password", "")[-12:]},
        timedelta(minutes=RESET_TOKEN_EXPIRE_MINUTES),
    )

def public_user(user: dict) -> dict:
    return {
        "id": str(user["_id"]),
        "name": user["name"],
        "email": user["email"],
        "eco_points": user.get("eco_points", 0),
        "rating": user.get("rating", 0.0),
        "review_count": user.get("review_count", 0),
        "bio": user.get("bio"),
        "location": user.get("location"),
        "photo_url": user.get("photo_url"),
        "total_donations": user.get("total_donations", 0),
        "total_requests": user.get("total_requests", 0),
        "blocked_users": user.get("blocked_users", []),
        "created_at": user.get("created_at"),
    }

def validate_password(password: str):
    if len(password) < MIN_PASSWORD_LENGTH:
        raise HTTPException(400, f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")

async def user_from_token(token: str) -> Optional[dict]:
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        return None
    user_id = payload.get("sub")
    if user_id is None or payload.get("purpose") or not ObjectId.is_valid(user_id):
        return None
    db = await get_db()
    return await db["user"].find_one({"_id": ObjectId(user_id)})

async def get_user_from_token(token: str = Depends(oauth2_scheme)) -> dict:
    user = await user_from_token(token)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user

def token_response(user: dict) -> dict:
    token = create_access_token({"sub": str(user["_id"])})
    return {"access_token": token, "token_type": "bearer", "user": public_user(user)}

# Auth endpoints

@router.post("/register")
async def register(name: str = Form(...), email: str = Form(...), password: str = Form(...)):
    db = await get_db()
    if not name.strip():
        raise HTTPException(400, "Please enter your name")
    validate_password(password)
    existing = await db["user"].find_one({"email": email.strip().lower()})
    if existing:
        raise HTTPException(status_code=400, detail="An account with this email already exists. Please try logging in instead.")
    try:
        user = User(name=name.strip(), email=email.strip().lower(), password=pwd_context.hash(password))
    except ValueError:
        raise HTTPException(400, "Please enter a valid email address")
    user_doc = await create_document("user", to_document(user))
    logger.info("Registered user %s", user_doc["_id"])
    return token_response(user_doc)

@router.post("/login")
async def login(form_data: OAuth2PasswordRequestForm = Depends()):
    db = await get_db()
    user = await db["user"].find_one({"email": form_data.username.strip().lower()})
    if not user:
        raise HTTPException(status_code=400, detail="No account found with this email. Please check your email or sign up.")
    if not pwd_context.verify(form_data.password, user.get("password", "")):
        raise HTTPException(status_code=400, detail="Incorrect password. Please try again.")
    return token_response(user)

@router.post("/reset-password")
async def request_password_reset(background_tasks: BackgroundTasks, email: str = Form(...)):
    db = await get_db()
    user = await db["user"].find_one({"email": email.strip().lower()})
    if user:
        token = create_reset_token(user)
        background_tasks.add_task(send_email, user["email"], "Reset your Waste to Wish password", password_reset_email(token))
        logger.info("Password reset requested for user %s", user["_id"])
    # same answer whether or not the account exists
    return {"ok": True}

@router.post("/reset-password/confirm")
async def confirm_password_reset(token: str = Form(...), new_password: str = Form(...)):
    invalid = HTTPException(400, "This reset link is invalid or has expired")
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        raise invalid
    user_id = payload.get("sub")
    if payload.get("purpose") != "reset" or not user_id or not ObjectId.is_valid(user_id):
        raise invalid
    validate_password(new_password)
    db = await get_db()
    user = await db["user"].find_one({"_id": ObjectId(user_id)})
    if not user or user.get("password", "")[-12:] != payload.get("pwd"):
        raise invalid
    await db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {"password": pwd_context.hash(new_password), "updated_at": datetime.utcnow()}},
    )
    logger.info("Password reset for user %s", user_id)
    return {"ok": True}
