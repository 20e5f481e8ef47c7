"""Server-side sessions.

A session document holds who is logged in, the client's cart and pending
flash messages. The signed token handed to the caller only carries the
session id (``jti``), so logging out or expiring the document invalidates
the token immediately.
"""
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, List

from fastapi import Depends, Request
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument

from shared.utils import (
    settings, create_session_token, verify_token,
    UnauthorizedException, ForbiddenException,
)
from foodmarket.models import Role, SessionDB, FlashMessage, to_document


@dataclass
class SessionContext:
    session_id: str
    user_id: str
    role: Role
    username: str


def get_db(request: Request) -> AsyncIOMotorDatabase:
    return request.app.mongodb


async def create_session(db: AsyncIOMotorDatabase, user: dict) -> tuple:
    """Open a session for ``user`` and return ``(session_id, token)``."""
    session_id = str(uuid.uuid4())
    expires_delta = timedelta(minutes=settings.SESSION_EXPIRE_MINUTES)
    session = SessionDB(
        user_id=str(user["_id"]),
        role=user["role"],
        username=user["username"],
        expires_at=datetime.utcnow() + expires_delta,
    )
    doc = to_document(session)
    doc["_id"] = session_id
    await db.sessions.insert_one(doc)
    token = create_session_token(
        {"sub": str(user["_id"]), "role": user["role"]},
        session_id,
        expires_delta=expires_delta,
    )
    return session_id, token


async def destroy_session(db: AsyncIOMotorDatabase, session_id: str) -> None:
    await db.sessions.delete_one({"_id": session_id})


async def revoke_sessions(db: AsyncIOMotorDatabase, user_id: str) -> None:
    """Log ``user_id`` out everywhere."""
    await db.sessions.delete_many({"user_id": user_id})


async def load_session(db: AsyncIOMotorDatabase, session_id: str) -> Optional[dict]:
    return await db.sessions.find_one(
        {"_id": session_id, "expires_at": {"$gt": datetime.utcnow()}}
    )


async def add_flash(db: AsyncIOMotorDatabase, session_id: Optional[str], category: str, message: str) -> None:
    if not session_id:
        return
    flash = FlashMessage(category=category, message=message)
    await db.sessions.update_one(
        {"_id": session_id}, {"$push": {"flash": flash.model_dump()}}
    )


async def pop_flash(db: AsyncIOMotorDatabase, session_id: str) -> List[dict]:
    """Return and clear the pending flash messages of a session."""
    before = await db.sessions.find_one_and_update(
        {"_id": session_id},
        {"$set": {"flash": []}},
        return_document=ReturnDocument.BEFORE,
    )
    if not before:
        return []
    return before.get("flash", [])


def _token_from_request(request: Request) -> Optional[str]:
    authorization = request.headers.get("Authorization")
    if authorization:
        scheme, _, param = authorization.partition(" ")
        if scheme.lower() != "bearer" or not param:
            raise UnauthorizedException("Invalid authentication credentials")
        return param
    return request.cookies.get(settings.SESSION_COOKIE_NAME)


async def get_session(request: Request, db: AsyncIOMotorDatabase = Depends(get_db)) -> SessionContext:
    token = _token_from_request(request)
    if not token:
        raise UnauthorizedException("Login required")
    payload = verify_token(token)
    session = await load_session(db, payload.get("jti"))
    if not session:
        raise UnauthorizedException("Session expired")

    request.state.session_id = session["_id"]
    request.state.user_id = session["user_id"]
    return SessionContext(
        session_id=session["_id"],
        user_id=session["user_id"],
        role=Role(session["role"]),
        username=session["username"],
    )


def require_role(*roles: Role):
    """Dependency factory: the session role must be one of ``roles``."""

    async def dependency(ctx: SessionContext = Depends(get_session)) -> SessionContext:
        if ctx.role not in roles:
            raise ForbiddenException("Access not authorized")
        return ctx

    return dependency
