import logging
import secrets
from datetime import datetime, timedelta

from bson import ObjectId
from fastapi import APIRouter, Depends, Request, Response
from pymongo.errors import DuplicateKeyError

from shared.utils import (
    settings, get_password_hash, verify_password,
    SuccessResponse, UnauthorizedException, ValidationException,
)
from shared.security_config import limiter, validate_password

from foodmarket.models import (
    CommerceDB, DeliveryStatus, Role, ROLE_HOMES, UserDB, to_document,
)
from foodmarket.schemas import (
    ClientRegister, CommerceRegister, ForgotPasswordRequest, LoginRequest,
    LoginResponse, MeResponse, ResetPasswordRequest,
)
from foodmarket.sessions import (
    SessionContext, create_session, destroy_session, get_db, get_session, pop_flash,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

RESET_MESSAGE = "If the account exists, an email with instructions has been sent."


async def insert_user(db, user: UserDB):
    """Insert a new user, reporting a taken email or username as a validation error."""
    if await db.users.find_one({"$or": [{"email": user.email}, {"username": user.username}]}):
        raise ValidationException("Email or username already exists")
    try:
        result = await db.users.insert_one(to_document(user))
    except DuplicateKeyError:
        raise ValidationException("Email or username already exists")
    return result.inserted_id


def _log_link(request: Request, kind: str, path: str, user_id) -> None:
    # Email delivery is out of scope: links are only written to the log
    logger.info(f"{kind} link: {str(request.base_url).rstrip('/')}{path}", extra={"user_id": str(user_id)})


@router.post("/login", response_model=SuccessResponse[LoginResponse])
@limiter.limit("5/minute")
async def login(credentials: LoginRequest, request: Request, response: Response, db=Depends(get_db)):
    identifier = credentials.identifier.strip()
    user = await db.users.find_one({"$or": [{"username": identifier}, {"email": identifier.lower()}]})
    if not user or not verify_password(credentials.password, user["password_hash"]):
        raise UnauthorizedException("Incorrect username or password")
    if not user.get("is_active"):
        raise UnauthorizedException("Your account is inactive. Check your email or contact an administrator.")

    _, token = await create_session(db, user)
    response.set_cookie(
        settings.SESSION_COOKIE_NAME,
        token,
        httponly=True,
        samesite="lax",
        max_age=settings.SESSION_EXPIRE_MINUTES * 60,
    )
    role = Role(user["role"])
    return SuccessResponse(data=LoginResponse(
        access_token=token,
        role=role,
        redirect=ROLE_HOMES[role],
    ))


@router.post("/logout", response_model=SuccessResponse[dict])
async def logout(response: Response, ctx: SessionContext = Depends(get_session), db=Depends(get_db)):
    await destroy_session(db, ctx.session_id)
    response.delete_cookie(settings.SESSION_COOKIE_NAME)
    return SuccessResponse(message="Logged out successfully", data={"redirect": "/auth/login"})


@router.get("/me", response_model=SuccessResponse[MeResponse])
async def me(ctx: SessionContext = Depends(get_session), db=Depends(get_db)):
    messages = await pop_flash(db, ctx.session_id)
    return SuccessResponse(
        data=MeResponse(user_id=ctx.user_id, username=ctx.username, role=ctx.role, home=ROLE_HOMES[ctx.role]),
        messages=messages,
    )


@router.post("/register/client", response_model=SuccessResponse[dict])
async def register_client(payload: ClientRegister, request: Request, db=Depends(get_db)):
    errors = validate_password(payload.password, payload.password_confirm)
    if errors:
        raise ValidationException(errors)

    user = UserDB(
        first_name=payload.first_name,
        last_name=payload.last_name,
        phone=payload.phone,
        email=payload.email.lower(),
        username=payload.username,
        password_hash=get_password_hash(payload.password),
        role=payload.role,
        delivery_status=DeliveryStatus.AVAILABLE if payload.role == Role.DELIVERY else None,
        is_active=False,
        activation_token=secrets.token_hex(20),
    )
    user_id = await insert_user(db, user)
    _log_link(request, "Activation", f"/auth/activate/{user.activation_token}", user_id)

    return SuccessResponse(
        data={"id": str(user_id), "redirect": "/auth/login"},
        message="Registration successful. Check your email to activate your account.",
    )


@router.post("/register/commerce", response_model=SuccessResponse[dict])
async def register_commerce(payload: CommerceRegister, request: Request, db=Depends(get_db)):
    errors = validate_password(payload.password, payload.password_confirm)
    commerce_type = None
    if ObjectId.is_valid(payload.commerce_type_id):
        commerce_type = await db.commerce_types.find_one({"_id": ObjectId(payload.commerce_type_id)})
    if not commerce_type:
        errors.append("Commerce type is required")
    if errors:
        raise ValidationException(errors)

    user = UserDB(
        first_name=payload.name,
        last_name="",
        phone=payload.phone,
        email=payload.email.lower(),
        username=payload.username,
        password_hash=get_password_hash(payload.password),
        role=Role.COMMERCE,
        is_active=False,
        activation_token=secrets.token_hex(20),
    )
    user_id = await insert_user(db, user)

    commerce = CommerceDB(
        name=payload.name,
        phone=payload.phone,
        email=payload.email.lower(),
        logo=payload.logo,
        opens_at=payload.opens_at,
        closes_at=payload.closes_at,
        commerce_type_id=payload.commerce_type_id,
    )
    doc = to_document(commerce)
    doc["_id"] = user_id
    await db.commerces.insert_one(doc)
    _log_link(request, "Activation", f"/auth/activate/{user.activation_token}", user_id)

    return SuccessResponse(
        data={"id": str(user_id), "redirect": "/auth/login"},
        message="Commerce registered. Check your email to activate your account.",
    )


@router.get("/activate/{token}", response_model=SuccessResponse[dict])
async def activate(token: str, db=Depends(get_db)):
    user = await db.users.find_one_and_update(
        {"activation_token": token},
        {"$set": {"is_active": True}, "$unset": {"activation_token": ""}},
    )
    if not user:
        raise ValidationException("Invalid activation link")
    if user["role"] == Role.COMMERCE.value:
        await db.commerces.update_one({"_id": user["_id"]}, {"$set": {"is_active": True}})

    logger.info("Account activated", extra={"user_id": str(user["_id"])})
    return SuccessResponse(
        message="Account activated. You can now log in.",
        data={"redirect": "/auth/login"},
    )


@router.post("/forgot-password", response_model=SuccessResponse[dict])
async def forgot_password(payload: ForgotPasswordRequest, request: Request, db=Depends(get_db)):
    identifier = payload.identifier.strip()
    token = secrets.token_hex(20)
    user = await db.users.find_one_and_update(
        {"$or": [{"username": identifier}, {"email": identifier.lower()}]},
        {"$set": {
            "reset_token": token,
            "reset_expires": datetime.utcnow() + timedelta(minutes=settings.RESET_TOKEN_EXPIRE_MINUTES),
        }},
    )
    # Same answer whether or not the account exists
    if user:
        _log_link(request, "Password reset", f"/auth/reset-password/{token}", user["_id"])
    return SuccessResponse(message=RESET_MESSAGE, data={"redirect": "/auth/login"})


@router.post("/reset-password/{token}", response_model=SuccessResponse[dict])
async def reset_password(token: str, payload: ResetPasswordRequest, db=Depends(get_db)):
    user = await db.users.find_one(
        {"reset_token": token, "reset_expires": {"$gt": datetime.utcnow()}}
    )
    if not user:
        raise ValidationException("Invalid or expired link")

    errors = validate_password(payload.password, payload.password_confirm)
    if errors:
        raise ValidationException(errors)

    await db.users.update_one(
        {"_id": user["_id"]},
        {
            "$set": {"password_hash": get_password_hash(payload.password)},
            "$unset": {"reset_token": "", "reset_expires": ""},
        },
    )
    return SuccessResponse(
        message="Password updated. You can now log in.",
        data={"redirect": "/auth/login"},
    )
