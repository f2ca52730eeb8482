"""
Authentication API routes.
"""
import re
from datetime import datetime, timezone
from fastapi import APIRouter, Depends, Request, Response, status
from pydantic import BaseModel, EmailStr, field_validator, Field
from sqlalchemy.orm import Session
from sqlalchemy import func

from app.db.session import get_db
from app.db.models import User, Evaluator, ApprovalStatus
from app.core.security import verify_password, get_password_hash, create_access_token, get_role_value
from app.core.rbac import Principal, Role, get_current_principal
from app.core.errors import AuthenticationError, AuthorizationError, NotFoundError, ValidationError
from app.core.config import settings
from app.services.audit import record_audit

router = APIRouter(prefix="/api/auth", tags=["Authentication"])


# ============= SCHEMAS =============

class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., max_length=128)


class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=10, max_length=128)
    name: str = Field(..., min_length=1, max_length=255)

    @field_validator('password')
    @classmethod
    def validate_password(cls, v: str) -> str:
        if not re.search(r'[A-Za-z]', v):
            raise ValueError('Password must contain at least one letter')
        if not re.search(r'[0-9]', v):
            raise ValueError('Password must contain at least one number')
        return v

    @field_validator('name')
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError('Name must not be blank')
        return v


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: dict


def serialize_user(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "role": get_role_value(user.role),
        "approval_status": get_role_value(user.approval_status),
        "evaluator_id": user.evaluator.id if user.evaluator else None,
        "permissions": {
            "can_access_chat": user.can_access_chat,
            "can_make_direct_decision": user.can_make_direct_decision,
            "can_print_reports": user.can_print_reports,
            "can_export_data": user.can_export_data,
        },
        "created_at": user.created_at,
        "last_login": user.last_login,
    }


def issue_token(user: User) -> str:
    token_data = {
        "sub": str(user.id),
        "email": user.email,
        "role": get_role_value(user.role),
        "name": user.name,
        "evaluator_id": user.evaluator.id if user.evaluator else None,
    }
    return create_access_token(token_data)


# ============= ROUTES =============

@router.post("/login", response_model=TokenResponse)
async def login(
    request: Request,
    response: Response,
    login_data: LoginRequest,
    db: Session = Depends(get_db)
):
    """Authenticate an approved user and return a JWT token."""
    user = db.query(User).filter(func.lower(User.email) == login_data.email.lower()).first()

    if not user or not verify_password(login_data.password, user.hashed_password):
        raise AuthenticationError("Invalid email or password")

    approval_status = get_role_value(user.approval_status)
    if approval_status != ApprovalStatus.APPROVED.value:
        message = (
            "Your account is pending approval"
            if approval_status == ApprovalStatus.PENDING.value
            else "Your account has been rejected"
        )
        raise AuthorizationError(message, {"approval_status": approval_status})

    user.last_login = datetime.now(timezone.utc)
    record_audit(db, request, "login", user_id=user.id, entity_type="user", entity_id=user.id)
    db.commit()

    access_token = issue_token(user)
    response.set_cookie(
        "token",
        access_token,
        httponly=True,
        samesite="lax",
        max_age=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
    )

    return TokenResponse(
        access_token=access_token,
        expires_in=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        user=serialize_user(user),
    )


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(
    request: Request,
    register_data: RegisterRequest,
    db: Session = Depends(get_db)
):
    """Register a contributor account; it stays PENDING until an admin approves it."""
    if not settings.ALLOW_PUBLIC_REGISTRATION and not settings.DEBUG:
        raise AuthorizationError("Public registration is disabled. Contact an administrator.")

    email = register_data.email.lower()
    existing = db.query(User).filter(func.lower(User.email) == email).first()
    if existing:
        raise ValidationError.for_fields("Email already registered", ["email"])

    # User and evaluator are created in one transaction
    user = User(
        email=email,
        hashed_password=get_password_hash(register_data.password),
        name=register_data.name,
        role=Role.CONTRIBUTOR.value,
        approval_status=ApprovalStatus.PENDING.value,
    )
    db.add(user)
    db.flush()

    db.add(Evaluator(user_id=user.id, name=user.name, email=user.email, role=Role.CONTRIBUTOR.value))
    record_audit(db, request, "register", user_id=user.id, entity_type="user", entity_id=user.id)
    db.commit()
    db.refresh(user)

    return {
        "message": "Registration successful. Your account is pending approval.",
        "user": serialize_user(user),
    }


@router.get("/me")
async def get_current_user(
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """Get current authenticated user and permissions."""
    user = db.query(User).filter(User.id == principal.user_id).first()
    if not user:
        raise NotFoundError("User not found")

    data = serialize_user(user)
    data["capabilities"] = sorted(c.value for c in principal.capabilities)
    return data


@router.post("/logout")
async def logout(
    request: Request,
    response: Response,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """Log out user (clears the auth cookie)."""
    record_audit(db, request, "logout", user_id=principal.user_id, entity_type="user", entity_id=principal.user_id)
    db.commit()
    response.delete_cookie("token")
    return {"message": "Logged out successfully"}
