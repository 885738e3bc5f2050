"""
Authentication

Password hashing (bcrypt), bearer token issuance and verification (PyJWT),
and the FastAPI dependency that turns a bearer token into a Principal.

The token only identifies the user. Role and tenant are re-read from the
users table on every request, so a role change applies immediately.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import bcrypt
import jwt as pyjwt
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from api.dependencies import get_config_instance, get_session
from config_manager import ConfigManager
from database.models import AuditAction, User
from database.repositories import AuditRepository, UserRepository
from database.scope import Principal, principal_from_user
from errors import UnauthorizedError, ValidationError
from security_logger import get_security_logger

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


# ============================================
# PASSWORD HASHING
# ============================================

def hash_password(password: str, rounds: int = 10) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt(rounds=rounds)).decode()


def verify_password(password: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode(), hashed.encode())
    except ValueError:
        # Malformed stored hash
        return False


# ============================================
# TOKENS
# ============================================

def create_access_token(user: User, config: ConfigManager, now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    payload = {
        "sub": str(user.id),
        "role": user.role.value,
        "iat": now,
        "exp": now + timedelta(hours=config.auth.token_ttl_hours),
    }
    return pyjwt.encode(payload, config.auth.jwt_secret, algorithm=config.auth.jwt_algorithm)


def decode_access_token(token: str, config: ConfigManager) -> Dict[str, Any]:
    """
    Verify signature and expiry.

    Raises:
        UnauthorizedError: Token expired or invalid
    """
    try:
        return pyjwt.decode(token, config.auth.jwt_secret, algorithms=[config.auth.jwt_algorithm])
    except pyjwt.ExpiredSignatureError:
        raise UnauthorizedError("Token expired")
    except pyjwt.InvalidTokenError:
        raise UnauthorizedError("Invalid token")


def user_to_dict(user: User) -> Dict[str, Any]:
    return {
        "id": str(user.id),
        "name": user.name,
        "email": user.email,
        "role": user.role.value,
        "tenantId": str(user.tenant_id) if user.tenant_id else None,
    }


# ============================================
# LOGIN
# ============================================

def authenticate(session: Session, email: Optional[str], password: Optional[str]) -> User:
    """
    Verify credentials and record the login.

    Unknown email and wrong password fail identically.

    Raises:
        ValidationError: Email or password missing
        UnauthorizedError: Credentials do not match
    """
    if not email or not password:
        raise ValidationError(
            "Missing fields",
            details=[
                {"field": name, "message": f"Missing field: {name}"}
                for name, value in (("email", email), ("password", password)) if not value
            ]
        )

    user = UserRepository(session).get_by_email(email)
    if user is None or not verify_password(password, user.password_hash):
        get_security_logger().log_login_failure(email)
        raise UnauthorizedError("Invalid credentials")

    user.last_login = datetime.now(timezone.utc)
    AuditRepository(session).log(
        action=AuditAction.LOGIN,
        resource_type="user",
        resource_id=user.id,
        actor_id=user.id
    )
    logger.info(f"User logged in: {user.id}")
    return user


# ============================================
# REQUEST DEPENDENCIES
# ============================================

def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Session = Depends(get_session),
    config: ConfigManager = Depends(get_config_instance),
) -> User:
    """Dependency: require a valid bearer token for an existing user."""
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise UnauthorizedError("Unauthorized")

    payload = decode_access_token(credentials.credentials, config)
    user = UserRepository(db).get_by_id(payload.get("sub"))
    if user is None:
        raise UnauthorizedError("User not found")

    request.state.user_id = str(user.id)
    request.state.user_role = user.role.value
    request.state.tenant_id = str(user.tenant_id) if user.tenant_id else None
    return user


def get_current_principal(user: User = Depends(get_current_user)) -> Principal:
    """Dependency: the authenticated caller as a Principal variant."""
    return principal_from_user(user)
