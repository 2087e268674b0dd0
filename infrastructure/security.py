from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import UUID, uuid4
from jose import JWTError, jwt
from passlib.context import CryptContext
import hashlib

from infrastructure.config import settings

SECRET_KEY = settings.security.secret_key
ALGORITHM = settings.security.algorithm
ACCESS_TOKEN_EXPIRE_MINUTES = settings.security.access_token_expire_minutes
INVITE_TOKEN_EXPIRE_DAYS = settings.security.invite_token_expire_days

pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    # bcrypt 4.x compatibility: explicitly handle password length
    bcrypt__ident="2b"
)


class InvalidTokenError(ValueError):
    """Token could not be decoded or has expired"""


def _prepare_password(password: str) -> str:
    """
    Prepare password for bcrypt to handle strings > 72 bytes.
    bcrypt has a 72-byte password limit. If password is longer,
    we pre-hash it with SHA256 to get a safe length string.
    """
    password_bytes = password.encode('utf-8')
    if len(password_bytes) > 72:
        return hashlib.sha256(password_bytes).hexdigest()
    return password


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify password against hash"""
    return pwd_context.verify(_prepare_password(plain_password), hashed_password)


def get_password_hash(password: str) -> str:
    """Generate password hash"""
    return pwd_context.hash(_prepare_password(password))


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create JWT access token"""
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=15)

    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)
    return encoded_jwt


def create_invite_token(
    customer_id: UUID,
    estimate_id: Optional[UUID] = None,
    booking_id: Optional[UUID] = None
) -> str:
    """Create the shareable token used to invite guests to an estimate or booking"""
    claims = {
        "customerId": str(customer_id),
        "iat": datetime.now(timezone.utc),
        # Refreshing must yield a different token even within the same second
        "jti": uuid4().hex,
    }
    if estimate_id:
        claims["estimateId"] = str(estimate_id)
    if booking_id:
        claims["bookingId"] = str(booking_id)
    return create_access_token(claims, expires_delta=timedelta(days=INVITE_TOKEN_EXPIRE_DAYS))


def decode_token(token: str) -> dict:
    """Decode and verify a token issued by this service"""
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError as e:
        raise InvalidTokenError(f"Invalid token: {e}") from None
