"""API Dependencies - Authentication"""
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from uuid import UUID
from typing import Optional

from domain.auth import User, UserInDB
from domain.enums import Role
from infrastructure.repositories.in_memory_repositories import InMemoryUserRepository
from infrastructure.security import InvalidTokenError, decode_token, get_password_hash
from api.schemas import TokenData

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="token")

user_repository = InMemoryUserRepository()

# Demo accounts, stored on first lookup so bcrypt only runs when needed
_demo_users = {
    "admin": {
        "username": "admin",
        "full_name": "Admin User",
        "email": "admin@example.com",
        "plain_password": "admin123",
        "roles": [Role.ADMIN],
        "user_id": "123e4567-e89b-12d3-a456-426614174000"
    },
    "host": {
        "username": "host",
        "full_name": "Host User",
        "email": "host@example.com",
        "plain_password": "host1234",
        "roles": [Role.HOST, Role.CUSTOMER],
        "user_id": "123e4567-e89b-12d3-a456-426614174001"
    },
    "customer": {
        "username": "customer",
        "full_name": "Customer User",
        "email": "customer@example.com",
        "plain_password": "customer123",
        "roles": [Role.CUSTOMER],
        "user_id": "123e4567-e89b-12d3-a456-426614174002"
    },
    "guest": {
        "username": "guest",
        "full_name": "Guest User",
        "email": "guest@example.com",
        "plain_password": "guest1234",
        "roles": [Role.GUEST],
        "user_id": "123e4567-e89b-12d3-a456-426614174003"
    },
}


async def get_user(username: str) -> Optional[UserInDB]:
    user = await user_repository.find_by_username(username)
    if user is not None:
        return user

    demo = _demo_users.get(username)
    if demo is None:
        return None
    user_dict = demo.copy()
    user_dict["hashed_password"] = get_password_hash(user_dict.pop("plain_password"))
    user_dict["user_id"] = UUID(user_dict["user_id"])
    return await user_repository.save(UserInDB(**user_dict))


async def get_current_user(token: str = Depends(oauth2_scheme)):
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = decode_token(token)
        username: str = payload.get("sub")
        if username is None:
            raise credentials_exception
        token_data = TokenData(username=username)
    except InvalidTokenError:
        raise credentials_exception

    user = await get_user(username=token_data.username)
    if user is None:
        raise credentials_exception
    return user

async def get_current_active_user(current_user: User = Depends(get_current_user)):
    if current_user.disabled:
        raise HTTPException(status_code=400, detail="Inactive user")
    return current_user

oauth2_optional_scheme = OAuth2PasswordBearer(tokenUrl="token", auto_error=False)

async def get_optional_user(token: Optional[str] = Depends(oauth2_optional_scheme)) -> Optional[User]:
    """Caller when a valid bearer token is sent, otherwise None"""
    if not token:
        return None
    try:
        payload = decode_token(token)
    except InvalidTokenError:
        return None
    username = payload.get("sub")
    if username is None:
        return None
    user = await get_user(username)
    if user is None or user.disabled:
        return None
    return user
