"""Domain Entities - Auth"""
from pydantic import BaseModel, Field
from uuid import UUID, uuid4
from typing import List, Optional

from domain.enums import Role


class User(BaseModel):
    """User Entity"""
    user_id: UUID = Field(default_factory=uuid4)
    username: str
    email: Optional[str] = None
    full_name: Optional[str] = None
    roles: List[Role] = [Role.GUEST]
    disabled: bool = False

    class Config:
        from_attributes = True

    def has_role(self, *roles: Role) -> bool:
        return any(role in self.roles for role in roles)

    @property
    def is_admin(self) -> bool:
        return Role.ADMIN in self.roles


class UserInDB(User):
    """User with hashed password for DB storage"""
    hashed_password: str
