from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from ..auth import get_current_user
from ..models import User

router = APIRouter(prefix="/api", tags=["Users"])


class UserResponse(BaseModel):
    id: str
    email: str
    name: Optional[str]
    role: str
    maxHousesAllowed: int
    referralCount: int
    createdAt: Optional[datetime]


def user_to_response(user: User) -> UserResponse:
    return UserResponse(
        id=user.id,
        email=user.email,
        name=user.name,
        role=user.role,
        maxHousesAllowed=user.max_houses_allowed if user.max_houses_allowed is not None else 2,
        referralCount=user.referral_count or 0,
        createdAt=user.created_at,
    )


@router.get("/user", response_model=UserResponse)
async def get_user(current_user: User = Depends(get_current_user)):
    """Get the signed-in user's profile"""
    return user_to_response(current_user)
