from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from conduit.database import get_db
from conduit.dependencies import get_current_user
from conduit.models import User
from conduit.schemas import Login, Registration, UserResponse, UserUpdate
from conduit.services import token_service, user_service

router = APIRouter(prefix="/api", tags=["users"])


def _user_response(user: User) -> dict:
    return {"user": user_service.user_to_dict(user, token_service.issue(user))}


@router.post("/users", status_code=201, response_model=UserResponse)
async def register(data: Registration, db: AsyncSession = Depends(get_db)):
    user = await user_service.register(db, data.user)
    return _user_response(user)


@router.post("/users/login", response_model=UserResponse)
async def login(data: Login, db: AsyncSession = Depends(get_db)):
    user = await user_service.login(db, data.user)
    return _user_response(user)


@router.get("/user", response_model=UserResponse)
async def current_user(user: User = Depends(get_current_user)):
    return _user_response(user)


@router.put("/user", response_model=UserResponse)
async def update_current_user(
    data: UserUpdate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    user = await user_service.update_current(db, user, data.user)
    return _user_response(user)
