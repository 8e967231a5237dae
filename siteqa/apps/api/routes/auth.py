from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from siteqa.apps.api.deps import get_current_user, get_db
from siteqa.domain.models import User
from siteqa.services.auth.accounts import authenticate, register_user
from siteqa.services.auth.tokens import issue_token
from siteqa.services.teams import get_user_teams, token_team_claims


router = APIRouter(prefix="/auth", tags=["auth"])


class RegisterRequest(BaseModel):
    # Optional at the schema level so missing fields surface as a domain 400.
    email: str | None = None
    password: str | None = None
    name: str | None = None


class LoginRequest(BaseModel):
    email: str | None = None
    password: str | None = None


class UserOut(BaseModel):
    id: str
    email: str
    name: str | None = None


class RegisterResponse(BaseModel):
    message: str
    user: UserOut


class LoginResponse(BaseModel):
    token: str
    user: UserOut


def _user_out(user: User) -> UserOut:
    return UserOut(id=user.id, email=user.email, name=user.name)


@router.post("/register", status_code=201, response_model=RegisterResponse)
async def register(payload: RegisterRequest, db: AsyncSession = Depends(get_db)) -> RegisterResponse:
    user = await register_user(db, email=payload.email, password=payload.password, name=payload.name)
    return RegisterResponse(message="User registered", user=_user_out(user))


@router.post("/login", response_model=LoginResponse)
async def login(payload: LoginRequest, db: AsyncSession = Depends(get_db)) -> LoginResponse:
    user = await authenticate(db, email=payload.email, password=payload.password)
    token = issue_token(
        user_id=user.id,
        email=user.email,
        name=user.name,
        teams=await token_team_claims(db, user.id),
    )
    return LoginResponse(token=token, user=_user_out(user))


@router.get("/me")
async def me(user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> dict:
    return {"user": _user_out(user).model_dump(), "teams": await get_user_teams(db, user.id)}
