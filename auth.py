from typing import Iterator, Optional

from fastapi import Depends, Request
from sqlalchemy.orm import Session, sessionmaker

from config import Settings
from errors import Unauthorized
from models import User
from services import load_public_user
from tokens import TokenService

ACCESS_COOKIE = "accessToken"
REFRESH_COOKIE = "refreshToken"


def get_settings_from_app(request: Request) -> Settings:
    return request.app.state.settings


def get_token_service(request: Request) -> TokenService:
    return request.app.state.tokens


def get_session_factory(request: Request) -> sessionmaker:
    return request.app.state.session_factory


def get_db(request: Request) -> Iterator[Session]:
    db = get_session_factory(request)()
    try:
        yield db
    finally:
        db.close()


def extract_token(request: Request) -> Optional[str]:
    token = request.cookies.get(ACCESS_COOKIE)
    if token:
        return token
    header = request.headers.get("Authorization", "")
    scheme, _, credentials = header.partition(" ")
    if scheme.lower() == "bearer" and credentials.strip():
        return credentials.strip()
    return None


def get_current_user(
    request: Request,
    db: Session = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
) -> User:
    token = extract_token(request)
    if not token:
        raise Unauthorized("Unauthorized request: No token provided")

    claims = tokens.verify_access_token(token)
    user = load_public_user(db, claims["id"])
    if not user:
        raise Unauthorized("Invalid Access Token: User not found")

    request.state.user = user
    return user
