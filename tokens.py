import secrets
from typing import Any

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from config import Settings
from errors import ExpiredToken, InvalidToken
from models import User

ACCESS_SALT = "access-token"
REFRESH_SALT = "refresh-token"


class TokenService:
    """Issues and verifies the signed session tokens.

    Access tokens carry the identity claims used by the API; refresh tokens
    carry only the user id plus a nonce and are signed with a separate secret,
    so one can never be replayed as the other.
    """

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    @staticmethod
    def _serializer(secret: str, salt: str) -> URLSafeTimedSerializer:
        return URLSafeTimedSerializer(secret, salt=salt)

    def issue_access_token(self, user: User) -> str:
        serializer = self._serializer(self.settings.access_token_secret, ACCESS_SALT)
        return serializer.dumps(
            {"id": user.id, "email": user.email, "fullName": user.full_name}
        )

    def issue_refresh_token(self, user: User) -> str:
        serializer = self._serializer(
            self.settings.refresh_token_secret, REFRESH_SALT
        )
        return serializer.dumps({"id": user.id, "jti": secrets.token_hex(8)})

    def verify(
        self, token: str, secret: str, max_age: int, *, salt: str = ACCESS_SALT
    ) -> dict[str, Any]:
        serializer = self._serializer(secret, salt)
        try:
            claims = serializer.loads(token, max_age=max_age)
        except SignatureExpired as exc:
            raise ExpiredToken("Token has expired") from exc
        except BadSignature as exc:
            raise InvalidToken("Invalid token") from exc
        if not isinstance(claims, dict) or not isinstance(claims.get("id"), int):
            raise InvalidToken("Invalid token")
        return claims

    def verify_access_token(self, token: str) -> dict[str, Any]:
        return self.verify(
            token,
            self.settings.access_token_secret,
            self.settings.access_token_expiry_secs,
            salt=ACCESS_SALT,
        )

    def verify_refresh_token(self, token: str) -> dict[str, Any]:
        return self.verify(
            token,
            self.settings.refresh_token_secret,
            self.settings.refresh_token_expiry_secs,
            salt=REFRESH_SALT,
        )
