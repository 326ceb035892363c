from dataclasses import dataclass
from typing import Optional

import bcrypt
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from config import get_settings
from models import UserRole

SESSION_COOKIE = "auth-token"


@dataclass(frozen=True)
class SessionContext:
    user_id: int
    family_id: int
    role: UserRole
    name: str = ""
    email: str = ""

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.admin


def _serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.session_secret, salt="session-token")


def session_max_age_seconds() -> int:
    return get_settings().session_max_age_days * 24 * 3600


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def sign_session(ctx: SessionContext) -> str:
    token_data = {
        "u": ctx.user_id,
        "f": ctx.family_id,
        "r": ctx.role.value,
        "n": ctx.name,
        "e": ctx.email,
    }
    return _serializer().dumps(token_data)


def load_session(token: Optional[str]) -> Optional[SessionContext]:
    if not token:
        return None
    try:
        data = _serializer().loads(token, max_age=session_max_age_seconds())
    except (SignatureExpired, BadSignature):
        return None
    try:
        return SessionContext(
            user_id=int(data["u"]),
            family_id=int(data["f"]),
            role=UserRole(data["r"]),
            name=data.get("n", ""),
            email=data.get("e", ""),
        )
    except (KeyError, TypeError, ValueError):
        return None
