from typing import Optional

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from config import get_settings


class NotAuthenticatedError(Exception):
    """Raised when an operation runs without a resolved owner."""

    def __init__(self, message: str = "Not authenticated") -> None:
        super().__init__(message)


def _serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.secret_key, salt="owner-session")


def issue_token(user_id: int) -> str:
    if user_id is None or user_id <= 0:
        raise ValueError("User id must be a positive integer")
    return _serializer().dumps({"u": user_id})


def resolve_owner(token: Optional[str]) -> int:
    if not token:
        raise NotAuthenticatedError()
    max_age = get_settings().token_max_age_hours * 3600
    try:
        data = _serializer().loads(token, max_age=max_age)
    except SignatureExpired as exc:
        raise NotAuthenticatedError("Session expired") from exc
    except BadSignature as exc:
        raise NotAuthenticatedError("Invalid session token") from exc

    user_id = data.get("u") if isinstance(data, dict) else None
    if not isinstance(user_id, int) or user_id <= 0:
        raise NotAuthenticatedError("Invalid session token")
    return user_id


def require_owner(user_id: Optional[int]) -> int:
    if user_id is None:
        raise NotAuthenticatedError()
    return user_id
