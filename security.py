import secrets

import bcrypt
from itsdangerous import BadSignature, URLSafeTimedSerializer

from config import get_settings


class InvalidToken(Exception):
    pass


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def _access_serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.access_token_secret, salt="access-token")


def _refresh_serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.refresh_token_secret, salt="refresh-token")


def _load_user_id(serializer: URLSafeTimedSerializer, token: str, max_age: int) -> int:
    try:
        data = serializer.loads(token, max_age=max_age)
    except BadSignature as exc:
        # expired and tampered tokens are reported the same way
        raise InvalidToken("Invalid or expired token") from exc
    user_id = data.get("uid") if isinstance(data, dict) else None
    if not isinstance(user_id, int):
        raise InvalidToken("Invalid or expired token")
    return user_id


def issue_access_token(user_id: int) -> str:
    return _access_serializer().dumps({"uid": user_id})


def issue_refresh_token(user_id: int) -> str:
    # the nonce keeps tokens unique when one user logs in twice within a second
    return _refresh_serializer().dumps({"uid": user_id, "jti": secrets.token_hex(8)})


def verify_access_token(token: str) -> int:
    settings = get_settings()
    return _load_user_id(_access_serializer(), token, settings.access_token_ttl_secs)


def verify_refresh_token(token: str) -> int:
    """Check the signature and age only; the stored row is checked by the caller."""
    settings = get_settings()
    return _load_user_id(_refresh_serializer(), token, settings.refresh_token_ttl_secs)
