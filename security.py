import secrets
from dataclasses import dataclass

import bcrypt
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from config import get_settings

ACCESS_SALT = "access-token"
REFRESH_SALT = "refresh-token"


class TokenExpired(Exception):
    pass


class TokenInvalid(Exception):
    pass


@dataclass(frozen=True)
class TokenPayload:
    user_id: int
    email: str


def hash_password(password: str) -> str:
    rounds = get_settings().bcrypt_rounds
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds)).decode(
        "utf-8"
    )


def verify_password(password: str, hashed_password: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed_password.encode("utf-8"))
    except ValueError:
        return False


def _serializer(salt: str) -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(get_settings().secret_key, salt=salt)


def generate_access_token(user_id: int, email: str) -> str:
    return _serializer(ACCESS_SALT).dumps({"u": user_id, "e": email})


def generate_refresh_token(user_id: int, email: str) -> str:
    # The nonce keeps tokens issued within the same second distinct.
    return _serializer(REFRESH_SALT).dumps(
        {"u": user_id, "e": email, "n": secrets.token_hex(8)}
    )


def _load(token: str, salt: str, max_age: int) -> TokenPayload:
    try:
        data = _serializer(salt).loads(token, max_age=max_age)
    except SignatureExpired as exc:
        raise TokenExpired("Token expired") from exc
    except BadSignature as exc:
        raise TokenInvalid("Invalid token") from exc
    try:
        return TokenPayload(user_id=int(data["u"]), email=str(data["e"]))
    except (KeyError, TypeError, ValueError) as exc:
        raise TokenInvalid("Invalid token") from exc


def verify_access_token(token: str) -> TokenPayload:
    return _load(token, ACCESS_SALT, get_settings().access_token_ttl_secs)


def verify_refresh_token(token: str) -> TokenPayload:
    return _load(token, REFRESH_SALT, get_settings().refresh_token_ttl_secs)


def generate_otp() -> str:
    return f"{secrets.randbelow(900_000) + 100_000}"
