from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from jose import jwt
from passlib.context import CryptContext

from warehouse.config import settings

ALGORITHM = "HS256"

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return pwd_context.verify(password, password_hash)


def create_access_token(subject: str, role: Optional[str] = None, expire_minutes: Optional[int] = None) -> str:
    if expire_minutes is None:
        expire_minutes = settings.access_token_expire_minutes

    iat = int(datetime.now(timezone.utc).timestamp())
    payload = {
        "sub": subject,
        "iat": iat,                        # 签发时间
        "exp": iat + expire_minutes * 60,  # 过期时间
        "jti": uuid4().hex,
        "type": "access",
    }
    if role:
        # 只做展示用；权限判断以库里的 User 为准
        payload["role"] = role
    return jwt.encode(payload, settings.secret_key, algorithm=ALGORITHM)


def decode_token(token: str) -> str:
    """校验签名和过期时间，返回用户名 (sub)。失败抛 JWTError / ValueError。"""
    payload = jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM])

    sub = payload.get("sub")
    if not sub:
        raise ValueError("Missing subject")
    if payload.get("type") not in (None, "access"):
        raise ValueError("Invalid token type")
    return sub
