from typing import Callable

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError
from sqlmodel import Session, select

from warehouse.db import get_session
from warehouse.error import _auth_401, _forbidden_403
from warehouse.models import User
from warehouse.security import decode_token

# auto_error=False：没带 token 时走我们自己的 401 格式
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)

TRANSACT = "inventory:transact"


def require_user(
    token: str | None = Depends(oauth2_scheme),
    session: Session = Depends(get_session),
) -> User:
    if not token:
        raise _auth_401("NOT_AUTHENTICATED", "未登录或登录已失效，请重新登录")

    # token 无效 / 过期 / secret_key 不一致
    try:
        username = decode_token(token)
    except (JWTError, ValueError):
        raise _auth_401("INVALID_TOKEN", "Token 无效或已过期，请重新登录")

    # 账号被删/数据被清空
    user = session.exec(select(User).where(User.username == username)).first()
    if not user:
        raise _auth_401("USER_NOT_FOUND", "用户不存在或已被删除")

    return user


def has_permission(user: User, permission: str) -> bool:
    """
    admin 全部放行；
    worker 默认可以做出入库，除非 permissions 里显式写了 false；
    其余权限看 permissions[p] 是否为真。
    """
    if user.role == "admin":
        return True
    perms = user.permissions or {}
    if permission == TRANSACT and user.role == "worker":
        return perms.get(permission) is not False
    return bool(perms.get(permission))


def require_permission(permission: str) -> Callable[..., User]:
    def checker(user: User = Depends(require_user)) -> User:
        if not has_permission(user, permission):
            raise _forbidden_403(f"缺少权限：{permission}")
        return user

    return checker


def require_admin(user: User = Depends(require_user)) -> User:
    if user.role != "admin":
        raise _forbidden_403("仅管理员可操作")
    return user
