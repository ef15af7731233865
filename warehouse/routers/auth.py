import logging

from fastapi import APIRouter, Depends
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from warehouse.db import get_session
from warehouse.deps import require_user
from warehouse.error import _auth_401, abort
from warehouse.models import User
from warehouse.schemas import Token, UserCreate, UserRead
from warehouse.security import create_access_token, hash_password, verify_password

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/register")
def register(data: UserCreate, session: Session = Depends(get_session)):
    username = data.username.strip()
    if not username:
        abort(400, "BAD_REQUEST", "用户名不能为空")

    existing = session.exec(select(User).where(User.username == username)).first()
    if existing:
        abort(409, "USERNAME_EXISTS", "用户名已存在")

    if len(data.password.encode("utf-8")) > 72:
        abort(400, "PASSWORD_TOO_LONG", "密码太长（限制 72 bytes），请缩短后再试")

    user = User(username=username, password_hash=hash_password(data.password))
    session.add(user)

    # 并发注册时 unique 冲突兜底
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        abort(409, "USERNAME_EXISTS", "用户名已存在")

    logger.info("user registered: %s", username)
    return {"ok": True}


@router.post("/login", response_model=Token)
def login(
    form_data: OAuth2PasswordRequestForm = Depends(),
    session: Session = Depends(get_session),
):
    user = session.exec(select(User).where(User.username == form_data.username)).first()
    if (not user) or (not verify_password(form_data.password, user.password_hash)):
        raise _auth_401("INVALID_CREDENTIALS", "用户名或密码错误")

    token = create_access_token(user.username, role=user.role)
    return {"access_token": token, "token_type": "bearer"}


@router.get("/me", response_model=UserRead)
def me(user: User = Depends(require_user)):
    return user


def ensure_admin(session: Session, username: str, password: str) -> User:
    """启动时用：没有就建一个 admin，已存在就把角色提成 admin（密码不动）。"""
    user = session.exec(select(User).where(User.username == username)).first()
    if user is None:
        user = User(username=username, password_hash=hash_password(password), role="admin")
        logger.info("bootstrap admin created: %s", username)
    elif user.role != "admin":
        user.role = "admin"
        logger.info("user promoted to admin: %s", username)
    session.add(user)
    session.commit()
    session.refresh(user)
    return user
