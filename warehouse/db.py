import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator

from fastapi import HTTPException
from sqlalchemy import event
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlmodel import SQLModel, Session, create_engine

from warehouse.config import settings
from warehouse.error import CommitFailed

logger = logging.getLogger(__name__)


def make_engine(url: str, **kwargs):
    if url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
    engine = create_engine(url, **kwargs)

    if url.startswith("sqlite"):
        # SQLite 默认不校验外键
        @event.listens_for(engine, "connect")
        def _fk_on(dbapi_conn, _record):
            cur = dbapi_conn.cursor()
            cur.execute("PRAGMA foreign_keys=ON")
            cur.close()

    return engine


engine = make_engine(settings.database_url)


def utcnow() -> datetime:
    # 库里统一存 UTC-naive
    return datetime.now(timezone.utc).replace(tzinfo=None)


def create_db_and_tables() -> None:
    SQLModel.metadata.create_all(engine)


def get_session():
    session = Session(engine)
    try:
        yield session
    except HTTPException:
        # 业务/鉴权错误：unit_of_work 已经回滚过了
        raise
    except Exception as e:
        session.rollback()
        logger.error("rollback: %s %s", type(e).__name__, e)
        raise
    finally:
        session.close()


@contextmanager
def unit_of_work(session: Session) -> Iterator[Session]:
    """
    一次原子提交：块内全部读写要么一起 commit，要么一起 rollback。

    - 业务异常（库存不足等）原样抛出
    - 提交阶段的约束/锁冲突统一转成 CommitFailed，调用方可整体重试
    - 不做任何自动重试
    """
    try:
        yield session
        session.commit()
    except (IntegrityError, OperationalError) as e:
        session.rollback()
        logger.error("unit of work rolled back: %s", e)
        raise CommitFailed() from e
    except Exception:
        session.rollback()
        raise
