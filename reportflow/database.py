"""
数据库初始化和连接管理
存储数据源目录、报表配置和浏览记录
"""
import os
from pathlib import Path
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session as SQLAlchemySession
from contextlib import contextmanager
from typing import Generator, Optional

from .models.base import Base
from .models import DataSourceRecord, ReportRecord, ReportViewRecord  # noqa: F401  注册模型
from .utils.logger import get_logger

logger = get_logger(__name__)


class Database:
    """数据库管理类"""

    def __init__(self, db_url: Optional[str] = None):
        """
        初始化数据库连接

        Args:
            db_url: 数据库URL，如果为None则从环境变量读取
        """
        if db_url is None:
            project_root = Path(__file__).resolve().parent.parent
            default_db_path = project_root / "data" / "config.db"

            db_path = os.getenv("CONFIG_DB_PATH", str(default_db_path))
            # 确保data目录存在
            os.makedirs(os.path.dirname(db_path) or ".", exist_ok=True)
            db_url = f"sqlite:///{db_path}"

        engine_kwargs = {
            "pool_pre_ping": True,  # 使用前检查连接是否有效
            "echo": False,
        }

        # SQLite特殊配置
        if db_url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False}
        else:
            engine_kwargs.update(pool_size=20, max_overflow=40, pool_timeout=30, pool_recycle=3600)

        self.engine = create_engine(db_url, **engine_kwargs)

        self.SessionLocal = sessionmaker(
            autocommit=False,
            autoflush=False,
            bind=self.engine,
            expire_on_commit=False  # 提交后不过期对象，减少查询
        )

    def create_tables(self):
        """创建所有表"""
        Base.metadata.create_all(bind=self.engine)

    def drop_tables(self):
        """删除所有表（谨慎使用）"""
        Base.metadata.drop_all(bind=self.engine)

    @contextmanager
    def get_session(self) -> Generator[SQLAlchemySession, None, None]:
        """
        获取数据库会话的上下文管理器

        Yields:
            SQLAlchemy会话对象
        """
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


# 全局数据库实例
_db_instance = None


def get_database() -> Database:
    """获取全局数据库实例"""
    global _db_instance
    if _db_instance is None:
        _db_instance = Database()
    return _db_instance


def init_database():
    """初始化数据库（创建所有表）"""
    db = get_database()
    db.create_tables()
    logger.info("数据库初始化完成")


if __name__ == "__main__":
    # 直接运行此脚本时初始化数据库
    init_database()
