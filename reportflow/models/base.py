"""
SQLAlchemy基础配置
"""
from sqlalchemy import Column, DateTime
from sqlalchemy.orm import declarative_base

from ..utils.datetime_helper import utc_now

Base = declarative_base()


class TimestampMixin:
    """时间戳混入类"""
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)
