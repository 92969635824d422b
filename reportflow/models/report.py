"""
报表配置模型
"""
from sqlalchemy import Column, String, Text, DateTime, Index
from .base import Base, TimestampMixin
from ..utils.datetime_helper import utc_now


class ReportRecord(Base, TimestampMixin):
    """报表配置表"""
    __tablename__ = "reports"

    id = Column(String(36), primary_key=True)
    name = Column(String(255), nullable=False)
    data_source_id = Column(String(36), nullable=False, index=True)
    owner_id = Column(String(36), nullable=False, index=True)
    visibility = Column(String(20), nullable=False, default="private")  # public or private
    config = Column(Text, nullable=False)  # JSON: 完整的报表配置文档

    def __repr__(self):
        return f"<ReportRecord(id={self.id}, name={self.name})>"


class ReportViewRecord(Base):
    """报表浏览记录表"""
    __tablename__ = "report_views"
    __table_args__ = (
        Index("ix_report_views_user_viewed", "user_id", "viewed_at"),
    )

    id = Column(String(36), primary_key=True)
    report_id = Column(String(36), nullable=False, index=True)
    user_id = Column(String(36), nullable=False)
    viewed_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    def __repr__(self):
        return f"<ReportViewRecord(report_id={self.report_id}, user_id={self.user_id})>"
