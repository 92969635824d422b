"""
数据源配置模型
"""
from sqlalchemy import Column, String, Text
from .base import Base, TimestampMixin


class DataSourceRecord(Base, TimestampMixin):
    """数据源配置表"""
    __tablename__ = "data_sources"

    id = Column(String(36), primary_key=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    type = Column(String(50), nullable=False)  # postgres, mysql, snowflake, sql, custom
    connection_details = Column(Text, nullable=True)  # JSON，密码单独加密存储
    encrypted_password = Column(Text, nullable=True)
    tables = Column(Text, nullable=False, default="[]")  # JSON array
    views = Column(Text, nullable=False, default="[]")  # JSON array
    source_created_at = Column(String(40), nullable=True)  # 数据源文档中的created_at

    def __repr__(self):
        return f"<DataSourceRecord(id={self.id}, name={self.name}, type={self.type})>"
