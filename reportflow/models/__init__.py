"""
数据库模型包
"""
from .base import Base
from .data_source import DataSourceRecord
from .report import ReportRecord, ReportViewRecord

__all__ = [
    "Base",
    "DataSourceRecord",
    "ReportRecord",
    "ReportViewRecord",
]
