"""
SQLite数据库适配器（本地开发和测试使用）
"""
from typing import Dict, Any

from sqlalchemy.engine import URL

from .base import DatabaseAdapter
from ..dto import ConnectionDetails


class SQLiteAdapter(DatabaseAdapter):
    """SQLite数据库适配器，database 字段为数据库文件路径"""
    
    def get_connection_url(self, details: ConnectionDetails) -> URL:
        """构建SQLite连接URL"""
        return URL.create(self.get_driver_name(), database=details.database or None)
    
    def get_driver_name(self) -> str:
        """获取SQLite驱动名称"""
        return "sqlite"
    
    def get_connect_args(self) -> Dict[str, Any]:
        """获取SQLite连接参数"""
        return {"check_same_thread": False}
    
    def get_db_type(self) -> str:
        """返回数据库类型"""
        return "sqlite"
