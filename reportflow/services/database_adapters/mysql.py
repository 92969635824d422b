"""
MySQL数据库适配器
"""
from sqlalchemy.engine import URL

from .base import DatabaseAdapter
from ..dto import ColumnType, ConnectionDetails


class MySQLAdapter(DatabaseAdapter):
    """MySQL数据库适配器"""
    
    def get_connection_url(self, details: ConnectionDetails) -> URL:
        """构建MySQL连接URL"""
        return URL.create(
            self.get_driver_name(),
            username=details.username or None,
            password=details.password or None,
            host=details.host or None,
            port=self._port(details),
            database=details.database or None,
        )
    
    def get_driver_name(self) -> str:
        """获取MySQL驱动名称"""
        return "mysql+pymysql"
    
    def map_column_type(self, sql_type: str) -> ColumnType:
        """MySQL的 TINYINT(1) 用于存储布尔值"""
        if sql_type.upper().startswith("TINYINT(1)"):
            return "boolean"
        return super().map_column_type(sql_type)
    
    def get_db_type(self) -> str:
        """返回数据库类型"""
        return "mysql"
