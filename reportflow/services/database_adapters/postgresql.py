"""
PostgreSQL数据库适配器
"""
from sqlalchemy.engine import URL

from .base import DatabaseAdapter
from ..dto import ConnectionDetails


class PostgreSQLAdapter(DatabaseAdapter):
    """PostgreSQL数据库适配器"""
    
    def get_connection_url(self, details: ConnectionDetails) -> URL:
        """构建PostgreSQL连接URL"""
        return URL.create(
            self.get_driver_name(),
            username=details.username or None,
            password=details.password or None,
            host=details.host or None,
            port=self._port(details),
            database=details.database or None,
        )
    
    def get_driver_name(self) -> str:
        """获取PostgreSQL驱动名称"""
        return "postgresql+psycopg2"
    
    def get_db_type(self) -> str:
        """返回数据库类型"""
        return "postgres"
