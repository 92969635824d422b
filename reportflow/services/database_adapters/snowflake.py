"""
Snowflake数据库适配器
"""
from sqlalchemy.engine import URL

from .base import DatabaseAdapter
from ..dto import ConnectionDetails


class SnowflakeAdapter(DatabaseAdapter):
    """Snowflake数据库适配器（host 字段填写账号标识）"""
    
    def get_connection_url(self, details: ConnectionDetails) -> URL:
        """构建Snowflake连接URL"""
        return URL.create(
            self.get_driver_name(),
            username=details.username or None,
            password=details.password or None,
            host=details.host or None,
            database=details.database or None,
        )
    
    def get_driver_name(self) -> str:
        """获取Snowflake驱动名称"""
        return "snowflake"
    
    def get_db_type(self) -> str:
        """返回数据库类型"""
        return "snowflake"
