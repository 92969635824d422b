"""
数据库适配器基类
定义所有数据库适配器必须实现的接口
"""
from abc import ABC, abstractmethod
from typing import Dict, Any

from sqlalchemy.engine import URL

from ..dto import ColumnType, ConnectionDetails


class DatabaseAdapter(ABC):
    """数据库适配器基类"""
    
    @abstractmethod
    def get_connection_url(self, details: ConnectionDetails) -> URL:
        """
        构建数据库连接URL
        
        Args:
            details: 连接信息，包含 host, port, database, username, password
            
        Returns:
            SQLAlchemy URL对象（密码会被正确转义）
        """
        pass
    
    @abstractmethod
    def get_driver_name(self) -> str:
        """
        获取SQLAlchemy驱动名称
        
        Returns:
            驱动名称，如 'mysql+pymysql', 'postgresql+psycopg2'
        """
        pass
    
    def get_connect_args(self) -> Dict[str, Any]:
        """
        获取数据库连接参数
        
        Returns:
            连接参数字典
        """
        return {}
    
    def map_column_type(self, sql_type: str) -> ColumnType:
        """
        将数据库列类型映射为报表列类型
        
        Args:
            sql_type: 数据库返回的类型字符串，如 'NUMERIC(10, 2)'
            
        Returns:
            string, number, date, boolean, currency 之一
        """
        name = sql_type.upper()
        if "MONEY" in name:
            return "currency"
        if "BOOL" in name or name == "BIT":
            return "boolean"
        if any(token in name for token in ("DATE", "TIME")):
            return "date"
        if any(token in name for token in ("INT", "NUMERIC", "DECIMAL", "NUMBER", "FLOAT", "DOUBLE", "REAL")):
            return "number"
        return "string"
    
    def _port(self, details: ConnectionDetails):
        return int(details.port) if details.port and details.port.isdigit() else None
    
    def get_db_type(self) -> str:
        """
        获取数据库类型名称
        
        Returns:
            数据库类型，如 'mysql', 'postgres', 'sqlite'
        """
        return self.__class__.__name__.replace('Adapter', '').lower()
