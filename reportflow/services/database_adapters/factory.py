"""
数据库适配器工厂
负责创建和管理数据库适配器实例
"""
from typing import Dict, List, Type
from .base import DatabaseAdapter
from .mysql import MySQLAdapter
from .postgresql import PostgreSQLAdapter
from .snowflake import SnowflakeAdapter
from .sqlite import SQLiteAdapter
from .sqlserver import SQLServerAdapter


class DatabaseAdapterFactory:
    """数据库适配器工厂类"""

    # 注册的适配器映射（键为数据源类型）
    _adapters: Dict[str, Type[DatabaseAdapter]] = {
        "postgres": PostgreSQLAdapter,
        "mysql": MySQLAdapter,
        "snowflake": SnowflakeAdapter,
        "sql": SQLServerAdapter,
        "sqlite": SQLiteAdapter,
    }

    @classmethod
    def get_adapter(cls, db_type: str) -> DatabaseAdapter:
        """
        根据数据源类型获取对应的适配器实例

        Args:
            db_type: 数据源类型，如 'postgres', 'mysql', 'snowflake', 'sql'

        Returns:
            数据库适配器实例

        Raises:
            ValueError: 如果数据源类型不支持（包括 custom）
        """
        adapter_class = cls._adapters.get(db_type.lower())

        if not adapter_class:
            raise ValueError(
                f"不支持的数据库类型: {db_type}。"
                f"支持的类型: {', '.join(cls._adapters.keys())}"
            )

        return adapter_class()

    @classmethod
    def get_supported_types(cls) -> List[str]:
        """获取所有支持的数据源类型"""
        return list(cls._adapters.keys())

    @classmethod
    def is_supported(cls, db_type: str) -> bool:
        """检查是否支持指定的数据源类型"""
        return db_type.lower() in cls._adapters
