"""
数据源管理器
数据源目录的持久化、连接测试、结构推断和开放/元数据维护
"""
import json
from typing import Any, Dict, List, Optional

from .app_state import AppState, get_app_state
from .database_connector import DatabaseConnector, SchemaInfo, get_database_connector
from .dto import ConnectionDetails, DataSource, TableDef, ViewDef
from .encryption_service import EncryptionService, get_encryption_service
from .exceptions import NotFoundError, ReportValidationError
from .llm_service import LLMService, get_llm_service
from ..database import Database, get_database
from ..models import DataSourceRecord
from ..utils.logger import get_logger

logger = get_logger(__name__)

MASKED_PASSWORD = "********"


class DataSourceManager:
    """数据源管理器类"""

    def __init__(
        self,
        db: Optional[Database] = None,
        connector: Optional[DatabaseConnector] = None,
        llm_service: Optional[LLMService] = None,
        encryption_service: Optional[EncryptionService] = None,
        app_state: Optional[AppState] = None
    ):
        """
        初始化数据源管理器

        Args:
            db: 配置数据库，如果为None则使用全局实例
            connector: 实时查询连接器，如果为None则使用全局实例
            llm_service: AI服务，如果为None则使用全局实例
            encryption_service: 密码加密服务，如果为None则使用全局实例
            app_state: 应用状态，数据源变更后同步到其中
        """
        self.db = db or get_database()
        self.connector = connector or get_database_connector()
        self._llm_service = llm_service
        self.encryption = encryption_service or get_encryption_service()
        self.state = app_state or get_app_state()

    @property
    def llm(self) -> LLMService:
        # 只有 custom 数据源需要AI服务，延迟创建
        if self._llm_service is None:
            self._llm_service = get_llm_service()
        return self._llm_service

    # ============ 记录转换 ============

    def _to_record(self, data_source: DataSource, record: Optional[DataSourceRecord] = None) -> DataSourceRecord:
        record = record or DataSourceRecord(id=data_source.id)
        record.name = data_source.name
        record.description = data_source.description
        record.type = data_source.type
        record.tables = json.dumps([t.to_wire() for t in data_source.tables], ensure_ascii=False)
        record.views = json.dumps([v.to_wire() for v in data_source.views], ensure_ascii=False)
        record.source_created_at = data_source.created_at

        details = data_source.connection_details
        if details is None:
            record.connection_details = None
            record.encrypted_password = None
        else:
            record.connection_details = json.dumps(details.model_dump(exclude={"password"}))
            # 未提供新密码时保留原密码
            if details.password and details.password != MASKED_PASSWORD:
                record.encrypted_password = self.encryption.encrypt(details.password)
        return record

    def _from_record(self, record: DataSourceRecord) -> DataSource:
        details = None
        if record.connection_details:
            details = ConnectionDetails(**json.loads(record.connection_details))
            details.password = self.encryption.decrypt(record.encrypted_password) or None

        payload: Dict[str, Any] = {
            "id": record.id,
            "name": record.name,
            "description": record.description or "",
            "type": record.type,
            "connection_details": details,
            "tables": [TableDef.model_validate(t) for t in json.loads(record.tables or "[]")],
            "views": [ViewDef.model_validate(v) for v in json.loads(record.views or "[]")],
        }
        if record.source_created_at:
            payload["created_at"] = record.source_created_at
        return DataSource(**payload)

    @staticmethod
    def mask_password(data_source: DataSource) -> DataSource:
        """返回隐藏连接密码的副本，用于API响应"""
        if data_source.connection_details is None or not data_source.connection_details.password:
            return data_source
        details = data_source.connection_details.model_copy(update={"password": MASKED_PASSWORD})
        return data_source.model_copy(update={"connection_details": details})

    # ============ CRUD ============

    def list_data_sources(self) -> List[DataSource]:
        """获取所有数据源（按创建时间排序），并同步到应用状态"""
        with self.db.get_session() as session:
            records = session.query(DataSourceRecord).order_by(DataSourceRecord.created_at).all()
            data_sources = [self._from_record(r) for r in records]

        self.state.set_data_sources(data_sources)
        logger.info(f"加载数据源列表: count={len(data_sources)}")
        return data_sources

    def get_data_source(self, data_source_id: str) -> DataSource:
        """
        获取单个数据源

        Raises:
            NotFoundError: 如果数据源不存在
        """
        with self.db.get_session() as session:
            record = session.get(DataSourceRecord, data_source_id)
            if record is None:
                raise NotFoundError("DataSource", data_source_id)
            return self._from_record(record)

    def create_data_source(self, data_source: DataSource) -> DataSource:
        """
        创建数据源

        Raises:
            ReportValidationError: 如果ID已存在
        """
        with self.db.get_session() as session:
            if session.get(DataSourceRecord, data_source.id) is not None:
                raise ReportValidationError(f"数据源ID已存在: {data_source.id}", field="id")
            session.add(self._to_record(data_source))

        created = self.get_data_source(data_source.id)
        self.state.add_data_source(created)
        logger.info(f"数据源创建成功: id={created.id}, name={created.name}, type={created.type}")
        return created

    def update_data_source(self, data_source_id: str, data_source: DataSource) -> DataSource:
        """
        更新数据源（ID以路径参数为准）

        Raises:
            NotFoundError: 如果数据源不存在
        """
        data_source = data_source.model_copy(update={"id": data_source_id})

        with self.db.get_session() as session:
            record = session.get(DataSourceRecord, data_source_id)
            if record is None:
                raise NotFoundError("DataSource", data_source_id)
            self._to_record(data_source, record)

        # 连接信息可能已变化，丢弃缓存的连接
        self.connector.close_connection(data_source_id)

        updated = self.get_data_source(data_source_id)
        self.state.update_data_source(updated)
        logger.info(f"数据源更新成功: id={data_source_id}")
        return updated

    def delete_data_source(self, data_source_id: str):
        """
        删除数据源

        Raises:
            NotFoundError: 如果数据源不存在
        """
        with self.db.get_session() as session:
            record = session.get(DataSourceRecord, data_source_id)
            if record is None:
                raise NotFoundError("DataSource", data_source_id)
            session.delete(record)

        self.connector.close_connection(data_source_id)
        self.state.remove_data_source(data_source_id)
        logger.info(f"数据源删除成功: id={data_source_id}")

    # ============ 连接测试与结构推断 ============

    async def test_connection(self, db_type: str, connection_details: ConnectionDetails) -> SchemaInfo:
        """测试连接并读取表和视图（默认不开放）"""
        logger.info(f"测试数据源连接: type={db_type}, host={connection_details.host}")
        return await self.connector.test_connection(db_type, connection_details)

    async def discover_schema(
        self,
        kind: str,
        name: str,
        context: str = "",
        connection_details: Optional[ConnectionDetails] = None
    ) -> SchemaInfo:
        """
        获取数据源结构

        custom 类型由AI根据名称和业务描述推断（表默认开放），
        其他类型连接数据库读取真实结构。

        Raises:
            ReportValidationError: 如果非 custom 类型缺少连接信息
        """
        if kind == "custom":
            tables = await self.llm.discover_schema(kind, name, context)
            return SchemaInfo(tables=tables, views=[])

        if connection_details is None:
            raise ReportValidationError("连接信息不能为空", field="connectionDetails")
        return await self.test_connection(kind, connection_details)

    # ============ 开放状态与元数据 ============

    def _find_or_raise(self, data_source: DataSource, table_id: str) -> TableDef:
        table_def, _ = data_source.find_table(table_id)
        if table_def is None:
            raise NotFoundError("Table", table_id)
        return table_def

    def toggle_table_exposure(self, data_source_id: str, table_id: str) -> DataSource:
        """切换表/视图是否对报表作者开放"""
        data_source = self.get_data_source(data_source_id)
        table_def = self._find_or_raise(data_source, table_id)
        table_def.exposed = not table_def.exposed
        logger.info(f"切换开放状态: table={table_def.name}, exposed={table_def.exposed}")
        return self.update_data_source(data_source_id, data_source)

    def toggle_view_exposure(self, data_source_id: str, view_id: str) -> DataSource:
        """切换视图开放状态（表和视图共用ID空间）"""
        return self.toggle_table_exposure(data_source_id, view_id)

    def update_table_metadata(
        self,
        data_source_id: str,
        table_id: str,
        alias: Optional[str] = None,
        description: Optional[str] = None
    ) -> DataSource:
        """更新表/视图的别名和描述（None 表示不修改）"""
        data_source = self.get_data_source(data_source_id)
        table_def = self._find_or_raise(data_source, table_id)
        if alias is not None:
            table_def.alias = alias
        if description is not None:
            table_def.description = description
        return self.update_data_source(data_source_id, data_source)

    def update_column_metadata(
        self,
        data_source_id: str,
        table_id: str,
        column_id: str,
        alias: Optional[str] = None,
        description: Optional[str] = None,
        sample_value: Optional[str] = None
    ) -> DataSource:
        """更新列的别名、描述和示例值（None 表示不修改）"""
        data_source = self.get_data_source(data_source_id)
        table_def = self._find_or_raise(data_source, table_id)

        for index, col_def in enumerate(table_def.columns):
            if col_def.id == column_id:
                changes = {
                    key: value
                    for key, value in (("alias", alias), ("description", description), ("sample_value", sample_value))
                    if value is not None
                }
                table_def.columns[index] = col_def.model_copy(update=changes)
                return self.update_data_source(data_source_id, data_source)

        raise NotFoundError("Column", column_id)


# 全局数据源管理器实例
_data_source_manager = None


def get_data_source_manager() -> DataSourceManager:
    """获取全局数据源管理器实例"""
    global _data_source_manager
    if _data_source_manager is None:
        _data_source_manager = DataSourceManager()
    return _data_source_manager
