"""
数据库连接器
管理数据源连接，执行单表实时查询并读取表结构
"""
import asyncio
import uuid
from datetime import date, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, List, Optional, Sequence

from sqlalchemy import and_, column, create_engine, inspect, or_, select, table, text
from sqlalchemy.engine import Engine
from sqlalchemy.sql import ColumnElement, Select

from .database_adapters import DatabaseAdapter, DatabaseAdapterFactory
from .dto import (
    ColumnDef,
    ConnectionDetails,
    DataSource,
    FilterCondition,
    SortCondition,
    TableDef,
    ViewDef,
)
from .exceptions import CollaboratorError, ReportValidationError
from .operators import PERIOD_OPERATORS, operator_arity
from ..utils.datetime_helper import period_bounds
from ..utils.logger import get_logger, log_database_connection_error, log_query_error

logger = get_logger(__name__)

_TRUE_VALUES = {"true", "1", "yes", "y", "t"}
_FALSE_VALUES = {"false", "0", "no", "n", "f"}


class SchemaInfo:
    """数据库Schema信息"""
    def __init__(self, tables: List[TableDef], views: List[ViewDef]):
        self.tables = tables
        self.views = views

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tables": [t.to_wire() for t in self.tables],
            "views": [v.to_wire() for v in self.views],
        }


class DatabaseConnector:
    """数据库连接器类"""

    def __init__(self, today: Optional[Callable[[], date]] = None):
        """
        初始化数据库连接器

        Args:
            today: 返回当前日期的函数，用于 today/this_week 等相对日期过滤
        """
        self.connections: Dict[str, Engine] = {}
        self._today = today or date.today

    # ============ 连接管理 ============

    def _create_engine(self, adapter: DatabaseAdapter, details: ConnectionDetails) -> Engine:
        return create_engine(
            adapter.get_connection_url(details),
            pool_pre_ping=True,
            connect_args=adapter.get_connect_args()
        )

    def _create_source_engine(self, data_source: DataSource) -> Engine:
        if data_source.connection_details is None:
            raise ReportValidationError(
                f"数据源缺少连接信息: {data_source.name}",
                field="connectionDetails"
            )

        adapter = DatabaseAdapterFactory.get_adapter(data_source.type)
        return self._create_engine(adapter, data_source.connection_details)

    def _get_or_create_connection(self, data_source: DataSource) -> Engine:
        """
        获取或创建数据源连接

        只应传入已保存的数据源，缓存以数据源ID为键

        Args:
            data_source: 数据源（非 custom 类型）

        Returns:
            SQLAlchemy Engine对象
        """
        if data_source.id in self.connections:
            return self.connections[data_source.id]

        engine = self._create_source_engine(data_source)

        self.connections[data_source.id] = engine
        logger.info(f"创建数据库连接: {data_source.name} ({data_source.type})")

        return engine

    def _create_temporary_engine(self, data_source: DataSource) -> Engine:
        logger.info(f"创建临时数据库连接: {data_source.name} ({data_source.type})")
        return self._create_source_engine(data_source)

    def close_connection(self, data_source_id: str):
        """
        关闭指定数据源的连接

        Args:
            data_source_id: 数据源ID
        """
        if data_source_id in self.connections:
            self.connections[data_source_id].dispose()
            del self.connections[data_source_id]
            logger.info(f"关闭数据库连接: {data_source_id}")

    def close_all_connections(self):
        """关闭所有数据库连接"""
        for data_source_id in list(self.connections.keys()):
            self.close_connection(data_source_id)
        logger.info("关闭所有数据库连接")

    # ============ 实时查询 ============

    async def fetch_rows(
        self,
        data_source: DataSource,
        table_name: str,
        column_keys: List[str],
        limit: int,
        filters: Optional[Sequence[FilterCondition]] = None,
        sorts: Optional[Sequence[SortCondition]] = None,
        cache_connection: bool = True
    ) -> List[Dict[str, Any]]:
        """
        查询单个表/视图的数据

        Args:
            data_source: 数据源
            table_name: 物理表名（可带schema前缀，如 sales.orders）
            column_keys: 查询的物理列名
            limit: 最大行数
            filters: 过滤条件（列ID会解析为物理列名）
            sorts: 排序条件
            cache_connection: 为False时使用临时连接，查询结束后释放，不写入连接缓存
                （用于请求中临时提供、未保存的数据源）

        Returns:
            以物理列名为键的数据行列表

        Raises:
            ReportValidationError: 过滤/排序引用的列不存在或取值无效
            CollaboratorError: 如果查询执行失败
        """
        stmt = self.build_select(data_source, table_name, column_keys, limit, filters or [], sorts or [])

        logger.info(
            f"执行实时查询: data_source={data_source.id}, table={table_name}, "
            f"columns={len(column_keys)}, filters={len(filters or [])}, sorts={len(sorts or [])}"
        )
        logger.debug(f"SQL语句:\n{stmt}")

        engine = None
        try:
            if cache_connection:
                engine = self._get_or_create_connection(data_source)
            else:
                engine = self._create_temporary_engine(data_source)

            # 在线程池中执行阻塞查询，避免阻塞事件循环
            loop = asyncio.get_running_loop()
            data = await loop.run_in_executor(None, self._execute_select, engine, stmt)
        except ReportValidationError:
            raise
        except Exception as e:
            log_query_error(logger, data_source.id, table_name, column_keys, e)
            raise CollaboratorError("query", "Failed to fetch live data.", table=table_name) from e
        finally:
            if engine is not None and not cache_connection:
                engine.dispose()

        logger.info(f"实时查询成功: table={table_name}, rows={len(data)}")
        return data

    @staticmethod
    def _execute_select(engine: Engine, stmt: Select) -> List[Dict[str, Any]]:
        with engine.connect() as connection:
            result = connection.execute(stmt)
            return [dict(row) for row in result.mappings().all()]

    def build_select(
        self,
        data_source: DataSource,
        table_name: str,
        column_keys: List[str],
        limit: int,
        filters: Sequence[FilterCondition],
        sorts: Sequence[SortCondition]
    ) -> Select:
        """
        构建单表SELECT语句（不支持多表连接）

        Returns:
            SQLAlchemy Select对象
        """
        if not column_keys:
            raise ReportValidationError("No columns selected for this report.", field="columns")

        table_def = self._find_table_by_name(data_source, table_name)

        needed = list(dict.fromkeys(column_keys))
        resolved_filters = []
        for condition in filters:
            col_def = self._resolve_column(table_def, condition.table_id, condition.column_id)
            resolved_filters.append((condition, col_def))
            if col_def.name not in needed:
                needed.append(col_def.name)

        resolved_sorts = []
        for sort in sorts:
            col_def = self._resolve_column(table_def, sort.table_id, sort.column_id)
            resolved_sorts.append((sort, col_def))
            if col_def.name not in needed:
                needed.append(col_def.name)

        schema, _, name = table_name.rpartition(".")
        source = table(name, *[column(key) for key in needed], schema=schema or None)

        stmt = select(*[source.c[key] for key in column_keys])

        clauses = []
        for condition, col_def in resolved_filters:
            clause = self._build_filter_clause(source.c[col_def.name], condition, col_def.type)
            if clause is not None:
                clauses.append(clause)
        if clauses:
            stmt = stmt.where(and_(*clauses))

        for sort, col_def in resolved_sorts:
            col = source.c[col_def.name]
            stmt = stmt.order_by(col.desc() if sort.direction == "desc" else col.asc())

        if limit and limit > 0:
            stmt = stmt.limit(limit)

        return stmt

    def _find_table_by_name(self, data_source: DataSource, table_name: str) -> TableDef:
        for candidate in data_source.all_tables_and_views():
            if candidate.name == table_name:
                return candidate
        raise ReportValidationError(
            "Table/View not found in the selected data source.",
            field="table",
            table=table_name
        )

    def _resolve_column(self, table_def: TableDef, table_id: str, column_id: str) -> ColumnDef:
        if table_id != table_def.id:
            raise ReportValidationError(
                "Filters and sorts must reference the report's table or view.",
                field="tableId",
                table_id=table_id
            )
        col_def = table_def.find_column(column_id)
        if col_def is None:
            raise ReportValidationError(
                f"Column not found in {table_def.label}.",
                field="columnId",
                column_id=column_id
            )
        return col_def

    # ============ 过滤条件 ============

    def _build_filter_clause(
        self,
        col: ColumnElement,
        condition: FilterCondition,
        column_type: str
    ) -> Optional[ColumnElement]:
        """
        将过滤条件转换为SQL表达式

        Returns:
            SQL表达式；取值未填写的条件返回 None（忽略）
        """
        op = condition.operator
        value = (condition.value or "").strip()
        value2 = (condition.value2 or "").strip()

        if op == "is_null":
            return col.is_(None)
        if op == "is_not_null":
            return col.is_not(None)
        if op == "is_empty":
            return or_(col.is_(None), col == "")
        if op == "is_not_empty":
            return and_(col.is_not(None), col != "")
        if op in PERIOD_OPERATORS:
            start, end = period_bounds(op, self._today())
            return and_(col >= start.isoformat(), col < end.isoformat())

        arity = operator_arity(op)
        if not value or (arity == 2 and not value2):
            logger.debug(f"忽略未填写取值的过滤条件: id={condition.id}, operator={op}")
            return None

        if column_type == "date":
            return self._build_date_clause(col, op, value, value2)

        if op == "contains":
            return col.contains(value, autoescape=True)
        if op == "not_contains":
            return ~col.contains(value, autoescape=True)
        if op == "starts_with":
            return col.startswith(value, autoescape=True)
        if op == "ends_with":
            return col.endswith(value, autoescape=True)
        if op == "in":
            items = [item.strip() for item in value.split(",") if item.strip()]
            return col.in_([self._coerce_value(item, column_type) for item in items])

        coerced = self._coerce_value(value, column_type)
        if op == "equals":
            return col == coerced
        if op == "not_equals":
            return col != coerced
        if op == "gt":
            return col > coerced
        if op == "gte":
            return col >= coerced
        if op == "lt":
            return col < coerced
        if op == "lte":
            return col <= coerced
        if op == "between":
            return col.between(coerced, self._coerce_value(value2, column_type))

        raise ReportValidationError(f"不支持的过滤操作符: {op}", field="operator")

    def _build_date_clause(self, col: ColumnElement, op: str, value: str, value2: str) -> ColumnElement:
        """日期按自然日比较，使用ISO日期字符串作为边界"""
        day = self._parse_date(value)
        next_day = (day + timedelta(days=1)).isoformat()
        day_text = day.isoformat()

        if op == "equals":
            return and_(col >= day_text, col < next_day)
        if op == "not_equals":
            return or_(col < day_text, col >= next_day)
        if op == "gt":
            return col >= next_day
        if op == "gte":
            return col >= day_text
        if op == "lt":
            return col < day_text
        if op == "lte":
            return col < next_day
        if op == "between":
            end = self._parse_date(value2) + timedelta(days=1)
            return and_(col >= day_text, col < end.isoformat())

        raise ReportValidationError(f"日期列不支持的过滤操作符: {op}", field="operator")

    def _parse_date(self, value: str) -> date:
        try:
            return date.fromisoformat(value[:10])
        except ValueError:
            raise ReportValidationError(f"无效的日期: {value}", field="value")

    def _coerce_value(self, value: str, column_type: str) -> Any:
        """按列类型转换过滤取值"""
        if column_type in ("number", "currency"):
            try:
                number = Decimal(value)
            except InvalidOperation:
                raise ReportValidationError(f"无效的数值: {value}", field="value")
            if number == number.to_integral_value():
                return int(number)
            return float(number)

        if column_type == "boolean":
            lowered = value.lower()
            if lowered in _TRUE_VALUES:
                return True
            if lowered in _FALSE_VALUES:
                return False
            raise ReportValidationError(f"无效的布尔值: {value}", field="value")

        return value

    # ============ 连接测试与Schema读取 ============

    async def test_connection(self, db_type: str, details: ConnectionDetails) -> SchemaInfo:
        """
        测试数据库连接并读取表和视图结构

        Args:
            db_type: 数据源类型
            details: 连接信息

        Returns:
            SchemaInfo对象；读取到的表和视图默认不对报表作者开放

        Raises:
            ReportValidationError: 如果数据源类型不支持
            CollaboratorError: 如果连接或读取失败
        """
        try:
            adapter = DatabaseAdapterFactory.get_adapter(db_type)
        except ValueError as e:
            raise ReportValidationError(str(e), field="type")

        engine = None
        try:
            engine = self._create_engine(adapter, details)
            with engine.connect() as connection:
                connection.execute(text("SELECT 1"))

            schema_info = self._introspect(engine, adapter)
            logger.info(
                f"数据库连接测试成功: type={db_type}, database={details.database}, "
                f"tables={len(schema_info.tables)}, views={len(schema_info.views)}"
            )
            return schema_info

        except Exception as e:
            log_database_connection_error(logger, details.model_dump(), e)
            raise CollaboratorError(
                "query",
                "Failed to connect and fetch schema. Confirm connection details and try again."
            ) from e
        finally:
            if engine is not None:
                engine.dispose()

    def _introspect(self, engine: Engine, adapter: DatabaseAdapter) -> SchemaInfo:
        inspector = inspect(engine)

        tables = [
            TableDef(
                id=str(uuid.uuid4()),
                name=table_name,
                columns=self._read_columns(inspector, adapter, table_name),
                exposed=False
            )
            for table_name in inspector.get_table_names()
        ]

        views = []
        for view_name in inspector.get_view_names():
            try:
                definition = inspector.get_view_definition(view_name)
            except NotImplementedError:
                definition = None
            views.append(ViewDef(
                id=str(uuid.uuid4()),
                name=view_name,
                columns=self._read_columns(inspector, adapter, view_name, is_view=True),
                definition=definition,
                exposed=False
            ))

        return SchemaInfo(tables=tables, views=views)

    def _read_columns(self, inspector, adapter: DatabaseAdapter, name: str, is_view: bool = False) -> List[ColumnDef]:
        primary_keys = set()
        unique_columns = set()
        if not is_view:
            primary_keys = set(inspector.get_pk_constraint(name).get("constrained_columns") or [])
            for constraint in inspector.get_unique_constraints(name):
                if len(constraint.get("column_names") or []) == 1:
                    unique_columns.add(constraint["column_names"][0])

        return [
            ColumnDef(
                id=str(uuid.uuid4()),
                name=col["name"],
                type=adapter.map_column_type(str(col["type"])),
                is_nullable=col.get("nullable"),
                is_primary_key=col["name"] in primary_keys,
                is_unique=col["name"] in unique_columns or col["name"] in primary_keys
            )
            for col in inspector.get_columns(name)
        ]


# 全局数据库连接器实例
_db_connector = None


def get_database_connector() -> DatabaseConnector:
    """获取全局数据库连接器实例"""
    global _db_connector
    if _db_connector is None:
        _db_connector = DatabaseConnector()
    return _db_connector
