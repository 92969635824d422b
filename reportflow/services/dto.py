"""
数据传输对象 (Data Transfer Objects)
数据源目录、报表配置和格式化配置的数据模型
"""
import uuid
from typing import Annotated, Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from ..utils.datetime_helper import to_iso_string, utc_now


ColumnType = Literal['string', 'number', 'date', 'boolean', 'currency']
DataSourceType = Literal['postgres', 'mysql', 'snowflake', 'sql', 'sqlite', 'custom']
Aggregation = Literal['none', 'sum', 'avg', 'count', 'min', 'max']
SortDirection = Literal['asc', 'desc']
VisualizationType = Literal['table', 'bar', 'line', 'pie', 'area']
Visibility = Literal['public', 'private']
DataOrigin = Literal['live', 'ai']
UserRole = Literal['admin', 'user']

FilterOperator = Literal[
    'equals', 'not_equals', 'contains', 'not_contains', 'starts_with', 'ends_with',
    'gt', 'gte', 'lt', 'lte', 'between',
    'is_null', 'is_not_null', 'is_empty', 'is_not_empty',
    'in', 'today', 'this_week', 'this_month', 'this_year',
]


def generate_id() -> str:
    """生成全局唯一标识"""
    return str(uuid.uuid4())


def _now_iso() -> str:
    return to_iso_string(utc_now())


class CamelModel(BaseModel):
    """对外使用camelCase字段名，内部使用snake_case属性"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        """序列化为API/持久化使用的字典"""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


# ============ 数据源目录 ============

class ColumnDef(CamelModel):
    """表/视图中的列定义"""
    id: str
    name: str
    type: ColumnType = 'string'
    alias: Optional[str] = None
    description: Optional[str] = None
    sample_value: Optional[str] = None
    is_pii: bool = False
    is_nullable: Optional[bool] = None
    is_primary_key: Optional[bool] = None
    is_unique: Optional[bool] = None

    @property
    def label(self) -> str:
        return self.alias or self.name


class TableDef(CamelModel):
    """表定义"""
    id: str
    name: str
    alias: Optional[str] = None
    description: Optional[str] = None
    columns: List[ColumnDef] = Field(default_factory=list)
    exposed: bool = False

    @field_validator("columns")
    @classmethod
    def _unique_column_ids(cls, columns: List[ColumnDef]) -> List[ColumnDef]:
        seen = set()
        for column in columns:
            if column.id in seen:
                raise ValueError(f"列ID重复: {column.id}")
            seen.add(column.id)
        return columns

    @property
    def label(self) -> str:
        return self.alias or self.name

    def find_column(self, column_ref: str) -> Optional[ColumnDef]:
        """按ID查找列，找不到时按物理列名查找"""
        for column in self.columns:
            if column.id == column_ref:
                return column
        for column in self.columns:
            if column.name == column_ref:
                return column
        return None


class ViewDef(TableDef):
    """视图定义（报表解析时与表等价）"""
    definition: Optional[str] = None


class ConnectionDetails(CamelModel):
    """数据库连接信息"""
    host: str = ""
    port: str = ""
    database: str = ""
    username: str = ""
    password: Optional[str] = None


class DataSource(CamelModel):
    """数据源"""
    id: str = Field(default_factory=generate_id)
    name: str
    description: str = ""
    type: DataSourceType = 'custom'
    connection_details: Optional[ConnectionDetails] = None
    tables: List[TableDef] = Field(default_factory=list)
    views: List[ViewDef] = Field(default_factory=list)
    created_at: str = Field(default_factory=_now_iso, alias="created_at")

    @model_validator(mode="after")
    def _custom_has_no_connection(self) -> "DataSource":
        # custom 数据源由AI生成数据，不保存连接信息
        if self.type == 'custom':
            self.connection_details = None
        return self

    @property
    def is_ai_backed(self) -> bool:
        return self.type == 'custom'

    def all_tables_and_views(self) -> List[TableDef]:
        return [*self.tables, *self.views]

    def exposed_tables_and_views(self) -> List[TableDef]:
        return [t for t in self.all_tables_and_views() if t.exposed]

    def find_table(self, table_id: str) -> Tuple[Optional[TableDef], bool]:
        """
        解析表ID：先查表，再查视图

        Returns:
            (表或视图定义, 是否为视图) 元组，找不到时为 (None, False)
        """
        for table in self.tables:
            if table.id == table_id:
                return table, False
        for view in self.views:
            if view.id == table_id:
                return view, True
        return None, False


# ============ 格式化配置 ============
# 缺省值与渲染时缺失字段的处理保持一致

class DateFormattingConfig(CamelModel):
    format: str = 'YYYY-MM-DD'


class NumberFormattingConfig(CamelModel):
    decimal_places: int = Field(default=0, ge=0, le=20)
    thousand_separator: bool = False
    prefix: Optional[str] = None
    suffix: Optional[str] = None


class CurrencyFormattingConfig(CamelModel):
    symbol: str = '$'
    decimal_places: int = Field(default=2, ge=0, le=20)
    thousand_separator: bool = False
    symbol_position: Literal['before', 'after'] = 'before'


class BooleanFormattingConfig(CamelModel):
    style: str = 'true/false'


class StringFormattingConfig(CamelModel):
    case: Optional[str] = 'none'
    truncate: Optional[int] = None


class DateFormatting(CamelModel):
    type: Literal['date'] = 'date'
    config: DateFormattingConfig = Field(default_factory=DateFormattingConfig)


class NumberFormatting(CamelModel):
    type: Literal['number'] = 'number'
    config: NumberFormattingConfig = Field(default_factory=NumberFormattingConfig)


class CurrencyFormatting(CamelModel):
    type: Literal['currency'] = 'currency'
    config: CurrencyFormattingConfig = Field(default_factory=CurrencyFormattingConfig)


class BooleanFormatting(CamelModel):
    type: Literal['boolean'] = 'boolean'
    config: BooleanFormattingConfig = Field(default_factory=BooleanFormattingConfig)


class StringFormatting(CamelModel):
    type: Literal['string'] = 'string'
    config: StringFormattingConfig = Field(default_factory=StringFormattingConfig)


class NoFormatting(CamelModel):
    type: Literal['none'] = 'none'


FormattingConfig = Annotated[
    Union[
        DateFormatting,
        NumberFormatting,
        CurrencyFormatting,
        BooleanFormatting,
        StringFormatting,
        NoFormatting,
    ],
    Field(discriminator="type"),
]


# ============ 报表配置 ============

class ReportColumn(CamelModel):
    """报表选中的列"""
    table_id: str
    column_id: str
    alias: Optional[str] = None
    # 聚合字段仅作为扩展点保留，解析逻辑不使用
    aggregation: Optional[Aggregation] = None
    formatting: Optional[FormattingConfig] = None

    @property
    def key(self) -> Tuple[str, str]:
        return self.table_id, self.column_id


class FilterCondition(CamelModel):
    """过滤条件"""
    id: str = Field(default_factory=generate_id)
    table_id: str
    column_id: str
    operator: FilterOperator = 'equals'
    value: str = ""
    value2: Optional[str] = None


class SortCondition(CamelModel):
    """排序条件"""
    table_id: str
    column_id: str
    direction: SortDirection = 'asc'


class ScheduleConfig(CamelModel):
    """定时配置"""
    enabled: bool = False
    frequency: Literal['daily', 'weekly', 'monthly'] = 'weekly'
    time: str = '09:00'


class ReportConfig(CamelModel):
    """报表配置（聚合根）"""
    id: str = Field(default_factory=generate_id)
    data_source_id: str = ""
    owner_id: str = ""
    visibility: Visibility = 'private'
    name: str = 'New Report'
    description: Optional[str] = ""
    selected_columns: List[ReportColumn] = Field(default_factory=list)
    filters: List[FilterCondition] = Field(default_factory=list)
    sorts: List[SortCondition] = Field(default_factory=list)
    group_by: Optional[List[ReportColumn]] = None
    visualization: VisualizationType = 'table'
    schedule: ScheduleConfig = Field(default_factory=ScheduleConfig)
    created_at: str = Field(default_factory=_now_iso, alias="created_at")

    @field_validator("selected_columns")
    @classmethod
    def _unique_columns(cls, columns: List[ReportColumn]) -> List[ReportColumn]:
        seen = set()
        for column in columns:
            if column.key in seen:
                raise ValueError(f"报表列重复: {column.table_id}.{column.column_id}")
            seen.add(column.key)
        return columns

    def referenced_table_ids(self) -> List[str]:
        """按出现顺序返回列、过滤、排序中引用的所有不同表ID"""
        table_ids: List[str] = []
        for item in [*self.selected_columns, *self.filters, *self.sorts]:
            if item.table_id not in table_ids:
                table_ids.append(item.table_id)
        return table_ids


class DisplayColumn(BaseModel):
    """解析后的展示列：物理键、展示名、格式化配置和列类型"""
    key: str
    label: str
    formatting: Optional[FormattingConfig] = None
    type: Optional[ColumnType] = None


# ============ 用户 ============

class User(CamelModel):
    """用户"""
    id: str
    name: str
    email: str
    role: UserRole = 'user'


DEFAULT_USERS: List[User] = [
    User(id='u1', name='Alice Admin', email='alice@dataflow.com', role='admin'),
    User(id='u2', name='Bob Analyst', email='bob@dataflow.com', role='user'),
    User(id='u3', name='Charlie Viewer', email='charlie@dataflow.com', role='user'),
]


def find_user(user_id: Optional[str]) -> Optional[User]:
    """按ID查找内置用户"""
    for user in DEFAULT_USERS:
        if user.id == user_id:
            return user
    return None
