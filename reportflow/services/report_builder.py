"""
报表编辑器
维护正在编辑的报表配置，保证列、过滤、排序和格式化配置在编辑过程中始终一致
"""
from enum import Enum
from typing import Any, Dict, List, Optional, Type

from pydantic import BaseModel, ValidationError

from .app_state import AppState, get_app_state
from .dto import (
    ColumnDef,
    DataSource,
    FilterCondition,
    FormattingConfig,
    ReportColumn,
    ReportConfig,
    SortCondition,
    TableDef,
    generate_id,
)
from .exceptions import NotFoundError, ReportValidationError
from .formatting_service import default_formatting, matches_column_type
from .operators import default_operator_for, is_operator_allowed, operator_arity, operators_for
from .report_manager import ReportManager, get_report_manager
from ..utils.logger import get_logger

logger = get_logger(__name__)

TABLE_NOT_FOUND = "[Table Not Found]"
COLUMN_NOT_FOUND = "[Column Not Found]"


class ActiveTab(str, Enum):
    """编辑器标签页（纯展示状态，可任意切换）"""
    DATA = "data"
    FILTER = "filter"
    VISUAL = "visual"


def _normalize_fields(model_cls: Type[BaseModel], updates: Dict[str, Any]) -> Dict[str, Any]:
    """将 camelCase 或 snake_case 字段名统一为模型属性名，忽略未知字段"""
    aliases = {info.alias: name for name, info in model_cls.model_fields.items() if info.alias}
    normalized = {}
    for key, value in updates.items():
        if key in model_cls.model_fields:
            normalized[key] = value
        elif key in aliases:
            normalized[aliases[key]] = value
        else:
            logger.debug(f"忽略未知字段: {model_cls.__name__}.{key}")
    return normalized


class ReportBuilder:
    """报表编辑器类"""

    def __init__(
        self,
        app_state: Optional[AppState] = None,
        report_manager: Optional[ReportManager] = None,
        config: Optional[ReportConfig] = None,
        editing: bool = False
    ):
        """
        初始化报表编辑器

        Args:
            app_state: 应用状态（数据源目录和当前用户）
            report_manager: 报表管理器，保存/加载时使用，默认全局实例
            config: 要编辑的报表，None 表示新建
            editing: 是否在编辑已保存的报表
        """
        self.state = app_state or get_app_state()
        self._report_manager = report_manager
        self.config = config.model_copy(deep=True) if config else ReportConfig()
        self.editing = editing
        self.active_tab = ActiveTab.DATA
        self._apply_defaults()

    @property
    def report_manager(self) -> ReportManager:
        if self._report_manager is None:
            self._report_manager = get_report_manager()
        return self._report_manager

    def _apply_defaults(self):
        # 新报表默认使用第一个数据源，所有者为当前用户
        data_sources = self.state.get_data_sources()
        if not self.config.data_source_id and data_sources:
            self.config.data_source_id = data_sources[0].id
        if not self.config.owner_id:
            self.config.owner_id = self.state.get_current_user().id

    # ============ 数据源与标签页 ============

    def set_active_tab(self, tab):
        self.active_tab = ActiveTab(tab)

    @property
    def selected_data_source(self) -> Optional[DataSource]:
        return self.state.get_data_source(self.config.data_source_id)

    def all_tables_and_views(self) -> List[TableDef]:
        data_source = self.selected_data_source
        return data_source.all_tables_and_views() if data_source else []

    def exposed_tables_and_views(self) -> List[TableDef]:
        data_source = self.selected_data_source
        return data_source.exposed_tables_and_views() if data_source else []

    def change_data_source(self, data_source_id: str):
        """切换数据源：原有列引用全部失效，清空列、过滤和排序"""
        self.config = self.config.model_copy(update={
            "data_source_id": data_source_id,
            "selected_columns": [],
            "filters": [],
            "sorts": [],
        })
        logger.debug(f"切换数据源: {data_source_id}")

    # ============ 列选择 ============

    def _find_table(self, table_id: str) -> Optional[TableDef]:
        for table_def in self.all_tables_and_views():
            if table_def.id == table_id:
                return table_def
        return None

    def _find_column(self, table_id: str, column_id: str) -> Optional[ColumnDef]:
        table_def = self._find_table(table_id)
        if table_def is None:
            return None
        for col_def in table_def.columns:
            if col_def.id == column_id:
                return col_def
        return None

    def _find_selected(self, table_id: str, column_id: str) -> Optional[ReportColumn]:
        for col in self.config.selected_columns:
            if col.key == (table_id, column_id):
                return col
        return None

    def toggle_column(self, table_id: str, column_id: str):
        """选中列（不带格式化）或取消选中"""
        existing = self._find_selected(table_id, column_id)
        if existing is not None:
            self.config.selected_columns = [c for c in self.config.selected_columns if c is not existing]
        else:
            self.config.selected_columns = [
                *self.config.selected_columns,
                ReportColumn(table_id=table_id, column_id=column_id),
            ]

    def is_column_selected(self, table_id: str, column_id: str) -> bool:
        return self._find_selected(table_id, column_id) is not None

    def is_view(self, table_id: str) -> bool:
        data_source = self.selected_data_source
        if data_source is None:
            return False
        return any(view.id == table_id for view in data_source.views)

    # ============ 格式化 ============

    def enable_formatting(self, table_id: str, column_id: str):
        """为选中列启用该列类型的默认格式化"""
        column_type = self.get_column_type(table_id, column_id)
        self.update_column_formatting(table_id, column_id, default_formatting(column_type))

    def disable_formatting(self, table_id: str, column_id: str):
        self.config.selected_columns = [
            col.model_copy(update={"formatting": None}) if col.key == (table_id, column_id) else col
            for col in self.config.selected_columns
        ]

    def update_column_formatting(self, table_id: str, column_id: str, formatting: Optional[FormattingConfig]):
        self.config.selected_columns = [
            col.model_copy(update={"formatting": formatting}) if col.key == (table_id, column_id) else col
            for col in self.config.selected_columns
        ]

    def update_column_formatting_field(self, table_id: str, column_id: str, field: str, value: Any):
        """
        修改格式化配置中的单个字段，保留同一配置中的其他字段

        Raises:
            ReportValidationError: 如果字段取值无效
        """
        col = self._find_selected(table_id, column_id)
        if col is None:
            return

        formatting = self.get_column_formatting(col)
        if formatting.type == "none":
            return

        config_cls = type(formatting.config)
        changes = _normalize_fields(config_cls, {field: value})
        try:
            new_config = config_cls.model_validate({**formatting.config.model_dump(), **changes})
        except ValidationError as e:
            raise ReportValidationError(f"无效的格式化配置: {field}={value!r}", field=field) from e

        self.update_column_formatting(table_id, column_id, formatting.model_copy(update={"config": new_config}))

    def get_column_formatting(self, column: ReportColumn) -> FormattingConfig:
        """列的格式化配置；未设置时返回列类型的默认配置"""
        if column.formatting is not None:
            return column.formatting
        return default_formatting(self.get_column_type(column.table_id, column.column_id))

    # ============ 列信息 ============

    def get_all_columns(self) -> List[Dict[str, str]]:
        """开放表/视图中的所有列，展示名为 表.列（优先使用别名）"""
        return [
            {
                "tableId": table_def.id,
                "columnId": col_def.id,
                "displayName": f"{table_def.label}.{col_def.label}",
            }
            for table_def in self.exposed_tables_and_views()
            for col_def in table_def.columns
        ]

    def get_column_name(self, table_id: str, column_id: str) -> str:
        table_def = self._find_table(table_id)
        if table_def is None:
            logger.warning(f"表不存在: table_id={table_id}, data_source={self.config.data_source_id}")
            return f"{TABLE_NOT_FOUND}.{COLUMN_NOT_FOUND}"

        col_def = self._find_column(table_id, column_id)
        if col_def is None:
            logger.warning(f"列不存在: column_id={column_id}, table={table_def.name}")
            return f"{table_def.label}.{COLUMN_NOT_FOUND}"

        return f"{table_def.label}.{col_def.label}"

    def get_column_type(self, table_id: str, column_id: str) -> str:
        col_def = self._find_column(table_id, column_id)
        return col_def.type if col_def else "string"

    # ============ 过滤条件 ============

    def add_filter(self):
        """添加过滤条件，默认使用第一个开放表的第一列；没有可用列时不做任何操作"""
        if self.selected_data_source is None:
            return
        exposed = self.exposed_tables_and_views()
        if not exposed or not exposed[0].columns:
            return

        table_def = exposed[0]
        col_def = table_def.columns[0]
        self.config.filters = [
            *self.config.filters,
            FilterCondition(
                table_id=table_def.id,
                column_id=col_def.id,
                operator=default_operator_for(col_def.type),
                value=""
            ),
        ]

    def update_filter(self, index: int, updates: Dict[str, Any]):
        """
        合并更新过滤条件

        更换列时重新确定所属表，操作符重置为新列类型的第一个操作符，并清空取值。
        """
        if not 0 <= index < len(self.config.filters):
            logger.warning(f"过滤条件索引越界: {index}")
            return

        current = self.config.filters[index]
        changes = _normalize_fields(FilterCondition, updates)
        merged = {**current.model_dump(), **changes}

        new_column_id = changes.get("column_id")
        if new_column_id and new_column_id != current.column_id:
            for info in self.get_all_columns():
                if info["columnId"] == new_column_id:
                    merged["table_id"] = info["tableId"]
                    break
            merged["operator"] = default_operator_for(self.get_column_type(merged["table_id"], new_column_id))
            merged["value"] = ""
            merged["value2"] = None

        try:
            updated = FilterCondition.model_validate(merged)
        except ValidationError as e:
            raise ReportValidationError(f"无效的过滤条件: {updates}", field="filters") from e

        filters = list(self.config.filters)
        filters[index] = updated
        self.config.filters = filters

    def remove_filter(self, index: int):
        if not 0 <= index < len(self.config.filters):
            logger.warning(f"过滤条件索引越界: {index}")
            return
        self.config.filters = [f for i, f in enumerate(self.config.filters) if i != index]

    def operators_for_filter(self, index: int):
        """过滤条件所在列可用的操作符"""
        condition = self.config.filters[index]
        return operators_for(self.get_column_type(condition.table_id, condition.column_id))

    # ============ 排序 ============

    def add_sort(self):
        """
        添加排序，默认使用第一个选中列升序

        Raises:
            ReportValidationError: 如果还没有选中任何列
        """
        if not self.config.selected_columns:
            raise ReportValidationError("Please select columns first", field="sorts")

        first = self.config.selected_columns[0]
        self.config.sorts = [
            *self.config.sorts,
            SortCondition(table_id=first.table_id, column_id=first.column_id, direction="asc"),
        ]

    def update_sort(self, index: int, updates: Dict[str, Any]):
        if not 0 <= index < len(self.config.sorts):
            logger.warning(f"排序索引越界: {index}")
            return

        changes = _normalize_fields(SortCondition, updates)
        try:
            updated = SortCondition.model_validate({**self.config.sorts[index].model_dump(), **changes})
        except ValidationError as e:
            raise ReportValidationError(f"无效的排序条件: {updates}", field="sorts") from e

        sorts = list(self.config.sorts)
        sorts[index] = updated
        self.config.sorts = sorts

    def remove_sort(self, index: int):
        if not 0 <= index < len(self.config.sorts):
            logger.warning(f"排序索引越界: {index}")
            return
        self.config.sorts = [s for i, s in enumerate(self.config.sorts) if i != index]

    # ============ 校验与保存 ============

    def validate(self) -> List[str]:
        """
        校验报表配置

        Returns:
            错误信息列表，空列表表示校验通过
        """
        errors: List[str] = []
        config = self.config

        if not (config.name or "").strip():
            errors.append("Report name is required.")

        if self.selected_data_source is None:
            errors.append("Select a data source.")
            return errors

        if not config.selected_columns:
            errors.append("No columns selected for this report.")

        if len(config.referenced_table_ids()) > 1:
            errors.append("A report may reference only one table or view.")

        for col in config.selected_columns:
            col_def = self._find_column(col.table_id, col.column_id)
            if col_def is None:
                errors.append(f"Column not found: {self.get_column_name(col.table_id, col.column_id)}")
            elif not matches_column_type(col.formatting, col_def.type):
                errors.append(f"Formatting for {col_def.label} does not match its type ({col_def.type}).")

        for condition in config.filters:
            col_def = self._find_column(condition.table_id, condition.column_id)
            if col_def is None:
                errors.append(f"Filter column not found: {self.get_column_name(condition.table_id, condition.column_id)}")
                continue
            if not is_operator_allowed(col_def.type, condition.operator):
                errors.append(f"Operator '{condition.operator}' is not valid for {col_def.label}.")
                continue
            arity = operator_arity(condition.operator)
            if arity >= 1 and not (condition.value or "").strip():
                errors.append(f"Filter on {col_def.label} requires a value.")
            if arity == 2 and not (condition.value2 or "").strip():
                errors.append(f"Filter on {col_def.label} requires a second value.")

        for sort in config.sorts:
            if self._find_column(sort.table_id, sort.column_id) is None:
                errors.append(f"Sort column not found: {self.get_column_name(sort.table_id, sort.column_id)}")

        return errors

    def save(self) -> ReportConfig:
        """
        校验并保存报表：编辑时更新，否则创建；更新目标已不存在时以新ID创建

        Returns:
            保存后的报表

        Raises:
            ReportValidationError: 如果校验失败
        """
        errors = self.validate()
        if errors:
            raise ReportValidationError(errors[0], field="report", errors=errors)

        saved = self.report_manager.save_report(self.config, editing=self.editing)
        self.config = saved.model_copy(deep=True)
        self.editing = True
        logger.info(f"报表已保存: id={saved.id}, name={saved.name}")
        return saved

    def load(self, report_id: str):
        """打开已有报表进行编辑；报表不存在时按新报表处理"""
        report = self.state.get_report(report_id)
        if report is None:
            try:
                report = self.report_manager.get_report(report_id)
            except NotFoundError:
                logger.warning(f"报表不存在，按新报表处理: {report_id}")
                self.editing = False
                self.config = self.config.model_copy(update={"id": generate_id()})
                return

        self.config = report.model_copy(deep=True)
        self.editing = True
        self._apply_defaults()
