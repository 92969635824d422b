"""
报表执行服务
解析报表引用的表和列，按数据源类型选择实时查询或AI生成数据，并渲染结果

执行状态: Idle -> Resolving -> Ready / Failed，每次刷新重新进入 Resolving。
同一个报表视图同时只有最新一次刷新的结果会生效。
"""
import os
import time
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, NamedTuple, Optional, Tuple

from .app_state import AppState, get_app_state
from .database_connector import DatabaseConnector, get_database_connector
from .dto import DataSource, DisplayColumn, ReportConfig, TableDef
from .exceptions import ExportError, ReportValidationError
from .export_service import ExportDocument, ExportService, build_export_filename, get_export_service
from .formatting_service import format_rows
from .llm_service import LLMService, get_llm_service
from ..utils.datetime_helper import to_iso_string, utc_now
from ..utils.logger import get_logger

logger = get_logger(__name__)

NO_COLUMNS_MESSAGE = "No columns selected for this report."
MULTI_TABLE_MESSAGE = "Live data fetch supports a single table or view per report."
TABLE_NOT_FOUND_MESSAGE = "Table/View not found in the selected data source."
COLUMN_NOT_FOUND_MESSAGE = "Column not found in the selected table or view."
DATA_SOURCE_NOT_FOUND_MESSAGE = "Report or data source not found."
AI_FAILED_MESSAGE = "Failed to generate AI data."
LIVE_FAILED_MESSAGE = "Failed to fetch live data."
COLUMNS_CHANGED_MESSAGE = "Report columns changed while loading. Refresh to try again."
NO_DATA_MESSAGE = "No data to export."


class RunStatus(str, Enum):
    """报表执行状态"""
    IDLE = "idle"
    RESOLVING = "resolving"
    READY = "ready"
    FAILED = "failed"


class ResolvedReport(NamedTuple):
    """解析结果：目标表/视图和展示列"""
    table: TableDef
    is_view: bool
    columns: List[DisplayColumn]


def resolve_report(report: ReportConfig, data_source: Optional[DataSource]) -> ResolvedReport:
    """
    将报表的选中列解析为单个表/视图上的展示列

    Args:
        report: 报表配置
        data_source: 报表所属数据源

    Returns:
        ResolvedReport

    Raises:
        ReportValidationError: 没有选中列、引用多个表、表或列不存在
    """
    if data_source is None:
        raise ReportValidationError(DATA_SOURCE_NOT_FOUND_MESSAGE, field="dataSourceId")

    if not report.selected_columns:
        raise ReportValidationError(NO_COLUMNS_MESSAGE, field="selectedColumns")

    table_ids = list(dict.fromkeys(col.table_id for col in report.selected_columns))
    if len(table_ids) != 1:
        raise ReportValidationError(MULTI_TABLE_MESSAGE, field="selectedColumns", table_ids=table_ids)

    table_def, is_view = data_source.find_table(table_ids[0])
    if table_def is None:
        raise ReportValidationError(TABLE_NOT_FOUND_MESSAGE, field="tableId", table_id=table_ids[0])

    columns = []
    for selected in report.selected_columns:
        col_def = table_def.find_column(selected.column_id)
        if col_def is None:
            raise ReportValidationError(COLUMN_NOT_FOUND_MESSAGE, field="columnId", column_id=selected.column_id)
        columns.append(DisplayColumn(
            key=col_def.name,
            label=col_def.label,
            formatting=selected.formatting,
            type=col_def.type
        ))

    return ResolvedReport(table=table_def, is_view=is_view, columns=columns)


class ReportViewer:
    """报表视图：执行报表并保存最近一次的结果"""

    def __init__(
        self,
        report: ReportConfig,
        app_state: Optional[AppState] = None,
        query_service: Optional[DatabaseConnector] = None,
        ai_service: Optional[LLMService] = None,
        export_service: Optional[ExportService] = None,
        ai_row_limit: Optional[int] = None,
        live_row_limit: Optional[int] = None
    ):
        """
        初始化报表视图

        Args:
            report: 报表配置
            app_state: 应用状态（数据源目录快照）
            query_service: 实时查询服务
            ai_service: AI数据生成服务
            export_service: 导出服务
            ai_row_limit: AI生成行数，默认读取 AI_ROW_LIMIT
            live_row_limit: 实时查询行数上限，默认读取 LIVE_ROW_LIMIT
        """
        self.report = report
        self.state = app_state or get_app_state()
        self._query_service = query_service
        self._ai_service = ai_service
        self.export_service = export_service or get_export_service()
        self.ai_row_limit = ai_row_limit or int(os.getenv("AI_ROW_LIMIT", "100"))
        self.live_row_limit = live_row_limit or int(os.getenv("LIVE_ROW_LIMIT", "1000000"))

        self.status = RunStatus.IDLE
        self.last_run: Optional[datetime] = None
        self._generation = 0
        self._reset()

    @property
    def query_service(self) -> DatabaseConnector:
        if self._query_service is None:
            self._query_service = get_database_connector()
        return self._query_service

    @property
    def ai_service(self) -> LLMService:
        if self._ai_service is None:
            self._ai_service = get_llm_service()
        return self._ai_service

    def _reset(self):
        self.error: Optional[str] = None
        self.rows: List[Dict[str, Any]] = []
        self.displayed_columns: List[DisplayColumn] = []
        self.data_origin: Optional[str] = None
        self.records_count: Optional[int] = None
        self.execution_ms: Optional[int] = None

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation

    def _fail(self, message: str) -> RunStatus:
        # 失败时清空结果，不保留旧数据
        self._reset()
        self.error = message
        self.status = RunStatus.FAILED
        return self.status

    def _data_source(self) -> Optional[DataSource]:
        return self.state.get_data_source(self.report.data_source_id)

    async def refresh(self) -> RunStatus:
        """
        执行报表

        校验和协作方的错误都会转换为 error 信息，不会抛出到调用方。
        执行期间如果发起了新的刷新，本次结果被丢弃。

        Returns:
            执行后的状态
        """
        self._generation += 1
        generation = self._generation
        self._reset()
        self.status = RunStatus.RESOLVING
        start = time.perf_counter()

        data_source = self._data_source()
        try:
            resolved = resolve_report(self.report, data_source)
        except ReportValidationError as e:
            logger.info(f"报表解析失败: report={self.report.id}, error={e.message}")
            return self._fail(e.message)

        self.displayed_columns = resolved.columns

        if data_source.is_ai_backed:
            origin, failure_message = "ai", AI_FAILED_MESSAGE
            pending = self.ai_service.generate_report_data(data_source, self.report, self.ai_row_limit)
        else:
            origin, failure_message = "live", LIVE_FAILED_MESSAGE
            pending = self.query_service.fetch_rows(
                data_source,
                resolved.table.name,
                [col.key for col in resolved.columns],
                self.live_row_limit,
                self.report.filters,
                self.report.sorts
            )

        logger.info(
            f"执行报表: report={self.report.id}, origin={origin}, "
            f"table={resolved.table.name}, columns={len(resolved.columns)}"
        )

        try:
            rows = await pending
        except ReportValidationError as e:
            if not self._is_current(generation):
                return self.status
            logger.info(f"报表条件无效: report={self.report.id}, error={e.message}")
            return self._fail(e.message)
        except Exception as e:
            if not self._is_current(generation):
                return self.status
            logger.error(f"报表数据获取失败: report={self.report.id}, origin={origin}, error={e}", exc_info=True)
            return self._fail(failure_message)

        if not self._is_current(generation):
            logger.info(f"忽略过期的报表结果: report={self.report.id}, generation={generation}")
            return self.status

        # 数据源目录可能在等待期间发生变化，按当前快照重新解析
        try:
            current = resolve_report(self.report, self._data_source())
        except ReportValidationError as e:
            logger.warning(f"数据源结构在执行期间发生变化: report={self.report.id}, error={e.message}")
            return self._fail(e.message)

        if [col.key for col in current.columns] != [col.key for col in resolved.columns]:
            logger.warning(f"报表列在执行期间发生变化: report={self.report.id}")
            return self._fail(COLUMNS_CHANGED_MESSAGE)

        self.displayed_columns = current.columns
        self.rows = list(rows or [])
        self.data_origin = origin
        self.records_count = len(self.rows)
        self.execution_ms = round((time.perf_counter() - start) * 1000)
        self.last_run = utc_now()
        self.status = RunStatus.READY

        logger.info(
            f"报表执行完成: report={self.report.id}, origin={origin}, "
            f"rows={self.records_count}, elapsed={self.execution_ms}ms"
        )
        return self.status

    def rendered_rows(self) -> List[Dict[str, str]]:
        """按展示列渲染当前结果（以展示名为键）"""
        return format_rows(self.rows, self.displayed_columns)

    def _export_document(self) -> ExportDocument:
        if not self.rows:
            raise ExportError(NO_DATA_MESSAGE)
        return ExportDocument(
            title=self.report.name,
            headers=[col.label for col in self.displayed_columns],
            rows=self.rendered_rows(),
            data_origin=self.data_origin
        )

    def export_excel(self) -> Tuple[str, bytes]:
        """
        导出当前结果为Excel

        Returns:
            (文件名, 文件内容)

        Raises:
            ExportError: 如果当前没有数据
        """
        document = self._export_document()
        return build_export_filename(self.report.name, "xlsx"), self.export_service.export_to_excel(document)

    def export_pdf(self) -> Tuple[str, bytes]:
        """导出当前结果为PDF"""
        document = self._export_document()
        return build_export_filename(self.report.name, "pdf"), self.export_service.export_to_pdf(document)

    def to_dict(self) -> Dict[str, Any]:
        """执行结果（API响应使用）"""
        return {
            "reportId": self.report.id,
            "status": self.status.value,
            "error": self.error,
            "dataOrigin": self.data_origin,
            "recordsCount": self.records_count,
            "executionMs": self.execution_ms,
            "lastRun": to_iso_string(self.last_run),
            "columns": [
                {"key": col.key, "label": col.label, "type": col.type}
                for col in self.displayed_columns
            ],
            "rows": self.rendered_rows(),
        }
