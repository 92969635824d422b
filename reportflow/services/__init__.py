"""
服务层包
"""
from .encryption_service import EncryptionService
from .llm_service import LLMService, get_llm_service
from .database_connector import DatabaseConnector, SchemaInfo, get_database_connector
from .data_source_manager import DataSourceManager, get_data_source_manager
from .report_manager import ReportManager, get_report_manager
from .report_builder import ActiveTab, ReportBuilder
from .report_service import ReportViewer, ResolvedReport, RunStatus, resolve_report
from .export_service import ExportDocument, ExportService, build_export_filename, get_export_service
from .app_state import AppState, StateHolder, get_app_state
from .formatting_service import default_formatting, format_row, format_rows, render
from .operators import operators_for, needs_value_input, needs_two_values
from .exceptions import (
    ReportflowError,
    ReportValidationError,
    CollaboratorError,
    NotFoundError,
    PermissionDeniedError,
    ExportError,
)

__all__ = [
    "EncryptionService",
    "LLMService",
    "get_llm_service",
    "DatabaseConnector",
    "SchemaInfo",
    "get_database_connector",
    "DataSourceManager",
    "get_data_source_manager",
    "ReportManager",
    "get_report_manager",
    "ActiveTab",
    "ReportBuilder",
    "ReportViewer",
    "ResolvedReport",
    "RunStatus",
    "resolve_report",
    "ExportDocument",
    "ExportService",
    "build_export_filename",
    "get_export_service",
    "AppState",
    "StateHolder",
    "get_app_state",
    "default_formatting",
    "format_row",
    "format_rows",
    "render",
    "operators_for",
    "needs_value_input",
    "needs_two_values",
    "ReportflowError",
    "ReportValidationError",
    "CollaboratorError",
    "NotFoundError",
    "PermissionDeniedError",
    "ExportError",
]
