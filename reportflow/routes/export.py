"""
导出API路由
"""
from urllib.parse import quote
from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import Response

from ..services.data_source_manager import DataSourceManager, get_data_source_manager
from ..services.report_manager import ReportManager, get_report_manager
from ..services.report_service import ReportViewer, RunStatus
from ..utils.logger import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/api/export", tags=["export"])

EXCEL_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


async def _run_report(
    report_id: str,
    manager: ReportManager,
    data_source_manager: DataSourceManager
) -> ReportViewer:
    report = manager.get_report(report_id)
    data_source_manager.list_data_sources()

    viewer = ReportViewer(report, app_state=data_source_manager.state, query_service=data_source_manager.connector)
    if await viewer.refresh() == RunStatus.FAILED:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=viewer.error)
    return viewer


def _attachment(content: bytes, filename: str, media_type: str) -> Response:
    # URL编码文件名以支持中文
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f"attachment; filename*=UTF-8''{quote(filename)}"}
    )


# ============ API Endpoints ============

@router.get("/{report_id}/excel")
async def export_to_excel(
    report_id: str,
    manager: ReportManager = Depends(get_report_manager),
    data_source_manager: DataSourceManager = Depends(get_data_source_manager)
):
    """
    导出Excel

    执行报表，按展示格式渲染后写入 Report 工作表
    """
    logger.info(f"收到导出Excel请求: report={report_id}")
    viewer = await _run_report(report_id, manager, data_source_manager)
    filename, content = viewer.export_excel()
    logger.info(f"Excel导出成功: report={report_id}, file={filename}, size={len(content)} bytes")
    return _attachment(content, filename, EXCEL_MEDIA_TYPE)


@router.get("/{report_id}/pdf")
async def export_to_pdf(
    report_id: str,
    manager: ReportManager = Depends(get_report_manager),
    data_source_manager: DataSourceManager = Depends(get_data_source_manager)
):
    """导出PDF"""
    logger.info(f"收到导出PDF请求: report={report_id}")
    viewer = await _run_report(report_id, manager, data_source_manager)
    filename, content = viewer.export_pdf()
    logger.info(f"PDF导出成功: report={report_id}, file={filename}, size={len(content)} bytes")
    return _attachment(content, filename, "application/pdf")
