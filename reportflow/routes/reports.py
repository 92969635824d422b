"""
报表API路由
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, Query, status

from ..services.data_source_manager import DataSourceManager, get_data_source_manager
from ..services.dto import CamelModel, ReportConfig, find_user
from ..services.exceptions import ReportflowError
from ..services.report_manager import ReportManager, ReportScope, get_report_manager
from ..services.report_service import ReportViewer
from ..utils.logger import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/api/reports", tags=["reports"])


class TrackViewRequest(CamelModel):
    """报表浏览记录请求"""
    user_id: str


# ============ API Endpoints ============

@router.get("", status_code=status.HTTP_200_OK)
async def list_reports(
    user_id: Optional[str] = Query(None, alias="userId"),
    scope: ReportScope = Query("all"),
    manager: ReportManager = Depends(get_report_manager)
):
    """
    获取报表列表

    提供 userId 时按可见范围过滤：all 为公开报表加自己的报表，mine 只包含自己的报表。
    """
    try:
        if user_id is None:
            reports = manager.list_reports()
        else:
            reports = manager.list_reports_for_user(find_user(user_id), scope)
        logger.info(f"返回报表列表: count={len(reports)}, user={user_id}, scope={scope}")
        return [r.to_wire() for r in reports]
    except ReportflowError:
        raise
    except Exception as e:
        logger.error(f"获取报表列表失败: {str(e)}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"获取报表列表失败: {str(e)}"
        )


@router.get("/recent", response_model=List[str], status_code=status.HTTP_200_OK)
async def recent_report_ids(
    user_id: str = Query(..., alias="userId"),
    manager: ReportManager = Depends(get_report_manager)
):
    """获取用户最近浏览的报表ID（最多10个）"""
    return manager.get_recent_report_ids(user_id)


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_report(
    request: ReportConfig,
    manager: ReportManager = Depends(get_report_manager)
):
    """创建报表"""
    logger.info(f"收到创建报表请求: name={request.name}")
    return manager.create_report(request).to_wire()


@router.get("/{report_id}", status_code=status.HTTP_200_OK)
async def get_report(report_id: str, manager: ReportManager = Depends(get_report_manager)):
    """获取单个报表"""
    return manager.get_report(report_id).to_wire()


@router.put("/{report_id}", status_code=status.HTTP_200_OK)
async def update_report(
    report_id: str,
    request: ReportConfig,
    manager: ReportManager = Depends(get_report_manager)
):
    """更新报表，报表不存在时返回404"""
    logger.info(f"收到更新报表请求: id={report_id}")
    return manager.update_report(report_id, request).to_wire()


@router.delete("/{report_id}", status_code=status.HTTP_200_OK)
async def delete_report(
    report_id: str,
    user_id: Optional[str] = Query(None, alias="userId"),
    manager: ReportManager = Depends(get_report_manager)
):
    """删除报表；提供 userId 时只有所有者或管理员可以删除"""
    logger.info(f"收到删除报表请求: id={report_id}, user={user_id}")
    user = find_user(user_id) if user_id else None
    if user_id and user is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=f"Unknown user: {user_id}")
    manager.delete_report(report_id, user)
    return {"success": True}


@router.post("/{report_id}/view", status_code=status.HTTP_200_OK)
async def track_view(
    report_id: str,
    request: TrackViewRequest,
    manager: ReportManager = Depends(get_report_manager)
):
    """记录报表浏览"""
    return {"success": manager.track_view(report_id, request.user_id)}


@router.post("/{report_id}/run", status_code=status.HTTP_200_OK)
async def run_report(
    report_id: str,
    manager: ReportManager = Depends(get_report_manager),
    data_source_manager: DataSourceManager = Depends(get_data_source_manager)
):
    """
    执行报表并返回渲染后的结果

    解析或数据获取失败时返回 status=failed 和错误信息，而不是HTTP错误。
    """
    report = manager.get_report(report_id)
    data_source_manager.list_data_sources()

    viewer = ReportViewer(report, app_state=data_source_manager.state, query_service=data_source_manager.connector)
    await viewer.refresh()
    return viewer.to_dict()
