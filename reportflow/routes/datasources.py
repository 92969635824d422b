"""
数据源API路由
"""
from typing import Any, Dict, List, Optional
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import Field

from ..services.data_source_manager import DataSourceManager, get_data_source_manager
from ..services.database_connector import DatabaseConnector, get_database_connector
from ..services.dto import (
    CamelModel,
    ConnectionDetails,
    DataSource,
    DataSourceType,
    FilterCondition,
    SortCondition,
)
from ..services.exceptions import NotFoundError, ReportflowError, ReportValidationError
from ..utils.logger import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/api/datasources", tags=["datasources"])


# ============ Request Models ============

class ConnectionTestRequest(CamelModel):
    """连接测试请求"""
    type: DataSourceType
    connection_details: ConnectionDetails


class DiscoverSchemaRequest(CamelModel):
    """结构推断请求"""
    type: DataSourceType
    name: str
    context: str = ""
    connection_details: Optional[ConnectionDetails] = None


class QueryRequest(CamelModel):
    """单表查询请求（dataSourceId 与 dataSource 二选一）"""
    data_source_id: Optional[str] = None
    data_source: Optional[DataSource] = None
    table: str
    columns: List[str] = Field(..., min_length=1)
    limit: int = Field(1000000, ge=1)
    filters: List[FilterCondition] = Field(default_factory=list)
    sorts: List[SortCondition] = Field(default_factory=list)


class TableMetadataRequest(CamelModel):
    alias: Optional[str] = None
    description: Optional[str] = None


class ColumnMetadataRequest(CamelModel):
    alias: Optional[str] = None
    description: Optional[str] = None
    sample_value: Optional[str] = None


def _wire(data_source: DataSource) -> Dict[str, Any]:
    return DataSourceManager.mask_password(data_source).to_wire()


# ============ API Endpoints ============

@router.get("", status_code=status.HTTP_200_OK)
async def list_data_sources(manager: DataSourceManager = Depends(get_data_source_manager)):
    """获取所有数据源"""
    try:
        return [_wire(ds) for ds in manager.list_data_sources()]
    except ReportflowError:
        raise
    except Exception as e:
        logger.error(f"获取数据源列表失败: {str(e)}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"获取数据源列表失败: {str(e)}"
        )


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_data_source(
    request: DataSource,
    manager: DataSourceManager = Depends(get_data_source_manager)
):
    """创建数据源"""
    logger.info(f"收到创建数据源请求: name={request.name}, type={request.type}")
    try:
        return _wire(manager.create_data_source(request))
    except ReportflowError:
        raise
    except Exception as e:
        logger.error(f"创建数据源失败: {str(e)}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"创建数据源失败: {str(e)}"
        )


@router.post("/test-connection", status_code=status.HTTP_200_OK)
async def test_connection(
    request: ConnectionTestRequest,
    manager: DataSourceManager = Depends(get_data_source_manager)
):
    """测试连接并读取表和视图"""
    schema_info = await manager.test_connection(request.type, request.connection_details)
    return schema_info.to_dict()


@router.post("/discover-schema", status_code=status.HTTP_200_OK)
async def discover_schema(
    request: DiscoverSchemaRequest,
    manager: DataSourceManager = Depends(get_data_source_manager)
):
    """推断（custom）或读取（数据库）数据源结构"""
    schema_info = await manager.discover_schema(
        request.type,
        request.name,
        request.context,
        request.connection_details
    )
    return schema_info.to_dict()


@router.post("/query", status_code=status.HTTP_200_OK)
async def query_table(
    request: QueryRequest,
    manager: DataSourceManager = Depends(get_data_source_manager),
    connector: DatabaseConnector = Depends(get_database_connector)
):
    """查询单个表/视图"""
    cache_connection = True
    if request.data_source is not None:
        # 已保存的数据源始终使用保存的连接信息
        try:
            data_source = manager.get_data_source(request.data_source.id)
        except NotFoundError:
            data_source = request.data_source
            cache_connection = False
    elif request.data_source_id:
        data_source = manager.get_data_source(request.data_source_id)
    else:
        raise ReportValidationError("dataSourceId or dataSource is required", field="dataSourceId")

    if data_source.is_ai_backed:
        raise ReportValidationError("Custom data sources cannot be queried live.", field="dataSource")

    return await connector.fetch_rows(
        data_source,
        request.table,
        request.columns,
        request.limit,
        request.filters,
        request.sorts,
        cache_connection=cache_connection
    )


@router.get("/{data_source_id}", status_code=status.HTTP_200_OK)
async def get_data_source(
    data_source_id: str,
    manager: DataSourceManager = Depends(get_data_source_manager)
):
    """获取单个数据源"""
    return _wire(manager.get_data_source(data_source_id))


@router.put("/{data_source_id}", status_code=status.HTTP_200_OK)
async def update_data_source(
    data_source_id: str,
    request: DataSource,
    manager: DataSourceManager = Depends(get_data_source_manager)
):
    """更新数据源"""
    logger.info(f"收到更新数据源请求: id={data_source_id}")
    return _wire(manager.update_data_source(data_source_id, request))


@router.delete("/{data_source_id}", status_code=status.HTTP_200_OK)
async def delete_data_source(
    data_source_id: str,
    manager: DataSourceManager = Depends(get_data_source_manager)
):
    """删除数据源"""
    logger.info(f"收到删除数据源请求: id={data_source_id}")
    manager.delete_data_source(data_source_id)
    return {"success": True}


@router.post("/{data_source_id}/tables/{table_id}/toggle-exposure", status_code=status.HTTP_200_OK)
async def toggle_exposure(
    data_source_id: str,
    table_id: str,
    manager: DataSourceManager = Depends(get_data_source_manager)
):
    """切换表/视图是否对报表作者开放"""
    return _wire(manager.toggle_table_exposure(data_source_id, table_id))


@router.patch("/{data_source_id}/tables/{table_id}", status_code=status.HTTP_200_OK)
async def update_table_metadata(
    data_source_id: str,
    table_id: str,
    request: TableMetadataRequest,
    manager: DataSourceManager = Depends(get_data_source_manager)
):
    """更新表/视图别名和描述"""
    return _wire(manager.update_table_metadata(
        data_source_id, table_id, alias=request.alias, description=request.description
    ))


@router.patch("/{data_source_id}/tables/{table_id}/columns/{column_id}", status_code=status.HTTP_200_OK)
async def update_column_metadata(
    data_source_id: str,
    table_id: str,
    column_id: str,
    request: ColumnMetadataRequest,
    manager: DataSourceManager = Depends(get_data_source_manager)
):
    """更新列别名、描述和示例值"""
    return _wire(manager.update_column_metadata(
        data_source_id,
        table_id,
        column_id,
        alias=request.alias,
        description=request.description,
        sample_value=request.sample_value
    ))
