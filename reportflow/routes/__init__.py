"""
API路由模块
"""
from .datasources import router as datasources_router
from .reports import router as reports_router
from .export import router as export_router

__all__ = [
    "datasources_router",
    "reports_router",
    "export_router",
]
