"""
报表服务异常定义
为校验、外部协作方调用、持久化和导出提供结构化的错误类型
"""
from typing import Any, Dict, Optional


class ReportflowError(Exception):
    """所有报表服务异常的基类"""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        status_code: int = 500,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}
        self.status_code = status_code

    def to_dict(self) -> Dict[str, Any]:
        """转换为API响应使用的字典"""
        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class ReportValidationError(ReportflowError):
    """报表配置校验失败（可在本地恢复，提示给用户）"""

    def __init__(self, message: str, field: Optional[str] = None, **details):
        super().__init__(
            message=message,
            error_code="VALIDATION_ERROR",
            details={"field": field, **details} if field else details,
            status_code=400,
        )


class CollaboratorError(ReportflowError):
    """外部协作方（查询服务、AI服务、持久化）调用失败"""

    def __init__(self, collaborator: str, message: str, **details):
        super().__init__(
            message=message,
            error_code="COLLABORATOR_ERROR",
            details={"collaborator": collaborator, **details},
            status_code=502,
        )
        self.collaborator = collaborator


class NotFoundError(ReportflowError):
    """持久化目标不存在"""

    def __init__(self, resource: str, identifier: Any):
        super().__init__(
            message=f"{resource} not found: {identifier}",
            error_code="NOT_FOUND",
            details={"resource": resource, "identifier": str(identifier)},
            status_code=404,
        )
        self.resource = resource
        self.identifier = identifier


class PermissionDeniedError(ReportflowError):
    """当前用户无权修改目标对象"""

    def __init__(self, message: str):
        super().__init__(
            message=message,
            error_code="PERMISSION_DENIED",
            status_code=403,
        )


class ExportError(ReportflowError):
    """导出失败（例如当前没有可导出的数据）"""

    def __init__(self, message: str):
        super().__init__(
            message=message,
            error_code="EXPORT_ERROR",
            status_code=400,
        )
