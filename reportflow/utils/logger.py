"""
日志配置模块
提供统一的日志记录功能，支持详细的错误日志记录
"""
import logging
import os
import sys
import traceback
from typing import Optional, Dict, Any, List
from pathlib import Path

from .datetime_helper import utc_now


class DetailedFormatter(logging.Formatter):
    """详细的日志格式化器，包含额外的上下文信息"""

    def format(self, record: logging.LogRecord) -> str:
        """
        格式化日志记录

        Args:
            record: 日志记录对象

        Returns:
            格式化后的日志字符串
        """
        formatted = super().format(record)

        # 如果有额外的上下文信息，附加到日志中
        if hasattr(record, 'extra_context'):
            formatted += f"\n上下文信息: {record.extra_context}"

        return formatted


def setup_logger(
    name: str = "reportflow",
    log_level: Optional[str] = None,
    log_file: Optional[str] = None,
    console_output: bool = True
) -> logging.Logger:
    """
    设置日志记录器

    Args:
        name: 日志记录器名称
        log_level: 日志级别（DEBUG, INFO, WARNING, ERROR, CRITICAL）
        log_file: 日志文件路径，如果为None则从环境变量读取
        console_output: 是否输出到控制台

    Returns:
        配置好的日志记录器
    """
    if log_level is None:
        log_level = os.getenv("LOG_LEVEL", "INFO")

    if log_file is None:
        log_file = os.getenv("LOG_FILE", "./logs/app.log")

    # 确保日志目录存在
    log_dir = os.path.dirname(log_file)
    if log_dir:
        Path(log_dir).mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, log_level.upper()))

    # 清除已有的处理器（避免重复添加）
    logger.handlers.clear()
    # 每个记录器自带处理器，不再向父记录器传递
    logger.propagate = False

    log_format = "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s"
    date_format = "%Y-%m-%d %H:%M:%S"

    file_handler = logging.FileHandler(log_file, encoding='utf-8')
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(DetailedFormatter(log_format, date_format))
    logger.addHandler(file_handler)

    if console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(getattr(logging, log_level.upper()))
        console_handler.setFormatter(DetailedFormatter(log_format, date_format))
        logger.addHandler(console_handler)

    return logger


def get_logger(name: str = "reportflow") -> logging.Logger:
    """
    获取日志记录器

    Args:
        name: 日志记录器名称

    Returns:
        日志记录器实例
    """
    logger = logging.getLogger(name)

    # 如果日志记录器还没有处理器，进行初始化
    if not logger.handlers:
        setup_logger(name)

    return logger


def log_error_with_context(
    logger: logging.Logger,
    message: str,
    error: Exception,
    context: Optional[Dict[str, Any]] = None
):
    """
    记录带有详细上下文的错误日志

    Args:
        logger: 日志记录器
        message: 错误消息
        error: 异常对象
        context: 额外的上下文信息（如表名、查询列、参数等）
    """
    error_details = {
        "message": message,
        "error_type": type(error).__name__,
        "error_message": str(error),
        "timestamp": utc_now().isoformat(),
    }

    if context:
        error_details["context"] = context

    error_details["traceback"] = traceback.format_exc()

    logger.error(
        f"{message}\n详细信息: {error_details}",
        exc_info=True,
        extra={"extra_context": context}
    )


def log_query_error(
    logger: logging.Logger,
    data_source_id: str,
    table_name: str,
    columns: List[str],
    error: Exception
):
    """
    记录实时查询错误

    Args:
        logger: 日志记录器
        data_source_id: 数据源ID
        table_name: 查询的表/视图名
        columns: 查询的列
        error: 异常对象
    """
    context = {
        "data_source_id": data_source_id,
        "table": table_name,
        "columns": columns,
    }
    log_error_with_context(logger, "实时数据查询失败", error, context)


def log_llm_error(
    logger: logging.Logger,
    model: str,
    prompt: str,
    error: Exception
):
    """
    记录LLM服务调用错误

    Args:
        logger: 日志记录器
        model: 模型名称
        prompt: 提示词
        error: 异常对象
    """
    context = {
        "model": model,
        "prompt": prompt[:500] if prompt else None,  # 限制长度
    }
    log_error_with_context(logger, "LLM服务调用失败", error, context)


def log_database_connection_error(
    logger: logging.Logger,
    connection_details: Dict[str, Any],
    error: Exception
):
    """
    记录数据库连接错误

    Args:
        logger: 日志记录器
        connection_details: 连接配置（密码会被脱敏）
        error: 异常对象
    """
    safe_config = dict(connection_details)
    if safe_config.get("password"):
        safe_config["password"] = "***"

    log_error_with_context(logger, "数据库连接失败", error, {"connection": safe_config})
