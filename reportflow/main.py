"""
报表定义与渲染服务 - 后端主入口
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from dotenv import load_dotenv
import os

# 加载环境变量（需要在读取配置的模块之前）
load_dotenv()

from .database import init_database
from .routes import datasources_router, reports_router, export_router
from .services.database_connector import get_database_connector
from .services.exceptions import ReportflowError
from .utils.logger import setup_logger

# 初始化日志
logger = setup_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    # 在多进程模式下，每个worker都会执行此代码
    worker_id = os.getpid()
    logger.info(f"Worker {worker_id} 正在启动...")

    try:
        init_database()
        logger.info(f"Worker {worker_id} 数据库初始化成功")
    except Exception as e:
        logger.error(f"Worker {worker_id} 数据库初始化失败: {e}", exc_info=True)
        raise

    logger.info(f"Worker {worker_id} 启动完成")

    yield

    logger.info(f"Worker {worker_id} 正在关闭...")
    get_database_connector().close_all_connections()


app = FastAPI(
    title="Reportflow API",
    description="报表定义、校验与渲染服务",
    version="1.0.0",
    lifespan=lifespan
)

# 注册路由
app.include_router(datasources_router)
app.include_router(reports_router)
app.include_router(export_router)

# CORS配置
app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ORIGINS", "http://localhost:4200,http://localhost:5173").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ReportflowError)
async def reportflow_error_handler(request: Request, exc: ReportflowError):
    """将服务层异常转换为HTTP响应"""
    if exc.status_code >= 500:
        logger.error(f"请求失败: {request.method} {request.url.path}: {exc.message}")
    else:
        logger.info(f"请求被拒绝: {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, **exc.to_dict()})


@app.get("/")
async def root():
    return {"message": "Reportflow API", "status": "running"}


@app.get("/health")
async def health_check():
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn
    host = os.getenv("BACKEND_HOST", "0.0.0.0")
    port = int(os.getenv("BACKEND_PORT", 8000))
    workers = int(os.getenv("BACKEND_WORKERS", 1))
    log_level = os.getenv("LOG_LEVEL", "info").lower()

    logger.info(f"启动服务器: {host}:{port}, workers={workers}, log_level={log_level}")

    # 使用 workers 或 reload 时都必须传递导入字符串
    if workers > 1:
        uvicorn.run(
            "reportflow.main:app",
            host=host,
            port=port,
            workers=workers,
            log_level=log_level,
            access_log=log_level == "debug"
        )
    else:
        uvicorn.run(
            "reportflow.main:app",
            host=host,
            port=port,
            log_level=log_level,
            access_log=log_level == "debug",
            reload=True
        )
