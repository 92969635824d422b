"""
报表管理器
报表配置的持久化、访问控制、浏览记录和首页报表列表
"""
import json
from typing import List, Literal, Optional

from sqlalchemy import func

from .app_state import AppState, get_app_state
from .dto import ReportConfig, User, generate_id
from .exceptions import NotFoundError, PermissionDeniedError, ReportValidationError
from ..database import Database, get_database
from ..models import ReportRecord, ReportViewRecord
from ..utils.logger import get_logger

logger = get_logger(__name__)

RECENT_LIMIT = 10

ReportScope = Literal["all", "mine"]


def can_view(report: ReportConfig, user: Optional[User]) -> bool:
    """公开报表所有人可见，私有报表仅所有者可见"""
    if report.visibility == "public":
        return True
    return user is not None and report.owner_id == user.id


def can_modify(report: ReportConfig, user: Optional[User]) -> bool:
    """所有者或管理员可以修改/删除报表"""
    if user is None:
        return False
    return report.owner_id == user.id or user.role == "admin"


def filter_reports(reports: List[ReportConfig], user: Optional[User], scope: ReportScope = "all") -> List[ReportConfig]:
    """
    按用户和范围过滤报表

    Args:
        reports: 报表列表
        user: 当前用户
        scope: all 为公开报表加自己的报表，mine 只包含自己的报表
    """
    if user is None:
        return []
    if scope == "mine":
        return [r for r in reports if r.owner_id == user.id]
    return [r for r in reports if can_view(r, user)]


class ReportManager:
    """报表管理器类"""

    def __init__(self, db: Optional[Database] = None, app_state: Optional[AppState] = None):
        """
        初始化报表管理器

        Args:
            db: 配置数据库，如果为None则使用全局实例
            app_state: 应用状态，报表变更后同步到其中
        """
        self.db = db or get_database()
        self.state = app_state or get_app_state()

    # ============ 记录转换 ============

    @staticmethod
    def _apply(report: ReportConfig, record: ReportRecord) -> ReportRecord:
        record.name = report.name
        record.data_source_id = report.data_source_id
        record.owner_id = report.owner_id
        record.visibility = report.visibility
        record.config = json.dumps(report.to_wire(), ensure_ascii=False)
        return record

    @staticmethod
    def _from_record(record: ReportRecord) -> ReportConfig:
        return ReportConfig.model_validate(json.loads(record.config))

    # ============ CRUD ============

    def list_reports(self) -> List[ReportConfig]:
        """获取所有报表（按创建时间排序），并同步到应用状态"""
        with self.db.get_session() as session:
            records = session.query(ReportRecord).order_by(ReportRecord.created_at).all()
            reports = [self._from_record(r) for r in records]

        self.state.set_reports(reports)
        logger.info(f"加载报表列表: count={len(reports)}")
        return reports

    def list_reports_for_user(self, user: Optional[User], scope: ReportScope = "all") -> List[ReportConfig]:
        return filter_reports(self.list_reports(), user, scope)

    def get_report(self, report_id: str) -> ReportConfig:
        """
        获取单个报表

        Raises:
            NotFoundError: 如果报表不存在
        """
        with self.db.get_session() as session:
            record = session.get(ReportRecord, report_id)
            if record is None:
                raise NotFoundError("Report", report_id)
            return self._from_record(record)

    def create_report(self, report: ReportConfig) -> ReportConfig:
        """
        创建报表

        Raises:
            ReportValidationError: 如果ID已存在
        """
        with self.db.get_session() as session:
            if session.get(ReportRecord, report.id) is not None:
                raise ReportValidationError(f"报表ID已存在: {report.id}", field="id")
            session.add(self._apply(report, ReportRecord(id=report.id)))

        self.state.add_report(report)
        logger.info(f"报表创建成功: id={report.id}, name={report.name}")
        return report

    def update_report(self, report_id: str, report: ReportConfig) -> ReportConfig:
        """
        更新报表（ID以参数为准）

        Raises:
            NotFoundError: 如果报表不存在
        """
        report = report.model_copy(update={"id": report_id})

        with self.db.get_session() as session:
            record = session.get(ReportRecord, report_id)
            if record is None:
                raise NotFoundError("Report", report_id)
            self._apply(report, record)

        self.state.update_report(report)
        logger.info(f"报表更新成功: id={report_id}")
        return report

    def save_report(self, report: ReportConfig, editing: bool) -> ReportConfig:
        """
        保存报表：编辑时更新，否则创建；更新目标不存在时以新ID创建

        Returns:
            保存后的报表（ID可能已变化）
        """
        if not editing:
            return self.create_report(report)

        try:
            return self.update_report(report.id, report)
        except NotFoundError:
            new_id = generate_id()
            logger.warning(f"报表不存在，改为创建: old_id={report.id}, new_id={new_id}")
            return self.create_report(report.model_copy(update={"id": new_id}))

    def delete_report(self, report_id: str, user: Optional[User] = None):
        """
        删除报表

        Args:
            report_id: 报表ID
            user: 操作用户；提供时检查修改权限

        Raises:
            NotFoundError: 如果报表不存在
            PermissionDeniedError: 如果用户无权删除
        """
        report = self.get_report(report_id)
        if user is not None and not can_modify(report, user):
            raise PermissionDeniedError("You do not have permission to delete this report.")

        with self.db.get_session() as session:
            session.query(ReportRecord).filter(ReportRecord.id == report_id).delete()
            session.query(ReportViewRecord).filter(ReportViewRecord.report_id == report_id).delete()

        self.state.remove_report(report_id)
        logger.info(f"报表删除成功: id={report_id}")

    # ============ 浏览记录 ============

    def track_view(self, report_id: str, user_id: str) -> bool:
        """
        记录一次报表浏览；失败只记录日志，不影响报表查看

        Returns:
            是否记录成功
        """
        try:
            with self.db.get_session() as session:
                session.add(ReportViewRecord(id=generate_id(), report_id=report_id, user_id=user_id))
            logger.debug(f"记录报表浏览: report={report_id}, user={user_id}")
            return True
        except Exception as e:
            logger.error(f"记录报表浏览失败: report={report_id}, user={user_id}, error={e}", exc_info=True)
            return False

    def get_recent_report_ids(self, user_id: str, limit: int = RECENT_LIMIT) -> List[str]:
        """获取用户最近浏览的报表ID（最近的在前，去重）"""
        try:
            with self.db.get_session() as session:
                last_viewed = func.max(ReportViewRecord.viewed_at)
                rows = (
                    session.query(ReportViewRecord.report_id, last_viewed)
                    .filter(ReportViewRecord.user_id == user_id)
                    .group_by(ReportViewRecord.report_id)
                    .order_by(last_viewed.desc())
                    .limit(limit)
                    .all()
                )
            return [report_id for report_id, _ in rows]
        except Exception as e:
            logger.error(f"获取最近浏览报表失败: user={user_id}, error={e}", exc_info=True)
            return []

    # ============ 首页列表 ============

    @staticmethod
    def my_reports(reports: List[ReportConfig], user: Optional[User]) -> List[ReportConfig]:
        return filter_reports(reports, user, "mine")

    @staticmethod
    def scheduled_reports(reports: List[ReportConfig]) -> List[ReportConfig]:
        return [r for r in reports if r.schedule.enabled]

    @staticmethod
    def recent_reports(
        reports: List[ReportConfig],
        user: Optional[User],
        recent_ids: List[str],
        limit: int = RECENT_LIMIT
    ) -> List[ReportConfig]:
        """
        最近浏览的可见报表；没有浏览记录时返回前 limit 个可见报表
        """
        accessible = filter_reports(reports, user, "all")
        if not recent_ids:
            return accessible[:limit]

        order = {report_id: index for index, report_id in enumerate(recent_ids)}
        recent = [r for r in accessible if r.id in order]
        recent.sort(key=lambda r: order[r.id])
        return recent[:limit]


# 全局报表管理器实例
_report_manager = None


def get_report_manager() -> ReportManager:
    """获取全局报表管理器实例"""
    global _report_manager
    if _report_manager is None:
        _report_manager = ReportManager()
    return _report_manager
