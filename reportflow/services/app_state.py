"""
应用状态容器
当前用户、数据源目录和报表列表的进程级状态，支持订阅变更通知
"""
import threading
from typing import Callable, Dict, Generic, List, Optional, TypeVar

from .dto import DEFAULT_USERS, DataSource, ReportConfig, User
from ..utils.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")
Listener = Callable[[T], None]


class StateHolder(Generic[T]):
    """
    单值状态容器

    set() 会递增 version 并同步通知所有订阅者；订阅时立即收到当前值。
    """

    def __init__(self, initial: T):
        self._value = initial
        self._version = 0
        self._listeners: Dict[int, Listener] = {}
        self._next_token = 0
        self._lock = threading.Lock()

    @property
    def version(self) -> int:
        return self._version

    def get(self) -> T:
        return self._value

    def set(self, value: T):
        with self._lock:
            self._value = value
            self._version += 1
            listeners = list(self._listeners.values())

        for listener in listeners:
            try:
                listener(value)
            except Exception as e:
                # 单个订阅者失败不影响其他订阅者
                logger.error(f"状态订阅者执行失败: {e}", exc_info=True)

    def subscribe(self, listener: Listener) -> int:
        """
        订阅变更

        Args:
            listener: 回调函数，参数为最新值

        Returns:
            订阅令牌，用于取消订阅
        """
        with self._lock:
            token = self._next_token
            self._next_token += 1
            self._listeners[token] = listener
        listener(self._value)
        return token

    def unsubscribe(self, token: int) -> bool:
        with self._lock:
            return self._listeners.pop(token, None) is not None


class AppState:
    """应用状态：当前用户、数据源、报表"""

    def __init__(self, current_user: Optional[User] = None):
        self.current_user = StateHolder[User](current_user or DEFAULT_USERS[0])
        self.data_sources = StateHolder[List[DataSource]]([])
        self.reports = StateHolder[List[ReportConfig]]([])

    # ============ 当前用户 ============

    def get_current_user(self) -> User:
        return self.current_user.get()

    def set_current_user(self, user: User):
        self.current_user.set(user)

    # ============ 数据源 ============

    def get_data_sources(self) -> List[DataSource]:
        return self.data_sources.get()

    def get_data_source(self, data_source_id: str) -> Optional[DataSource]:
        for ds in self.data_sources.get():
            if ds.id == data_source_id:
                return ds
        return None

    def set_data_sources(self, data_sources: List[DataSource]):
        self.data_sources.set(list(data_sources))

    def add_data_source(self, data_source: DataSource):
        self.data_sources.set([*self.data_sources.get(), data_source])

    def update_data_source(self, data_source: DataSource):
        self.data_sources.set([
            data_source if ds.id == data_source.id else ds
            for ds in self.data_sources.get()
        ])

    def remove_data_source(self, data_source_id: str):
        self.data_sources.set([ds for ds in self.data_sources.get() if ds.id != data_source_id])

    # ============ 报表 ============

    def get_reports(self) -> List[ReportConfig]:
        return self.reports.get()

    def get_report(self, report_id: str) -> Optional[ReportConfig]:
        for report in self.reports.get():
            if report.id == report_id:
                return report
        return None

    def set_reports(self, reports: List[ReportConfig]):
        """设置报表列表，按ID去重（保留第一次出现的报表）"""
        unique: Dict[str, ReportConfig] = {}
        for report in reports:
            unique.setdefault(report.id, report)

        if len(unique) != len(reports):
            logger.warning(f"移除重复报表: {len(reports) - len(unique)} 个")

        self.reports.set(list(unique.values()))

    def add_report(self, report: ReportConfig):
        """新增报表；ID已存在时转为更新"""
        if self.get_report(report.id) is not None:
            logger.warning(f"报表已存在，改为更新: {report.id}")
            self.update_report(report)
            return
        self.reports.set([*self.reports.get(), report])

    def update_report(self, report: ReportConfig):
        """插入或更新报表（幂等）"""
        others = [r for r in self.reports.get() if r.id != report.id]
        self.reports.set([*others, report])

    def remove_report(self, report_id: str):
        self.reports.set([r for r in self.reports.get() if r.id != report_id])


# 全局应用状态实例
_app_state = None


def get_app_state() -> AppState:
    """获取全局应用状态实例"""
    global _app_state
    if _app_state is None:
        _app_state = AppState()
    return _app_state
