"""
报表管理器测试
"""
from datetime import datetime, timedelta, timezone

import pytest

from reportflow.models import ReportViewRecord
from reportflow.services.app_state import AppState
from reportflow.services.dto import DEFAULT_USERS, ReportConfig, ScheduleConfig
from reportflow.services.exceptions import (
    NotFoundError,
    PermissionDeniedError,
    ReportValidationError,
)
from reportflow.services.report_manager import (
    ReportManager,
    can_modify,
    can_view,
    filter_reports,
)

ALICE, BOB, CHARLIE = DEFAULT_USERS


@pytest.fixture
def state():
    return AppState()


@pytest.fixture
def manager(config_db, state):
    return ReportManager(db=config_db, app_state=state)


@pytest.fixture
def reports():
    return [
        ReportConfig(id="r-public", name="Public", owner_id="u2", visibility="public"),
        ReportConfig(id="r-bob", name="Bob private", owner_id="u2"),
        ReportConfig(id="r-charlie", name="Charlie private", owner_id="u3",
                     schedule=ScheduleConfig(enabled=True, frequency="daily")),
    ]


class TestAccessRules:
    """测试报表访问规则"""

    def test_can_view(self, reports):
        public, bob_private, _ = reports
        assert can_view(public, CHARLIE)
        assert can_view(bob_private, BOB)
        assert not can_view(bob_private, CHARLIE)
        assert not can_view(bob_private, ALICE)

    def test_can_modify(self, reports):
        public, bob_private, _ = reports
        assert can_modify(bob_private, BOB)
        assert can_modify(bob_private, ALICE)
        assert not can_modify(public, CHARLIE)
        assert not can_modify(public, None)

    def test_filter_reports(self, reports):
        assert [r.id for r in filter_reports(reports, CHARLIE)] == ["r-public", "r-charlie"]
        assert [r.id for r in filter_reports(reports, BOB, "mine")] == ["r-public", "r-bob"]
        assert filter_reports(reports, None) == []

    def test_dashboard_lists(self, reports):
        assert [r.id for r in ReportManager.my_reports(reports, CHARLIE)] == ["r-charlie"]
        assert [r.id for r in ReportManager.scheduled_reports(reports)] == ["r-charlie"]

    def test_recent_reports_order_and_access(self, reports):
        recent = ReportManager.recent_reports(reports, CHARLIE, ["r-charlie", "r-bob", "r-public"])
        assert [r.id for r in recent] == ["r-charlie", "r-public"]

    def test_recent_reports_fallback(self, reports):
        recent = ReportManager.recent_reports(reports, BOB, [], limit=1)
        assert [r.id for r in recent] == ["r-public"]


class TestReportPersistence:
    """测试报表持久化"""

    def test_create_and_get(self, manager, state, orders_report):
        manager.create_report(orders_report)

        loaded = manager.get_report("r-orders")
        assert loaded == orders_report
        assert state.get_report("r-orders") is not None

    def test_create_duplicate_rejected(self, manager, orders_report):
        manager.create_report(orders_report)
        with pytest.raises(ReportValidationError):
            manager.create_report(orders_report)

    def test_get_missing(self, manager):
        with pytest.raises(NotFoundError) as exc_info:
            manager.get_report("nope")
        assert exc_info.value.status_code == 404

    def test_update_uses_path_id(self, manager, state, orders_report):
        manager.create_report(orders_report)

        updated = manager.update_report("r-orders", orders_report.model_copy(update={"id": "other", "name": "Renamed"}))

        assert updated.id == "r-orders"
        assert manager.get_report("r-orders").name == "Renamed"
        assert [r.name for r in state.get_reports()] == ["Renamed"]

    def test_update_missing(self, manager, orders_report):
        with pytest.raises(NotFoundError):
            manager.update_report("r-orders", orders_report)

    def test_save_report_fallback_creates(self, manager, orders_report):
        saved = manager.save_report(orders_report, editing=True)
        assert saved.id != "r-orders"
        assert manager.get_report(saved.id).name == orders_report.name

    def test_list_reports_syncs_state(self, manager, state, reports):
        for report in reports:
            manager.create_report(report)
        state.set_reports([])

        listed = manager.list_reports()

        assert {r.id for r in listed} == {"r-public", "r-bob", "r-charlie"}
        assert len(state.get_reports()) == 3
        assert {r.id for r in manager.list_reports_for_user(CHARLIE)} == {"r-public", "r-charlie"}

    def test_delete_requires_permission(self, manager, orders_report):
        manager.create_report(orders_report)

        with pytest.raises(PermissionDeniedError, match="You do not have permission to delete this report."):
            manager.delete_report("r-orders", CHARLIE)

        manager.delete_report("r-orders", ALICE)
        with pytest.raises(NotFoundError):
            manager.get_report("r-orders")

    def test_delete_removes_views(self, manager, config_db, orders_report):
        manager.create_report(orders_report)
        manager.track_view("r-orders", "u2")

        manager.delete_report("r-orders")

        with config_db.get_session() as session:
            assert session.query(ReportViewRecord).count() == 0


class TestRecentViews:
    """测试浏览记录"""

    def test_track_view(self, manager):
        assert manager.track_view("r1", "u2") is True
        assert manager.get_recent_report_ids("u2") == ["r1"]

    def test_recent_ids_most_recent_first(self, manager, config_db):
        base = datetime(2024, 7, 1, tzinfo=timezone.utc)
        views = [("r1", 0), ("r2", 1), ("r1", 2), ("r3", 3), ("r-other-user", 4)]
        with config_db.get_session() as session:
            for index, (report_id, offset) in enumerate(views):
                session.add(ReportViewRecord(
                    id=f"v{index}",
                    report_id=report_id,
                    user_id="u3" if report_id == "r-other-user" else "u2",
                    viewed_at=base + timedelta(minutes=offset),
                ))

        assert manager.get_recent_report_ids("u2") == ["r3", "r1", "r2"]
        assert manager.get_recent_report_ids("u2", limit=1) == ["r3"]

    def test_track_view_failure_is_reported(self, state):
        class BrokenDatabase:
            def get_session(self):
                raise RuntimeError("database is locked")

        manager = ReportManager(db=BrokenDatabase(), app_state=state)
        assert manager.track_view("r1", "u2") is False
        assert manager.get_recent_report_ids("u2") == []
