"""
应用状态容器测试
"""
from reportflow.services.app_state import AppState, StateHolder
from reportflow.services.dto import DEFAULT_USERS, ReportConfig


class TestStateHolder:
    """测试单值状态容器"""

    def test_subscribe_receives_current_value(self):
        holder = StateHolder(1)
        received = []
        holder.subscribe(received.append)
        assert received == [1]

    def test_set_notifies_and_bumps_version(self):
        holder = StateHolder("a")
        received = []
        holder.subscribe(received.append)

        holder.set("b")
        holder.set("c")

        assert received == ["a", "b", "c"]
        assert holder.version == 2
        assert holder.get() == "c"

    def test_unsubscribe(self):
        holder = StateHolder(0)
        received = []
        token = holder.subscribe(received.append)

        assert holder.unsubscribe(token) is True
        assert holder.unsubscribe(token) is False
        holder.set(5)
        assert received == [0]

    def test_failing_listener_does_not_block_others(self):
        holder = StateHolder(0)
        received = []

        def broken(value):
            if value:
                raise RuntimeError("boom")

        holder.subscribe(broken)
        holder.subscribe(received.append)
        holder.set(3)

        assert received == [0, 3]


class TestAppState:
    """测试应用状态"""

    def test_default_user_is_admin(self):
        state = AppState()
        assert state.get_current_user().id == "u1"

    def test_switch_user(self):
        state = AppState()
        state.set_current_user(DEFAULT_USERS[2])
        assert state.get_current_user().name == "Charlie Viewer"

    def test_set_reports_dedupes_by_id(self):
        state = AppState()
        first = ReportConfig(id="r1", name="First")
        duplicate = ReportConfig(id="r1", name="Second")
        other = ReportConfig(id="r2", name="Other")

        state.set_reports([first, duplicate, other])

        reports = state.get_reports()
        assert [r.id for r in reports] == ["r1", "r2"]
        assert reports[0].name == "First"

    def test_update_report_is_upsert(self):
        state = AppState()
        state.update_report(ReportConfig(id="r1", name="Created"))
        state.update_report(ReportConfig(id="r1", name="Renamed"))

        assert len(state.get_reports()) == 1
        assert state.get_report("r1").name == "Renamed"

    def test_add_existing_report_updates(self):
        state = AppState()
        state.add_report(ReportConfig(id="r1", name="One"))
        state.add_report(ReportConfig(id="r1", name="Uno"))

        assert [r.name for r in state.get_reports()] == ["Uno"]

    def test_remove_report(self):
        state = AppState()
        state.set_reports([ReportConfig(id="r1"), ReportConfig(id="r2")])
        state.remove_report("r1")
        assert state.get_report("r1") is None
        assert state.get_report("r2") is not None

    def test_data_source_lifecycle(self, live_source, custom_source):
        state = AppState()
        state.add_data_source(live_source)
        state.add_data_source(custom_source)

        renamed = live_source.model_copy(update={"name": "Renamed"})
        state.update_data_source(renamed)
        assert state.get_data_source("ds-live").name == "Renamed"

        state.remove_data_source("ds-live")
        assert [ds.id for ds in state.get_data_sources()] == ["ds-ai"]

    def test_subscribers_see_report_changes(self):
        state = AppState()
        seen = []
        state.reports.subscribe(lambda reports: seen.append(len(reports)))
        state.add_report(ReportConfig(id="r1"))
        state.add_report(ReportConfig(id="r2"))
        assert seen == [0, 1, 2]
