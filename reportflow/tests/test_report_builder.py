"""
报表编辑器测试
"""
from unittest.mock import Mock

import pytest

from reportflow.services.dto import (
    FilterCondition,
    ReportColumn,
    ReportConfig,
    SortCondition,
)
from reportflow.services.exceptions import NotFoundError, ReportValidationError
from reportflow.services.report_builder import ActiveTab, ReportBuilder
from reportflow.services.report_manager import ReportManager


@pytest.fixture
def manager():
    """模拟报表管理器，保存时原样返回报表"""
    mock = Mock(spec=ReportManager)
    mock.save_report.side_effect = lambda report, editing: report
    return mock


@pytest.fixture
def builder(app_state, manager):
    return ReportBuilder(app_state=app_state, report_manager=manager)


class TestBuilderDefaults:
    """测试新建报表的默认值"""

    def test_new_report_defaults(self, builder):
        assert builder.config.data_source_id == "ds-live"
        assert builder.config.owner_id == "u2"
        assert builder.config.name == "New Report"
        assert builder.editing is False
        assert builder.active_tab == ActiveTab.DATA

    def test_existing_config_is_copied(self, app_state, manager, orders_report):
        builder = ReportBuilder(app_state=app_state, report_manager=manager, config=orders_report)
        builder.config.name = "Changed"
        assert orders_report.name == "Q3 Sales / Orders"

    def test_set_active_tab(self, builder):
        builder.set_active_tab("filter")
        assert builder.active_tab == ActiveTab.FILTER
        builder.set_active_tab(ActiveTab.VISUAL)
        assert builder.active_tab == ActiveTab.VISUAL

    def test_exposed_tables_and_views(self, builder):
        assert [t.id for t in builder.all_tables_and_views()] == ["t-orders", "t-audit", "v-customers"]
        assert [t.id for t in builder.exposed_tables_and_views()] == ["t-orders", "v-customers"]
        assert builder.is_view("v-customers")
        assert not builder.is_view("t-orders")


class TestColumns:
    """测试列选择"""

    def test_toggle_twice_restores_selection(self, builder):
        builder.toggle_column("t-orders", "c-amount")
        assert builder.is_column_selected("t-orders", "c-amount")
        assert builder.config.selected_columns[0].formatting is None

        builder.toggle_column("t-orders", "c-amount")
        assert builder.config.selected_columns == []

    def test_change_data_source_clears_references(self, builder):
        builder.toggle_column("t-orders", "c-amount")
        builder.add_filter()
        builder.add_sort()

        builder.change_data_source("ds-ai")

        assert builder.config.data_source_id == "ds-ai"
        assert builder.config.selected_columns == []
        assert builder.config.filters == []
        assert builder.config.sorts == []

    def test_column_names(self, builder):
        assert builder.get_column_name("t-orders", "c-customer") == "Orders.Customer"
        assert builder.get_column_name("t-orders", "c-date") == "Orders.order_date"
        assert builder.get_column_name("t-orders", "missing") == "Orders.[Column Not Found]"
        assert builder.get_column_name("missing", "c-id") == "[Table Not Found].[Column Not Found]"

    def test_column_type_defaults_to_string(self, builder):
        assert builder.get_column_type("t-orders", "c-amount") == "currency"
        assert builder.get_column_type("t-orders", "missing") == "string"

    def test_all_columns_only_exposed(self, builder):
        columns = builder.get_all_columns()
        assert len(columns) == 7
        assert columns[0] == {"tableId": "t-orders", "columnId": "c-id", "displayName": "Orders.id"}
        assert columns[-1]["displayName"] == "Active Customers.since"
        assert all(c["tableId"] != "t-audit" for c in columns)


class TestFormatting:
    """测试列格式化配置"""

    def test_enable_uses_type_default(self, builder):
        builder.toggle_column("t-orders", "c-amount")
        builder.enable_formatting("t-orders", "c-amount")

        formatting = builder.config.selected_columns[0].formatting
        assert formatting.type == "currency"
        assert formatting.config.decimal_places == 2

    def test_update_field_preserves_others(self, builder):
        builder.toggle_column("t-orders", "c-amount")
        builder.enable_formatting("t-orders", "c-amount")

        builder.update_column_formatting_field("t-orders", "c-amount", "decimalPlaces", 0)
        builder.update_column_formatting_field("t-orders", "c-amount", "symbol", "€")

        config = builder.config.selected_columns[0].formatting.config
        assert config.decimal_places == 0
        assert config.symbol == "€"
        assert config.thousand_separator is True
        assert config.symbol_position == "before"

    def test_update_field_rejects_invalid_value(self, builder):
        builder.toggle_column("t-orders", "c-amount")
        builder.enable_formatting("t-orders", "c-amount")

        with pytest.raises(ReportValidationError):
            builder.update_column_formatting_field("t-orders", "c-amount", "decimalPlaces", -1)

    def test_disable_formatting(self, builder):
        builder.toggle_column("t-orders", "c-date")
        builder.enable_formatting("t-orders", "c-date")
        builder.disable_formatting("t-orders", "c-date")

        column = builder.config.selected_columns[0]
        assert column.formatting is None
        assert builder.get_column_formatting(column).config.format == "MM/DD/YYYY"


class TestFilters:
    """测试过滤条件编辑"""

    def test_add_filter_without_exposed_tables_is_noop(self, app_state, manager):
        builder = ReportBuilder(
            app_state=app_state,
            report_manager=manager,
            config=ReportConfig(data_source_id="ds-empty"),
        )
        builder.add_filter()
        assert builder.config.filters == []

    def test_add_filter_uses_first_exposed_column(self, builder):
        builder.add_filter()

        condition = builder.config.filters[0]
        assert (condition.table_id, condition.column_id) == ("t-orders", "c-id")
        assert condition.operator == "equals"
        assert condition.value == ""

    def test_change_column_resets_operator_and_values(self, builder):
        builder.add_filter()
        builder.update_filter(0, {"operator": "between", "value": "1", "value2": "9"})

        builder.update_filter(0, {"columnId": "vc-since"})

        condition = builder.config.filters[0]
        assert condition.table_id == "v-customers"
        assert condition.column_id == "vc-since"
        assert condition.operator == "equals"
        assert condition.value == ""
        assert condition.value2 is None

    def test_update_without_column_change_merges(self, builder):
        builder.add_filter()
        builder.update_filter(0, {"operator": "gt", "value": "10"})

        condition = builder.config.filters[0]
        assert condition.table_id == "t-orders"
        assert (condition.operator, condition.value) == ("gt", "10")

    def test_update_out_of_range_is_ignored(self, builder):
        builder.update_filter(3, {"value": "x"})
        builder.remove_filter(3)
        assert builder.config.filters == []

    def test_operators_follow_column_type(self, builder):
        builder.add_filter()
        builder.update_filter(0, {"column_id": "c-shipped"})
        assert [o.value for o in builder.operators_for_filter(0)] == ["equals", "is_null", "is_not_null"]

    def test_remove_filter(self, builder):
        builder.add_filter()
        builder.add_filter()
        first_id = builder.config.filters[0].id

        builder.remove_filter(1)

        assert [f.id for f in builder.config.filters] == [first_id]


class TestSorts:
    """测试排序编辑"""

    def test_add_sort_requires_columns(self, builder):
        with pytest.raises(ReportValidationError, match="Please select columns first"):
            builder.add_sort()

    def test_add_update_remove_sort(self, builder):
        builder.toggle_column("t-orders", "c-amount")
        builder.add_sort()
        assert builder.config.sorts == [SortCondition(table_id="t-orders", column_id="c-amount", direction="asc")]

        builder.update_sort(0, {"direction": "desc"})
        assert builder.config.sorts[0].direction == "desc"

        builder.remove_sort(0)
        assert builder.config.sorts == []


class TestValidateAndSave:
    """测试校验、保存和加载"""

    def test_valid_report(self, app_state, manager, orders_report):
        builder = ReportBuilder(app_state=app_state, report_manager=manager, config=orders_report)
        assert builder.validate() == []

    def test_no_columns(self, builder):
        assert "No columns selected for this report." in builder.validate()

    def test_multiple_tables(self, builder):
        builder.toggle_column("t-orders", "c-amount")
        builder.toggle_column("v-customers", "vc-name")
        assert "A report may reference only one table or view." in builder.validate()

    def test_filter_values_required(self, builder):
        builder.toggle_column("t-orders", "c-amount")
        builder.config.filters = [
            FilterCondition(table_id="t-orders", column_id="c-amount", operator="between", value="1"),
            FilterCondition(table_id="t-orders", column_id="c-customer", operator="gt", value="a"),
            FilterCondition(table_id="t-orders", column_id="c-date", operator="this_month"),
        ]

        errors = builder.validate()

        assert errors == [
            "Filter on Amount requires a second value.",
            "Operator 'gt' is not valid for Customer.",
        ]

    def test_mismatched_formatting(self, builder):
        builder.toggle_column("t-orders", "c-amount")
        builder.update_column_formatting("t-orders", "c-amount", builder.get_column_formatting(
            ReportColumn(table_id="t-orders", column_id="c-date")
        ))
        assert any("does not match" in e for e in builder.validate())

    def test_save_creates_then_edits(self, app_state, manager, orders_report):
        builder = ReportBuilder(app_state=app_state, report_manager=manager, config=orders_report)

        builder.save()
        builder.save()

        assert [c.kwargs["editing"] for c in manager.save_report.call_args_list] == [False, True]
        assert builder.editing is True

    def test_save_rejects_invalid_report(self, builder, manager):
        with pytest.raises(ReportValidationError) as exc_info:
            builder.save()
        assert exc_info.value.details["errors"] == ["No columns selected for this report."]
        manager.save_report.assert_not_called()

    def test_save_missing_report_creates_new_id(self, app_state, config_db, orders_report):
        report_manager = ReportManager(db=config_db, app_state=app_state)
        builder = ReportBuilder(
            app_state=app_state,
            report_manager=report_manager,
            config=orders_report,
            editing=True,
        )

        saved = builder.save()

        assert saved.id != "r-orders"
        assert report_manager.get_report(saved.id).name == "Q3 Sales / Orders"
        assert builder.config.id == saved.id

    def test_load_from_state_keeps_owner(self, app_state, manager, orders_report):
        app_state.add_report(orders_report.model_copy(update={"owner_id": "u1"}))
        builder = ReportBuilder(app_state=app_state, report_manager=manager)

        builder.load("r-orders")

        assert builder.editing is True
        assert builder.config.owner_id == "u1"
        manager.get_report.assert_not_called()

    def test_load_missing_report_starts_new(self, builder, manager):
        manager.get_report.side_effect = NotFoundError("Report", "gone")
        original_id = builder.config.id

        builder.load("gone")

        assert builder.editing is False
        assert builder.config.id not in (original_id, "gone")
