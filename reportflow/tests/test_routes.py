"""
API路由测试
"""
from io import BytesIO
from unittest.mock import Mock

import pytest
from fastapi.testclient import TestClient
from openpyxl import load_workbook
from sqlalchemy import create_engine, text

from reportflow.main import app
from reportflow.services.app_state import AppState
from reportflow.services.data_source_manager import (
    MASKED_PASSWORD,
    DataSourceManager,
    get_data_source_manager,
)
from reportflow.services.database_connector import DatabaseConnector, get_database_connector
from reportflow.services.dto import ConnectionDetails, FilterCondition, ReportColumn, SortCondition
from reportflow.services.formatting_service import default_formatting
from reportflow.services.llm_service import LLMService
from reportflow.services.report_manager import ReportManager, get_report_manager


@pytest.fixture
def state():
    return AppState()


@pytest.fixture
def connector():
    connector = DatabaseConnector()
    yield connector
    connector.close_all_connections()


@pytest.fixture
def ds_manager(config_db, connector, encryption_service, state):
    return DataSourceManager(
        db=config_db,
        connector=connector,
        llm_service=Mock(spec=LLMService),
        encryption_service=encryption_service,
        app_state=state,
    )


@pytest.fixture
def report_manager(config_db, state):
    return ReportManager(db=config_db, app_state=state)


@pytest.fixture
def client(ds_manager, report_manager, connector):
    app.dependency_overrides[get_data_source_manager] = lambda: ds_manager
    app.dependency_overrides[get_report_manager] = lambda: report_manager
    app.dependency_overrides[get_database_connector] = lambda: connector
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def sales_report(orders_report):
    """sqlite 数据源上的订单报表：金额大于100，按金额降序"""
    report = orders_report.model_copy(deep=True, update={"data_source_id": "ds-sqlite"})
    report.selected_columns[1].formatting = default_formatting("currency")
    report.filters = [FilterCondition(table_id="t-orders", column_id="c-amount", operator="gt", value="100")]
    report.sorts = [SortCondition(table_id="t-orders", column_id="c-amount", direction="desc")]
    return report


@pytest.fixture
def other_sqlite_path(tmp_path):
    """结构相同但数据不同的另一个SQLite库"""
    path = tmp_path / "other.db"
    engine = create_engine(f"sqlite:///{path}")
    with engine.begin() as conn:
        conn.execute(text(
            "CREATE TABLE orders ("
            "id INTEGER PRIMARY KEY, customer TEXT, amount NUMERIC, "
            "order_date DATE, shipped BOOLEAN)"
        ))
        conn.execute(text("INSERT INTO orders VALUES (9, 'Other Co', 1, '2024-01-01', 0)"))
    engine.dispose()
    return path


class TestHealth:
    """测试基础接口"""

    def test_root_and_health(self, client):
        assert client.get("/").json()["status"] == "running"
        assert client.get("/health").json() == {"status": "healthy"}


class TestDataSourceRoutes:
    """测试数据源接口"""

    def test_create_masks_password(self, client, ds_manager, live_source):
        response = client.post("/api/datasources", json=live_source.to_wire())

        assert response.status_code == 201
        assert response.json()["connectionDetails"]["password"] == MASKED_PASSWORD
        assert client.get("/api/datasources").json()[0]["connectionDetails"]["password"] == MASKED_PASSWORD
        assert ds_manager.get_data_source("ds-live").connection_details.password == "secret"

    def test_update_with_masked_password_keeps_secret(self, client, ds_manager, live_source):
        client.post("/api/datasources", json=live_source.to_wire())
        payload = client.get("/api/datasources/ds-live").json()
        payload["name"] = "Warehouse"

        response = client.put("/api/datasources/ds-live", json=payload)

        assert response.json()["name"] == "Warehouse"
        assert ds_manager.get_data_source("ds-live").connection_details.password == "secret"

    def test_not_found(self, client):
        response = client.get("/api/datasources/nope")
        assert response.status_code == 404
        assert response.json()["error"] == "NOT_FOUND"

    def test_delete(self, client, live_source):
        client.post("/api/datasources", json=live_source.to_wire())
        assert client.delete("/api/datasources/ds-live").json() == {"success": True}
        assert client.get("/api/datasources/ds-live").status_code == 404

    def test_exposure_and_metadata(self, client, live_source):
        client.post("/api/datasources", json=live_source.to_wire())

        toggled = client.post("/api/datasources/ds-live/tables/t-audit/toggle-exposure").json()
        assert toggled["tables"][1]["exposed"] is True

        renamed = client.patch("/api/datasources/ds-live/tables/t-orders", json={"alias": "All Orders"}).json()
        assert renamed["tables"][0]["alias"] == "All Orders"

        column = client.patch(
            "/api/datasources/ds-live/tables/t-orders/columns/c-amount",
            json={"description": "Order total", "sampleValue": "9.99"},
        ).json()["tables"][0]["columns"][2]
        assert column["description"] == "Order total"
        assert column["sampleValue"] == "9.99"

    def test_test_connection(self, client, sqlite_path):
        response = client.post("/api/datasources/test-connection", json={
            "type": "sqlite",
            "connectionDetails": {"database": str(sqlite_path)},
        })

        assert response.status_code == 200
        body = response.json()
        assert [t["name"] for t in body["tables"]] == ["orders"]
        assert body["tables"][0]["exposed"] is False

    def test_query(self, client, ds_manager, sqlite_source):
        ds_manager.create_data_source(sqlite_source)

        response = client.post("/api/datasources/query", json={
            "dataSourceId": "ds-sqlite",
            "table": "orders",
            "columns": ["id", "customer"],
            "limit": 2,
            "sorts": [{"tableId": "t-orders", "columnId": "c-id", "direction": "desc"}],
        })

        assert response.status_code == 200
        assert response.json() == [{"id": 5, "customer": ""}, {"id": 4, "customer": "Acme_Ltd"}]

    def test_query_with_saved_id_uses_stored_connection(
        self, client, ds_manager, report_manager, connector, sqlite_source, other_sqlite_path, sales_report
    ):
        ds_manager.create_data_source(sqlite_source)
        report_manager.create_report(sales_report)
        supplied = sqlite_source.model_copy(update={
            "connection_details": ConnectionDetails(database=str(other_sqlite_path), password="x")
        })

        response = client.post("/api/datasources/query", json={
            "dataSource": supplied.to_wire(),
            "table": "orders",
            "columns": ["customer"],
            "sorts": [{"tableId": "t-orders", "columnId": "c-id"}],
        })

        assert response.status_code == 200
        assert [row["customer"] for row in response.json()][:2] == ["Acme", "Globex"]
        run = client.post("/api/reports/r-orders/run").json()
        assert [row["Customer"] for row in run["rows"]] == ["Initech", "Acme"]
        assert list(connector.connections) == ["ds-sqlite"]

    def test_query_with_unsaved_source_is_not_cached(self, client, connector, sqlite_source, other_sqlite_path):
        supplied = sqlite_source.model_copy(update={
            "id": "ds-adhoc",
            "connection_details": ConnectionDetails(database=str(other_sqlite_path)),
        })

        response = client.post("/api/datasources/query", json={
            "dataSource": supplied.to_wire(),
            "table": "orders",
            "columns": ["id", "customer"],
        })

        assert response.json() == [{"id": 9, "customer": "Other Co"}]
        assert connector.connections == {}

    def test_query_requires_columns(self, client):
        response = client.post("/api/datasources/query", json={"dataSourceId": "x", "table": "orders", "columns": []})
        assert response.status_code == 422

    def test_query_rejects_custom_source(self, client, ds_manager, custom_source):
        ds_manager.create_data_source(custom_source)
        response = client.post("/api/datasources/query", json={
            "dataSourceId": "ds-ai", "table": "orders", "columns": ["id"],
        })
        assert response.status_code == 400


class TestReportRoutes:
    """测试报表接口"""

    def test_create_and_list_by_visibility(self, client, orders_report):
        response = client.post("/api/reports", json=orders_report.to_wire())
        assert response.status_code == 201

        assert [r["id"] for r in client.get("/api/reports", params={"userId": "u2"}).json()] == ["r-orders"]
        assert client.get("/api/reports", params={"userId": "u3"}).json() == []
        assert len(client.get("/api/reports").json()) == 1

    def test_update_missing_report(self, client, orders_report):
        response = client.put("/api/reports/r-orders", json=orders_report.to_wire())
        assert response.status_code == 404

    def test_delete_permissions(self, client, orders_report):
        client.post("/api/reports", json=orders_report.to_wire())

        assert client.delete("/api/reports/r-orders", params={"userId": "u3"}).status_code == 403
        assert client.delete("/api/reports/r-orders", params={"userId": "ghost"}).status_code == 403
        assert client.delete("/api/reports/r-orders", params={"userId": "u2"}).json() == {"success": True}
        assert client.get("/api/reports/r-orders").status_code == 404

    def test_track_view_and_recent(self, client, orders_report):
        client.post("/api/reports", json=orders_report.to_wire())

        assert client.post("/api/reports/r-orders/view", json={"userId": "u2"}).json() == {"success": True}
        assert client.get("/api/reports/recent", params={"userId": "u2"}).json() == ["r-orders"]

    def test_run_report(self, client, ds_manager, report_manager, sqlite_source, sales_report):
        ds_manager.create_data_source(sqlite_source)
        report_manager.create_report(sales_report)

        body = client.post("/api/reports/r-orders/run").json()

        assert body["status"] == "ready"
        assert body["dataOrigin"] == "live"
        assert body["rows"] == [
            {"Customer": "Initech", "Amount": "$300.00"},
            {"Customer": "Acme", "Amount": "$120.50"},
        ]

    def test_run_multi_table_report_fails(self, client, ds_manager, report_manager, sqlite_source, sales_report):
        ds_manager.create_data_source(sqlite_source)
        sales_report.selected_columns.append(ReportColumn(table_id="v-other", column_id="x"))
        report_manager.create_report(sales_report)

        body = client.post("/api/reports/r-orders/run").json()

        assert body["status"] == "failed"
        assert body["error"] == "Live data fetch supports a single table or view per report."
        assert body["rows"] == []


class TestExportRoutes:
    """测试导出接口"""

    def test_export_excel(self, client, ds_manager, report_manager, sqlite_source, sales_report):
        ds_manager.create_data_source(sqlite_source)
        report_manager.create_report(sales_report)

        response = client.get("/api/export/r-orders/excel")

        assert response.status_code == 200
        assert "filename*=UTF-8''Q3_Sales_Orders_" in response.headers["content-disposition"]
        ws = load_workbook(BytesIO(response.content))["Report"]
        assert [c.value for c in ws[2]] == ["Initech", "$300.00"]

    def test_export_pdf(self, client, ds_manager, report_manager, sqlite_source, sales_report):
        ds_manager.create_data_source(sqlite_source)
        report_manager.create_report(sales_report)

        response = client.get("/api/export/r-orders/pdf")

        assert response.status_code == 200
        assert response.headers["content-type"] == "application/pdf"
        assert response.content.startswith(b"%PDF")

    def test_export_failed_run(self, client, ds_manager, report_manager, sqlite_source, sales_report):
        ds_manager.create_data_source(sqlite_source)
        sales_report.selected_columns.append(ReportColumn(table_id="v-other", column_id="x"))
        report_manager.create_report(sales_report)

        response = client.get("/api/export/r-orders/excel")

        assert response.status_code == 400
        assert response.json()["detail"] == "Live data fetch supports a single table or view per report."

    def test_export_no_rows(self, client, ds_manager, report_manager, sqlite_source, sales_report):
        ds_manager.create_data_source(sqlite_source)
        sales_report.filters[0].value = "100000"
        report_manager.create_report(sales_report)

        response = client.get("/api/export/r-orders/pdf")

        assert response.status_code == 400
        assert response.json()["detail"] == "No data to export."
