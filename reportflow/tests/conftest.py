"""
测试共享fixture
"""
import os

# Use litellm's bundled model cost map instead of fetching it over the network at import time
os.environ.setdefault("LITELLM_LOCAL_MODEL_COST_MAP", "True")

import pytest
from cryptography.fernet import Fernet
from sqlalchemy import create_engine, text

from reportflow.database import Database
from reportflow.services.app_state import AppState
from reportflow.services.dto import (
    ColumnDef,
    ConnectionDetails,
    DataSource,
    ReportColumn,
    ReportConfig,
    TableDef,
    ViewDef,
    DEFAULT_USERS,
)
from reportflow.services.encryption_service import EncryptionService


@pytest.fixture
def orders_table():
    return TableDef(
        id="t-orders",
        name="orders",
        alias="Orders",
        exposed=True,
        columns=[
            ColumnDef(id="c-id", name="id", type="number", is_primary_key=True),
            ColumnDef(id="c-customer", name="customer", type="string", alias="Customer"),
            ColumnDef(id="c-amount", name="amount", type="currency", alias="Amount"),
            ColumnDef(id="c-date", name="order_date", type="date"),
            ColumnDef(id="c-shipped", name="shipped", type="boolean"),
        ],
    )


@pytest.fixture
def hidden_table():
    return TableDef(
        id="t-audit",
        name="audit_log",
        exposed=False,
        columns=[ColumnDef(id="c-event", name="event", type="string")],
    )


@pytest.fixture
def customers_view():
    return ViewDef(
        id="v-customers",
        name="active_customers",
        alias="Active Customers",
        exposed=True,
        definition="SELECT * FROM customers WHERE active = 1",
        columns=[
            ColumnDef(id="vc-name", name="name", type="string"),
            ColumnDef(id="vc-since", name="since", type="date"),
        ],
    )


@pytest.fixture
def live_source(orders_table, hidden_table, customers_view):
    return DataSource(
        id="ds-live",
        name="Sales DB",
        type="postgres",
        connection_details=ConnectionDetails(
            host="localhost", port="5432", database="sales", username="report", password="secret"
        ),
        tables=[orders_table, hidden_table],
        views=[customers_view],
    )


@pytest.fixture
def custom_source(orders_table):
    return DataSource(
        id="ds-ai",
        name="Imagined CRM",
        type="custom",
        tables=[orders_table.model_copy(deep=True)],
    )


@pytest.fixture
def empty_source(hidden_table):
    return DataSource(id="ds-empty", name="Nothing exposed", type="mysql", tables=[hidden_table])


@pytest.fixture
def app_state(live_source, custom_source, empty_source):
    state = AppState(current_user=DEFAULT_USERS[1])
    state.set_data_sources([live_source, custom_source, empty_source])
    return state


@pytest.fixture
def orders_report():
    return ReportConfig(
        id="r-orders",
        name="Q3 Sales / Orders",
        data_source_id="ds-live",
        owner_id="u2",
        selected_columns=[
            ReportColumn(table_id="t-orders", column_id="c-customer"),
            ReportColumn(table_id="t-orders", column_id="c-amount"),
        ],
    )


@pytest.fixture
def config_db(tmp_path):
    """使用临时SQLite文件的配置数据库"""
    db = Database(f"sqlite:///{tmp_path / 'config.db'}")
    db.create_tables()
    yield db
    db.engine.dispose()


@pytest.fixture
def encryption_service():
    return EncryptionService(Fernet.generate_key())


SAMPLE_ORDERS = [
    (1, "Acme", 120.5, "2024-07-01", 1),
    (2, "Globex", 80, "2024-07-15", 0),
    (3, "Initech", 300, "2024-06-30", 1),
    (4, "Acme_Ltd", 50, "2024-07-20", None),
    (5, "", 10, "2023-12-31", 0),
]


@pytest.fixture
def sqlite_path(tmp_path):
    """带 orders 表和 big_orders 视图的临时SQLite业务库"""
    path = tmp_path / "sales.db"
    engine = create_engine(f"sqlite:///{path}")
    with engine.begin() as conn:
        conn.execute(text(
            "CREATE TABLE orders ("
            "id INTEGER PRIMARY KEY, customer TEXT, amount NUMERIC, "
            "order_date DATE, shipped BOOLEAN)"
        ))
        conn.execute(text("CREATE VIEW big_orders AS SELECT id, amount FROM orders WHERE amount > 100"))
        for row in SAMPLE_ORDERS:
            conn.execute(
                text("INSERT INTO orders VALUES (:id, :customer, :amount, :order_date, :shipped)"),
                dict(zip(["id", "customer", "amount", "order_date", "shipped"], row))
            )
    engine.dispose()
    return path


@pytest.fixture
def sqlite_source(sqlite_path, orders_table):
    return DataSource(
        id="ds-sqlite",
        name="Local Sales",
        type="sqlite",
        connection_details=ConnectionDetails(database=str(sqlite_path)),
        tables=[orders_table],
    )
