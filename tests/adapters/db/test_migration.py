from __future__ import annotations

from decimal import Decimal
import importlib.util
from pathlib import Path
from types import ModuleType

from alembic.migration import MigrationContext
from alembic.operations import Operations
from sqlalchemy import create_engine, inspect

from shopincome.adapters.db.facade import DB
from shopincome.adapters.db.models import Base
from tests.fixtures.shopify_orders import bootstrap_db, order_node, save_node

MIGRATION_PATH = (
    Path(__file__).resolve().parents[3] / "alembic" / "versions" / "001_income_tables.py"
)


def load_migration() -> ModuleType:
    spec = importlib.util.spec_from_file_location("income_tables_migration", MIGRATION_PATH)
    assert spec is not None and spec.loader is not None
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def test_upgrade_matches_models_and_downgrade_drops() -> None:
    # Setup
    migration = load_migration()
    engine = create_engine("sqlite://")

    with engine.begin() as conn:
        with Operations.context(MigrationContext.configure(conn)):
            # Act
            migration.upgrade()
            inspector = inspect(conn)
            tables = set(inspector.get_table_names())
            columns = {
                name: {column["name"] for column in inspector.get_columns(name)}
                for name in tables
            }
            income_indexes = {
                index["name"] for index in inspector.get_indexes("order_income")
            }

            migration.downgrade()
            remaining = set(inspect(conn).get_table_names())

    # Assert
    assert tables == set(Base.metadata.tables)
    for name, table in Base.metadata.tables.items():
        assert columns[name] == {column.name for column in table.columns}
    assert income_indexes == {
        "idx_order_income_processed",
        "idx_order_income_excluded_processed",
    }
    assert remaining == set()


def test_migrated_sqlite_keeps_amounts_exact(tmp_path: Path) -> None:
    # Setup
    url = f"sqlite:///{tmp_path / 'migrated.db'}"
    engine = create_engine(url)
    with engine.begin() as conn:
        with Operations.context(MigrationContext.configure(conn)):
            load_migration().upgrade()
    engine.dispose()
    db = bootstrap_db(DB(url))

    # Act
    save_node(db, order_node(subtotal="12345678901234.123456", shipping="0.000001"))

    # Assert
    row = db.get_order_income("gid://shopify/Order/1")
    assert row is not None
    assert row.subtotal == Decimal("12345678901234.123456")
    assert row.gross == Decimal("12345678901234.123457")
    assert row.net == Decimal("12345678901234.123457")
