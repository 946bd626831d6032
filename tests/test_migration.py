import sqlite3

import pytest

from freedompro_local.database import SUPPORTED_SCHEMA_VERSION, ensure_schema_and_migrate


def create_old_db(path: str):
    conn = sqlite3.connect(path)
    # Version 1 accessories table, without the on value
    conn.execute("""
    CREATE TABLE IF NOT EXISTS accessories (
        uuid TEXT PRIMARY KEY,
        display_name TEXT NOT NULL,
        composite_id TEXT NOT NULL,
        device_uid TEXT,
        accessory_uid TEXT,
        manufacturer TEXT,
        model TEXT,
        serial_number TEXT,
        home TEXT,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """)
    conn.execute("INSERT INTO accessories (uuid, display_name, composite_id) VALUES (?,?,?)", ('u1', 'Kitchen', 'd*A1'))
    conn.execute("INSERT INTO accessories (uuid, display_name, composite_id) VALUES (?,?,?)", ('u2', 'Hall', 'd*A2'))
    conn.execute("PRAGMA user_version = 1")
    conn.commit()
    conn.close()


def test_migration_adds_is_on_and_sets_user_version(tmp_path):
    db_file = str(tmp_path / "test_migrate.db")
    create_old_db(db_file)

    ensure_schema_and_migrate(db_file)

    conn = sqlite3.connect(db_file)
    ver = conn.execute("PRAGMA user_version").fetchone()[0]
    assert ver == SUPPORTED_SCHEMA_VERSION

    cols = [r[1] for r in conn.execute("PRAGMA table_info(accessories)").fetchall()]
    assert 'is_on' in cols

    rows = conn.execute("SELECT uuid, is_on FROM accessories ORDER BY uuid").fetchall()
    assert rows == [('u1', 0), ('u2', 0)]
    conn.close()


def test_fresh_database_gets_current_schema(tmp_path):
    db_file = str(tmp_path / "fresh.db")
    ensure_schema_and_migrate(db_file)
    # Running it again is harmless
    ensure_schema_and_migrate(db_file)

    conn = sqlite3.connect(db_file)
    assert conn.execute("PRAGMA user_version").fetchone()[0] == SUPPORTED_SCHEMA_VERSION
    conn.close()


def test_newer_schema_is_refused(tmp_path):
    db_file = str(tmp_path / "future.db")
    conn = sqlite3.connect(db_file)
    conn.execute(f"PRAGMA user_version = {SUPPORTED_SCHEMA_VERSION + 1}")
    conn.commit()
    conn.close()

    with pytest.raises(RuntimeError):
        ensure_schema_and_migrate(db_file)
