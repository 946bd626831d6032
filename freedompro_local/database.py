#
# Copyright 2025 The TadoLocal and AmpScm contributors.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#    http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#

"""Database schema for the local accessory store."""

import sqlite3

SUPPORTED_SCHEMA_VERSION = 2

ACCESSORY_SCHEMA = """
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
    is_on BOOLEAN DEFAULT 0,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_accessories_composite ON accessories(composite_id);
"""


def _apply_script_tolerant(conn, script: str):
    # Statement by statement; older databases may miss columns an index refers to.
    for stmt in [s.strip() for s in script.split(';') if s.strip()]:
        try:
            conn.execute(stmt)
        except sqlite3.OperationalError:
            continue


def ensure_schema_and_migrate(db_path: str):
    """Ensure the schema exists and run migrations using PRAGMA user_version.

    Version 1 stored accessories without their last known on value. Migration
    to version 2 adds the ``is_on`` column, defaulting every row to off.

    Raises:
        RuntimeError: if the database was written by a newer schema version
    """
    conn = sqlite3.connect(db_path)
    try:
        current_version = conn.execute("PRAGMA user_version").fetchone()[0]
        if current_version > SUPPORTED_SCHEMA_VERSION:
            raise RuntimeError(
                f"Database schema version ({current_version}) is newer than supported ({SUPPORTED_SCHEMA_VERSION})"
            )

        _apply_script_tolerant(conn, ACCESSORY_SCHEMA)

        if current_version < 2:
            conn.execute("BEGIN IMMEDIATE")
            try:
                columns = [r[1] for r in conn.execute("PRAGMA table_info(accessories)").fetchall()]
                if 'is_on' not in columns:
                    conn.execute("ALTER TABLE accessories ADD COLUMN is_on BOOLEAN DEFAULT 0")
                conn.execute(f"PRAGMA user_version = {SUPPORTED_SCHEMA_VERSION}")
                conn.commit()
            except Exception:
                conn.rollback()
                raise

        _apply_script_tolerant(conn, ACCESSORY_SCHEMA)
        conn.commit()
    finally:
        conn.close()
