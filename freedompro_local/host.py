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
"""Host side of the bridge: where local accessories live and get persisted."""

import abc
import asyncio
import json
import logging
import sqlite3
import time
from typing import Any, Dict, List

from .database import ensure_schema_and_migrate
from .homekit_uuids import CHAR_ON, get_characteristic_name
from .models import LocalAccessory

logger = logging.getLogger(__name__)


class AccessoryHost(abc.ABC):
    """The narrow interface the synchronization core needs from its host.

    The core creates and restores accessories and reports characteristic
    changes; everything about persistence belongs to the host.
    """

    @abc.abstractmethod
    def restored_accessories(self) -> List[LocalAccessory]:
        """Accessories the host persisted in an earlier run."""

    @abc.abstractmethod
    def create_local_accessory(self, accessory: LocalAccessory) -> None:
        """Register a new accessory. Called once per UUID, ever."""

    @abc.abstractmethod
    def restore_local_accessory(self, accessory: LocalAccessory) -> None:
        """Refresh an already registered accessory after reconciliation."""

    @abc.abstractmethod
    def notify_characteristic_changed(self, accessory: LocalAccessory, value: bool) -> None:
        """Report a new value for the accessory's On characteristic."""


class SQLiteAccessoryHost(AccessoryHost):
    """SQLite-backed accessory store with in-memory caching.

    Rows are loaded once at startup and only written back when something
    changes. Characteristic changes are pushed to every registered SSE
    listener queue.
    """

    def __init__(self, db_path: str):
        """Initialize the store.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path
        self.accessories: Dict[str, LocalAccessory] = {}  # uuid -> accessory
        self.last_values: Dict[str, bool] = {}  # uuid -> last persisted On value
        self.event_listeners: List[asyncio.Queue] = []
        ensure_schema_and_migrate(self.db_path)
        self._load_from_db()

    def _load_from_db(self):
        """Load all persisted accessories into memory."""
        conn = sqlite3.connect(self.db_path)
        cursor = conn.execute("""
            SELECT uuid, display_name, composite_id, device_uid, accessory_uid,
                   manufacturer, model, serial_number, home, is_on
            FROM accessories
            ORDER BY created_at, uuid
        """)
        for (uuid, display_name, composite_id, device_uid, accessory_uid,
             manufacturer, model, serial_number, home, is_on) in cursor.fetchall():
            self.accessories[uuid] = LocalAccessory(
                uuid=uuid,
                display_name=display_name,
                context={
                    'composite_id': composite_id,
                    'device_uid': device_uid,
                    'accessory_uid': accessory_uid,
                    'manufacturer': manufacturer,
                    'model': model,
                    'serial_number': serial_number,
                    'home': home,
                },
            )
            self.last_values[uuid] = bool(is_on)
        conn.close()
        logger.info(f"Loaded {len(self.accessories)} accessories from {self.db_path}")

    def restored_accessories(self) -> List[LocalAccessory]:
        return list(self.accessories.values())

    def create_local_accessory(self, accessory: LocalAccessory) -> None:
        if accessory.uuid in self.accessories:
            # Registering a UUID twice is a bug in the caller, never overwrite
            raise ValueError(f"Accessory {accessory.uuid} is already registered")

        ctx = accessory.context
        conn = sqlite3.connect(self.db_path)
        try:
            conn.execute("""
                INSERT INTO accessories
                (uuid, display_name, composite_id, device_uid, accessory_uid,
                 manufacturer, model, serial_number, home, is_on)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, 0)
            """, (
                accessory.uuid, accessory.display_name, ctx.get('composite_id'), ctx.get('device_uid'),
                ctx.get('accessory_uid'), ctx.get('manufacturer'), ctx.get('model'),
                ctx.get('serial_number'), ctx.get('home'),
            ))
            conn.commit()
        finally:
            conn.close()

        self.accessories[accessory.uuid] = accessory
        self.last_values[accessory.uuid] = False
        logger.info(f"Registered accessory {accessory.display_name} ({accessory.uuid})")

    def restore_local_accessory(self, accessory: LocalAccessory) -> None:
        self.accessories[accessory.uuid] = accessory
        ctx = accessory.context
        conn = sqlite3.connect(self.db_path)
        conn.execute("""
            UPDATE accessories
            SET display_name = ?, composite_id = ?, device_uid = ?, accessory_uid = ?,
                manufacturer = ?, model = ?, serial_number = ?, home = ?,
                updated_at = CURRENT_TIMESTAMP
            WHERE uuid = ?
        """, (
            accessory.display_name, ctx.get('composite_id'), ctx.get('device_uid'),
            ctx.get('accessory_uid'), ctx.get('manufacturer'), ctx.get('model'),
            ctx.get('serial_number'), ctx.get('home'), accessory.uuid,
        ))
        conn.commit()
        conn.close()
        logger.debug(f"Refreshed accessory {accessory.display_name} ({accessory.uuid})")

    def notify_characteristic_changed(self, accessory: LocalAccessory, value: bool) -> None:
        previous = self.last_values.get(accessory.uuid)
        if previous == value:
            return  # No actual change

        self.last_values[accessory.uuid] = value
        try:
            conn = sqlite3.connect(self.db_path)
            conn.execute(
                "UPDATE accessories SET is_on = ?, updated_at = CURRENT_TIMESTAMP WHERE uuid = ?",
                (1 if value else 0, accessory.uuid)
            )
            conn.commit()
            conn.close()
        except sqlite3.Error as e:
            logger.error(f"Failed to persist state for {accessory.uuid}: {e}")

        self.broadcast_event({
            'type': 'accessory',
            'uuid': accessory.uuid,
            'name': accessory.display_name,
            'characteristic': get_characteristic_name(CHAR_ON),
            'value': value,
            'previous_value': previous,
            'timestamp': time.time(),
        })

    def broadcast_event(self, event_data: Dict[str, Any]):
        """Push an SSE message to every connected listener."""
        event_message = f"data: {json.dumps(event_data)}\n\n"
        for listener in list(self.event_listeners):
            try:
                listener.put_nowait(event_message)
            except asyncio.QueueFull:
                logger.warning("Dropping SSE listener that stopped reading")
                self.event_listeners.remove(listener)

    def close_listeners(self):
        """Signal end of stream to every SSE listener."""
        for listener in list(self.event_listeners):
            try:
                listener.put_nowait(None)
            except asyncio.QueueFull:
                pass
        self.event_listeners.clear()
