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

"""Periodic full-state polling, the safety net for missed stream events."""

import asyncio
import logging

from .cloud import CloudAPIError, FreedomproCloudAPI
from .host import AccessoryHost
from .models import FrameParseError
from .registry import AccessoryRegistry
from .state import SOURCE_ACCESSORY_POLL, SOURCE_GLOBAL_POLL, StateCache

logger = logging.getLogger(__name__)

ACCESSORY_POLL_INTERVAL = 60
GLOBAL_POLL_INTERVAL = 5


class PollingUpdater:
    """Runs the per-accessory and the global poll loop.

    Both loops run independently of each other and of the event stream. A
    failed tick is logged and the loop carries on at the next interval.
    """

    def __init__(self, cloud_api: FreedomproCloudAPI, registry: AccessoryRegistry,
                 state_cache: StateCache, host: AccessoryHost,
                 accessory_interval: float = ACCESSORY_POLL_INTERVAL,
                 global_interval: float = GLOBAL_POLL_INTERVAL):
        self.cloud_api = cloud_api
        self.registry = registry
        self.state_cache = state_cache
        self.host = host
        self.accessory_interval = accessory_interval
        self.global_interval = global_interval

        self.accessory_polls = 0
        self.global_polls = 0
        self.poll_failures = 0
        self.poll_updates = 0

    async def poll_accessories(self) -> int:
        """
        Fetch the state of every registered accessory, one request each.

        Returns:
            Number of accessories updated
        """
        self.accessory_polls += 1
        updated = 0
        for accessory in self.registry:
            composite_id = self.registry.composite_id(accessory.uuid)
            if not composite_id:
                continue
            try:
                is_on = await self.cloud_api.get_accessory_state(composite_id)
            except (CloudAPIError, FrameParseError) as e:
                self.poll_failures += 1
                logger.error(f"Failed to poll device state for {accessory.display_name}: {e}")
                continue

            self.state_cache.write(accessory.uuid, is_on, SOURCE_ACCESSORY_POLL)
            self.host.notify_characteristic_changed(accessory, is_on)
            updated += 1
            logger.debug(f"Updated Characteristic On -> {is_on} ({accessory.display_name})")

        self.poll_updates += updated
        return updated

    async def poll_all(self) -> int:
        """
        Fetch the state of all accessories in one request.

        Returns:
            Number of known accessories updated

        Raises:
            CloudAPIError: if the request failed
            FrameParseError: if the response is not a list
        """
        self.global_polls += 1
        states = await self.cloud_api.get_all_states()
        updated = 0
        for entry in states:
            accessory = self.registry.resolve_uid(entry['uid'])
            if accessory is None:
                continue
            self.state_cache.write(accessory.uuid, entry['on'], SOURCE_GLOBAL_POLL)
            self.host.notify_characteristic_changed(accessory, entry['on'])
            updated += 1

        self.poll_updates += updated
        return updated

    async def accessory_poll_loop(self):
        """Per-accessory poll, forever."""
        logger.info(f"Per-accessory polling every {self.accessory_interval}s")
        while True:
            await asyncio.sleep(self.accessory_interval)
            try:
                await self.poll_accessories()
            except Exception as e:
                self.poll_failures += 1
                logger.error(f"Per-accessory polling error: {e}")

    async def global_poll_loop(self):
        """Global poll, forever."""
        logger.info(f"Global polling every {self.global_interval}s")
        while True:
            await asyncio.sleep(self.global_interval)
            try:
                await self.poll_all()
            except (CloudAPIError, FrameParseError) as e:
                self.poll_failures += 1
                logger.error(f"Failed to poll accessory states: {e}")
            except Exception as e:
                self.poll_failures += 1
                logger.error(f"Global polling error: {e}")
