#
# Copyright 2025 TadoLocalProxy and AmpScm contributors.
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

"""Freedompro Local API - wires the cloud client, registry, cache and background loops together."""

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional

from .cloud import CloudAPIError, FreedomproCloudAPI
from .dispatcher import CommandDispatcher
from .homekit_uuids import describe_accessory
from .host import AccessoryHost
from .models import FrameParseError
from .poller import ACCESSORY_POLL_INTERVAL, GLOBAL_POLL_INTERVAL, PollingUpdater
from .registry import AccessoryRegistry, Reconciler
from .state import StateCache
from .stream import LiveStateStream, ReconnectBackoff

logger = logging.getLogger(__name__)


class FreedomproLocalAPI:
    """Keeps a local accessory registry in sync with the Freedompro cloud."""

    def __init__(self, cloud_api: FreedomproCloudAPI, host: AccessoryHost,
                 accessory_poll_interval: float = ACCESSORY_POLL_INTERVAL,
                 global_poll_interval: float = GLOBAL_POLL_INTERVAL,
                 reconnect_delay: float = 1.0):
        self.cloud_api = cloud_api
        self.host = host
        self.registry = AccessoryRegistry()
        self.state_cache = StateCache()
        self.reconciler = Reconciler(self.registry, self.state_cache, host)
        self.dispatcher = CommandDispatcher(cloud_api, self.registry, self.state_cache, host)
        self.stream = LiveStateStream(
            cloud_api, self.registry, self.state_cache, host,
            backoff=ReconnectBackoff(base_delay=reconnect_delay),
        )
        self.poller = PollingUpdater(
            cloud_api, self.registry, self.state_cache, host,
            accessory_interval=accessory_poll_interval,
            global_interval=global_poll_interval,
        )

        self.started_at: Optional[float] = None
        self.last_discovery: Optional[float] = None
        self.last_discovery_error: Optional[str] = None
        self.background_tasks: List[asyncio.Task] = []
        self.is_shutting_down = False

    async def initialize(self):
        """Restore cached accessories, discover devices and start the background loops.

        A failed discovery is logged, not raised: the loops still start and
        keep serving restored accessories until the cloud becomes reachable.
        """
        self.started_at = time.time()
        restored = self.reconciler.load_restored(self.host.restored_accessories())
        logger.info(f"Restored {restored} accessories from local store")

        try:
            await self.discover_devices()
        except (CloudAPIError, FrameParseError) as e:
            logger.error(f"Initial device discovery failed: {e}")

        self.start_background_tasks()
        logger.info("Freedompro Local API initialized successfully")

    async def discover_devices(self) -> Dict[str, int]:
        """Fetch the device directory and reconcile it with the registry."""
        try:
            devices = await self.cloud_api.list_devices()
        except (CloudAPIError, FrameParseError) as e:
            self.last_discovery_error = str(e)
            raise

        result = self.reconciler.reconcile(devices)
        self.last_discovery = time.time()
        self.last_discovery_error = None
        return result

    def start_background_tasks(self):
        """Start the stream consumer and both poll loops. Only the first call has an effect."""
        if self.background_tasks:
            logger.debug("Background tasks already running")
            return

        self.background_tasks = [
            asyncio.create_task(self.stream.run(), name="freedompro-stream"),
            asyncio.create_task(self.poller.accessory_poll_loop(), name="freedompro-accessory-poll"),
            asyncio.create_task(self.poller.global_poll_loop(), name="freedompro-global-poll"),
        ]
        logger.info("Started event stream consumer and polling loops")

    async def cleanup(self):
        """Stop the background loops and release the HTTP session. Only used at process shutdown."""
        logger.info("Starting cleanup...")
        self.is_shutting_down = True

        if self.background_tasks:
            logger.info(f"Cancelling {len(self.background_tasks)} background tasks")
            for task in self.background_tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*self.background_tasks, return_exceptions=True)
            logger.info("Background tasks cancelled")

        await self.cloud_api.close()
        logger.info("Cleanup complete")

    def get_accessory(self, uuid: str, enhanced: bool = True) -> Optional[Dict[str, Any]]:
        """Describe one accessory together with its cached state."""
        accessory = self.registry.get(uuid)
        if accessory is None:
            return None

        data = {'uuid': uuid, 'display_name': accessory.display_name} | self.registry.metadata(uuid)
        state = self.state_cache.get(uuid)
        data['state'] = state.to_dict() if state else None
        if enhanced:
            data['services'] = describe_accessory(data, state.is_on if state else False)
        return data

    def list_accessories(self, enhanced: bool = True) -> List[Dict[str, Any]]:
        return [self.get_accessory(accessory.uuid, enhanced) for accessory in self.registry]

    def get_status(self) -> Dict[str, Any]:
        return {
            'accessories': len(self.registry),
            'started_at': self.started_at,
            'uptime': time.time() - self.started_at if self.started_at else None,
            'last_discovery': self.last_discovery,
            'last_discovery_error': self.last_discovery_error,
            'stream': {
                'connected': self.stream.connected,
                'connections': self.stream.connection_count,
                'reconnects': self.stream.reconnect_count,
                'frames_received': self.stream.frames_received,
                'frames_discarded': self.stream.frames_discarded,
                'events_applied': self.stream.events_applied,
                'last_delay': self.stream.last_delay,
                'last_error': self.stream.last_error,
            },
            'polling': {
                'accessory_interval': self.poller.accessory_interval,
                'global_interval': self.poller.global_interval,
                'accessory_polls': self.poller.accessory_polls,
                'global_polls': self.poller.global_polls,
                'updates': self.poller.poll_updates,
                'failures': self.poller.poll_failures,
            },
            'commands_sent': self.dispatcher.commands_sent,
        }
