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

"""State-change commands towards the cloud, with optimistic cache updates."""

import logging

from .cloud import FreedomproCloudAPI
from .host import AccessoryHost
from .registry import AccessoryRegistry
from .state import SOURCE_COMMAND, StateCache

logger = logging.getLogger(__name__)


class CommandDispatcher:
    """Sends on/off commands and answers reads from the cache."""

    def __init__(self, cloud_api: FreedomproCloudAPI, registry: AccessoryRegistry,
                 state_cache: StateCache, host: AccessoryHost):
        self.cloud_api = cloud_api
        self.registry = registry
        self.state_cache = state_cache
        self.host = host
        self.commands_sent = 0

    async def set_state(self, composite_id: str, desired_on: bool) -> bool:
        """
        Switch an accessory on or off.

        The cache is written as soon as the cloud accepts the request, whatever
        the response body says; a later stream event or poll corrects it if the
        device did not follow. A failed request leaves the cache untouched and
        is not retried.

        Args:
            composite_id: ``deviceUid*accessoryUid``
            desired_on: Requested state

        Returns:
            The value now in the cache

        Raises:
            KeyError: if the composite id is not in the registry
            CloudAPIError: if the request failed
        """
        accessory = self.registry.resolve_composite(composite_id)
        if accessory is None:
            raise KeyError(composite_id)

        desired_on = bool(desired_on)
        await self.cloud_api.set_accessory_state(composite_id, desired_on)
        self.commands_sent += 1

        self.state_cache.write(accessory.uuid, desired_on, SOURCE_COMMAND)
        self.host.notify_characteristic_changed(accessory, desired_on)
        logger.debug(f"Set Characteristic On -> {desired_on} ({accessory.display_name})")
        return desired_on

    def get_state(self, composite_id: str) -> bool:
        """Return the cached on value. Never touches the network.

        Raises:
            KeyError: if the composite id is not in the registry
        """
        accessory = self.registry.resolve_composite(composite_id)
        if accessory is None:
            raise KeyError(composite_id)
        value = self.state_cache.read(accessory.uuid)
        logger.debug(f"Get Characteristic On -> {value} ({accessory.display_name})")
        return value
