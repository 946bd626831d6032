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

"""Accessory registry and reconciliation of cloud devices onto local accessories."""

import logging
from typing import Any, Dict, Iterable, List, Optional

from .homekit_uuids import generate_uuid
from .host import AccessoryHost
from .models import DeviceDescriptor, LocalAccessory, build_context
from .state import StateCache

logger = logging.getLogger(__name__)


class AccessoryRegistry:
    """UUID -> LocalAccessory mapping shared by every component.

    Entries are only ever added. The registry also owns a side-table with the
    descriptor metadata of each accessory, so nothing has to be read back out
    of the host's objects.
    """

    def __init__(self):
        self._accessories: Dict[str, LocalAccessory] = {}  # uuid -> accessory
        self._metadata: Dict[str, Dict[str, Any]] = {}  # uuid -> descriptor context
        self._by_composite: Dict[str, str] = {}  # composite id -> uuid

    def __contains__(self, uuid: str) -> bool:
        return uuid in self._accessories

    def __len__(self) -> int:
        return len(self._accessories)

    def __iter__(self):
        return iter(list(self._accessories.values()))

    def add(self, accessory: LocalAccessory):
        """Insert an accessory; a UUID that is already present is left alone."""
        if accessory.uuid in self._accessories:
            return
        self._accessories[accessory.uuid] = accessory
        self.update_metadata(accessory.uuid, accessory.context)

    def update_metadata(self, uuid: str, context: Dict[str, Any]):
        old_composite = self._metadata.get(uuid, {}).get('composite_id')
        if old_composite and self._by_composite.get(old_composite) == uuid:
            del self._by_composite[old_composite]
        self._metadata[uuid] = dict(context)
        if context.get('composite_id'):
            self._by_composite[context['composite_id']] = uuid

    def get(self, uuid: str) -> Optional[LocalAccessory]:
        return self._accessories.get(uuid)

    def metadata(self, uuid: str) -> Dict[str, Any]:
        return self._metadata.get(uuid, {})

    def resolve_uid(self, accessory_uid: str) -> Optional[LocalAccessory]:
        """Find the accessory for a cloud accessory uid, or None if out of scope."""
        return self._accessories.get(generate_uuid(accessory_uid))

    def resolve_composite(self, composite_id: str) -> Optional[LocalAccessory]:
        uuid = self._by_composite.get(composite_id)
        return self._accessories.get(uuid) if uuid else None

    def composite_id(self, uuid: str) -> Optional[str]:
        return self._metadata.get(uuid, {}).get('composite_id')


class Reconciler:
    """Maps cloud descriptors onto local accessories without duplicates.

    The UUID derived from the accessory uid is the only dedup key: a known
    UUID is restored, an unknown one is created and registered with the host
    exactly once.
    """

    def __init__(self, registry: AccessoryRegistry, state_cache: StateCache, host: AccessoryHost):
        self.registry = registry
        self.state_cache = state_cache
        self.host = host

    def load_restored(self, accessories: Iterable[LocalAccessory]) -> int:
        """Seed the registry with accessories the host persisted earlier."""
        count = 0
        for accessory in accessories:
            if accessory.uuid in self.registry:
                continue
            self.registry.add(accessory)
            self.state_cache.seed(accessory.uuid)
            count += 1
            logger.info(f"Loading accessory from cache: {accessory.display_name}")
        return count

    def reconcile(self, devices: List[DeviceDescriptor]) -> Dict[str, int]:
        """
        Reconcile the full remote device list with the registry.

        Running this twice with the same list neither creates duplicates nor
        registers anything a second time. An accessory the host fails to
        register is logged and left out of the registry, so the next run
        tries again.

        Returns:
            Counts of created and restored accessories
        """
        created = 0
        restored = 0
        failed = 0

        for device in devices:
            for descriptor in device.accessories:
                uuid = generate_uuid(descriptor.uid)
                existing = self.registry.get(uuid)

                if existing:
                    logger.info(f"Restoring existing accessory from cache: {existing.display_name}")
                    existing.context.update(build_context(device, descriptor))
                    self.registry.update_metadata(uuid, existing.context)
                    self.state_cache.seed(uuid)
                    try:
                        self.host.restore_local_accessory(existing)
                    except Exception as e:
                        logger.error(f"Failed to refresh accessory {existing.display_name} on host: {e}")
                    restored += 1
                else:
                    accessory = LocalAccessory.from_descriptors(device, descriptor)
                    logger.info(f"Adding new accessory: {descriptor.name} {descriptor.uid}")
                    try:
                        self.host.create_local_accessory(accessory)
                    except Exception as e:
                        # Left out of the registry, the next reconcile retries the creation
                        logger.error(f"Failed to register accessory {descriptor.name} with host: {e}")
                        failed += 1
                        continue
                    self.registry.add(accessory)
                    self.state_cache.seed(uuid)
                    created += 1

        logger.info(f"Reconciled {created + restored} accessories ({created} new, {restored} restored, {failed} failed)")
        return {'created': created, 'restored': restored}
