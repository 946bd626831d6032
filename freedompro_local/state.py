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

"""Last-known on/off state per accessory."""

import logging
import time
from dataclasses import dataclass
from typing import Dict, Optional

logger = logging.getLogger(__name__)

SOURCE_INITIAL = "initial"
SOURCE_RESTORED = "restored"
SOURCE_COMMAND = "command"
SOURCE_STREAM = "stream"
SOURCE_ACCESSORY_POLL = "accessory-poll"
SOURCE_GLOBAL_POLL = "global-poll"


@dataclass(frozen=True)
class CachedState:
    is_on: bool
    sequence: int
    source: str
    updated_at: float

    def to_dict(self) -> Dict[str, object]:
        return {
            "on": self.is_on,
            "sequence": self.sequence,
            "source": self.source,
            "updated_at": self.updated_at,
        }


class StateCache:
    """Per-accessory state written by commands, the event stream and both pollers.

    Writes are last-write-wins. Each write is stamped with a cache-wide sequence
    number and its source so recency arbitration can be added here later
    without touching the writers. Nothing in here awaits, so a single write is
    atomic with respect to the event loop.
    """

    def __init__(self):
        self._states: Dict[str, CachedState] = {}  # uuid -> state
        self._sequence = 0

    def __contains__(self, uuid: str) -> bool:
        return uuid in self._states

    def __len__(self) -> int:
        return len(self._states)

    def seed(self, uuid: str, is_on: bool = False, source: str = SOURCE_INITIAL) -> CachedState:
        """Create the entry for a new accessory, keeping any existing value."""
        existing = self._states.get(uuid)
        if existing is not None:
            return existing
        return self.write(uuid, is_on, source)

    def write(self, uuid: str, is_on: bool, source: str) -> CachedState:
        """Overwrite the cached value.

        Returns:
            The new CachedState
        """
        self._sequence += 1
        previous = self._states.get(uuid)
        state = CachedState(is_on=bool(is_on), sequence=self._sequence, source=source, updated_at=time.time())
        self._states[uuid] = state

        if previous is None or previous.is_on != state.is_on:
            logger.debug(f"[{source}] {uuid}: {previous.is_on if previous else None} -> {state.is_on}")
        return state

    def get(self, uuid: str) -> Optional[CachedState]:
        return self._states.get(uuid)

    def read(self, uuid: str) -> bool:
        """Return the cached on value.

        Raises:
            KeyError: if the accessory has no cached state
        """
        return self._states[uuid].is_on

    def snapshot(self) -> Dict[str, CachedState]:
        return dict(self._states)
