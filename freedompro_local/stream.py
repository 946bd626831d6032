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

"""Live state updates from the Freedompro event stream.

Frame format:
=============

Each line of the stream is one frame::

    data: {"intent": "REPORT_STATE", "payload": {"uid": "...", "props": {"on": {"value": true}}}}

The first five characters are protocol framing and are cut off before the
rest is trimmed and decoded as JSON. Lines starting with ``:`` are keepalive
comments and other SSE fields (``event:``, ``id:``, ``retry:``) are skipped.
Only ``REPORT_STATE`` changes anything, other intents are logged and ignored.

Reconnects:
-----------
The consumer never gives up. After a clean end of stream, or a connection
that delivered at least one frame, the next attempt waits the base delay.
Every attempt that fails without delivering a frame doubles the delay, up to
a cap, with random jitter taken off the top so several bridges do not
reconnect in lockstep.
"""

import asyncio
import json
import logging
import random
from typing import Optional

from .cloud import CloudAPIError, FreedomproCloudAPI
from .host import AccessoryHost
from .models import FrameParseError, Intent, StreamEvent
from .registry import AccessoryRegistry
from .state import SOURCE_STREAM, StateCache

logger = logging.getLogger(__name__)

FRAME_PREFIX_LENGTH = 5
KEEPALIVE_PREFIX = ':'
DATA_PREFIX = "data:"


def parse_frame(line: str) -> Optional[StreamEvent]:
    """
    Decode one stream line.

    Returns:
        StreamEvent, or None for blank lines, keepalive comments and
        non-data fields

    Raises:
        FrameParseError: if the frame is not valid JSON or has the wrong shape
    """
    if not line.strip() or line.startswith(KEEPALIVE_PREFIX):
        return None
    if not line.startswith(DATA_PREFIX):
        # event:, id: and retry: fields carry nothing we use
        logger.debug(f"Skipping non-data stream line {line.strip()!r}")
        return None

    body = line[FRAME_PREFIX_LENGTH:].strip()
    try:
        data = json.loads(body)
    except ValueError as e:
        raise FrameParseError(f"Invalid JSON in frame {line!r}: {e}") from e
    return StreamEvent.from_dict(data)


class ReconnectBackoff:
    """Bounded exponential backoff with subtractive jitter."""

    def __init__(self, base_delay: float = 1.0, max_delay: float = 60.0, factor: float = 2.0, jitter: float = 0.1):
        self.base_delay = base_delay
        self.max_delay = max(max_delay, base_delay)
        self.factor = factor
        self.jitter = jitter
        self.failures = 0

    def reset(self):
        self.failures = 0

    def record_failure(self):
        self.failures += 1

    def next_delay(self) -> float:
        delay = min(self.max_delay, self.base_delay * (self.factor ** self.failures))
        if self.jitter:
            delay = random.uniform(delay * (1 - self.jitter), delay)
        return delay


class LiveStateStream:
    """Consumes the event stream and writes REPORT_STATE events into the cache."""

    def __init__(self, cloud_api: FreedomproCloudAPI, registry: AccessoryRegistry,
                 state_cache: StateCache, host: AccessoryHost,
                 backoff: Optional[ReconnectBackoff] = None):
        self.cloud_api = cloud_api
        self.registry = registry
        self.state_cache = state_cache
        self.host = host
        self.backoff = backoff or ReconnectBackoff()

        # Counters for /status
        self.connected = False
        self.connection_count = 0
        self.reconnect_count = 0
        self.frames_received = 0
        self.frames_discarded = 0
        self.events_applied = 0
        self.connection_frames = 0
        self.last_delay: Optional[float] = None
        self.last_error: Optional[str] = None

    def handle_line(self, line: str) -> bool:
        """
        Process one raw line. Never raises for bad input.

        Returns:
            True if the line was a frame (valid or not), False for blank lines
            and keepalives
        """
        try:
            event = parse_frame(line)
        except FrameParseError as e:
            self.frames_received += 1
            self.frames_discarded += 1
            logger.warning(f"Discarding stream frame: {e}")
            return True

        if event is None:
            return False

        self.frames_received += 1
        self.handle_event(event)
        return True

    def handle_event(self, event: StreamEvent):
        if event.intent is Intent.REPORT_STATE:
            self._apply_report_state(event)
        else:
            logger.debug(f"Ignoring unhandled intent {event.raw_intent} for {event.uid}")

    def _apply_report_state(self, event: StreamEvent):
        accessory = self.registry.resolve_uid(event.uid)
        if accessory is None:
            logger.debug(f"Ignoring state report for unknown accessory {event.uid}")
            return

        self.state_cache.write(accessory.uuid, event.on, SOURCE_STREAM)
        self.host.notify_characteristic_changed(accessory, event.on)
        self.events_applied += 1
        logger.debug(f"Stream updated {accessory.display_name}: on={event.on}")

    async def consume_once(self) -> int:
        """
        Run one connection until the server closes it.

        Returns:
            Number of frames seen on this connection

        Raises:
            CloudAPIError: on transport failure
        """
        self.connection_frames = 0
        self.connection_count += 1
        self.connected = True
        try:
            async for line in self.cloud_api.stream_events():
                if self.handle_line(line):
                    self.connection_frames += 1
        finally:
            self.connected = False
        return self.connection_frames

    async def run(self):
        """Consume the stream forever, reconnecting after every termination."""
        while True:
            clean_end = False
            try:
                await self.consume_once()
                clean_end = True
                logger.info("Freedompro event stream ended")
                self.last_error = None
            except CloudAPIError as e:
                self.last_error = str(e)
                if e.is_auth_failure:
                    logger.error(f"Event stream rejected the API key: {e}")
                else:
                    logger.error(f"Event stream error: {e}")
            except Exception as e:
                self.last_error = str(e)
                logger.error(f"Unexpected event stream error: {e}")

            if clean_end or self.connection_frames:
                self.backoff.reset()
                delay = self.backoff.next_delay()
            else:
                delay = self.backoff.next_delay()
                self.backoff.record_failure()

            self.last_delay = delay
            logger.info(f"Reconnecting to event stream in {delay:.1f}s")
            await asyncio.sleep(delay)
            self.reconnect_count += 1
