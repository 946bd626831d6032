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

"""Freedompro Cloud API client.

Endpoints used:
===============

- GET  /devices/                     device directory (falls back to the
                                     legacy GET /accessories listing on 404)
- GET  /accessories/{id}/state       state of one accessory
- GET  /accessories/state            state of every accessory
- PUT  /accessories/{id}/state       change state, body {"on": <bool>}
- GET  /events                       long-lived event stream

``{id}`` is the composite identity ``deviceUid*accessoryUid``. Every request
carries the configured API key as a bearer token.

Errors:
-------
Every failure, whether a transport error, a timeout or a non-2xx status,
surfaces as ``CloudAPIError``. A rejected API key (401/403) is not treated
differently from any other failure; callers retry it on their normal schedule.
"""

import asyncio
import logging
from typing import Any, AsyncIterator, Dict, List, Optional

import aiohttp

from .models import DeviceDescriptor, FrameParseError, parse_state_payload

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.freedompro.eu/api/freedompro"


class CloudAPIError(Exception):
    """A request to the Freedompro cloud failed."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status

    @property
    def is_auth_failure(self) -> bool:
        return self.status in (401, 403)


class FreedomproCloudAPI:
    """
    Thin async client for the Freedompro REST API.

    One aiohttp session is shared by all requests and created lazily inside
    the running event loop; call ``close()`` on shutdown.
    """

    REQUEST_TIMEOUT = 30

    def __init__(self, api_key: str, base_url: str = DEFAULT_BASE_URL):
        """Initialize the client.

        Args:
            api_key: Freedompro API key, sent as bearer token
            base_url: API root, without trailing slash
        """
        self.api_key = api_key
        self.base_url = base_url.rstrip('/')
        self._session: Optional[aiohttp.ClientSession] = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.REQUEST_TIMEOUT)
            )
        return self._session

    async def close(self):
        """Close the shared HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    def get_headers(self) -> Dict[str, str]:
        return {
            'Authorization': f'Bearer {self.api_key}',
            'Content-Type': 'application/json'
        }

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    async def _request(self, method: str, path: str, json_body: Optional[Dict[str, Any]] = None) -> Any:
        """Perform one request and decode the JSON body.

        Raises:
            CloudAPIError: on transport failure, timeout or non-2xx status
        """
        url = self._url(path)
        try:
            session = self._get_session()
            logger.debug(f"{method} {url}")
            async with session.request(method, url, headers=self.get_headers(), json=json_body) as resp:
                if resp.status >= 300:
                    error_text = await resp.text()
                    raise CloudAPIError(f"{method} {path} failed: HTTP {resp.status} - {error_text}", resp.status)
                if resp.content_length == 0:
                    return None
                # Tolerate a wrong or missing content type on otherwise valid JSON
                return await resp.json(content_type=None)
        except CloudAPIError:
            raise
        except asyncio.TimeoutError as e:
            raise CloudAPIError(f"{method} {path} timed out") from e
        except aiohttp.ClientError as e:
            raise CloudAPIError(f"{method} {path} failed: {e}") from e
        except ValueError as e:
            raise CloudAPIError(f"{method} {path} returned invalid JSON: {e}") from e

    async def list_devices(self) -> List[DeviceDescriptor]:
        """
        Fetch the device directory.

        Returns:
            List of DeviceDescriptor in the order the cloud returned them

        Raises:
            CloudAPIError: if neither the device listing nor the legacy
                accessory listing could be fetched
            FrameParseError: if the response is not a list of objects with uids
        """
        try:
            data = await self._request('GET', '/devices/')
            legacy = False
        except CloudAPIError as e:
            if e.status != 404:
                raise
            logger.info("Device listing not available, falling back to legacy accessory listing")
            data = await self._request('GET', '/accessories')
            legacy = True

        if not isinstance(data, list):
            raise FrameParseError(f"Unexpected device listing: {data!r}")

        if legacy:
            devices = [DeviceDescriptor.from_legacy_accessory(item) for item in data]
        else:
            devices = [DeviceDescriptor.from_dict(item) for item in data]

        logger.info(f"Fetched {len(devices)} devices from Freedompro cloud")
        return devices

    async def get_accessory_state(self, composite_id: str) -> bool:
        """Fetch the on value of one accessory."""
        data = await self._request('GET', f'/accessories/{composite_id}/state')
        return parse_state_payload(data)

    async def get_all_states(self) -> List[Dict[str, Any]]:
        """
        Fetch the state of every accessory in one request.

        Returns:
            List of ``{"uid": str, "on": bool}``; malformed entries are skipped
        """
        data = await self._request('GET', '/accessories/state')
        if not isinstance(data, list):
            raise FrameParseError(f"Unexpected state listing: {data!r}")

        states = []
        for entry in data:
            uid = entry.get('uid') if isinstance(entry, dict) else None
            if not isinstance(uid, str):
                logger.warning(f"Skipping state entry without uid: {entry!r}")
                continue
            try:
                states.append({'uid': uid, 'on': parse_state_payload(entry)})
            except FrameParseError as e:
                logger.warning(f"Skipping state entry for {uid}: {e}")
        return states

    async def set_accessory_state(self, composite_id: str, on: bool) -> Any:
        """Ask the cloud to switch an accessory. The response body is returned untouched."""
        return await self._request('PUT', f'/accessories/{composite_id}/state', {'on': bool(on)})

    async def stream_events(self) -> AsyncIterator[str]:
        """
        Open the event stream and yield decoded lines as they arrive.

        The connection has no read timeout, an idle stream is kept open
        indefinitely. The iterator ends when the server closes the stream.

        Raises:
            CloudAPIError: on transport failure or non-200 status
        """
        url = self._url('/events')
        timeout = aiohttp.ClientTimeout(total=None, sock_connect=self.REQUEST_TIMEOUT, sock_read=None)
        try:
            session = self._get_session()
            headers = self.get_headers() | {'Accept': 'text/event-stream'}
            async with session.get(url, headers=headers, timeout=timeout) as resp:
                if resp.status != 200:
                    error_text = await resp.text()
                    raise CloudAPIError(f"Event stream failed: HTTP {resp.status} - {error_text}", resp.status)
                logger.info("Connected to Freedompro event stream")
                async for raw_line in resp.content:
                    yield raw_line.decode('utf-8', errors='replace')
        except CloudAPIError:
            raise
        except asyncio.TimeoutError as e:
            raise CloudAPIError("Event stream connect timed out") from e
        except aiohttp.ClientError as e:
            raise CloudAPIError(f"Event stream failed: {e}") from e
