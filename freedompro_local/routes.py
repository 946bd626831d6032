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

"""FastAPI route handlers for Freedompro Local."""

import asyncio
import json
import logging
import os
import time
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, status
from fastapi.responses import StreamingResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from .__version__ import __version__
from .cloud import CloudAPIError
from .models import FrameParseError

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)

# Local API keys (space-separated). Empty means no authentication.
API_KEYS_RAW = os.environ.get('FREEDOMPRO_LOCAL_API_KEYS', '').strip()
API_KEYS = set(key.strip() for key in API_KEYS_RAW.split() if key.strip()) if API_KEYS_RAW else set()

SSE_QUEUE_SIZE = 100
KEEPALIVE_INTERVAL = 90


class StateRequest(BaseModel):
    on: bool


def get_api_key(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)) -> Optional[str]:
    """
    Validate API key from Authorization header.

    If API keys are configured (FREEDOMPRO_LOCAL_API_KEYS environment
    variable), checks the Bearer token. Otherwise authentication is disabled.

    Raises:
        HTTPException 401 if authentication fails
    """
    if not API_KEYS:
        return None

    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authentication credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if credentials.credentials not in API_KEYS:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return credentials.credentials


def create_app():
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Freedompro Local",
        description="Local REST API for Freedompro accessories",
        version=__version__
    )

    if API_KEYS:
        logger.info(f"API authentication enabled ({len(API_KEYS)} key(s) configured)")
    else:
        logger.info("API authentication disabled (no FREEDOMPRO_LOCAL_API_KEYS configured)")

    return app


def register_routes(app: FastAPI, get_local_api):
    """Register all API routes.

    Args:
        app: FastAPI application instance
        get_local_api: Callable that returns the current FreedomproLocalAPI instance
    """

    def _require_api():
        local_api = get_local_api()
        if local_api is None:
            raise HTTPException(status_code=503, detail="Bridge not initialized")
        return local_api

    def _require_composite_id(local_api, uuid: str) -> str:
        composite_id = local_api.registry.composite_id(uuid)
        if not composite_id:
            raise HTTPException(status_code=404, detail=f"Accessory {uuid} not found")
        return composite_id

    @app.get("/", tags=["Info"])
    async def root(api_key: Optional[str] = Depends(get_api_key)):
        """API root with navigation."""
        return {
            "service": "Freedompro Local",
            "description": "Local REST API for Freedompro accessories",
            "version": __version__,
            "documentation": "/docs",
            "endpoints": {
                "status": "/status",
                "accessories": "/accessories",
                "events": "/events",
                "refresh": "/refresh"
            }
        }

    @app.get("/status", tags=["Status"])
    async def get_status(api_key: Optional[str] = Depends(get_api_key)):
        """Get overall synchronization status."""
        local_api = _require_api()
        return {"version": __version__} | local_api.get_status()

    @app.get("/accessories", tags=["Accessories"])
    async def get_accessories(enhanced: bool = True, api_key: Optional[str] = Depends(get_api_key)):
        """
        Get all accessories with their cached state.

        Args:
            enhanced: If True, include a HAP-style service description (default: True)
        """
        local_api = _require_api()
        return {
            "accessories": local_api.list_accessories(enhanced),
            "enhanced": enhanced
        }

    @app.get("/accessories/{uuid}", tags=["Accessories"])
    async def get_accessory(uuid: str, enhanced: bool = True, api_key: Optional[str] = Depends(get_api_key)):
        """Get one accessory by UUID."""
        local_api = _require_api()
        accessory = local_api.get_accessory(uuid, enhanced)
        if accessory is None:
            raise HTTPException(status_code=404, detail=f"Accessory {uuid} not found")
        return {"accessory": accessory, "enhanced": enhanced}

    @app.get("/accessories/{uuid}/state", tags=["Accessories"])
    async def get_accessory_state(uuid: str, api_key: Optional[str] = Depends(get_api_key)):
        """Get the cached on/off state. Never calls the cloud."""
        local_api = _require_api()
        composite_id = _require_composite_id(local_api, uuid)
        return {"uuid": uuid, "on": local_api.dispatcher.get_state(composite_id)}

    @app.put("/accessories/{uuid}/state", tags=["Accessories"])
    async def set_accessory_state(uuid: str, request: StateRequest, api_key: Optional[str] = Depends(get_api_key)):
        """Switch an accessory on or off through the cloud."""
        local_api = _require_api()
        composite_id = _require_composite_id(local_api, uuid)
        try:
            value = await local_api.dispatcher.set_state(composite_id, request.on)
        except CloudAPIError as e:
            logger.error(f"Failed to set state of {uuid}: {e}")
            raise HTTPException(status_code=502, detail=f"Freedompro cloud rejected the command: {e}")
        return {"uuid": uuid, "on": value}

    @app.get("/events", tags=["Events"])
    async def get_events(api_key: Optional[str] = Depends(get_api_key)):
        """
        Server-Sent Events (SSE) endpoint for state changes.

        Event Types:

        1. Accessory state change:
           {
               "type": "accessory",
               "uuid": "4a1b...",
               "name": "Kitchen",
               "characteristic": "On",
               "value": true,
               "previous_value": false,
               "timestamp": 1730477890.123
           }

        2. Keepalive (every 90 seconds without other traffic):
           {"type": "keepalive", "timestamp": 1730477890.123}
        """
        local_api = _require_api()
        host = local_api.host

        async def event_publisher():
            client_queue = asyncio.Queue(maxsize=SSE_QUEUE_SIZE)
            host.event_listeners.append(client_queue)
            try:
                while True:
                    try:
                        event_data = await asyncio.wait_for(client_queue.get(), timeout=KEEPALIVE_INTERVAL)
                    except asyncio.TimeoutError:
                        keepalive_obj = {'type': 'keepalive', 'timestamp': time.time()}
                        yield f"data: {json.dumps(keepalive_obj)}\n\n"
                        continue

                    # None signals shutdown
                    if event_data is None:
                        logger.debug("SSE stream received shutdown signal")
                        break
                    yield event_data
            except asyncio.CancelledError:
                logger.debug("SSE stream cancelled")
                raise
            finally:
                if client_queue in host.event_listeners:
                    host.event_listeners.remove(client_queue)

        return StreamingResponse(
            event_publisher(),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
            }
        )

    @app.post("/refresh", tags=["Admin"])
    async def refresh(api_key: Optional[str] = Depends(get_api_key)):
        """Re-run device discovery and reconciliation."""
        local_api = _require_api()
        try:
            result = await local_api.discover_devices()
        except (CloudAPIError, FrameParseError) as e:
            logger.error(f"Device discovery failed: {e}")
            raise HTTPException(status_code=502, detail=f"Device discovery failed: {e}")
        return {"success": True, "timestamp": time.time()} | result

    return app
