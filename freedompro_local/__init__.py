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
"""Freedompro Local - local accessory registry kept in sync with the Freedompro cloud."""

from .__version__ import __version__

__author__ = "Freedompro Local Contributors"
__description__ = "Local accessory registry kept in sync with the Freedompro cloud"

from .state import CachedState, StateCache
from .models import AccessoryDescriptor, DeviceDescriptor, LocalAccessory, StreamEvent
from .cloud import CloudAPIError, FreedomproCloudAPI
from .host import AccessoryHost, SQLiteAccessoryHost
from .registry import AccessoryRegistry, Reconciler
from .dispatcher import CommandDispatcher
from .stream import LiveStateStream, ReconnectBackoff
from .poller import PollingUpdater
from .api import FreedomproLocalAPI
from . import homekit_uuids

__all__ = [
    "__version__",
    "CachedState",
    "StateCache",
    "AccessoryDescriptor",
    "DeviceDescriptor",
    "LocalAccessory",
    "StreamEvent",
    "CloudAPIError",
    "FreedomproCloudAPI",
    "AccessoryHost",
    "SQLiteAccessoryHost",
    "AccessoryRegistry",
    "Reconciler",
    "CommandDispatcher",
    "LiveStateStream",
    "ReconnectBackoff",
    "PollingUpdater",
    "FreedomproLocalAPI",
    "homekit_uuids",
]
