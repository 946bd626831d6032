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

"""Descriptors received from the Freedompro cloud and the local accessory identity."""

import enum
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .homekit_uuids import generate_uuid

COMPOSITE_SEPARATOR = "*"

# Constants the legacy accessory listing did not provide
LEGACY_MANUFACTURER = "Freedompro"
LEGACY_MODEL = "LightSwitch"
LEGACY_PLACEHOLDER = "-"


class FrameParseError(ValueError):
    """Raised when a stream frame or cloud response does not have the expected shape."""


class Intent(enum.Enum):
    """Event intents understood by the stream consumer."""

    REPORT_STATE = "REPORT_STATE"
    UNHANDLED = "UNHANDLED"

    @classmethod
    def from_wire(cls, value: Any) -> "Intent":
        if value == cls.REPORT_STATE.value:
            return cls.REPORT_STATE
        return cls.UNHANDLED


def composite_id(device_uid: str, accessory_uid: str) -> str:
    """Build the identity used to address one accessory in cloud requests."""
    return f"{device_uid}{COMPOSITE_SEPARATOR}{accessory_uid}"


@dataclass
class AccessoryDescriptor:
    uid: str
    name: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AccessoryDescriptor":
        try:
            uid = data["uid"]
        except (KeyError, TypeError) as e:
            raise FrameParseError(f"Accessory without uid: {data!r}") from e
        return cls(uid=str(uid), name=str(data.get("name") or uid))


@dataclass
class DeviceDescriptor:
    uid: str
    manufacturer: str = LEGACY_MANUFACTURER
    model: str = LEGACY_MODEL
    serial_number: str = LEGACY_PLACEHOLDER
    home: str = LEGACY_PLACEHOLDER
    accessories: List[AccessoryDescriptor] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DeviceDescriptor":
        """Parse one entry of the ``/devices/`` listing."""
        try:
            uid = data["uid"]
            raw_accessories = data.get("accessories") or []
        except (KeyError, TypeError, AttributeError) as e:
            raise FrameParseError(f"Device without uid: {data!r}") from e
        return cls(
            uid=str(uid),
            manufacturer=data.get("manufacturer") or LEGACY_MANUFACTURER,
            model=data.get("model") or LEGACY_MODEL,
            serial_number=data.get("serialNumber") or LEGACY_PLACEHOLDER,
            home=data.get("home") or LEGACY_PLACEHOLDER,
            accessories=[AccessoryDescriptor.from_dict(a) for a in raw_accessories],
        )

    @classmethod
    def from_legacy_accessory(cls, data: Dict[str, Any]) -> "DeviceDescriptor":
        """Wrap one entry of the legacy ``/accessories`` listing in a synthetic device.

        The legacy listing has no device level, so the accessory uid doubles as
        the device uid.
        """
        accessory = AccessoryDescriptor.from_dict(data)
        return cls(uid=accessory.uid, accessories=[accessory])


@dataclass
class LocalAccessory:
    """Host-side identity of one accessory.

    The ``context`` blob mirrors what the host persists with the accessory, the
    registry keeps its own side-table for lookups.
    """

    uuid: str
    display_name: str
    context: Dict[str, Any] = field(default_factory=dict)

    @property
    def composite_id(self) -> str:
        return self.context.get("composite_id", "")

    @property
    def accessory_uid(self) -> Optional[str]:
        return self.context.get("accessory_uid")

    @classmethod
    def from_descriptors(cls, device: DeviceDescriptor, accessory: AccessoryDescriptor) -> "LocalAccessory":
        return cls(
            uuid=generate_uuid(accessory.uid),
            display_name=accessory.name,
            context=build_context(device, accessory),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"uuid": self.uuid, "display_name": self.display_name} | self.context


def build_context(device: DeviceDescriptor, accessory: AccessoryDescriptor) -> Dict[str, Any]:
    return {
        "composite_id": composite_id(device.uid, accessory.uid),
        "device_uid": device.uid,
        "accessory_uid": accessory.uid,
        "manufacturer": device.manufacturer,
        "model": device.model,
        "serial_number": device.serial_number,
        "home": device.home,
    }


@dataclass
class StreamEvent:
    intent: Intent
    raw_intent: str
    uid: Optional[str]
    device: Optional[str] = None
    on: Optional[bool] = None

    @classmethod
    def from_dict(cls, data: Any) -> "StreamEvent":
        """Validate a decoded event frame.

        Raises:
            FrameParseError: if the frame is not an object with an intent, or a
                REPORT_STATE frame lacks ``payload.uid`` or a boolean
                ``payload.props.on.value``
        """
        if not isinstance(data, dict) or not isinstance(data.get("intent"), str):
            raise FrameParseError(f"Event without intent: {data!r}")

        intent = Intent.from_wire(data["intent"])
        payload = data.get("payload")
        if not isinstance(payload, dict):
            payload = {}

        uid = payload.get("uid")
        on = None
        if intent is Intent.REPORT_STATE:
            if not isinstance(uid, str):
                raise FrameParseError(f"REPORT_STATE without payload.uid: {data!r}")
            try:
                on = payload["props"]["on"]["value"]
            except (KeyError, TypeError) as e:
                raise FrameParseError(f"REPORT_STATE without props.on.value: {data!r}") from e
            if not isinstance(on, bool):
                raise FrameParseError(f"REPORT_STATE with non-boolean on value: {on!r}")

        return cls(
            intent=intent,
            raw_intent=data["intent"],
            uid=uid if isinstance(uid, str) else None,
            device=payload.get("device"),
            on=on,
        )


def parse_state_payload(data: Any) -> bool:
    """Extract the on value from a ``{"state": {"on": bool}}`` response."""
    try:
        on = data["state"]["on"]
    except (KeyError, TypeError) as e:
        raise FrameParseError(f"Unexpected state response: {data!r}") from e
    if not isinstance(on, bool):
        raise FrameParseError(f"Non-boolean on value in state response: {on!r}")
    return on
