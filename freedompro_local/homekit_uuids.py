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
"""
HomeKit identifiers for the accessories we expose.

Accessory UUIDs are derived exactly the way HAP-NodeJS ``uuid.generate`` does
it, so accessories created by earlier Homebridge based installs keep the same
identity: the SHA-1 hex digest of the input is poured into the template
``xxxxxxxx-xxxx-4xxx-yxxx-xxxxxxxxxxxx``. Every ``x`` takes the next hex
digit, ``y`` takes the next digit masked to the RFC 4122 variant, and the
literal ``4`` consumes nothing.

Every Freedompro accessory is modelled as a Lightbulb service carrying a single
On characteristic, next to the mandatory AccessoryInformation service.
"""

import hashlib
from typing import Any, Dict, List

UUID_TEMPLATE = "xxxxxxxx-xxxx-4xxx-yxxx-xxxxxxxxxxxx"

SERVICE_ACCESSORY_INFORMATION = "0000003E-0000-1000-8000-0026BB765291"
SERVICE_LIGHTBULB = "00000043-0000-1000-8000-0026BB765291"

CHAR_MANUFACTURER = "00000020-0000-1000-8000-0026BB765291"
CHAR_MODEL = "00000021-0000-1000-8000-0026BB765291"
CHAR_NAME = "00000023-0000-1000-8000-0026BB765291"
CHAR_ON = "00000025-0000-1000-8000-0026BB765291"
CHAR_SERIAL_NUMBER = "00000030-0000-1000-8000-0026BB765291"

HOMEKIT_SERVICES = {
    SERVICE_ACCESSORY_INFORMATION: "AccessoryInformation",
    SERVICE_LIGHTBULB: "Lightbulb",
}

HOMEKIT_CHARACTERISTICS = {
    CHAR_MANUFACTURER: "Manufacturer",
    CHAR_MODEL: "Model",
    CHAR_NAME: "Name",
    CHAR_ON: "On",
    CHAR_SERIAL_NUMBER: "SerialNumber",
}


def generate_uuid(data: str) -> str:
    """Derive a stable accessory UUID from an arbitrary string.

    Args:
        data: Identity to hash, normally the Freedompro accessory uid

    Returns:
        Lower-case UUID string; the same input always yields the same UUID
    """
    digest = hashlib.sha1(data.encode("utf-8")).hexdigest()
    out = []
    i = 0
    for c in UUID_TEMPLATE:
        if c == "x":
            out.append(digest[i])
            i += 1
        elif c == "y":
            out.append(format((int(digest[i], 16) & 0x3) | 0x8, "x"))
            i += 1
        else:
            out.append(c)
    return "".join(out)


def get_service_name(uuid: str) -> str:
    """Get human-readable name for a HomeKit service UUID."""
    return HOMEKIT_SERVICES.get(uuid.upper(), f"Unknown Service ({uuid})")


def get_characteristic_name(uuid: str) -> str:
    """Get human-readable name for a HomeKit characteristic UUID."""
    return HOMEKIT_CHARACTERISTICS.get(uuid.upper(), f"Unknown Characteristic ({uuid})")


def _characteristic(iid: int, char_type: str, value: Any, perms: List[str], fmt: str) -> Dict[str, Any]:
    return {
        "type": char_type,
        "type_name": get_characteristic_name(char_type),
        "iid": iid,
        "value": value,
        "perms": perms,
        "format": fmt,
    }


def describe_accessory(accessory: Dict[str, Any], is_on: bool) -> List[Dict[str, Any]]:
    """
    Build a HAP-style service list for one local accessory.

    Args:
        accessory: Flat accessory dict as produced by ``LocalAccessory.to_dict``
        is_on: Cached value of the On characteristic

    Returns:
        List of service dicts with readable type names
    """
    info = [
        _characteristic(2, CHAR_MANUFACTURER, accessory.get("manufacturer"), ["pr"], "string"),
        _characteristic(3, CHAR_MODEL, accessory.get("model"), ["pr"], "string"),
        _characteristic(4, CHAR_SERIAL_NUMBER, accessory.get("serial_number"), ["pr"], "string"),
        _characteristic(5, CHAR_NAME, accessory.get("display_name"), ["pr"], "string"),
    ]
    lightbulb = [
        _characteristic(9, CHAR_NAME, accessory.get("display_name"), ["pr"], "string"),
        _characteristic(10, CHAR_ON, is_on, ["pr", "pw", "ev"], "bool"),
    ]
    return [
        {
            "type": SERVICE_ACCESSORY_INFORMATION,
            "type_name": get_service_name(SERVICE_ACCESSORY_INFORMATION),
            "iid": 1,
            "characteristics": info,
        },
        {
            "type": SERVICE_LIGHTBULB,
            "type_name": get_service_name(SERVICE_LIGHTBULB),
            "iid": 8,
            "characteristics": lightbulb,
        },
    ]
