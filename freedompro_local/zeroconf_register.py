"""AsyncZeroconf advertisement of the local REST API.

Local clients can discover the bridge as ``_freedompro._tcp``. Failures
are logged and reported back to the caller; the bridge runs fine without
advertisement.
"""
from typing import Dict, Optional, Tuple
import logging
import socket

from zeroconf import ServiceInfo
from zeroconf.asyncio import AsyncZeroconf

logger = logging.getLogger(__name__)

SERVICE_TYPE = '_freedompro._tcp.local.'

# module-level registration handle: (async_zc, info)
_reg = None


def _props_to_txt(props: Dict[str, str]):
    return {k: (v.encode('utf-8') if isinstance(v, str) else v) for k, v in props.items()}


def _get_primary_ipv4() -> Optional[str]:
    """Return a best-effort primary IPv4 address for this host, or None.

    Connecting a UDP socket sends nothing but reveals the address of the
    outbound route, which is more reliable than hostname lookups in containers.
    """
    try:
        s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            s.connect(("8.8.8.8", 80))
            return s.getsockname()[0]
        finally:
            s.close()
    except OSError:
        try:
            return socket.gethostbyname(socket.gethostname())
        except OSError:
            return None


def build_service_info(name: str, port: int, props: Optional[Dict[str, str]] = None,
                       advertise_addr: Optional[str] = None) -> ServiceInfo:
    addresses = None
    addr_to_use = advertise_addr or _get_primary_ipv4()
    if addr_to_use:
        try:
            addresses = [socket.inet_pton(socket.AF_INET, addr_to_use)]
        except OSError:
            logger.warning("Not advertising invalid IPv4 address %s", addr_to_use)

    return ServiceInfo(
        SERVICE_TYPE,
        f"{name}.{SERVICE_TYPE}",
        addresses=addresses,
        port=port,
        properties=_props_to_txt(props or {}),
    )


async def register_service_async(name: str = 'freedompro-local', port: int = 4408,
                                 props: Optional[Dict[str, str]] = None,
                                 advertise_addr: Optional[str] = None) -> Tuple[bool, Optional[str]]:
    """Register the service using AsyncZeroconf.

    Returns (ok, message).
    """
    global _reg
    info = build_service_info(name, port, props, advertise_addr)
    logger.debug("Registering %s on port %s (props=%s)", info.name, port, props)

    try:
        async_zc = AsyncZeroconf()
        # Let zeroconf rename us on a local name conflict instead of failing
        await async_zc.async_register_service(info, allow_name_change=True)
    except Exception as e:
        logger.exception("AsyncZeroconf registration failed for %s", name)
        return False, str(e)

    _reg = (async_zc, info)
    logger.info("Advertising %s via mDNS on port %s", info.name, port)
    return True, None


async def unregister_service_async():
    """Withdraw the current registration, if any."""
    global _reg
    if not _reg:
        return
    async_zc, info = _reg
    _reg = None
    try:
        await async_zc.async_unregister_service(info)
    except Exception as e:
        logger.warning("Failed to unregister mDNS service: %s", e)
    finally:
        await async_zc.async_close()
