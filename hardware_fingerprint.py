import uuid
import hashlib
import logging
import platform
import psutil

from database import LocalCacheStore

logger = logging.getLogger(__name__)

DEVICE_ID_CACHE_KEY = "device_id"


def get_hardware_fingerprint() -> str:
    """
    Stable identifier for this machine.
    Combines the MAC address, CPU count and platform into a sha256 digest.
    """
    mac = uuid.getnode().to_bytes(6, "big").hex(":")
    cpu_count = str(psutil.cpu_count(logical=True))
    fingerprint_data = f"{mac}|{cpu_count}|{platform.system()}|{platform.machine()}"
    return hashlib.sha256(fingerprint_data.encode()).hexdigest()


def get_or_create_device_id(cache: LocalCacheStore) -> str:
    """
    Device identifier used for license key binding.

    Generated once from the hardware fingerprint and kept in the local
    cache so that it survives hardware-reporting changes between runs.
    """
    device_id = cache.read(DEVICE_ID_CACHE_KEY)
    if device_id:
        return device_id

    device_id = get_hardware_fingerprint()
    cache.write(DEVICE_ID_CACHE_KEY, device_id)
    logger.info("Registered device id %s", device_id)
    return device_id
