import asyncio
import logging
import secrets
import string
import uuid
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from config import settings
from models import AuthKey, Duration, ValidationResult, add_months, utcnow
from persistence import AUTH_KEYS, PersistenceFacade

logger = logging.getLogger(__name__)

KEY_ALPHABET = string.ascii_uppercase + string.digits


class KeyCheckFailure(str, Enum):
    INVALID_KEY = "invalid_key"
    KEY_REVOKED = "key_revoked"
    KEY_EXPIRED = "key_expired"
    DEVICE_MISMATCH = "device_mismatch"


FAILURE_MESSAGES = {
    KeyCheckFailure.INVALID_KEY: "Invalid Key ID",
    KeyCheckFailure.KEY_REVOKED: "Key has been revoked",
    KeyCheckFailure.KEY_EXPIRED: "Key expired",
    KeyCheckFailure.DEVICE_MISMATCH: "Key is registered to another device.",
}


def _failure(reason: KeyCheckFailure) -> ValidationResult:
    return ValidationResult(valid=False, message=FAILURE_MESSAGES[reason], reason=reason.value)


def check_key(key: AuthKey, device_id: str, now: Optional[datetime] = None) -> Optional[KeyCheckFailure]:
    """
    First failing lifecycle check for an existing key, or None.

    Order matters: a revoked key that is also expired reports revocation.
    """
    if not key.is_active:
        return KeyCheckFailure.KEY_REVOKED
    if key.is_expired(now):
        return KeyCheckFailure.KEY_EXPIRED
    if key.deviceId is not None and key.deviceId != device_id:
        return KeyCheckFailure.DEVICE_MISMATCH
    return None


class LicenseKeyValidator:
    """
    Validates license keys and binds each key to the first device that uses it.

    Lookup and writes of one validation go through a single store view
    of the facade. Binding is a compare-and-set and the usage count an
    atomic increment; validations of the same key are also serialized
    in-process.
    """

    def __init__(self, facade: PersistenceFacade):
        self.facade = facade
        # Per-key locks live only while a validation holds or awaits them
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

    async def validate(self, key_str: str, device_id: str) -> ValidationResult:
        lock = self._locks.setdefault(key_str, asyncio.Lock())
        self._lock_users[key_str] = self._lock_users.get(key_str, 0) + 1
        try:
            async with lock:
                result = await self.facade.run(lambda store: self._validate(store, key_str, device_id))
        finally:
            self._lock_users[key_str] -= 1
            if not self._lock_users[key_str]:
                del self._lock_users[key_str]
                del self._locks[key_str]

        if result.valid:
            logger.info("Key %s validated for device %s", key_str, device_id)
        else:
            logger.info("Key %s rejected for device %s: %s", key_str, device_id, result.reason)
        return result

    async def _validate(self, store, key_str: str, device_id: str) -> ValidationResult:
        document = await store.find_one(AUTH_KEYS, "key", key_str)
        if document is None:
            return _failure(KeyCheckFailure.INVALID_KEY)

        try:
            key = AuthKey.model_validate(document)
        except ValidationError as e:
            logger.warning("Malformed license record %r: %s", document.get("id"), e)
            return _failure(KeyCheckFailure.INVALID_KEY)

        failure = check_key(key, device_id)
        if failure:
            return _failure(failure)

        if key.deviceId is None:
            bound = await store.set_if_unset(AUTH_KEYS, key.id, "deviceId", device_id)
            if not bound:
                # Another device won the binding race
                return _failure(KeyCheckFailure.DEVICE_MISMATCH)

        await store.increment(AUTH_KEYS, key.id, "usage_count", 1)
        return ValidationResult(valid=True)


# --- Key issuance ---

def generate_key_string(prefix: Optional[str] = None) -> str:
    parts = ["".join(secrets.choice(KEY_ALPHABET) for _ in range(4)) for _ in range(3)]
    return f"{prefix or settings.KEY_PREFIX}-{'-'.join(parts)}"


def compute_valid_until(duration: Duration, start: Optional[datetime] = None) -> datetime:
    start = start or utcnow()
    if duration == "weekly":
        return start + timedelta(days=7)
    if duration == "monthly":
        return add_months(start, 1)
    if duration == "yearly":
        return add_months(start, 12)
    raise ValueError(f"Unknown license duration: {duration}")


def plan_price(duration: Duration) -> int:
    prices = {
        "weekly": settings.WEEKLY_PRICE,
        "monthly": settings.MONTHLY_PRICE,
        "yearly": settings.YEARLY_PRICE,
    }
    if duration not in prices:
        raise ValueError(f"Unknown license duration: {duration}")
    return prices[duration]


async def issue_key(facade: PersistenceFacade, duration: Duration, price: Optional[float] = None) -> AuthKey:
    """Create and store a fresh, unbound key. Without `price` the plan price applies."""
    now = utcnow()
    key = AuthKey(
        id=str(uuid.uuid4()),
        key=generate_key_string(),
        valid_until=compute_valid_until(duration, now),
        duration=duration,
        price=plan_price(duration) if price is None else price,
        created_at=now,
        is_active=True,
        usage_count=0,
        deviceId=None,
    )
    await facade.add_key(key)
    logger.info("Issued %s key %s", duration, key.key)
    return key


async def purchase_key(facade: PersistenceFacade, duration: Duration) -> AuthKey:
    # Payment is settled outside this service
    return await issue_key(facade, duration)


def key_stats(keys: List[AuthKey]) -> Dict[str, Any]:
    return {
        "totalRevenue": sum(k.price or 0 for k in keys),
        "activeKeys": sum(1 for k in keys if k.is_active),
        "totalKeys": len(keys),
    }
