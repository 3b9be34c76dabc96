import logging
import secrets
from typing import Optional, Set

from config import settings
from persistence import PersistenceFacade

logger = logging.getLogger(__name__)


class AdminAlreadyConfigured(Exception):
    """First-time admin setup was attempted after an admin already exists."""


class AdminCredentialGate:
    """
    Single-admin authentication on top of the stored credential record.

    Credentials are compared as stored, in plain text. Successful logins
    get an opaque session token kept in process memory.
    """

    def __init__(self, facade: PersistenceFacade, master_key: Optional[str] = None):
        self.facade = facade
        self.master_key = master_key if master_key is not None else settings.ADMIN_MASTER_KEY
        self._sessions: Set[str] = set()

    async def set_credentials(self, username: str, password: str) -> None:
        await self.facade.update_admin_credentials(username, password)

    async def validate(self, username: str, password: str) -> bool:
        creds = await self.facade.get_admin_credentials()
        return creds is not None and creds.username == username and creds.password == password

    async def credentials_exist(self) -> bool:
        return await self.facade.get_admin_credentials() is not None

    async def setup(self, username: str, password: str) -> str:
        """Create the first admin account and log it in."""
        if await self.credentials_exist():
            raise AdminAlreadyConfigured("An admin account is already configured")
        await self.set_credentials(username, password)
        logger.info("Admin account %r created", username)
        return self._open_session()

    async def login(self, username: str, password: str) -> Optional[str]:
        if not await self.validate(username, password):
            logger.info("Admin login refused for %r", username)
            return None
        return self._open_session()

    def is_master_key(self, key: str) -> bool:
        return bool(self.master_key) and secrets.compare_digest(key, self.master_key)

    def login_with_master_key(self, key: str) -> Optional[str]:
        if not self.is_master_key(key):
            return None
        logger.warning("Administrative override key used")
        return self._open_session()

    def is_admin_session(self, token: Optional[str]) -> bool:
        return bool(token) and token in self._sessions

    def logout(self, token: str) -> None:
        self._sessions.discard(token)

    def _open_session(self) -> str:
        token = secrets.token_urlsafe(32)
        self._sessions.add(token)
        return token
