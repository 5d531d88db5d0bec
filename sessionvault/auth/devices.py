"""Device registry - best-effort attribution of sessions to devices."""

import logging
import uuid

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sessionvault.db.types import utcnow
from sessionvault.models import AuthDevice

logger = logging.getLogger(__name__)


class DeviceRegistry:
    """Upserts one ``AuthDevice`` row per (user, fingerprint).

    Failures are logged and swallowed: a missing device degrades attribution,
    never issuance.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def upsert(
        self,
        user_id: uuid.UUID,
        fingerprint: str | None,
        *,
        label: str | None = None,
        client: str = "web",
        ip_hash: str | None = None,
        ua_hash: str | None = None,
    ) -> uuid.UUID | None:
        """Insert or refresh the device record; returns its id, or None."""
        if not fingerprint:
            return None

        for attempt in range(2):
            try:
                return await self._upsert_once(
                    user_id, fingerprint, label=label, client=client, ip_hash=ip_hash, ua_hash=ua_hash
                )
            except IntegrityError:
                # Lost an insert race on (user_id, fingerprint); the retry updates.
                logger.debug("Device insert raced for user %s (attempt %d)", user_id, attempt + 1)
            except SQLAlchemyError as e:
                logger.warning("Device upsert failed for user %s: %s", user_id, e)
                return None
        return None

    async def _upsert_once(
        self,
        user_id: uuid.UUID,
        fingerprint: str,
        *,
        label: str | None,
        client: str,
        ip_hash: str | None,
        ua_hash: str | None,
    ) -> uuid.UUID:
        async with self._session_factory() as db, db.begin():
            result = await db.execute(
                select(AuthDevice).where(
                    AuthDevice.user_id == user_id,
                    AuthDevice.fingerprint == fingerprint,
                )
            )
            device = result.scalar_one_or_none()

            if device is None:
                device = AuthDevice(
                    id=uuid.uuid4(),
                    user_id=user_id,
                    fingerprint=fingerprint,
                    device_name=label,
                    client=client,
                    ip_hash=ip_hash,
                    ua_hash=ua_hash,
                )
                db.add(device)
            else:
                if label:
                    device.device_name = label
                device.client = client
                device.ip_hash = ip_hash or device.ip_hash
                device.ua_hash = ua_hash or device.ua_hash
                device.updated_at = utcnow()

            return device.id
