"""
Repository layer - wraps data access
"""

import json
from datetime import datetime
from typing import Any

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from seatsync.datastore.models import KeyValueDB


class KeyValueRepository:
    """JSON documents stored under string keys"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, key: str, default: Any = None) -> Any:
        """Decoded value for key, or default when missing or unreadable"""
        result = await self.session.execute(
            select(KeyValueDB).where(KeyValueDB.key == key)
        )
        row = result.scalar_one_or_none()
        if row is None:
            return default

        try:
            return json.loads(row.value)
        except json.JSONDecodeError as e:
            logger.warning(f"Failed to parse stored value for '{key}': {e}")
            return default

    async def put(self, key: str, value: Any) -> None:
        """Insert or replace the value stored under key"""
        payload = json.dumps(value, ensure_ascii=False, default=str)

        existing = await self.session.execute(
            select(KeyValueDB).where(KeyValueDB.key == key)
        )
        row = existing.scalar_one_or_none()

        if row:
            row.value = payload
            row.updated_at = datetime.now()
        else:
            self.session.add(KeyValueDB(key=key, value=payload))
        logger.debug(f"Stored '{key}' ({len(payload)} bytes)")

