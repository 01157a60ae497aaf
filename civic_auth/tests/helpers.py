from __future__ import annotations

import unittest
from datetime import datetime, timezone

from civic_auth.store import Database, NewUser, UserStore

MEMORY_URL = "sqlite+aiosqlite:///:memory:"


def at(year: int = 2030, month: int = 1, day: int = 1, hour: int = 12, minute: int = 0, second: int = 0) -> datetime:
    return datetime(year, month, day, hour, minute, second, tzinfo=timezone.utc)


class DatabaseTestCase(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.database = Database(MEMORY_URL)
        await self.database.create_schema()

    async def asyncTearDown(self) -> None:
        await self.database.dispose()

    async def make_user(self, email: str = "user@example.com", zip_code: str = "95110", **fields):
        store = UserStore(self.database)
        return await store.create_user(NewUser(email=email, password_hash="not-a-real-hash", zip_code=zip_code, **fields))
