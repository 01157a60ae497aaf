from __future__ import annotations

import unittest
from datetime import timedelta

from sqlalchemy import select

from civic_auth.models import RevocationReason, UserSession, as_utc, utcnow
from civic_auth.store import SessionManager, StoreError, UnknownUser
from civic_auth.tests.helpers import DatabaseTestCase


class SessionManagerTests(DatabaseTestCase):
    async def asyncSetUp(self) -> None:
        await super().asyncSetUp()
        self.sessions = SessionManager(self.database)
        await self.make_user("voter@example.com")

    async def _row(self, token: str) -> UserSession:
        async with self.database.session() as session:
            return await session.scalar(select(UserSession).where(UserSession.session_token == token))

    async def test_create_and_get_session(self) -> None:
        now = utcnow()
        created = await self.sessions.create_session(
            "Voter@Example.com",
            device_info="laptop",
            ip_address="203.0.113.9",
            user_agent="Firefox",
            now=now,
        )

        self.assertTrue(created.is_active)
        self.assertEqual(created.expires_at, now + timedelta(days=7))
        fetched = await self.sessions.get_session(created.session_token, now=now)
        self.assertEqual(fetched.user_email, "voter@example.com")
        self.assertEqual(fetched.device_info, "laptop")
        self.assertTrue(fetched.is_usable(now))

    async def test_create_session_requires_known_owner(self) -> None:
        with self.assertRaises(UnknownUser):
            await self.sessions.create_session("ghost@example.com")

    async def test_duplicate_session_token_is_rejected(self) -> None:
        await self.sessions.create_session("voter@example.com", session_token="same")
        with self.assertRaises(StoreError):
            await self.sessions.create_session("voter@example.com", session_token="same")

    async def test_expired_session_is_not_returned(self) -> None:
        now = utcnow()
        created = await self.sessions.create_session("voter@example.com", ttl_seconds=60, now=now)
        self.assertIsNone(await self.sessions.get_session(created.session_token, now=now + timedelta(seconds=61)))

    async def test_update_session_never_extends_expiry(self) -> None:
        now = utcnow()
        created = await self.sessions.create_session("voter@example.com", now=now)
        later = now + timedelta(hours=3)

        self.assertTrue(await self.sessions.update_session(created.session_token, now=later))

        fetched = await self.sessions.get_session(created.session_token, now=later)
        self.assertEqual(fetched.last_active_at, later)
        self.assertEqual(fetched.expires_at, created.expires_at)
        self.assertFalse(await self.sessions.update_session("unknown", now=later))

    async def test_delete_session_soft_revokes(self) -> None:
        now = utcnow()
        created = await self.sessions.create_session("voter@example.com", now=now)

        self.assertTrue(await self.sessions.delete_session(created.session_token, now=now))

        self.assertIsNone(await self.sessions.get_session(created.session_token, now=now))
        row = await self._row(created.session_token)
        self.assertIsNotNone(row)
        self.assertFalse(row.is_active)
        self.assertEqual(row.revoked_reason, RevocationReason.LOGOUT)
        self.assertEqual(as_utc(row.revoked_at), now)
        self.assertFalse(await self.sessions.delete_session(created.session_token, now=now))

    async def test_delete_all_user_sessions(self) -> None:
        await self.make_user("other@example.com")
        first = await self.sessions.create_session("voter@example.com")
        await self.sessions.create_session("voter@example.com")
        other = await self.sessions.create_session("other@example.com")

        revoked = await self.sessions.delete_all_user_sessions("VOTER@example.com")

        self.assertEqual(revoked, 2)
        self.assertEqual((await self._row(first.session_token)).revoked_reason, RevocationReason.SECURITY_LOGOUT)
        self.assertIsNotNone(await self.sessions.get_session(other.session_token))

    async def test_cleanup_expired_marks_sessions(self) -> None:
        now = utcnow()
        stale = await self.sessions.create_session("voter@example.com", ttl_seconds=60, now=now - timedelta(hours=1))
        live = await self.sessions.create_session("voter@example.com", now=now)

        self.assertEqual(await self.sessions.cleanup_expired(now), 1)

        row = await self._row(stale.session_token)
        self.assertFalse(row.is_active)
        self.assertEqual(row.revoked_reason, RevocationReason.EXPIRED)
        self.assertIsNotNone(await self.sessions.get_session(live.session_token, now=now))
        self.assertEqual(await self.sessions.cleanup_expired(now), 0)


if __name__ == "__main__":
    unittest.main()
