from __future__ import annotations

import unittest
from datetime import timedelta

from sqlalchemy import func, select

from civic_auth.logging import SecurityMonitor
from civic_auth.models import (
    ActivityType,
    SecurityEvent,
    SecurityEventType,
    Severity,
    SuspiciousActivity,
    UserSession,
    utcnow,
)
from civic_auth.store import (
    DuplicateUser,
    EmailVerificationTokenStore,
    NewSecurityEvent,
    NewSession,
    NewUser,
    PasswordResetTokenStore,
    UserStore,
    UserUpdate,
)
from civic_auth.tests.helpers import DatabaseTestCase


class UserStoreTests(DatabaseTestCase):
    async def asyncSetUp(self) -> None:
        await super().asyncSetUp()
        self.monitor = SecurityMonitor(self.database)
        self.store = UserStore(self.database, monitor=self.monitor)

    async def _count(self, model) -> int:
        async with self.database.session() as session:
            return await session.scalar(select(func.count()).select_from(model))

    async def test_create_user_normalizes_email_and_applies_defaults(self) -> None:
        user = await self.store.create_user(
            NewUser(email="  Voter@Example.COM ", password_hash="hash", zip_code="95110", first_name="Ada")
        )
        self.assertEqual(user.email, "voter@example.com")
        self.assertEqual(user.failed_login_attempts, 0)
        self.assertFalse(user.email_verified)
        self.assertIsNone(user.account_locked_until)
        self.assertEqual(user.last_security_event.event_type, SecurityEventType.ACCOUNT_CREATED)

        found = await self.store.get_user("VOTER@example.com")
        self.assertEqual(found.id, user.id)
        self.assertEqual(found.first_name, "Ada")

    async def test_duplicate_email_in_any_case_is_rejected(self) -> None:
        await self.store.create_user(NewUser(email="a@b.com", password_hash="hash", zip_code="95110"))
        with self.assertRaises(DuplicateUser) as ctx:
            await self.store.create_user(NewUser(email="A@B.COM", password_hash="other", zip_code="10001"))
        self.assertEqual(ctx.exception.email, "a@b.com")
        self.assertEqual(await self._count(UserSession), 0)

    async def test_get_user_returns_none_when_absent(self) -> None:
        self.assertIsNone(await self.store.get_user("nobody@example.com"))

    async def test_initial_sessions_are_created_with_the_user(self) -> None:
        now = utcnow()
        user = await self.store.create_user(
            NewUser(
                email="a@b.com",
                password_hash="hash",
                zip_code="95110",
                initial_sessions=(
                    NewSession(session_token="live-token", expires_at=now + timedelta(days=1), device_info="phone"),
                    NewSession(session_token="stale-token", expires_at=now - timedelta(minutes=1)),
                ),
            ),
            now=now,
        )
        self.assertEqual([item.session_token for item in user.active_sessions], ["live-token"])
        self.assertEqual(user.active_sessions[0].user_email, "a@b.com")
        self.assertEqual(await self._count(UserSession), 2)

    async def test_update_user_writes_only_given_fields(self) -> None:
        created = await self.store.create_user(
            NewUser(email="a@b.com", password_hash="hash", zip_code="95110", first_name="Ada", last_name="Lovelace")
        )
        later = created.updated_at + timedelta(minutes=5)

        changed = await self.store.update_user("A@B.com", UserUpdate.update_profile(first_name="Augusta"), now=later)

        self.assertTrue(changed)
        user = await self.store.get_user("a@b.com")
        self.assertEqual(user.first_name, "Augusta")
        self.assertEqual(user.last_name, "Lovelace")
        self.assertEqual(user.zip_code, "95110")
        self.assertEqual(user.updated_at, later)
        self.assertEqual(user.profile_updated_at, later)

    async def test_update_user_without_changes_does_not_write(self) -> None:
        created = await self.store.create_user(NewUser(email="a@b.com", password_hash="hash", zip_code="95110"))
        self.assertFalse(await self.store.update_user("a@b.com", UserUpdate()))
        self.assertFalse(await self.store.update_user("missing@b.com", UserUpdate.set_password_hash("x")))
        user = await self.store.get_user("a@b.com")
        self.assertEqual(user.updated_at, created.updated_at)

    async def test_security_relevant_updates_are_logged(self) -> None:
        await self.store.create_user(NewUser(email="a@b.com", password_hash="hash", zip_code="95110"))
        now = utcnow()

        await self.store.update_user("a@b.com", UserUpdate.set_password_hash("new-hash"), now=now)
        await self.store.update_user("a@b.com", UserUpdate.lock_account(now + timedelta(minutes=30), 5), now=now)
        await self.store.update_user("a@b.com", UserUpdate.unlock_account(), now=now)
        await self.store.update_user("a@b.com", UserUpdate.mark_email_verified(), now=now)

        events = await self.monitor.get_security_events("a@b.com")
        types = {item.event_type for item in events}
        self.assertTrue(
            {
                SecurityEventType.ACCOUNT_CREATED,
                SecurityEventType.PASSWORD_CHANGE,
                SecurityEventType.ACCOUNT_LOCKED,
                SecurityEventType.ACCOUNT_UNLOCKED,
                SecurityEventType.EMAIL_VERIFIED,
            }
            <= types
        )
        user = await self.store.get_user("a@b.com")
        self.assertTrue(user.email_verified)
        self.assertIsNone(user.account_locked_until)
        self.assertEqual(user.failed_login_attempts, 0)
        self.assertEqual(user.password_hash, "new-hash")

    async def test_get_user_includes_latest_event_and_recent_activity(self) -> None:
        await self.store.create_user(NewUser(email="a@b.com", password_hash="hash", zip_code="95110"))
        base = utcnow() + timedelta(minutes=1)
        await self.monitor.log_security_event(
            "a@b.com",
            NewSecurityEvent(SecurityEventType.LOGIN, timestamp=base + timedelta(minutes=5)),
        )
        async with self.database.session() as session:
            for offset in range(12):
                session.add(
                    SuspiciousActivity(
                        email="a@b.com",
                        activity_type=ActivityType.UNUSUAL_LOCATION,
                        severity=Severity.MEDIUM,
                        timestamp=base + timedelta(seconds=offset),
                        details=f"activity {offset}",
                    )
                )

        user = await self.store.get_user("a@b.com")

        self.assertEqual(user.last_security_event.event_type, SecurityEventType.LOGIN)
        self.assertEqual(len(user.suspicious_activity), 10)
        self.assertEqual(user.suspicious_activity[0].details, "activity 11")

    async def test_delete_user_removes_dependent_rows(self) -> None:
        now = utcnow()
        await self.store.create_user(
            NewUser(
                email="a@b.com",
                password_hash="hash",
                zip_code="95110",
                initial_sessions=(NewSession(session_token="t1", expires_at=now + timedelta(days=1)),),
            )
        )
        await PasswordResetTokenStore(self.database).create("a@b.com")
        await EmailVerificationTokenStore(self.database).create("a@b.com")
        await self.monitor.log_security_event("a@b.com", NewSecurityEvent(SecurityEventType.FAILED_LOGIN))
        await self.store.create_user(NewUser(email="keep@b.com", password_hash="hash", zip_code="95110"))

        self.assertTrue(await self.store.delete_user("A@B.COM"))

        self.assertIsNone(await self.store.get_user("a@b.com"))
        self.assertEqual(await self._count(UserSession), 0)
        self.assertEqual(await self.monitor.get_security_events("a@b.com"), [])
        self.assertEqual(len(await self.monitor.get_security_events("keep@b.com")), 1)
        self.assertFalse(await self.store.delete_user("a@b.com"))

    async def test_lookup_by_zip_code(self) -> None:
        await self.store.create_user(NewUser(email="one@b.com", password_hash="h", zip_code="95110"))
        await self.store.create_user(NewUser(email="two@b.com", password_hash="h", zip_code="95110"))
        await self.store.create_user(NewUser(email="three@b.com", password_hash="h", zip_code="10001"))

        found = await self.store.get_users_by_zip_code("95110")

        self.assertEqual({user.email for user in found}, {"one@b.com", "two@b.com"})
        self.assertEqual(await self.store.get_users_by_zip_code("60601"), [])

    async def test_name_search_is_partial_and_case_insensitive(self) -> None:
        now = utcnow()
        await self.store.create_user(
            NewUser(email="ada@b.com", password_hash="h", zip_code="95110", first_name="Ada", last_name="Lovelace"),
            now=now,
        )
        await self.store.create_user(
            NewUser(email="adam@b.com", password_hash="h", zip_code="95110", first_name="Adam", last_name="Smith"),
            now=now + timedelta(seconds=1),
        )

        by_first = await self.store.search_users_by_name(first_name="ada")
        self.assertEqual([user.email for user in by_first], ["adam@b.com", "ada@b.com"])
        by_both = await self.store.search_users_by_name(first_name="AD", last_name="love")
        self.assertEqual([user.email for user in by_both], ["ada@b.com"])
        self.assertEqual(await self.store.search_users_by_name(), [])
        self.assertEqual(await self.store.search_users_by_name(last_name="%"), [])

    async def test_security_events_cannot_be_edited(self) -> None:
        await self.store.create_user(NewUser(email="a@b.com", password_hash="hash", zip_code="95110"))
        with self.assertRaises(ValueError):
            async with self.database.session() as session:
                event = await session.scalar(select(SecurityEvent))
                event.details = "rewritten"
                await session.flush()


if __name__ == "__main__":
    unittest.main()
