"""Tests for the identity and session manager."""

import asyncio
from datetime import timedelta

import pytest

from conftest import sign_in
from finledger.errors import (
    AuthenticationError,
    AuthorizationError,
    ConflictError,
    SessionExpiredError,
    ValidationError,
)
from finledger.identity import (
    DEFAULT_EXPENSE_CATEGORIES,
    DEFAULT_INCOME_CATEGORIES,
    IdentityManager,
    build_default_categories,
    slugify,
)
from finledger.models import CategoryType, PublicUser, Theme, UserRole
from finledger.services.cache import CacheKeys
from finledger.services.storage import Stores


KEYS = CacheKeys("finledger")


class TestRegistration:
    """register()"""

    def test_returns_sanitized_user(self, app):
        """Test that the hash and salt never leave the manager."""
        user = asyncio.run(app.identity.register({
            "username": "alice",
            "password": "Password1!",
            "email": "Alice@Example.com",
        }))
        assert isinstance(user, PublicUser)
        dumped = user.model_dump()
        assert "password_hash" not in dumped
        assert "password_salt" not in dumped
        assert user.email == "alice@example.com"
        assert user.role == UserRole.PERSONAL
        assert "transactions:write" in user.permissions

    def test_stores_hash_and_hex_salt(self, app):
        """Test what is persisted for the password."""
        user = asyncio.run(app.identity.register({"username": "alice", "password": "Password1!"}))
        record = asyncio.run(app.storage.get(Stores.USERS, user.id))
        assert record["password_hash"] != "Password1!"
        assert record["password_hash"].startswith("$pbkdf2-sha256$")
        assert len(bytes.fromhex(record["password_salt"])) == 16

    def test_seeds_default_categories(self, app):
        """Test that every user starts with the default categories."""
        user = asyncio.run(app.identity.register({"username": "alice", "password": "Password1!"}))
        records = asyncio.run(app.storage.query_by_index(Stores.CATEGORIES, "user_id", user.id))
        types = [r["type"] for r in records]
        assert types.count("income") == len(DEFAULT_INCOME_CATEGORIES) == 5
        assert types.count("expense") == len(DEFAULT_EXPENSE_CATEGORIES) == 11
        assert all(r["is_system"] for r in records)

    def test_duplicate_username_conflicts_without_partial_records(self, app):
        """Test that a taken username leaves storage untouched."""
        async def scenario():
            await app.identity.register({"username": "alice", "password": "Password1!"})
            with pytest.raises(ConflictError):
                await app.identity.register({"username": "alice", "password": "Other-pass1"})
            return (
                await app.storage.count(Stores.USERS),
                await app.storage.count(Stores.CATEGORIES),
            )

        assert asyncio.run(scenario()) == (1, 16)

    def test_duplicate_email_conflicts(self, app):
        """Test the email uniqueness check."""
        async def scenario():
            await app.identity.register({
                "username": "alice", "password": "Password1!", "email": "a@example.com",
            })
            await app.identity.register({
                "username": "bob", "password": "Password1!", "email": "A@example.com",
            })

        with pytest.raises(ConflictError):
            asyncio.run(scenario())

    def test_storage_constraint_is_authoritative(self, app, monkeypatch):
        """Test that a registration losing the race still becomes ConflictError."""
        asyncio.run(app.identity.register({"username": "alice", "password": "Password1!"}))

        async def no_precheck(store, index, value):
            return []

        monkeypatch.setattr(app.storage, "query_by_index", no_precheck)

        with pytest.raises(ConflictError):
            asyncio.run(app.identity.register({"username": "alice", "password": "Password1!"}))
        assert asyncio.run(app.storage.count(Stores.USERS)) == 1
        assert asyncio.run(app.storage.count(Stores.CATEGORIES)) == 16

    @pytest.mark.parametrize("data", [
        {"username": "al", "password": "Password1!"},
        {"username": "alice smith", "password": "Password1!"},
        {"username": "alice", "password": "short"},
        {"username": "alice"},
        {"username": "alice", "password": "Password1!", "email": "not-an-email"},
        {"username": "alice", "password": "Password1!", "is_admin": True},
    ])
    def test_invalid_input_is_rejected(self, app, data):
        """Test username rules, password policy and the field whitelist."""
        with pytest.raises(ValidationError):
            asyncio.run(app.identity.register(data))
        assert asyncio.run(app.storage.count(Stores.USERS)) == 0


class TestLogin:
    """login() / logout()"""

    def test_login_starts_session(self, app):
        """Test a successful login."""
        async def scenario():
            await app.identity.register({"username": "alice", "password": "Password1!"})
            return await app.identity.login("alice", "Password1!")

        result = asyncio.run(scenario())
        assert app.identity.is_authenticated()
        assert app.identity.get_current_user().username == "alice"
        assert len(result.session.token) == 64
        assert app.cache.get(KEYS.session) is not None
        assert app.cache.get(KEYS.preferences) is not None

    def test_login_stamps_last_login(self, app, clock):
        """Test that the user record records the login time."""
        user = asyncio.run(sign_in(app))
        record = asyncio.run(app.storage.get(Stores.USERS, user.id))
        assert record["last_login_at"] is not None
        assert user.last_login_at == clock()

    def test_password_whitespace_is_kept(self, app):
        """Test that the password is hashed exactly as typed."""
        async def scenario():
            await app.identity.register({"username": "  bob ", "password": "Password1! "})
            await app.identity.login("bob", "Password1! ")
            await app.identity.logout()
            with pytest.raises(AuthenticationError):
                await app.identity.login("bob", "Password1!")

        asyncio.run(scenario())

    def test_salt_copy_is_not_used_for_verification(self, app):
        """Test that only the hash string decides a login."""
        async def scenario():
            user = await app.identity.register({"username": "alice", "password": "Password1!"})
            record = await app.storage.get(Stores.USERS, user.id)
            await app.storage.update(Stores.USERS, {**record, "password_salt": "00" * 16})
            return await app.identity.login("alice", "Password1!")

        assert asyncio.run(scenario()).user.username == "alice"

    def test_failures_are_indistinguishable(self, app):
        """Test that wrong password and unknown user look the same."""
        asyncio.run(app.identity.register({"username": "alice", "password": "Password1!"}))

        with pytest.raises(AuthenticationError) as wrong_password:
            asyncio.run(app.identity.login("alice", "Wrong-pass1"))
        with pytest.raises(AuthenticationError) as unknown_user:
            asyncio.run(app.identity.login("mallory", "Password1!"))

        assert type(wrong_password.value) is type(unknown_user.value)
        assert str(wrong_password.value) == str(unknown_user.value)
        assert not app.identity.is_authenticated()

    @pytest.mark.parametrize("username,password", [("", "Password1!"), ("alice", ""), (None, None)])
    def test_missing_credentials(self, app, username, password):
        """Test that empty credentials are a validation problem."""
        with pytest.raises(ValidationError):
            asyncio.run(app.identity.login(username, password))

    def test_logout_clears_state_and_cache(self, app):
        """Test logout."""
        asyncio.run(sign_in(app))
        app.cache.set(KEYS.app_state, "{}")
        asyncio.run(app.identity.logout())
        assert not app.identity.is_authenticated()
        assert app.identity.get_current_user() is None
        assert app.cache.get(KEYS.session) is None
        assert app.cache.get(KEYS.preferences) is None
        assert app.cache.get(KEYS.app_state) is None

    def test_logout_when_anonymous_is_fine(self, app):
        """Test that logout never fails."""
        asyncio.run(app.identity.logout())
        assert not app.identity.is_authenticated()


class TestSessions:
    """Expiry, refresh and restore from the cache."""

    def test_session_expires_without_logout(self, app, clock):
        """Test that expiry is checked against the clock on every call."""
        asyncio.run(sign_in(app))
        clock.advance(minutes=59)
        assert app.identity.is_authenticated()
        clock.advance(minutes=2)
        assert not app.identity.is_authenticated()
        assert app.identity.get_current_user() is None
        with pytest.raises(SessionExpiredError):
            app.identity.require_user()

    def test_refresh_extends_expiry(self, app, clock):
        """Test refresh_session."""
        asyncio.run(sign_in(app))
        clock.advance(minutes=50)
        descriptor = asyncio.run(app.identity.refresh_session())
        assert descriptor.expires_at == clock() + timedelta(minutes=60)
        clock.advance(minutes=50)
        assert app.identity.is_authenticated()

    def test_refresh_without_user_fails(self, app):
        """Test that there is nothing to refresh when anonymous."""
        with pytest.raises(SessionExpiredError):
            asyncio.run(app.identity.refresh_session())

    def test_restore_from_cache(self, app, cache, clock):
        """Test that a new manager picks up the cached session."""
        user = asyncio.run(sign_in(app))
        other = IdentityManager(app.storage, cache, clock=clock)
        asyncio.run(other.init())
        assert other.is_authenticated()
        assert other.get_current_user().id == user.id

    def test_expired_cached_session_is_discarded(self, app, cache, clock):
        """Test that an expired blob is wiped on load."""
        asyncio.run(sign_in(app))
        clock.advance(hours=2)
        other = IdentityManager(app.storage, cache, clock=clock)
        assert asyncio.run(other.load_session()) is False
        assert not other.is_authenticated()
        assert cache.get(KEYS.session) is None

    def test_malformed_cached_session_is_discarded(self, app, cache, clock):
        """Test that garbage in the cache does not break startup."""
        cache.set(KEYS.session, "{not json")
        other = IdentityManager(app.storage, cache, clock=clock)
        assert asyncio.run(other.load_session()) is False
        assert cache.get(KEYS.session) is None

    def test_session_of_deleted_user_is_discarded(self, app, cache, clock):
        """Test that a session cannot outlive its user."""
        user = asyncio.run(sign_in(app))
        asyncio.run(app.storage.delete(Stores.USERS, user.id))
        other = IdentityManager(app.storage, cache, clock=clock)
        assert asyncio.run(other.load_session()) is False
        assert cache.get(KEYS.session) is None


class TestProfile:
    """update_profile() / change_password()"""

    def test_update_names_and_merge_preferences(self, app, cache):
        """Test that nested preferences are merged, not replaced."""
        asyncio.run(sign_in(app))
        updated = asyncio.run(app.identity.update_profile({
            "first_name": "Alice",
            "preferences": {"theme": "light", "notifications": {"weekly_reports": True}},
        }))
        assert updated.first_name == "Alice"
        assert updated.preferences.theme == Theme.LIGHT
        assert updated.preferences.currency == "IDR"
        assert updated.preferences.notifications.weekly_reports is True
        assert updated.preferences.notifications.budget_alerts is True
        assert '"light"' in cache.get(KEYS.preferences)

    def test_email_taken_by_other_user_conflicts(self, app):
        """Test email uniqueness on update."""
        asyncio.run(sign_in(app, "bob"))
        asyncio.run(app.identity.logout())
        asyncio.run(sign_in(app, "alice"))
        with pytest.raises(ConflictError):
            asyncio.run(app.identity.update_profile({"email": "bob@example.com"}))

    def test_only_whitelisted_fields(self, app):
        """Test that role and username cannot be changed this way."""
        asyncio.run(sign_in(app))
        with pytest.raises(ValidationError):
            asyncio.run(app.identity.update_profile({"role": "admin"}))

    def test_requires_session(self, app):
        """Test that anonymous updates fail."""
        with pytest.raises(SessionExpiredError):
            asyncio.run(app.identity.update_profile({"first_name": "Eve"}))

    def test_change_password(self, app):
        """Test that only the new password works afterwards."""
        async def scenario():
            await sign_in(app)
            await app.identity.change_password("Password1!", "New-password2")
            await app.identity.logout()
            await app.identity.login("alice", "New-password2")
            with pytest.raises(AuthenticationError):
                await app.identity.login("alice", "Password1!")

        asyncio.run(scenario())

    def test_change_password_checks_current(self, app):
        """Test that the current password must be right."""
        asyncio.run(sign_in(app))
        with pytest.raises(AuthenticationError):
            asyncio.run(app.identity.change_password("wrong", "New-password2"))

    def test_change_password_enforces_policy(self, app):
        """Test the minimum length on the new password."""
        asyncio.run(sign_in(app))
        with pytest.raises(ValidationError):
            asyncio.run(app.identity.change_password("Password1!", "short"))


class TestDeleteAccount:
    """delete_account()"""

    def test_cascades_to_owned_records_only(self, app):
        """Test that the account and everything it owns disappears."""
        async def scenario():
            await sign_in(app, "bob")
            await app.identity.logout()
            alice = await sign_in(app, "alice")
            food = [
                c for c in await app.categories.list_categories() if c.name == "Food & Dining"
            ][0]
            await app.transactions.create_transaction({
                "amount": 1000, "type": "expense", "date": "2025-01-10",
                "description": "Lunch", "category_id": food.id,
            })
            counts = await app.identity.delete_account("Password1!")
            return alice, counts

        alice, counts = asyncio.run(scenario())
        assert counts[Stores.CATEGORIES] == 16
        assert counts[Stores.TRANSACTIONS] == 1
        assert not app.identity.is_authenticated()
        assert asyncio.run(app.storage.get(Stores.USERS, alice.id)) is None
        assert asyncio.run(app.storage.count(Stores.USERS)) == 1
        assert asyncio.run(app.storage.count(Stores.CATEGORIES)) == 16

    def test_wrong_password_keeps_account(self, app):
        """Test that deletion needs the password."""
        user = asyncio.run(sign_in(app))
        with pytest.raises(AuthenticationError):
            asyncio.run(app.identity.delete_account("nope"))
        assert asyncio.run(app.storage.get(Stores.USERS, user.id)) is not None


class TestPermissions:
    """Role tiers."""

    def test_personal_role(self, app):
        """Test a personal user's permissions."""
        asyncio.run(sign_in(app))
        assert app.identity.has_permission("transactions:write")
        assert not app.identity.has_permission("system:admin")
        with pytest.raises(AuthorizationError):
            app.identity.require_user("system:admin")

    def test_admin_wildcards(self, app):
        """Test that all:<action> grants every resource."""
        async def scenario():
            await app.identity.register({
                "username": "root_user", "password": "Password1!", "role": "admin",
            })
            await app.identity.login("root_user", "Password1!")

        asyncio.run(scenario())
        assert app.identity.has_permission("transactions:write")
        assert app.identity.has_permission("budgets:read")
        assert not app.identity.has_permission("reports:advanced")

    def test_anonymous_has_nothing(self, app):
        """Test that no session means no permissions."""
        assert not app.identity.has_permission("transactions:read")


class TestDefaults:
    """Default category set."""

    def test_slugify(self):
        """Test path slugs."""
        assert slugify("Food & Dining") == "food-&-dining"
        assert slugify("  Other   Income ") == "other-income"

    def test_income_categories_are_not_budgetable(self):
        """Test the default budget settings."""
        categories = build_default_categories("u1")
        income = [c for c in categories if c.type == CategoryType.INCOME]
        expense = [c for c in categories if c.type == CategoryType.EXPENSE]
        assert not any(c.budget_settings.allow_budgeting for c in income)
        assert all(c.budget_settings.allow_budgeting for c in expense)
        assert all(c.path == f"/{slugify(c.name)}" and c.level == 0 for c in categories)
