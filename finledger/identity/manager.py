"""
Identity & Session Manager

Owns the user lifecycle (register, authenticate, update, delete) and the
session kept in the durable key-value cache.

State machine per manager instance:

    Anonymous --login / valid cached session--> Authenticated
    Authenticated --logout / expiry / failed restore--> Anonymous

DESIGN DECISION: Username/email uniqueness is enforced by unique indexes
in the object store. The index queries before insert are only a fast
path with a friendlier message; a registration that loses a race is
still rejected by the storage layer and surfaces as ConflictError.

CRITICAL: Login failures are indistinguishable. Unknown username and
wrong password raise the same AuthenticationError after the same
amount of hashing work.
"""

import secrets
from typing import Any, Mapping, Optional, Union

import structlog
from pydantic import ValidationError as PydanticValidationError

from finledger.audit import AuditLogger
from finledger.config import Settings, get_settings
from finledger.errors import (
    AuthenticationError,
    AuthorizationError,
    ConflictError,
    SessionExpiredError,
    ValidationError,
)
from finledger.identity.defaults import build_default_categories
from finledger.identity.passwords import PasswordHasher
from finledger.models import (
    LoginResult,
    ProfileUpdate,
    PublicUser,
    RegistrationRequest,
    Session,
    SessionDescriptor,
    User,
    UserPreferences,
    UserSecurity,
    default_permissions,
    parse_request,
    permission_granted,
)
from finledger.models.common import Clock, utc_now
from finledger.services.cache import CacheKeys, KeyValueCacheInterface
from finledger.services.storage import (
    ConstraintError,
    ObjectStorageInterface,
    Stores,
    StoreTransaction,
    TransactionAbortedError,
)


logger = structlog.get_logger(__name__)


def _deep_merge(base: dict, updates: Mapping[str, Any]) -> dict:
    merged = dict(base)
    for key, value in updates.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class IdentityManager:
    """
    Registers and authenticates users and tracks the current session.

    Usage:
        identity = IdentityManager(storage, cache)
        await identity.init()
        await identity.register({"username": "alice", "password": "Password1!"})
        result = await identity.login("alice", "Password1!")
    """

    def __init__(
        self,
        storage: ObjectStorageInterface,
        cache: KeyValueCacheInterface,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[Settings] = None,
        clock: Clock = utc_now,
    ):
        settings = settings or get_settings()
        self._storage = storage
        self._cache = cache
        self._audit = audit_logger or AuditLogger()
        self._clock = clock

        self._security = settings.security
        self._session_settings = settings.session
        self._default_currency = settings.app.default_currency
        self._keys = CacheKeys(self._session_settings.key_prefix)
        self._hasher = PasswordHasher(rounds=self._security.hash_rounds)

        self._current_user: Optional[User] = None
        self._current_session: Optional[Session] = None
        self._initialized = False

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def init(self) -> "IdentityManager":
        """Open storage and try to restore a cached session."""
        if self._initialized:
            return self
        await self._storage.init()
        await self.load_session()
        self._initialized = True
        return self

    @property
    def storage(self) -> ObjectStorageInterface:
        return self._storage

    # =========================================================================
    # STATE
    # =========================================================================

    def is_authenticated(self) -> bool:
        """
        True iff a user is loaded and the session has not expired.

        Pure check: touches neither storage nor the cache.
        """
        return (
            self._current_user is not None
            and self._current_session is not None
            and self._current_session.is_valid(self._clock())
        )

    def get_current_user(self) -> Optional[PublicUser]:
        if not self.is_authenticated():
            return None
        return self._current_user.to_public()

    @property
    def current_user_id(self) -> Optional[str]:
        return self._current_user.id if self.is_authenticated() else None

    def has_permission(self, permission: str) -> bool:
        if not self.is_authenticated():
            return False
        return permission_granted(self._current_user.permissions, permission)

    def require_user(self, permission: Optional[str] = None) -> PublicUser:
        """
        The authenticated caller, for services that act on their behalf.

        Raises:
            SessionExpiredError: No user, or the session has expired
            AuthorizationError: The role lacks the permission
        """
        if not self.is_authenticated():
            raise SessionExpiredError()
        if permission is not None and not self.has_permission(permission):
            raise AuthorizationError()
        return self._current_user.to_public()

    # =========================================================================
    # REGISTRATION / LOGIN
    # =========================================================================

    def _check_password_policy(self, password: str, field: str = "password") -> None:
        problems = []
        if len(password) < self._security.password_min_length:
            problems.append(
                f"Password must be at least {self._security.password_min_length} characters"
            )
        if len(password) > self._security.password_max_length:
            problems.append(
                f"Password must be at most {self._security.password_max_length} characters"
            )
        if problems:
            raise ValidationError(
                problems[0],
                issues=[
                    {"field": field, "issue_type": "invalid_value", "message": p, "severity": "error"}
                    for p in problems
                ],
            )

    async def register(
        self,
        data: Union[RegistrationRequest, Mapping[str, Any]],
    ) -> PublicUser:
        """
        Create a user and their default categories atomically.

        Raises:
            ValidationError: Missing/malformed username, password or email
            ConflictError: Username or email already taken
        """
        request = parse_request(RegistrationRequest, data)
        self._check_password_policy(request.password)

        if await self._storage.query_by_index(Stores.USERS, "username", request.username):
            raise ConflictError("Username already exists")
        if request.email and await self._storage.query_by_index(Stores.USERS, "email", request.email):
            raise ConflictError("Email already exists")

        password_hash, password_salt = self._hasher.hash(request.password)
        now = self._clock()
        user = User(
            username=request.username,
            password_hash=password_hash,
            password_salt=password_salt,
            email=request.email,
            first_name=request.first_name,
            last_name=request.last_name,
            role=request.role,
            permissions=default_permissions(request.role),
            preferences=UserPreferences(currency=self._default_currency),
            security=UserSecurity(
                session_timeout_minutes=self._session_settings.default_timeout_minutes
            ),
            created_at=now,
            updated_at=now,
        )
        categories = build_default_categories(user.id, now=now)

        async def operations(tx: StoreTransaction) -> None:
            await tx.add(Stores.USERS, user.to_record())
            for category in categories:
                await tx.add(Stores.CATEGORIES, category.to_record())

        try:
            await self._storage.execute_transaction(
                [Stores.USERS, Stores.CATEGORIES], operations
            )
        except TransactionAbortedError as e:
            if isinstance(e.cause, ConstraintError):
                raise ConflictError("Username or email already exists")
            await self._audit.log_storage_error("register", str(e))
            raise

        await self._audit.log_user_registered(user.id, user.username, user.role.value)
        return user.to_public()

    async def login(self, username: str, password: str) -> LoginResult:
        """
        Authenticate and start a session.

        Raises:
            ValidationError: Username or password missing
            AuthenticationError: Unknown username or wrong password (same error)
        """
        if not isinstance(username, str) or not username or not isinstance(password, str) or not password:
            raise ValidationError("Username and password are required")

        records = await self._storage.query_by_index(Stores.USERS, "username", username)
        if not records:
            self._hasher.verify_dummy(password)
            await self._audit.log_login_failed(username)
            raise AuthenticationError()

        user = User.model_validate(records[0])
        if not self._hasher.verify(password, user.password_hash):
            await self._audit.log_login_failed(username)
            raise AuthenticationError()

        now = self._clock()
        user = user.model_copy(update={"last_login_at": now, "updated_at": now})
        await self._storage.update(Stores.USERS, user.to_record())

        session = self._start_session(user)
        await self._audit.log_login_succeeded(user.id, user.username)
        return LoginResult(user=user.to_public(), session=session.descriptor())

    async def logout(self) -> None:
        """Forget the current user and wipe the cached session. Never fails when logged out."""
        user_id = self._current_user.id if self._current_user else None
        self._clear_state()
        if user_id is not None:
            await self._audit.log_logout(user_id)

    # =========================================================================
    # SESSIONS
    # =========================================================================

    def _start_session(self, user: User) -> Session:
        session = Session.issue(
            user_id=user.id,
            token=secrets.token_hex(32),
            now=self._clock(),
            timeout_minutes=user.security.session_timeout_minutes,
        )
        self._current_user = user
        self._current_session = session
        self._cache.set(self._keys.session, session.model_dump_json())
        self._cache.set(self._keys.preferences, user.preferences.model_dump_json())
        return session

    def _clear_state(self) -> None:
        self._current_user = None
        self._current_session = None
        self._cache.remove(self._keys.session)
        self._cache.remove(self._keys.preferences)
        self._cache.remove(self._keys.app_state)

    async def _discard_session(self, reason: str, user_id: Optional[str] = None) -> bool:
        self._clear_state()
        logger.info("session_discarded", reason=reason)
        await self._audit.log_session_discarded(reason, user_id)
        return False

    async def refresh_session(self) -> SessionDescriptor:
        """
        Issue a new session for the loaded user.

        Raises:
            SessionExpiredError: No user is loaded
        """
        if self._current_user is None:
            raise SessionExpiredError()
        session = self._start_session(self._current_user)
        await self._audit.log_session_refreshed(self._current_user.id)
        return session.descriptor()

    async def load_session(self) -> bool:
        """
        Restore identity from the cached session blob at startup.

        Absent, malformed or expired sessions, and sessions whose user no
        longer exists, are discarded and leave the manager anonymous.

        Returns True if a session was restored.
        """
        raw = self._cache.get(self._keys.session)
        if raw is None:
            return False

        try:
            session = Session.model_validate_json(raw)
        except PydanticValidationError:
            return await self._discard_session("malformed")

        now = self._clock()
        if not session.is_valid(now):
            return await self._discard_session("expired", session.user_id)

        record = await self._storage.get(Stores.USERS, session.user_id)
        if record is None:
            return await self._discard_session("user_not_found", session.user_id)

        try:
            user = User.model_validate(record)
        except PydanticValidationError:
            return await self._discard_session("corrupt_user", session.user_id)

        session = session.model_copy(update={"last_activity": now})
        self._current_user = user
        self._current_session = session
        self._cache.set(self._keys.session, session.model_dump_json())
        self._cache.set(self._keys.preferences, user.preferences.model_dump_json())
        await self._audit.log_session_restored(user.id)
        return True

    # =========================================================================
    # ACCOUNT MANAGEMENT
    # =========================================================================

    def _authenticated_user(self) -> User:
        if not self.is_authenticated():
            raise SessionExpiredError()
        return self._current_user

    async def update_profile(
        self,
        updates: Union[ProfileUpdate, Mapping[str, Any]],
    ) -> PublicUser:
        """
        Change first/last name, email or preferences.

        Raises:
            SessionExpiredError: Not authenticated
            ValidationError: Unknown field or malformed value
            ConflictError: Email belongs to another user
        """
        user = self._authenticated_user()
        request = parse_request(ProfileUpdate, updates)
        changes = request.model_dump(exclude_unset=True)

        new_email = changes.get("email")
        if new_email is not None and new_email != user.email:
            existing = await self._storage.query_by_index(Stores.USERS, "email", new_email)
            if any(record["id"] != user.id for record in existing):
                raise ConflictError("Email already exists")

        data = user.model_dump()
        for field in ("first_name", "last_name", "email"):
            if field in changes:
                data[field] = changes[field]
        if changes.get("preferences") is not None:
            merged = _deep_merge(user.preferences.model_dump(), changes["preferences"])
            data["preferences"] = parse_request(UserPreferences, merged)
        data["updated_at"] = self._clock()
        updated = User.model_validate(data)

        try:
            await self._storage.update(Stores.USERS, updated.to_record())
        except ConstraintError:
            raise ConflictError("Email already exists")

        self._current_user = updated
        if "preferences" in changes:
            self._cache.set(self._keys.preferences, updated.preferences.model_dump_json())
        await self._audit.log_profile_updated(updated.id, sorted(changes))
        return updated.to_public()

    async def change_password(self, current_password: str, new_password: str) -> None:
        """
        Raises:
            SessionExpiredError: Not authenticated
            AuthenticationError: current_password is wrong
            ValidationError: new_password violates the policy
        """
        user = self._authenticated_user()
        if not isinstance(current_password, str) or not self._hasher.verify(
            current_password, user.password_hash
        ):
            raise AuthenticationError("Current password is incorrect")
        if not isinstance(new_password, str):
            raise ValidationError("New password is required")
        self._check_password_policy(new_password, field="new_password")

        password_hash, password_salt = self._hasher.hash(new_password)
        updated = user.model_copy(update={
            "password_hash": password_hash,
            "password_salt": password_salt,
            "updated_at": self._clock(),
        })
        await self._storage.update(Stores.USERS, updated.to_record())
        self._current_user = updated
        await self._audit.log_password_changed(updated.id)

    async def delete_account(self, password: str) -> dict[str, int]:
        """
        Delete the user and every record they own, then log out.

        Everything goes in one storage transaction: either the whole
        account disappears or nothing does.

        Returns the number of deleted rows per owned store.
        """
        user = self._authenticated_user()
        if not isinstance(password, str) or not self._hasher.verify(password, user.password_hash):
            raise AuthenticationError("Password is incorrect")

        async def operations(tx: StoreTransaction) -> dict[str, int]:
            counts = {}
            for store in Stores.OWNED:
                rows = await tx.query_by_index(store, "user_id", user.id)
                for row in rows:
                    await tx.delete(store, row["id"])
                counts[store] = len(rows)
            await tx.delete(Stores.USERS, user.id)
            return counts

        try:
            counts = await self._storage.execute_transaction(
                [Stores.USERS, *Stores.OWNED], operations
            )
        except TransactionAbortedError as e:
            await self._audit.log_storage_error("delete_account", str(e), user.id)
            raise

        await self._audit.log_account_deleted(user.id, counts)
        await self.logout()
        return counts
