"""
Password hashing.

pbkdf2_sha256 via passlib, with a fresh 16-byte random salt per hash.
The salt is embedded in the hash string and also kept next to it on the
user record (hex) so the record shows how it was produced.
"""

import secrets

from passlib.hash import pbkdf2_sha256


class PasswordHasher:

    SALT_BYTES = 16

    def __init__(self, rounds: int = 29000):
        self._handler = pbkdf2_sha256.using(rounds=rounds)
        # Verified against when the username does not exist, so both
        # login failure paths do the same amount of work
        self._dummy_hash = self._handler.hash(secrets.token_hex(16))

    def hash(self, password: str) -> tuple[str, str]:
        """Return (password_hash, salt_hex)."""
        salt = secrets.token_bytes(self.SALT_BYTES)
        return self._handler.using(salt=salt).hash(password), salt.hex()

    def verify(self, password: str, password_hash: str) -> bool:
        try:
            return pbkdf2_sha256.verify(password, password_hash)
        except ValueError:
            # Malformed stored hash
            return False

    def verify_dummy(self, password: str) -> bool:
        pbkdf2_sha256.verify(password, self._dummy_hash)
        return False
