"""
auth/passwords.py -- Password hashing (Argon2id, with legacy bcrypt verification).

Argon2id is memory-hard: each guess costs memory_cost KiB of RAM, so GPU and
ASIC brute-force is far more expensive than against bcrypt. argon2-cffi embeds
the algorithm parameters and a per-call random salt in the output string, so no
separate salt column is needed.

Accounts created while the backend hashed with bcrypt still verify through the
bcrypt library. needs_rehash() reports True for them so login upgrades the
stored hash to Argon2id after the next successful authentication.

Failure semantics:
  hash(): a hashing failure raises argon2.exceptions.HashingError. The session
      service turns that into an Internal failure.
  verify(): a wrong password or an unrecognised hash is a normal False.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging

import bcrypt
from argon2 import PasswordHasher as _Argon2Hasher
from argon2 import Type
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError

logger = logging.getLogger("pricecalc.auth")

_BCRYPT_PREFIXES = ("$2a$", "$2b$", "$2y$")


class PasswordHasher:
    """Stateless wrapper around argon2-cffi with timing-equalization support."""

    def __init__(self, time_cost: int = 3, memory_cost: int = 65536, parallelism: int = 4) -> None:
        self._argon2 = _Argon2Hasher(
            time_cost=time_cost,
            memory_cost=memory_cost,
            parallelism=parallelism,
            type=Type.ID,
        )
        # Computed once per hasher so the first unknown-email login is not
        # measurably slower than later ones.
        self._dummy_hash = self._argon2.hash("pricecalc_timing_dummy")

    def hash(self, plaintext: str) -> str:
        """Return an Argon2id hash string with embedded salt and parameters."""
        return self._argon2.hash(plaintext)

    def verify(self, password_hash: str, plaintext: str) -> bool:
        """Return True if plaintext matches password_hash. Never raises on mismatch."""
        if password_hash.startswith(_BCRYPT_PREFIXES):
            try:
                return bcrypt.checkpw(plaintext.encode("utf-8"), password_hash.encode("utf-8"))
            except ValueError:
                logger.warning("stored bcrypt hash is malformed")
                return False
        try:
            return self._argon2.verify(password_hash, plaintext)
        except VerifyMismatchError:
            return False
        except (InvalidHashError, VerificationError):
            logger.warning("stored password hash could not be verified")
            return False

    def verify_dummy(self, plaintext: str) -> None:
        """Run a full verify against the dummy hash and discard the result.

        Called when the email lookup misses, so an unknown email costs the same
        as a known email with the wrong password.
        """
        self.verify(self._dummy_hash, plaintext)

    def needs_rehash(self, password_hash: str) -> bool:
        """True for legacy bcrypt hashes and Argon2 hashes with stale parameters."""
        if password_hash.startswith(_BCRYPT_PREFIXES):
            return True
        try:
            return self._argon2.check_needs_rehash(password_hash)
        except InvalidHashError:
            return True
