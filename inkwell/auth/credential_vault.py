"""
Argon2id credential hashing.

Passwords are hashed with Argon2id, a deliberately slow, memory-hard key
derivation function, using a fresh random salt per password. Digests are
standard PHC strings produced by ``argon2.PasswordHasher``; they record the
cost parameters they were made with, so stored digests stay verifiable after
the configured costs are raised.

The salt is also returned separately and stored next to the digest. It must
match the salt embedded in the digest for verification to succeed.
"""

import asyncio
import base64
import logging
import secrets

import argon2

from .utils import secure_compare

logger = logging.getLogger(__name__)


class CredentialHasher:
    """
    Salted Argon2id hashing and constant-time verification.

    Usage:
        hasher = CredentialHasher()
        digest, salt = hasher.hash("user password")
        hasher.verify("user password", digest, salt)  # True

    Hashing and verification are pure functions of their inputs. The async
    variants run the derivation in a worker thread so a login does not stall
    the event loop.
    """

    def __init__(
        self,
        memory_cost: int = 65536,
        time_cost: int = 3,
        parallelism: int = 4,
        hash_length: int = 32,
        salt_length: int = 16,
    ):
        """
        Initialize the hasher.

        Args:
            memory_cost: Memory usage in KiB
            time_cost: Number of iterations
            parallelism: Degree of parallelism
            hash_length: Output digest length in bytes
            salt_length: Salt length in bytes, at least 16 (128 bits)
        """
        if salt_length < 16:
            raise ValueError("salt_length must be at least 16 bytes (128 bits)")
        if hash_length < 16:
            raise ValueError("hash_length must be at least 16 bytes")
        if time_cost < 1:
            raise ValueError("time_cost must be at least 1")
        if parallelism < 1:
            raise ValueError("parallelism must be at least 1")
        if memory_cost < 8 * parallelism:
            raise ValueError("memory_cost must be at least 8 KiB per lane")

        self.memory_cost = memory_cost
        self.time_cost = time_cost
        self.parallelism = parallelism
        self.hash_length = hash_length
        self.salt_length = salt_length

        self.hasher = argon2.PasswordHasher(
            time_cost=time_cost,
            memory_cost=memory_cost,
            parallelism=parallelism,
            hash_len=hash_length,
            salt_len=salt_length,
            type=argon2.Type.ID,
        )

    @property
    def parameters(self) -> dict[str, int]:
        return {"m": self.memory_cost, "t": self.time_cost, "p": self.parallelism}

    @staticmethod
    def _encode_salt(salt: bytes) -> str:
        # PHC strings carry the salt as unpadded standard base64
        return base64.b64encode(salt).decode("ascii").rstrip("=")

    def hash(self, password: str) -> tuple[str, str]:
        """
        Hash a password with a new random salt.

        Returns:
            ``(digest, salt)``, both strings safe to store
        """
        salt = secrets.token_bytes(self.salt_length)
        return self.hasher.hash(password, salt=salt), salt.hex()

    def verify(self, password: str, digest: str | None, salt: str | None) -> bool:
        """
        Check a password against a stored digest and salt.

        Malformed stored material counts as a mismatch, never as an error.
        """
        if not digest or not salt:
            return False

        try:
            embedded_salt = digest.split("$")[-2]
            if not secure_compare(embedded_salt, self._encode_salt(bytes.fromhex(salt))):
                return False
            return self.hasher.verify(digest, password)
        except argon2.exceptions.VerifyMismatchError:
            return False
        except (argon2.exceptions.VerificationError, argon2.exceptions.InvalidHashError, ValueError, IndexError) as e:
            logger.warning(f"Stored password digest could not be verified: {type(e).__name__}")
            return False

    def needs_rehash(self, digest: str | None) -> bool:
        """True if ``digest`` was made with different parameters than the current ones."""
        if not digest:
            return True
        try:
            return self.hasher.check_needs_rehash(digest)
        except (argon2.exceptions.InvalidHashError, ValueError):
            return True

    async def hash_async(self, password: str) -> tuple[str, str]:
        return await asyncio.to_thread(self.hash, password)

    async def verify_async(self, password: str, digest: str | None, salt: str | None) -> bool:
        return await asyncio.to_thread(self.verify, password, digest, salt)
