import logging

from passlib.context import CryptContext
from passlib.handlers import bcrypt as passlib_bcrypt

logging.getLogger("passlib.handlers.bcrypt").setLevel(logging.ERROR)


def _install_bcrypt_guard() -> None:
    """Make the bcrypt backend usable with bcrypt>=4.1.

    Newer bcrypt releases raise for secrets over 72 bytes, which breaks
    passlib's startup wrap-bug self-test and its verify path.
    """

    backend = passlib_bcrypt._BcryptBackend
    if getattr(backend, "_colombus_guard", False):
        return
    original_verify = backend.verify.__func__

    def verify_or_false(cls, secret, hash, **context):
        try:
            return original_verify(cls, secret, hash, **context)
        except ValueError as exc:
            if "longer than 72 bytes" in str(exc):
                return False
            raise

    backend.verify = classmethod(verify_or_false)
    backend._workrounds_initialized = True
    backend._colombus_guard = True


_install_bcrypt_guard()

pwd_ctx = CryptContext(
    schemes=["bcrypt_sha256", "bcrypt"],
    deprecated="auto",
)

MIN_PASSWORD_LENGTH = 6


def hash_password(plain: str) -> str:
    return pwd_ctx.hash(plain)


def check_password(plain: str, hashed: str) -> bool:
    if not plain or not hashed:
        return False
    try:
        return pwd_ctx.verify(plain, hashed)
    except ValueError:
        return False


def password_needs_upgrade(hashed: str) -> bool:
    """True for hashes made with a deprecated scheme (plain bcrypt)."""
    try:
        return pwd_ctx.needs_update(hashed)
    except ValueError:
        return False
