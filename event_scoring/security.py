"""
event_scoring/security.py
Password hashing for imported and created accounts.
"""
import asyncio
import secrets
from concurrent.futures import ThreadPoolExecutor

from passlib.context import CryptContext

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

# Hashing is CPU bound; keep it off the event loop
_executor = None


def get_executor() -> ThreadPoolExecutor:
    global _executor
    if _executor is None:
        _executor = ThreadPoolExecutor(max_workers=4)
    return _executor


def verify_password(plain: str, hashed: str) -> bool:
    return pwd_context.verify(plain, hashed)


async def hash_password_async(password: str) -> str:
    """Async-friendly password hashing that doesn't block the event loop."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(get_executor(), pwd_context.hash, password)


def generate_temporary_password() -> str:
    """Random password for imported accounts that came without one."""
    return secrets.token_urlsafe(12)
