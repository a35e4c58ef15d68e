"""
passwords.py — bcrypt password hashing.

bcrypt is CPU-bound (~100ms at cost 12), so both calls run in a worker
thread to keep the event loop responsive.
"""
import asyncio

import bcrypt

BCRYPT_ROUNDS = 12


def _hash(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=BCRYPT_ROUNDS)).decode("utf-8")


def _verify(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # malformed stored hash, or a password over bcrypt's 72-byte limit
        return False


async def hash_password(password: str) -> str:
    return await asyncio.to_thread(_hash, password)


async def verify_password(password: str, password_hash: str) -> bool:
    return await asyncio.to_thread(_verify, password, password_hash)
