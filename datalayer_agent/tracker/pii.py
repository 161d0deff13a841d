"""
One-way hashing of identifying fields before they reach the event channel.
"""

import asyncio
import hashlib
from typing import Optional


def _digest(normalized: str) -> str:
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


async def hash_pii(value: Optional[str], case_normalize: bool = False) -> Optional[str]:
    """
    Normalize and SHA-256 an identifying value.

    Args:
        value: Raw value (email, phone, ...)
        case_normalize: Lower-case before hashing (emails yes, phones no)

    Returns:
        Hex digest, or None for missing/blank input. Blank strings are never hashed.
    """
    if value is None:
        return None

    normalized = str(value).strip()
    if case_normalize:
        normalized = normalized.lower()
    if not normalized:
        return None

    return await asyncio.to_thread(_digest, normalized)


async def hash_email(email: Optional[str]) -> Optional[str]:
    return await hash_pii(email, case_normalize=True)


async def hash_phone(phone: Optional[str]) -> Optional[str]:
    return await hash_pii(phone, case_normalize=False)
