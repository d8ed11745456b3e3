"""Helpers for building counter keys.

Every counter lives under ``"{prefix}:{key}"`` so that processes sharing a
prefix agree on the same Redis key for the same subject. The helpers below
turn raw identifiers (emails, IPs, user ids) into stable key fragments.
"""

from __future__ import annotations

import hashlib

KEY_SEPARATOR = ":"


def build_key(prefix: str, key: str) -> str:
    """Namespace a caller key with the store prefix.

    Raises:
        ValueError: If key is empty or blank
    """
    if not key or not key.strip():
        raise ValueError("key cannot be empty")
    return f"{prefix}{KEY_SEPARATOR}{key}"


def hash_identifier(
    identifier: str,
    *,
    length: int = 16,
    salt: str = "",
    algorithm: str = "sha256",
) -> str:
    """Hash a sensitive identifier so it can be used as a key fragment.

    Input is lowercased and stripped first, so ``" User@Example.com"`` and
    ``"user@example.com"`` hash the same. A salt keeps the same identifier
    from correlating across unrelated counters.

    Args:
        identifier: Sensitive value (email, phone number, ...)
        length: Number of hex characters kept from the digest
        salt: Optional context string mixed into the hash
        algorithm: Any algorithm name accepted by hashlib.new()

    Returns:
        Truncated hex digest.

    Raises:
        ValueError: If length is not positive or the algorithm is unknown

    Example:
        >>> key = combine_identifiers("login", hash_identifier("user@example.com"))
    """
    if length <= 0:
        raise ValueError(f"length must be > 0, got: {length}")

    normalized = identifier.lower().strip()
    if salt:
        normalized = f"{salt}{KEY_SEPARATOR}{normalized}"

    try:
        digest = hashlib.new(algorithm, normalized.encode("utf-8"))
    except ValueError as e:
        raise ValueError(f"Unsupported hash algorithm: {algorithm}") from e

    return digest.hexdigest()[:length]


def combine_identifiers(*parts: str, separator: str = KEY_SEPARATOR) -> str:
    """Join identifier parts into a compound key, skipping empty parts.

    Raises:
        ValueError: If every part is empty

    Example:
        >>> combine_identifiers("login", "10.0.0.1", "")
        'login:10.0.0.1'
    """
    cleaned = [part.strip() for part in parts if part and part.strip()]
    if not cleaned:
        raise ValueError("At least one non-empty identifier part is required")
    return separator.join(cleaned)
