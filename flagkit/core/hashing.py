"""Deterministic bucketing for rollouts and experiment allocation."""
import hashlib

# Integer percent. Changing this reassigns every user already bucketed.
BUCKET_COUNT = 100


def bucket(identifier: str, salt: str) -> int:
    """
    Map an identifier to a stable bucket in [0, 100).

    Uses the first 32 bits of SHA-256 over "identifier:salt", so the same
    inputs give the same bucket in every process and every release.

    Args:
        identifier: User, session or device id (empty for anonymous)
        salt: Per flag/experiment salt, see flag_salt / experiment_salt

    Returns:
        Integer bucket between 0 and 99

    Example:
        >>> bucket("user_123", flag_salt("dark-mode")) == bucket("user_123", flag_salt("dark-mode"))
        True
    """
    hash_input = f"{identifier}:{salt}".encode("utf-8")
    hash_digest = hashlib.sha256(hash_input).hexdigest()
    return int(hash_digest[:8], 16) % BUCKET_COUNT


def flag_salt(flag_key: str) -> str:
    return f"flag:{flag_key}"


def experiment_salt(experiment_key: str) -> str:
    return f"experiment:{experiment_key}"
