import hashlib
import hmac

CHECKSUM_ALGORITHM = "sha256"
_HEX_DIGEST_LENGTH = hashlib.new(CHECKSUM_ALGORITHM).digest_size * 2
_HEX_CHARS = frozenset("0123456789abcdef")


def compute_checksum(data: bytes) -> str:
    """Hex encoded SHA-256 digest of ``data``."""
    return hashlib.new(CHECKSUM_ALGORITHM, data).hexdigest()


def is_valid_checksum(value: str) -> bool:
    normalized = value.strip().lower()
    return len(normalized) == _HEX_DIGEST_LENGTH and set(normalized) <= _HEX_CHARS


def checksums_match(actual: str, expected: str) -> bool:
    # clients send upper or lower case hex
    return hmac.compare_digest(actual.strip().lower(), expected.strip().lower())
