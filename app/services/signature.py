"""
Canonical message signing.

Every inbound request and every outbound webhook is authenticated the same way:

1. Drop the ``sign`` field.
2. Sort the remaining fields by key (byte-wise ascending).
3. Serialize as ``k1=v1&k2=v2`` with query-string percent-encoding
   (space becomes ``%20``, never ``+``).
4. Append the merchant secret with no separator.
5. SHA-512 the result, rendered as 128 lowercase hex characters.
"""
import hashlib
import hmac
from typing import Dict, Mapping
from urllib.parse import quote

from app.exceptions import SignatureMismatch
from app.logging import get_logger

logger = get_logger("signature")

SIGNATURE_FIELD = "sign"

# Characters left unescaped besides the RFC 3986 unreserved set
QUERY_SAFE = "!'()*"


def _sort_key(key: str) -> bytes:
    return key.encode("utf-8")


def canonical_query(fields: Mapping[str, str]) -> str:
    """Build the sorted, percent-encoded query string that gets hashed."""
    pairs = []
    for key in sorted(fields, key=_sort_key):
        if key == SIGNATURE_FIELD:
            continue
        pairs.append(
            f"{quote(str(key), safe=QUERY_SAFE)}={quote(str(fields[key]), safe=QUERY_SAFE)}"
        )
    return "&".join(pairs)


def sign(fields: Mapping[str, str], secret: str) -> str:
    """Return the SHA-512 signature for ``fields`` under ``secret``."""
    query = canonical_query(fields)
    signature = hashlib.sha512((query + secret).encode("utf-8")).hexdigest()
    logger.debug("signature_generated", fields_count=len(fields), query=query[:100])
    return signature


def verify(fields: Mapping[str, str], signature: str, secret: str) -> bool:
    expected = sign(fields, secret)
    valid = hmac.compare_digest(expected, str(signature))
    if not valid:
        logger.warning(
            "signature_verification_failed",
            received=str(signature)[:20] + "...",
            calculated=expected[:20] + "...",
        )
    return valid


def verify_request(fields: Mapping[str, str], secret: str) -> Dict[str, str]:
    """
    Verify a signed field set and return it without the signature.

    Raises:
        SignatureMismatch: if ``sign`` is absent or does not match
    """
    received = fields.get(SIGNATURE_FIELD)
    if not received:
        raise SignatureMismatch("Signature is required")

    unsigned = {
        key: str(value)
        for key, value in fields.items()
        if key != SIGNATURE_FIELD and value is not None
    }
    if not verify(unsigned, received, secret):
        raise SignatureMismatch("Invalid signature")
    return unsigned
