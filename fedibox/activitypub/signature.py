"""
ActivityPub HTTP Signature Module

Signs outbound federation requests and verifies signed requests using
HTTP Signatures (draft-cavage) with rsa-sha256.
"""

import base64
import datetime
import hashlib
import logging
from typing import Dict, List, Mapping, Optional, Union
from urllib.parse import urlparse

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding
from cryptography.hazmat.primitives.serialization import load_pem_private_key, load_pem_public_key

logger = logging.getLogger(__name__)

SIGNED_HEADERS = ['(request-target)', 'host', 'date']

PemKey = Union[str, bytes]


def _as_bytes(pem: PemKey) -> bytes:
    return pem.encode() if isinstance(pem, str) else pem


def key_id_for(actor_id: str) -> str:
    """Key id under which an actor publishes its public key."""
    return f"{actor_id}#main-key"


def http_date(now: Optional[datetime.datetime] = None) -> str:
    now = now or datetime.datetime.now(datetime.timezone.utc)
    return now.strftime("%a, %d %b %Y %H:%M:%S GMT")


def digest_header(body: bytes) -> str:
    """SHA-256 Digest header value for a request body."""
    return f"SHA-256={base64.b64encode(hashlib.sha256(body).digest()).decode('utf-8')}"


def build_signing_string(method: str, path: str, headers: Mapping[str, str],
                         signed_headers: List[str]) -> str:
    """
    Build the string covered by the signature.

    Args:
        method: HTTP method
        path: Request path including any query string
        headers: Request headers (matched case-insensitively)
        signed_headers: Names of the covered headers, in order

    Returns:
        Newline-joined signing string

    Raises:
        KeyError: If a covered header is missing from ``headers``
    """
    lowered = {k.lower(): v for k, v in headers.items()}
    lines = []
    for name in signed_headers:
        if name == '(request-target)':
            lines.append(f"(request-target): {method.lower()} {path}")
        else:
            lines.append(f"{name}: {lowered[name]}")
    return "\n".join(lines)


def sign_request(method: str, url: str, body: Optional[bytes], private_key_pem: PemKey,
                 key_id: str, date: Optional[str] = None) -> Dict[str, str]:
    """
    Generate signed headers for an outbound request.

    Args:
        method: HTTP method
        url: Absolute request URL
        body: Request body, covered through the Digest header when given
        private_key_pem: PEM-encoded RSA private key of the sender
        key_id: Sender key id, ``{actorId}#main-key``
        date: Optional preformatted Date header

    Returns:
        Dict containing Host, Date, Signature and (with a body) Digest headers
    """
    parsed = urlparse(url)
    path = parsed.path or '/'
    if parsed.query:
        path = f"{path}?{parsed.query}"

    headers = {'Host': parsed.netloc, 'Date': date or http_date()}
    signed_headers = list(SIGNED_HEADERS)
    if body is not None:
        headers['Digest'] = digest_header(body)
        signed_headers.append('digest')

    signing_string = build_signing_string(method, path, headers, signed_headers)
    key = load_pem_private_key(_as_bytes(private_key_pem), password=None)
    signature = key.sign(signing_string.encode('utf-8'), padding.PKCS1v15(), hashes.SHA256())
    signature_b64 = base64.b64encode(signature).decode('utf-8')

    headers['Signature'] = (
        f'keyId="{key_id}",algorithm="rsa-sha256",'
        f'headers="{" ".join(signed_headers)}",signature="{signature_b64}"'
    )
    return headers


def parse_signature_header(header: str) -> Dict[str, str]:
    """
    Parse HTTP signature header.

    Args:
        header: Signature header value

    Returns:
        Dictionary of signature parameters
    """
    params = {}
    for param in header.split(','):
        if '=' not in param:
            continue
        key, value = param.split('=', 1)
        params[key.strip()] = value.strip().strip('"')
    return params


def verify_signature(method: str, path: str, headers: Mapping[str, str],
                     public_key_pem: PemKey, body: Optional[bytes] = None) -> bool:
    """
    Verify a signed request.

    Args:
        method: HTTP method
        path: Request path including any query string
        headers: Request headers
        public_key_pem: PEM-encoded public key of the claimed sender
        body: Request body; when given the Digest header must match it

    Returns:
        bool: True if signature is valid
    """
    lowered = {k.lower(): v for k, v in headers.items()}
    signature_header = lowered.get('signature')
    if not signature_header:
        return False

    params = parse_signature_header(signature_header)
    if not params.get('keyId') or not params.get('signature'):
        logger.warning("Missing required signature parameters")
        return False
    signed_headers = params.get('headers', 'date').split()

    if body is not None:
        if 'digest' not in signed_headers or lowered.get('digest') != digest_header(body):
            logger.warning("Digest does not match request body")
            return False

    try:
        signing_string = build_signing_string(method, path, lowered, signed_headers)
        public_key = load_pem_public_key(_as_bytes(public_key_pem))
        public_key.verify(
            base64.b64decode(params['signature']),
            signing_string.encode('utf-8'),
            padding.PKCS1v15(),
            hashes.SHA256(),
        )
        return True
    except KeyError as e:
        logger.warning(f"Signed header missing from request: {e}")
    except (InvalidSignature, ValueError) as e:
        logger.warning(f"Signature verification failed: {e!r}")
    return False
