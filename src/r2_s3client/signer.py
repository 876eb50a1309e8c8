"""AWS Signature Version 4 signing for S3-compatible requests.

Builds canonical requests, derives signing keys and produces either an
``Authorization`` header or a presigned query string. Everything here is a
pure function of its inputs plus the timestamp; the only state is the
optional signing-key cache handed to :class:`Signer`.
"""

from collections import OrderedDict
from datetime import datetime
from datetime import timezone
from r2_s3client.interfaces import ISigningKeyCache
from urllib.parse import quote
from zope.interface import implementer

import hashlib
import hmac
import threading


ALGORITHM = "AWS4-HMAC-SHA256"
UNSIGNED_PAYLOAD = "UNSIGNED-PAYLOAD"
EMPTY_SHA256 = hashlib.sha256(b"").hexdigest()
DEFAULT_REGION = "auto"
SERVICE = "s3"
SCOPE_TERMINATOR = "aws4_request"
MAX_PRESIGN_EXPIRES = 7 * 24 * 3600


def sha256_hex(data):
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).hexdigest()


def hmac_sha256(key, msg):
    if isinstance(msg, str):
        msg = msg.encode("utf-8")
    return hmac.new(key, msg, hashlib.sha256).digest()


def uri_encode(value):
    """Percent-encode everything except RFC 3986 unreserved characters.

    This is ``encodeURIComponent`` with ``!'()*`` escaped as well, which is
    what SigV4 expects for path segments and query components.
    """
    return quote(str(value), safe="-_.~")


def canonical_uri(path):
    """Encode a request path segment by segment, keeping the slashes."""
    if not path:
        return "/"
    if not path.startswith("/"):
        path = "/" + path
    return "/".join(uri_encode(segment) for segment in path.split("/"))


def _query_items(query):
    if not query:
        return []
    items = query.items() if hasattr(query, "items") else query
    out = []
    for name, value in items:
        if value is None or value is True:
            value = ""
        out.append((uri_encode(name), uri_encode(value)))
    return out


def canonical_query(query):
    """Sort encoded query pairs by name, then value, and join them."""
    return "&".join(f"{k}={v}" for k, v in sorted(_query_items(query)))


def canonical_headers(headers):
    """Return ``(canonical_headers, signed_headers)`` for a header mapping.

    Names are lowercased and sorted, values are trimmed with inner runs of
    whitespace collapsed to one space. Each canonical line ends in a newline.
    """
    lowered = {}
    for name, value in headers.items():
        lowered[name.strip().lower()] = " ".join(str(value).split())
    names = sorted(lowered)
    lines = "".join(f"{name}:{lowered[name]}\n" for name in names)
    return lines, ";".join(names)


def format_amz_date(timestamp):
    return timestamp.strftime("%Y%m%dT%H%M%SZ")


def format_date_stamp(timestamp):
    return timestamp.strftime("%Y%m%d")


def as_utc(timestamp):
    if timestamp.tzinfo is None:
        return timestamp.replace(tzinfo=timezone.utc)
    return timestamp.astimezone(timezone.utc)


def derive_signing_key(secret, date_stamp, region=DEFAULT_REGION, service=SERVICE):
    k_date = hmac_sha256(f"AWS4{secret}".encode("utf-8"), date_stamp)
    k_region = hmac_sha256(k_date, region)
    k_service = hmac_sha256(k_region, service)
    return hmac_sha256(k_service, SCOPE_TERMINATOR)


def clamp_expires(expires_in):
    return max(1, min(MAX_PRESIGN_EXPIRES, int(expires_in)))


@implementer(ISigningKeyCache)
class SigningKeyCache:
    """Small LRU of derived signing keys, keyed by secret digest and day."""

    def __init__(self, max_entries=32):
        self.max_entries = max_entries
        self._keys = OrderedDict()
        self._lock = threading.Lock()

    def _slot(self, secret, date_stamp):
        return (sha256_hex(secret), date_stamp)

    def get(self, secret, date_stamp):
        slot = self._slot(secret, date_stamp)
        with self._lock:
            key = self._keys.get(slot)
            if key is not None:
                self._keys.move_to_end(slot)
            return key

    def set(self, secret, date_stamp, key):
        slot = self._slot(secret, date_stamp)
        with self._lock:
            self._keys[slot] = key
            self._keys.move_to_end(slot)
            while len(self._keys) > self.max_entries:
                self._keys.popitem(last=False)

    def __len__(self):
        return len(self._keys)


class Signer:
    """SigV4 signer for one region/service pair.

    ``key_cache`` is any ISigningKeyCache; without one the signing key is
    derived again for every request. ``clock`` returns the current time and
    exists so tests can pin it.
    """

    def __init__(self, region=DEFAULT_REGION, service=SERVICE, key_cache=None, clock=None):
        self.region = region
        self.service = service
        self.key_cache = key_cache
        self._clock = clock

    def now(self):
        if self._clock is not None:
            return as_utc(self._clock())
        return datetime.now(timezone.utc)

    def credential_scope(self, date_stamp):
        return f"{date_stamp}/{self.region}/{self.service}/{SCOPE_TERMINATOR}"

    def signing_key(self, secret, date_stamp):
        if self.key_cache is not None:
            key = self.key_cache.get(secret, date_stamp)
            if key is not None:
                return key
        key = derive_signing_key(secret, date_stamp, self.region, self.service)
        if self.key_cache is not None:
            self.key_cache.set(secret, date_stamp, key)
        return key

    def canonical_request(self, method, path, query, headers, payload_hash):
        header_lines, signed_headers = canonical_headers(headers)
        return "\n".join(
            [
                method.upper(),
                canonical_uri(path),
                canonical_query(query),
                header_lines,
                signed_headers,
                payload_hash,
            ]
        )

    def string_to_sign(self, timestamp, canonical_request):
        timestamp = as_utc(timestamp)
        return "\n".join(
            [
                ALGORITHM,
                format_amz_date(timestamp),
                self.credential_scope(format_date_stamp(timestamp)),
                sha256_hex(canonical_request),
            ]
        )

    def signature(self, credentials, timestamp, canonical_request):
        key = self.signing_key(
            credentials.secret_access_key, format_date_stamp(as_utc(timestamp))
        )
        string_to_sign = self.string_to_sign(timestamp, canonical_request)
        return hmac.new(key, string_to_sign.encode("utf-8"), hashlib.sha256).hexdigest()

    def authorization(self, credentials, method, path, query, headers, payload_hash, timestamp):
        """Return the Authorization header value for exactly these headers.

        ``headers`` must already hold ``host`` and every ``x-amz-*`` header
        that will be sent; all of them are signed.
        """
        timestamp = as_utc(timestamp)
        canonical = self.canonical_request(method, path, query, headers, payload_hash)
        _, signed_headers = canonical_headers(headers)
        scope = self.credential_scope(format_date_stamp(timestamp))
        signature = self.signature(credentials, timestamp, canonical)
        return (
            f"{ALGORITHM} Credential={credentials.access_key_id}/{scope}, "
            f"SignedHeaders={signed_headers}, Signature={signature}"
        )

    def sign(
        self,
        credentials,
        method,
        host,
        path,
        query=None,
        headers=None,
        payload_hash=UNSIGNED_PAYLOAD,
        timestamp=None,
    ):
        """Return the complete header set for a signed request.

        Adds ``host``, ``x-amz-date`` and ``x-amz-content-sha256`` to the
        caller's headers and signs all of them.
        """
        timestamp = as_utc(timestamp) if timestamp is not None else self.now()
        signed = {name.lower(): str(value) for name, value in (headers or {}).items()}
        signed["host"] = host
        signed["x-amz-date"] = format_amz_date(timestamp)
        signed["x-amz-content-sha256"] = payload_hash
        signed["authorization"] = self.authorization(
            credentials, method, path, query, signed, payload_hash, timestamp
        )
        return signed

    def presign(self, credentials, method, host, path, query=None, expires_in=3600, timestamp=None):
        """Return the signed query string for a presigned URL.

        Only ``host`` is signed and the payload is always unsigned.
        ``expires_in`` is clamped to the 1 second .. 7 day window.
        """
        timestamp = as_utc(timestamp) if timestamp is not None else self.now()
        scope = self.credential_scope(format_date_stamp(timestamp))
        params = dict(query or {})
        params.update(
            {
                "X-Amz-Algorithm": ALGORITHM,
                "X-Amz-Credential": f"{credentials.access_key_id}/{scope}",
                "X-Amz-Date": format_amz_date(timestamp),
                "X-Amz-Expires": str(clamp_expires(expires_in)),
                "X-Amz-SignedHeaders": "host",
            }
        )
        params.pop("X-Amz-Signature", None)
        canonical = self.canonical_request(
            method, path, params, {"host": host}, UNSIGNED_PAYLOAD
        )
        signature = self.signature(credentials, timestamp, canonical)
        return f"{canonical_query(params)}&X-Amz-Signature={signature}"
