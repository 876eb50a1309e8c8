"""Signed S3 REST client for one R2 (or other S3-compatible) bucket.

Talks HTTP directly through httpx and signs every request with
:class:`r2_s3client.signer.Signer`. The client keeps no per-request state,
so one instance can serve any number of concurrent tasks.
"""

from r2_s3client.body import normalize
from r2_s3client.body import payload_hash
from r2_s3client.config import ClientConfig
from r2_s3client.errors import AccessDeniedError
from r2_s3client.errors import NotFoundError
from r2_s3client.errors import ProtocolError
from r2_s3client.errors import S3OperationError
from r2_s3client.errors import transport_error
from r2_s3client.errors import translate_error
from r2_s3client.interfaces import IObjectStore
from r2_s3client.models import BucketCheck
from r2_s3client.models import ByteRange
from r2_s3client.models import ObjectHead
from r2_s3client.models import PutResult
from r2_s3client.models import strip_etag
from r2_s3client.multipart import MultipartUpload
from r2_s3client.signer import canonical_query
from r2_s3client.signer import canonical_uri
from r2_s3client.signer import Signer
from r2_s3client.signer import SigningKeyCache
from r2_s3client.signer import uri_encode
from r2_s3client.xmlparse import build_delete
from r2_s3client.xmlparse import first_tag_value
from r2_s3client.xmlparse import is_error_document
from r2_s3client.xmlparse import parse_delete_errors
from r2_s3client.xmlparse import parse_error
from r2_s3client.xmlparse import parse_list_result
from r2_s3client.xmlparse import parse_upload_id
from urllib.parse import quote
from urllib.parse import urlsplit
from zope.interface import implementer

import base64
import hashlib
import httpx
import logging
import re
import secrets
import time


logger = logging.getLogger(__name__)

DELETE_BATCH_SIZE = 1000
MAX_LIST_KEYS = 1000
META_PREFIX = "x-amz-meta-"
READ_ACTION = "read object"


def normalize_key(key):
    """Strip leading slashes; an empty result is rejected.

    "." and ".." segments are rejected as well, the HTTP client would collapse
    them and the path sent would no longer be the path signed.
    """
    if not isinstance(key, str):
        raise TypeError(f"Object key must be a string, got {type(key).__name__}")
    normalized = key.lstrip("/")
    if not normalized:
        raise ValueError("Object key must not be empty")
    if any(segment in (".", "..") for segment in normalized.split("/")):
        raise ValueError(f"Object key must not contain . or .. segments: {key!r}")
    return normalized


def metadata_headers(custom_metadata):
    """Turn custom metadata into ``x-amz-meta-*`` headers.

    Entries with an empty name or a None value are dropped.
    """
    if not custom_metadata or not hasattr(custom_metadata, "items"):
        return {}
    headers = {}
    for name, value in custom_metadata.items():
        if not name or value is None:
            continue
        headers[f"{META_PREFIX}{str(name).lower()}"] = str(value)
    return headers


def metadata_from_headers(headers):
    return {
        name[len(META_PREFIX):]: value
        for name, value in headers.items()
        if name.lower().startswith(META_PREFIX)
    }


def content_disposition(filename, kind="attachment"):
    """Build a Content-Disposition value with an RFC 5987 ``filename*``."""
    fallback = re.sub(r'[/\\"]', "_", filename)
    encoded = quote(filename, safe="!")
    return f"{kind}; filename=\"{fallback}\"; filename*=UTF-8''{encoded}"


def _range_header(value):
    if value is None:
        return None
    if isinstance(value, ByteRange):
        return value.header()
    if hasattr(value, "get"):
        return ByteRange(value.get("offset", 0), value.get("length")).header()
    offset, length = value
    return ByteRange(offset, length).header()


def _parse_int(value):
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _is_success(response):
    return 200 <= response.status_code < 300


def _check_hint(code, status):
    if code == "NoSuchBucket":
        return "Bucket does not exist"
    if code == "AccessDenied":
        return "Access denied"
    if code in ("InvalidAccessKeyId", "SignatureDoesNotMatch"):
        return "Credentials were rejected"
    if code:
        return f"S3 error: {code}"
    if status == 403:
        return "Access denied"
    if status == 404:
        return "Bucket or object does not exist"
    return f"Request failed: {status}"


class ObjectBody:
    """Result of a successful GET; the body is read on demand.

    Close it (``aclose`` or ``async with``) unless it was read to the end.
    It can be handed straight to :meth:`R2Bucket.put`.
    """

    def __init__(self, response):
        self._response = response
        headers = response.headers
        self.status = response.status_code
        self.size = _parse_int(headers.get("content-length"))
        self.etag = strip_etag(headers.get("etag"))
        self.content_type = headers.get("content-type")
        self.content_range = headers.get("content-range")
        self.custom_metadata = metadata_from_headers(headers)

    async def read(self):
        try:
            return await self._response.aread()
        except httpx.TransportError as e:
            raise transport_error(e, READ_ACTION) from e
        finally:
            await self._response.aclose()

    def aiter_bytes(self, chunk_size=None):
        return self._chunks(chunk_size)

    def __aiter__(self):
        return self._chunks()

    async def _chunks(self, chunk_size=None):
        try:
            async for chunk in self._response.aiter_bytes(chunk_size):
                yield chunk
        except httpx.TransportError as e:
            raise transport_error(e, READ_ACTION) from e
        finally:
            await self._response.aclose()

    async def aclose(self):
        await self._response.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()


@implementer(IObjectStore)
class R2Bucket:
    """Object operations against one bucket.

    ``http_client`` may be a shared ``httpx.AsyncClient``; when omitted the
    bucket creates its own and closes it in :meth:`aclose`.
    """

    def __init__(self, credentials, config=None, http_client=None, signer=None):
        if not credentials.bucket_name:
            raise ValueError("Bucket name must not be empty")
        self.credentials = credentials
        self.config = config or ClientConfig()

        endpoint = urlsplit(self.config.endpoint_for(credentials))
        if endpoint.scheme not in ("http", "https") or not endpoint.netloc:
            raise ValueError(f"Invalid endpoint URL: {self.config.endpoint_url!r}")
        if endpoint.scheme == "http":
            logger.warning(
                "R2 endpoint uses plain HTTP, data and credentials are "
                "transmitted in cleartext"
            )
        self._origin = f"{endpoint.scheme}://{endpoint.netloc}"
        self._host = endpoint.netloc
        self._base_path = endpoint.path.rstrip("/")

        if signer is None:
            cache = None
            if self.config.signing_key_cache_size > 0:
                cache = SigningKeyCache(self.config.signing_key_cache_size)
            signer = Signer(region=self.config.region, key_cache=cache)
        self.signer = signer

        self._owns_http = http_client is None
        if http_client is None:
            http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(
                    self.config.read_timeout, connect=self.config.connect_timeout
                )
            )
        self._http = http_client

    @classmethod
    def from_resolver(cls, resolver, bucket_id, **kwargs):
        return cls(resolver.resolve(bucket_id), **kwargs)

    @property
    def bucket_name(self):
        return self.credentials.bucket_name

    def __repr__(self):
        return f"<R2Bucket {self.bucket_name!r} at {self._origin}>"

    async def aclose(self):
        if self._owns_http:
            await self._http.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()

    # -- request plumbing --

    def _path(self, key=None):
        path = f"{self._base_path}/{self.bucket_name}"
        if key is not None:
            path = f"{path}/{key}"
        return path

    def _url(self, path, query=None):
        url = f"{self._origin}{canonical_uri(path)}"
        if query:
            url = f"{url}?{canonical_query(query)}"
        return url

    async def _request(
        self,
        method,
        path,
        query=None,
        headers=None,
        body=None,
        signed_payload=False,
        action="request",
        stream=False,
    ):
        body = normalize(body)
        content, length = await body.prepare()
        signed = self.signer.sign(
            self.credentials,
            method,
            self._host,
            path,
            query=query,
            headers=headers,
            payload_hash=payload_hash(body, unsigned=not signed_payload),
        )
        if length or method in ("PUT", "POST"):
            signed["content-length"] = str(length)
        else:
            content = None
        request = self._http.build_request(
            method, self._url(path, query), headers=signed, content=content
        )
        try:
            return await self._http.send(request, stream=stream)
        except httpx.TransportError as e:
            logger.debug("R2 %s failed for path=%s: %r", action, path, e)
            raise transport_error(e, action) from e

    async def _error_body(self, response, action):
        try:
            data = await response.aread()
        except httpx.TransportError as e:
            raise transport_error(e, action) from e
        finally:
            await response.aclose()
        return data.decode("utf-8", "replace")

    def _error(self, status, text, action, key=None):
        code, message = parse_error(text)
        logger.debug(
            "R2 %s failed for key=%s: status=%s code=%s", action, key, status, code
        )
        return translate_error(status, code, message, action)

    async def _raise_for_response(self, response, action, key=None):
        text = await self._error_body(response, action)
        raise self._error(response.status_code, text, action, key)

    # -- listing --

    async def list(self, prefix=None, delimiter=None, cursor=None, limit=None):
        action = "list objects"
        max_keys = limit if limit is not None else self.config.max_keys
        query = {
            "list-type": "2",
            "max-keys": str(max(1, min(MAX_LIST_KEYS, int(max_keys)))),
        }
        if prefix:
            query["prefix"] = prefix
        if delimiter:
            query["delimiter"] = delimiter
        if cursor:
            query["continuation-token"] = cursor
        response = await self._request("GET", self._path(), query=query, action=action)
        if not _is_success(response):
            await self._raise_for_response(response, action, prefix)
        return parse_list_result(response.text)

    async def iter_objects(self, prefix="", delimiter=None):
        """Yield every ObjectSummary under ``prefix``, following cursors."""
        cursor = None
        while True:
            page = await self.list(prefix=prefix, delimiter=delimiter, cursor=cursor)
            for summary in page.objects:
                yield summary
            if not page.truncated or not page.cursor:
                break
            cursor = page.cursor

    # -- single objects --

    async def get(self, key, range=None):
        """Return an ObjectBody, or None when the key does not exist.

        A missing bucket is still an error.
        """
        action = READ_ACTION
        key = normalize_key(key)
        headers = {}
        range_header = _range_header(range)
        if range_header:
            headers["range"] = range_header
        response = await self._request(
            "GET", self._path(key), headers=headers, action=action, stream=True
        )
        if _is_success(response):
            return ObjectBody(response)
        text = await self._error_body(response, action)
        error = self._error(response.status_code, text, action, key)
        if isinstance(error, NotFoundError):
            return None
        raise error

    async def head(self, key):
        action = "read object info"
        key = normalize_key(key)
        response = await self._request("HEAD", self._path(key), action=action)
        if response.status_code == 404:
            return None
        if not _is_success(response):
            logger.debug(
                "R2 %s failed for key=%s: status=%s", action, key, response.status_code
            )
            raise translate_error(response.status_code, None, None, action)
        return ObjectHead(
            size=_parse_int(response.headers.get("content-length")),
            etag=strip_etag(response.headers.get("etag")),
            content_type=response.headers.get("content-type"),
            custom_metadata=metadata_from_headers(response.headers),
        )

    async def put(self, key, value, content_type=None, custom_metadata=None):
        action = "upload object"
        key = normalize_key(key)
        headers = metadata_headers(custom_metadata)
        if content_type:
            headers["content-type"] = content_type
        response = await self._request(
            "PUT", self._path(key), headers=headers, body=value, action=action
        )
        if not _is_success(response):
            await self._raise_for_response(response, action, key)
        return PutResult(etag=strip_etag(response.headers.get("etag")))

    async def delete(self, key_or_keys):
        """Delete one key, or a sequence of keys in batches.

        Batches run one after another; the first failing batch stops the
        rest and its error propagates.
        """
        if isinstance(key_or_keys, str):
            await self._delete_one(normalize_key(key_or_keys))
            return
        keys = [
            k.lstrip("/")
            for k in key_or_keys
            if isinstance(k, str) and k.lstrip("/")
        ]
        for start in range(0, len(keys), DELETE_BATCH_SIZE):
            await self._delete_batch(keys[start:start + DELETE_BATCH_SIZE])

    async def _delete_one(self, key):
        action = "delete object"
        response = await self._request("DELETE", self._path(key), action=action)
        if not _is_success(response):
            await self._raise_for_response(response, action, key)

    async def _delete_batch(self, keys):
        action = "delete objects"
        body = build_delete(keys).encode("utf-8")
        headers = {
            "content-md5": base64.b64encode(hashlib.md5(body).digest()).decode("ascii"),
            "content-type": "application/xml",
        }
        logger.debug("R2 deleting %d keys from %s", len(keys), self.bucket_name)
        response = await self._request(
            "POST",
            self._path(),
            query={"delete": ""},
            headers=headers,
            body=body,
            signed_payload=True,
            action=action,
        )
        if not _is_success(response):
            await self._raise_for_response(response, action, keys[0])
        failures = parse_delete_errors(response.text)
        if failures:
            key, code, message = failures[0]
            logger.debug(
                "R2 %s reported %d failures, first key=%s code=%s",
                action,
                len(failures),
                key,
                code,
            )
            raise translate_error(response.status_code, code, message, action)

    # -- multipart --

    async def create_multipart_upload(self, key, content_type=None, custom_metadata=None):
        action = "create multipart upload"
        key = normalize_key(key)
        headers = metadata_headers(custom_metadata)
        if content_type:
            headers["content-type"] = content_type
        response = await self._request(
            "POST",
            self._path(key),
            query={"uploads": ""},
            headers=headers,
            action=action,
        )
        if not _is_success(response):
            await self._raise_for_response(response, action, key)
        upload_id = parse_upload_id(response.text)
        if not upload_id:
            raise ProtocolError(
                f"R2 {action} failed: the response carried no UploadId.",
                status=response.status_code,
                action=action,
            )
        return MultipartUpload(self, key, upload_id)

    def resume_multipart_upload(self, key, upload_id):
        if not upload_id:
            raise ValueError("Upload id must not be empty")
        return MultipartUpload(self, normalize_key(key), upload_id)

    # -- copy --

    def _copy_source(self, key):
        segments = "/".join(uri_encode(segment) for segment in key.split("/"))
        return f"/{uri_encode(self.bucket_name)}/{segments}"

    async def _server_side_copy(self, source_key, target_key):
        action = "copy object"
        headers = {
            "x-amz-copy-source": self._copy_source(source_key),
            "x-amz-metadata-directive": "COPY",
        }
        response = await self._request(
            "PUT", self._path(target_key), headers=headers, action=action
        )
        text = response.text
        if not _is_success(response) or is_error_document(text):
            raise self._error(response.status_code, text, action, source_key)
        return PutResult(etag=strip_etag(first_tag_value(text, "ETag")))

    async def copy_object(self, source_key, target_key, fallback=None):
        """Copy inside the bucket with a provider-side CopyObject.

        Failures are raised as-is. Only when ``fallback`` (or the
        ``copy_fallback`` setting) is on and the provider refused the copy
        outright (access denied or not implemented) is the object streamed
        through get+put instead.
        """
        source_key = normalize_key(source_key)
        target_key = normalize_key(target_key)
        if source_key == target_key:
            return None
        if fallback is None:
            fallback = self.config.copy_fallback
        try:
            return await self._server_side_copy(source_key, target_key)
        except S3OperationError as e:
            refused = isinstance(e, AccessDeniedError) or e.status == 501
            if not (fallback and refused):
                raise
            error = e
        logger.info(
            "R2 copy of %s refused (%s), falling back to get+put",
            source_key,
            error.code or error.status,
        )
        source = await self.get(source_key)
        if source is None:
            raise NotFoundError(
                "Source object does not exist or has been deleted.",
                status=404,
                action="copy object",
            )
        async with source:
            return await self.put(
                target_key,
                source,
                content_type=source.content_type,
                custom_metadata=source.custom_metadata,
            )

    # -- diagnostics --

    async def check_bucket(self):
        """Probe the bucket with a ranged GET on a key that should not exist.

        Success, or NoSuchKey, means the credentials can reach the bucket.
        Transport failures are raised; provider answers are reported.
        """
        action = "check bucket"
        probe = f".r2admin_bucket_check_{int(time.time() * 1000)}_{secrets.token_hex(6)}"
        response = await self._request(
            "GET",
            self._path(probe),
            headers={"range": "bytes=0-0"},
            action=action,
        )
        status = response.status_code
        if _is_success(response):
            return BucketCheck(ok=True, status=status, code=None, hint="Bucket check passed")
        code, _ = parse_error(response.text)
        if code == "NoSuchKey":
            return BucketCheck(ok=True, status=status, code=code, hint="Bucket check passed")
        logger.debug("R2 %s failed: status=%s code=%s", action, status, code)
        return BucketCheck(ok=False, status=status, code=code, hint=_check_hint(code, status))

    # -- presigned URLs --

    def presign_url(
        self,
        method,
        key,
        expires_in=None,
        query=None,
        filename=None,
        disposition="attachment",
    ):
        """Return a URL that authorizes one request without headers.

        ``query`` carries extra signed parameters such as ``partNumber`` and
        ``uploadId``. With ``filename`` the provider is asked to answer with
        a matching Content-Disposition.
        """
        key = normalize_key(key)
        if expires_in is None:
            expires_in = self.config.default_expires
        params = {name: str(value) for name, value in (query or {}).items()}
        if filename:
            params["response-content-disposition"] = content_disposition(
                filename, disposition
            )
        path = self._path(key)
        signed_query = self.signer.presign(
            self.credentials,
            method,
            self._host,
            path,
            query=params,
            expires_in=expires_in,
        )
        return f"{self._origin}{canonical_uri(path)}?{signed_query}"
