"""Multipart upload sessions.

A session is nothing more than ``(key, upload_id)``; the provider owns the
real state and may expire it. The local ``state`` only guards against using
a session after this process completed or aborted it.
"""

from r2_s3client.errors import MultipartStateError
from r2_s3client.errors import ProtocolError
from r2_s3client.interfaces import IMultipartUpload
from r2_s3client.models import MultipartUploadSession
from r2_s3client.models import strip_etag
from r2_s3client.models import UploadedPart
from r2_s3client.xmlparse import build_complete_multipart
from r2_s3client.xmlparse import first_tag_value
from r2_s3client.xmlparse import is_error_document
from zope.interface import implementer

import logging
import math
import numbers


logger = logging.getLogger(__name__)

CREATED = "created"
UPLOADING = "uploading"
COMPLETED = "completed"
ABORTED = "aborted"

MAX_PART_NUMBER = 10000


def _part_fields(part):
    if isinstance(part, UploadedPart):
        return part.part_number, part.etag
    if hasattr(part, "get"):
        number = part.get("part_number", part.get("partNumber"))
        return number, part.get("etag")
    number, etag = part
    return number, etag


def _valid_part_number(number):
    if isinstance(number, bool) or not isinstance(number, numbers.Real):
        return False
    return math.isfinite(number) and number > 0 and float(number).is_integer()


def order_parts(parts):
    """Filter, de-duplicate and sort parts for the completion request.

    Parts without an etag or with a part number that is not a positive
    integer are dropped. When a part number repeats, the last etag
    submitted for it wins.
    """
    by_number = {}
    for part in parts or ():
        number, etag = _part_fields(part)
        etag = strip_etag(etag)
        if not etag or not _valid_part_number(number):
            continue
        by_number[int(number)] = etag
    return [UploadedPart(number, by_number[number]) for number in sorted(by_number)]


@implementer(IMultipartUpload)
class MultipartUpload:
    """Upload parts for one key, then complete or abort."""

    def __init__(self, bucket, key, upload_id):
        self._bucket = bucket
        self.session = MultipartUploadSession(key=key, upload_id=upload_id)
        self.state = CREATED

    @property
    def key(self):
        return self.session.key

    @property
    def upload_id(self):
        return self.session.upload_id

    def __repr__(self):
        return f"<MultipartUpload {self.key!r} {self.upload_id!r} {self.state}>"

    def _check_open(self, action):
        if self.state in (COMPLETED, ABORTED):
            raise MultipartStateError(
                f"R2 {action} failed: the multipart upload was already {self.state}.",
                action=action,
            )

    def _path(self):
        return self._bucket._path(self.key)

    async def upload_part(self, part_number, body):
        action = "upload part"
        self._check_open(action)
        if not _valid_part_number(part_number) or part_number > MAX_PART_NUMBER:
            raise ValueError(
                f"Part number must be an integer between 1 and {MAX_PART_NUMBER}"
            )
        part_number = int(part_number)
        response = await self._bucket._request(
            "PUT",
            self._path(),
            query={"partNumber": str(part_number), "uploadId": self.upload_id},
            body=body,
            action=action,
        )
        if not 200 <= response.status_code < 300:
            await self._bucket._raise_for_response(response, action, self.key)
        etag = strip_etag(response.headers.get("etag"))
        if not etag:
            raise ProtocolError(
                f"R2 {action} failed: the response carried no ETag.",
                status=response.status_code,
                action=action,
            )
        self.state = UPLOADING
        return UploadedPart(part_number, etag)

    async def complete(self, parts):
        """Complete the upload; returns the final ETag when reported."""
        action = "complete multipart upload"
        self._check_open(action)
        ordered = order_parts(parts)
        if not ordered:
            raise ValueError("No valid parts to complete the upload with")
        body = build_complete_multipart(ordered).encode("utf-8")
        response = await self._bucket._request(
            "POST",
            self._path(),
            query={"uploadId": self.upload_id},
            headers={"content-type": "application/xml"},
            body=body,
            signed_payload=True,
            action=action,
        )
        text = response.text
        if not 200 <= response.status_code < 300 or is_error_document(text):
            raise self._bucket._error(response.status_code, text, action, self.key)
        self.state = COMPLETED
        logger.debug(
            "R2 completed multipart upload for key=%s with %d parts",
            self.key,
            len(ordered),
        )
        return strip_etag(first_tag_value(text, "ETag")) or None

    async def abort(self):
        action = "abort multipart upload"
        self._check_open(action)
        response = await self._bucket._request(
            "DELETE",
            self._path(),
            query={"uploadId": self.upload_id},
            action=action,
        )
        if not 200 <= response.status_code < 300:
            await self._bucket._raise_for_response(response, action, self.key)
        self.state = ABORTED
