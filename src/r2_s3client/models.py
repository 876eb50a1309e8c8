"""Value types passed in and out of the storage client."""

from dataclasses import dataclass
from dataclasses import field
from datetime import datetime

import re


_BUCKET_NAME_RE = re.compile(r"^[a-z0-9][a-z0-9-]{1,61}[a-z0-9]$", re.IGNORECASE)


def is_valid_bucket_name(name):
    return bool(name) and _BUCKET_NAME_RE.fullmatch(name) is not None


@dataclass(frozen=True, slots=True)
class BucketCredentials:
    """Everything needed to address and sign requests for one bucket.

    Supplied per call by the credential store; this package never persists
    it.
    """

    account_id: str
    access_key_id: str
    secret_access_key: str = field(repr=False)
    bucket_name: str


@dataclass(frozen=True, slots=True)
class ObjectSummary:
    key: str
    size: int | None = None
    uploaded: datetime | None = None


@dataclass(frozen=True, slots=True)
class ListResult:
    objects: tuple = ()
    delimited_prefixes: tuple = ()
    truncated: bool = False
    cursor: str | None = None


@dataclass(frozen=True, slots=True)
class ObjectHead:
    size: int | None
    etag: str
    content_type: str | None = None
    custom_metadata: dict = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class PutResult:
    etag: str


@dataclass(frozen=True, slots=True)
class UploadedPart:
    """One uploaded part; ``part_number`` is 1-based."""

    part_number: int
    etag: str


@dataclass(frozen=True, slots=True)
class MultipartUploadSession:
    """The pair that identifies an upload on the provider side.

    Callers persist this themselves if an upload must survive a restart.
    """

    key: str
    upload_id: str


@dataclass(frozen=True, slots=True)
class ByteRange:
    offset: int
    length: int | None = None

    def header(self):
        start = max(0, int(self.offset))
        if self.length is None:
            return f"bytes={start}-"
        end = max(start, start + int(self.length) - 1)
        return f"bytes={start}-{end}"


@dataclass(frozen=True, slots=True)
class BucketCheck:
    ok: bool
    status: int | None
    code: str | None
    hint: str


def strip_etag(etag):
    """Return an ETag without its surrounding double quotes."""
    value = str(etag or "").strip()
    return re.sub(r'^"|"$', "", value)
