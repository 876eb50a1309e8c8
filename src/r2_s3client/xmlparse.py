"""Regex-scoped reading and writing of the S3 XML documents this client uses.

Only a handful of flat documents are involved (ListObjectsV2 results,
multipart responses, error envelopes), so values are pulled out by tag name
instead of building a DOM. Repeated blocks are scanned in order and the first
match of an inner tag within a block wins.
"""

from datetime import datetime
from datetime import timezone
from r2_s3client.models import ListResult
from r2_s3client.models import ObjectSummary

import re


_ENTITIES = (
    ("&lt;", "<"),
    ("&gt;", ">"),
    ("&quot;", '"'),
    ("&apos;", "'"),
    ("&amp;", "&"),
)


def decode_entities(text):
    for entity, char in _ENTITIES:
        text = text.replace(entity, char)
    return text


def escape(text):
    return (
        str(text)
        .replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
        .replace("'", "&apos;")
    )


def _element_re(tag):
    return re.compile(
        rf"<{tag}(?:\s[^>]*)?>([\s\S]*?)</{tag}>", re.IGNORECASE
    )


def first_tag_value(xml, tag):
    """Return the trimmed, entity-decoded text of the first ``<tag>``."""
    m = _element_re(tag).search(xml or "")
    if not m or not m.group(1):
        return None
    return decode_entities(m.group(1).strip())


def blocks(xml, tag):
    """Return the inner text of every ``<tag>...</tag>`` block, in order."""
    return [m.group(1) for m in _element_re(tag).finditer(xml or "") if m.group(1)]


def tag_values_by_blocks(xml, block_tag, inner_tag):
    values = []
    for block in blocks(xml, block_tag):
        value = first_tag_value(block, inner_tag)
        if value:
            values.append(value)
    return values


def parse_timestamp(value):
    if not value:
        return None
    if value.endswith(("Z", "z")):
        value = value[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _parse_int(value):
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def parse_list_result(xml):
    objects = []
    for block in blocks(xml, "Contents"):
        key = first_tag_value(block, "Key")
        if not key:
            continue
        objects.append(
            ObjectSummary(
                key=key,
                size=_parse_int(first_tag_value(block, "Size")),
                uploaded=parse_timestamp(first_tag_value(block, "LastModified")),
            )
        )
    truncated = (first_tag_value(xml, "IsTruncated") or "").lower() == "true"
    return ListResult(
        objects=tuple(objects),
        delimited_prefixes=tuple(tag_values_by_blocks(xml, "CommonPrefixes", "Prefix")),
        truncated=truncated,
        cursor=first_tag_value(xml, "NextContinuationToken") or None,
    )


def parse_upload_id(xml):
    return first_tag_value(xml, "UploadId")


def parse_error(xml):
    """Return ``(code, message)`` from an ``<Error>`` envelope.

    Either value is None when missing; a body that is not an error envelope
    gives ``(None, None)``.
    """
    envelope = blocks(xml, "Error")
    if not envelope:
        return None, None
    return first_tag_value(envelope[0], "Code"), first_tag_value(envelope[0], "Message")


_ERROR_DOCUMENT_RE = re.compile(r"\s*(?:<\?xml[^>]*\?>\s*)?<Error[\s>]")


def is_error_document(xml):
    """True when the document root is an <Error> envelope."""
    return _ERROR_DOCUMENT_RE.match(xml or "") is not None


def parse_delete_errors(xml):
    """Return ``[(key, code, message), ...]`` from a DeleteResult."""
    return [
        (
            first_tag_value(block, "Key"),
            first_tag_value(block, "Code"),
            first_tag_value(block, "Message"),
        )
        for block in blocks(xml, "Error")
    ]


def build_complete_multipart(parts):
    """Render the CompleteMultipartUpload body for already-ordered parts."""
    body = "".join(
        f"<Part><PartNumber>{part.part_number}</PartNumber>"
        f"<ETag>{escape(part.etag)}</ETag></Part>"
        for part in parts
    )
    return f"<CompleteMultipartUpload>{body}</CompleteMultipartUpload>"


def build_delete(keys, quiet=True):
    objects = "".join(f"<Object><Key>{escape(key)}</Key></Object>" for key in keys)
    flag = "true" if quiet else "false"
    return f"<Delete><Quiet>{flag}</Quiet>{objects}</Delete>"
