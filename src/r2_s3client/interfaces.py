from zope.interface import Interface


class IObjectStore(Interface):
    """S3-compatible object storage for one bucket."""

    def list(prefix=None, delimiter=None, cursor=None, limit=None):
        """Coroutine returning one ListResult page."""

    def iter_objects(prefix=""):
        """Async-iterate every ObjectSummary under prefix, across pages."""

    def get(key, range=None):
        """Return an ObjectBody, or None if the key does not exist."""

    def head(key):
        """Return an ObjectHead, or None if the key does not exist."""

    def put(key, value, content_type=None, custom_metadata=None):
        """Store value under key and return a PutResult."""

    def delete(key_or_keys):
        """Delete one key, or many keys in batches of at most 1000."""

    def create_multipart_upload(key, content_type=None, custom_metadata=None):
        """Start a multipart upload and return an IMultipartUpload."""

    def resume_multipart_upload(key, upload_id):
        """Return an IMultipartUpload for an existing upload id."""

    def copy_object(source_key, target_key, fallback=None):
        """Copy an object inside the bucket."""

    def check_bucket():
        """Probe the bucket and return a BucketCheck."""

    def presign_url(method, key, expires_in=None, query=None, filename=None):
        """Return a time-limited URL authorizing one request."""


class IMultipartUpload(Interface):
    """One multipart upload session, identified by (key, upload_id)."""

    def upload_part(part_number, body):
        """Upload one part and return an UploadedPart."""

    def complete(parts):
        """Stitch the given parts together into the final object."""

    def abort():
        """Abandon the upload and discard uploaded parts."""


class ISigningKeyCache(Interface):
    """Cache of derived SigV4 signing keys."""

    def get(secret, date_stamp):
        """Return the cached key for (secret, date_stamp), or None."""

    def set(secret, date_stamp, key):
        """Remember a derived key."""


class ICredentialResolver(Interface):
    """Source of BucketCredentials for logical bucket ids."""

    def resolve(bucket_id):
        """Return BucketCredentials; raise KeyError for unknown ids."""
