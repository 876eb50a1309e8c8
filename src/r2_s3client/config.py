from dataclasses import dataclass
from r2_s3client.interfaces import ICredentialResolver
from r2_s3client.models import BucketCredentials
from r2_s3client.models import is_valid_bucket_name
from zope.interface import implementer

import functools
import os
import ZConfig


DEFAULT_ENDPOINT = "https://{account_id}.r2.cloudflarestorage.com"
SCHEMA_PATH = os.path.join(os.path.dirname(__file__), "schema.xml")


def bucket_name(value):
    """ZConfig datatype for bucket names."""
    value = value.strip()
    if not is_valid_bucket_name(value):
        raise ValueError(f"invalid bucket name: {value!r}")
    return value


@dataclass(frozen=True)
class ClientConfig:
    endpoint_url: str = DEFAULT_ENDPOINT
    region: str = "auto"
    connect_timeout: float = 60.0
    read_timeout: float = 60.0
    default_expires: int = 3600
    max_keys: int = 1000
    signing_key_cache_size: int = 32
    copy_fallback: bool = False

    def endpoint_for(self, credentials):
        return self.endpoint_url.replace("{account_id}", credentials.account_id).rstrip("/")


@implementer(ICredentialResolver)
class ConfigCredentialResolver:
    """Resolve logical bucket ids from ``<bucket>`` configuration sections."""

    def __init__(self, buckets=None):
        self._buckets = dict(buckets or {})

    def __contains__(self, bucket_id):
        return self._find(bucket_id) is not None

    def __len__(self):
        return len(self._buckets)

    def ids(self):
        return sorted(self._buckets)

    def _find(self, bucket_id):
        wanted = (bucket_id or "").strip().lower()
        if wanted in self._buckets:
            return self._buckets[wanted]
        for creds in self._buckets.values():
            if creds.bucket_name.lower() == wanted:
                return creds
        return None

    def resolve(self, bucket_id):
        creds = self._find(bucket_id)
        if creds is None:
            raise KeyError(f"Unknown bucket: {bucket_id}")
        return creds


@functools.lru_cache(maxsize=1)
def _schema():
    with open(SCHEMA_PATH) as f:
        return ZConfig.loadSchemaFile(f)


def _from_section(config):
    return ClientConfig(
        endpoint_url=config.endpoint_url,
        region=config.region,
        connect_timeout=config.connect_timeout,
        read_timeout=config.read_timeout,
        default_expires=config.default_expires,
        max_keys=config.max_keys,
        signing_key_cache_size=config.signing_key_cache_size,
        copy_fallback=config.copy_fallback,
    )


def _resolver_from_section(config):
    buckets = {}
    for section in config.buckets or ():
        name = section.getSectionName().lower()
        buckets[name] = BucketCredentials(
            account_id=section.account_id,
            access_key_id=section.access_key_id,
            secret_access_key=section.secret_access_key,
            bucket_name=section.bucket_name,
        )
    return ConfigCredentialResolver(buckets)


def load_config(source):
    """Load a configuration file (path or open text file).

    Returns ``(ClientConfig, ConfigCredentialResolver)``.
    """
    if isinstance(source, (str, os.PathLike)):
        with open(source) as f:
            config, _ = ZConfig.loadConfigFile(_schema(), f)
    else:
        config, _ = ZConfig.loadConfigFile(_schema(), source)
    return _from_section(config), _resolver_from_section(config)
