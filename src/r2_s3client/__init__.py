from r2_s3client.client import ObjectBody
from r2_s3client.client import R2Bucket
from r2_s3client.config import ClientConfig
from r2_s3client.config import ConfigCredentialResolver
from r2_s3client.config import load_config
from r2_s3client.errors import S3OperationError
from r2_s3client.models import BucketCredentials
from r2_s3client.models import ByteRange
from r2_s3client.models import UploadedPart
from r2_s3client.multipart import MultipartUpload
from r2_s3client.signer import Signer
from r2_s3client.signer import SigningKeyCache


__all__ = [
    "BucketCredentials",
    "ByteRange",
    "ClientConfig",
    "ConfigCredentialResolver",
    "MultipartUpload",
    "ObjectBody",
    "R2Bucket",
    "S3OperationError",
    "Signer",
    "SigningKeyCache",
    "UploadedPart",
    "load_config",
]
