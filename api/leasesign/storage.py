from minio import Minio
from minio.error import S3Error
from .config import MINIO_ENDPOINT, MINIO_ACCESS_KEY, MINIO_SECRET_KEY, MINIO_BUCKET, MINIO_SECURE
from .errors import ExternalServiceError, NotFoundError
import io


class BlobStore:
    """Signature images and PDFs, addressed by key inside one MinIO bucket."""

    def __init__(self, client: Minio, bucket: str = MINIO_BUCKET):
        self._client = client
        self._bucket = bucket

    def ensure_bucket(self):
        if not self._client.bucket_exists(self._bucket):
            self._client.make_bucket(self._bucket)

    def put_bytes(self, key: str, data: bytes, content_type: str = "application/octet-stream"):
        try:
            self.ensure_bucket()
            self._client.put_object(self._bucket, key, io.BytesIO(data), length=len(data), content_type=content_type)
        except S3Error as exc:
            raise ExternalServiceError(f"storage write failed for {key}: {exc}") from exc

    def get_bytes(self, key: str) -> bytes:
        try:
            resp = self._client.get_object(self._bucket, key)
        except S3Error as exc:
            if exc.code in ("NoSuchKey", "NoSuchBucket"):
                raise NotFoundError("stored file", key) from exc
            raise ExternalServiceError(f"storage read failed for {key}: {exc}") from exc
        try:
            return resp.read()
        finally:
            resp.close()
            resp.release_conn()

    def delete_object(self, key: str):
        try:
            self._client.remove_object(self._bucket, key)
        except S3Error as exc:
            raise ExternalServiceError(f"storage delete failed for {key}: {exc}") from exc


_store = None

def get_blob_store() -> BlobStore:
    global _store
    if _store is None:
        _store = BlobStore(
            Minio(
                MINIO_ENDPOINT,
                access_key=MINIO_ACCESS_KEY,
                secret_key=MINIO_SECRET_KEY,
                secure=MINIO_SECURE,
            )
        )
    return _store
