#app\services\storage.py
import logging
import os
import uuid
from functools import lru_cache

import requests

from app.core.config import Settings, settings as app_settings

logger = logging.getLogger(__name__)


class SupabaseStorage:
    """Supabase Storage via REST; the bucket must be public."""

    def __init__(self, url: str, service_role: str, bucket: str):
        self.url = url.rstrip("/")
        self.service_role = service_role
        self.bucket = bucket

    def _headers(self) -> dict:
        return {"Authorization": f"Bearer {self.service_role}"}

    def upload_image(self, data: bytes, content_type: str, path: str) -> str:
        """Uploads to the bucket; returns the public URL."""
        r = requests.post(
            f"{self.url}/storage/v1/object/{self.bucket}/{path}",
            headers={**self._headers(), "Content-Type": content_type, "x-upsert": "true"},
            data=data,
            timeout=30,
        )
        r.raise_for_status()
        return f"{self.url}/storage/v1/object/public/{self.bucket}/{path}"

    def delete_image(self, path: str) -> None:
        r = requests.delete(
            f"{self.url}/storage/v1/object/{self.bucket}/{path}",
            headers=self._headers(),
            timeout=30,
        )
        r.raise_for_status()


class LocalStorage:
    """Files under ``root``, served by the app at ``/uploads``."""

    def __init__(self, root: str, public_base_url: str = ""):
        self.root = root
        self.public_base_url = public_base_url.rstrip("/")

    def _path(self, key: str) -> str:
        path = os.path.abspath(os.path.join(self.root, key))
        if not path.startswith(os.path.abspath(self.root) + os.sep):
            raise ValueError(f"Storage key escapes upload dir: {key}")
        return path

    def upload_image(self, data: bytes, content_type: str, path: str) -> str:
        target = self._path(path)
        os.makedirs(os.path.dirname(target), exist_ok=True)
        with open(target, "wb") as fh:
            fh.write(data)
        return f"{self.public_base_url}/uploads/{path}"

    def delete_image(self, path: str) -> None:
        os.remove(self._path(path))


def build_storage(settings: Settings):
    if settings.supabase_url and settings.supabase_service_role:
        return SupabaseStorage(settings.supabase_url, settings.supabase_service_role, settings.supabase_bucket)
    logger.info("Supabase not configured; storing images under %s", settings.upload_dir)
    return LocalStorage(settings.upload_dir, settings.public_base_url)


@lru_cache
def get_storage():
    return build_storage(app_settings)


def make_object_key(issue_id: int, filename: str) -> str:
    ext = (filename.rsplit(".", 1)[-1] if "." in filename else "").lower()
    if not (ext.isalnum() and len(ext) <= 5):
        ext = "jpg"
    return f"{issue_id}/{uuid.uuid4().hex}.{ext}"
