"""
Cloudinary Upload Provider

Unsigned uploads with an upload preset; the delivered ``secure_url`` is what
gets attached to the chat message.
"""

import logging
from typing import Dict

import requests

from ..base.upload_provider import UploadProvider
from app.services.call_errors import UploadError

logger = logging.getLogger(__name__)

UPLOAD_URL = "https://api.cloudinary.com/v1_1/{cloud_name}/auto/upload"


class CloudinaryUploadProvider(UploadProvider):
    def __init__(self, cloud_name: str = "", upload_preset: str = "ml_default", timeout: float = 30.0, **_options):
        super().__init__()
        self.name = "cloudinary"
        self.display_name = "Cloudinary"
        self.cloud_name = cloud_name
        self.upload_preset = upload_preset
        self.timeout = timeout

    def upload(self, filename: str, data: bytes, content_type: str) -> Dict[str, str]:
        if not self.cloud_name:
            raise UploadError("Cloudinary cloud name is not configured")

        try:
            response = requests.post(
                UPLOAD_URL.format(cloud_name=self.cloud_name),
                data={"upload_preset": self.upload_preset},
                files={"file": (filename, data, content_type)},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error(f"Upload of {filename} failed: {e}")
            raise UploadError(str(e)) from e

        if not response.ok:
            try:
                message = response.json().get("error", {}).get("message", "Upload failed")
            except ValueError:
                message = "Upload failed"
            logger.error(f"Upload of {filename} rejected ({response.status_code}): {message}")
            raise UploadError(message)

        url = response.json().get("secure_url")
        if not url:
            raise UploadError("Upload response has no secure_url")
        return {"url": url}
