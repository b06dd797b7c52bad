"""
Upload Provider Base Class
Opaque "upload bytes, get back a URL" collaborator used for chat attachments
"""

from abc import ABC, abstractmethod
from typing import Dict


class UploadProvider(ABC):
    """Abstract base class for file upload providers"""

    def __init__(self):
        self.name = "unknown"
        self.display_name = "Generic Upload"

    @abstractmethod
    def upload(self, filename: str, data: bytes, content_type: str) -> Dict[str, str]:
        """
        Upload a file.

        Returns:
            {'url': str}

        Raises:
            UploadError: when the upload is rejected or the service is unreachable
        """
        pass
