"""
Upload providers
"""

from .cloudinary import CloudinaryUploadProvider

__all__ = ["CloudinaryUploadProvider"]
