from .base import BaseClient
from .download import Downloader
from .upload import Uploader

__all__ = [
    "BaseClient",
    "Downloader",
    "Uploader",
]
