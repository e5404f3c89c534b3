"""
Service layer: package lifecycle and tarball streams.
"""

from .package_manager import PackageManager, pick_latest
from .streams import ReadTarball, UploadTarball

__all__ = ["PackageManager", "pick_latest", "ReadTarball", "UploadTarball"]
