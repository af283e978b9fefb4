"""
Manifest handling: decoding, categorization and client-config patching.
"""

from .manifests import ManifestCategories, categorize_manifests, decode_manifests
from .patch import (
    extract_endpoint_urls,
    is_crd_established,
    patch_crd_conversion,
    patch_webhook_config,
)

__all__ = [
    "ManifestCategories",
    "categorize_manifests",
    "decode_manifests",
    "extract_endpoint_urls",
    "is_crd_established",
    "patch_crd_conversion",
    "patch_webhook_config",
]
