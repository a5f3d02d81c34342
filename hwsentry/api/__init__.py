"""
HTTP surface for the scan layer.
"""

from hwsentry.api.app import create_app

__all__ = ["create_app"]
