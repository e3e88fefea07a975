"""HTTP interface"""

from .api import create_app

__all__ = ["create_app"]
