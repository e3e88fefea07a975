"""Authentication module"""

from .jwt import JWTManager, JWTError

__all__ = [
    "JWTManager",
    "JWTError",
]
