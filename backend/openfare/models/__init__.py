"""Database models"""

from openfare.models.user import User
from openfare.models.security import RevokedToken

__all__ = ["User", "RevokedToken"]
