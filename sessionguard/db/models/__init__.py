from sessionguard.db.models.user import User, UserRole
from sessionguard.db.models.refresh_token import RefreshToken

__all__ = ["User", "UserRole", "RefreshToken"]
