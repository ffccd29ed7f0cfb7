from app.models.user import User
from app.models.document import RecentDocument, FavoritedDocument

__all__ = [
    "User",
    "RecentDocument",
    "FavoritedDocument",
]
