"""
API v1 router exports.
Provides API endpoint routers.
"""
from chatcore.api.v1 import messages

__all__ = [
    "messages",
]
