from .profiles import Profile, SessionToken
from .requests import ShoppingRequest, RequestItem, RequestNumberCounter, RequestStatus
from .security import SecurityEvent

__all__ = [
    'Profile', 'SessionToken',
    'ShoppingRequest', 'RequestItem', 'RequestNumberCounter', 'RequestStatus',
    'SecurityEvent',
]
