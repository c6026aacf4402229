from .merchants import Merchant
from .deals import Deal, Claim
from .notifications import PushSubscription, Notification, NotificationDelivery

__all__ = [
    'Merchant',
    'Deal', 'Claim',
    'PushSubscription', 'Notification', 'NotificationDelivery',
]
