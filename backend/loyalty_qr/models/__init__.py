from .tenancy import Restaurant
from .customers import Customer, Reward
from .qr_tokens import QRToken

__all__ = [
    'Restaurant',
    'Customer', 'Reward',
    'QRToken',
]
