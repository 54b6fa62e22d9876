"""
Ledger access: data model, API client, errors and cache.
"""
from .models import User, Wallet, PaymentExtra, LedgerPayment, TransferEvent
from .client import BaseLedgerClient, LNbitsClient
from .cache import FeedCache

__all__ = [
    'User', 'Wallet', 'PaymentExtra', 'LedgerPayment', 'TransferEvent',
    'BaseLedgerClient', 'LNbitsClient', 'FeedCache',
]
