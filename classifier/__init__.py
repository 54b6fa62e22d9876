"""
Classifier module for wallet roles and wallet ownership.
"""
from .roles import WalletRole, classify_wallet, build_wallet_role_map
from .identity import build_wallet_owner_map

__all__ = ['WalletRole', 'classify_wallet', 'build_wallet_role_map', 'build_wallet_owner_map']
