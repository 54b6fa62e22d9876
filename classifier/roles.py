"""
Rule-based wallet role classification.

Wallets are named "<Owner> - <Role>". The role token must equal one of the
configured role names exactly (ignoring case and surrounding whitespace).
Substrings never match: "NotAnAllowanceWallet" has no role.
"""
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

from config import WALLET_NAME_SEPARATOR, get_wallet_vocabularies
from ledger.models import Wallet


class WalletRole(Enum):
    """Semantic role of a wallet in a transfer."""
    SOURCE = "source"              # allowance: zaps are sent from here
    DESTINATION = "destination"    # private: zaps arrive here
    NONE = "none"


# Type alias for a role rule: (role, accepted role names)
RoleRule = Tuple[WalletRole, List[str]]


def get_role_rules(
    source_names: Optional[Iterable[str]] = None,
    destination_names: Optional[Iterable[str]] = None
) -> List[RoleRule]:
    """
    Build the ordered role rules.

    Order is the classification priority: DESTINATION is checked before
    SOURCE, so a name in both vocabularies is a destination only.

    Args:
        source_names: Override for the source vocabulary (default from config)
        destination_names: Override for the destination vocabulary

    Returns:
        List of (role, lower-cased names) in priority order
    """
    vocabularies = get_wallet_vocabularies()
    if source_names is None:
        source_names = vocabularies["source"]
    if destination_names is None:
        destination_names = vocabularies["destination"]

    return [
        (WalletRole.DESTINATION, [_normalize(n) for n in destination_names]),
        (WalletRole.SOURCE, [_normalize(n) for n in source_names]),
    ]


def _normalize(text: str) -> str:
    return ' '.join(text.lower().split())


def extract_role_token(wallet_name: str) -> str:
    """
    Get the role part of a wallet name, lower-cased.

    "Jane - Allowance" -> "allowance"; a name without the separator is used
    whole.
    """
    if not wallet_name:
        return ""

    if WALLET_NAME_SEPARATOR in wallet_name:
        wallet_name = wallet_name.rsplit(WALLET_NAME_SEPARATOR, 1)[1]

    return _normalize(wallet_name)


def classify_wallet(wallet_name: str, rules: Optional[List[RoleRule]] = None) -> WalletRole:
    """
    Classify a wallet by name.

    Args:
        wallet_name: The wallet's display name
        rules: Ordered role rules (default from config)

    Returns:
        The first matching role, or WalletRole.NONE
    """
    token = extract_role_token(wallet_name)
    if not token:
        return WalletRole.NONE

    for role, names in rules or get_role_rules():
        if token in names:
            return role

    return WalletRole.NONE


def build_wallet_role_map(
    wallets: Iterable[Wallet],
    rules: Optional[List[RoleRule]] = None
) -> Dict[str, WalletRole]:
    """
    Classify every non-deleted wallet.

    Returns:
        Mapping of wallet id -> role (deleted wallets are absent)
    """
    rules = rules or get_role_rules()
    return {
        wallet.id: classify_wallet(wallet.name, rules)
        for wallet in wallets
        if not wallet.deleted
    }


def find_wallet_by_role(
    wallets: Iterable[Wallet],
    role: WalletRole,
    rules: Optional[List[RoleRule]] = None
) -> Optional[Wallet]:
    """Get the first non-deleted wallet with the given role."""
    rules = rules or get_role_rules()
    for wallet in wallets:
        if not wallet.deleted and classify_wallet(wallet.name, rules) == role:
            return wallet
    return None
