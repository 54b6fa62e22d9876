"""
Wallet ownership lookups.
"""
from typing import Dict, Iterable, List, Mapping, Optional

from ledger.models import User, Wallet


def build_wallet_owner_map(
    users: Iterable[User],
    wallets_by_user: Mapping[str, List[Wallet]]
) -> Dict[str, User]:
    """
    Map every non-deleted wallet to the user that owns it.

    Users missing from `wallets_by_user` (their wallet fetch failed)
    contribute nothing, so their wallets resolve to unknown.

    Args:
        users: The full user roster
        wallets_by_user: Wallets fetched per user id

    Returns:
        Mapping of wallet id -> owning user
    """
    owner_map: Dict[str, User] = {}

    for user in users:
        for wallet in wallets_by_user.get(user.id, []):
            if wallet.deleted:
                continue
            owner_map[wallet.id] = user

    return owner_map


def index_users_by_id(users: Iterable[User]) -> Dict[str, User]:
    return {user.id: user for user in users}


def find_user_by_external_id(users: Iterable[User], external_id: str) -> Optional[User]:
    """Find the user whose external identity reference matches."""
    if not external_id:
        return None
    for user in users:
        if user.external_id == external_id:
            return user
    return None


def find_user_in_memo(users: Iterable[User], memo: str) -> Optional[User]:
    """
    Find the first user named in a memo.

    A user matches when the memo contains their display name, e-mail or
    e-mail local part (case-insensitive).
    """
    if not memo:
        return None

    memo_lower = memo.lower()
    for user in users:
        candidates = [user.display_name, user.email]
        if user.email and '@' in user.email:
            candidates.append(user.email.split('@')[0])

        for candidate in candidates:
            if candidate and candidate.lower() in memo_lower:
                return user

    return None
