"""
Team roster with wallet balances.

Each teammate is listed with the balance of their destination (private)
wallet and the allowance remaining on their source wallet. A teammate whose
wallets could not be fetched is still listed, without balances.
"""
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from classifier.roles import RoleRule, WalletRole, find_wallet_by_role
from ledger.models import User, Wallet
from normalizer.amount_parser import msat_to_sats

NOT_AVAILABLE = 'N/A'


@dataclass
class TeamMember:
    """One roster row."""
    user: User
    destination_wallet: Optional[Wallet] = None
    source_wallet: Optional[Wallet] = None

    @property
    def balance_msat(self) -> Optional[int]:
        """Balance of the private wallet, or None if unknown."""
        return self.destination_wallet.balance_msat if self.destination_wallet else None

    @property
    def allowance_msat(self) -> Optional[int]:
        """Allowance remaining on the source wallet, or None if unknown."""
        return self.source_wallet.balance_msat if self.source_wallet else None

    def to_dict(self) -> Dict[str, Any]:
        """Convert member to dictionary (balances in whole sats)."""
        return {
            'user': self.user.to_dict(),
            'balance_sats': _sats_or_none(self.balance_msat),
            'allowance_sats': _sats_or_none(self.allowance_msat),
        }


def _sats_or_none(amount_msat: Optional[int]) -> Optional[int]:
    return msat_to_sats(amount_msat) if amount_msat is not None else None


def build_team_roster(
    users: List[User],
    wallets_by_user: Dict[str, List[Wallet]],
    rules: Optional[List[RoleRule]] = None
) -> List[TeamMember]:
    """
    Pair every user with their role wallets, sorted by display name.

    Args:
        users: The user roster
        wallets_by_user: Wallets of each user whose fetch succeeded
        rules: Wallet role rules

    Returns:
        One TeamMember per user
    """
    members = []
    for user in users:
        wallets = wallets_by_user.get(user.id, [])
        members.append(TeamMember(
            user=user,
            destination_wallet=find_wallet_by_role(wallets, WalletRole.DESTINATION, rules),
            source_wallet=find_wallet_by_role(wallets, WalletRole.SOURCE, rules),
        ))

    return sorted(members, key=lambda m: (m.user.display_name or '').casefold())
