"""
Per-wallet activity log.

Lists every row of one wallet with the other party of the transfer filled in.
Unlike the feed, nothing is filtered by role: the log shows what happened to
this wallet.
"""
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional

from config import INTERNAL_PREFIX
from classifier.identity import find_user_in_memo
from ledger.models import LedgerPayment, User
from reconciler.transfer_reconciler import strip_internal_prefix

SENT = "sent"
RECEIVED = "received"
DIRECTIONS = ("all", SENT, RECEIVED)


@dataclass
class WalletLogEntry:
    """One row of a wallet's activity log."""
    direction: str
    owner: Optional[User]
    counterparty: Optional[User]
    payment: LedgerPayment

    @property
    def sender(self) -> Optional[User]:
        return self.owner if self.direction == SENT else self.counterparty

    @property
    def recipient(self) -> Optional[User]:
        return self.counterparty if self.direction == SENT else self.owner

    @property
    def is_zap(self) -> bool:
        return self.payment.extra.tag == 'zap'

    def to_dict(self) -> Dict:
        return {
            'direction': self.direction,
            'checking_id': self.payment.checking_id,
            'from': self.sender.to_dict() if self.sender else None,
            'to': self.recipient.to_dict() if self.recipient else None,
            'amount': abs(self.payment.amount),
            'memo': self.payment.memo,
            'time': self.payment.time,
            'timestamp': self.payment.timestamp,
            'tag': self.payment.extra.tag,
            'is_zap': self.is_zap,
        }


def build_wallet_log(
    wallet_payments: Iterable[LedgerPayment],
    index: Mapping[str, List[LedgerPayment]],
    owner_map: Mapping[str, User],
    users: Iterable[User],
    direction: str = "all",
    internal_prefix: str = INTERNAL_PREFIX
) -> List[WalletLogEntry]:
    """
    Build the activity log of one wallet.

    Args:
        wallet_payments: Rows of the wallet being shown
        index: All known rows grouped by stripped checking id
        owner_map: Wallet id -> owning user
        users: Roster, used to find a counterparty named in the memo
        direction: "all", "sent" or "received"
        internal_prefix: Prefix on internal checking ids

    Returns:
        Log entries, newest first
    """
    if direction not in DIRECTIONS:
        raise ValueError(f"Unknown direction: {direction}. Use one of {', '.join(DIRECTIONS)}")

    users = list(users)
    entries: List[WalletLogEntry] = []

    for payment in wallet_payments:
        if payment.amount == 0:
            continue

        entry_direction = SENT if payment.is_outgoing else RECEIVED
        if direction != "all" and direction != entry_direction:
            continue

        entries.append(WalletLogEntry(
            direction=entry_direction,
            owner=owner_map.get(payment.wallet_id),
            counterparty=_find_counterparty(payment, index, owner_map, users, internal_prefix),
            payment=payment,
        ))

    # Stable: rows with equal or missing times keep their order
    entries.sort(key=lambda e: e.payment.timestamp or 0.0, reverse=True)
    return entries


def _find_counterparty(
    payment: LedgerPayment,
    index: Mapping[str, List[LedgerPayment]],
    owner_map: Mapping[str, User],
    users: List[User],
    internal_prefix: str
) -> Optional[User]:
    clean_id = strip_internal_prefix(payment.checking_id, internal_prefix)
    for other in index.get(clean_id, []) if clean_id else []:
        if other.wallet_id != payment.wallet_id:
            owner = owner_map.get(other.wallet_id)
            if owner is not None:
                return owner

    # The wallet owner is never their own counterparty
    owner = owner_map.get(payment.wallet_id)
    others = [u for u in users if owner is None or u.id != owner.id]
    return find_user_in_memo(others, payment.memo)
