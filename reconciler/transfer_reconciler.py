"""
Transfer Reconciliation Module.

Rebuilds peer-to-peer transfers from per-wallet ledger rows:
1. Indexing rows by checking id (internal prefix stripped)
2. Selecting outgoing rows on source wallets as candidates
3. Accepting a candidate only if an incoming row on a destination wallet
   shares its checking id
4. Keeping one event per checking id
5. Attributing sender and recipient
6. Capping the result size
"""
import logging
from collections import defaultdict
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from classifier.identity import index_users_by_id
from classifier.roles import WalletRole
from config import EXCLUDED_MEMO_SUBSTRING, INTERNAL_PREFIX, MAX_RECORDS
from ledger.models import LedgerPayment, TransferEvent, User

logger = logging.getLogger(__name__)


def strip_internal_prefix(checking_id: Optional[str], prefix: str = INTERNAL_PREFIX) -> str:
    """
    Remove the internal-transfer prefix from a checking id.

    Returns:
        The bare id, or an empty string when there is no id
    """
    if not checking_id:
        return ""
    if prefix and checking_id.startswith(prefix):
        return checking_id[len(prefix):]
    return checking_id


def index_by_checking_id(
    payments: Iterable[LedgerPayment],
    prefix: str = INTERNAL_PREFIX
) -> Dict[str, List[LedgerPayment]]:
    """
    Group payments by checking id with the internal prefix stripped.

    Payments without a checking id are left out.
    """
    index: Dict[str, List[LedgerPayment]] = defaultdict(list)
    for payment in payments:
        clean_id = strip_internal_prefix(payment.checking_id, prefix)
        if clean_id:
            index[clean_id].append(payment)
    return dict(index)


class TransferReconciler:
    """
    Reconciles ledger rows into logical transfer events.

    A transfer is shown once: the outgoing row from a source (allowance)
    wallet, matched to the incoming row on a destination (private) wallet.
    Outgoing rows without such a match left the organization and are not
    shown.
    """

    def __init__(
        self,
        internal_prefix: str = INTERNAL_PREFIX,
        excluded_memo: str = EXCLUDED_MEMO_SUBSTRING,
        max_records: int = MAX_RECORDS,
        require_paired_records: bool = True
    ):
        """
        Initialize the reconciler.

        Args:
            internal_prefix: Prefix on checking ids of internal transfers
            excluded_memo: Memo substring marking system entries (empty
                           disables the exclusion)
            max_records: Maximum number of events returned
            require_paired_records: Require the incoming sibling row. Turn
                           off only for a ledger that emits one merged row
                           per transfer.
        """
        self.internal_prefix = internal_prefix
        self.excluded_memo = excluded_memo
        self.max_records = max_records
        self.require_paired_records = require_paired_records

    def reconcile(
        self,
        payments: List[LedgerPayment],
        wallet_roles: Mapping[str, WalletRole],
        owner_map: Mapping[str, User],
        users: Optional[Iterable[User]] = None
    ) -> Tuple[List[TransferEvent], dict]:
        """
        Reconcile payments into transfer events.

        Args:
            payments: All ledger rows of the relevant wallets
            wallet_roles: Wallet id -> role (deleted wallets absent)
            owner_map: Wallet id -> owning user
            users: Roster used to resolve recipient hints in payment metadata

        Returns:
            Tuple of (events in input order, summary stats)
        """
        users_by_id = index_users_by_id(users or [])
        index = index_by_checking_id(payments, self.internal_prefix)

        stats = {
            'total_rows': len(payments),
            'candidates': 0,
            'accepted': 0,
            'excluded_system': 0,
            'rejected_unpaired': 0,
            'duplicates': 0,
            'malformed': 0,
            'ambiguous': 0,
            'truncated': 0,
        }

        events: List[TransferEvent] = []
        seen_ids = set()

        for payment in payments:
            if not payment.wallet_id:
                stats['malformed'] += 1
                continue

            if wallet_roles.get(payment.wallet_id) != WalletRole.SOURCE or not payment.is_outgoing:
                continue

            if self._is_system_entry(payment):
                stats['excluded_system'] += 1
                continue

            stats['candidates'] += 1
            clean_id = strip_internal_prefix(payment.checking_id, self.internal_prefix)

            sibling = self._find_sibling(payment, index.get(clean_id, []), wallet_roles) if clean_id else None
            if sibling is None and (self.require_paired_records or not clean_id):
                stats['rejected_unpaired'] += 1
                continue

            if clean_id in seen_ids:
                stats['duplicates'] += 1
                continue
            seen_ids.add(clean_id)

            event = TransferEvent(
                sender=owner_map.get(payment.wallet_id),
                recipient=self._resolve_recipient(payment, sibling, owner_map, users_by_id),
                payment=payment,
            )
            if event.is_ambiguous:
                stats['ambiguous'] += 1
            events.append(event)

        stats['accepted'] = len(events)

        if len(events) > self.max_records:
            stats['truncated'] = len(events) - self.max_records
            events = events[:self.max_records]

        logger.info(
            f"Reconciled {stats['total_rows']} rows into {len(events)} transfers "
            f"({stats['rejected_unpaired']} unpaired, {stats['excluded_system']} system, "
            f"{stats['malformed']} malformed, {stats['truncated']} over cap)"
        )

        return events, stats

    def _is_system_entry(self, payment: LedgerPayment) -> bool:
        return bool(self.excluded_memo) and self.excluded_memo in (payment.memo or '')

    def _find_sibling(
        self,
        payment: LedgerPayment,
        siblings: List[LedgerPayment],
        wallet_roles: Mapping[str, WalletRole]
    ) -> Optional[LedgerPayment]:
        """Find the incoming destination-wallet row of the same transfer."""
        for other in siblings:
            if other is payment or other.wallet_id == payment.wallet_id:
                continue
            if other.is_incoming and wallet_roles.get(other.wallet_id) == WalletRole.DESTINATION:
                return other
        return None

    def _resolve_recipient(
        self,
        payment: LedgerPayment,
        sibling: Optional[LedgerPayment],
        owner_map: Mapping[str, User],
        users_by_id: Mapping[str, User]
    ) -> Optional[User]:
        """
        Owner of the sibling wallet, else the recipient hints in the payment
        metadata (wallet, then user), else None.
        """
        if sibling is not None:
            owner = owner_map.get(sibling.wallet_id)
            if owner is not None:
                return owner

        wallet_hint = payment.extra.recipient_wallet_id
        if wallet_hint and wallet_hint in owner_map:
            return owner_map[wallet_hint]

        hints = [payment.extra.recipient_user_id]
        if sibling is not None:
            hints.append(sibling.extra.recipient_user_id)

        for user_id in hints:
            if user_id and user_id in users_by_id:
                return users_by_id[user_id]

        return None
