"""
Data model for ledger records and reconciled transfers.
"""
import json
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union

from config import DEFAULT_USER_ROLE
from ledger.errors import MalformedRecord
from normalizer.amount_parser import parse_msat
from normalizer.time_parser import normalize_timestamp


def display_name_from_username(username: str) -> str:
    """
    Turn a ledger username into a friendly display name.

    "jane.doe@example.com" becomes "Jane Doe"; other usernames are returned
    unchanged.
    """
    if '@' not in username:
        return username

    local_part = username.split('@')[0].replace('.', ' ')
    return ' '.join(word[:1].upper() + word[1:] for word in local_part.split(' '))


@dataclass(frozen=True)
class User:
    """
    A ledger user, snapshotted once per fetch cycle.
    """
    id: str
    display_name: str
    email: str = ""
    external_id: str = ""
    role: str = DEFAULT_USER_ROLE
    profile_image: str = ""

    def to_dict(self) -> Dict[str, Any]:
        """Convert user to dictionary."""
        return {
            'id': self.id,
            'display_name': self.display_name,
            'email': self.email,
            'external_id': self.external_id,
            'role': self.role,
            'profile_image': self.profile_image,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'User':
        """Create user from a raw ledger user record."""
        user_id = data.get('id')
        if not user_id:
            raise MalformedRecord(f"User record has no id: {data!r}")

        extra = data.get('extra') or {}
        if not isinstance(extra, dict):
            extra = {}

        username = data.get('username') or user_id
        return cls(
            id=user_id,
            display_name=data.get('display_name') or display_name_from_username(username),
            email=data.get('email') or extra.get('email') or data.get('username') or '',
            external_id=data.get('external_id') or extra.get('aadObjectId') or '',
            role=extra.get('type') or DEFAULT_USER_ROLE,
            profile_image=extra.get('profileImg') or '',
        )


@dataclass(frozen=True)
class Wallet:
    """
    A ledger wallet. The name is the only signal used for role classification.
    """
    id: str
    user_id: str
    name: str
    in_key: str = ""
    admin_key: str = ""
    balance_msat: int = 0
    deleted: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Wallet':
        """Create wallet from a raw ledger wallet record."""
        wallet_id = data.get('id')
        if not wallet_id:
            raise MalformedRecord(f"Wallet record has no id: {data!r}")

        return cls(
            id=wallet_id,
            user_id=data.get('user') or data.get('user_id') or '',
            name=data.get('name') or '',
            in_key=data.get('inkey') or '',
            admin_key=data.get('adminkey') or '',
            balance_msat=parse_msat(data.get('balance_msat')) or 0,
            deleted=data.get('deleted') is True,
        )


@dataclass(frozen=True)
class PaymentExtra:
    """
    Typed view of the free-form "extra" metadata on a payment.

    Only the sender/recipient hints and the tag are read; every field is
    optional.
    """
    tag: Optional[str] = None
    sender_user_id: Optional[str] = None
    recipient_user_id: Optional[str] = None
    sender_wallet_id: Optional[str] = None
    recipient_wallet_id: Optional[str] = None

    @classmethod
    def from_raw(cls, raw: Union[str, Dict[str, Any], None]) -> 'PaymentExtra':
        """
        Build from the raw extra value, which may be a dict or a JSON string.

        Understands both {"from": {"user": ..., "wallet": ...}} and flat
        {"from": "<user id>"} shapes. Anything unrecognized is ignored.
        """
        if isinstance(raw, str):
            try:
                raw = json.loads(raw)
            except ValueError:
                return cls()

        if not isinstance(raw, dict):
            return cls()

        sender_user, sender_wallet = _party_hint(raw.get('from'))
        recipient_user, recipient_wallet = _party_hint(raw.get('to'))
        tag = raw.get('tag')

        return cls(
            tag=tag if isinstance(tag, str) else None,
            sender_user_id=sender_user,
            recipient_user_id=recipient_user,
            sender_wallet_id=sender_wallet,
            recipient_wallet_id=recipient_wallet,
        )


def _party_hint(value: Any):
    """Extract (user id, wallet id) from one side of the extra metadata."""
    if isinstance(value, str) and value:
        return value, None
    if isinstance(value, dict):
        user_id = value.get('user') or value.get('id')
        wallet_id = value.get('wallet')
        return (
            user_id if isinstance(user_id, str) and user_id else None,
            wallet_id if isinstance(wallet_id, str) and wallet_id else None,
        )
    return None, None


@dataclass
class LedgerPayment:
    """
    One debit or credit row from the ledger, scoped to a single wallet.

    Amounts are signed millisatoshis: negative leaves the wallet, positive
    arrives in it.
    """
    checking_id: Optional[str]
    wallet_id: str
    amount: int
    memo: str = ""
    time: Union[int, float, str, None] = None
    extra: PaymentExtra = field(default_factory=PaymentExtra)
    bolt11: str = ""

    @property
    def timestamp(self) -> Optional[float]:
        """Payment time normalized to epoch seconds."""
        return normalize_timestamp(self.time)

    @property
    def is_outgoing(self) -> bool:
        return self.amount < 0

    @property
    def is_incoming(self) -> bool:
        return self.amount > 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert payment to dictionary."""
        return {
            'checking_id': self.checking_id,
            'wallet_id': self.wallet_id,
            'amount': self.amount,
            'memo': self.memo,
            'time': self.time,
            'timestamp': self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LedgerPayment':
        """Create payment from a raw ledger payment record."""
        amount = parse_msat(data.get('amount'))
        if amount is None:
            raise MalformedRecord(f"Payment record has no amount: {data!r}")

        return cls(
            checking_id=data.get('checking_id') or data.get('payment_hash') or data.get('id') or None,
            wallet_id=data.get('wallet_id') or '',
            amount=amount,
            memo=data.get('memo') or '',
            time=data.get('time'),
            extra=PaymentExtra.from_raw(data.get('extra')),
            bolt11=data.get('bolt11') or '',
        )


@dataclass
class TransferEvent:
    """
    A reconciled peer-to-peer transfer: one event per real-world transfer.

    The underlying payment is the outgoing (debit) row of the pair.
    """
    sender: Optional[User]
    recipient: Optional[User]
    payment: LedgerPayment

    @property
    def amount(self) -> int:
        """Transferred amount in millisatoshis (always positive)."""
        return abs(self.payment.amount)

    @property
    def memo(self) -> str:
        return self.payment.memo

    @property
    def timestamp(self) -> Optional[float]:
        return self.payment.timestamp

    @property
    def checking_id(self) -> Optional[str]:
        return self.payment.checking_id

    @property
    def is_ambiguous(self) -> bool:
        """True when the recipient could not be attributed."""
        return self.recipient is None

    def to_dict(self) -> Dict[str, Any]:
        """Convert event to dictionary."""
        return {
            'checking_id': self.checking_id,
            'from': self.sender.to_dict() if self.sender else None,
            'to': self.recipient.to_dict() if self.recipient else None,
            'amount': self.amount,
            'memo': self.memo,
            'time': self.payment.time,
            'timestamp': self.timestamp,
        }
