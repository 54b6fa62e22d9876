"""
Feed loading: fetches ledger data concurrently and runs reconciliation.

One pass:
1. Load the user roster (cached; fatal on failure)
2. Fetch every user's wallets in parallel
3. Fetch payments of every classified wallet in parallel
4. Build the role and owner maps and reconcile

Per-user and per-wallet failures are recorded as warnings and contribute
nothing; the pass continues. Failures involving the current user abort it.
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

from classifier.identity import build_wallet_owner_map, find_user_by_external_id
from classifier.roles import (
    RoleRule, WalletRole, build_wallet_role_map, find_wallet_by_role, get_role_rules
)
from config import get_config
from ledger.cache import FeedCache
from ledger.client import BaseLedgerClient, LNbitsClient
from ledger.errors import UpstreamError, UpstreamPartialFailure, UpstreamUnavailable
from ledger.models import LedgerPayment, TransferEvent, User, Wallet
from reconciler.transfer_reconciler import TransferReconciler, index_by_checking_id
from reconciler.team_roster import TeamMember, build_team_roster
from reconciler.wallet_log import WalletLogEntry, build_wallet_log

logger = logging.getLogger(__name__)

USERS_CACHE_KEY = "users"
FEED_CACHE_KEY = "feed"


@dataclass
class FeedResult:
    """Outcome of one feed pass."""
    events: List[TransferEvent]
    users: List[User]
    summary: dict
    warnings: List[UpstreamPartialFailure] = field(default_factory=list)
    since: float = 0.0

    def covers(self, since: float, current_user_id: Optional[str] = None) -> bool:
        """
        True if this result can serve a request for `since`: it was fetched
        from the same or an earlier cutoff, and the current user's wallets
        were loaded.
        """
        if self.since > since:
            return False
        return not any(
            w.scope == "wallets" and w.key == current_user_id
            for w in self.warnings
        )


@dataclass
class LedgerSnapshot:
    """Everything fetched during one pass, before reconciliation."""
    users: List[User]
    wallets_by_user: Dict[str, List[Wallet]]
    wallet_roles: Dict[str, WalletRole]
    owner_map: Dict[str, User]
    payments: List[LedgerPayment]
    payments_by_wallet: Dict[str, List[LedgerPayment]]
    failed_wallets: Set[str]
    warnings: List[UpstreamPartialFailure]


class FeedLoader:
    """
    Loads and reconciles the activity feed from a ledger client.
    """

    def __init__(
        self,
        client: BaseLedgerClient,
        cache: Optional[FeedCache] = None,
        reconciler: Optional[TransferReconciler] = None,
        max_workers: Optional[int] = None,
        rules: Optional[List[RoleRule]] = None
    ):
        """
        Initialize the loader.

        Args:
            client: Ledger API client
            cache: Process-lifetime cache (a private one if omitted)
            reconciler: Reconciler to use (built from config if omitted)
            max_workers: Thread pool size for concurrent fetches
            rules: Wallet role rules (from config if omitted)
        """
        config = get_config()
        self.client = client
        self.cache = cache if cache is not None else FeedCache()
        self.reconciler = reconciler or TransferReconciler(
            internal_prefix=config.get("internal_prefix"),
            excluded_memo=config.get("excluded_memo_substring"),
            max_records=config.get("max_records"),
            require_paired_records=config.get("paired_ledger_records"),
        )
        self.max_workers = max_workers or config.get("max_workers")
        self.rules = rules or get_role_rules()

    @classmethod
    def from_config(cls, cache: Optional[FeedCache] = None) -> 'FeedLoader':
        """Build a loader with an LNbits client configured from settings."""
        config = get_config()
        client = LNbitsClient(
            node_url=config.get("ledger_node_url"),
            username=config.get("ledger_username"),
            password=config.get("ledger_password"),
            timeout=config.get("request_timeout"),
            payments_limit=config.get("payments_limit"),
        )
        return cls(client, cache=cache)

    # -------------------------------------------------------------------------
    # Fetching
    # -------------------------------------------------------------------------

    def load_users(self, use_cache: bool = True) -> List[User]:
        """
        Load the user roster.

        Raises:
            UpstreamUnavailable: if the roster cannot be fetched or is empty
        """
        if use_cache:
            cached = self.cache.get(USERS_CACHE_KEY)
            if cached is not None:
                logger.debug("Loading users from cache")
                return cached

        try:
            users = self.client.list_users()
        except UpstreamError as e:
            raise UpstreamUnavailable(f"Unable to load users: {e}") from e

        if not users:
            raise UpstreamUnavailable("Unable to load users. Please check your connection and try again.")

        self.cache.set(USERS_CACHE_KEY, users)
        return users

    def fetch_wallets(
        self,
        users: List[User],
        current_user_id: Optional[str] = None
    ) -> Tuple[Dict[str, List[Wallet]], List[UpstreamPartialFailure]]:
        """
        Fetch every user's wallets concurrently.

        Returns:
            Tuple of (wallets by user id for successful fetches, warnings)

        Raises:
            UpstreamUnavailable: if the current user's wallets cannot be fetched
        """
        def fetch(user: User):
            try:
                return user, self.client.list_wallets_for_user(user.id), None
            except UpstreamError as e:
                return user, None, e

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            results = list(executor.map(fetch, users))

        wallets_by_user: Dict[str, List[Wallet]] = {}
        warnings: List[UpstreamPartialFailure] = []

        for user, wallets, error in results:
            if error is not None:
                if user.id == current_user_id:
                    raise UpstreamUnavailable(f"Unable to load your wallets: {error}") from error
                warning = UpstreamPartialFailure("wallets", user.id, str(error))
                logger.warning(str(warning))
                warnings.append(warning)
                continue
            wallets_by_user[user.id] = [w for w in wallets if not w.deleted]

        return wallets_by_user, warnings

    def fetch_payments(
        self,
        wallets: List[Wallet],
        since: float = 0.0
    ) -> Tuple[Dict[str, List[LedgerPayment]], List[UpstreamPartialFailure]]:
        """
        Fetch payments of the given wallets concurrently.

        Returns:
            Tuple of (payments by wallet id for successful fetches, warnings)
        """
        def fetch(wallet: Wallet):
            try:
                return wallet, self.client.list_payments_since(wallet.in_key, since), None
            except UpstreamError as e:
                return wallet, None, e

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            results = list(executor.map(fetch, wallets))

        payments_by_wallet: Dict[str, List[LedgerPayment]] = {}
        warnings: List[UpstreamPartialFailure] = []

        for wallet, payments, error in results:
            if error is not None:
                warning = UpstreamPartialFailure("payments", wallet.id, str(error))
                logger.warning(str(warning))
                warnings.append(warning)
                continue
            payments_by_wallet[wallet.id] = payments

        return payments_by_wallet, warnings

    def collect(
        self,
        since: float = 0.0,
        current_user_id: Optional[str] = None,
        use_cache: bool = True
    ) -> LedgerSnapshot:
        """Fetch users, wallets and payments for one pass."""
        users = self.load_users(use_cache=use_cache)
        wallets_by_user, warnings = self.fetch_wallets(users, current_user_id)

        all_wallets = [w for user in users for w in wallets_by_user.get(user.id, [])]
        wallet_roles = build_wallet_role_map(all_wallets, self.rules)
        relevant = [w for w in all_wallets if wallet_roles.get(w.id, WalletRole.NONE) != WalletRole.NONE]
        logger.debug(f"Fetching payments for {len(relevant)} of {len(all_wallets)} wallets")

        payments_by_wallet, payment_warnings = self.fetch_payments(relevant, since)
        warnings.extend(payment_warnings)

        payments: List[LedgerPayment] = []
        for wallet in relevant:
            payments.extend(payments_by_wallet.get(wallet.id, []))

        return LedgerSnapshot(
            users=users,
            wallets_by_user=wallets_by_user,
            wallet_roles=wallet_roles,
            owner_map=build_wallet_owner_map(users, wallets_by_user),
            payments=payments,
            payments_by_wallet=payments_by_wallet,
            failed_wallets={w.key for w in payment_warnings},
            warnings=warnings,
        )

    # -------------------------------------------------------------------------
    # Feed
    # -------------------------------------------------------------------------

    def load_feed(
        self,
        since: float = 0.0,
        current_user_id: Optional[str] = None,
        use_cache: bool = True
    ) -> FeedResult:
        """
        Load the reconciled activity feed.

        One feed is cached per process. A request is served from it when the
        cached pass started at or before `since`, so the result may hold
        events older than `since`; apply the window when presenting.

        Args:
            since: Epoch seconds cutoff for payment fetches (0 for all)
            current_user_id: Ledger id of the signed-in user, whose wallet
                             fetch failure is fatal
            use_cache: Serve from and store into the cache

        Raises:
            UpstreamUnavailable: if the pass cannot be completed
        """
        since = since or 0.0

        if use_cache:
            cached = self.cache.get(FEED_CACHE_KEY)
            if cached is not None and cached.covers(since, current_user_id):
                logger.debug(f"Loading feed from cache (fetched since {int(cached.since)})")
                return cached
        elif self.cache.invalidate(FEED_CACHE_KEY):
            logger.debug("Dropped cached feed")

        snapshot = self.collect(since, current_user_id, use_cache)
        events, summary = self.reconciler.reconcile(
            snapshot.payments, snapshot.wallet_roles, snapshot.owner_map, snapshot.users
        )
        summary['warnings'] = len(snapshot.warnings)

        result = FeedResult(
            events=events,
            users=snapshot.users,
            summary=summary,
            warnings=snapshot.warnings,
            since=since,
        )
        self.cache.set(FEED_CACHE_KEY, result)
        return result

    def find_current_user(self, external_id: str) -> User:
        """
        Resolve the signed-in user from their external identity reference.

        Raises:
            UpstreamUnavailable: if the roster cannot be loaded or has no
                                 user with that identity
        """
        current_user = find_user_by_external_id(self.load_users(), external_id)
        if current_user is None:
            raise UpstreamUnavailable(f"No ledger user found for identity {external_id}")
        return current_user

    def load_team(self) -> Tuple[List[TeamMember], List[UpstreamPartialFailure]]:
        """
        Load every teammate with their wallet balances.

        A user whose wallets cannot be fetched is listed without balances.

        Returns:
            Tuple of (members sorted by name, warnings)

        Raises:
            UpstreamUnavailable: if the roster cannot be loaded
        """
        users = self.load_users()
        wallets_by_user, warnings = self.fetch_wallets(users)
        return build_team_roster(users, wallets_by_user, self.rules), warnings

    def load_wallet_log(
        self,
        external_id: str,
        wallet_role: WalletRole = WalletRole.SOURCE,
        direction: str = "all",
        since: float = 0.0
    ) -> List[WalletLogEntry]:
        """
        Load the activity log of the current user's wallet.

        Args:
            external_id: External identity reference of the current user
            wallet_role: Which of the user's wallets to show
            direction: "all", "sent" or "received"
            since: Epoch seconds cutoff (0 for all)

        Raises:
            UpstreamUnavailable: if the current user, their wallet or its
                                 payments cannot be loaded
        """
        current_user = self.find_current_user(external_id)

        snapshot = self.collect(since, current_user_id=current_user.id)
        wallet = find_wallet_by_role(snapshot.wallets_by_user.get(current_user.id, []), wallet_role, self.rules)
        if wallet is None:
            raise UpstreamUnavailable(f"No {wallet_role.value} wallet found for {current_user.display_name}")

        if wallet.id in snapshot.failed_wallets:
            raise UpstreamUnavailable(f"Unable to load transactions for wallet {wallet.id}")

        return build_wallet_log(
            snapshot.payments_by_wallet.get(wallet.id, []),
            index_by_checking_id(snapshot.payments, self.reconciler.internal_prefix),
            snapshot.owner_map,
            snapshot.users,
            direction=direction,
            internal_prefix=self.reconciler.internal_prefix,
        )

    def logout(self) -> None:
        """Drop cached data and credentials."""
        self.cache.clear()
        self.client.invalidate_session()
