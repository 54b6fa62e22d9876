"""
Ledger API clients.

BaseLedgerClient is the surface the feed loader consumes. LNbitsClient talks
to an LNbits node over HTTP with an operator account.
"""
import logging
import time
from abc import ABC, abstractmethod
from threading import Lock
from typing import Any, Dict, List, Optional

import requests

from config import PAYMENTS_LIMIT, TOKEN_EXPIRY_HOURS, DEFAULT_REQUEST_TIMEOUT
from ledger.errors import ConfigurationError, MalformedRecord, UpstreamError
from ledger.models import LedgerPayment, User, Wallet

logger = logging.getLogger(__name__)


class BaseLedgerClient(ABC):
    """
    Abstract ledger client.
    """

    @abstractmethod
    def list_users(self) -> List[User]:
        """
        Fetch the full user roster.

        Raises:
            UpstreamError: on any failed call or malformed body
        """
        pass

    @abstractmethod
    def list_wallets_for_user(self, user_id: str) -> List[Wallet]:
        """
        Fetch one user's wallets. Deleted wallets may or may not be included.
        """
        pass

    @abstractmethod
    def list_payments_since(self, read_key: str, since: float) -> List[LedgerPayment]:
        """
        Fetch payments of the wallet owning `read_key`.

        Args:
            read_key: Wallet read-only (invoice) key
            since: Epoch seconds cutoff; 0 means all
        """
        pass

    @abstractmethod
    def create_transfer_invoice(
        self,
        in_key: str,
        amount_sats: int,
        memo: str,
        extra: Optional[Dict[str, Any]] = None
    ) -> str:
        """Create an invoice on the recipient wallet and return its payment request."""
        pass

    @abstractmethod
    def pay_invoice(self, admin_key: str, payment_request: str) -> Dict[str, Any]:
        """Pay an invoice from the wallet owning `admin_key`."""
        pass

    def invalidate_session(self) -> None:
        """Forget any cached credentials. Default: nothing cached."""
        pass


class AuthSession:
    """
    Bearer token handle for one operator identity.

    The token is fetched lazily, shared by concurrent callers, and expires
    after TOKEN_EXPIRY_HOURS.
    """

    def __init__(self, username: str, password: str, expiry_hours: int = TOKEN_EXPIRY_HOURS):
        self.username = username
        self.password = password
        self.expiry_seconds = expiry_hours * 3600
        self._token: Optional[str] = None
        self._issued_at: float = 0.0
        self._lock = Lock()

    def token(self, fetch) -> str:
        """
        Get a valid token, calling `fetch(username, password)` if needed.

        Only one fetch runs at a time; callers waiting on the lock reuse its
        result.
        """
        with self._lock:
            if self._token and not self._expired():
                return self._token

            if self._token:
                logger.info("Access token expired, requesting a new one")

            self._token = fetch(self.username, self.password)
            self._issued_at = time.time()
            logger.info(f"Access token fetched (expires in {self.expiry_seconds // 3600} hours)")
            return self._token

    def _expired(self) -> bool:
        return time.time() - self._issued_at > self.expiry_seconds

    def invalidate(self) -> None:
        """Drop the cached token."""
        with self._lock:
            self._token = None
            self._issued_at = 0.0

    @property
    def has_token(self) -> bool:
        with self._lock:
            return self._token is not None and not self._expired()


class LNbitsClient(BaseLedgerClient):
    """
    LNbits ledger client using the users API (bearer token) and the wallet
    API (per-wallet X-Api-Key).
    """

    def __init__(
        self,
        node_url: str,
        username: str,
        password: str,
        timeout: int = DEFAULT_REQUEST_TIMEOUT,
        payments_limit: int = PAYMENTS_LIMIT,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize the client.

        Args:
            node_url: Base URL of the LNbits node
            username: Operator account username
            password: Operator account password
            timeout: Per-request timeout in seconds
            payments_limit: Maximum payments requested per wallet
            session: Optional requests session (for connection reuse/testing)
        """
        if not node_url:
            raise ConfigurationError("LNbits node URL is not configured (set LNBITS_NODE_URL)")

        self.node_url = node_url.rstrip('/')
        self.timeout = timeout
        self.payments_limit = payments_limit
        self.auth = AuthSession(username, password)
        self._http = session or requests.Session()

    # -------------------------------------------------------------------------
    # HTTP plumbing
    # -------------------------------------------------------------------------

    def _request(
        self,
        method: str,
        path: str,
        headers: Optional[Dict[str, str]] = None,
        **kwargs
    ) -> Any:
        url = f"{self.node_url}{path}"
        request_headers = {
            'Content-Type': 'application/json',
            'accept': 'application/json',
        }
        request_headers.update(headers or {})

        try:
            response = self._http.request(
                method, url, headers=request_headers, timeout=self.timeout, **kwargs
            )
        except requests.RequestException as e:
            raise UpstreamError(f"{method} {path} failed: {e}") from e

        if not response.ok:
            raise UpstreamError(
                f"{method} {path} failed (status: {response.status_code})",
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            raise UpstreamError(f"{method} {path} returned a non-JSON body") from e

    def _fetch_token(self, username: str, password: str) -> str:
        data = self._request('POST', '/api/v1/auth', json={'username': username, 'password': password})
        token = data.get('access_token') if isinstance(data, dict) else None
        if not token:
            raise UpstreamError("Access token is missing in the auth response")
        return token

    def _bearer(self) -> Dict[str, str]:
        return {'Authorization': f"Bearer {self.auth.token(self._fetch_token)}"}

    def invalidate_session(self) -> None:
        self.auth.invalidate()

    # -------------------------------------------------------------------------
    # Read API
    # -------------------------------------------------------------------------

    def list_users(self) -> List[User]:
        data = self._request('GET', '/users/api/v1/user', headers=self._bearer())
        rows = _unwrap_list(data, 'data', 'users')
        if rows is None:
            raise UpstreamError("User list response is not a list")

        users = []
        for row in rows:
            try:
                users.append(User.from_dict(row))
            except MalformedRecord as e:
                logger.warning(f"Skipping user record: {e}")
        logger.debug(f"Fetched {len(users)} users")
        return users

    def list_wallets_for_user(self, user_id: str) -> List[Wallet]:
        data = self._request('GET', f"/users/api/v1/user/{user_id}/wallet", headers=self._bearer())
        rows = _unwrap_list(data, 'data', 'wallets')
        if rows is None:
            raise UpstreamError(f"Wallet list response for user {user_id} is not a list")

        wallets = []
        for row in rows:
            try:
                wallet = Wallet.from_dict(row)
            except MalformedRecord as e:
                logger.warning(f"Skipping wallet record: {e}")
                continue
            if not wallet.deleted:
                wallets.append(wallet)
        return wallets

    def list_payments_since(self, read_key: str, since: float) -> List[LedgerPayment]:
        data = self._request(
            'GET',
            '/api/v1/payments',
            headers={'X-Api-Key': read_key},
            params={'limit': self.payments_limit},
        )
        rows = _unwrap_list(data, 'data', 'payments')
        if rows is None:
            raise UpstreamError("Payment list response is not a list")

        payments = []
        for row in rows:
            try:
                payment = LedgerPayment.from_dict(row)
            except MalformedRecord as e:
                logger.warning(f"Skipping payment record: {e}")
                continue

            if since and since > 0:
                ts = payment.timestamp
                if ts is not None and ts < since:
                    continue
            payments.append(payment)
        return payments

    # -------------------------------------------------------------------------
    # Payment API (transfer origination only)
    # -------------------------------------------------------------------------

    def create_transfer_invoice(
        self,
        in_key: str,
        amount_sats: int,
        memo: str,
        extra: Optional[Dict[str, Any]] = None
    ) -> str:
        body: Dict[str, Any] = {
            'out': False,
            'amount': amount_sats,
            'memo': memo,
        }
        if extra:
            body['extra'] = extra

        data = self._request('POST', '/api/v1/payments', headers={'X-Api-Key': in_key}, json=body)
        payment_request = (data.get('payment_request') or data.get('bolt11')) if isinstance(data, dict) else None
        if not payment_request:
            raise UpstreamError("Invoice response has no payment request")
        return payment_request

    def pay_invoice(self, admin_key: str, payment_request: str) -> Dict[str, Any]:
        data = self._request(
            'POST',
            '/api/v1/payments',
            headers={'X-Api-Key': admin_key},
            json={'out': True, 'bolt11': payment_request},
        )
        if not isinstance(data, dict):
            raise UpstreamError("Payment response is not an object")
        return data


def _unwrap_list(data: Any, *keys: str) -> Optional[List[Dict[str, Any]]]:
    """Return the record list from a bare list or a wrapping object."""
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        for key in keys:
            if isinstance(data.get(key), list):
                return data[key]
    return None
