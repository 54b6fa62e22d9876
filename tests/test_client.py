"""
Tests for the LNbits client and record parsing, with HTTP mocked out.
"""
import os
import sys
import unittest
from unittest.mock import MagicMock

import requests

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from ledger.client import AuthSession, LNbitsClient
from ledger.errors import ConfigurationError, MalformedRecord, UpstreamError
from ledger.models import LedgerPayment, PaymentExtra, User, Wallet, display_name_from_username

NODE_URL = "https://ledger.example.com"


def make_response(status_code=200, data=None, bad_json=False):
    """Build a mocked requests response."""
    response = MagicMock()
    response.status_code = status_code
    response.ok = status_code < 400
    if bad_json:
        response.json.side_effect = ValueError("No JSON")
    else:
        response.json.return_value = data
    return response


class RoutedSession:
    """Session stand-in answering by (method, path)."""

    def __init__(self, routes):
        self.routes = routes
        self.requests = []

    def request(self, method, url, headers=None, timeout=None, **kwargs):
        path = url[len(NODE_URL):]
        self.requests.append({'method': method, 'path': path, 'headers': headers, **kwargs})
        route = self.routes[(method, path)]
        if isinstance(route, Exception):
            raise route
        return route


AUTH_ROUTE = ('POST', '/api/v1/auth')


class TestLNbitsClient(unittest.TestCase):
    """Test LNbits API calls."""

    def make_client(self, routes):
        routes.setdefault(AUTH_ROUTE, make_response(data={'access_token': 'tok-1'}))
        self.session = RoutedSession(routes)
        return LNbitsClient(NODE_URL, "admin", "secret", timeout=5, payments_limit=50, session=self.session)

    def test_requires_url(self):
        """Test a missing node URL is a configuration error."""
        with self.assertRaises(ConfigurationError):
            LNbitsClient("", "admin", "secret")

    def test_list_users_with_bearer(self):
        """Test users are fetched with the bearer token."""
        client = self.make_client({
            ('GET', '/users/api/v1/user'): make_response(data={'data': [
                {'id': 'u1', 'username': 'jane.doe@example.com', 'extra': {'aadObjectId': 'aad-1'}},
                {'username': 'no-id'},
            ]}),
        })
        users = client.list_users()

        self.assertEqual(len(users), 1)
        self.assertEqual(users[0].display_name, "Jane Doe")
        self.assertEqual(users[0].external_id, "aad-1")
        self.assertEqual(self.session.requests[1]['headers']['Authorization'], "Bearer tok-1")

    def test_token_reused(self):
        """Test the token is fetched once for several calls."""
        client = self.make_client({
            ('GET', '/users/api/v1/user'): make_response(data=[{'id': 'u1'}]),
        })
        client.list_users()
        client.list_users()

        auth_calls = [r for r in self.session.requests if r['path'] == '/api/v1/auth']
        self.assertEqual(len(auth_calls), 1)

    def test_invalidate_session(self):
        """Test invalidation forces a new token."""
        client = self.make_client({
            ('GET', '/users/api/v1/user'): make_response(data=[{'id': 'u1'}]),
        })
        client.list_users()
        client.invalidate_session()
        client.list_users()

        auth_calls = [r for r in self.session.requests if r['path'] == '/api/v1/auth']
        self.assertEqual(len(auth_calls), 2)

    def test_missing_token(self):
        """Test an auth response without a token fails."""
        client = self.make_client({
            AUTH_ROUTE: make_response(data={}),
            ('GET', '/users/api/v1/user'): make_response(data=[]),
        })
        with self.assertRaises(UpstreamError):
            client.list_users()

    def test_wallets_skip_deleted(self):
        """Test deleted wallets are filtered out."""
        client = self.make_client({
            ('GET', '/users/api/v1/user/u1/wallet'): make_response(data=[
                {'id': 'w1', 'user': 'u1', 'name': 'A - Allowance', 'inkey': 'k1'},
                {'id': 'w2', 'user': 'u1', 'name': 'A - Old', 'inkey': 'k2', 'deleted': True},
            ]),
        })
        wallets = client.list_wallets_for_user('u1')

        self.assertEqual([w.id for w in wallets], ['w1'])
        self.assertEqual(wallets[0].in_key, 'k1')

    def test_payments_with_read_key(self):
        """Test payments are fetched with the wallet key and filtered by time."""
        client = self.make_client({
            ('GET', '/api/v1/payments'): make_response(data=[
                {'checking_id': 'internal_a', 'wallet_id': 'w1', 'amount': -5000, 'time': 1700000000},
                {'checking_id': 'b', 'wallet_id': 'w1', 'amount': 2000, 'time': '2023-11-13T22:13:20.000Z'},
                {'checking_id': 'c', 'wallet_id': 'w1', 'amount': 'n/a', 'time': 1700000000},
            ]),
        })
        payments = client.list_payments_since('k1', 1699999000)

        self.assertEqual([p.checking_id for p in payments], ['internal_a'])
        request = self.session.requests[0]
        self.assertEqual(request['headers']['X-Api-Key'], 'k1')
        self.assertEqual(request['params'], {'limit': 50})

    def test_http_error(self):
        """Test a non-2xx status raises UpstreamError with the status."""
        client = self.make_client({
            ('GET', '/api/v1/payments'): make_response(status_code=503),
        })
        with self.assertRaises(UpstreamError) as ctx:
            client.list_payments_since('k1', 0)
        self.assertEqual(ctx.exception.status_code, 503)

    def test_network_error(self):
        """Test connection errors are wrapped."""
        client = self.make_client({
            ('GET', '/api/v1/payments'): requests.ConnectionError("refused"),
        })
        with self.assertRaises(UpstreamError):
            client.list_payments_since('k1', 0)

    def test_non_json_body(self):
        """Test a non-JSON body is an upstream error."""
        client = self.make_client({
            ('GET', '/api/v1/payments'): make_response(bad_json=True),
        })
        with self.assertRaises(UpstreamError):
            client.list_payments_since('k1', 0)

    def test_create_and_pay_invoice(self):
        """Test originating a transfer uses the invoice and pay calls."""
        client = self.make_client({
            ('POST', '/api/v1/payments'): make_response(data={'payment_request': 'lnbc10n1'}),
        })
        self.assertEqual(client.create_transfer_invoice('k2', 10, 'thanks'), 'lnbc10n1')
        client.pay_invoice('admin-k1', 'lnbc10n1')

        invoice, payment = self.session.requests
        self.assertEqual(invoice['json'], {'out': False, 'amount': 10, 'memo': 'thanks'})
        self.assertEqual(payment['json'], {'out': True, 'bolt11': 'lnbc10n1'})
        self.assertEqual(payment['headers']['X-Api-Key'], 'admin-k1')


class TestAuthSession(unittest.TestCase):
    """Test token caching."""

    def test_expiry(self):
        """Test an expired token is fetched again."""
        fetch = MagicMock(side_effect=['t1', 't2'])
        session = AuthSession('admin', 'secret', expiry_hours=1)

        self.assertEqual(session.token(fetch), 't1')
        self.assertEqual(session.token(fetch), 't1')
        session._issued_at -= 2 * 3600
        self.assertEqual(session.token(fetch), 't2')
        fetch.assert_called_with('admin', 'secret')


class TestRecordParsing(unittest.TestCase):
    """Test building models from raw records."""

    def test_display_name(self):
        """Test e-mail usernames become display names."""
        self.assertEqual(display_name_from_username("jane.doe@example.com"), "Jane Doe")
        self.assertEqual(display_name_from_username("satoshi"), "satoshi")

    def test_user_requires_id(self):
        """Test a user record without id is malformed."""
        with self.assertRaises(MalformedRecord):
            User.from_dict({'username': 'x'})

    def test_wallet_requires_id(self):
        """Test a wallet record without id is malformed."""
        with self.assertRaises(MalformedRecord):
            Wallet.from_dict({'name': 'A - Allowance'})

    def test_payment_fields(self):
        """Test checking id fallbacks and metadata parsing."""
        payment = LedgerPayment.from_dict({
            'payment_hash': 'abc',
            'wallet_id': 'w1',
            'amount': '-5000',
            'extra': '{"tag": "zap", "to": {"user": "u2", "wallet": "w9"}}',
        })
        self.assertEqual(payment.checking_id, 'abc')
        self.assertEqual(payment.amount, -5000)
        self.assertTrue(payment.is_outgoing)
        self.assertEqual(payment.extra.tag, 'zap')
        self.assertEqual(payment.extra.recipient_user_id, 'u2')
        self.assertEqual(payment.extra.recipient_wallet_id, 'w9')

    def test_payment_requires_amount(self):
        """Test a payment without amount is malformed."""
        with self.assertRaises(MalformedRecord):
            LedgerPayment.from_dict({'checking_id': 'a', 'wallet_id': 'w1'})

    def test_extra_garbage_ignored(self):
        """Test unreadable metadata becomes empty metadata."""
        self.assertEqual(PaymentExtra.from_raw("{not json"), PaymentExtra())
        self.assertEqual(PaymentExtra.from_raw(["x"]), PaymentExtra())
        self.assertEqual(PaymentExtra.from_raw({'from': 'u1'}).sender_user_id, 'u1')


if __name__ == '__main__':
    unittest.main()
