"""
Integration tests for the zap activity feed: web API, CLI and Excel export.
"""
import io
import os
import sys
import tempfile
import unittest
from unittest.mock import patch

import pandas as pd

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import app as web_app
import main as cli
from classifier.roles import get_role_rules
from config import get_config
from output.excel_generator import generate_feed_excel
from reconciler.feed_loader import FeedLoader
from reconciler.transfer_reconciler import TransferReconciler
from ledger_fixtures import BASE_TIME, build_team_ledger, make_transfer


def make_loader(client):
    """Build a loader with fixed rules and limits."""
    return FeedLoader(
        client,
        reconciler=TransferReconciler(
            internal_prefix="internal_",
            excluded_memo="Weekly Allowance cleared",
            max_records=100,
        ),
        max_workers=4,
        rules=get_role_rules(source_names=["Allowance"], destination_names=["Private"]),
    )


def build_busy_ledger():
    """The two-person ledger with 25 transfers from A to B."""
    client = build_team_ledger()
    client.payments = []
    for i in range(25):
        client.payments.extend(make_transfer(f"t{i:02d}", "wa-allow", "wb-priv", 1000 * (i + 1), f"zap {i}", BASE_TIME + i))
    return client


class TestWebAPI(unittest.TestCase):
    """Test the Flask JSON API."""

    def setUp(self):
        """Set up test fixtures."""
        self.ledger = build_busy_ledger()
        self.loader = make_loader(self.ledger)
        web_app.configure_loader(self.loader)
        web_app.app.config['TESTING'] = True
        self.client = web_app.app.test_client()

    def tearDown(self):
        """Reset the shared loader."""
        web_app.configure_loader(None)

    def test_health(self):
        """Test the health endpoint."""
        response = self.client.get('/health')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()['status'], 'healthy')

    def test_feed_pages(self):
        """Test paging through the feed, clamping past the end."""
        response = self.client.get('/api/feed?since_days=0&page=4&page_size=10')
        data = response.get_json()

        self.assertEqual(response.status_code, 200)
        self.assertEqual(data['page'], 3)
        self.assertEqual(data['page_count'], 3)
        self.assertEqual(data['total'], 25)
        self.assertEqual(len(data['events']), 5)
        self.assertEqual(data['label'], "Page 3 of 3")

    def test_feed_sorted(self):
        """Test sorting by amount ascending."""
        data = self.client.get('/api/feed?since_days=0&sort=amount&order=asc').get_json()

        amounts = [e['amount'] for e in data['events']]
        self.assertEqual(amounts, sorted(amounts))
        self.assertEqual(data['events'][0]['from']['display_name'], "Alice Smith")
        self.assertEqual(data['events'][0]['to']['display_name'], "Bob Jones")

    def test_bad_sort_field(self):
        """Test an unknown sort field is a client error."""
        response = self.client.get('/api/feed?since_days=0&sort=memo')
        self.assertEqual(response.status_code, 400)

    def test_bad_integer(self):
        """Test a non-numeric page is a client error."""
        response = self.client.get('/api/feed?page=two')
        self.assertEqual(response.status_code, 400)

    def test_upstream_down(self):
        """Test a fatal ledger failure is one error message."""
        self.ledger.fail_roster = True
        response = self.client.get('/api/feed?since_days=0')

        self.assertEqual(response.status_code, 502)
        self.assertIn("Failed to load activity feed", response.get_json()['error'])

    def test_feed_cached_across_requests(self):
        """Test requests in successive seconds reuse one cached feed."""
        with patch.object(web_app, 'time') as clock:
            for i in range(20):
                clock.time.return_value = BASE_TIME + 86400 + i
                data = self.client.get('/api/feed?since_days=30').get_json()
                self.assertEqual(data['total'], 25)

        self.assertEqual(len(self.loader.cache.names()), 2)
        self.assertEqual(self.ledger.calls['list_payments_since'], 4)

    def test_feed_window_applied_to_cached_feed(self):
        """Test a narrower window filters the wider cached feed."""
        with patch.object(web_app, 'time') as clock:
            clock.time.return_value = BASE_TIME + 86400 + 10
            self.client.get('/api/feed?since_days=0')
            data = self.client.get('/api/feed?since_days=1').get_json()

        self.assertEqual(data['total'], 15)
        self.assertEqual(self.ledger.calls['list_payments_since'], 4)

    def test_current_user_wallet_failure(self):
        """Test the signed-in user's wallet failure aborts the request."""
        self.ledger.failing_users.add("user-a")
        response = self.client.get('/api/feed?since_days=0&user=ext-user-a')

        self.assertEqual(response.status_code, 502)
        self.assertIn("Failed to load activity feed", response.get_json()['error'])

    def test_other_user_wallet_failure(self):
        """Test another user's wallet failure is only a warning."""
        self.ledger.failing_users.add("user-a")
        response = self.client.get('/api/feed?since_days=0&user=ext-user-b')

        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(response.get_json()['warnings']), 1)

    def test_unknown_current_user(self):
        """Test an unknown signed-in user aborts the request."""
        response = self.client.get('/api/feed?since_days=0&user=ext-nobody')
        self.assertEqual(response.status_code, 502)

    def test_users(self):
        """Test the team roster with balances in sats."""
        data = self.client.get('/api/users').get_json()

        self.assertEqual(data['total'], 2)
        self.assertEqual(data['users'][0]['user']['display_name'], "Alice Smith")
        self.assertEqual(data['users'][0]['balance_sats'], 20)
        self.assertEqual(data['users'][0]['allowance_sats'], 95)

    def test_users_wallet_failure(self):
        """Test a teammate whose wallets fail is listed without balances."""
        self.ledger.failing_users.add("user-b")
        data = self.client.get('/api/users').get_json()

        self.assertEqual(data['total'], 2)
        self.assertIsNone(data['users'][1]['balance_sats'])
        self.assertEqual(len(data['warnings']), 1)

    def test_stats(self):
        """Test the statistics endpoint."""
        data = self.client.get('/api/stats?since_days=0').get_json()

        self.assertEqual(data['statistics']['transfer_count'], 25)
        self.assertEqual(data['statistics']['total_sats'], 325)
        self.assertEqual(data['statistics']['biggest_zap'], 25)
        self.assertEqual(data['top_senders'][0]['sender'], "Alice Smith")
        self.assertEqual(data['monthly'], [{'month': '2023-11', 'transfers': 25, 'total_sats': 325}])

    def test_wallet_log(self):
        """Test the wallet log endpoint."""
        data = self.client.get('/api/wallet-log?user=ext-user-b&wallet=destination&since_days=0').get_json()

        self.assertEqual(data['total'], 25)
        self.assertEqual(data['entries'][0]['direction'], 'received')
        self.assertEqual(data['entries'][0]['from']['display_name'], "Alice Smith")

    def test_wallet_log_requires_user(self):
        """Test the wallet log needs a user."""
        self.assertEqual(self.client.get('/api/wallet-log').status_code, 400)
        self.assertEqual(self.client.get('/api/wallet-log?user=x&wallet=savings').status_code, 400)

    def test_export(self):
        """Test the Excel export contains every transfer."""
        response = self.client.get('/api/export?since_days=0')
        self.assertEqual(response.status_code, 200)

        sheets = pd.read_excel(io.BytesIO(response.data), sheet_name=None)
        self.assertEqual(
            list(sheets),
            ["Activity Feed", "Sender Summary", "Monthly Summary", "Statistics"],
        )
        self.assertEqual(len(sheets["Activity Feed"]), 25)
        response.close()

    def test_logout(self):
        """Test logout clears the cache and the session."""
        self.client.get('/api/feed?since_days=0')
        response = self.client.post('/api/logout')

        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.ledger.session_invalidations, 1)

        self.client.get('/api/feed?since_days=0')
        self.assertEqual(self.ledger.calls['list_users'], 2)


class TestServerConfiguration(unittest.TestCase):
    """Test responses when the ledger is not configured."""

    def setUp(self):
        """Point the app at an unset ledger URL."""
        web_app.configure_loader(None)
        get_config().set("ledger_node_url", "")
        web_app.app.config['TESTING'] = True
        self.client = web_app.app.test_client()

    def tearDown(self):
        """Restore defaults."""
        web_app.configure_loader(None)
        get_config().reload()

    def test_missing_node_url_is_server_error(self):
        """Test a missing ledger URL is reported as unavailable, not a bad request."""
        response = self.client.get('/api/feed')

        self.assertEqual(response.status_code, 503)
        self.assertIn("LNBITS_NODE_URL", response.get_json()['error'])

    def test_missing_node_url_cli(self):
        """Test the CLI exits 1 when the ledger URL is missing."""
        with patch('sys.stdout', new_callable=io.StringIO) as stdout:
            code = cli.main(['users'])

        self.assertEqual(code, 1)
        self.assertIn("LNBITS_NODE_URL", stdout.getvalue())


class TestExcelExport(unittest.TestCase):
    """Test the generated workbook."""

    def setUp(self):
        """Set up test fixtures."""
        self.temp_dir = tempfile.mkdtemp()
        self.output_path = os.path.join(self.temp_dir, 'feed.xlsx')

    def tearDown(self):
        """Clean up test files."""
        if os.path.exists(self.output_path):
            os.unlink(self.output_path)
        os.rmdir(self.temp_dir)

    def test_feed_sheet_contents(self):
        """Test feed rows are written in the given order with sats amounts."""
        result = make_loader(build_team_ledger()).load_feed()
        generate_feed_excel(result.events, result.users, self.output_path, BASE_TIME)

        df = pd.read_excel(self.output_path, sheet_name="Activity Feed")
        self.assertEqual(list(df.columns), ["Time (UTC)", "From", "To", "Amount (Sats)", "Memo", "Checking ID"])
        self.assertEqual(df.iloc[0]["From"], "Alice Smith")
        self.assertEqual(df.iloc[0]["To"], "Bob Jones")
        self.assertEqual(df.iloc[0]["Amount (Sats)"], 5)
        self.assertEqual(df.iloc[0]["Memo"], "thanks")

    def test_empty_feed(self):
        """Test an empty feed still produces every sheet."""
        generate_feed_excel([], [], self.output_path, BASE_TIME)

        sheets = pd.read_excel(self.output_path, sheet_name=None)
        self.assertEqual(len(sheets["Activity Feed"]), 0)
        self.assertIn("Statistics", sheets)


class TestCommandLine(unittest.TestCase):
    """Test the command line entry point."""

    def run_cli(self, argv, ledger):
        with patch('sys.stdout', new_callable=io.StringIO) as stdout:
            code = cli.main(argv, loader=make_loader(ledger))
        return code, stdout.getvalue()

    def test_feed_default_command(self):
        """Test the feed runs without an explicit command."""
        code, output = self.run_cli(['--since-days', '0'], build_team_ledger())

        self.assertEqual(code, 0)
        self.assertIn("Alice Smith -> Bob Jones", output)
        self.assertIn("5 Sats", output)
        self.assertIn("Page 1 of 1", output)

    def test_feed_paging(self):
        """Test paging past the end shows the last page."""
        code, output = self.run_cli(['feed', '--since-days', '0', '--page', '4'], build_busy_ledger())

        self.assertEqual(code, 0)
        self.assertIn("Page 3 of 3", output)

    def test_feed_stats_and_output(self):
        """Test statistics and the Excel file."""
        temp_dir = tempfile.mkdtemp()
        output_path = os.path.join(temp_dir, 'feed.xlsx')
        try:
            code, output = self.run_cli(
                ['feed', '--since-days', '0', '--stats', '--output', output_path],
                build_busy_ledger(),
            )
            self.assertEqual(code, 0)
            self.assertIn("Total zaps sent: 325 Sats", output)
            self.assertTrue(os.path.exists(output_path))
        finally:
            if os.path.exists(output_path):
                os.unlink(output_path)
            os.rmdir(temp_dir)

    def test_wallet_log(self):
        """Test the wallet log command."""
        code, output = self.run_cli(
            ['wallet-log', '--user', 'ext-user-a', '--since-days', '0'],
            build_team_ledger(),
        )
        self.assertEqual(code, 0)
        self.assertIn("sent", output)
        self.assertIn("to Bob Jones", output)

    def test_current_user_wallet_failure(self):
        """Test the signed-in user's wallet failure exits 1."""
        ledger = build_team_ledger()
        ledger.failing_users.add("user-a")
        code, output = self.run_cli(['feed', '--since-days', '0', '--user', 'ext-user-a'], ledger)

        self.assertEqual(code, 1)
        self.assertIn("Unable to load your wallets", output)

    def test_users(self):
        """Test the users command lists balances and N/A for failed fetches."""
        ledger = build_team_ledger()
        ledger.failing_users.add("user-b")
        code, output = self.run_cli(['users'], ledger)

        self.assertEqual(code, 0)
        self.assertIn("Alice Smith", output)
        self.assertIn("20 Sats", output)
        self.assertIn("95 Sats", output)
        self.assertIn("N/A", output)

    def test_upstream_down(self):
        """Test a fatal failure prints one error and exits 1."""
        ledger = build_team_ledger()
        ledger.fail_roster = True
        code, output = self.run_cli(['--since-days', '0'], ledger)

        self.assertEqual(code, 1)
        self.assertEqual(output.count("Error:"), 1)
        self.assertIn("Failed to load activity feed", output)


if __name__ == '__main__':
    unittest.main()
