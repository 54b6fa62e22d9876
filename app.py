#!/usr/bin/env python3
"""
Zap Activity Feed - Web Interface

A Flask-based JSON API serving the reconciled zap activity feed, feed
statistics, per-wallet activity logs, the team roster and Excel exports.
"""
import atexit
import logging
import os
import shutil
import tempfile
import time
import uuid
from datetime import datetime
from threading import Lock
from typing import Optional

from flask import Flask, jsonify, request, send_file

from classifier.roles import WalletRole
from config import (
    APP_NAME, APP_VERSION, REWARD_NAME, get_config, get_history_cutoff
)
from ledger.errors import ConfigurationError, UpstreamUnavailable
from output.excel_generator import generate_feed_excel
from output.feed_presenter import filter_by_time, present, sort_events
from output.zap_stats import compute_zap_stats, monthly_totals, sender_leaderboard
from reconciler.feed_loader import FeedLoader, FeedResult


# =============================================================================
# Application Configuration
# =============================================================================

app = Flask(__name__)

# Configure logging for production
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Export storage
OUTPUT_FOLDER = tempfile.mkdtemp(prefix='zapfeed_output_')

# Shared loader; built lazily from config (guarded by _loader_lock)
_loader: Optional[FeedLoader] = None
_loader_lock = Lock()


def configure_loader(loader: Optional[FeedLoader]) -> None:
    """Replace the shared feed loader (None rebuilds it from config)."""
    global _loader
    with _loader_lock:
        _loader = loader


def get_loader() -> FeedLoader:
    """Get the shared feed loader."""
    global _loader
    with _loader_lock:
        if _loader is None:
            _loader = FeedLoader.from_config()
        return _loader


def cleanup_on_exit():
    """Clean up the export directory on application exit."""
    shutil.rmtree(OUTPUT_FOLDER, ignore_errors=True)
    logger.info("Cleaned up temporary directories")


# Register cleanup on exit
atexit.register(cleanup_on_exit)


# =============================================================================
# Request Helpers
# =============================================================================

def _int_arg(name: str, default: int) -> int:
    value = request.args.get(name)
    if value is None or value == '':
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"Query parameter '{name}' must be an integer")


def _feed_since(now: float) -> float:
    days = _int_arg('since_days', get_config().get('feed_history_days'))
    return get_history_cutoff(days, now)


def _use_cache() -> bool:
    return request.args.get('refresh', '').lower() not in ('1', 'true', 'yes')


def _load_feed(since: float) -> FeedResult:
    """Load the feed, treating the `user` parameter as the signed-in user."""
    loader = get_loader()
    external_id = request.args.get('user', '').strip()
    current_user_id = loader.find_current_user(external_id).id if external_id else None
    return loader.load_feed(since=since, current_user_id=current_user_id, use_cache=_use_cache())


# =============================================================================
# Routes
# =============================================================================

@app.route('/api/feed')
def get_feed():
    """Return one page of the reconciled activity feed."""
    now = time.time()
    since = _feed_since(now)
    page_size = _int_arg('page_size', get_config().get('page_size'))
    if page_size <= 0:
        raise ValueError("Query parameter 'page_size' must be positive")

    result = _load_feed(since)
    page = present(
        result.events,
        sort_field=request.args.get('sort', 'time'),
        sort_order=request.args.get('order', 'desc'),
        time_window_cutoff=since,
        page=_int_arg('page', 1),
        page_size=page_size,
    )

    logger.info(f"Served feed page {page.page}/{page.page_count} ({page.total} transfers)")

    response = page.to_dict()
    response.update({
        'label': page.label,
        'unit': REWARD_NAME,
        'summary': result.summary,
        'warnings': [str(w) for w in result.warnings],
    })
    return jsonify(response)


@app.route('/api/stats')
def get_stats():
    """Return the feed totals, top senders and monthly totals."""
    now = time.time()
    since = _feed_since(now)
    result = _load_feed(since)
    events = filter_by_time(result.events, since)

    stats = compute_zap_stats(events, result.users, now)
    leaders = sender_leaderboard(events, limit=_int_arg('limit', 10))
    monthly = monthly_totals(events)

    return jsonify({
        'statistics': stats,
        'unit': REWARD_NAME,
        'top_senders': [
            {
                'sender': row.sender,
                'transfers': int(row.transfers),
                'total_sats': int(row.total_sats),
                'biggest_sats': int(row.biggest_sats),
            }
            for row in leaders.itertuples(index=False)
        ],
        'monthly': [
            {'month': row.month, 'transfers': int(row.transfers), 'total_sats': int(row.total_sats)}
            for row in monthly.itertuples(index=False)
        ],
    })


@app.route('/api/wallet-log')
def get_wallet_log():
    """Return the activity log of the given user's wallet."""
    external_id = request.args.get('user', '').strip()
    if not external_id:
        return jsonify({'error': "Query parameter 'user' is required"}), 400

    try:
        wallet_role = WalletRole(request.args.get('wallet', WalletRole.SOURCE.value))
    except ValueError:
        return jsonify({'error': "Query parameter 'wallet' must be 'source' or 'destination'"}), 400
    if wallet_role == WalletRole.NONE:
        return jsonify({'error': "Query parameter 'wallet' must be 'source' or 'destination'"}), 400

    now = time.time()
    days = _int_arg('since_days', get_config().get('wallet_log_days'))
    entries = get_loader().load_wallet_log(
        external_id,
        wallet_role=wallet_role,
        direction=request.args.get('direction', 'all'),
        since=get_history_cutoff(days, now),
    )

    return jsonify({
        'entries': [e.to_dict() for e in entries],
        'total': len(entries),
        'unit': REWARD_NAME,
    })


@app.route('/api/users')
def get_users():
    """Return every teammate with their wallet balances."""
    members, warnings = get_loader().load_team()

    return jsonify({
        'users': [m.to_dict() for m in members],
        'total': len(members),
        'unit': REWARD_NAME,
        'warnings': [str(w) for w in warnings],
    })


@app.route('/api/export')
def export_feed():
    """Download the full feed as an Excel workbook."""
    now = time.time()
    since = _feed_since(now)
    result = _load_feed(since)
    ordered = sort_events(
        filter_by_time(result.events, since),
        request.args.get('sort', 'time'),
        request.args.get('order', 'desc'),
    )

    output_path = os.path.join(OUTPUT_FOLDER, f"feed_{uuid.uuid4().hex[:8]}.xlsx")
    generate_feed_excel(ordered, result.users, output_path, now)

    logger.info(f"Exported {len(ordered)} transfers")

    return send_file(
        output_path,
        as_attachment=True,
        download_name=f"zap_feed_{datetime.now().strftime('%Y%m%d_%H%M%S')}.xlsx"
    )


@app.route('/api/logout', methods=['POST'])
def logout():
    """Drop cached ledger data and the ledger session."""
    get_loader().logout()
    logger.info("Cache and ledger session cleared")
    return jsonify({'success': True})


@app.route('/health')
def health_check():
    """Health check endpoint."""
    return jsonify({
        'status': 'healthy',
        'app': APP_NAME,
        'version': APP_VERSION,
        'timestamp': datetime.now().isoformat()
    })


@app.errorhandler(UpstreamUnavailable)
def upstream_unavailable(e):
    """Handle a fatal ledger failure."""
    logger.error(f"Failed to load activity feed: {e}")
    return jsonify({'error': f"Failed to load activity feed: {e}"}), 502


@app.errorhandler(ConfigurationError)
def configuration_error(e):
    """Handle missing server settings."""
    logger.error(f"Configuration error: {e}")
    return jsonify({'error': str(e)}), 503


@app.errorhandler(ValueError)
def bad_request(e):
    """Handle invalid query parameters."""
    return jsonify({'error': str(e)}), 400


@app.errorhandler(500)
def internal_error(e):
    """Handle internal server error."""
    logger.error(f"Internal server error: {e}")
    return jsonify({
        'error': 'An internal error occurred. Please try again.'
    }), 500


# =============================================================================
# Main Entry Point
# =============================================================================

if __name__ == '__main__':
    port = int(os.environ.get('PORT', 5000))
    debug = os.environ.get('FLASK_DEBUG', 'false').lower() == 'true'

    logger.info(f"Starting {APP_NAME} v{APP_VERSION} on port {port}")

    app.run(host='0.0.0.0', port=port, debug=debug)
