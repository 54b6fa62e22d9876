"""
Output module: feed presentation, statistics and Excel export.
"""
from .feed_presenter import FeedPage, present, sort_events, paginate
from .zap_stats import compute_zap_stats, sender_leaderboard

__all__ = ['FeedPage', 'present', 'sort_events', 'paginate', 'compute_zap_stats', 'sender_leaderboard']
