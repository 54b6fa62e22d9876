"""Reconciliation module for rebuilding transfers from ledger rows."""
from reconciler.transfer_reconciler import TransferReconciler, strip_internal_prefix
from reconciler.feed_loader import FeedLoader, FeedResult
from reconciler.team_roster import TeamMember, build_team_roster

__all__ = ["TransferReconciler", "strip_internal_prefix", "FeedLoader", "FeedResult", "TeamMember", "build_team_roster"]
