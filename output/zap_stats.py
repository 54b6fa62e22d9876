"""
Summary statistics over reconciled transfers.
"""
import math
from typing import Any, Dict, List

import pandas as pd

from ledger.models import TransferEvent, User
from normalizer.amount_parser import MSAT_PER_SAT

SECONDS_PER_DAY = 24 * 60 * 60


def events_to_frame(events: List[TransferEvent]) -> pd.DataFrame:
    """
    Flatten events into a DataFrame with one row per transfer.

    Columns: timestamp, sender_id, sender, recipient_id, recipient,
    amount_msat, memo.
    """
    rows = [
        {
            'timestamp': e.timestamp,
            'sender_id': e.sender.id if e.sender else None,
            'sender': e.sender.display_name if e.sender else 'Unknown',
            'recipient_id': e.recipient.id if e.recipient else None,
            'recipient': e.recipient.display_name if e.recipient else 'Unknown',
            'amount_msat': e.amount,
            'memo': e.memo,
        }
        for e in events
    ]
    columns = ['timestamp', 'sender_id', 'sender', 'recipient_id', 'recipient', 'amount_msat', 'memo']
    return pd.DataFrame(rows, columns=columns)


def compute_zap_stats(events: List[TransferEvent], users: List[User], now: float) -> Dict[str, Any]:
    """
    Compute the feed totals panel.

    Args:
        events: Reconciled transfers
        users: The user roster
        now: Current time in epoch seconds

    Returns:
        Dictionary with total_sats, transfer_count, number_of_users,
        number_of_days, average_per_user, average_per_day, biggest_zap
        (amounts in whole sats, floored)
    """
    number_of_users = len(users)
    stats = {
        'total_sats': 0,
        'transfer_count': 0,
        'number_of_users': number_of_users,
        'number_of_days': 0,
        'average_per_user': 0,
        'average_per_day': 0,
        'biggest_zap': 0,
    }

    df = events_to_frame(events)
    if df.empty:
        return stats

    total_sats = df['amount_msat'].sum() / MSAT_PER_SAT
    stats['total_sats'] = int(math.floor(total_sats))
    stats['transfer_count'] = int(len(df))
    stats['biggest_zap'] = int(math.floor(df['amount_msat'].max() / MSAT_PER_SAT))

    times = df['timestamp'].dropna()
    if not times.empty:
        days = (now - float(times.min())) / SECONDS_PER_DAY
        stats['number_of_days'] = max(0, int(math.floor(days)))

    if number_of_users:
        stats['average_per_user'] = int(math.floor(total_sats / number_of_users))
    if stats['number_of_days']:
        stats['average_per_day'] = int(math.floor(total_sats / stats['number_of_days']))

    return stats


def sender_leaderboard(events: List[TransferEvent], limit: int = 10) -> pd.DataFrame:
    """
    Rank senders by total sats sent.

    Returns:
        DataFrame with columns sender, transfers, total_sats, biggest_sats,
        sorted by total_sats descending (ties by sender name)
    """
    df = events_to_frame(events)
    columns = ['sender', 'transfers', 'total_sats', 'biggest_sats']
    if df.empty:
        return pd.DataFrame(columns=columns)

    grouped = df.groupby('sender', sort=True)['amount_msat'].agg(['count', 'sum', 'max']).reset_index()
    grouped.columns = ['sender', 'transfers', 'total_msat', 'biggest_msat']
    grouped['total_sats'] = grouped['total_msat'] // MSAT_PER_SAT
    grouped['biggest_sats'] = grouped['biggest_msat'] // MSAT_PER_SAT

    ranked = grouped.sort_values(['total_sats', 'sender'], ascending=[False, True], kind='mergesort')
    return ranked[columns].head(limit).reset_index(drop=True)


def monthly_totals(events: List[TransferEvent]) -> pd.DataFrame:
    """
    Sum transfers per calendar month (UTC).

    Returns:
        DataFrame with columns month ("YYYY-MM"), transfers, total_sats
    """
    df = events_to_frame(events).dropna(subset=['timestamp'])
    columns = ['month', 'transfers', 'total_sats']
    if df.empty:
        return pd.DataFrame(columns=columns)

    df['month'] = pd.to_datetime(df['timestamp'], unit='s', utc=True).dt.strftime('%Y-%m')
    grouped = df.groupby('month', sort=True)['amount_msat'].agg(['count', 'sum']).reset_index()
    grouped.columns = ['month', 'transfers', 'total_msat']
    grouped['total_sats'] = grouped['total_msat'] // MSAT_PER_SAT
    return grouped[columns]
