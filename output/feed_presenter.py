"""
Presentation of reconciled transfers: sorting, time filtering and paging.
"""
import math
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from config import PAGE_SIZE
from ledger.models import TransferEvent

SORT_FIELDS = ('time', 'from', 'to', 'amount')
SORT_ORDERS = ('asc', 'desc')


@dataclass
class FeedPage:
    """One page of the feed, ready for display."""
    events: List[TransferEvent]
    page: int
    page_count: int
    total: int

    @property
    def label(self) -> str:
        return f"Page {self.page} of {self.page_count}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'events': [e.to_dict() for e in self.events],
            'page': self.page,
            'page_count': self.page_count,
            'total': self.total,
        }


def _display_name(user) -> str:
    return user.display_name.casefold() if user and user.display_name else ''


_SORT_KEYS: Dict[str, Callable[[TransferEvent], Any]] = {
    'time': lambda e: e.timestamp or 0.0,
    'from': lambda e: _display_name(e.sender),
    'to': lambda e: _display_name(e.recipient),
    'amount': lambda e: e.amount,
}


def sort_events(events: List[TransferEvent], sort_field: str = 'time', sort_order: str = 'desc') -> List[TransferEvent]:
    """
    Sort events by field. Stable in both directions: equal keys keep their
    original relative order.

    Raises:
        ValueError: on an unknown field or order
    """
    if sort_field not in _SORT_KEYS:
        raise ValueError(f"Unknown sort field: {sort_field}. Use one of {', '.join(SORT_FIELDS)}")
    if sort_order not in SORT_ORDERS:
        raise ValueError(f"Unknown sort order: {sort_order}. Use 'asc' or 'desc'")

    return sorted(events, key=_SORT_KEYS[sort_field], reverse=(sort_order == 'desc'))


def filter_by_time(events: List[TransferEvent], cutoff: Optional[float]) -> List[TransferEvent]:
    """
    Keep events at or after `cutoff` (epoch seconds). A zero or missing
    cutoff keeps everything; events with no usable time are dropped when
    filtering.
    """
    if not cutoff or cutoff <= 0:
        return list(events)
    return [e for e in events if e.timestamp is not None and e.timestamp >= cutoff]


def page_count_for(total: int, page_size: int) -> int:
    """Number of pages for `total` items; never less than 1."""
    if page_size <= 0:
        raise ValueError("Page size must be positive")
    return max(1, math.ceil(total / page_size))


def paginate(events: List[TransferEvent], page: int, page_size: int = PAGE_SIZE) -> FeedPage:
    """
    Cut one page out of `events`. Pages are 1-based; out-of-range requests
    clamp to the first or last page.
    """
    page_count = page_count_for(len(events), page_size)
    page = min(max(1, page), page_count)
    start = (page - 1) * page_size
    return FeedPage(
        events=events[start:start + page_size],
        page=page,
        page_count=page_count,
        total=len(events),
    )


def present(
    events: List[TransferEvent],
    sort_field: str = 'time',
    sort_order: str = 'desc',
    time_window_cutoff: Optional[float] = None,
    page: int = 1,
    page_size: int = PAGE_SIZE
) -> FeedPage:
    """
    Filter, sort and paginate reconciled events for display.

    Args:
        events: Reconciled events (any order)
        sort_field: 'time', 'from', 'to' or 'amount'
        sort_order: 'asc' or 'desc'
        time_window_cutoff: Epoch seconds; 0/None disables filtering
        page: 1-based page number (clamped)
        page_size: Events per page

    Returns:
        The requested FeedPage
    """
    filtered = filter_by_time(events, time_window_cutoff)
    ordered = sort_events(filtered, sort_field, sort_order)
    return paginate(ordered, page, page_size)


def toggle_sort(current_field: str, current_order: str, clicked_field: str) -> Tuple[str, str]:
    """
    Header-click sorting: clicking the active field flips the order, a new
    field starts ascending.
    """
    if clicked_field == current_field:
        return current_field, 'asc' if current_order == 'desc' else 'desc'
    return clicked_field, 'asc'
