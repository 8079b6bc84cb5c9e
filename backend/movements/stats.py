"""
Dashboard counters for movement list screens.

Always computed from the rows handed in; nothing is cached between calls.
"""

from decimal import Decimal

from .workflow import Status, VALUELESS_STATUSES, statuses_for


def compute_stats(rows, kind=None):
    """
    Count records per status and sum their value.

    Args:
        rows: Iterable of (status, total_value) pairs, already scoped and filtered,
              e.g. queryset.values_list('status', 'total_value')
        kind: Limit the counters to the statuses of one kind; all statuses when None

    Returns:
        dict: {'total': int, '<status>': int, ..., 'total_value': Decimal}
    """
    statuses = statuses_for(kind) if kind else Status.values
    stats = {'total': 0}
    for status in sorted(statuses):
        stats[str(status)] = 0
    total_value = Decimal('0.00')

    for status, value in rows:
        stats['total'] += 1
        stats[status] = stats.get(status, 0) + 1
        if status not in VALUELESS_STATUSES:
            total_value += value or Decimal('0.00')

    stats['total_value'] = total_value
    return stats


def stats_for_queryset(queryset, kind=None):
    return compute_stats(queryset.order_by().values_list('status', 'total_value'), kind=kind)
