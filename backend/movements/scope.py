"""
Store Scope Resolver

Decides which movement records an actor may see, from the actor's assigned
stores and the record's stores and status. The same rules are available as
a pure predicate (visible_to) for single records and as a queryset filter
(scope_queryset) for list endpoints. Actions look records up through
actionable_queryset, so a record the actor may not see is simply not found.

Views over store requests:
- request: the store asking for stock sees the record in every status
- issue:   the store fulfilling it sees it only once approved
- detail (no view given): request view, issue view, or the initiating store

The issuing store decides on a submitted request before it can see it;
approve and reject are the only actions that reach past the detail view.

An actor with no assigned stores sees nothing.
"""

from django.db import models
from django.db.models import Q

from .workflow import Kind, Status, Action, ISSUE_VIEW_STATUSES

APPROVAL_DECISIONS = frozenset({Action.APPROVE, Action.REJECT})


class View(models.TextChoices):
    REQUEST = 'request', 'Request view'
    ISSUE = 'issue', 'Issue view'


def _store_ids(actor):
    if actor is None:
        return frozenset()
    return frozenset(getattr(actor, 'store_ids', None) or ())


def visible_to(actor, record, view=None):
    """
    Decide whether `actor` may see `record` in the given view.

    Args:
        actor: Object exposing `store_ids` (iterable of store ids)
        record: MovementRecord (or anything with the same store/status attributes)
        view: View.REQUEST, View.ISSUE or None for the detail view

    Returns:
        bool
    """
    store_ids = _store_ids(actor)
    if not store_ids:
        return False

    if record.kind == Kind.PHYSICAL_INVENTORY:
        return record.store_id in store_ids

    in_request_view = record.requesting_store_id in store_ids
    in_issue_view = (
        record.issuing_store_id in store_ids and record.status in ISSUE_VIEW_STATUSES
    )

    if view == View.REQUEST:
        return in_request_view
    if view == View.ISSUE:
        return in_issue_view
    return in_request_view or in_issue_view or record.initiating_store_id in store_ids


def _visible_condition(store_ids, view=None):
    physical = Q(kind=Kind.PHYSICAL_INVENTORY, store_id__in=store_ids)
    request_view = Q(kind=Kind.STORE_REQUEST_ISSUE, requesting_store_id__in=store_ids)
    issue_view = Q(
        kind=Kind.STORE_REQUEST_ISSUE,
        issuing_store_id__in=store_ids,
        status__in=sorted(ISSUE_VIEW_STATUSES),
    )

    if view == View.REQUEST:
        return physical | request_view
    if view == View.ISSUE:
        return physical | issue_view
    initiated = Q(
        kind=Kind.STORE_REQUEST_ISSUE,
        request_type='issue',
        issuing_store_id__in=store_ids,
    )
    return physical | request_view | issue_view | initiated


def scope_queryset(queryset, actor, view=None):
    """
    Restrict a MovementRecord queryset to what `actor` may see.

    Mirrors visible_to() as a database filter.
    """
    store_ids = _store_ids(actor)
    if not store_ids:
        return queryset.none()
    return queryset.filter(_visible_condition(sorted(store_ids), view))


def actionable_queryset(queryset, actor, action=None):
    """
    Records the actor may look up before performing `action`.

    That is what the actor may see, plus submitted store requests addressed
    to the actor's stores when the action is an approval decision. Anything
    else is reported as not found, never as an illegal action.
    """
    store_ids = _store_ids(actor)
    if not store_ids:
        return queryset.none()

    store_ids = sorted(store_ids)
    condition = _visible_condition(store_ids)
    if action in APPROVAL_DECISIONS:
        condition |= Q(
            kind=Kind.STORE_REQUEST_ISSUE,
            status=Status.SUBMITTED,
            issuing_store_id__in=store_ids,
        )
    return queryset.filter(condition)
