"""
Movement Status Machine

The one transition table for both movement kinds. The workflow service,
model validation, serializers and tests all read it from here.

Physical inventory:
    draft -> submitted -> approved | rejected | returned_for_correction
    returned_for_correction -> submitted
    approved -> approved (accept_variance)

Store request/issue:
    draft -> submitted -> approved | rejected
    approved -> fulfilled | partial_issued (fulfill)
    partial_issued / partially_received -> fulfilled | partial_issued (fulfill)
    partial_issued / partially_received -> partially_received (receive)
    fulfilled -> fulfilled | fully_received (receive)
    draft / submitted / approved -> cancelled
    partial_issued / partially_received -> partial_issued_cancelled
"""

from django.db import models

from utils.exceptions import InvalidTransition


class Kind(models.TextChoices):
    PHYSICAL_INVENTORY = 'physical_inventory', 'Physical Inventory'
    STORE_REQUEST_ISSUE = 'store_request_issue', 'Store Request/Issue'


class Status(models.TextChoices):
    DRAFT = 'draft', 'Draft'
    SUBMITTED = 'submitted', 'Submitted'
    APPROVED = 'approved', 'Approved'
    REJECTED = 'rejected', 'Rejected'
    RETURNED_FOR_CORRECTION = 'returned_for_correction', 'Returned for Correction'
    PARTIAL_ISSUED = 'partial_issued', 'Partial Issued'
    PARTIALLY_RECEIVED = 'partially_received', 'Partially Received'
    FULFILLED = 'fulfilled', 'Fulfilled'
    FULLY_RECEIVED = 'fully_received', 'Fully Received'
    CANCELLED = 'cancelled', 'Cancelled'
    PARTIAL_ISSUED_CANCELLED = 'partial_issued_cancelled', 'Partial Issued (Cancelled)'


class Action(models.TextChoices):
    SUBMIT = 'submit', 'Submit'
    APPROVE = 'approve', 'Approve'
    REJECT = 'reject', 'Reject'
    RETURN_FOR_CORRECTION = 'return_for_correction', 'Return for Correction'
    FULFILL = 'fulfill', 'Fulfill'
    RECEIVE = 'receive', 'Receive'
    CANCEL = 'cancel', 'Cancel'
    ACCEPT_VARIANCE = 'accept_variance', 'Accept Variance'
    UPDATE = 'update', 'Update'
    DELETE = 'delete', 'Delete'


PHYSICAL_INVENTORY_TRANSITIONS = {
    Status.DRAFT: {
        Action.SUBMIT: (Status.SUBMITTED,),
    },
    Status.SUBMITTED: {
        Action.APPROVE: (Status.APPROVED,),
        Action.REJECT: (Status.REJECTED,),
        Action.RETURN_FOR_CORRECTION: (Status.RETURNED_FOR_CORRECTION,),
    },
    Status.RETURNED_FOR_CORRECTION: {
        Action.SUBMIT: (Status.SUBMITTED,),
    },
    Status.APPROVED: {
        Action.ACCEPT_VARIANCE: (Status.APPROVED,),
    },
    Status.REJECTED: {},
}

STORE_REQUEST_TRANSITIONS = {
    Status.DRAFT: {
        Action.SUBMIT: (Status.SUBMITTED,),
        Action.CANCEL: (Status.CANCELLED,),
    },
    Status.SUBMITTED: {
        Action.APPROVE: (Status.APPROVED,),
        Action.REJECT: (Status.REJECTED,),
        Action.CANCEL: (Status.CANCELLED,),
    },
    Status.APPROVED: {
        Action.FULFILL: (Status.FULFILLED, Status.PARTIAL_ISSUED),
        Action.CANCEL: (Status.CANCELLED,),
    },
    Status.PARTIAL_ISSUED: {
        Action.FULFILL: (Status.FULFILLED, Status.PARTIAL_ISSUED),
        Action.RECEIVE: (Status.PARTIALLY_RECEIVED,),
        Action.CANCEL: (Status.PARTIAL_ISSUED_CANCELLED,),
    },
    Status.PARTIALLY_RECEIVED: {
        Action.FULFILL: (Status.FULFILLED, Status.PARTIAL_ISSUED),
        Action.RECEIVE: (Status.PARTIALLY_RECEIVED,),
        Action.CANCEL: (Status.PARTIAL_ISSUED_CANCELLED,),
    },
    # Everything approved has been issued; receipts may still be outstanding
    Status.FULFILLED: {
        Action.RECEIVE: (Status.FULFILLED, Status.FULLY_RECEIVED),
    },
    Status.FULLY_RECEIVED: {},
    Status.REJECTED: {},
    Status.CANCELLED: {},
    Status.PARTIAL_ISSUED_CANCELLED: {},
}

TRANSITIONS = {
    Kind.PHYSICAL_INVENTORY: PHYSICAL_INVENTORY_TRANSITIONS,
    Kind.STORE_REQUEST_ISSUE: STORE_REQUEST_TRANSITIONS,
}

# Statuses in which header fields and line items may still be edited
EDITABLE_STATUSES = {
    Kind.PHYSICAL_INVENTORY: frozenset({Status.DRAFT, Status.RETURNED_FOR_CORRECTION}),
    Kind.STORE_REQUEST_ISSUE: frozenset({Status.DRAFT}),
}

DELETABLE_STATUSES = frozenset({Status.DRAFT})

# Statuses a store request is shown in to the issuing store
ISSUE_VIEW_STATUSES = frozenset({
    Status.APPROVED,
    Status.FULFILLED,
    Status.FULLY_RECEIVED,
    Status.PARTIAL_ISSUED,
    Status.PARTIALLY_RECEIVED,
    Status.CANCELLED,
    Status.PARTIAL_ISSUED_CANCELLED,
})

# Statuses excluded from total value in stats
VALUELESS_STATUSES = frozenset({
    Status.REJECTED,
    Status.CANCELLED,
    Status.PARTIAL_ISSUED_CANCELLED,
})

# Actions that call the posting backend
POSTING_ACTIONS = {
    Kind.PHYSICAL_INVENTORY: frozenset({Action.APPROVE, Action.ACCEPT_VARIANCE}),
    Kind.STORE_REQUEST_ISSUE: frozenset({Action.FULFILL, Action.RECEIVE}),
}


def statuses_for(kind):
    """Return the statuses a record of this kind can be in."""
    return frozenset(TRANSITIONS[kind])


def allowed_actions(kind, status):
    """
    List the actions legal for a record of `kind` in `status`.

    Includes the content actions (update, delete) as well as transitions,
    so clients can render their buttons from a single call.
    """
    actions = list(TRANSITIONS[kind].get(status, {}))
    if status in EDITABLE_STATUSES[kind]:
        actions.append(Action.UPDATE)
    if status in DELETABLE_STATUSES:
        actions.append(Action.DELETE)
    return actions


def targets(kind, status, action):
    """
    Return the statuses `action` may lead to from `status`.

    Raises:
        InvalidTransition: If the action is not legal from this status
    """
    outcomes = TRANSITIONS[kind].get(status, {}).get(action)
    if not outcomes:
        raise InvalidTransition(status, action)
    return outcomes


def ensure_editable(kind, status):
    if status not in EDITABLE_STATUSES[kind]:
        raise InvalidTransition(status, Action.UPDATE)


def ensure_deletable(status):
    if status not in DELETABLE_STATUSES:
        raise InvalidTransition(status, Action.DELETE)


def is_documented_edge(kind, from_status, to_status):
    """Check whether any action moves a record of `kind` from one status to the other."""
    for outcomes in TRANSITIONS[kind].get(from_status, {}).values():
        if to_status in outcomes:
            return True
    return False


def reachable_statuses(kind, start=Status.DRAFT):
    """Every status reachable from `start` by following the table."""
    seen = {start}
    frontier = [start]
    while frontier:
        current = frontier.pop()
        for outcomes in TRANSITIONS[kind].get(current, {}).values():
            for status in outcomes:
                if status not in seen:
                    seen.add(status)
                    frontier.append(status)
    return frozenset(seen)
