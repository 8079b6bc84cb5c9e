"""
Partial Fulfillment Calculator

Tracks issued and received quantities per line of a store request across
any number of issue/receipt events, and derives the record status from
the per-line totals.

Business Rules:
- quantity_issued never exceeds the issue cap of its line: the approved
  quantity once the request is approved, the requested quantity before
- quantity_received never exceeds quantity_issued
- An event is validated as a whole before any line is touched; one bad
  entry rejects the entire event
- Omitting the quantities of an event means "everything outstanding"

Functions here only mutate the line objects passed in. Persisting them is
the caller's job (see services.workflow_service).
"""

from typing import Dict, List, Optional

from utils.exceptions import ValidationFailed, OverIssue, OverReceive
from .workflow import Status, Action


def issue_cap(line) -> int:
    """Most that may ever be issued on a line."""
    approved = getattr(line, 'quantity_approved', None)
    if approved is None:
        return line.quantity_requested
    return approved


def remaining_to_issue(line) -> int:
    return issue_cap(line) - line.quantity_issued


def remaining_to_receive(line) -> int:
    return line.quantity_issued - line.quantity_received


def _is_positive_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def _outstanding(lines, remaining) -> List[Dict]:
    return [
        {'product_id': line.product_id, 'quantity': remaining(line)}
        for line in lines
        if remaining(line) > 0
    ]


def _validate_event(lines, entries, remaining, field, over_error, cap_name, cap):
    """
    Check every entry of an event before anything is applied.

    Returns:
        List of (line, quantity) pairs in entry order

    Raises:
        ValidationFailed: Empty event, unknown product, duplicate or non-positive quantity
        OverIssue / OverReceive: Some entry exceeds what is left on its line
    """
    if not entries:
        raise ValidationFailed({field: 'At least one line quantity is required'})

    lines_by_product = {line.product_id: line for line in lines}
    errors = {}
    seen = set()
    pairs = []

    for index, entry in enumerate(entries):
        product_id = entry.get('product_id')
        quantity = entry.get('quantity')

        if product_id not in lines_by_product:
            errors[f'{field}[{index}]'] = f'Product {product_id} is not on this record'
            continue
        if product_id in seen:
            errors[f'{field}[{index}]'] = f'Product {product_id} appears more than once'
            continue
        seen.add(product_id)
        if not _is_positive_int(quantity):
            errors[f'{field}[{index}]'] = 'Quantity must be a positive whole number'
            continue
        pairs.append((lines_by_product[product_id], quantity))

    if errors:
        raise ValidationFailed(errors)

    over = []
    for line, quantity in pairs:
        left = remaining(line)
        if quantity > left:
            over.append({
                'product_id': line.product_id,
                cap_name: cap(line),
                'attempted': quantity,
                'remaining': left,
            })
    if over:
        raise over_error({'error': over_error.default_detail, 'lines': over})

    return pairs


def _apply(pairs, attribute) -> List[Dict]:
    changes = []
    for line, quantity in pairs:
        previous = getattr(line, attribute)
        setattr(line, attribute, previous + quantity)
        changes.append({
            'line': line,
            'quantity': quantity,
            'previous_quantity': previous,
            'new_quantity': previous + quantity,
        })
    return changes


def apply_issue_event(lines, line_issues: Optional[List[Dict]] = None, current=Status.APPROVED):
    """
    Record an issue event against the lines of a store request.

    Args:
        lines: Line items with product_id, quantity_requested, quantity_issued
               and optionally quantity_approved
        line_issues: [{'product_id': ..., 'quantity': ...}], or None to issue
                     everything still outstanding
        current: Record status before the event

    Returns:
        (changes, new_status) where changes lists one dict per touched line

    Raises:
        ValidationFailed: Malformed event or nothing left to issue
        OverIssue: An entry would push quantity_issued past the issue cap
    """
    lines = list(lines)
    if line_issues is None:
        line_issues = _outstanding(lines, remaining_to_issue)
        if not line_issues:
            raise ValidationFailed({'line_issues': 'Nothing left to issue'})

    pairs = _validate_event(
        lines, line_issues, remaining_to_issue, 'line_issues', OverIssue, 'quantity_approved', issue_cap
    )
    changes = _apply(pairs, 'quantity_issued')
    return changes, derive_status(lines, current, Action.FULFILL)


def apply_receipt_event(lines, line_receipts: Optional[List[Dict]] = None, current=Status.PARTIAL_ISSUED):
    """
    Record a receipt event against the lines of a store request.

    Receipts are capped by what was issued, not by what was requested.

    Raises:
        ValidationFailed: Malformed event or nothing left to receive
        OverReceive: An entry would push quantity_received past quantity_issued
    """
    lines = list(lines)
    if line_receipts is None:
        line_receipts = _outstanding(lines, remaining_to_receive)
        if not line_receipts:
            raise ValidationFailed({'line_receipts': 'Nothing left to receive'})

    pairs = _validate_event(
        lines, line_receipts, remaining_to_receive, 'line_receipts', OverReceive, 'quantity_issued',
        lambda line: line.quantity_issued
    )
    changes = _apply(pairs, 'quantity_received')
    return changes, derive_status(lines, current, Action.RECEIVE)


def derive_status(lines, current, action=Action.FULFILL):
    """
    Aggregate status of a store request from its per-line totals.

    - nothing issued yet: unchanged
    - after an issue: every line fully issued -> fulfilled, else partial_issued
    - after a receipt: every line fully received -> fully_received; every
      line fully issued -> fulfilled; else partially_received
    """
    lines = list(lines)
    if not any(line.quantity_issued for line in lines):
        return current

    fully_issued = all(line.quantity_issued >= issue_cap(line) for line in lines)
    if action == Action.RECEIVE:
        if fully_issued and all(line.quantity_received >= line.quantity_issued for line in lines):
            return Status.FULLY_RECEIVED
        if fully_issued:
            return Status.FULFILLED
        return Status.PARTIALLY_RECEIVED

    if fully_issued:
        return Status.FULFILLED
    return Status.PARTIAL_ISSUED


def fulfillment_summary(lines) -> Dict:
    """Totals shown alongside a store request."""
    lines = list(lines)
    return {
        'quantity_requested': sum(line.quantity_requested for line in lines),
        'quantity_approved': sum(issue_cap(line) for line in lines),
        'quantity_issued': sum(line.quantity_issued for line in lines),
        'quantity_received': sum(line.quantity_received for line in lines),
        'remaining_to_issue': sum(remaining_to_issue(line) for line in lines),
        'remaining_to_receive': sum(remaining_to_receive(line) for line in lines),
    }
