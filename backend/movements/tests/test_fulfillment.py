"""
Tests for partial fulfillment (movements.fulfillment).

Lines are plain namespaces here; the functions only read and bump the
quantity attributes.
"""

from types import SimpleNamespace

from django.test import SimpleTestCase
from hypothesis import given, strategies as st

from utils.exceptions import ValidationFailed, OverIssue, OverReceive
from movements.fulfillment import (
    apply_issue_event, apply_receipt_event, derive_status, fulfillment_summary
)
from movements.workflow import Status, Action


def make_line(product_id, requested, issued=0, received=0, approved=None):
    return SimpleNamespace(
        product_id=product_id,
        quantity_requested=requested,
        quantity_approved=approved,
        quantity_issued=issued,
        quantity_received=received,
    )


def snapshot(lines):
    return [(line.quantity_issued, line.quantity_received) for line in lines]


class IssueEventTest(SimpleTestCase):

    def test_partial_then_full_issue(self):
        lines = [make_line(1, 100)]

        changes, status = apply_issue_event(lines, [{'product_id': 1, 'quantity': 60}])
        self.assertEqual(status, Status.PARTIAL_ISSUED)
        self.assertEqual(lines[0].quantity_issued, 60)
        self.assertEqual(changes[0]['previous_quantity'], 0)
        self.assertEqual(changes[0]['new_quantity'], 60)

        changes, status = apply_issue_event(lines, [{'product_id': 1, 'quantity': 40}], current=status)
        self.assertEqual(status, Status.FULFILLED)
        self.assertEqual(lines[0].quantity_issued, 100)
        self.assertEqual(changes[0]['quantity'], 40)

    def test_over_issue_rejects_the_whole_event(self):
        lines = [make_line(1, 100, issued=60), make_line(2, 10)]
        before = snapshot(lines)

        with self.assertRaises(OverIssue) as ctx:
            apply_issue_event(
                lines,
                [{'product_id': 2, 'quantity': 5}, {'product_id': 1, 'quantity': 70}],
                current=Status.PARTIAL_ISSUED
            )

        self.assertEqual(snapshot(lines), before)
        self.assertEqual(ctx.exception.status_code, 400)
        over = ctx.exception.detail['lines']
        self.assertEqual(len(over), 1)
        # APIException details hold strings
        self.assertEqual(over[0]['product_id'], '1')
        self.assertEqual(over[0]['attempted'], '70')
        self.assertEqual(over[0]['remaining'], '40')

    def test_issue_everything_outstanding_when_quantities_omitted(self):
        lines = [make_line(1, 100, issued=60), make_line(2, 10)]

        changes, status = apply_issue_event(lines, None, current=Status.PARTIAL_ISSUED)

        self.assertEqual(status, Status.FULFILLED)
        self.assertEqual({c['line'].product_id: c['quantity'] for c in changes}, {1: 40, 2: 10})

    def test_nothing_left_to_issue(self):
        lines = [make_line(1, 10, issued=10)]
        with self.assertRaises(ValidationFailed):
            apply_issue_event(lines, None)

    def test_empty_event_is_rejected(self):
        with self.assertRaises(ValidationFailed):
            apply_issue_event([make_line(1, 10)], [])

    def test_malformed_entries(self):
        lines = [make_line(1, 10)]
        bad_events = [
            [{'product_id': 99, 'quantity': 1}],
            [{'product_id': 1, 'quantity': 0}],
            [{'product_id': 1, 'quantity': -3}],
            [{'product_id': 1, 'quantity': 1.5}],
            [{'product_id': 1, 'quantity': True}],
            [{'product_id': 1, 'quantity': 1}, {'product_id': 1, 'quantity': 1}],
        ]
        for event in bad_events:
            with self.assertRaises(ValidationFailed, msg=str(event)):
                apply_issue_event(lines, event)
            self.assertEqual(lines[0].quantity_issued, 0)

    def test_issue_capped_by_approved_quantity(self):
        lines = [make_line(1, 100, approved=80)]

        with self.assertRaises(OverIssue) as ctx:
            apply_issue_event(lines, [{'product_id': 1, 'quantity': 90}])
        self.assertEqual(lines[0].quantity_issued, 0)
        self.assertEqual(ctx.exception.detail['lines'][0]['quantity_approved'], '80')

        changes, status = apply_issue_event(lines, [{'product_id': 1, 'quantity': 80}])
        self.assertEqual(status, Status.FULFILLED)

    def test_lines_approved_at_zero_are_skipped(self):
        lines = [make_line(1, 10, approved=0), make_line(2, 5, approved=5)]

        changes, status = apply_issue_event(lines, None)

        self.assertEqual([c['line'].product_id for c in changes], [2])
        self.assertEqual(status, Status.FULFILLED)

    def test_error_keys_point_at_the_entry(self):
        lines = [make_line(1, 10), make_line(2, 10)]
        with self.assertRaises(ValidationFailed) as ctx:
            apply_issue_event(lines, [{'product_id': 1, 'quantity': 1}, {'product_id': 7, 'quantity': 1}])
        self.assertIn('line_issues[1]', ctx.exception.detail)


class ReceiptEventTest(SimpleTestCase):

    def test_receipt_capped_by_issued_not_requested(self):
        lines = [make_line(1, 100, issued=60)]
        with self.assertRaises(OverReceive):
            apply_receipt_event(lines, [{'product_id': 1, 'quantity': 61}])
        self.assertEqual(lines[0].quantity_received, 0)

    def test_partial_receipt(self):
        lines = [make_line(1, 100, issued=60)]
        changes, status = apply_receipt_event(lines, [{'product_id': 1, 'quantity': 60}])
        self.assertEqual(status, Status.PARTIALLY_RECEIVED)
        self.assertEqual(lines[0].quantity_received, 60)

    def test_full_receipt_completes_the_request(self):
        lines = [make_line(1, 10, issued=10, received=4), make_line(2, 5, issued=5)]
        changes, status = apply_receipt_event(lines, None, current=Status.FULFILLED)
        self.assertEqual(status, Status.FULLY_RECEIVED)
        self.assertEqual({c['line'].product_id: c['quantity'] for c in changes}, {1: 6, 2: 5})

    def test_nothing_left_to_receive(self):
        with self.assertRaises(ValidationFailed):
            apply_receipt_event([make_line(1, 10, issued=3, received=3)], None)


class DeriveStatusTest(SimpleTestCase):

    def test_nothing_issued_keeps_current(self):
        self.assertEqual(derive_status([make_line(1, 10)], Status.APPROVED), Status.APPROVED)

    def test_after_issue(self):
        self.assertEqual(
            derive_status([make_line(1, 10, issued=10), make_line(2, 5, issued=1)], Status.APPROVED),
            Status.PARTIAL_ISSUED
        )
        self.assertEqual(
            derive_status([make_line(1, 10, issued=10), make_line(2, 5, issued=5)], Status.APPROVED),
            Status.FULFILLED
        )

    def test_after_receipt(self):
        lines = [make_line(1, 10, issued=6, received=6)]
        self.assertEqual(derive_status(lines, Status.PARTIAL_ISSUED, Action.RECEIVE), Status.PARTIALLY_RECEIVED)
        lines[0].quantity_issued = 10
        lines[0].quantity_received = 9
        self.assertEqual(derive_status(lines, Status.FULFILLED, Action.RECEIVE), Status.FULFILLED)
        lines[0].quantity_received = 10
        self.assertEqual(derive_status(lines, Status.FULFILLED, Action.RECEIVE), Status.FULLY_RECEIVED)

    def test_approved_quantity_sets_the_finish_line(self):
        lines = [make_line(1, 10, issued=8, approved=8), make_line(2, 5, approved=0)]
        self.assertEqual(derive_status(lines, Status.PARTIAL_ISSUED), Status.FULFILLED)

    def test_summary(self):
        summary = fulfillment_summary([make_line(1, 10, issued=6, received=2), make_line(2, 5)])
        self.assertEqual(summary, {
            'quantity_requested': 15,
            'quantity_approved': 15,
            'quantity_issued': 6,
            'quantity_received': 2,
            'remaining_to_issue': 9,
            'remaining_to_receive': 4,
        })


event_entries = st.lists(
    st.fixed_dictionaries({
        'product_id': st.integers(min_value=1, max_value=3),
        'quantity': st.integers(min_value=-2, max_value=60),
    }),
    max_size=3,
)


class RandomFulfillmentEventsTest(SimpleTestCase):
    """Arbitrary issue/receipt events never break the quantity caps."""

    @given(
        st.lists(st.integers(min_value=1, max_value=50), min_size=1, max_size=3),
        st.lists(st.tuples(st.booleans(), st.one_of(st.none(), event_entries)), max_size=15),
    )
    def test_caps_hold_and_failed_events_change_nothing(self, requested, events):
        lines = [make_line(index + 1, quantity) for index, quantity in enumerate(requested)]
        status = Status.APPROVED

        for is_issue, entries in events:
            before = snapshot(lines)
            try:
                if is_issue:
                    _, status = apply_issue_event(lines, entries, current=status)
                else:
                    _, status = apply_receipt_event(lines, entries, current=status)
            except (ValidationFailed, OverIssue, OverReceive):
                self.assertEqual(snapshot(lines), before)

            for line in lines:
                self.assertLessEqual(line.quantity_issued, line.quantity_requested)
                self.assertLessEqual(line.quantity_received, line.quantity_issued)
                self.assertGreaterEqual(line.quantity_received, 0)
