"""
Tests for dashboard counters (movements.stats).
"""

from decimal import Decimal

from django.test import SimpleTestCase, TestCase

from movements.models import MovementRecord
from movements.services import MovementWorkflowService
from movements.stats import compute_stats, stats_for_queryset
from movements.workflow import Kind, Status, statuses_for
from .base import MovementFixturesMixin


class ComputeStatsTest(SimpleTestCase):

    def test_empty_input(self):
        stats = compute_stats([], kind=Kind.PHYSICAL_INVENTORY)
        self.assertEqual(stats['total'], 0)
        self.assertEqual(stats['total_value'], Decimal('0.00'))
        for status in statuses_for(Kind.PHYSICAL_INVENTORY):
            self.assertEqual(stats[status], 0)
        self.assertNotIn(Status.PARTIAL_ISSUED, stats)

    def test_counts_and_value(self):
        rows = [
            (Status.DRAFT, Decimal('100.00')),
            (Status.APPROVED, Decimal('250.50')),
            (Status.APPROVED, Decimal('10.00')),
            (Status.REJECTED, Decimal('999.00')),
            (Status.CANCELLED, Decimal('50.00')),
            (Status.PARTIAL_ISSUED_CANCELLED, Decimal('25.00')),
        ]
        stats = compute_stats(rows)

        self.assertEqual(stats['total'], 6)
        self.assertEqual(stats['approved'], 2)
        self.assertEqual(stats['rejected'], 1)
        self.assertEqual(stats['fulfilled'], 0)
        # Rejected and cancelled records carry no value
        self.assertEqual(stats['total_value'], Decimal('360.50'))

    def test_status_counts_add_up_to_total(self):
        rows = [(status, Decimal('1.00')) for status in Status.values] * 2
        stats = compute_stats(rows)
        self.assertEqual(sum(stats[status] for status in Status.values), stats['total'])


class StatsForQuerysetTest(MovementFixturesMixin, TestCase):

    @classmethod
    def setUpTestData(cls):
        cls.create_fixtures()

    def test_stats_follow_scope(self):
        self.make_request()
        submitted = self.make_request(lines=[{'product_id': self.product_y.id, 'quantity_requested': 2}])
        MovementWorkflowService.submit(submitted.id, self.branch_clerk)

        requester = stats_for_queryset(
            MovementWorkflowService.list_records(self.branch_clerk, view='request'),
            kind=Kind.STORE_REQUEST_ISSUE
        )
        self.assertEqual(requester['total'], 2)
        self.assertEqual(requester['draft'], 1)
        self.assertEqual(requester['submitted'], 1)
        self.assertEqual(requester['total_value'], Decimal('1051.00'))

        issuer = stats_for_queryset(
            MovementWorkflowService.list_records(self.main_manager, view='issue'),
            kind=Kind.STORE_REQUEST_ISSUE
        )
        self.assertEqual(issuer['total'], 0)

    def test_stats_recomputed_after_transition(self):
        record = self.make_request()
        queryset = MovementRecord.objects.filter(pk=record.pk)
        self.assertEqual(stats_for_queryset(queryset)['draft'], 1)

        MovementWorkflowService.cancel(record.id, self.branch_clerk)

        stats = stats_for_queryset(queryset)
        self.assertEqual(stats['draft'], 0)
        self.assertEqual(stats['cancelled'], 1)
        self.assertEqual(stats['total_value'], Decimal('0.00'))
