"""
Tests for the movement REST API.

Endpoints:
- GET/POST  /api/v1/movements/
- GET/PATCH/DELETE /api/v1/movements/{id}/
- POST /api/v1/movements/{id}/submit|approve|reject|return|fulfill|receive|cancel|accept-variance/
- GET  /api/v1/movements/stats/
- GET  /api/v1/movements/{id}/events/
- GET  /api/v1/stores/
"""

from django.test import TestCase
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APIClient

from movements.auth import AuthenticatedStaff
from movements.models import MovementRecord, StaffMember
from movements.services import MovementWorkflowService as Service
from .base import MovementFixturesMixin


class StaffKeyAuthenticationTest(MovementFixturesMixin, TestCase):
    """X-STAFF-KEY header authentication"""

    @classmethod
    def setUpTestData(cls):
        cls.create_fixtures()
        cls.api_key = 'test-staff-key-123'
        cls.keyed_staff = cls.make_staff('Kim Keyed', StaffMember.Role.CLERK, [cls.branch], api_key=cls.api_key)

    def setUp(self):
        self.client = APIClient()

    def test_missing_key(self):
        response = self.client.get(reverse('movement-list'))
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_invalid_key(self):
        self.client.credentials(HTTP_X_STAFF_KEY='not-a-key')
        response = self.client.get(reverse('movement-list'))
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_valid_key(self):
        self.client.credentials(HTTP_X_STAFF_KEY=self.api_key)
        response = self.client.get(reverse('my-stores'))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['name'], 'Kim Keyed')
        self.assertEqual([store['code'] for store in response.data['stores']], ['BR-01'])

    def test_inactive_staff_rejected(self):
        StaffMember.objects.filter(pk=self.keyed_staff.pk).update(is_active=False)
        self.client.credentials(HTTP_X_STAFF_KEY=self.api_key)
        response = self.client.get(reverse('my-stores'))
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)


class MovementAPITest(MovementFixturesMixin, TestCase):

    @classmethod
    def setUpTestData(cls):
        cls.create_fixtures()

    def setUp(self):
        """Set up API clients for the requesting and issuing sides"""
        self.requester = APIClient()
        self.requester.force_authenticate(user=AuthenticatedStaff(self.branch_clerk))
        self.issuer = APIClient()
        self.issuer.force_authenticate(user=AuthenticatedStaff(self.main_manager))

    def create_request(self, quantity=100):
        response = self.requester.post(reverse('movement-list'), {
            'kind': 'store_request_issue',
            'requesting_store_id': self.branch.id,
            'issuing_store_id': self.main.id,
            'priority': 'high',
            'line_items': [{'product_id': self.product_x.id, 'quantity_requested': quantity}],
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED, response.data)
        return response.data

    def action(self, client, name, record_id, data=None):
        return client.post(reverse(name, kwargs={'pk': record_id}), data or {}, format='json')

    def test_create_store_request(self):
        data = self.create_request()

        self.assertEqual(data['status'], 'draft')
        self.assertEqual(data['request_type'], 'request')
        self.assertEqual(data['total_value'], '1000.00')
        self.assertEqual(data['allowed_actions'], ['submit', 'cancel', 'update', 'delete'])
        self.assertEqual(data['fulfillment']['remaining_to_issue'], 100)
        self.assertEqual(data['line_items'][0]['product_code'], 'PX-100')

    def test_create_requires_stores_for_kind(self):
        response = self.requester.post(reverse('movement-list'), {
            'kind': 'store_request_issue',
            'requesting_store_id': self.branch.id,
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('issuing_store_id', response.data)

    def test_full_request_flow(self):
        record_id = self.create_request()['id']

        response = self.action(self.requester, 'movement-submit', record_id)
        self.assertEqual(response.data['status'], 'submitted')

        # Not in the issue view until approved
        response = self.issuer.get(reverse('movement-detail', kwargs={'pk': record_id}))
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

        response = self.action(self.issuer, 'movement-approve', record_id, {'notes': 'OK'})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], 'approved')

        response = self.action(self.issuer, 'movement-fulfill', record_id, {
            'line_issues': [{'product_id': self.product_x.id, 'quantity': 60}],
        })
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], 'partial_issued')

        response = self.action(self.issuer, 'movement-fulfill', record_id, {
            'line_issues': [{'product_id': self.product_x.id, 'quantity': 70}],
        })
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(len(response.data['lines']), 1)

        response = self.action(self.requester, 'movement-receive', record_id, {
            'line_receipts': [{'product_id': self.product_x.id, 'quantity': 60}],
        })
        self.assertEqual(response.data['status'], 'partially_received')

        response = self.action(self.issuer, 'movement-fulfill', record_id)
        self.assertEqual(response.data['status'], 'fulfilled')
        self.assertEqual(response.data['fulfillment']['quantity_issued'], 100)

        response = self.requester.get(reverse('movement-events', kwargs={'pk': record_id}))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(
            [event['action'] for event in response.data],
            ['submit', 'approve', 'fulfill', 'receive', 'fulfill']
        )
        self.assertEqual(response.data[2]['line_events'][0]['quantity'], 60)

        response = self.action(self.requester, 'movement-receive', record_id)
        self.assertEqual(response.data['status'], 'fully_received')
        self.assertEqual(response.data['allowed_actions'], [])
        self.assertEqual(self.stock(self.branch, self.product_x), 105)
        self.assertEqual(self.stock(self.main, self.product_x), 400)

    def test_invalid_transition_is_conflict(self):
        record_id = self.create_request()['id']
        response = self.action(self.requester, 'movement-approve', record_id)
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['current_status'], 'draft')
        self.assertEqual(response.data['action'], 'approve')

    def test_unapproved_request_looks_missing_to_issuing_store(self):
        record_id = self.create_request()['id']

        for name in ('movement-approve', 'movement-fulfill', 'movement-cancel'):
            response = self.action(self.issuer, name, record_id)
            self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND, name)
            self.assertNotIn('current_status', response.data)
        response = self.issuer.get(reverse('movement-detail', kwargs={'pk': record_id}))
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_approve_with_reduced_quantities(self):
        record_id = self.create_request()['id']
        self.action(self.requester, 'movement-submit', record_id)

        response = self.action(self.issuer, 'movement-approve', record_id, {
            'approved_items': [{'product_id': self.product_x.id, 'approved_quantity': 150}],
        })
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('approved_items[0]', response.data)

        response = self.action(self.issuer, 'movement-approve', record_id, {
            'approved_items': [{'product_id': self.product_x.id, 'approved_quantity': 80}],
        })
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['line_items'][0]['quantity_approved'], 80)
        self.assertEqual(response.data['fulfillment']['remaining_to_issue'], 80)
        self.assertEqual(response.data['total_value'], '800.00')

        response = self.action(self.issuer, 'movement-fulfill', record_id)
        self.assertEqual(response.data['status'], 'fulfilled')
        self.assertEqual(response.data['fulfillment']['quantity_issued'], 80)

    def test_forbidden_for_wrong_store(self):
        record_id = self.create_request()['id']
        self.action(self.requester, 'movement-submit', record_id)

        response = self.action(self.requester, 'movement-approve', record_id)
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_not_found_for_outsider(self):
        record_id = self.create_request()['id']
        outsider = APIClient()
        outsider.force_authenticate(user=AuthenticatedStaff(self.no_store_manager))

        response = self.action(outsider, 'movement-cancel', record_id)
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        response = outsider.get(reverse('movement-detail', kwargs={'pk': record_id}))
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_reject_with_blank_reason(self):
        record_id = self.create_request()['id']
        self.action(self.requester, 'movement-submit', record_id)

        response = self.action(self.issuer, 'movement-reject', record_id, {'reason': '  '})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('reason', response.data)

        response = self.action(self.issuer, 'movement-reject', record_id, {'reason': 'Out of season'})
        self.assertEqual(response.data['status'], 'rejected')
        self.assertEqual(response.data['rejection_reason'], 'Out of season')

    def test_patch_and_delete_draft(self):
        record_id = self.create_request()['id']
        url = reverse('movement-detail', kwargs={'pk': record_id})

        response = self.requester.patch(url, {'notes': 'Weekend restock'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['notes'], 'Weekend restock')

        response = self.requester.delete(url)
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)
        self.assertFalse(MovementRecord.objects.filter(pk=record_id).exists())

    def test_list_shape_and_views(self):
        draft_id = self.create_request()['id']
        approved = self.make_approved_request(lines=[{'product_id': self.product_y.id, 'quantity_requested': 2}])

        response = self.requester.get(reverse('movement-list'), {'view': 'request', 'kind': 'store_request_issue'})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(set(response.data), {'records', 'pagination', 'stats'})
        self.assertEqual(response.data['pagination']['totalItems'], 2)
        self.assertEqual(response.data['stats']['total'], 2)
        self.assertEqual(response.data['stats']['draft'], 1)
        self.assertEqual(response.data['stats']['approved'], 1)

        response = self.issuer.get(reverse('movement-list'), {'view': 'issue'})
        self.assertEqual([r['id'] for r in response.data['records']], [str(approved.id)])
        self.assertNotIn(draft_id, [r['id'] for r in response.data['records']])

    def test_list_filters(self):
        self.create_request()
        approved = self.make_approved_request(lines=[{'product_id': self.product_y.id, 'quantity_requested': 2}])

        response = self.requester.get(reverse('movement-list'), {'status': 'approved,fulfilled'})
        self.assertEqual([r['id'] for r in response.data['records']], [str(approved.id)])

        response = self.requester.get(reverse('movement-list'), {'search': 'amoxicillin'})
        self.assertEqual([r['id'] for r in response.data['records']], [str(approved.id)])

        response = self.requester.get(reverse('movement-list'), {'exclude_status': 'draft'})
        self.assertEqual(response.data['pagination']['totalItems'], 1)

    def test_unknown_view(self):
        response = self.requester.get(reverse('movement-list'), {'view': 'everything'})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_stats_endpoint(self):
        self.create_request()
        response = self.requester.get(reverse('movement-stats'), {'kind': 'store_request_issue'})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['total'], 1)
        self.assertEqual(response.data['draft'], 1)
        self.assertNotIn('returned_for_correction', response.data)

    def test_physical_inventory_variance(self):
        record = self.make_submitted_count()
        manager = self.issuer

        response = self.action(manager, 'movement-approve', record.id)
        self.assertEqual(response.data['status'], 'approved')
        self.assertIn('accept_variance', response.data['allowed_actions'])

        response = self.action(manager, 'movement-accept-variance', record.id, {
            'variance_notes': 'Shrinkage',
            'total_delta_value': '-72.50',
        })
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['total_delta_value'], '-72.50')

        response = self.action(manager, 'movement-accept-variance', record.id)
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)

    def test_return_for_correction(self):
        record = self.make_submitted_count()
        response = self.action(self.issuer, 'movement-return', record.id, {'reason': 'Recount aisle 4'})
        self.assertEqual(response.data['status'], 'returned_for_correction')
        self.assertTrue(response.data['is_editable'])

    def test_store_list(self):
        response = self.requester.get(reverse('store-list'))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual({store['code'] for store in response.data}, {'MAIN', 'BR-01'})

    def test_stock_movements_scoped_to_own_stores(self):
        record = self.make_approved_request()
        Service.fulfill(record.id, self.main_clerk, [{'product_id': self.product_x.id, 'quantity': 10}])

        response = self.issuer.get(reverse('stock-movement-list'))
        self.assertEqual(len(response.data), 1)
        self.assertEqual(response.data[0]['quantity_change'], -10)

        response = self.requester.get(reverse('stock-movement-list'))
        self.assertEqual(response.data, [])
