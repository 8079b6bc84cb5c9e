"""
Tests for the create_default_stores management command.
"""

from io import StringIO

from django.core.management import call_command
from django.test import TestCase

from movements.auth import staff_for_api_key
from movements.models import Store, StaffMember


class CreateDefaultStoresTest(TestCase):

    def run_command(self, *args):
        out = StringIO()
        call_command('create_default_stores', *args, stdout=out, no_color=True)
        return out.getvalue()

    def test_creates_stores_and_admin(self):
        output = self.run_command('--admin-name', 'Jane Doe')

        self.assertEqual(
            set(Store.objects.values_list('code', flat=True)),
            {'MAIN', 'BR-01', 'BR-02', 'PH-01'}
        )
        admin = StaffMember.objects.get(name='Jane Doe')
        self.assertEqual(admin.role, StaffMember.Role.ADMIN)
        self.assertEqual(admin.stores.count(), 4)

        # The printed key authenticates the admin
        key_line = next(line for line in output.splitlines() if 'API key' in line)
        plain_key = key_line.split(':', 1)[1].strip()
        self.assertEqual(staff_for_api_key(plain_key), admin)

    def test_idempotent(self):
        self.run_command()
        output = self.run_command()

        self.assertEqual(Store.objects.count(), 4)
        self.assertEqual(StaffMember.objects.filter(role=StaffMember.Role.ADMIN).count(), 1)
        self.assertIn('Already exists', output)
        self.assertNotIn('API key', output)
