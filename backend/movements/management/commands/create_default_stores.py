"""
Management command to create default stores and an administrator.

This command creates a main warehouse and branch stores if they don't
already exist, plus an admin staff member assigned to all of them. The
admin's API key is printed once, when the admin is first created.
It's safe to run multiple times (idempotent).

Usage:
    python manage.py create_default_stores
    python manage.py create_default_stores --admin-name "Jane Doe" --admin-email jane@example.com
"""

import secrets

from django.contrib.auth.hashers import make_password
from django.core.management.base import BaseCommand
from django.db import transaction

from movements.models import Store, StaffMember


DEFAULT_STORES = [
    {'name': 'Main Warehouse', 'code': 'MAIN'},
    {'name': 'Branch Store 1', 'code': 'BR-01'},
    {'name': 'Branch Store 2', 'code': 'BR-02'},
    {'name': 'Pharmacy Store', 'code': 'PH-01'},
]


class Command(BaseCommand):
    help = 'Creates default stores and an administrator assigned to all of them'

    def add_arguments(self, parser):
        parser.add_argument('--admin-name', default='Administrator', help='Name of the admin staff member')
        parser.add_argument('--admin-email', default='', help='Email of the admin staff member')

    @transaction.atomic
    def handle(self, *args, **options):
        """Create default stores and the admin if they don't exist."""
        created_count = 0
        existing_count = 0

        self.stdout.write(self.style.WARNING('\n' + '=' * 80))
        self.stdout.write(self.style.WARNING('Creating Default Stores'))
        self.stdout.write(self.style.WARNING('=' * 80 + '\n'))

        stores = []
        for store_data in DEFAULT_STORES:
            store, created = Store.objects.get_or_create(code=store_data['code'], defaults=store_data)
            stores.append(store)
            if created:
                created_count += 1
                self.stdout.write(self.style.SUCCESS(f'✓ Created: {store.name} ({store.code})'))
            else:
                existing_count += 1
                self.stdout.write(self.style.WARNING(f'○ Already exists: {store.name} ({store.code})'))

        admin = StaffMember.objects.filter(name=options['admin_name'], role=StaffMember.Role.ADMIN).first()
        if admin is None:
            plain_api_key = secrets.token_urlsafe(32)
            admin = StaffMember.objects.create(
                name=options['admin_name'],
                email=options['admin_email'],
                role=StaffMember.Role.ADMIN,
                api_key=make_password(plain_api_key),
            )
            self.stdout.write(self.style.SUCCESS(f'\n✓ Created admin: {admin.name}'))
            self.stdout.write(self.style.WARNING(f'  API key (shown once): {plain_api_key}'))
        else:
            self.stdout.write(self.style.WARNING(f'\n○ Admin already exists: {admin.name}'))
        admin.stores.add(*stores)

        self.stdout.write(self.style.WARNING('\n' + '=' * 80))
        self.stdout.write(self.style.SUCCESS(f'\n✓ Created {created_count} new store(s)'))
        self.stdout.write(self.style.WARNING(f'○ Found {existing_count} existing store(s)'))
