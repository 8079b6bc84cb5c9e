from rest_framework.authentication import BaseAuthentication
from rest_framework.exceptions import AuthenticationFailed
from django.contrib.auth.hashers import check_password
from .models import StaffMember


class AuthenticatedStaff:
    """Wrapper for StaffMember to make it compatible with DRF's authentication system"""
    def __init__(self, staff):
        self.staff = staff
        self.is_authenticated = True
        self.is_active = staff.is_active

    def __getattr__(self, name):
        # Delegate all other attribute access to the wrapped staff member
        return getattr(self.staff, name)

    def __str__(self):
        return str(self.staff)


def staff_for_api_key(api_key):
    """Find the active staff member whose hashed key matches, or None."""
    if not api_key:
        return None
    for staff in StaffMember.objects.filter(is_active=True):
        if check_password(api_key, staff.api_key):
            return staff
    return None


class StaffAPIKeyAuthentication(BaseAuthentication):
    """
    Authentication using a per-staff API key (X-STAFF-KEY header).
    Looks up the staff member by matching the API key hash.
    """
    def authenticate(self, request):
        api_key = request.headers.get('X-STAFF-KEY')
        if not api_key:
            return None

        staff = staff_for_api_key(api_key)
        if staff is None:
            raise AuthenticationFailed('Invalid API Key')
        return (AuthenticatedStaff(staff), None)

    def authenticate_header(self, request):
        return 'X-STAFF-KEY'
