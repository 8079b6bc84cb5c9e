"""
Custom exceptions for the store movement workflow.

Every exception is raised before anything is committed, so a caller that
receives one can rely on the record being exactly as it was.
"""

from rest_framework.exceptions import APIException
from rest_framework import status


class InvalidTransition(APIException):
    """
    Exception raised when an action is not legal for the record's current status.
    Never retried automatically.
    """
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'Invalid status transition.'
    default_code = 'invalid_transition'

    def __init__(self, current_status, action, detail=None):
        self.current_status = str(current_status)
        self.action = str(action)
        if detail is None:
            detail = {
                'error': f"Cannot {self.action} a record that is {self.current_status}",
                'current_status': self.current_status,
                'action': self.action,
            }
        super().__init__(detail)


class Forbidden(APIException):
    """
    Exception raised when the actor lacks the role or store assignment an action needs.
    """
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = 'You are not allowed to perform this action.'
    default_code = 'forbidden'


class ValidationFailed(APIException):
    """
    Exception raised for missing reasons, empty line items or malformed quantities.
    Detail is a field -> message mapping.
    """
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Validation failed.'
    default_code = 'validation_failed'


class OverIssue(APIException):
    """
    Exception raised when an issue event would push quantity_issued past quantity_requested.
    The whole event is rejected.
    """
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Issued quantity would exceed the requested quantity.'
    default_code = 'over_issue'


class OverReceive(APIException):
    """
    Exception raised when a receipt event would push quantity_received past quantity_issued.
    The whole event is rejected.
    """
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Received quantity would exceed the issued quantity.'
    default_code = 'over_receive'


class SideEffectFailed(APIException):
    """
    Exception raised when the stock/accounting posting fails.
    The transition was rolled back and may be retried with the same request.
    """
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_detail = 'Posting the movement failed. The action was not applied; retry it.'
    default_code = 'side_effect_failed'

    def __init__(self, detail=None, code=None):
        if detail is None:
            detail = {'error': self.default_detail, 'retryable': True}
        super().__init__(detail, code)


class NotFound(APIException):
    """
    Exception raised when a record does not exist or is outside the actor's stores.
    Both cases produce the same response.
    """
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = 'Movement record not found.'
    default_code = 'not_found'
