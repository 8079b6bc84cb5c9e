"""
Services package for movement workflow business logic.
"""
from .workflow_service import MovementWorkflowService
from .posting_service import LocalStockPoster, get_posting_backend

__all__ = ['MovementWorkflowService', 'LocalStockPoster', 'get_posting_backend']
