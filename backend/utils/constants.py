"""
Constants used throughout the application.
"""

# Movement Status Colors
# Using Tailwind CSS color palette for consistency
STATUS_COLORS = {
    'draft': '#6B7280',                     # Gray-500 - Being prepared
    'submitted': '#3B82F6',                 # Blue-500 - Awaiting approval
    'approved': '#10B981',                  # Green-500 - Ready to act on
    'rejected': '#EF4444',                  # Red-500 - Closed, rejected
    'returned_for_correction': '#F97316',   # Orange-500 - Back with the counter
    'partial_issued': '#F59E0B',            # Amber-500 - Partly issued
    'partially_received': '#8B5CF6',        # Purple-500 - Partly received
    'fulfilled': '#A855F7',                 # Purple-400 - Fully issued
    'fully_received': '#059669',            # Emerald-600 - Complete
    'cancelled': '#9CA3AF',                 # Gray-400 - Closed
    'partial_issued_cancelled': '#78716C',  # Stone-500 - Closed after a partial issue
}

# Status Icons (optional, for frontend use)
STATUS_ICONS = {
    'draft': '📝',
    'submitted': '📨',
    'approved': '✅',
    'rejected': '❌',
    'returned_for_correction': '↩️',
    'partial_issued': '📦',
    'partially_received': '📥',
    'fulfilled': '🚚',
    'fully_received': '🏁',
    'cancelled': '🚫',
    'partial_issued_cancelled': '⛔',
}

# Roles allowed to approve, reject, return and accept variances
APPROVER_ROLES = ('admin', 'manager')

REFERENCE_PREFIXES = {
    'physical_inventory': 'PI',
    'store_request_issue': 'SR',
}
