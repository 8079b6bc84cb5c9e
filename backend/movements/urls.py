from django.urls import path
from .views import (
    MovementListCreateView, MovementDetailView, movement_stats, movement_events,
    # Workflow transitions
    submit_movement, approve_movement, reject_movement, return_movement,
    fulfill_movement, receive_movement, cancel_movement, accept_variance,
    # Reference data
    my_stores, store_list, StockMovementListView
)

urlpatterns = [
    path('movements/', MovementListCreateView.as_view(), name='movement-list'),
    path('movements/stats/', movement_stats, name='movement-stats'),
    path('movements/<uuid:pk>/', MovementDetailView.as_view(), name='movement-detail'),
    path('movements/<uuid:pk>/events/', movement_events, name='movement-events'),

    # Workflow transitions
    path('movements/<uuid:pk>/submit/', submit_movement, name='movement-submit'),
    path('movements/<uuid:pk>/approve/', approve_movement, name='movement-approve'),
    path('movements/<uuid:pk>/reject/', reject_movement, name='movement-reject'),
    path('movements/<uuid:pk>/return/', return_movement, name='movement-return'),
    path('movements/<uuid:pk>/fulfill/', fulfill_movement, name='movement-fulfill'),
    path('movements/<uuid:pk>/receive/', receive_movement, name='movement-receive'),
    path('movements/<uuid:pk>/cancel/', cancel_movement, name='movement-cancel'),
    path('movements/<uuid:pk>/accept-variance/', accept_variance, name='movement-accept-variance'),

    # Stores & stock
    path('stores/', my_stores, name='my-stores'),
    path('stores/all/', store_list, name='store-list'),
    path('stock/movements/', StockMovementListView.as_view(), name='stock-movement-list'),
]
