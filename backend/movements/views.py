from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework import status, generics, filters
from rest_framework.decorators import api_view, authentication_classes
from rest_framework.pagination import PageNumberPagination
from django_filters.rest_framework import DjangoFilterBackend

from utils.exceptions import ValidationFailed
from .auth import StaffAPIKeyAuthentication
from .filters import MovementRecordFilter
from .models import Store, StockMovement
from .scope import View
from .serializers import (
    MovementRecordSerializer, MovementCreateSerializer, MovementUpdateSerializer,
    MovementEventSerializer, StoreSerializer, StaffMemberSerializer, StockMovementSerializer,
    NotesSerializer, ApproveSerializer, ReasonSerializer, FulfillSerializer, ReceiveSerializer,
    AcceptVarianceSerializer
)
from .services import MovementWorkflowService
from .stats import stats_for_queryset


def _requested_view(request):
    view = request.query_params.get('view') or None
    if view is not None and view not in View.values:
        raise ValidationFailed({'view': f"Unknown view '{view}'. Use one of: {', '.join(View.values)}"})
    return view


def _record_response(record, status_code=status.HTTP_200_OK):
    # Every mutation answers with the fresh record
    return Response(MovementRecordSerializer(record).data, status=status_code)


class MovementPagination(PageNumberPagination):
    page_size = 20
    page_size_query_param = 'limit'
    max_page_size = 200

    def get_paginated_response(self, data, stats=None):
        return Response({
            'records': data,
            'pagination': {
                'currentPage': self.page.number,
                'totalPages': self.page.paginator.num_pages,
                'totalItems': self.page.paginator.count,
                'pageSize': self.get_page_size(self.request),
            },
            'stats': stats,
        })


class MovementListCreateView(generics.ListCreateAPIView):
    """
    List movement records visible to the caller, or create a draft.

    Query parameters:
    - view: 'request' or 'issue' for the store-request screens; omitted
      means everything the caller may see
    - kind, status, exclude_status, priority, request_type, store_id,
      requesting_store_id, issuing_store_id, date_from, date_to, search
      (see MovementRecordFilter)
    - ordering: e.g. -movement_date, total_value, reference_number
    - page, limit

    Response:
    {
        "records": [...],
        "pagination": {"currentPage", "totalPages", "totalItems", "pageSize"},
        "stats": {"total", "<status>": count, ..., "total_value"}
    }

    Examples:
    - /api/v1/movements/?kind=store_request_issue&view=issue&status=approved,partial_issued
    - /api/v1/movements/?kind=physical_inventory&date_from=2025-01-01&search=MAIN
    """
    authentication_classes = [StaffAPIKeyAuthentication]
    serializer_class = MovementRecordSerializer
    pagination_class = MovementPagination
    filter_backends = [DjangoFilterBackend, filters.OrderingFilter]
    filterset_class = MovementRecordFilter
    ordering_fields = ['created_at', 'movement_date', 'reference_number', 'total_value', 'status', 'priority']
    ordering = ['-created_at']  # Default: newest first

    def get_queryset(self):
        return MovementWorkflowService.list_records(self.request.user, view=_requested_view(self.request))

    def list(self, request, *args, **kwargs):
        queryset = self.filter_queryset(self.get_queryset())
        stats = stats_for_queryset(queryset, kind=request.query_params.get('kind') or None)

        page = self.paginate_queryset(queryset)
        serializer = self.get_serializer(page, many=True)
        return self.paginator.get_paginated_response(serializer.data, stats=stats)

    def create(self, request, *args, **kwargs):
        serializer = MovementCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = dict(serializer.validated_data)
        kind = data.pop('kind')

        record = MovementWorkflowService.create_draft(request.user, kind, data)
        return _record_response(record, status.HTTP_201_CREATED)


class MovementDetailView(APIView):
    """
    Retrieve, edit or delete a single movement record.

    PUT/PATCH only work while the record is editable; DELETE only while draft.
    """
    authentication_classes = [StaffAPIKeyAuthentication]

    def get(self, request, pk):
        return _record_response(MovementWorkflowService.get_record(pk, request.user))

    def put(self, request, pk):
        return self._update(request, pk, partial=False)

    def patch(self, request, pk):
        return self._update(request, pk, partial=True)

    def _update(self, request, pk, partial):
        serializer = MovementUpdateSerializer(data=request.data, partial=partial)
        serializer.is_valid(raise_exception=True)
        record = MovementWorkflowService.update_draft(pk, request.user, dict(serializer.validated_data))
        return _record_response(record)

    def delete(self, request, pk):
        MovementWorkflowService.delete(pk, request.user)
        return Response(status=status.HTTP_204_NO_CONTENT)


@api_view(['GET'])
@authentication_classes([StaffAPIKeyAuthentication])
def movement_stats(request):
    """
    Dashboard counters for the records the caller may see.

    Accepts the same view and filter parameters as the list endpoint.
    """
    queryset = MovementWorkflowService.list_records(request.user, view=_requested_view(request))
    filterset = MovementRecordFilter(request.query_params, queryset=queryset, request=request)
    if not filterset.is_valid():
        raise ValidationFailed(filterset.errors)
    return Response(stats_for_queryset(filterset.qs, kind=request.query_params.get('kind') or None))


@api_view(['GET'])
@authentication_classes([StaffAPIKeyAuthentication])
def movement_events(request, pk):
    """Transition history of a record with the line quantities of each issue/receipt."""
    events = MovementWorkflowService.get_events(pk, request.user)
    return Response(MovementEventSerializer(events, many=True).data)


# ============================================================================
# Workflow transition API Views
# ============================================================================

@api_view(['POST'])
@authentication_classes([StaffAPIKeyAuthentication])
def submit_movement(request, pk):
    """
    Submit a draft (or a physical inventory returned for correction).

    Request body:
    {
        "notes": "Counted by night shift"   // optional
    }
    """
    serializer = NotesSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    record = MovementWorkflowService.submit(pk, request.user, notes=serializer.validated_data['notes'])
    return _record_response(record)


@api_view(['POST'])
@authentication_classes([StaffAPIKeyAuthentication])
def approve_movement(request, pk):
    """
    Approve a submitted record (admins and managers only).

    Request body:
    {
        "notes": "Checked against shelf labels",   // optional
        "approved_items": [                         // store requests only, optional
            {"product_id": 3, "approved_quantity": 80}
        ]
    }
    """
    serializer = ApproveSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data
    record = MovementWorkflowService.approve(
        pk, request.user, notes=data['notes'], approved_items=data.get('approved_items')
    )
    return _record_response(record)


@api_view(['POST'])
@authentication_classes([StaffAPIKeyAuthentication])
def reject_movement(request, pk):
    """
    Reject a submitted record.

    Request body:
    {
        "reason": "Wrong store selected"   // required, non-empty
    }
    """
    serializer = ReasonSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    record = MovementWorkflowService.reject(pk, request.user, serializer.validated_data['reason'])
    return _record_response(record)


@api_view(['POST'])
@authentication_classes([StaffAPIKeyAuthentication])
def return_movement(request, pk):
    """
    Return a submitted physical inventory for correction.

    Request body:
    {
        "reason": "Recount aisle 4"   // required, non-empty
    }
    """
    serializer = ReasonSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    record = MovementWorkflowService.return_for_correction(pk, request.user, serializer.validated_data['reason'])
    return _record_response(record)


@api_view(['POST'])
@authentication_classes([StaffAPIKeyAuthentication])
def fulfill_movement(request, pk):
    """
    Issue stock against an approved store request.

    Request body:
    {
        "line_issues": [                       // omit to issue everything outstanding
            {"product_id": 12, "quantity": 60}
        ],
        "notes": "First truck"
    }
    """
    serializer = FulfillSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    line_issues = serializer.validated_data.get('line_issues')
    record = MovementWorkflowService.fulfill(
        pk, request.user,
        [dict(entry) for entry in line_issues] if line_issues is not None else None,
        notes=serializer.validated_data['notes']
    )
    return _record_response(record)


@api_view(['POST'])
@authentication_classes([StaffAPIKeyAuthentication])
def receive_movement(request, pk):
    """
    Record stock received at the requesting store.

    Request body:
    {
        "line_receipts": [                     // omit to receive everything issued
            {"product_id": 12, "quantity": 60}
        ]
    }
    """
    serializer = ReceiveSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    line_receipts = serializer.validated_data.get('line_receipts')
    record = MovementWorkflowService.receive(
        pk, request.user,
        [dict(entry) for entry in line_receipts] if line_receipts is not None else None,
        notes=serializer.validated_data['notes']
    )
    return _record_response(record)


@api_view(['POST'])
@authentication_classes([StaffAPIKeyAuthentication])
def cancel_movement(request, pk):
    """
    Cancel a store request.

    Request body:
    {
        "reason": "No longer needed"   // optional
    }
    """
    serializer = ReasonSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    record = MovementWorkflowService.cancel(pk, request.user, serializer.validated_data['reason'])
    return _record_response(record)


@api_view(['POST'])
@authentication_classes([StaffAPIKeyAuthentication])
def accept_variance(request, pk):
    """
    Accept the count variance of an approved physical inventory.

    Request body:
    {
        "variance_notes": "Breakage written off",
        "total_delta_value": "-150.00"   // optional cross-check
    }
    """
    serializer = AcceptVarianceSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    record = MovementWorkflowService.accept_variance(pk, request.user, dict(serializer.validated_data))
    return _record_response(record)


# ============================================================================
# Reference data
# ============================================================================

@api_view(['GET'])
@authentication_classes([StaffAPIKeyAuthentication])
def my_stores(request):
    """Stores the caller is assigned to, with the caller's profile."""
    return Response(StaffMemberSerializer(getattr(request.user, 'staff', request.user)).data)


@api_view(['GET'])
@authentication_classes([StaffAPIKeyAuthentication])
def store_list(request):
    """All active stores, for picking the other side of a store request."""
    stores = Store.objects.filter(is_active=True)
    return Response(StoreSerializer(stores, many=True).data)


class StockMovementListView(generics.ListAPIView):
    """
    Stock audit trail of the caller's stores.

    Filter fields: store, product, movement_type
    """
    authentication_classes = [StaffAPIKeyAuthentication]
    serializer_class = StockMovementSerializer
    filter_backends = [DjangoFilterBackend, filters.OrderingFilter]
    filterset_fields = ['store', 'product', 'movement_type']
    ordering_fields = ['created_at']
    ordering = ['-created_at']

    def get_queryset(self):
        return StockMovement.objects.select_related('store', 'product').filter(
            store_id__in=sorted(self.request.user.store_ids)
        )
