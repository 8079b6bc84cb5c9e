from django_filters import rest_framework as filters
from django.db.models import Q
from .models import MovementRecord, MovementLineItem
from .workflow import Kind, Status


class MovementRecordFilter(filters.FilterSet):
    """
    Filtering for movement record lists.

    Applied after store scoping, so it only ever narrows what the actor
    may already see.

    Available filters:
    - kind, status (comma-separated for several), exclude_status
    - priority, request_type
    - store_id, requesting_store_id, issuing_store_id
    - date_from, date_to (movement date)
    - search: reference number, notes, store or product names
    """

    kind = filters.ChoiceFilter(
        choices=Kind.choices,
        help_text="Physical inventory or store request/issue"
    )
    status = filters.CharFilter(
        method='filter_status',
        help_text="Status, or several separated by commas"
    )
    exclude_status = filters.CharFilter(
        method='filter_exclude_status',
        help_text="Hide these statuses (comma-separated)"
    )
    priority = filters.ChoiceFilter(
        choices=MovementRecord.Priority.choices,
        help_text="Filter by priority"
    )
    request_type = filters.ChoiceFilter(
        choices=MovementRecord.RequestType.choices,
        help_text="Filter store requests by who initiated them"
    )

    # Store filters
    store_id = filters.NumberFilter(
        method='filter_store',
        help_text="Records involving this store in any role"
    )
    requesting_store_id = filters.NumberFilter(
        field_name='requesting_store_id',
        help_text="Store asking for stock"
    )
    issuing_store_id = filters.NumberFilter(
        field_name='issuing_store_id',
        help_text="Store fulfilling the request"
    )

    # Date filters
    date_from = filters.DateFilter(
        field_name='movement_date',
        lookup_expr='gte',
        help_text="Movement date on or after"
    )
    date_to = filters.DateFilter(
        field_name='movement_date',
        lookup_expr='lte',
        help_text="Movement date on or before"
    )

    search = filters.CharFilter(
        method='filter_search',
        help_text="Search reference number, notes, store and product names"
    )

    class Meta:
        model = MovementRecord
        fields = [
            'kind', 'status', 'exclude_status', 'priority', 'request_type',
            'store_id', 'requesting_store_id', 'issuing_store_id',
            'date_from', 'date_to', 'search'
        ]

    @staticmethod
    def _statuses(value):
        statuses = [part.strip() for part in value.split(',') if part.strip()]
        return [status for status in statuses if status in Status.values]

    def filter_status(self, queryset, name, value):
        statuses = self._statuses(value)
        if not statuses:
            return queryset.none()
        return queryset.filter(status__in=statuses)

    def filter_exclude_status(self, queryset, name, value):
        return queryset.exclude(status__in=self._statuses(value))

    def filter_store(self, queryset, name, value):
        return queryset.filter(
            Q(store_id=value) | Q(requesting_store_id=value) | Q(issuing_store_id=value)
        )

    def filter_search(self, queryset, name, value):
        """
        Search across the record and its related names.

        Matches reference number, notes, any store name and line product
        codes/names (case-insensitive).
        """
        value = value.strip()
        if not value:
            return queryset
        return queryset.filter(
            Q(reference_number__icontains=value)
            | Q(notes__icontains=value)
            | Q(store__name__icontains=value)
            | Q(requesting_store__name__icontains=value)
            | Q(issuing_store__name__icontains=value)
            | Q(pk__in=MovementLineItem.objects.filter(
                Q(product__name__icontains=value) | Q(product__code__icontains=value)
            ).values('record_id'))
        )
