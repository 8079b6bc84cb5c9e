from django.contrib import admin
from django.utils.html import format_html
from .models import (
    Store, StaffMember, Product, StoreStock, MovementRecord, MovementLineItem,
    MovementEvent, MovementPosting, StockMovement
)


@admin.register(Store)
class StoreAdmin(admin.ModelAdmin):
    list_display = ['name', 'code', 'staff_count', 'is_active']
    list_filter = ['is_active']
    search_fields = ['name', 'code']
    readonly_fields = ['created_at', 'updated_at']

    def staff_count(self, obj):
        return obj.staff.count()
    staff_count.short_description = 'Staff'


@admin.register(StaffMember)
class StaffMemberAdmin(admin.ModelAdmin):
    """Admin interface for staff members. API keys are issued by create_default_stores."""
    list_display = ['name', 'email', 'role', 'store_list', 'is_active', 'last_seen_at']
    list_filter = ['role', 'is_active', 'stores']
    search_fields = ['name', 'email']
    filter_horizontal = ['stores']
    readonly_fields = ['id', 'created_at', 'last_seen_at']

    def store_list(self, obj):
        return ', '.join(store.code for store in obj.stores.all())
    store_list.short_description = 'Stores'


@admin.register(Product)
class ProductAdmin(admin.ModelAdmin):
    list_display = ['code', 'name', 'unit_cost', 'is_active']
    list_filter = ['is_active']
    search_fields = ['code', 'name']


@admin.register(StoreStock)
class StoreStockAdmin(admin.ModelAdmin):
    list_display = ['product', 'store', 'quantity', 'updated_at']
    list_filter = ['store']
    search_fields = ['product__code', 'product__name']
    # Stock only changes through postings
    readonly_fields = ['store', 'product', 'quantity', 'updated_at']


class MovementLineItemInline(admin.TabularInline):
    model = MovementLineItem
    extra = 0
    can_delete = False
    readonly_fields = [
        'product', 'quantity_requested', 'quantity_approved', 'quantity_issued', 'quantity_received',
        'expected_quantity', 'counted_quantity', 'unit_value', 'line_value'
    ]
    fields = readonly_fields

    def has_add_permission(self, request, obj=None):
        return False


class MovementEventInline(admin.TabularInline):
    model = MovementEvent
    extra = 0
    can_delete = False
    readonly_fields = ['sequence', 'action', 'from_status', 'to_status', 'actor', 'reason', 'created_at']
    fields = readonly_fields

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(MovementRecord)
class MovementRecordAdmin(admin.ModelAdmin):
    """
    Read-only view of movement records.

    Status changes go through the API so that guards, postings and the
    event history stay consistent.
    """
    list_display = [
        'reference_number', 'kind', 'status_badge', 'store_display',
        'priority', 'total_value', 'movement_date', 'created_by'
    ]
    list_filter = ['kind', 'status', 'priority', 'request_type', 'movement_date']
    search_fields = ['reference_number', 'notes', 'store__name', 'requesting_store__name', 'issuing_store__name']
    date_hierarchy = 'movement_date'
    inlines = [MovementLineItemInline, MovementEventInline]

    fieldsets = (
        ('Record', {
            'fields': ('id', 'kind', 'reference_number', 'status', 'priority', 'movement_date', 'notes')
        }),
        ('Stores', {
            'fields': ('store', 'requesting_store', 'issuing_store', 'request_type', 'expected_delivery_date')
        }),
        ('Totals', {
            'fields': ('total_value', 'transition_sequence', 'total_delta_value',
                       'positive_delta_value', 'negative_delta_value')
        }),
        ('Audit', {
            'fields': (
                'created_by', 'created_at', 'submitted_by', 'submitted_at',
                'approved_by', 'approved_at', 'approval_notes',
                'rejected_by', 'rejected_at', 'rejection_reason',
                'returned_by', 'returned_at', 'return_reason',
                'fulfilled_by', 'fulfilled_at', 'received_by', 'received_at',
                'cancelled_by', 'cancelled_at',
                'variance_accepted_by', 'variance_accepted_at', 'variance_notes',
            ),
            'classes': ('collapse',)
        }),
    )

    def get_readonly_fields(self, request, obj=None):
        return [field.name for field in self.model._meta.fields]

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False

    def status_badge(self, obj):
        """Display status with color badge"""
        status_info = obj.status_display
        return format_html(
            '<span style="background-color: {}; color: white; padding: 3px 10px; border-radius: 3px;">'
            '{} {}</span>',
            status_info['color'],
            status_info['icon'],
            status_info['label']
        )
    status_badge.short_description = 'Status'
    status_badge.admin_order_field = 'status'

    def store_display(self, obj):
        if obj.store_id:
            return obj.store.code
        return f'{obj.requesting_store.code} ← {obj.issuing_store.code}'
    store_display.short_description = 'Store(s)'


@admin.register(MovementPosting)
class MovementPostingAdmin(admin.ModelAdmin):
    list_display = ['idempotency_key', 'record', 'action', 'total_quantity', 'total_value', 'created_at']
    list_filter = ['action']
    search_fields = ['idempotency_key', 'record__reference_number']
    readonly_fields = ['idempotency_key', 'record', 'sequence', 'action', 'total_quantity', 'total_value', 'created_at']


@admin.register(StockMovement)
class StockMovementAdmin(admin.ModelAdmin):
    list_display = ['created_at', 'movement_type', 'store', 'product', 'change_display', 'quantity_after', 'reference']
    list_filter = ['movement_type', 'store', 'created_at']
    search_fields = ['product__code', 'product__name', 'reference']
    readonly_fields = [
        'movement_type', 'store', 'product', 'posting', 'quantity_before',
        'quantity_after', 'quantity_change', 'reference', 'performed_by', 'created_at'
    ]

    def change_display(self, obj):
        """Display quantity change with sign and color"""
        color = 'green' if obj.quantity_change > 0 else 'red'
        return format_html('<span style="color: {};">{}</span>', color, f'{obj.quantity_change:+d}')
    change_display.short_description = 'Change'
    change_display.admin_order_field = 'quantity_change'
