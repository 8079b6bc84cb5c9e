from rest_framework import serializers
from .models import (
    Store, StaffMember, MovementRecord, MovementLineItem,
    MovementEvent, LineItemEvent, StockMovement
)
from .fulfillment import fulfillment_summary
from .workflow import Kind


class StoreSerializer(serializers.ModelSerializer):
    class Meta:
        model = Store
        fields = ['id', 'name', 'code', 'is_active']
        read_only_fields = fields


class StaffMemberSerializer(serializers.ModelSerializer):
    stores = StoreSerializer(many=True, read_only=True)
    role_display = serializers.CharField(source='get_role_display', read_only=True)

    class Meta:
        model = StaffMember
        fields = ['id', 'name', 'email', 'role', 'role_display', 'stores']
        read_only_fields = fields


class MovementLineItemSerializer(serializers.ModelSerializer):
    product_code = serializers.CharField(source='product.code', read_only=True)
    product_name = serializers.CharField(source='product.name', read_only=True)
    remaining_to_issue = serializers.IntegerField(read_only=True)
    remaining_to_receive = serializers.IntegerField(read_only=True)
    delta_quantity = serializers.IntegerField(read_only=True)
    delta_value = serializers.DecimalField(max_digits=14, decimal_places=2, read_only=True)

    class Meta:
        model = MovementLineItem
        fields = [
            'id', 'position', 'product', 'product_code', 'product_name',
            'quantity_requested', 'quantity_approved', 'quantity_issued', 'quantity_received',
            'remaining_to_issue', 'remaining_to_receive',
            'expected_quantity', 'counted_quantity', 'delta_quantity', 'delta_value',
            'unit_value', 'line_value', 'notes'
        ]
        read_only_fields = fields


class LineItemEventSerializer(serializers.ModelSerializer):
    product_id = serializers.IntegerField(source='line_item.product_id', read_only=True)
    product_code = serializers.CharField(source='line_item.product.code', read_only=True)

    class Meta:
        model = LineItemEvent
        fields = [
            'id', 'event_type', 'product_id', 'product_code',
            'quantity', 'previous_quantity', 'new_quantity', 'created_at'
        ]
        read_only_fields = fields


class MovementEventSerializer(serializers.ModelSerializer):
    actor_name = serializers.CharField(source='actor.name', read_only=True)
    line_events = LineItemEventSerializer(many=True, read_only=True)

    class Meta:
        model = MovementEvent
        fields = [
            'id', 'sequence', 'action', 'from_status', 'to_status',
            'actor', 'actor_name', 'reason', 'notes', 'line_events', 'created_at'
        ]
        read_only_fields = fields


class MovementRecordSerializer(serializers.ModelSerializer):
    """
    Full representation of a movement record.

    Everything is read-only: records change only through the workflow
    endpoints, and total_value is always derived from the lines.
    """
    line_items = MovementLineItemSerializer(many=True, read_only=True)
    status_display = serializers.ReadOnlyField()
    allowed_actions = serializers.ReadOnlyField()
    is_editable = serializers.BooleanField(read_only=True)
    store_name = serializers.CharField(source='store.name', read_only=True, allow_null=True)
    requesting_store_name = serializers.CharField(source='requesting_store.name', read_only=True, allow_null=True)
    issuing_store_name = serializers.CharField(source='issuing_store.name', read_only=True, allow_null=True)
    created_by_name = serializers.CharField(source='created_by.name', read_only=True)
    fulfillment = serializers.SerializerMethodField()

    def get_fulfillment(self, obj):
        """Quantity totals for store requests; None for physical inventories"""
        if obj.kind != Kind.STORE_REQUEST_ISSUE:
            return None
        return fulfillment_summary(obj.line_items.all())

    class Meta:
        model = MovementRecord
        fields = [
            'id', 'kind', 'reference_number', 'status', 'status_display', 'allowed_actions',
            'is_editable', 'store', 'store_name', 'requesting_store', 'requesting_store_name',
            'issuing_store', 'issuing_store_name', 'request_type', 'priority',
            'movement_date', 'expected_delivery_date', 'notes', 'total_value',
            'transition_sequence', 'line_items', 'fulfillment',
            'created_by', 'created_by_name', 'created_at', 'updated_by', 'updated_at',
            'submitted_by', 'submitted_at', 'approved_by', 'approved_at', 'approval_notes',
            'rejected_by', 'rejected_at', 'rejection_reason',
            'returned_by', 'returned_at', 'return_reason',
            'fulfilled_by', 'fulfilled_at', 'received_by', 'received_at',
            'cancelled_by', 'cancelled_at',
            'variance_accepted_by', 'variance_accepted_at', 'variance_notes',
            'total_delta_value', 'positive_delta_value', 'negative_delta_value',
        ]
        read_only_fields = fields


class StockMovementSerializer(serializers.ModelSerializer):
    movement_type_display = serializers.CharField(source='get_movement_type_display', read_only=True)
    product_code = serializers.CharField(source='product.code', read_only=True)
    store_code = serializers.CharField(source='store.code', read_only=True)

    class Meta:
        model = StockMovement
        fields = [
            'id', 'movement_type', 'movement_type_display', 'store', 'store_code',
            'product', 'product_code', 'quantity_before', 'quantity_after',
            'quantity_change', 'reference', 'created_at'
        ]
        read_only_fields = fields


# ============================================================================
# Input serializers for the workflow endpoints
# ============================================================================

class LineItemInputSerializer(serializers.Serializer):
    """
    One line of a draft.

    Store requests use quantity_requested; physical inventories use
    counted_quantity and may pass expected_quantity (defaults to the
    store's current stock).
    """
    product_id = serializers.IntegerField()
    quantity_requested = serializers.IntegerField(required=False, min_value=0)
    counted_quantity = serializers.IntegerField(required=False, min_value=0)
    expected_quantity = serializers.IntegerField(required=False, min_value=0)
    unit_value = serializers.DecimalField(max_digits=12, decimal_places=2, required=False, min_value=0)
    notes = serializers.CharField(max_length=255, required=False, allow_blank=True)


class MovementCreateSerializer(serializers.Serializer):
    kind = serializers.ChoiceField(choices=Kind.choices)
    store_id = serializers.IntegerField(required=False, allow_null=True)
    requesting_store_id = serializers.IntegerField(required=False, allow_null=True)
    issuing_store_id = serializers.IntegerField(required=False, allow_null=True)
    request_type = serializers.ChoiceField(choices=MovementRecord.RequestType.choices, required=False)
    priority = serializers.ChoiceField(choices=MovementRecord.Priority.choices, required=False)
    movement_date = serializers.DateField(required=False)
    expected_delivery_date = serializers.DateField(required=False, allow_null=True)
    notes = serializers.CharField(required=False, allow_blank=True)
    line_items = LineItemInputSerializer(many=True, required=False)

    def validate(self, data):
        """Stores must match the kind"""
        if data['kind'] == Kind.PHYSICAL_INVENTORY:
            if not data.get('store_id'):
                raise serializers.ValidationError({'store_id': 'Required for a physical inventory'})
        else:
            missing = {
                field: 'Required for a store request'
                for field in ('requesting_store_id', 'issuing_store_id')
                if not data.get(field)
            }
            if missing:
                raise serializers.ValidationError(missing)
            data.setdefault('request_type', MovementRecord.RequestType.REQUEST)
        return data


class MovementUpdateSerializer(serializers.Serializer):
    """Editable header fields and lines of a draft; stores and kind are fixed."""
    priority = serializers.ChoiceField(choices=MovementRecord.Priority.choices, required=False)
    movement_date = serializers.DateField(required=False)
    expected_delivery_date = serializers.DateField(required=False, allow_null=True)
    notes = serializers.CharField(required=False, allow_blank=True)
    line_items = LineItemInputSerializer(many=True, required=False)


class NotesSerializer(serializers.Serializer):
    notes = serializers.CharField(required=False, allow_blank=True, default='')


class ApprovedItemSerializer(serializers.Serializer):
    product_id = serializers.IntegerField()
    approved_quantity = serializers.IntegerField(min_value=0)


class ApproveSerializer(serializers.Serializer):
    """Lines left out of approved_items are approved as requested."""
    notes = serializers.CharField(required=False, allow_blank=True, default='')
    approved_items = ApprovedItemSerializer(many=True, required=False)


class ReasonSerializer(serializers.Serializer):
    # Blank reasons are rejected by the workflow service with field detail
    reason = serializers.CharField(required=False, allow_blank=True, default='', trim_whitespace=False)


class LineQuantitySerializer(serializers.Serializer):
    product_id = serializers.IntegerField()
    quantity = serializers.IntegerField()


class FulfillSerializer(serializers.Serializer):
    """Omit line_issues to issue everything still outstanding."""
    line_issues = LineQuantitySerializer(many=True, required=False, allow_empty=True)
    notes = serializers.CharField(required=False, allow_blank=True, default='')


class ReceiveSerializer(serializers.Serializer):
    """Omit line_receipts to receive everything issued and not yet received."""
    line_receipts = LineQuantitySerializer(many=True, required=False, allow_empty=True)
    notes = serializers.CharField(required=False, allow_blank=True, default='')


class AcceptVarianceSerializer(serializers.Serializer):
    """
    Variance acceptance for an approved physical inventory.

    Delta figures are optional; when given they must match the figures
    computed from the counted lines.
    """
    variance_notes = serializers.CharField(required=False, allow_blank=True, default='')
    total_delta_value = serializers.DecimalField(max_digits=14, decimal_places=2, required=False)
    positive_delta_value = serializers.DecimalField(max_digits=14, decimal_places=2, required=False)
    negative_delta_value = serializers.DecimalField(max_digits=14, decimal_places=2, required=False)
