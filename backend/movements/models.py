import uuid
import secrets
from decimal import Decimal

from django.db import models
from django.core.exceptions import ValidationError
from django.utils import timezone

from utils.constants import STATUS_COLORS, STATUS_ICONS, APPROVER_ROLES, REFERENCE_PREFIXES
from .workflow import (
    Kind, Status, Action, EDITABLE_STATUSES, statuses_for, allowed_actions, is_documented_edge
)
from .fulfillment import issue_cap


class Store(models.Model):
    """
    A physical store or warehouse that holds stock.

    Stores scope everything in this app: an actor only sees and acts on
    movement records that involve one of their assigned stores.
    """
    name = models.CharField(max_length=100, unique=True)
    code = models.CharField(
        max_length=20,
        unique=True,
        db_index=True,
        help_text="Short store code (e.g., 'MAIN', 'PH-01')"
    )
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['name']

    def __str__(self):
        return f"{self.name} ({self.code})"


class StaffMember(models.Model):
    """
    A person acting on movement records.

    Role decides who may approve; store assignments decide what they see.
    """

    class Role(models.TextChoices):
        ADMIN = 'admin', 'Administrator'
        MANAGER = 'manager', 'Manager'
        CLERK = 'clerk', 'Clerk'

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=255)
    email = models.EmailField(blank=True)
    role = models.CharField(max_length=20, choices=Role.choices, default=Role.CLERK)
    stores = models.ManyToManyField(Store, blank=True, related_name='staff')
    api_key = models.CharField(max_length=255, unique=True, editable=False)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    last_seen_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['name']

    def __str__(self):
        return f"{self.name} ({self.get_role_display()})"

    @property
    def store_ids(self):
        """Ids of the stores this person is assigned to."""
        if self._state.adding:
            return frozenset()
        return frozenset(self.stores.filter(is_active=True).values_list('id', flat=True))

    @property
    def is_approver(self):
        return self.role in APPROVER_ROLES


class Product(models.Model):
    """Product catalog entry referenced by movement line items."""
    code = models.CharField(max_length=50, unique=True, db_index=True)
    name = models.CharField(max_length=200)
    unit_cost = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal('0.00'),
        help_text="Default value per unit used when a line gives none"
    )
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['name']

    def __str__(self):
        return f"{self.code} - {self.name}"


class StoreStock(models.Model):
    """Current stock level of one product in one store."""
    store = models.ForeignKey(Store, on_delete=models.CASCADE, related_name='stock')
    product = models.ForeignKey(Product, on_delete=models.CASCADE, related_name='stock')
    quantity = models.IntegerField(default=0)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=['store', 'product'], name='unique_stock_per_store_product'),
            models.CheckConstraint(
                condition=models.Q(quantity__gte=0),
                name='store_stock_not_negative',
                violation_error_message='Stock cannot be negative'
            ),
        ]

    def __str__(self):
        return f"{self.product.code} @ {self.store.code}: {self.quantity}"


class MovementRecord(models.Model):
    """
    A physical inventory count or a store-to-store stock request/issue.

    Status only moves through movements.services.workflow_service; clean()
    refuses any save that moves it off the documented graph.
    """

    class RequestType(models.TextChoices):
        REQUEST = 'request', 'Request'
        ISSUE = 'issue', 'Issue'

    class Priority(models.TextChoices):
        LOW = 'low', 'Low'
        MEDIUM = 'medium', 'Medium'
        HIGH = 'high', 'High'
        URGENT = 'urgent', 'Urgent'

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    kind = models.CharField(max_length=30, choices=Kind.choices, db_index=True)
    reference_number = models.CharField(max_length=40, unique=True, db_index=True, editable=False)
    status = models.CharField(
        max_length=30,
        choices=Status.choices,
        default=Status.DRAFT,
        db_index=True
    )

    # Physical inventory
    store = models.ForeignKey(
        Store,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='physical_inventories'
    )
    # Store request/issue
    requesting_store = models.ForeignKey(
        Store,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='requests_made',
        help_text="Store asking for stock"
    )
    issuing_store = models.ForeignKey(
        Store,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='requests_to_issue',
        help_text="Store fulfilling the request"
    )
    request_type = models.CharField(max_length=10, choices=RequestType.choices, blank=True)

    priority = models.CharField(max_length=10, choices=Priority.choices, default=Priority.MEDIUM)
    movement_date = models.DateField(default=timezone.localdate)
    expected_delivery_date = models.DateField(null=True, blank=True)
    notes = models.TextField(blank=True)

    total_value = models.DecimalField(
        max_digits=14,
        decimal_places=2,
        default=Decimal('0.00'),
        help_text="Sum of line values, recalculated on every change"
    )
    transition_sequence = models.PositiveIntegerField(
        default=0,
        help_text="Number of committed transitions"
    )

    # Audit
    created_by = models.ForeignKey(StaffMember, on_delete=models.PROTECT, related_name='+')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_by = models.ForeignKey(StaffMember, on_delete=models.PROTECT, null=True, blank=True, related_name='+')
    updated_at = models.DateTimeField(auto_now=True)
    submitted_by = models.ForeignKey(StaffMember, on_delete=models.PROTECT, null=True, blank=True, related_name='+')
    submitted_at = models.DateTimeField(null=True, blank=True)
    approved_by = models.ForeignKey(StaffMember, on_delete=models.PROTECT, null=True, blank=True, related_name='+')
    approved_at = models.DateTimeField(null=True, blank=True)
    approval_notes = models.TextField(blank=True)
    rejected_by = models.ForeignKey(StaffMember, on_delete=models.PROTECT, null=True, blank=True, related_name='+')
    rejected_at = models.DateTimeField(null=True, blank=True)
    rejection_reason = models.TextField(blank=True)
    returned_by = models.ForeignKey(StaffMember, on_delete=models.PROTECT, null=True, blank=True, related_name='+')
    returned_at = models.DateTimeField(null=True, blank=True)
    return_reason = models.TextField(blank=True)
    fulfilled_by = models.ForeignKey(StaffMember, on_delete=models.PROTECT, null=True, blank=True, related_name='+')
    fulfilled_at = models.DateTimeField(null=True, blank=True)
    received_by = models.ForeignKey(StaffMember, on_delete=models.PROTECT, null=True, blank=True, related_name='+')
    received_at = models.DateTimeField(null=True, blank=True)
    cancelled_by = models.ForeignKey(StaffMember, on_delete=models.PROTECT, null=True, blank=True, related_name='+')
    cancelled_at = models.DateTimeField(null=True, blank=True)

    # Variance acceptance (physical inventory, after approval)
    variance_accepted_by = models.ForeignKey(
        StaffMember, on_delete=models.PROTECT, null=True, blank=True, related_name='+'
    )
    variance_accepted_at = models.DateTimeField(null=True, blank=True)
    variance_notes = models.TextField(blank=True)
    total_delta_value = models.DecimalField(max_digits=14, decimal_places=2, null=True, blank=True)
    positive_delta_value = models.DecimalField(max_digits=14, decimal_places=2, null=True, blank=True)
    negative_delta_value = models.DecimalField(max_digits=14, decimal_places=2, null=True, blank=True)

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['kind', 'status']),
            models.Index(fields=['store', 'status']),
            models.Index(fields=['requesting_store', 'status']),
            models.Index(fields=['issuing_store', 'status']),
            models.Index(fields=['-movement_date']),
        ]

    def __str__(self):
        return f"{self.reference_number} ({self.get_status_display()})"

    # Fields that must stay empty while a record is a draft
    WORKFLOW_AUDIT_FIELDS = (
        'submitted_at', 'approved_at', 'rejected_at', 'returned_at',
        'fulfilled_at', 'received_at', 'cancelled_at', 'variance_accepted_at',
    )

    @property
    def is_physical_inventory(self):
        return self.kind == Kind.PHYSICAL_INVENTORY

    @property
    def is_editable(self):
        return self.status in EDITABLE_STATUSES.get(self.kind, ())

    @property
    def allowed_actions(self):
        return allowed_actions(self.kind, self.status)

    @property
    def initiating_store_id(self):
        """Store that drafted the record and owns it until approval."""
        if self.is_physical_inventory:
            return self.store_id
        if self.request_type == self.RequestType.ISSUE:
            return self.issuing_store_id
        return self.requesting_store_id

    @property
    def party_store_ids(self):
        """Every store this record involves."""
        ids = {self.store_id, self.requesting_store_id, self.issuing_store_id}
        ids.discard(None)
        return frozenset(ids)

    def idempotency_key(self, sequence):
        return f"{self.id}:{sequence}"

    def get_status_color(self):
        """
        Return hex color code for current status.
        Used by frontend for visual status indicators.
        """
        return STATUS_COLORS.get(self.status, '#6B7280')

    def get_status_icon(self):
        return STATUS_ICONS.get(self.status, '❓')

    @property
    def status_display(self):
        """
        Return comprehensive status information for frontend display.

        Returns:
            dict: {
                'status': 'approved',
                'label': 'Approved',
                'color': '#10B981',
                'icon': '✅',
                'is_editable': False
            }
        """
        return {
            'status': self.status,
            'label': self.get_status_display(),
            'color': self.get_status_color(),
            'icon': self.get_status_icon(),
            'is_editable': self.is_editable,
        }

    def recalculate_totals(self):
        """
        Recompute total_value from the current line items.

        Returns:
            Decimal: the new total_value (also assigned to the instance)
        """
        total = Decimal('0.00')
        for line in self.line_items.all():
            total += line.compute_line_value()
        self.total_value = total
        return total

    def variance_summary(self):
        """
        Compute counted-versus-expected variance values for a physical inventory.

        Returns:
            dict with total_delta_value, positive_delta_value, negative_delta_value
        """
        positive = Decimal('0.00')
        negative = Decimal('0.00')
        for line in self.line_items.all():
            delta = line.delta_value
            if delta > 0:
                positive += delta
            elif delta < 0:
                negative += delta
        return {
            'total_delta_value': positive + negative,
            'positive_delta_value': positive,
            'negative_delta_value': negative,
        }

    def clean(self):
        """
        Validate the record before saving.

        Enforces kind/store consistency, the reason invariants, an empty
        audit trail for drafts and that status only follows documented edges.
        """
        super().clean()

        if self.kind == Kind.PHYSICAL_INVENTORY:
            if not self.store_id:
                raise ValidationError({'store': 'A physical inventory needs a store'})
            if self.requesting_store_id or self.issuing_store_id:
                raise ValidationError({
                    'store': 'A physical inventory has a single store, not requesting/issuing stores'
                })
        elif self.kind == Kind.STORE_REQUEST_ISSUE:
            if not self.requesting_store_id or not self.issuing_store_id:
                raise ValidationError({
                    'issuing_store': 'A store request needs both a requesting and an issuing store'
                })
            if self.requesting_store_id == self.issuing_store_id:
                raise ValidationError({
                    'issuing_store': 'Requesting and issuing store must be different'
                })
            if not self.request_type:
                raise ValidationError({'request_type': 'Request type is required'})
            if self.store_id:
                raise ValidationError({'store': 'A store request uses requesting/issuing stores'})

        if self.kind and self.status not in statuses_for(self.kind):
            raise ValidationError({
                'status': f"{self.get_status_display()} is not a status of a {self.get_kind_display()}"
            })

        if bool(self.rejection_reason.strip()) != (self.status == Status.REJECTED):
            raise ValidationError({
                'rejection_reason': 'A rejection reason is required for, and only allowed on, rejected records'
            })
        if bool(self.return_reason.strip()) != (self.status == Status.RETURNED_FOR_CORRECTION):
            raise ValidationError({
                'return_reason': 'A return reason is required for, and only allowed on, returned records'
            })

        if self.status == Status.DRAFT:
            set_fields = [name for name in self.WORKFLOW_AUDIT_FIELDS if getattr(self, name)]
            if set_fields:
                raise ValidationError({
                    'status': f"A draft cannot carry workflow audit fields: {', '.join(set_fields)}"
                })

        # Status may only follow an edge of the transition table
        if not self._state.adding:
            try:
                old_instance = MovementRecord.objects.get(pk=self.pk)
            except MovementRecord.DoesNotExist:
                return
            if old_instance.kind != self.kind:
                raise ValidationError({'kind': 'Kind cannot change after creation'})
            for field in ('store_id', 'requesting_store_id', 'issuing_store_id'):
                if getattr(old_instance, field) != getattr(self, field):
                    raise ValidationError({field[:-3]: 'Stores cannot change after creation'})
            if old_instance.status != self.status and not is_documented_edge(
                self.kind, old_instance.status, self.status
            ):
                raise ValidationError({
                    'status': f'Cannot transition from {old_instance.get_status_display()} '
                              f'to {self.get_status_display()}'
                })

    def save(self, *args, **kwargs):
        skip_validation = kwargs.pop('skip_validation', False)
        if not self.reference_number:
            self.reference_number = self.generate_reference_number(self.kind)
        if not skip_validation:
            self.full_clean()
        super().save(*args, **kwargs)

    @staticmethod
    def generate_reference_number(kind):
        prefix = REFERENCE_PREFIXES.get(kind, 'MV')
        return f"{prefix}-{timezone.localdate():%Y%m%d}-{secrets.token_hex(3).upper()}"


class MovementLineItem(models.Model):
    """
    One product on a movement record.

    Store requests track requested/issued/received quantities; physical
    inventories track the expected (system) and counted quantities.
    """
    record = models.ForeignKey(
        MovementRecord,
        on_delete=models.CASCADE,
        related_name='line_items'
    )
    product = models.ForeignKey(Product, on_delete=models.PROTECT, related_name='movement_lines')
    position = models.PositiveIntegerField(default=0)

    quantity_requested = models.PositiveIntegerField(default=0)
    quantity_approved = models.PositiveIntegerField(
        null=True,
        blank=True,
        help_text="Set on approval; caps what may be issued"
    )
    quantity_issued = models.PositiveIntegerField(default=0)
    quantity_received = models.PositiveIntegerField(default=0)

    expected_quantity = models.PositiveIntegerField(
        default=0,
        help_text="System stock when the count was taken"
    )
    counted_quantity = models.PositiveIntegerField(default=0)

    unit_value = models.DecimalField(max_digits=12, decimal_places=2)
    line_value = models.DecimalField(
        max_digits=14,
        decimal_places=2,
        default=Decimal('0.00'),
        help_text="quantity × unit_value"
    )
    notes = models.CharField(max_length=255, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['position', 'id']
        constraints = [
            models.UniqueConstraint(fields=['record', 'product'], name='unique_product_per_movement'),
            models.CheckConstraint(
                condition=models.Q(quantity_issued__lte=models.F('quantity_requested')),
                name='issued_cannot_exceed_requested',
                violation_error_message='Issued quantity cannot exceed requested quantity'
            ),
            models.CheckConstraint(
                condition=(
                    models.Q(quantity_approved__isnull=True)
                    | models.Q(quantity_approved__lte=models.F('quantity_requested'))
                ),
                name='approved_cannot_exceed_requested',
                violation_error_message='Approved quantity cannot exceed requested quantity'
            ),
            models.CheckConstraint(
                condition=(
                    models.Q(quantity_approved__isnull=True, quantity_issued=0)
                    | models.Q(quantity_issued__lte=models.F('quantity_approved'))
                ),
                name='issued_cannot_exceed_approved',
                violation_error_message='Issued quantity cannot exceed approved quantity'
            ),
            models.CheckConstraint(
                condition=models.Q(quantity_received__lte=models.F('quantity_issued')),
                name='received_cannot_exceed_issued',
                violation_error_message='Received quantity cannot exceed issued quantity'
            ),
        ]

    def __str__(self):
        return f"{self.quantity}x {self.product.name} ({self.record.reference_number})"

    @property
    def quantity(self):
        """The quantity this line is valued at."""
        if self.record.kind == Kind.PHYSICAL_INVENTORY:
            return self.counted_quantity
        return issue_cap(self)

    @property
    def remaining_to_issue(self):
        return issue_cap(self) - self.quantity_issued

    @property
    def remaining_to_receive(self):
        return self.quantity_issued - self.quantity_received

    @property
    def delta_quantity(self):
        return self.counted_quantity - self.expected_quantity

    @property
    def delta_value(self):
        return self.delta_quantity * self.unit_value

    def compute_line_value(self):
        self.line_value = self.quantity * self.unit_value
        return self.line_value

    def save(self, *args, **kwargs):
        """Auto-calculate line value on save"""
        self.compute_line_value()
        super().save(*args, **kwargs)


class MovementEvent(models.Model):
    """
    One committed transition of a movement record.

    Keeps the reasons and notes of every step, including return reasons
    that are cleared from the record when it is resubmitted.
    """
    record = models.ForeignKey(MovementRecord, on_delete=models.CASCADE, related_name='events')
    sequence = models.PositiveIntegerField()
    action = models.CharField(max_length=30, choices=Action.choices)
    from_status = models.CharField(max_length=30, choices=Status.choices)
    to_status = models.CharField(max_length=30, choices=Status.choices)
    actor = models.ForeignKey(StaffMember, on_delete=models.PROTECT, related_name='movement_events')
    reason = models.TextField(blank=True)
    notes = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['record', 'sequence']
        constraints = [
            models.UniqueConstraint(fields=['record', 'sequence'], name='unique_event_sequence'),
        ]

    def __str__(self):
        return f"{self.record.reference_number} #{self.sequence}: {self.from_status} -> {self.to_status}"


class LineItemEvent(models.Model):
    """Quantity issued or received on one line during one fulfillment event."""

    class EventType(models.TextChoices):
        ISSUED = 'issued', 'Issued'
        RECEIVED = 'received', 'Received'

    line_item = models.ForeignKey(MovementLineItem, on_delete=models.CASCADE, related_name='events')
    movement_event = models.ForeignKey(MovementEvent, on_delete=models.CASCADE, related_name='line_events')
    event_type = models.CharField(max_length=10, choices=EventType.choices)
    quantity = models.PositiveIntegerField()
    previous_quantity = models.PositiveIntegerField()
    new_quantity = models.PositiveIntegerField()
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['created_at', 'id']

    def __str__(self):
        return f"{self.get_event_type_display()} {self.quantity} of {self.line_item.product.code}"

    def clean(self):
        super().clean()
        if self.previous_quantity + self.quantity != self.new_quantity:
            raise ValidationError({
                'new_quantity': f'Calculation error: {self.previous_quantity} + {self.quantity} '
                                f'should equal {self.previous_quantity + self.quantity}, not {self.new_quantity}'
            })


class MovementPosting(models.Model):
    """
    A side effect applied for one committed transition.

    The idempotency key is unique, so replaying the same transition never
    posts twice.
    """
    idempotency_key = models.CharField(max_length=100, unique=True, db_index=True)
    record = models.ForeignKey(MovementRecord, on_delete=models.PROTECT, related_name='postings')
    sequence = models.PositiveIntegerField()
    action = models.CharField(max_length=30, choices=Action.choices)
    total_quantity = models.IntegerField(default=0)
    total_value = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal('0.00'))
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        return f"Posting {self.idempotency_key} ({self.action})"


class StockMovement(models.Model):
    """
    Audit trail for all stock level changes.
    Tracks counts, issues and receipts per store.
    """
    class MovementType(models.TextChoices):
        PHYSICAL_COUNT = 'PHYSICAL_COUNT', 'Physical Count Adjustment'
        STORE_ISSUE = 'STORE_ISSUE', 'Issued to Store'
        STORE_RECEIPT = 'STORE_RECEIPT', 'Received from Store'

    movement_type = models.CharField(max_length=20, choices=MovementType.choices)
    store = models.ForeignKey(Store, on_delete=models.CASCADE, related_name='stock_movements')
    product = models.ForeignKey(Product, on_delete=models.CASCADE, related_name='stock_movements')
    posting = models.ForeignKey(
        MovementPosting,
        on_delete=models.CASCADE,
        related_name='stock_movements'
    )

    quantity_before = models.IntegerField(help_text="Stock quantity before movement")
    quantity_after = models.IntegerField(help_text="Stock quantity after movement")
    quantity_change = models.IntegerField(help_text="Change in quantity (can be negative)")

    reference = models.CharField(max_length=200, blank=True)
    performed_by = models.ForeignKey(StaffMember, on_delete=models.PROTECT, related_name='+')
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['-created_at']),
            models.Index(fields=['store', 'product', '-created_at']),
            models.Index(fields=['movement_type']),
        ]

    def __str__(self):
        sign = '+' if self.quantity_change > 0 else ''
        return f"{self.get_movement_type_display()}: {sign}{self.quantity_change} {self.product.name}"

    def clean(self):
        """Validate movement data"""
        super().clean()

        expected_after = self.quantity_before + self.quantity_change
        if self.quantity_after != expected_after:
            raise ValidationError({
                'quantity_after': f'Calculation error: {self.quantity_before} + {self.quantity_change} '
                                  f'should equal {expected_after}, not {self.quantity_after}'
            })

        if self.quantity_after < 0:
            raise ValidationError({
                'quantity_after': f'Insufficient stock: {self.quantity_before} on hand, '
                                  f'{-self.quantity_change} requested'
            })
