"""
Movement Workflow Service

Central business logic for moving physical inventories and store requests
through their lifecycle. Every operation here runs as a single atomic
unit: the record and its lines are locked with select_for_update, every
check runs, the posting side effect is applied and only then is the new
state written. Any exception leaves the record exactly as it was.

Check order for every action:
1. Lookup       -> NotFound (record missing or not visible to the actor)
2. Legality     -> InvalidTransition (action not allowed from current status)
3. Authority    -> Forbidden (wrong store or role)
4. Input        -> ValidationFailed / OverIssue / OverReceive
5. Side effect  -> SideEffectFailed (posting failed; retry is safe)
6. Commit

Usage:
    from movements.services import MovementWorkflowService

    record = MovementWorkflowService.submit(record_id, actor)
    record = MovementWorkflowService.fulfill(record_id, actor, [{'product_id': 3, 'quantity': 60}])
"""

import logging
from decimal import Decimal
from typing import Dict, List, Optional

from django.core.exceptions import ValidationError
from django.db import transaction
from django.utils import timezone

from utils.exceptions import Forbidden, NotFound, ValidationFailed, SideEffectFailed, InvalidTransition
from movements.models import (
    Store, Product, StoreStock, MovementRecord, MovementLineItem, MovementEvent, LineItemEvent
)
from movements.workflow import (
    Kind, Status, Action, POSTING_ACTIONS, targets, ensure_editable, ensure_deletable
)
from movements.scope import scope_queryset, actionable_queryset
from movements.fulfillment import apply_issue_event, apply_receipt_event
from movements.services.posting_service import get_posting_backend
from movements.services.broadcast import broadcast_record, broadcast_groups_for

logger = logging.getLogger(__name__)


HEADER_FIELDS = ('priority', 'movement_date', 'expected_delivery_date', 'notes')


def _staff(actor):
    """Unwrap an authenticated wrapper to the StaffMember instance."""
    return getattr(actor, 'staff', actor)


def _validation_failed(error: ValidationError) -> ValidationFailed:
    if hasattr(error, 'error_dict'):
        return ValidationFailed(error.message_dict)
    return ValidationFailed({'non_field_errors': error.messages})


class MovementWorkflowService:
    """
    Service class for the movement approval workflow.

    All methods are static and take the acting StaffMember explicitly;
    the service keeps no state between calls.
    """

    # ========================================================================
    # Lookup
    # ========================================================================

    @staticmethod
    def list_records(actor, view=None, kind=None):
        """
        Records the actor may see, optionally limited to one view and kind.

        Returns:
            QuerySet of MovementRecord
        """
        queryset = MovementRecord.objects.select_related(
            'store', 'requesting_store', 'issuing_store', 'created_by'
        ).prefetch_related('line_items__product')
        if kind:
            queryset = queryset.filter(kind=kind)
        return scope_queryset(queryset, _staff(actor), view=view)

    @staticmethod
    def get_record(record_id, actor) -> MovementRecord:
        """
        Fetch one record for display.

        Raises:
            NotFound: Record does not exist or the actor may not see it
        """
        try:
            return MovementWorkflowService.list_records(actor).get(pk=record_id)
        except (MovementRecord.DoesNotExist, ValidationError, ValueError):
            raise NotFound()

    @staticmethod
    def get_events(record_id, actor):
        """Transition history of a record, oldest first."""
        record = MovementWorkflowService.get_record(record_id, actor)
        return record.events.select_related('actor').prefetch_related(
            'line_events__line_item__product'
        )

    @staticmethod
    def _lock_record(record_id, actor, action) -> MovementRecord:
        """
        Lock a record the actor may look up for `action`.

        Raises:
            NotFound: Record does not exist or is out of the actor's scope
        """
        try:
            return actionable_queryset(
                MovementRecord.objects.select_for_update(), _staff(actor), action
            ).get(pk=record_id)
        except (MovementRecord.DoesNotExist, ValidationError, ValueError):
            logger.warning(f"Record {record_id} not found for {_staff(actor)}")
            raise NotFound()

    # ========================================================================
    # Guards
    # ========================================================================

    @staticmethod
    def _targets(record: MovementRecord, action: str):
        try:
            return targets(record.kind, record.status, action)
        except InvalidTransition:
            logger.warning(
                f"Rejected {action} on {record.reference_number}: status is {record.status}"
            )
            raise

    @staticmethod
    def _require_store(actor, store_id, action: str, record: Optional[MovementRecord] = None):
        if store_id not in actor.store_ids:
            reference = record.reference_number if record else 'new record'
            logger.warning(f"{actor} may not {action} {reference}: not assigned to store {store_id}")
            raise Forbidden({'error': f'You are not assigned to the store required to {action} this record'})

    @staticmethod
    def _require_approver(actor, action: str, record: MovementRecord):
        if not actor.is_approver:
            logger.warning(f"{actor} may not {action} {record.reference_number}: role {actor.role}")
            raise Forbidden({'error': f'Only administrators and managers can {action} records'})

    @staticmethod
    def _require_reason(reason: Optional[str]) -> str:
        reason = (reason or '').strip()
        if not reason:
            raise ValidationFailed({'reason': 'A reason is required'})
        return reason

    @staticmethod
    def _approval_store_id(record: MovementRecord):
        """Store whose approvers decide on the record."""
        if record.kind == Kind.PHYSICAL_INVENTORY:
            return record.store_id
        return record.issuing_store_id

    # ========================================================================
    # Draft content
    # ========================================================================

    @staticmethod
    def create_draft(actor, kind: str, data: Dict) -> MovementRecord:
        """
        Create a new record in draft.

        Args:
            actor: StaffMember creating the record
            kind: 'physical_inventory' or 'store_request_issue'
            data: Header fields, store ids and optional line_items

        Returns:
            The created MovementRecord

        Raises:
            Forbidden: Actor is not assigned to the initiating store
            ValidationFailed: Unknown stores/products or invalid fields
        """
        staff = _staff(actor)
        with transaction.atomic():
            record = MovementRecord(kind=kind, created_by=staff, updated_by=staff)
            try:
                if kind == Kind.PHYSICAL_INVENTORY:
                    record.store = Store.objects.get(pk=data.get('store_id'), is_active=True)
                else:
                    record.requesting_store = Store.objects.get(
                        pk=data.get('requesting_store_id'), is_active=True
                    )
                    record.issuing_store = Store.objects.get(
                        pk=data.get('issuing_store_id'), is_active=True
                    )
                    record.request_type = data.get('request_type') or MovementRecord.RequestType.REQUEST
            except (Store.DoesNotExist, ValueError, TypeError):
                raise ValidationFailed({'store': 'Store not found or inactive'})

            MovementWorkflowService._require_store(staff, record.initiating_store_id, 'create')

            for field in HEADER_FIELDS:
                if data.get(field) is not None:
                    setattr(record, field, data[field])

            try:
                record.save()
            except ValidationError as e:
                raise _validation_failed(e)

            if data.get('line_items'):
                MovementWorkflowService._replace_lines(record, data['line_items'])
                record.recalculate_totals()
                record.save(update_fields=['total_value', 'updated_at'], skip_validation=True)

            logger.info(f"{record.get_kind_display()} {record.reference_number} created by {staff}")
            transaction.on_commit(lambda: broadcast_record(record, 'movement.created'))

        return record

    @staticmethod
    def update_draft(record_id, actor, data: Dict) -> MovementRecord:
        """
        Edit header fields and/or replace the lines of an editable record.

        Editable means draft, or returned_for_correction for physical inventories.

        Raises:
            NotFound, InvalidTransition, Forbidden, ValidationFailed
        """
        staff = _staff(actor)
        with transaction.atomic():
            record = MovementWorkflowService._lock_record(record_id, staff, Action.UPDATE)
            try:
                ensure_editable(record.kind, record.status)
            except InvalidTransition:
                logger.warning(f"Rejected update on {record.reference_number}: status is {record.status}")
                raise
            MovementWorkflowService._require_store(staff, record.initiating_store_id, Action.UPDATE, record)

            fixed = [
                field for field in ('kind', 'store_id', 'requesting_store_id', 'issuing_store_id', 'request_type')
                if field in data and data[field] != getattr(record, field)
            ]
            if fixed:
                raise ValidationFailed({field: 'Cannot change after creation' for field in fixed})

            for field in HEADER_FIELDS:
                if field in data:
                    value = data[field]
                    if value is None and field != 'expected_delivery_date':
                        continue
                    setattr(record, field, value)

            if 'line_items' in data:
                MovementWorkflowService._replace_lines(record, data['line_items'] or [])

            record.recalculate_totals()
            record.updated_by = staff
            try:
                record.save()
            except ValidationError as e:
                raise _validation_failed(e)

            logger.info(f"{record.reference_number} updated by {staff}")
            transaction.on_commit(lambda: broadcast_record(record))

        return record

    @staticmethod
    def _replace_lines(record: MovementRecord, line_data: List[Dict]):
        """
        Validate and replace all lines of a record.

        Raises:
            ValidationFailed: Duplicate or unknown products, missing quantities
        """
        errors = {}
        seen = set()
        product_ids = [entry.get('product_id') for entry in line_data]
        products = Product.objects.in_bulk(
            [pid for pid in product_ids if isinstance(pid, int)]
        )

        for index, entry in enumerate(line_data):
            product_id = entry.get('product_id')
            product = products.get(product_id)
            if product is None or not product.is_active:
                errors[f'line_items[{index}]'] = f'Product {product_id} not found or inactive'
            elif product_id in seen:
                errors[f'line_items[{index}]'] = f'Product {product_id} appears more than once'
            elif record.kind == Kind.STORE_REQUEST_ISSUE and not (entry.get('quantity_requested') or 0) > 0:
                errors[f'line_items[{index}]'] = 'Requested quantity must be greater than 0'
            elif record.kind == Kind.PHYSICAL_INVENTORY and entry.get('counted_quantity') is None:
                errors[f'line_items[{index}]'] = 'Counted quantity is required'
            seen.add(product_id)

        if errors:
            raise ValidationFailed(errors)

        stock_levels = {}
        if record.kind == Kind.PHYSICAL_INVENTORY:
            stock_levels = dict(
                StoreStock.objects.filter(store=record.store, product_id__in=seen)
                .values_list('product_id', 'quantity')
            )

        record.line_items.all().delete()
        for position, entry in enumerate(line_data):
            product = products[entry['product_id']]
            line = MovementLineItem(
                record=record,
                product=product,
                position=position,
                unit_value=entry.get('unit_value', product.unit_cost),
                notes=entry.get('notes', ''),
            )
            if record.kind == Kind.PHYSICAL_INVENTORY:
                line.counted_quantity = entry['counted_quantity']
                line.expected_quantity = entry.get(
                    'expected_quantity', stock_levels.get(product.id, 0)
                )
            else:
                line.quantity_requested = entry['quantity_requested']
            line.save()

    @staticmethod
    def delete(record_id, actor) -> None:
        """
        Delete a draft.

        Raises:
            NotFound, InvalidTransition (not a draft), Forbidden
        """
        staff = _staff(actor)
        with transaction.atomic():
            record = MovementWorkflowService._lock_record(record_id, staff, Action.DELETE)
            try:
                ensure_deletable(record.status)
            except InvalidTransition:
                logger.warning(f"Rejected delete on {record.reference_number}: status is {record.status}")
                raise
            MovementWorkflowService._require_store(staff, record.initiating_store_id, Action.DELETE, record)

            groups = broadcast_groups_for(record)
            payload = {'id': str(record.pk), 'reference_number': record.reference_number}
            record.delete()
            logger.warning(f"{payload['reference_number']} deleted by {staff}")
            transaction.on_commit(
                lambda: broadcast_record(record, 'movement.deleted', groups=groups, record_data=payload)
            )

    # ========================================================================
    # Transitions
    # ========================================================================

    @staticmethod
    def submit(record_id, actor, notes: str = '') -> MovementRecord:
        """
        Submit a draft (or a physical inventory returned for correction).

        Business Rules:
        - At least one line item
        - Actor must belong to the initiating store
        - The return reason of a resubmitted count is cleared from the
          record (it stays in the event history)
        """
        staff = _staff(actor)
        with transaction.atomic():
            record = MovementWorkflowService._lock_record(record_id, staff, Action.SUBMIT)
            (to_status,) = MovementWorkflowService._targets(record, Action.SUBMIT)
            MovementWorkflowService._require_store(staff, record.initiating_store_id, Action.SUBMIT, record)

            if not record.line_items.exists():
                raise ValidationFailed({'line_items': 'Add at least one line item before submitting'})

            record.submitted_by = staff
            record.submitted_at = timezone.now()
            record.return_reason = ''
            return MovementWorkflowService._commit(record, staff, Action.SUBMIT, to_status, notes=notes)

    @staticmethod
    def approve(record_id, actor, notes: str = '', approved_items: Optional[List[Dict]] = None) -> MovementRecord:
        """
        Approve a submitted record.

        Physical inventory: store member with role admin/manager; the
        counted quantities are posted as the new store stock.
        Store request: issuing-store member with role admin/manager. The
        approver may lower what will be issued per line.

        Args:
            approved_items: Store requests only,
                            [{'product_id': ..., 'approved_quantity': ...}];
                            lines left out are approved as requested

        Raises:
            ValidationFailed: Approved quantity above the requested one,
                              unknown product, or nothing approved at all
        """
        staff = _staff(actor)
        with transaction.atomic():
            record = MovementWorkflowService._lock_record(record_id, staff, Action.APPROVE)
            (to_status,) = MovementWorkflowService._targets(record, Action.APPROVE)
            MovementWorkflowService._require_store(
                staff, MovementWorkflowService._approval_store_id(record), Action.APPROVE, record
            )
            MovementWorkflowService._require_approver(staff, Action.APPROVE, record)

            posting_lines = None
            if record.kind == Kind.PHYSICAL_INVENTORY:
                if approved_items:
                    raise ValidationFailed({'approved_items': 'Only store requests take approved quantities'})
                posting_lines = [
                    {'product_id': line.product_id, 'quantity': line.counted_quantity, 'unit_value': line.unit_value}
                    for line in record.line_items.all()
                ]
            else:
                MovementWorkflowService._set_approved_quantities(record, approved_items or [])

            record.approved_by = staff
            record.approved_at = timezone.now()
            record.approval_notes = notes or ''
            return MovementWorkflowService._commit(
                record, staff, Action.APPROVE, to_status, notes=notes, posting_lines=posting_lines
            )

    @staticmethod
    def _set_approved_quantities(record: MovementRecord, approved_items: List[Dict]):
        """
        Fix the approved quantity of every line of a store request.

        Raises:
            ValidationFailed: Unknown or repeated product, quantity outside
                              0..requested, or every line approved at zero
        """
        lines = list(record.line_items.select_for_update().order_by('position', 'id'))
        lines_by_product = {line.product_id: line for line in lines}
        approved = {}
        errors = {}

        for index, entry in enumerate(approved_items):
            product_id = entry.get('product_id')
            quantity = entry.get('approved_quantity')
            line = lines_by_product.get(product_id)
            if line is None:
                errors[f'approved_items[{index}]'] = f'Product {product_id} is not on this record'
            elif product_id in approved:
                errors[f'approved_items[{index}]'] = f'Product {product_id} appears more than once'
            elif not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 0:
                errors[f'approved_items[{index}]'] = 'Approved quantity must be a whole number of 0 or more'
            elif quantity > line.quantity_requested:
                errors[f'approved_items[{index}]'] = (
                    f'Approved quantity {quantity} exceeds requested quantity {line.quantity_requested}'
                )
            else:
                approved[product_id] = quantity

        if errors:
            raise ValidationFailed(errors)

        for line in lines:
            line.quantity_approved = approved.get(line.product_id, line.quantity_requested)
        if not any(line.quantity_approved for line in lines):
            raise ValidationFailed({'approved_items': 'Approve at least one unit, or reject the request'})

        for line in lines:
            line.save(update_fields=['quantity_approved', 'line_value', 'updated_at'])

    @staticmethod
    def reject(record_id, actor, reason: str) -> MovementRecord:
        """
        Reject a submitted record. A non-empty reason is required.
        """
        staff = _staff(actor)
        with transaction.atomic():
            record = MovementWorkflowService._lock_record(record_id, staff, Action.REJECT)
            (to_status,) = MovementWorkflowService._targets(record, Action.REJECT)
            MovementWorkflowService._require_store(
                staff, MovementWorkflowService._approval_store_id(record), Action.REJECT, record
            )
            MovementWorkflowService._require_approver(staff, Action.REJECT, record)
            reason = MovementWorkflowService._require_reason(reason)

            record.rejected_by = staff
            record.rejected_at = timezone.now()
            record.rejection_reason = reason
            return MovementWorkflowService._commit(record, staff, Action.REJECT, to_status, reason=reason)

    @staticmethod
    def return_for_correction(record_id, actor, reason: str) -> MovementRecord:
        """
        Send a submitted physical inventory back to its store for correction.
        """
        staff = _staff(actor)
        with transaction.atomic():
            record = MovementWorkflowService._lock_record(record_id, staff, Action.RETURN_FOR_CORRECTION)
            (to_status,) = MovementWorkflowService._targets(record, Action.RETURN_FOR_CORRECTION)
            MovementWorkflowService._require_store(staff, record.store_id, Action.RETURN_FOR_CORRECTION, record)
            MovementWorkflowService._require_approver(staff, 'return', record)
            reason = MovementWorkflowService._require_reason(reason)

            record.returned_by = staff
            record.returned_at = timezone.now()
            record.return_reason = reason
            return MovementWorkflowService._commit(
                record, staff, Action.RETURN_FOR_CORRECTION, to_status, reason=reason
            )

    @staticmethod
    def fulfill(record_id, actor, line_issues: Optional[List[Dict]] = None, notes: str = '') -> MovementRecord:
        """
        Record an issue event for an approved (or partly issued) store request.

        Args:
            record_id: Record to issue against
            actor: Issuing-store member
            line_issues: [{'product_id': ..., 'quantity': ...}]; None issues
                         everything still outstanding

        Raises:
            OverIssue: Some line would be issued beyond its requested quantity
            ValidationFailed: Malformed event, or not enough stock at the issuing store
        """
        staff = _staff(actor)
        with transaction.atomic():
            record = MovementWorkflowService._lock_record(record_id, staff, Action.FULFILL)
            outcomes = MovementWorkflowService._targets(record, Action.FULFILL)
            MovementWorkflowService._require_store(staff, record.issuing_store_id, Action.FULFILL, record)

            lines = list(record.line_items.select_for_update().order_by('position', 'id'))
            changes, to_status = apply_issue_event(lines, line_issues, current=record.status)
            if to_status not in outcomes:
                raise InvalidTransition(record.status, Action.FULFILL)

            for change in changes:
                change['line'].save(update_fields=['quantity_issued', 'line_value', 'updated_at'])

            if to_status == Status.FULFILLED:
                record.fulfilled_by = staff
                record.fulfilled_at = timezone.now()
            return MovementWorkflowService._commit(
                record, staff, Action.FULFILL, to_status, notes=notes,
                posting_lines=MovementWorkflowService._posting_lines(changes),
                line_changes=(LineItemEvent.EventType.ISSUED, changes)
            )

    @staticmethod
    def receive(record_id, actor, line_receipts: Optional[List[Dict]] = None, notes: str = '') -> MovementRecord:
        """
        Record a receipt event at the requesting store.

        Receipts are capped by the issued quantity of each line.

        Raises:
            OverReceive: Some line would be received beyond what was issued
        """
        staff = _staff(actor)
        with transaction.atomic():
            record = MovementWorkflowService._lock_record(record_id, staff, Action.RECEIVE)
            outcomes = MovementWorkflowService._targets(record, Action.RECEIVE)
            MovementWorkflowService._require_store(staff, record.requesting_store_id, Action.RECEIVE, record)

            lines = list(record.line_items.select_for_update().order_by('position', 'id'))
            changes, to_status = apply_receipt_event(lines, line_receipts, current=record.status)
            if to_status not in outcomes:
                raise InvalidTransition(record.status, Action.RECEIVE)

            for change in changes:
                change['line'].save(update_fields=['quantity_received', 'line_value', 'updated_at'])

            if to_status == Status.FULLY_RECEIVED:
                record.received_by = staff
                record.received_at = timezone.now()
            return MovementWorkflowService._commit(
                record, staff, Action.RECEIVE, to_status, notes=notes,
                posting_lines=MovementWorkflowService._posting_lines(changes),
                line_changes=(LineItemEvent.EventType.RECEIVED, changes)
            )

    @staticmethod
    def cancel(record_id, actor, reason: str = '') -> MovementRecord:
        """
        Cancel a store request.

        Before approval the initiating store cancels; from approval on the
        issuing store does. A request that was partly issued ends as
        partial_issued_cancelled so its issue history stays distinguishable.
        """
        staff = _staff(actor)
        with transaction.atomic():
            record = MovementWorkflowService._lock_record(record_id, staff, Action.CANCEL)
            (to_status,) = MovementWorkflowService._targets(record, Action.CANCEL)
            if record.status in (Status.DRAFT, Status.SUBMITTED):
                store_id = record.initiating_store_id
            else:
                store_id = record.issuing_store_id
            MovementWorkflowService._require_store(staff, store_id, Action.CANCEL, record)

            record.cancelled_by = staff
            record.cancelled_at = timezone.now()
            return MovementWorkflowService._commit(
                record, staff, Action.CANCEL, to_status, reason=(reason or '').strip()
            )

    @staticmethod
    def accept_variance(record_id, actor, variance_data: Optional[Dict] = None) -> MovementRecord:
        """
        Accept the count variance of an approved physical inventory.

        The delta values are computed from counted versus expected
        quantities. Figures sent by the client, if any, must match them.
        A variance can only be accepted once.
        """
        staff = _staff(actor)
        variance_data = variance_data or {}
        with transaction.atomic():
            record = MovementWorkflowService._lock_record(record_id, staff, Action.ACCEPT_VARIANCE)
            (to_status,) = MovementWorkflowService._targets(record, Action.ACCEPT_VARIANCE)
            if record.variance_accepted_at:
                logger.warning(f"Rejected accept_variance on {record.reference_number}: already accepted")
                raise InvalidTransition(
                    record.status, Action.ACCEPT_VARIANCE,
                    detail={
                        'error': 'Variance has already been accepted',
                        'current_status': record.status,
                        'action': Action.ACCEPT_VARIANCE.value,
                    }
                )
            MovementWorkflowService._require_store(staff, record.store_id, Action.ACCEPT_VARIANCE, record)
            MovementWorkflowService._require_approver(staff, 'accept the variance of', record)

            lines = list(record.line_items.all())
            summary = record.variance_summary()
            mismatched = {
                field: f'Expected {summary[field]}, got {variance_data[field]}'
                for field in summary
                if variance_data.get(field) is not None
                and Decimal(str(variance_data[field])) != summary[field]
            }
            if mismatched:
                raise ValidationFailed(mismatched)

            for field, value in summary.items():
                setattr(record, field, value)
            record.variance_notes = variance_data.get('variance_notes') or ''
            record.variance_accepted_by = staff
            record.variance_accepted_at = timezone.now()

            posting_lines = [
                {'product_id': line.product_id, 'quantity': line.delta_quantity, 'unit_value': line.unit_value}
                for line in lines
                if line.delta_quantity
            ]
            return MovementWorkflowService._commit(
                record, staff, Action.ACCEPT_VARIANCE, to_status,
                notes=record.variance_notes, posting_lines=posting_lines
            )

    # ========================================================================
    # Commit
    # ========================================================================

    @staticmethod
    def _posting_lines(changes):
        return [
            {
                'product_id': change['line'].product_id,
                'quantity': change['quantity'],
                'unit_value': change['line'].unit_value,
            }
            for change in changes
        ]

    @staticmethod
    def _commit(record, staff, action, to_status, reason='', notes='', posting_lines=None, line_changes=None):
        """
        Post the side effect, then write status, audit event and line events.

        Must be called inside the caller's transaction.atomic() block.

        Raises:
            ValidationFailed: Posting backend or model validation refused the change
            SideEffectFailed: Posting backend failed
        """
        from_status = record.status
        sequence = record.transition_sequence + 1

        if action in POSTING_ACTIONS[record.kind]:
            try:
                get_posting_backend().apply_movement(record, sequence, action, posting_lines or [], staff)
            except ValidationFailed:
                raise
            except Exception as e:
                logger.error(
                    f"Posting {record.idempotency_key(sequence)} failed for "
                    f"{action} on {record.reference_number}: {e}"
                )
                raise SideEffectFailed()

        record.status = to_status
        record.transition_sequence = sequence
        record.updated_by = staff
        record.recalculate_totals()
        try:
            record.save()
        except ValidationError as e:
            raise _validation_failed(e)

        event = MovementEvent.objects.create(
            record=record,
            sequence=sequence,
            action=action,
            from_status=from_status,
            to_status=to_status,
            actor=staff,
            reason=reason,
            notes=notes or '',
        )
        if line_changes:
            event_type, changes = line_changes
            LineItemEvent.objects.bulk_create([
                LineItemEvent(
                    line_item=change['line'],
                    movement_event=event,
                    event_type=event_type,
                    quantity=change['quantity'],
                    previous_quantity=change['previous_quantity'],
                    new_quantity=change['new_quantity'],
                )
                for change in changes
            ])

        logger.info(
            f"{record.reference_number}: {from_status} -> {to_status} ({action}) "
            f"by {staff}, sequence {sequence}"
        )
        transaction.on_commit(lambda: broadcast_record(record))
        return record
