"""
Movement Posting Service

The "apply movement" side effect of a committed transition: stock
adjustments for approved counts, stock transfers for issues and receipts,
and the value posting for accepted variances.

Every call carries an idempotency key built from the record id and the
transition sequence number. Posting the same key twice is a no-op, so a
caller may safely retry after a failure.

The backend is pluggable through the MOVEMENT_POSTING_BACKEND setting:

    MOVEMENT_POSTING_BACKEND = 'movements.services.posting_service.LocalStockPoster'

Any class with an apply_movement(record, sequence, action, lines, actor)
method works. Raising ValidationFailed reports a business problem (e.g.
insufficient stock); any other exception is treated as a failed posting
and rolls the transition back.
"""

import logging
from decimal import Decimal
from typing import Dict, List

from django.conf import settings
from django.utils.module_loading import import_string

from utils.exceptions import ValidationFailed
from movements.models import MovementPosting, StoreStock, StockMovement
from movements.workflow import Action

logger = logging.getLogger(__name__)

DEFAULT_POSTING_BACKEND = 'movements.services.posting_service.LocalStockPoster'


def get_posting_backend():
    """Instantiate the configured posting backend."""
    path = getattr(settings, 'MOVEMENT_POSTING_BACKEND', DEFAULT_POSTING_BACKEND)
    return import_string(path)()


class BasePoster:
    """Interface of a posting backend."""

    def apply_movement(self, record, sequence: int, action: str, lines: List[Dict], actor):
        """
        Apply the side effect of one transition.

        Args:
            record: MovementRecord being transitioned
            sequence: Transition sequence number the transition will commit as
            action: Action being committed
            lines: [{'product_id', 'quantity', 'unit_value'}]
            actor: StaffMember performing the action

        Returns:
            MovementPosting (or any record of the posting)
        """
        raise NotImplementedError


class LocalStockPoster(BasePoster):
    """
    Posts movements against StoreStock in the same database.

    - approve (physical inventory): store stock is set to the counted quantity
    - fulfill: issued quantity leaves the issuing store
    - receive: received quantity enters the requesting store
    - accept_variance: value-only posting, no stock change
    """

    def apply_movement(self, record, sequence, action, lines, actor):
        key = record.idempotency_key(sequence)
        total_quantity = sum(line['quantity'] for line in lines)
        total_value = sum(
            (line['quantity'] * line['unit_value'] for line in lines),
            Decimal('0.00')
        )

        posting, created = MovementPosting.objects.get_or_create(
            idempotency_key=key,
            defaults={
                'record': record,
                'sequence': sequence,
                'action': action,
                'total_quantity': total_quantity,
                'total_value': total_value,
            }
        )
        if not created:
            logger.info(f"Posting {key} already applied, skipping")
            return posting

        if action == Action.APPROVE:
            for line in lines:
                self._set_stock(posting, record.store_id, line, actor,
                                StockMovement.MovementType.PHYSICAL_COUNT)
        elif action == Action.FULFILL:
            for line in lines:
                self._change_stock(posting, record.issuing_store_id, line, -line['quantity'], actor,
                                   StockMovement.MovementType.STORE_ISSUE)
        elif action == Action.RECEIVE:
            for line in lines:
                self._change_stock(posting, record.requesting_store_id, line, line['quantity'], actor,
                                   StockMovement.MovementType.STORE_RECEIPT)

        logger.info(
            f"Posted {action} for {record.reference_number} "
            f"(key {key}, {len(lines)} lines, value {total_value})"
        )
        return posting

    @staticmethod
    def _lock_stock(store_id, product_id):
        stock, _ = StoreStock.objects.select_for_update().get_or_create(
            store_id=store_id,
            product_id=product_id,
            defaults={'quantity': 0}
        )
        return stock

    def _set_stock(self, posting, store_id, line, actor, movement_type):
        stock = self._lock_stock(store_id, line['product_id'])
        self._record_change(posting, stock, line['quantity'] - stock.quantity, actor, movement_type)

    def _change_stock(self, posting, store_id, line, change, actor, movement_type):
        stock = self._lock_stock(store_id, line['product_id'])
        if stock.quantity + change < 0:
            raise ValidationFailed({
                'stock': f"Insufficient stock for product {line['product_id']}. "
                         f"Available: {stock.quantity}, Required: {-change}"
            })
        self._record_change(posting, stock, change, actor, movement_type)

    @staticmethod
    def _record_change(posting, stock, change, actor, movement_type):
        quantity_before = stock.quantity
        stock.quantity = quantity_before + change
        stock.save(update_fields=['quantity', 'updated_at'])

        StockMovement.objects.create(
            movement_type=movement_type,
            store_id=stock.store_id,
            product_id=stock.product_id,
            posting=posting,
            quantity_before=quantity_before,
            quantity_after=stock.quantity,
            quantity_change=change,
            reference=posting.record.reference_number,
            performed_by=actor,
        )
