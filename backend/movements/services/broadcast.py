"""
Store-scoped WebSocket broadcasts for movement records.

Each store has its own channel group; a record is only sent to the groups
of stores whose staff may see it (see movements.scope).
"""

import json
import logging
from types import SimpleNamespace

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer

from movements.scope import visible_to

logger = logging.getLogger(__name__)


def store_group_name(store_id):
    return f'store_{store_id}'


def broadcast_groups_for(record):
    """Channel groups allowed to receive `record`."""
    groups = []
    for store_id in sorted(record.party_store_ids):
        if visible_to(SimpleNamespace(store_ids=frozenset({store_id})), record):
            groups.append(store_group_name(store_id))
    return groups


def broadcast_record(record, event_type='movement.updated', groups=None, record_data=None):
    """
    Send a record to every store group allowed to see it.

    Args:
        record: MovementRecord instance
        event_type: 'movement.created', 'movement.updated' or 'movement.deleted'
        groups: Precomputed group names (used for deletions, after the row is gone)
        record_data: Payload to send instead of the serialized record
    """
    from movements.serializers import MovementRecordSerializer

    try:
        channel_layer = get_channel_layer()
        if channel_layer:
            if record_data is None:
                # Round-trip through JSON so UUIDs, dates and Decimals become strings
                record_data = json.loads(json.dumps(MovementRecordSerializer(record).data, default=str))

            for group in (groups if groups is not None else broadcast_groups_for(record)):
                async_to_sync(channel_layer.group_send)(
                    group,
                    {
                        'type': event_type,
                        'record': record_data
                    }
                )
            logger.info(f"Broadcasted {event_type} for {record.reference_number}")
    except Exception as e:
        logger.error(f"Failed to broadcast {event_type} for {record.reference_number}: {e}")
