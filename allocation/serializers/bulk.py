from django.conf import settings
from rest_framework import serializers

from allocation.services.wards import bulk_update
from allocation.store import EntityType


class BulkUpdateItemSerializer(serializers.Serializer):
    id = serializers.JSONField()
    data = serializers.DictField(child=serializers.JSONField(), allow_empty=False)

    def validate_id(self, v):
        if v is None or v == '' or isinstance(v, (bool, list, dict)):
            raise serializers.ValidationError('A valid id is required.')
        return v


class BulkUpdateSerializer(serializers.Serializer):
    """Shape of a bulk update request: one entity type, 1 to 100 items.

    Existence and duplicate checks are left to the allocation guard so
    that every problem in the batch is reported in one response.
    """
    entityType = serializers.ChoiceField(choices=[t.value for t in EntityType])
    updates = serializers.ListField(child=BulkUpdateItemSerializer(), allow_empty=False)

    def validate_updates(self, v):
        limit = settings.BULK_UPDATE_MAX_ITEMS
        if len(v) > limit:
            raise serializers.ValidationError(f'No more than {limit} updates per request.')
        return v

    def apply(self, store, *, user=None):
        data = self.validated_data
        return bulk_update(store, data['entityType'], data['updates'], user=user)
