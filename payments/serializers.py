"""
Serializers for payment initiation.
"""
from rest_framework import serializers


class EsewaInitiateSerializer(serializers.Serializer):
    order_id = serializers.UUIDField()


class KhaltiInitiateSerializer(serializers.Serializer):
    order_id = serializers.UUIDField()
    email = serializers.EmailField(required=False, allow_blank=True)
