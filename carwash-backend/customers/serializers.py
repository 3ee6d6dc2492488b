# customers/serializers.py

from rest_framework import serializers

from .models import Customer


class CustomerSerializer(serializers.ModelSerializer):
    full_name = serializers.CharField(read_only=True)

    class Meta:
        model = Customer
        fields = [
            "id",
            "tenant",
            "first_name",
            "last_name",
            "full_name",
            "email",
            "phone_number",
            "vehicle_info",
            "notes",
            "is_active",
            "created_by",
            "created_at",
            "updated_at",
        ]
        read_only_fields = [
            "tenant",
            "created_by",
            "created_at",
            "updated_at",
        ]

    def validate_vehicle_info(self, value):
        if not isinstance(value, list) or not all(isinstance(v, dict) for v in value):
            raise serializers.ValidationError("vehicle_info must be a list of objects.")
        return value

    def validate(self, attrs):
        # blanks are stored as NULL so they never collide on the per-tenant unique keys
        for field in ("email", "phone_number"):
            if field in attrs and not attrs[field]:
                attrs[field] = None

        request = self.context.get("request")
        tenant = getattr(self.instance, "tenant", None) or getattr(request, "tenant", None)
        qs = Customer.objects.filter(tenant=tenant)
        if self.instance is not None:
            qs = qs.exclude(pk=self.instance.pk)
        for field in ("email", "phone_number"):
            value = attrs.get(field)
            if value and qs.filter(**{field: value}).exists():
                raise serializers.ValidationError({field: "A customer with this value already exists."})
        return attrs

    def create(self, validated_data):
        request = self.context.get("request")
        tenant = getattr(request, "tenant", None)
        if tenant is None:
            raise serializers.ValidationError("Tenant context missing.")
        validated_data["tenant"] = tenant
        if request and request.user.is_authenticated:
            validated_data["created_by"] = request.user
        return super().create(validated_data)


class CustomerListSerializer(serializers.ModelSerializer):
    full_name = serializers.CharField(read_only=True)

    class Meta:
        model = Customer
        fields = [
            "id",
            "full_name",
            "first_name",
            "last_name",
            "email",
            "phone_number",
            "is_active",
        ]
