from django.contrib.auth.password_validation import validate_password
from rest_framework import serializers

from .models import ActivityLog, Company, Membership, User


class CompanySerializer(serializers.ModelSerializer):
    class Meta:
        model = Company
        fields = ['id', 'name', 'slug', 'created_at']
        read_only_fields = ['id', 'created_at']
        # Slug clashes are reported as CONFLICT by the view
        extra_kwargs = {'slug': {'validators': []}}

    def validate_name(self, value):
        value = value.strip()
        if not value:
            raise serializers.ValidationError("Company name is required.")
        return value


class MembershipSerializer(serializers.ModelSerializer):
    company = CompanySerializer(read_only=True)

    class Meta:
        model = Membership
        fields = ['id', 'company', 'role', 'status', 'created_at']


class MembershipWriteSerializer(serializers.Serializer):
    company_id = serializers.UUIDField()
    role = serializers.ChoiceField(choices=Membership.ROLE_CHOICES, default=Membership.ROLE_STAFF)
    status = serializers.ChoiceField(choices=Membership.STATUS_CHOICES, default=Membership.STATUS_ACTIVE)

    def validate_company_id(self, value):
        if not Company.objects.filter(pk=value).exists():
            raise serializers.ValidationError("Company not found.")
        return value


class UserSerializer(serializers.ModelSerializer):
    membership = serializers.SerializerMethodField()

    class Meta:
        model = User
        fields = ['id', 'username', 'email', 'first_name', 'last_name', 'system_role',
                  'is_active', 'membership', 'created_at', 'updated_at']
        read_only_fields = ['id', 'username', 'membership', 'created_at', 'updated_at']

    def validate(self, attrs):
        becomes_superadmin = attrs.get('system_role') == User.SYSTEM_ROLE_SUPERADMIN
        if becomes_superadmin and self.instance is not None and Membership.objects.filter(user=self.instance).exists():
            raise serializers.ValidationError({"system_role": "Superadmins cannot belong to a company."})
        return attrs

    def get_membership(self, obj):
        membership = getattr(obj, 'membership', None)
        if membership is None:
            return None
        return MembershipSerializer(membership).data


class UserCreateSerializer(serializers.ModelSerializer):
    password = serializers.CharField(write_only=True, validators=[validate_password])
    password_confirm = serializers.CharField(write_only=True)
    membership = MembershipWriteSerializer(required=False, allow_null=True)

    class Meta:
        model = User
        fields = ['username', 'email', 'password', 'password_confirm', 'first_name', 'last_name',
                  'system_role', 'membership']

    def validate(self, attrs):
        if attrs['password'] != attrs['password_confirm']:
            raise serializers.ValidationError({"password": "Passwords don't match"})
        if attrs.get('system_role') == User.SYSTEM_ROLE_SUPERADMIN and attrs.get('membership'):
            raise serializers.ValidationError({"membership": "Superadmins cannot belong to a company."})
        return attrs

    def create(self, validated_data):
        validated_data.pop('password_confirm')
        validated_data.pop('membership', None)
        password = validated_data.pop('password')
        user = User(**validated_data, is_active=True)
        user.set_password(password)
        user.save()
        return user


class LoginSerializer(serializers.Serializer):
    username = serializers.CharField(max_length=150)
    password = serializers.CharField(max_length=128, trim_whitespace=False)


class ImpersonationSerializer(serializers.Serializer):
    company_id = serializers.UUIDField()


class ActivityLogSerializer(serializers.ModelSerializer):
    actor_username = serializers.CharField(source='actor_user.username', read_only=True, default=None)

    class Meta:
        model = ActivityLog
        fields = ['id', 'company', 'actor_user', 'actor_username', 'action', 'target_type',
                  'target_id', 'meta', 'ip_address', 'created_at']
