"""
Serializers for the Campus Marketplace API.

Request serializers only check the shape of the input; the order workflow
rules (stock, ownership, state) are enforced by ``core.services``.
"""

from decimal import Decimal

from django.contrib.auth import get_user_model
from django.contrib.auth.password_validation import validate_password
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction
from rest_framework import serializers

from .exceptions import Unavailable
from .models import CartLine, Item, Order
from .validators import validate_otp_format

User = get_user_model()


# ============================================================================
# Users
# ============================================================================

class UserRegistrationSerializer(serializers.ModelSerializer):
    """
    Serializer for user registration.

    Fields:
    - email: Required, unique (case-insensitive)
    - password: Required, must pass Django's password validators
    - confirm_password: Required, must match password
    - first_name, last_name, contact_number: Optional
    """

    password = serializers.CharField(
        write_only=True,
        required=True,
        style={'input_type': 'password'}
    )
    confirm_password = serializers.CharField(
        write_only=True,
        required=True,
        style={'input_type': 'password'}
    )

    class Meta:
        model = User
        fields = ['id', 'email', 'password', 'confirm_password', 'first_name',
                  'last_name', 'contact_number', 'created_at']
        read_only_fields = ['id', 'created_at']
        extra_kwargs = {
            # The email is also stored as the username, which holds 150 characters
            'email': {'required': True, 'max_length': 150},
        }

    def validate_email(self, value):
        value = value.strip().lower()

        if User.objects.filter(email__iexact=value).exists():
            raise serializers.ValidationError(
                "A user with that email already exists."
            )

        return value

    def validate_password(self, value):
        """
        Validate password strength using Django's password validators.
        """
        try:
            validate_password(value)
        except DjangoValidationError as e:
            raise serializers.ValidationError(list(e.messages))

        return value

    def validate(self, attrs):
        if attrs.get('password') != attrs.get('confirm_password'):
            raise serializers.ValidationError({
                'confirm_password': 'Password confirmation does not match.'
            })

        return attrs

    def create(self, validated_data):
        """
        Create the user with a hashed password.

        The email doubles as the username, which AbstractUser still requires.
        """
        validated_data.pop('confirm_password', None)
        password = validated_data.pop('password')

        with transaction.atomic():
            user = User(username=validated_data['email'], **validated_data)
            user.set_password(password)
            user.save()

        return user


class UserSummarySerializer(serializers.ModelSerializer):
    """Public view of a user nested in items, orders and bargains."""

    class Meta:
        model = User
        fields = ['id', 'email', 'first_name', 'last_name']
        read_only_fields = fields


# ============================================================================
# Items
# ============================================================================

class ItemSerializer(serializers.ModelSerializer):
    """Read serializer for item listings."""

    seller = UserSummarySerializer(read_only=True)

    class Meta:
        model = Item
        fields = [
            'id',
            'name',
            'description',
            'category',
            'price',
            'quantity',
            'is_available',
            'seller',
            'created_at',
            'updated_at'
        ]
        read_only_fields = fields


class ItemWriteSerializer(serializers.ModelSerializer):
    """
    Serializer for creating and updating listings.

    ``is_available`` is not writable; it follows ``quantity``. The seller is
    taken from the view (``serializer.save(seller=...)``).
    """

    class Meta:
        model = Item
        fields = ['id', 'name', 'description', 'category', 'price', 'quantity']
        read_only_fields = ['id']
        extra_kwargs = {
            'name': {'required': True},
            'price': {'required': True},
        }

    def validate_name(self, value):
        """
        Validate name is not empty or whitespace-only.

        Raises:
            ValidationError: If name is empty or whitespace
        """
        if not value or not value.strip():
            raise serializers.ValidationError(
                "Name cannot be empty."
            )

        return value.strip()

    def validate_price(self, value):
        if value is None or value <= Decimal('0.00'):
            raise serializers.ValidationError(
                "Price must be greater than 0."
            )

        return value

    def create(self, validated_data):
        try:
            return super().create(validated_data)
        except DjangoValidationError as e:
            raise serializers.ValidationError(e.message_dict)

    def update(self, instance, validated_data):
        try:
            return super().update(instance, validated_data)
        except DjangoValidationError as e:
            raise serializers.ValidationError(e.message_dict)


class ItemListQuerySerializer(serializers.Serializer):
    """Query parameters accepted by the public item listing."""

    search = serializers.CharField(required=False, allow_blank=True)
    category = serializers.CharField(required=False, allow_blank=True)
    min_price = serializers.DecimalField(max_digits=10, decimal_places=2, required=False, min_value=Decimal('0'))
    max_price = serializers.DecimalField(max_digits=10, decimal_places=2, required=False, min_value=Decimal('0'))

    def validate(self, attrs):
        min_price = attrs.get('min_price')
        max_price = attrs.get('max_price')

        if min_price is not None and max_price is not None and min_price > max_price:
            raise serializers.ValidationError({
                'max_price': 'max_price must be greater than or equal to min_price.'
            })

        return attrs


# ============================================================================
# Cart and bargaining
# ============================================================================

class BargainSerializer(serializers.Serializer):
    """Bargain sub-record of a cart line."""

    proposed_price = serializers.DecimalField(max_digits=10, decimal_places=2, read_only=True)
    note = serializers.CharField(read_only=True)
    state = serializers.CharField(read_only=True)
    proposed_by = serializers.CharField(read_only=True)


class CartLineSerializer(serializers.ModelSerializer):
    """
    Cart line as shown to its buyer.

    Fields:
    - item: Nested item listing
    - bargain: Bargain sub-record, or null
    - unit_price: Price that would be charged if checked out now
    - line_total: unit_price * quantity
    """

    item = ItemSerializer(read_only=True)
    bargain = BargainSerializer(read_only=True, allow_null=True)
    unit_price = serializers.SerializerMethodField()
    line_total = serializers.SerializerMethodField()

    class Meta:
        model = CartLine
        fields = [
            'id',
            'item',
            'quantity',
            'saved_for_later',
            'bargain',
            'unit_price',
            'line_total',
            'created_at',
            'updated_at'
        ]
        read_only_fields = fields

    def get_unit_price(self, obj):
        return str(obj.settled_price())

    def get_line_total(self, obj):
        return str(obj.settled_price() * obj.quantity)


class CartLineCreateSerializer(serializers.Serializer):
    item = serializers.IntegerField(min_value=1)
    quantity = serializers.IntegerField(min_value=1, default=1)


class CartLineUpdateSerializer(serializers.ModelSerializer):
    """
    Partial update of a cart line (quantity, saved_for_later).

    The new quantity may not exceed the item's remaining stock.
    """

    class Meta:
        model = CartLine
        fields = ['quantity', 'saved_for_later']

    def validate_quantity(self, value):
        if value < 1:
            raise serializers.ValidationError("Quantity must be at least 1.")

        item = self.instance.item
        if value > item.quantity:
            raise Unavailable(
                f'Only {item.quantity} unit(s) of "{item.name}" are available.',
                item_id=item.pk,
                cart_line_id=self.instance.pk
            )

        return value


class BargainProposalSerializer(serializers.Serializer):
    price = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=Decimal('0.01'))
    note = serializers.CharField(max_length=500, required=False, allow_blank=True, default='')


class BargainResponseSerializer(serializers.Serializer):
    """
    Answer to a pending bargain.

    A counter-offer must carry ``counter_price``.
    """

    ACTION_CHOICES = ['accept', 'reject', 'counter']

    action = serializers.ChoiceField(choices=ACTION_CHOICES)
    counter_price = serializers.DecimalField(
        max_digits=10,
        decimal_places=2,
        min_value=Decimal('0.01'),
        required=False,
        allow_null=True
    )
    note = serializers.CharField(max_length=500, required=False, allow_blank=True, default='')

    def validate(self, attrs):
        if attrs['action'] == 'counter' and attrs.get('counter_price') is None:
            raise serializers.ValidationError({
                'counter_price': 'Counter price is required for a counter offer.'
            })

        return attrs


class BargainRequestSerializer(serializers.ModelSerializer):
    """Pending bargain on one of the seller's items."""

    buyer = UserSummarySerializer(read_only=True)
    item = serializers.SerializerMethodField()
    bargain = BargainSerializer(read_only=True)

    class Meta:
        model = CartLine
        fields = ['id', 'buyer', 'item', 'quantity', 'bargain', 'updated_at']
        read_only_fields = fields

    def get_item(self, obj):
        return {
            'id': obj.item_id,
            'name': obj.item.name,
            'price': str(obj.item.price),
        }


# ============================================================================
# Orders
# ============================================================================

class OrderSerializer(serializers.ModelSerializer):
    """
    Order as shown to its buyer or seller.

    The delivery code hash is never exposed.
    """

    item = serializers.SerializerMethodField()
    buyer = UserSummarySerializer(read_only=True)
    seller = UserSummarySerializer(read_only=True)
    total_price = serializers.DecimalField(max_digits=12, decimal_places=2, read_only=True)

    class Meta:
        model = Order
        fields = [
            'id',
            'item',
            'buyer',
            'seller',
            'quantity',
            'listed_price',
            'settled_price',
            'total_price',
            'status',
            'otp_expiry',
            'delivered_at',
            'cancelled_at',
            'created_at',
            'updated_at'
        ]
        read_only_fields = fields

    def get_item(self, obj):
        return {
            'id': obj.item_id,
            'name': obj.item.name,
            'category': obj.item.category,
        }


class PlacedOrderSerializer(OrderSerializer):
    """Order returned from placement, carrying its one-time delivery code."""

    otp = serializers.SerializerMethodField()

    class Meta(OrderSerializer.Meta):
        fields = OrderSerializer.Meta.fields + ['otp']
        read_only_fields = fields

    def get_otp(self, obj):
        return self.context.get('otps', {}).get(obj.pk)


class PlaceOrderSerializer(serializers.Serializer):
    cart_line_ids = serializers.ListField(
        child=serializers.IntegerField(min_value=1),
        allow_empty=False
    )

    def validate_cart_line_ids(self, value):
        if len(set(value)) != len(value):
            raise serializers.ValidationError("Cart line ids must not repeat.")

        return value


class ConfirmDeliverySerializer(serializers.Serializer):
    otp = serializers.CharField(max_length=12, trim_whitespace=True)

    def validate_otp(self, value):
        try:
            validate_otp_format(value)
        except DjangoValidationError as e:
            raise serializers.ValidationError(list(e.messages))

        return value


class OrderListQuerySerializer(serializers.Serializer):
    """Query parameters accepted by the order listing."""

    TYPE_CHOICES = ['bought', 'sold', 'all']

    type = serializers.ChoiceField(choices=TYPE_CHOICES, required=False, default='all')
    status = serializers.ChoiceField(choices=Order.STATUS_CHOICES, required=False)


# ============================================================================
# Seller dashboard
# ============================================================================

class MonthlySalesSerializer(serializers.Serializer):
    month = serializers.CharField()
    revenue = serializers.DecimalField(max_digits=14, decimal_places=2)
    settled_revenue = serializers.DecimalField(max_digits=14, decimal_places=2)


class SellerStatsSerializer(serializers.Serializer):
    sales_data = MonthlySalesSerializer(many=True)
    total_earnings = serializers.DecimalField(max_digits=14, decimal_places=2)
    pending_orders_count = serializers.IntegerField()
    completed_orders_count = serializers.IntegerField()
    cancelled_orders_count = serializers.IntegerField()
