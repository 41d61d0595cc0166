"""
Data models for the Campus Marketplace.

Items are listed by sellers, collected by buyers into cart lines (optionally
with a bargain), and turned into orders that are closed either by an
OTP-confirmed delivery or by a cancellation.
"""

import secrets
from datetime import timedelta
from decimal import Decimal

from django.conf import settings
from django.contrib.auth.hashers import check_password, make_password
from django.contrib.auth.models import AbstractUser
from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator
from django.db import models
from django.utils import timezone
from django.utils.translation import gettext_lazy as _

from .validators import validate_phone_number


def generate_otp(length=None):
    """
    Generate a random numeric delivery code.

    The first digit is never zero so the code always has ``length`` digits.

    Args:
        length: Number of digits (defaults to settings.ORDER_OTP_LENGTH)

    Returns:
        str: Plaintext code
    """
    length = length or settings.ORDER_OTP_LENGTH
    lower = 10 ** (length - 1)
    return str(lower + secrets.randbelow(9 * lower))


class User(AbstractUser):
    """
    Custom User model extending Django's AbstractUser.

    Users log in with their email address. Every user can both buy and sell.

    Additional fields:
    - email: Required, unique email address (login field)
    - contact_number: Optional phone number with validation
    - created_at: Account creation timestamp
    - updated_at: Last update timestamp
    """

    email = models.EmailField(
        _('email address'),
        unique=True,
        blank=False,
        null=False,
        error_messages={
            'unique': _('A user with that email already exists.'),
        },
        help_text=_('Required. Enter a valid email address.')
    )

    contact_number = models.CharField(
        _('contact number'),
        max_length=20,
        blank=True,
        default='',
        validators=[validate_phone_number],
        help_text=_('Optional. Enter phone number in international format.')
    )

    created_at = models.DateTimeField(_('created at'), auto_now_add=True)
    updated_at = models.DateTimeField(_('updated at'), auto_now=True)

    USERNAME_FIELD = 'email'
    REQUIRED_FIELDS = ['username']

    class Meta:
        verbose_name = _('user')
        verbose_name_plural = _('users')
        ordering = ['-created_at']

    def __str__(self):
        """Return email as string representation."""
        return self.email or self.username

    def save(self, *args, **kwargs):
        """Normalize email to lowercase before saving."""
        if self.email:
            self.email = self.email.lower()
        super().save(*args, **kwargs)


class Item(models.Model):
    """
    Item listed for sale by a user.

    ``is_available`` is derived from ``quantity`` on every save so that
    an item is available exactly when it has stock left. Items are never
    deleted through the API; withdrawing a listing sets quantity to zero.
    """

    seller = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='items',
        help_text=_('User selling this item')
    )

    name = models.CharField(_('name'), max_length=200)

    description = models.TextField(_('description'), blank=True, default='')

    category = models.CharField(
        _('category'),
        max_length=50,
        blank=True,
        default='',
        help_text=_('Free-form category used for browsing')
    )

    price = models.DecimalField(
        _('price'),
        max_digits=10,
        decimal_places=2,
        validators=[MinValueValidator(Decimal('0.01'), message=_('Price must be greater than 0.'))],
        help_text=_('Listed unit price')
    )

    quantity = models.PositiveIntegerField(
        _('quantity'),
        default=1,
        help_text=_('Units still available for sale')
    )

    is_available = models.BooleanField(
        _('available'),
        default=True,
        help_text=_('Whether the item can be ordered. Follows quantity.')
    )

    created_at = models.DateTimeField(_('created at'), auto_now_add=True)
    updated_at = models.DateTimeField(_('updated at'), auto_now=True)

    class Meta:
        verbose_name = _('item')
        verbose_name_plural = _('items')
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['seller'], name='core_item_seller__6b1f2e_idx'),
            models.Index(fields=['is_available'], name='core_item_is_avai_4c9d0a_idx'),
            models.Index(fields=['category'], name='core_item_categor_8e2b7c_idx'),
        ]

    def __str__(self):
        return self.name

    def clean(self):
        """
        Validate model fields.

        Raises:
            ValidationError: If the name is blank
        """
        super().clean()

        if not self.name or not self.name.strip():
            raise ValidationError({
                'name': _('Name cannot be empty.')
            })

    def save(self, *args, **kwargs):
        """Keep availability in step with quantity, validate, then save."""
        self.is_available = self.quantity > 0

        update_fields = kwargs.get('update_fields')
        if update_fields is not None and 'quantity' in update_fields:
            kwargs['update_fields'] = set(update_fields) | {'is_available'}

        self.full_clean()
        super().save(*args, **kwargs)

    def withdraw(self):
        """Take the listing off the market without deleting it."""
        self.quantity = 0
        self.save()


class CartLine(models.Model):
    """
    A buyer's pending intent to purchase an item.

    The bargain sub-record lives on the line itself: ``bargain_state`` is
    null when no price has been proposed.
    """

    BARGAIN_PENDING = 'PENDING'
    BARGAIN_ACCEPTED = 'ACCEPTED'
    BARGAIN_REJECTED = 'REJECTED'

    BARGAIN_STATE_CHOICES = [
        (BARGAIN_PENDING, 'Pending'),
        (BARGAIN_ACCEPTED, 'Accepted'),
        (BARGAIN_REJECTED, 'Rejected'),
    ]

    PROPOSED_BY_BUYER = 'buyer'
    PROPOSED_BY_SELLER = 'seller'

    PROPOSED_BY_CHOICES = [
        (PROPOSED_BY_BUYER, 'Buyer'),
        (PROPOSED_BY_SELLER, 'Seller'),
    ]

    buyer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='cart_lines',
        help_text=_('User who intends to buy')
    )

    item = models.ForeignKey(
        Item,
        on_delete=models.CASCADE,
        related_name='cart_lines',
        help_text=_('Item in the cart')
    )

    quantity = models.PositiveIntegerField(
        _('quantity'),
        default=1,
        validators=[MinValueValidator(1, message=_('Quantity must be at least 1.'))]
    )

    saved_for_later = models.BooleanField(_('saved for later'), default=False)

    bargain_price = models.DecimalField(
        _('bargain price'),
        max_digits=10,
        decimal_places=2,
        null=True,
        blank=True,
        validators=[MinValueValidator(Decimal('0.01'), message=_('Bargain price must be greater than 0.'))]
    )

    bargain_note = models.CharField(_('bargain note'), max_length=500, blank=True, default='')

    bargain_state = models.CharField(
        _('bargain state'),
        max_length=10,
        choices=BARGAIN_STATE_CHOICES,
        null=True,
        blank=True
    )

    bargain_proposed_by = models.CharField(
        _('bargain proposed by'),
        max_length=10,
        choices=PROPOSED_BY_CHOICES,
        blank=True,
        default=''
    )

    created_at = models.DateTimeField(_('created at'), auto_now_add=True)
    updated_at = models.DateTimeField(_('updated at'), auto_now=True)

    class Meta:
        verbose_name = _('cart line')
        verbose_name_plural = _('cart lines')
        ordering = ['-created_at']
        constraints = [
            models.UniqueConstraint(
                fields=['buyer', 'item'],
                name='unique_cart_line_per_buyer_item'
            )
        ]

    def __str__(self):
        return f"{self.quantity} x {self.item.name} for {self.buyer.email}"

    def clean(self):
        """
        Validate model fields.

        Ensures:
        - Buyer is not the seller of the item
        - A bargain state always comes with a price

        Raises:
            ValidationError: If validation fails
        """
        super().clean()

        if self.item_id and self.buyer_id and self.item.seller_id == self.buyer_id:
            raise ValidationError({
                'item': _('Cannot buy your own item.')
            })

        if self.bargain_state and self.bargain_price is None:
            raise ValidationError({
                'bargain_price': _('A bargain needs a proposed price.')
            })

    def save(self, *args, **kwargs):
        self.full_clean()
        super().save(*args, **kwargs)

    @property
    def has_bargain(self):
        return self.bargain_state is not None

    @property
    def bargain(self):
        """Return the bargain sub-record as a dict, or None."""
        if not self.has_bargain:
            return None
        return {
            'proposed_price': self.bargain_price,
            'note': self.bargain_note,
            'state': self.bargain_state,
            'proposed_by': self.bargain_proposed_by,
        }

    def settled_price(self):
        """
        Unit price the buyer pays if this line is checked out now.

        Returns:
            Decimal: Accepted bargain price, or the item's listed price
        """
        if self.bargain_state == self.BARGAIN_ACCEPTED:
            return self.bargain_price
        return self.item.price


class Order(models.Model):
    """
    Committed purchase of one item by one buyer.

    Only a hash of the delivery code is stored. Orders leave PENDING
    exactly once, to either DELIVERED or CANCELLED.
    """

    STATUS_PENDING = 'PENDING'
    STATUS_DELIVERED = 'DELIVERED'
    STATUS_CANCELLED = 'CANCELLED'

    STATUS_CHOICES = [
        (STATUS_PENDING, 'Pending'),
        (STATUS_DELIVERED, 'Delivered'),
        (STATUS_CANCELLED, 'Cancelled'),
    ]

    VALID_TRANSITIONS = {
        STATUS_PENDING: [STATUS_DELIVERED, STATUS_CANCELLED],
        STATUS_DELIVERED: [],  # Terminal state
        STATUS_CANCELLED: [],  # Terminal state
    }

    item = models.ForeignKey(
        Item,
        on_delete=models.PROTECT,
        related_name='orders',
        help_text=_('Item being purchased')
    )

    buyer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name='purchases',
        help_text=_('User purchasing the item')
    )

    seller = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name='sales',
        help_text=_('User selling the item')
    )

    quantity = models.PositiveIntegerField(
        _('quantity'),
        validators=[MinValueValidator(1, message=_('Quantity must be at least 1.'))]
    )

    listed_price = models.DecimalField(
        _('listed price'),
        max_digits=10,
        decimal_places=2,
        help_text=_('Item unit price at the time of the order')
    )

    settled_price = models.DecimalField(
        _('settled price'),
        max_digits=10,
        decimal_places=2,
        help_text=_('Unit price actually charged (listed or accepted bargain price)')
    )

    status = models.CharField(
        _('status'),
        max_length=10,
        choices=STATUS_CHOICES,
        default=STATUS_PENDING
    )

    otp_hash = models.CharField(_('delivery code hash'), max_length=128)

    otp_expiry = models.DateTimeField(_('delivery code expiry'))

    delivered_at = models.DateTimeField(_('delivered at'), null=True, blank=True)
    cancelled_at = models.DateTimeField(_('cancelled at'), null=True, blank=True)

    created_at = models.DateTimeField(_('created at'), auto_now_add=True)
    updated_at = models.DateTimeField(_('updated at'), auto_now=True)

    class Meta:
        verbose_name = _('order')
        verbose_name_plural = _('orders')
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['buyer', 'status'], name='core_order_buyer_i_3a7e51_idx'),
            models.Index(fields=['seller', 'status'], name='core_order_seller__f02c94_idx'),
            models.Index(fields=['item'], name='core_order_item_id_9d4b18_idx'),
        ]

    def __str__(self):
        return f"Order #{self.pk}: {self.item.name} ({self.status})"

    def clean(self):
        super().clean()

        if self.buyer_id and self.seller_id and self.buyer_id == self.seller_id:
            raise ValidationError({
                'buyer': _('Buyer and seller cannot be the same user.')
            })

    def save(self, *args, **kwargs):
        self.full_clean()
        super().save(*args, **kwargs)

    @property
    def total_price(self):
        return self.settled_price * self.quantity

    def is_terminal(self):
        return not self.VALID_TRANSITIONS.get(self.status)

    def can_transition_to(self, new_status):
        """
        Check if the order may move to ``new_status``.

        Returns:
            bool: True if the transition is allowed
        """
        return new_status in self.VALID_TRANSITIONS.get(self.status, [])

    def issue_otp(self, now=None):
        """
        Replace the delivery code with a freshly generated one.

        Only the hash is kept on the instance; the caller receives the
        plaintext and is responsible for handing it to the buyer.

        Returns:
            str: Plaintext code
        """
        now = now or timezone.now()
        otp = generate_otp()
        self.otp_hash = make_password(otp)
        self.otp_expiry = now + timedelta(seconds=settings.ORDER_OTP_TTL_SECONDS)
        return otp

    def otp_matches(self, candidate):
        """Compare a candidate code against the stored hash."""
        if not candidate or not self.otp_hash:
            return False
        return check_password(candidate, self.otp_hash)

    def otp_expired(self, now=None):
        now = now or timezone.now()
        return now > self.otp_expiry
