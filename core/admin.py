"""
Django admin configuration for Campus Marketplace models.
"""

from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin
from django.utils.translation import gettext_lazy as _

from .models import CartLine, Item, Order, User


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    """
    Custom admin interface for User model.

    Extends Django's UserAdmin with the contact number and timestamps.
    """

    list_display = [
        'email',
        'username',
        'contact_number',
        'is_staff',
        'is_active',
        'created_at',
    ]

    list_filter = [
        'is_staff',
        'is_superuser',
        'is_active',
        'created_at',
    ]

    search_fields = [
        'email',
        'username',
        'first_name',
        'last_name',
    ]

    ordering = ['-created_at']

    fieldsets = (
        (None, {
            'fields': ('username', 'password')
        }),
        (_('Personal Info'), {
            'fields': ('first_name', 'last_name', 'email', 'contact_number')
        }),
        (_('Permissions'), {
            'fields': (
                'is_active',
                'is_staff',
                'is_superuser',
                'groups',
                'user_permissions',
            ),
            'classes': ('collapse',),
        }),
        (_('Important Dates'), {
            'fields': ('last_login', 'date_joined', 'created_at', 'updated_at'),
            'classes': ('collapse',),
        }),
    )

    add_fieldsets = (
        (None, {
            'classes': ('wide',),
            'fields': ('username', 'email', 'password1', 'password2'),
        }),
    )

    readonly_fields = ['created_at', 'updated_at', 'last_login', 'date_joined']

    list_per_page = 25


@admin.register(Item)
class ItemAdmin(admin.ModelAdmin):
    """Admin interface for Item model. Availability follows quantity."""

    list_display = ['name', 'seller', 'price', 'quantity', 'is_available', 'category', 'created_at']
    list_filter = ['is_available', 'category', 'created_at']
    search_fields = ['name', 'description', 'seller__email']
    readonly_fields = ['is_available', 'created_at', 'updated_at']
    ordering = ['-created_at']
    date_hierarchy = 'created_at'
    list_per_page = 25


@admin.register(CartLine)
class CartLineAdmin(admin.ModelAdmin):
    list_display = ['id', 'buyer', 'item', 'quantity', 'saved_for_later', 'bargain_state', 'bargain_price']
    list_filter = ['saved_for_later', 'bargain_state']
    search_fields = ['buyer__email', 'item__name']
    readonly_fields = ['created_at', 'updated_at']
    list_per_page = 50


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    """
    Admin interface for Order model.

    Orders change state only through the order workflow, so every field is
    read-only here; the delivery code hash is never displayed.
    """

    list_display = [
        'id',
        'item',
        'buyer',
        'seller',
        'quantity',
        'settled_price',
        'status',
        'created_at',
    ]

    list_filter = ['status', 'created_at']

    search_fields = ['buyer__email', 'seller__email', 'item__name']

    readonly_fields = [
        'item',
        'buyer',
        'seller',
        'quantity',
        'listed_price',
        'settled_price',
        'status',
        'otp_expiry',
        'delivered_at',
        'cancelled_at',
        'created_at',
        'updated_at',
    ]

    exclude = ['otp_hash']

    ordering = ['-created_at']

    date_hierarchy = 'created_at'

    list_per_page = 25

    def has_add_permission(self, request):
        return False
