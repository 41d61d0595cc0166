"""
Custom permission classes for Campus Marketplace.
"""

from rest_framework import permissions


class IsSellerOrReadOnly(permissions.BasePermission):
    """
    Object-level permission for item listings.

    Anyone may read a listing; only its seller may change or withdraw it.

    Usage:
        class ItemDetailView(RetrieveUpdateDestroyAPIView):
            permission_classes = [IsAuthenticatedOrReadOnly, IsSellerOrReadOnly]
    """

    message = 'Only the seller can modify this listing.'

    def has_object_permission(self, request, view, obj):
        """
        Check if the request is read-only or comes from the item's seller.

        Args:
            request: HTTP request object
            view: View being accessed
            obj: Item instance

        Returns:
            bool: True if access is allowed
        """
        if request.method in permissions.SAFE_METHODS:
            return True

        return bool(request.user and request.user.is_authenticated and obj.seller_id == request.user.id)
