"""
URL configuration for campus_marketplace project.
"""
from django.contrib import admin
from django.urls import path
from rest_framework_simplejwt.views import TokenBlacklistView, TokenRefreshView

from core.views import (
    BargainProposalView,
    BargainResponseView,
    CartCheckView,
    CartCountView,
    CartLineDetailView,
    CartListCreateView,
    EmailTokenObtainPairView,
    ItemDetailView,
    ItemListCreateView,
    OrderCancelView,
    OrderConfirmDeliveryView,
    OrderListCreateView,
    OrderRegenerateOtpView,
    SellerBargainRequestsView,
    SellerItemsView,
    SellerStatsView,
    UserRegistrationView,
)


urlpatterns = [
    path('admin/', admin.site.urls),

    # Authentication endpoints
    path('api/auth/register/', UserRegistrationView.as_view(), name='user_register'),
    path('api/auth/token/', EmailTokenObtainPairView.as_view(), name='token_obtain_pair'),
    path('api/auth/token/refresh/', TokenRefreshView.as_view(), name='token_refresh'),
    path('api/auth/logout/', TokenBlacklistView.as_view(), name='user_logout'),

    # Catalogue endpoints
    path('api/items/', ItemListCreateView.as_view(), name='item_list'),
    path('api/items/<int:pk>/', ItemDetailView.as_view(), name='item_detail'),

    # Cart endpoints
    path('api/cart/', CartListCreateView.as_view(), name='cart_list'),
    path('api/cart/count/', CartCountView.as_view(), name='cart_count'),
    path('api/cart/check/<int:item_id>/', CartCheckView.as_view(), name='cart_check'),
    path('api/cart/<int:pk>/', CartLineDetailView.as_view(), name='cart_line_detail'),
    path('api/cart/<int:pk>/bargain/', BargainProposalView.as_view(), name='cart_bargain'),
    path('api/cart/<int:pk>/bargain/respond/', BargainResponseView.as_view(), name='cart_bargain_respond'),

    # Order endpoints
    path('api/orders/', OrderListCreateView.as_view(), name='order_list'),
    path('api/orders/<int:pk>/regenerate-otp/', OrderRegenerateOtpView.as_view(), name='order_regenerate_otp'),
    path('api/orders/<int:pk>/confirm-delivery/', OrderConfirmDeliveryView.as_view(), name='order_confirm_delivery'),
    path('api/orders/<int:pk>/cancel/', OrderCancelView.as_view(), name='order_cancel'),

    # Seller dashboard endpoints
    path('api/seller/items/', SellerItemsView.as_view(), name='seller_items'),
    path('api/seller/bargain-requests/', SellerBargainRequestsView.as_view(), name='seller_bargain_requests'),
    path('api/seller/stats/', SellerStatsView.as_view(), name='seller_stats'),
]
