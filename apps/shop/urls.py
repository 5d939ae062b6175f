from django.urls import path

from . import views

app_name = "shop"

urlpatterns = [
    # 장바구니
    path("cart/", views.cart_view, name="cart"),
    path("cart/items/", views.cart_items_view, name="cart_items"),
    path("cart/items/<int:item_id>/", views.cart_item_detail_view, name="cart_item_detail"),

    # 주문 (고객)
    path("orders/", views.orders_view, name="orders"),
    path("orders/<int:order_id>/", views.order_detail_view, name="order_detail"),
    path("orders/<int:order_id>/cancel/", views.order_cancel_view, name="order_cancel"),

    # 쿠폰
    path("coupons/apply/", views.coupon_apply_view, name="coupon_apply"),

    # 관리자
    path("admin/orders/", views.admin_orders_view, name="admin_orders"),
    path("admin/orders/stats/", views.admin_order_stats_view, name="admin_order_stats"),
    path("admin/orders/<int:order_id>/status/", views.admin_order_status_view, name="admin_order_status"),
    path("admin/coupons/", views.admin_coupons_view, name="admin_coupons"),
    path("admin/coupons/<int:coupon_id>/", views.admin_coupon_detail_view, name="admin_coupon_detail"),
]
