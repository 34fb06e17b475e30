from django.urls import path

from . import views, webhook

app_name = "payments"
urlpatterns = [
    path("orders", views.create_order_view, name="create_order"),
    path("orders/<str:order_id>/fail", views.fail_order_view, name="fail_order"),
    path("verify", views.verify_payment_view, name="verify_payment"),
    path("my", views.my_orders_view, name="my_orders"),
    path("sales", views.my_sales_view, name="my_sales"),
    path("webhook", webhook.gateway_webhook, name="webhook"),
]
