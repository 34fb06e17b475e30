from django.urls import path

from . import views

app_name = "payouts"
urlpatterns = [
    path("earnings", views.earnings_view, name="earnings"),
    path("requests", views.payout_requests_view, name="requests"),
    path("requests/<int:payout_id>/cancel", views.cancel_payout_view, name="cancel"),
    path("admin/pending", views.pending_payouts_view, name="admin_pending"),
    path("admin/all", views.all_payouts_view, name="admin_all"),
    path("admin/<int:payout_id>", views.payout_detail_view, name="admin_detail"),
    path("admin/<int:payout_id>/approve", views.approve_payout_view, name="admin_approve"),
    path("admin/<int:payout_id>/reject", views.reject_payout_view, name="admin_reject"),
]
