from django.contrib import admin
from django.urls import include, path

from . import views

urlpatterns = [
    path("admin/", admin.site.urls),
    path("health", views.health_view, name="health"),
    path("payments/", include("payments.urls")),
    path("payouts/", include("payouts.urls")),
]

handler404 = "marketplace.views.error_404_view"
handler500 = "marketplace.views.error_500_view"
