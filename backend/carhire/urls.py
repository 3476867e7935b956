from django.conf import settings
from django.contrib import admin
from django.urls import include, path

from bookings.api import TopupViewSet
from core.health import healthz

urlpatterns = [
    path("api/healthz", healthz),
    path("api/users/", include("users.urls")),
    path("api/cars/", include("cars.urls")),
    path("api/topups/", TopupViewSet.as_view({"get": "list"}), name="topup_list"),
    path("api/bookings/", include(("bookings.urls", "bookings"), namespace="bookings")),
    path("api/payments/", include("payments.urls")),
]

if settings.ENABLE_DJANGO_ADMIN:
    urlpatterns.insert(0, path("admin/", admin.site.urls))
