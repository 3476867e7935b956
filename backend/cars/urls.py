from django.urls import include, path
from rest_framework.routers import DefaultRouter

from .api import CarViewSet

router = DefaultRouter()
router.register("", CarViewSet, basename="car")

urlpatterns = [
    path("", include(router.urls)),
]
