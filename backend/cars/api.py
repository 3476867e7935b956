from rest_framework import permissions, viewsets
from rest_framework.pagination import PageNumberPagination

from .models import Car
from .serializers import CarSerializer


class CarPagination(PageNumberPagination):
    page_size = 20
    page_size_query_param = "page_size"
    max_page_size = 100


class CarViewSet(viewsets.ReadOnlyModelViewSet):
    """Public catalogue of bookable cars."""

    serializer_class = CarSerializer
    pagination_class = CarPagination
    permission_classes = [permissions.AllowAny]
    filterset_fields = ("parking", "status")
    search_fields = ("name", "number", "parking__city")

    def get_queryset(self):
        return Car.objects.bookable().select_related("parking").order_by("name", "id")
