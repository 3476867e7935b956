from __future__ import annotations

import django_filters as filters
from django.db.models.functions import Coalesce
from django.utils import timezone

from .models import Booking


class BookingFilter(filters.FilterSet):
    status = filters.MultipleChoiceFilter(choices=Booking.Status.choices)
    confirmation_status = filters.ChoiceFilter(choices=Booking.ConfirmationStatus.choices)
    car = filters.NumberFilter(field_name="car_id")
    parking = filters.NumberFilter(method="filter_parking")
    start_after = filters.IsoDateTimeFilter(field_name="start_date", lookup_expr="gte")
    start_before = filters.IsoDateTimeFilter(field_name="start_date", lookup_expr="lt")
    overdue = filters.BooleanFilter(method="filter_overdue")

    class Meta:
        model = Booking
        fields = ["status", "confirmation_status", "car", "parking", "overdue"]

    def filter_parking(self, queryset, name, value):
        return queryset.at_parking(value)

    def filter_overdue(self, queryset, name, value):
        if value is None:
            return queryset
        active = queryset.filter(status=Booking.Status.ACTIVE).annotate(
            _effective_end=Coalesce("extension_till", "end_date")
        )
        now = timezone.now()
        if value:
            return active.filter(_effective_end__lt=now)
        return active.filter(_effective_end__gte=now)
