from django.contrib import admin

from .models import Booking, BookingEvent, BookingTopup, Topup


class BookingTopupInline(admin.TabularInline):
    model = BookingTopup
    extra = 0
    can_delete = False
    readonly_fields = (
        "topup",
        "applied_by",
        "applied_at",
        "original_end",
        "new_end",
        "amount",
        "payment",
        "payment_reference_id",
    )

    def has_add_permission(self, request, obj=None):
        return False


class BookingEventInline(admin.TabularInline):
    model = BookingEvent
    extra = 0
    can_delete = False
    readonly_fields = ("type", "actor", "payload", "created_at")

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Booking)
class BookingAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "user",
        "car",
        "status",
        "confirmation_status",
        "start_date",
        "end_date",
        "total_price",
    )
    list_filter = ("status", "confirmation_status", "pickup_parking")
    search_fields = ("user__username", "user__email", "car__number")
    inlines = (BookingTopupInline, BookingEventInline)

    def get_readonly_fields(self, request, obj=None):
        # Bookings only move through bookings.services; the admin is a viewer.
        return [field.name for field in self.model._meta.fields]

    def has_add_permission(self, request):
        return False


@admin.register(Topup)
class TopupAdmin(admin.ModelAdmin):
    list_display = ("name", "duration_hours", "price", "category", "is_active")
    list_filter = ("category", "is_active")
