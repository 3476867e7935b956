from django.contrib import admin

from .models import Coupon


@admin.register(Coupon)
class CouponAdmin(admin.ModelAdmin):
    list_display = (
        "code",
        "discount_type",
        "discount_amount",
        "max_discount_amount",
        "usage_count",
        "usage_limit",
        "status",
        "end_date",
    )
    list_filter = ("status", "discount_type", "is_active")
    search_fields = ("code", "name")
    readonly_fields = ("usage_count",)
