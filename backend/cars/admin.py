from django.contrib import admin

from .models import Car, Parking


@admin.register(Parking)
class ParkingAdmin(admin.ModelAdmin):
    list_display = ("name", "locality", "city", "capacity", "is_active")
    search_fields = ("name", "locality", "city")


@admin.register(Car)
class CarAdmin(admin.ModelAdmin):
    list_display = ("name", "number", "vendor", "parking", "price", "discount_price", "status")
    list_filter = ("status", "parking")
    search_fields = ("name", "number")
