from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin

from .models import User


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    list_display = ("username", "email", "phone", "role", "is_verified", "parking", "is_active")
    list_filter = BaseUserAdmin.list_filter + ("role", "is_verified")
    fieldsets = BaseUserAdmin.fieldsets + (
        ("Marketplace", {"fields": ("role", "phone", "is_verified", "parking")}),
    )
    add_fieldsets = BaseUserAdmin.add_fieldsets + (
        ("Marketplace", {"fields": ("role", "phone", "is_verified", "parking")}),
    )
