from django.contrib import admin

from .models import Payment


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "booking",
        "user",
        "type",
        "status",
        "amount",
        "refund_amount",
        "external_reference_id",
        "created_at",
    )
    list_filter = ("type", "status", "method")
    search_fields = ("external_reference_id", "refund_reference_id")

    def get_readonly_fields(self, request, obj=None):
        # Refunds go through payments.ledger.refund_payment.
        return [field.name for field in self.model._meta.fields]

    def has_add_permission(self, request):
        return False
