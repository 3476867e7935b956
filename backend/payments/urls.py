from django.urls import path

from .api import payment_refund, payments_list, payments_summary

app_name = "payments"

urlpatterns = [
    path("", payments_list, name="payments_list"),
    path("summary/", payments_summary, name="payments_summary"),
    path("<int:payment_id>/refund/", payment_refund, name="payment_refund"),
]
