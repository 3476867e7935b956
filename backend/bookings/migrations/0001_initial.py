from decimal import Decimal

import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models


def money(**kwargs):
    kwargs.setdefault("default", Decimal("0.00"))
    return models.DecimalField(decimal_places=2, max_digits=10, **kwargs)


def user_fk(related_name):
    return models.ForeignKey(
        blank=True,
        null=True,
        on_delete=django.db.models.deletion.SET_NULL,
        related_name=related_name,
        to=settings.AUTH_USER_MODEL,
    )


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
        ("cars", "0001_initial"),
        ("coupons", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="Booking",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
                    ),
                ),
                ("start_date", models.DateTimeField()),
                (
                    "end_date",
                    models.DateTimeField(help_text="Exclusive end of the rental window."),
                ),
                ("pickup_date", models.DateTimeField(blank=True, null=True)),
                ("original_pickup_date", models.DateTimeField(blank=True, null=True)),
                ("actual_pickup_date", models.DateTimeField(blank=True, null=True)),
                ("actual_dropoff_date", models.DateTimeField(blank=True, null=True)),
                ("base_price", money()),
                ("discount_amount", money()),
                ("insurance_amount", money()),
                ("delivery_charges", money()),
                ("total_price", money()),
                ("advance_amount", money()),
                ("remaining_amount", money()),
                ("extension_price", money()),
                ("extension_till", models.DateTimeField(blank=True, null=True)),
                (
                    "extension_time",
                    models.PositiveIntegerField(default=0, help_text="Total extension in hours."),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("advance_paid", "Advance paid"),
                            ("confirmed", "Confirmed"),
                            ("active", "Active"),
                            ("completed", "Completed"),
                            ("cancelled", "Cancelled"),
                        ],
                        default="pending",
                        max_length=16,
                    ),
                ),
                (
                    "confirmation_status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("pending_approval", "Pending approval"),
                            ("approved", "Approved"),
                            ("rejected", "Rejected"),
                        ],
                        default="pending",
                        max_length=20,
                    ),
                ),
                ("car_condition_images", models.JSONField(blank=True, default=list)),
                ("tool_images", models.JSONField(blank=True, default=list)),
                (
                    "tools",
                    models.JSONField(
                        blank=True, default=list, help_text="List of {name, image_url}."
                    ),
                ),
                ("user_confirmed", models.BooleanField(default=False)),
                ("user_confirmed_at", models.DateTimeField(blank=True, null=True)),
                ("resubmission_reason", models.TextField(blank=True)),
                ("pic_approved", models.BooleanField(default=False)),
                ("pic_approved_at", models.DateTimeField(blank=True, null=True)),
                ("pic_comments", models.TextField(blank=True)),
                ("otp_code", models.CharField(blank=True, max_length=8)),
                ("otp_expires_at", models.DateTimeField(blank=True, null=True)),
                ("otp_verified", models.BooleanField(default=False)),
                ("otp_verified_at", models.DateTimeField(blank=True, null=True)),
                ("reschedule_count", models.PositiveIntegerField(default=0)),
                ("max_reschedule_count", models.PositiveIntegerField(default=3)),
                (
                    "return_condition",
                    models.CharField(
                        blank=True,
                        choices=[("good", "Good"), ("fair", "Fair"), ("poor", "Poor")],
                        max_length=8,
                    ),
                ),
                ("return_images", models.JSONField(blank=True, default=list)),
                ("return_comments", models.TextField(blank=True)),
                ("cancelled_at", models.DateTimeField(blank=True, null=True)),
                ("cancel_reason", models.TextField(blank=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "user",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="bookings",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "car",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="bookings",
                        to="cars.car",
                    ),
                ),
                (
                    "coupon",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="bookings",
                        to="coupons.coupon",
                    ),
                ),
                ("pic_approved_by", user_fk("+")),
                ("otp_verified_by", user_fk("+")),
                ("cancelled_by", user_fk("+")),
                (
                    "pickup_parking",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="pickup_bookings",
                        to="cars.parking",
                    ),
                ),
                (
                    "dropoff_parking",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="dropoff_bookings",
                        to="cars.parking",
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["car", "start_date", "end_date"], name="booking_car_window_idx"
                    ),
                    models.Index(fields=["user", "status"], name="booking_user_status_idx"),
                    models.Index(
                        fields=["pickup_parking", "status"], name="booking_pickup_status_idx"
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Topup",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
                    ),
                ),
                ("name", models.CharField(max_length=140)),
                ("description", models.TextField(blank=True)),
                ("duration_hours", models.PositiveIntegerField()),
                ("price", models.DecimalField(decimal_places=2, max_digits=10)),
                (
                    "category",
                    models.CharField(
                        choices=[
                            ("extension", "Extension"),
                            ("emergency", "Emergency"),
                            ("premium", "Premium"),
                        ],
                        default="extension",
                        max_length=12,
                    ),
                ),
                ("is_active", models.BooleanField(default=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
            ],
            options={
                "ordering": ["duration_hours", "price"],
            },
        ),
        migrations.CreateModel(
            name="BookingTopup",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
                    ),
                ),
                ("applied_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("original_end", models.DateTimeField()),
                ("new_end", models.DateTimeField()),
                ("amount", models.DecimalField(decimal_places=2, max_digits=10)),
                ("payment_reference_id", models.CharField(max_length=255, unique=True)),
                (
                    "booking",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="topups",
                        to="bookings.booking",
                    ),
                ),
                (
                    "topup",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="applications",
                        to="bookings.topup",
                    ),
                ),
                ("applied_by", user_fk("+")),
            ],
            options={
                "ordering": ["applied_at", "id"],
            },
        ),
        migrations.CreateModel(
            name="BookingEvent",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
                    ),
                ),
                (
                    "type",
                    models.CharField(
                        choices=[
                            ("created", "Created"),
                            ("advance_paid", "Advance paid"),
                            ("otp_issued", "OTP issued"),
                            ("otp_verified", "OTP verified"),
                            ("confirmation_submitted", "Confirmation submitted"),
                            ("confirmation_reviewed", "Confirmation reviewed"),
                            ("confirmation_resubmitted", "Confirmation resubmitted"),
                            ("final_paid", "Final payment"),
                            ("picked_up", "Picked up"),
                            ("topup_applied", "Topup applied"),
                            ("returned", "Returned"),
                            ("rescheduled", "Rescheduled"),
                            ("cancelled", "Cancelled"),
                        ],
                        max_length=32,
                    ),
                ),
                ("payload", models.JSONField(blank=True, default=dict)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "booking",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="events",
                        to="bookings.booking",
                    ),
                ),
                ("actor", user_fk("booking_events")),
            ],
            options={
                "ordering": ["created_at", "id"],
                "indexes": [
                    models.Index(
                        fields=["booking", "created_at"], name="booking_event_created_idx"
                    ),
                ],
            },
        ),
    ]
