import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="DriverProfile",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("vehicle_number", models.CharField(max_length=20, unique=True)),
                ("vehicle_capabilities", models.JSONField(blank=True, default=list)),
                (
                    "status",
                    models.CharField(
                        choices=[("offline", "Offline"), ("online", "Online"), ("busy", "Busy")],
                        default="offline",
                        max_length=20,
                    ),
                ),
                (
                    "verification_status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("approved", "Approved"),
                            ("rejected", "Rejected"),
                            ("under_review", "Under review"),
                        ],
                        default="pending",
                        max_length=20,
                    ),
                ),
                ("is_location_active", models.BooleanField(default=False)),
                ("current_latitude", models.DecimalField(blank=True, decimal_places=6, max_digits=10, null=True)),
                ("current_longitude", models.DecimalField(blank=True, decimal_places=6, max_digits=10, null=True)),
                ("last_location_update", models.DateTimeField(blank=True, null=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "user",
                    models.OneToOneField(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="driver_profile",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "db_table": "driver_profiles",
            },
        ),
    ]
