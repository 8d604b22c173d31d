from decimal import Decimal

import django.db.models.deletion
from django.db import migrations, models

import apps.sales.domain


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        ("catalog", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="SaleModel",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("serial_id", models.CharField(default=apps.sales.domain.generate_serial_id, editable=False, max_length=32, unique=True)),
                ("track_title", models.CharField(max_length=255)),
                ("price", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=12)),
                ("payment_status", models.CharField(choices=[("pending", "Pending"), ("completed", "Completed"), ("failed", "Failed"), ("refunded", "Refunded")], default="pending", max_length=16)),
                ("payment_method", models.CharField(blank=True, default="", max_length=64)),
                ("payment_id", models.CharField(blank=True, max_length=128, null=True, unique=True)),
                ("transaction_id", models.CharField(blank=True, db_index=True, default="", max_length=128)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("track", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="sales", to="catalog.trackmodel")),
            ],
            options={"db_table": "sales", "ordering": ["-created_at", "-id"]},
        ),
    ]
