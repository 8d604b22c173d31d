from decimal import Decimal

from django.db import migrations, models

import apps.catalog.models


class Migration(migrations.Migration):
    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="TrackModel",
            fields=[
                ("id", models.CharField(default=apps.catalog.models._new_track_id, editable=False, max_length=64, primary_key=True, serialize=False)),
                ("title", models.CharField(max_length=255)),
                ("category", models.CharField(blank=True, default="", max_length=64)),
                ("price", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=12)),
                ("sale_count", models.PositiveIntegerField(default=0)),
                ("total_sold_price", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=14)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={"db_table": "tracks", "ordering": ["-created_at"]},
        ),
    ]
