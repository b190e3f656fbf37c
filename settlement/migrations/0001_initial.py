import uuid

from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="SettlementEvent",
            fields=[
                (
                    "reference_type",
                    models.CharField(
                        blank=True,
                        choices=[
                            ("sale_order", "Sale Order"),
                            ("purchase_order", "Purchase Order"),
                            ("return_order", "Return Order"),
                            ("debt_transaction", "Debt Transaction"),
                        ],
                        default="",
                        max_length=32,
                    ),
                ),
                ("reference_id", models.UUIDField(blank=True, null=True)),
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("event_id", models.UUIDField(unique=True)),
                ("event_type", models.CharField(max_length=64)),
                ("created_by", models.CharField(blank=True, default="", max_length=150)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
            ],
            options={
                "indexes": [models.Index(fields=["event_type", "created_at"], name="settle_event_type_created_idx")],
            },
        ),
    ]
