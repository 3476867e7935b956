import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):
    dependencies = [
        ("users", "0001_initial"),
        ("cars", "0001_initial"),
    ]

    operations = [
        migrations.AddField(
            model_name="user",
            name="parking",
            field=models.ForeignKey(
                blank=True,
                help_text="Parking lot a parking in-charge operates.",
                null=True,
                on_delete=django.db.models.deletion.SET_NULL,
                related_name="staff",
                to="cars.parking",
            ),
        ),
    ]
