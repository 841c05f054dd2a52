from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ("drivers", "0001_initial"),
    ]

    operations = [
        migrations.AddField(
            model_name="driverprofile",
            name="state_changed_at",
            field=models.DateTimeField(blank=True, null=True),
        ),
    ]
