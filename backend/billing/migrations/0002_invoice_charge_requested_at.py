from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ("billing", "0001_initial"),
    ]

    operations = [
        migrations.AddField(
            model_name="invoice",
            name="charge_requested_at",
            field=models.DateTimeField(
                blank=True,
                null=True,
                help_text="Set while a charge is being requested from the provider.",
            ),
        ),
    ]
