"""Seed one FactorWeight row per scoring factor at baseline 1.0."""

from django.db import migrations


FACTORS = [
    ('industry_expertise', 'expertise'),
    ('geographic_proximity', 'location'),
    ('business_size_match', 'fit'),
    ('service_specialization', 'fit'),
    ('availability_capacity', 'capacity'),
    ('track_record', 'reputation'),
    ('experience_level', 'expertise'),
    ('communication_style', 'relationship'),
]


def seed_weights(apps, schema_editor):
    FactorWeight = apps.get_model('advisor_matching', 'FactorWeight')
    for name, category in FACTORS:
        FactorWeight.objects.get_or_create(
            factor_name=name,
            defaults={
                'factor_category': category,
                'current_weight': 1.0,
                'baseline_weight': 1.0,
            },
        )


def unseed_weights(apps, schema_editor):
    FactorWeight = apps.get_model('advisor_matching', 'FactorWeight')
    FactorWeight.objects.filter(factor_name__in=[name for name, _ in FACTORS]).delete()


class Migration(migrations.Migration):

    dependencies = [
        ('advisor_matching', '0001_initial'),
    ]

    operations = [
        migrations.RunPython(seed_weights, unseed_weights),
    ]
