"""Initial schema for the advisor matching engine."""

import django.core.validators
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='ProviderProfile',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('provider_id', models.CharField(max_length=64, unique=True)),
                ('name', models.CharField(max_length=255)),
                ('province', models.CharField(blank=True, default='', max_length=2)),
                ('city', models.CharField(blank=True, default='', max_length=100)),
                ('specializations', models.JSONField(blank=True, default=list)),
                ('industries_served', models.JSONField(blank=True, default=list)),
                ('bio', models.TextField(blank=True, default='')),
                ('years_experience', models.PositiveIntegerField(blank=True, null=True)),
                ('hourly_rate', models.DecimalField(blank=True, decimal_places=2, max_digits=8, null=True)),
                ('accepting_clients', models.BooleanField(default=True)),
                ('current_capacity', models.PositiveIntegerField(blank=True, help_text='Number of additional clients the provider can take on', null=True)),
                ('total_matches', models.PositiveIntegerField(default=0)),
                ('average_rating', models.FloatField(blank=True, help_text='Average client rating on a 0-5 scale', null=True, validators=[django.core.validators.MinValueValidator(0.0), django.core.validators.MaxValueValidator(5.0)])),
                ('communication_style', models.CharField(blank=True, default='', max_length=50)),
                ('preferred_channel', models.CharField(blank=True, choices=[('email', 'Email'), ('phone', 'Phone'), ('video_call', 'Video Call'), ('platform', 'Platform Messaging'), ('in_person', 'In Person')], default='', max_length=20)),
                ('joined_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'verbose_name': 'Provider Profile',
                'verbose_name_plural': 'Provider Profiles',
                'ordering': ['name'],
            },
        ),
        migrations.CreateModel(
            name='ClientProfile',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('client_id', models.CharField(max_length=64, unique=True)),
                ('business_name', models.CharField(blank=True, default='', max_length=255)),
                ('industry', models.CharField(blank=True, default='', max_length=100)),
                ('province', models.CharField(blank=True, default='', max_length=2)),
                ('city', models.CharField(blank=True, default='', max_length=100)),
                ('employee_count', models.PositiveIntegerField(blank=True, null=True)),
                ('annual_revenue', models.DecimalField(blank=True, decimal_places=2, max_digits=14, null=True)),
                ('complexity_level', models.CharField(blank=True, choices=[('low', 'Low'), ('medium', 'Medium'), ('high', 'High')], default='', max_length=10)),
                ('services_needed', models.JSONField(blank=True, default=list)),
                ('budget', models.DecimalField(blank=True, decimal_places=2, max_digits=12, null=True)),
                ('communication_style', models.CharField(blank=True, default='', max_length=50)),
                ('preferred_channel', models.CharField(blank=True, choices=[('email', 'Email'), ('phone', 'Phone'), ('video_call', 'Video Call'), ('platform', 'Platform Messaging'), ('in_person', 'In Person')], default='', max_length=20)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'verbose_name': 'Client Profile',
                'verbose_name_plural': 'Client Profiles',
                'ordering': ['-created_at'],
            },
        ),
        migrations.CreateModel(
            name='MatchOutcome',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('match_id', models.CharField(max_length=64, unique=True)),
                ('provider_id', models.CharField(db_index=True, max_length=64)),
                ('client_id', models.CharField(db_index=True, max_length=64)),
                ('partnership_formed', models.BooleanField(blank=True, help_text='Unknown until the match resolves', null=True)),
                ('partnership_status', models.CharField(choices=[('pending', 'Pending'), ('active', 'Active'), ('completed', 'Completed'), ('ended', 'Ended'), ('declined', 'Declined')], default='pending', max_length=20)),
                ('partnership_start_date', models.DateField(blank=True, null=True)),
                ('provider_satisfaction', models.FloatField(blank=True, null=True, validators=[django.core.validators.MinValueValidator(1.0), django.core.validators.MaxValueValidator(10.0)])),
                ('client_satisfaction', models.FloatField(blank=True, null=True, validators=[django.core.validators.MinValueValidator(1.0), django.core.validators.MaxValueValidator(10.0)])),
                ('revenue_generated', models.FloatField(blank=True, null=True)),
                ('project_value', models.FloatField(blank=True, null=True)),
                ('ongoing_monthly_value', models.FloatField(blank=True, null=True)),
                ('contact_made', models.BooleanField(default=False)),
                ('proposal_submitted', models.BooleanField(default=False)),
                ('contract_signed', models.BooleanField(default=False)),
                ('factor_values', models.JSONField(blank=True, default=dict, help_text='Factor values captured when the match was scored')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'verbose_name': 'Match Outcome',
                'verbose_name_plural': 'Match Outcomes',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['partnership_formed', 'created_at'], name='advisor_out_formed_idx'),
                    models.Index(fields=['provider_id', 'created_at'], name='advisor_out_provider_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='FactorWeight',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('factor_name', models.CharField(max_length=50, unique=True)),
                ('factor_category', models.CharField(blank=True, default='', max_length=50)),
                ('current_weight', models.FloatField(default=1.0)),
                ('baseline_weight', models.FloatField(default=1.0)),
                ('success_correlation', models.FloatField(blank=True, null=True)),
                ('confidence_score', models.FloatField(default=0.0)),
                ('sample_size', models.PositiveIntegerField(default=0)),
                ('successful_matches', models.PositiveIntegerField(default=0)),
                ('failed_matches', models.PositiveIntegerField(default=0)),
                ('learning_iterations', models.PositiveIntegerField(default=0)),
                ('accuracy_improvement', models.FloatField(default=0.0)),
                ('last_updated', models.DateTimeField(auto_now=True)),
            ],
            options={
                'verbose_name': 'Factor Weight',
                'verbose_name_plural': 'Factor Weights',
                'ordering': ['factor_name'],
            },
        ),
        migrations.CreateModel(
            name='EngagementInteraction',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('match_id', models.CharField(db_index=True, max_length=64)),
                ('provider_id', models.CharField(blank=True, db_index=True, default='', max_length=64)),
                ('client_id', models.CharField(blank=True, default='', max_length=64)),
                ('channel', models.CharField(blank=True, default='', max_length=20)),
                ('interaction_type', models.CharField(blank=True, default='', max_length=50)),
                ('quality_score', models.FloatField(blank=True, null=True, validators=[django.core.validators.MinValueValidator(1.0), django.core.validators.MaxValueValidator(10.0)])),
                ('response_time_hours', models.FloatField(blank=True, null=True)),
                ('content_length', models.PositiveIntegerField(blank=True, null=True)),
                ('occurred_at', models.DateTimeField(db_index=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
            ],
            options={
                'verbose_name': 'Engagement Interaction',
                'verbose_name_plural': 'Engagement Interactions',
                'ordering': ['occurred_at'],
            },
        ),
        migrations.CreateModel(
            name='EngagementMilestone',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('match_id', models.CharField(db_index=True, max_length=64)),
                ('provider_id', models.CharField(blank=True, db_index=True, default='', max_length=64)),
                ('milestone_type', models.CharField(max_length=50)),
                ('funnel_stage', models.CharField(blank=True, choices=[('awareness', 'Awareness'), ('contact', 'First Contact'), ('consultation', 'Consultation'), ('proposal', 'Proposal'), ('negotiation', 'Negotiation'), ('signed', 'Signed')], default='', max_length=20)),
                ('quality_score', models.FloatField(blank=True, null=True)),
                ('hours_to_reach', models.FloatField(blank=True, null=True)),
                ('reached_at', models.DateTimeField(db_index=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
            ],
            options={
                'verbose_name': 'Engagement Milestone',
                'verbose_name_plural': 'Engagement Milestones',
                'ordering': ['reached_at'],
            },
        ),
        migrations.CreateModel(
            name='EngagementPrediction',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('match_id', models.CharField(max_length=64, unique=True)),
                ('engagement_score', models.FloatField(default=0.0)),
                ('partnership_probability', models.FloatField(default=0.0)),
                ('dropout_risk', models.FloatField(default=0.0)),
                ('estimated_revenue', models.FloatField(default=0.0)),
                ('last_updated', models.DateTimeField()),
            ],
            options={
                'verbose_name': 'Engagement Prediction',
                'verbose_name_plural': 'Engagement Predictions',
                'ordering': ['-partnership_probability'],
            },
        ),
        migrations.CreateModel(
            name='PerformanceScoreSnapshot',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('provider_id', models.CharField(max_length=64, unique=True)),
                ('dimension_scores', models.JSONField(default=dict)),
                ('overall_score', models.FloatField(validators=[django.core.validators.MinValueValidator(0.0), django.core.validators.MaxValueValidator(100.0)])),
                ('previous_overall_score', models.FloatField(blank=True, null=True)),
                ('tier', models.CharField(choices=[('elite', 'Elite Performer'), ('excellent', 'Excellent'), ('good', 'Good Performer'), ('developing', 'Developing'), ('new', 'New Member')], default='new', max_length=20)),
                ('rank', models.PositiveIntegerField(default=1)),
                ('percentile', models.FloatField(default=100.0)),
                ('scored_at', models.DateTimeField()),
            ],
            options={
                'verbose_name': 'Performance Score Snapshot',
                'verbose_name_plural': 'Performance Score Snapshots',
                'ordering': ['-overall_score'],
            },
        ),
        migrations.CreateModel(
            name='LearningCycleRun',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('status', models.CharField(choices=[('completed', 'Completed'), ('insufficient_data', 'Insufficient Data'), ('failed', 'Failed')], max_length=20)),
                ('forced', models.BooleanField(default=False)),
                ('sample_size', models.PositiveIntegerField(default=0)),
                ('success_rate', models.FloatField(blank=True, null=True)),
                ('updates_applied', models.PositiveIntegerField(default=0)),
                ('report', models.JSONField(blank=True, default=dict)),
                ('started_at', models.DateTimeField()),
                ('finished_at', models.DateTimeField()),
            ],
            options={
                'verbose_name': 'Learning Cycle Run',
                'verbose_name_plural': 'Learning Cycle Runs',
                'ordering': ['-started_at'],
            },
        ),
        migrations.CreateModel(
            name='AutomatedIntervention',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('match_id', models.CharField(db_index=True, max_length=64)),
                ('opportunity_type', models.CharField(max_length=50)),
                ('intervention_type', models.CharField(max_length=50)),
                ('actions', models.JSONField(default=list)),
                ('executed_at', models.DateTimeField()),
            ],
            options={
                'verbose_name': 'Automated Intervention',
                'verbose_name_plural': 'Automated Interventions',
                'ordering': ['-executed_at'],
            },
        ),
    ]
