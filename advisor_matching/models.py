from django.db import models
from django.core.validators import MinValueValidator, MaxValueValidator


class ProviderProfile(models.Model):
    """
    An accountant available for matching with business clients.
    """

    class Channel(models.TextChoices):
        EMAIL = 'email', 'Email'
        PHONE = 'phone', 'Phone'
        VIDEO_CALL = 'video_call', 'Video Call'
        PLATFORM = 'platform', 'Platform Messaging'
        IN_PERSON = 'in_person', 'In Person'

    provider_id = models.CharField(max_length=64, unique=True)
    name = models.CharField(max_length=255)
    province = models.CharField(max_length=2, blank=True, default='')
    city = models.CharField(max_length=100, blank=True, default='')
    specializations = models.JSONField(default=list, blank=True)
    industries_served = models.JSONField(default=list, blank=True)
    bio = models.TextField(blank=True, default='')
    years_experience = models.PositiveIntegerField(null=True, blank=True)
    hourly_rate = models.DecimalField(max_digits=8, decimal_places=2, null=True, blank=True)
    accepting_clients = models.BooleanField(default=True)
    current_capacity = models.PositiveIntegerField(
        null=True,
        blank=True,
        help_text='Number of additional clients the provider can take on'
    )
    total_matches = models.PositiveIntegerField(default=0)
    average_rating = models.FloatField(
        null=True,
        blank=True,
        validators=[MinValueValidator(0.0), MaxValueValidator(5.0)],
        help_text='Average client rating on a 0-5 scale'
    )
    communication_style = models.CharField(max_length=50, blank=True, default='')
    preferred_channel = models.CharField(
        max_length=20,
        choices=Channel.choices,
        blank=True,
        default=''
    )
    joined_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['name']
        verbose_name = 'Provider Profile'
        verbose_name_plural = 'Provider Profiles'

    def __str__(self):
        if self.city:
            return f"{self.name} ({self.city}, {self.province})"
        return self.name


class ClientProfile(models.Model):
    """
    A business looking for an accountant.
    """

    class Complexity(models.TextChoices):
        LOW = 'low', 'Low'
        MEDIUM = 'medium', 'Medium'
        HIGH = 'high', 'High'

    client_id = models.CharField(max_length=64, unique=True)
    business_name = models.CharField(max_length=255, blank=True, default='')
    industry = models.CharField(max_length=100, blank=True, default='')
    province = models.CharField(max_length=2, blank=True, default='')
    city = models.CharField(max_length=100, blank=True, default='')
    employee_count = models.PositiveIntegerField(null=True, blank=True)
    annual_revenue = models.DecimalField(max_digits=14, decimal_places=2, null=True, blank=True)
    complexity_level = models.CharField(
        max_length=10,
        choices=Complexity.choices,
        blank=True,
        default=''
    )
    services_needed = models.JSONField(default=list, blank=True)
    budget = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    communication_style = models.CharField(max_length=50, blank=True, default='')
    preferred_channel = models.CharField(
        max_length=20,
        choices=ProviderProfile.Channel.choices,
        blank=True,
        default=''
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']
        verbose_name = 'Client Profile'
        verbose_name_plural = 'Client Profiles'

    def __str__(self):
        return self.business_name or self.client_id


class MatchOutcome(models.Model):
    """
    Observed real-world result of a provider/client match.

    Upserted by match_id so repeat reports update the same row. Rows are
    never deleted; they are the training signal for the weight learner.
    """

    class PartnershipStatus(models.TextChoices):
        PENDING = 'pending', 'Pending'
        ACTIVE = 'active', 'Active'
        COMPLETED = 'completed', 'Completed'
        ENDED = 'ended', 'Ended'
        DECLINED = 'declined', 'Declined'

    match_id = models.CharField(max_length=64, unique=True)
    provider_id = models.CharField(max_length=64, db_index=True)
    client_id = models.CharField(max_length=64, db_index=True)
    partnership_formed = models.BooleanField(
        null=True,
        blank=True,
        help_text='Unknown until the match resolves'
    )
    partnership_status = models.CharField(
        max_length=20,
        choices=PartnershipStatus.choices,
        default=PartnershipStatus.PENDING
    )
    partnership_start_date = models.DateField(null=True, blank=True)
    provider_satisfaction = models.FloatField(
        null=True,
        blank=True,
        validators=[MinValueValidator(1.0), MaxValueValidator(10.0)]
    )
    client_satisfaction = models.FloatField(
        null=True,
        blank=True,
        validators=[MinValueValidator(1.0), MaxValueValidator(10.0)]
    )
    revenue_generated = models.FloatField(null=True, blank=True)
    project_value = models.FloatField(null=True, blank=True)
    ongoing_monthly_value = models.FloatField(null=True, blank=True)
    contact_made = models.BooleanField(default=False)
    proposal_submitted = models.BooleanField(default=False)
    contract_signed = models.BooleanField(default=False)
    factor_values = models.JSONField(
        default=dict,
        blank=True,
        help_text='Factor values captured when the match was scored'
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']
        verbose_name = 'Match Outcome'
        verbose_name_plural = 'Match Outcomes'
        indexes = [
            models.Index(fields=['partnership_formed', 'created_at'], name='advisor_out_formed_idx'),
            models.Index(fields=['provider_id', 'created_at'], name='advisor_out_provider_idx'),
        ]

    def __str__(self):
        if self.partnership_formed is None:
            state = 'undetermined'
        else:
            state = 'formed' if self.partnership_formed else 'not formed'
        return f"Outcome {self.match_id}: {state}"


class FactorWeight(models.Model):
    """
    Learned weight for one scoring factor.

    current_weight always stays within [0.1, 2.0] and within 30% of
    baseline_weight. Only the weight learner writes to this table.
    """

    factor_name = models.CharField(max_length=50, unique=True)
    factor_category = models.CharField(max_length=50, blank=True, default='')
    current_weight = models.FloatField(default=1.0)
    baseline_weight = models.FloatField(default=1.0)
    success_correlation = models.FloatField(null=True, blank=True)
    confidence_score = models.FloatField(default=0.0)
    sample_size = models.PositiveIntegerField(default=0)
    successful_matches = models.PositiveIntegerField(default=0)
    failed_matches = models.PositiveIntegerField(default=0)
    learning_iterations = models.PositiveIntegerField(default=0)
    accuracy_improvement = models.FloatField(default=0.0)
    last_updated = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['factor_name']
        verbose_name = 'Factor Weight'
        verbose_name_plural = 'Factor Weights'

    def __str__(self):
        return f"{self.factor_name}: {self.current_weight:.4f} (baseline {self.baseline_weight:.2f})"


class EngagementInteraction(models.Model):
    """
    A single communication event on a match. Append-only.
    """

    match_id = models.CharField(max_length=64, db_index=True)
    provider_id = models.CharField(max_length=64, blank=True, default='', db_index=True)
    client_id = models.CharField(max_length=64, blank=True, default='')
    channel = models.CharField(max_length=20, blank=True, default='')
    interaction_type = models.CharField(max_length=50, blank=True, default='')
    quality_score = models.FloatField(
        null=True,
        blank=True,
        validators=[MinValueValidator(1.0), MaxValueValidator(10.0)]
    )
    response_time_hours = models.FloatField(null=True, blank=True)
    content_length = models.PositiveIntegerField(null=True, blank=True)
    occurred_at = models.DateTimeField(db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['occurred_at']
        verbose_name = 'Engagement Interaction'
        verbose_name_plural = 'Engagement Interactions'

    def __str__(self):
        return f"{self.match_id} {self.interaction_type or self.channel} @ {self.occurred_at:%Y-%m-%d %H:%M}"


class EngagementMilestone(models.Model):
    """
    A funnel stage reached on a match. Append-only.
    """

    class FunnelStage(models.TextChoices):
        AWARENESS = 'awareness', 'Awareness'
        CONTACT = 'contact', 'First Contact'
        CONSULTATION = 'consultation', 'Consultation'
        PROPOSAL = 'proposal', 'Proposal'
        NEGOTIATION = 'negotiation', 'Negotiation'
        SIGNED = 'signed', 'Signed'

    match_id = models.CharField(max_length=64, db_index=True)
    provider_id = models.CharField(max_length=64, blank=True, default='', db_index=True)
    milestone_type = models.CharField(max_length=50)
    funnel_stage = models.CharField(max_length=20, choices=FunnelStage.choices, blank=True, default='')
    quality_score = models.FloatField(null=True, blank=True)
    hours_to_reach = models.FloatField(null=True, blank=True)
    reached_at = models.DateTimeField(db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['reached_at']
        verbose_name = 'Engagement Milestone'
        verbose_name_plural = 'Engagement Milestones'

    def __str__(self):
        return f"{self.match_id}: {self.milestone_type}"


class EngagementPrediction(models.Model):
    """
    Current derived engagement state for a match.

    Overwritten on every recompute and rebuildable from interactions and
    milestones at any time.
    """

    match_id = models.CharField(max_length=64, unique=True)
    engagement_score = models.FloatField(default=0.0)
    partnership_probability = models.FloatField(default=0.0)
    dropout_risk = models.FloatField(default=0.0)
    estimated_revenue = models.FloatField(default=0.0)
    last_updated = models.DateTimeField()

    class Meta:
        ordering = ['-partnership_probability']
        verbose_name = 'Engagement Prediction'
        verbose_name_plural = 'Engagement Predictions'

    def __str__(self):
        return f"{self.match_id}: p={self.partnership_probability:.2f} risk={self.dropout_risk:.2f}"


class PerformanceScoreSnapshot(models.Model):
    """
    Latest performance score for a provider. Superseded on every rescoring.
    """

    class Tier(models.TextChoices):
        ELITE = 'elite', 'Elite Performer'
        EXCELLENT = 'excellent', 'Excellent'
        GOOD = 'good', 'Good Performer'
        DEVELOPING = 'developing', 'Developing'
        NEW = 'new', 'New Member'

    provider_id = models.CharField(max_length=64, unique=True)
    dimension_scores = models.JSONField(default=dict)
    overall_score = models.FloatField(
        validators=[MinValueValidator(0.0), MaxValueValidator(100.0)]
    )
    previous_overall_score = models.FloatField(null=True, blank=True)
    tier = models.CharField(max_length=20, choices=Tier.choices, default=Tier.NEW)
    rank = models.PositiveIntegerField(default=1)
    percentile = models.FloatField(default=100.0)
    scored_at = models.DateTimeField()

    class Meta:
        ordering = ['-overall_score']
        verbose_name = 'Performance Score Snapshot'
        verbose_name_plural = 'Performance Score Snapshots'

    def __str__(self):
        return f"{self.provider_id}: {self.overall_score:.1f} ({self.get_tier_display()})"


class LearningCycleRun(models.Model):
    """
    Audit record for one weight-learning cycle.
    """

    class Status(models.TextChoices):
        COMPLETED = 'completed', 'Completed'
        INSUFFICIENT_DATA = 'insufficient_data', 'Insufficient Data'
        FAILED = 'failed', 'Failed'

    status = models.CharField(max_length=20, choices=Status.choices)
    forced = models.BooleanField(default=False)
    sample_size = models.PositiveIntegerField(default=0)
    success_rate = models.FloatField(null=True, blank=True)
    updates_applied = models.PositiveIntegerField(default=0)
    report = models.JSONField(default=dict, blank=True)
    started_at = models.DateTimeField()
    finished_at = models.DateTimeField()

    class Meta:
        ordering = ['-started_at']
        verbose_name = 'Learning Cycle Run'
        verbose_name_plural = 'Learning Cycle Runs'

    def __str__(self):
        return f"Learning cycle {self.started_at:%Y-%m-%d %H:%M}: {self.status} ({self.updates_applied} updates)"


class AutomatedIntervention(models.Model):
    """
    An intervention the optimizer executed without human approval.
    """

    match_id = models.CharField(max_length=64, db_index=True)
    opportunity_type = models.CharField(max_length=50)
    intervention_type = models.CharField(max_length=50)
    actions = models.JSONField(default=list)
    executed_at = models.DateTimeField()

    class Meta:
        ordering = ['-executed_at']
        verbose_name = 'Automated Intervention'
        verbose_name_plural = 'Automated Interventions'

    def __str__(self):
        return f"{self.intervention_type} for {self.match_id}"
