from asgiref.sync import async_to_sync
from django.contrib import admin

from .engine import MatchingEngine
from .models import (
    ProviderProfile, ClientProfile, MatchOutcome, FactorWeight,
    EngagementInteraction, EngagementMilestone, EngagementPrediction,
    PerformanceScoreSnapshot, LearningCycleRun, AutomatedIntervention,
)


class ReadOnlyAdmin(admin.ModelAdmin):
    """Rows written only by the engine."""

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


# =============================================================================
# PROFILES
# =============================================================================

@admin.register(ProviderProfile)
class ProviderProfileAdmin(admin.ModelAdmin):
    list_display = ['provider_id', 'name', 'province', 'city', 'accepting_clients',
                    'current_capacity', 'total_matches', 'average_rating']
    list_filter = ['accepting_clients', 'province', 'preferred_channel']
    search_fields = ['provider_id', 'name', 'city']
    readonly_fields = ['total_matches', 'created_at', 'updated_at']
    actions = ['score_performance']

    def score_performance(self, request, queryset):
        engine = MatchingEngine.from_settings()
        scored = 0
        for provider in queryset:
            async_to_sync(engine.score_performance)(provider.provider_id, bypass_cache=True)
            scored += 1
        self.message_user(request, f'Scored performance for {scored} providers.')
    score_performance.short_description = 'Score performance now'


@admin.register(ClientProfile)
class ClientProfileAdmin(admin.ModelAdmin):
    list_display = ['client_id', 'business_name', 'industry', 'province',
                    'employee_count', 'annual_revenue', 'complexity_level']
    list_filter = ['industry', 'province', 'complexity_level']
    search_fields = ['client_id', 'business_name']
    readonly_fields = ['created_at', 'updated_at']


# =============================================================================
# OUTCOMES & ENGAGEMENT
# =============================================================================

@admin.register(MatchOutcome)
class MatchOutcomeAdmin(admin.ModelAdmin):
    list_display = ['match_id', 'provider_id', 'client_id', 'partnership_formed',
                    'partnership_status', 'revenue_generated', 'created_at']
    list_filter = ['partnership_formed', 'partnership_status', 'contract_signed']
    search_fields = ['match_id', 'provider_id', 'client_id']
    readonly_fields = ['factor_values', 'created_at', 'updated_at']

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(EngagementInteraction)
class EngagementInteractionAdmin(ReadOnlyAdmin):
    list_display = ['match_id', 'channel', 'interaction_type', 'quality_score',
                    'response_time_hours', 'occurred_at']
    list_filter = ['channel', 'interaction_type']
    search_fields = ['match_id', 'provider_id']


@admin.register(EngagementMilestone)
class EngagementMilestoneAdmin(ReadOnlyAdmin):
    list_display = ['match_id', 'milestone_type', 'funnel_stage', 'hours_to_reach', 'reached_at']
    list_filter = ['funnel_stage', 'milestone_type']
    search_fields = ['match_id', 'provider_id']


@admin.register(EngagementPrediction)
class EngagementPredictionAdmin(ReadOnlyAdmin):
    list_display = ['match_id', 'partnership_probability', 'engagement_score',
                    'dropout_risk', 'estimated_revenue', 'last_updated']
    search_fields = ['match_id']


# =============================================================================
# LEARNING & PERFORMANCE
# =============================================================================

@admin.register(FactorWeight)
class FactorWeightAdmin(ReadOnlyAdmin):
    list_display = ['factor_name', 'factor_category', 'current_weight', 'baseline_weight',
                    'success_correlation', 'confidence_score', 'sample_size',
                    'learning_iterations', 'last_updated']
    list_filter = ['factor_category']


@admin.register(LearningCycleRun)
class LearningCycleRunAdmin(ReadOnlyAdmin):
    list_display = ['started_at', 'status', 'forced', 'sample_size',
                    'success_rate', 'updates_applied', 'finished_at']
    list_filter = ['status', 'forced']


@admin.register(PerformanceScoreSnapshot)
class PerformanceScoreSnapshotAdmin(ReadOnlyAdmin):
    list_display = ['provider_id', 'overall_score', 'previous_overall_score',
                    'tier', 'rank', 'percentile', 'scored_at']
    list_filter = ['tier']
    search_fields = ['provider_id']


@admin.register(AutomatedIntervention)
class AutomatedInterventionAdmin(ReadOnlyAdmin):
    list_display = ['match_id', 'intervention_type', 'opportunity_type', 'executed_at']
    list_filter = ['intervention_type', 'opportunity_type']
    search_fields = ['match_id']
