"""
Prometheus metrics for the intervention workflow.

Usage:
    from core.metrics import track_transition, transition_refusals

    track_transition("approve", "approved")
    transition_refusals.labels(action="approve", code="forbidden").inc()

All counters are exposed on /metrics by the application factory.
"""

from prometheus_client import Counter, Histogram

# ==============================================================================
# Lifecycle Metrics
# ==============================================================================

intervention_transitions = Counter(
    'intervention_transitions_total',
    'Intervention status transitions applied',
    ['action', 'to_status']
)

transition_refusals = Counter(
    'intervention_transition_refusals_total',
    'Transitions refused by the table, a guard or validation',
    ['action', 'code']
)

participation_confirmations = Counter(
    'intervention_confirmations_total',
    'Participant confirmation answers recorded',
    ['outcome']
)

# ==============================================================================
# Document Metrics
# ==============================================================================

document_uploads = Counter(
    'intervention_document_uploads_total',
    'Document upload attempts by outcome',
    ['outcome']
)

document_upload_size = Histogram(
    'intervention_document_upload_bytes',
    'Size of stored documents in bytes',
    buckets=(10_240, 102_400, 512_000, 1_048_576, 5_242_880, 10_485_760, float('inf'))
)

upload_compensations = Counter(
    'intervention_upload_compensations_total',
    'Orphaned objects removed after a failed metadata write',
    ['outcome']
)

# ==============================================================================
# Notification Metrics
# ==============================================================================

notifications_sent = Counter(
    'intervention_notifications_total',
    'Notification events persisted',
    ['event_type']
)

notification_failures = Counter(
    'intervention_notification_failures_total',
    'Notification events that could not be dispatched',
    ['event_type']
)


def track_transition(action: str, to_status: str) -> None:
    """Count an applied transition."""
    intervention_transitions.labels(action=action, to_status=to_status).inc()


def track_refusal(action: str, code: str) -> None:
    """Count a refused transition or workflow operation."""
    transition_refusals.labels(action=action, code=code).inc()
