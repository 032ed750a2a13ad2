"""
Database models for the intervention workflow.

Tables:
- teams / users: identity source of truth for guard checks
- buildings / lots: property references of an intervention
- interventions: the central work order with its lifecycle status
- intervention_assignments: participants and their confirmation sub-state
- intervention_time_slots: candidate scheduling windows
- intervention_user_availabilities: per-participant availability windows
- intervention_quotes: provider cost proposals
- intervention_work_reports: structured completion reports
- intervention_documents: uploaded files stored in MinIO
- intervention_history: activity log written on every transition
- notification_events: in-app notifications

Statuses are stored as non-native enums (VARCHAR) so the same schema works
on PostgreSQL and SQLite.
"""

from datetime import date, datetime, time, timezone
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import (
    Column,
    DateTime,
    Enum as SAEnum,
    Float,
    Index,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlmodel import Field, SQLModel

from db.enums import (
    AssignmentRole,
    ConfirmationStatus,
    DocumentType,
    InterventionStatus,
    InterventionUrgency,
    QuoteStatus,
    TimeSlotStatus,
    UserRole,
)


def utc_now():
    """
    Get current time in UTC (timezone-naive) for database storage.

    All datetimes are stored in UTC without timezone info; the API layer
    serializes them with a 'Z' suffix.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def enum_column(enum_cls, nullable: bool = False, index: bool = False, **kwargs) -> Column:
    """Build a VARCHAR column that stores the enum value, not its name."""
    return Column(
        SAEnum(
            enum_cls,
            native_enum=False,
            length=40,
            values_callable=lambda members: [member.value for member in members],
            validate_strings=True,
        ),
        nullable=nullable,
        index=index,
        **kwargs,
    )


class TableModel(SQLModel):
    """Base table model with common functionality."""

    pass


class Team(TableModel, table=True):
    """Property management team owning buildings and interventions."""

    __tablename__ = "teams"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    name: str = Field(
        sa_column=Column(String(200), nullable=False),
        description="Team display name",
    )
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column_kwargs={"server_default": text("CURRENT_TIMESTAMP")},
    )


class User(TableModel, table=True):
    """Application user (tenant, manager, provider or admin)."""

    __tablename__ = "users"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    email: str = Field(
        sa_column=Column(String(255), nullable=False, unique=True, index=True),
        description="Login email",
    )
    full_name: str = Field(
        sa_column=Column(String(200), nullable=False),
        description="Display name",
    )
    role: UserRole = Field(
        sa_column=enum_column(UserRole, index=True),
        description="Application role",
    )
    team_id: Optional[UUID] = Field(
        default=None,
        foreign_key="teams.id",
        index=True,
        description="Team the user belongs to (managers, tenants)",
    )
    phone: Optional[str] = Field(
        default=None,
        sa_column=Column(String(50), nullable=True),
    )
    is_active: bool = Field(default=True)
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column_kwargs={"server_default": text("CURRENT_TIMESTAMP")},
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        sa_column_kwargs={
            "server_default": text("CURRENT_TIMESTAMP"),
            "onupdate": utc_now,
        },
    )


class Building(TableModel, table=True):
    """Building managed by a team."""

    __tablename__ = "buildings"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    name: str = Field(sa_column=Column(String(200), nullable=False))
    address: Optional[str] = Field(
        default=None,
        sa_column=Column(String(500), nullable=True),
    )
    team_id: UUID = Field(foreign_key="teams.id", index=True)
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column_kwargs={"server_default": text("CURRENT_TIMESTAMP")},
    )


class Lot(TableModel, table=True):
    """Rentable unit inside a building."""

    __tablename__ = "lots"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    reference: str = Field(sa_column=Column(String(100), nullable=False))
    building_id: Optional[UUID] = Field(
        default=None, foreign_key="buildings.id", index=True
    )
    team_id: UUID = Field(foreign_key="teams.id", index=True)
    tenant_id: Optional[UUID] = Field(
        default=None,
        foreign_key="users.id",
        index=True,
        description="Current tenant of the lot",
    )
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column_kwargs={"server_default": text("CURRENT_TIMESTAMP")},
    )


class Intervention(TableModel, table=True):
    """
    Maintenance work order tracked from request to closure.

    The status column is only ever written through the workflow service
    with a conditional update guarded by the expected previous status.
    Interventions are never deleted; cancellation is a terminal status.
    """

    __tablename__ = "interventions"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    reference: str = Field(
        sa_column=Column(String(30), nullable=False, unique=True),
        description="Human readable reference (INT-YYYYMMDD-XXXX)",
    )
    title: str = Field(sa_column=Column(String(200), nullable=False))
    description: str = Field(sa_column=Column(Text, nullable=False))
    intervention_type: Optional[str] = Field(
        default=None,
        sa_column=Column(String(100), nullable=True),
        description="Category (plomberie, electricite, ...)",
    )
    urgency: InterventionUrgency = Field(
        default=InterventionUrgency.NORMALE,
        sa_column=enum_column(InterventionUrgency),
    )
    status: InterventionStatus = Field(
        default=InterventionStatus.REQUESTED,
        sa_column=enum_column(InterventionStatus, index=True),
    )
    team_id: UUID = Field(foreign_key="teams.id", index=True)
    lot_id: Optional[UUID] = Field(default=None, foreign_key="lots.id", index=True)
    building_id: Optional[UUID] = Field(
        default=None, foreign_key="buildings.id", index=True
    )
    tenant_id: Optional[UUID] = Field(default=None, foreign_key="users.id", index=True)
    created_by: UUID = Field(foreign_key="users.id")
    requires_quote: bool = Field(
        default=False,
        description="Cost estimation must be obtained before scheduling",
    )

    scheduled_date: Optional[datetime] = Field(
        default=None, sa_column=Column(DateTime, nullable=True)
    )
    started_at: Optional[datetime] = Field(
        default=None, sa_column=Column(DateTime, nullable=True)
    )
    completed_at: Optional[datetime] = Field(
        default=None, sa_column=Column(DateTime, nullable=True)
    )
    finalized_at: Optional[datetime] = Field(
        default=None, sa_column=Column(DateTime, nullable=True)
    )
    cancelled_at: Optional[datetime] = Field(
        default=None, sa_column=Column(DateTime, nullable=True)
    )
    reminder_sent_at: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime, nullable=True),
        description="When the upcoming-visit reminder went out for the current scheduled date",
    )

    manager_comment: Optional[str] = Field(
        default=None, sa_column=Column(Text, nullable=True)
    )
    rejection_reason: Optional[str] = Field(
        default=None, sa_column=Column(Text, nullable=True)
    )
    cancellation_reason: Optional[str] = Field(
        default=None, sa_column=Column(Text, nullable=True)
    )
    estimated_cost: Optional[float] = Field(
        default=None, sa_column=Column(Float, nullable=True)
    )
    final_cost: Optional[float] = Field(
        default=None, sa_column=Column(Float, nullable=True)
    )
    tenant_satisfaction: Optional[int] = Field(
        default=None, sa_column=Column(Integer, nullable=True)
    )

    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column_kwargs={"server_default": text("CURRENT_TIMESTAMP")},
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        sa_column_kwargs={
            "server_default": text("CURRENT_TIMESTAMP"),
            "onupdate": utc_now,
        },
    )

    __table_args__ = (
        Index("ix_interventions_team_status", "team_id", "status"),
    )


class InterventionAssignment(TableModel, table=True):
    """
    Participant of an intervention.

    confirmation_status is NULL unless requires_confirmation is set. A
    required confirmation moves from pending to confirmed or rejected once.
    """

    __tablename__ = "intervention_assignments"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    intervention_id: UUID = Field(foreign_key="interventions.id", index=True)
    user_id: UUID = Field(foreign_key="users.id", index=True)
    role: AssignmentRole = Field(sa_column=enum_column(AssignmentRole))
    is_primary: bool = Field(default=False)
    requires_confirmation: bool = Field(default=False)
    confirmation_status: Optional[ConfirmationStatus] = Field(
        default=None,
        sa_column=enum_column(ConfirmationStatus, nullable=True),
    )
    confirmed_at: Optional[datetime] = Field(
        default=None, sa_column=Column(DateTime, nullable=True)
    )
    confirmation_reason: Optional[str] = Field(
        default=None, sa_column=Column(Text, nullable=True)
    )
    assigned_by: Optional[UUID] = Field(default=None, foreign_key="users.id")
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column_kwargs={"server_default": text("CURRENT_TIMESTAMP")},
    )

    __table_args__ = (
        UniqueConstraint(
            "intervention_id", "user_id", "role",
            name="uq_assignment_intervention_user_role",
        ),
    )


class TimeSlot(TableModel, table=True):
    """Candidate date/time window for an intervention."""

    __tablename__ = "intervention_time_slots"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    intervention_id: UUID = Field(foreign_key="interventions.id", index=True)
    slot_date: date
    start_time: time
    end_time: time
    status: TimeSlotStatus = Field(
        default=TimeSlotStatus.PENDING,
        sa_column=enum_column(TimeSlotStatus),
    )
    proposed_by: UUID = Field(foreign_key="users.id")
    selected_by_manager: bool = Field(
        default=False,
        description="Slot chosen by the manager as the confirmation target",
    )
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column_kwargs={"server_default": text("CURRENT_TIMESTAMP")},
    )

    @property
    def starts_at(self) -> datetime:
        return datetime.combine(self.slot_date, self.start_time)


class UserAvailability(TableModel, table=True):
    """
    Window in which one participant is available for an intervention.

    A participant's availabilities are replaced as a whole on every
    submission; the matcher intersects them across participants.
    """

    __tablename__ = "intervention_user_availabilities"
    __table_args__ = (
        Index("ix_user_availabilities_intervention_user", "intervention_id", "user_id"),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    intervention_id: UUID = Field(foreign_key="interventions.id")
    user_id: UUID = Field(foreign_key="users.id")
    available_date: date
    start_time: time
    end_time: time
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column_kwargs={"server_default": text("CURRENT_TIMESTAMP")},
    )


class Quote(TableModel, table=True):
    """
    Cost proposal from a provider.

    At most one quote per intervention is accepted; accepting one rejects
    every other pending or sent quote of the same intervention.
    """

    __tablename__ = "intervention_quotes"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    intervention_id: UUID = Field(foreign_key="interventions.id", index=True)
    provider_id: UUID = Field(foreign_key="users.id", index=True)
    requested_by: Optional[UUID] = Field(default=None, foreign_key="users.id")
    labor_cost: Optional[float] = Field(
        default=None, sa_column=Column(Float, nullable=True)
    )
    materials_cost: Optional[float] = Field(
        default=None, sa_column=Column(Float, nullable=True)
    )
    total_amount: Optional[float] = Field(
        default=None, sa_column=Column(Float, nullable=True)
    )
    description: Optional[str] = Field(
        default=None, sa_column=Column(Text, nullable=True)
    )
    valid_until: Optional[datetime] = Field(
        default=None, sa_column=Column(DateTime, nullable=True)
    )
    deadline: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime, nullable=True),
        description="Date by which the provider should answer",
    )
    status: QuoteStatus = Field(
        default=QuoteStatus.PENDING,
        sa_column=enum_column(QuoteStatus, index=True),
    )
    rejection_reason: Optional[str] = Field(
        default=None, sa_column=Column(Text, nullable=True)
    )
    submitted_at: Optional[datetime] = Field(
        default=None, sa_column=Column(DateTime, nullable=True)
    )
    reviewed_at: Optional[datetime] = Field(
        default=None, sa_column=Column(DateTime, nullable=True)
    )
    reviewed_by: Optional[UUID] = Field(default=None, foreign_key="users.id")
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column_kwargs={"server_default": text("CURRENT_TIMESTAMP")},
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        sa_column_kwargs={
            "server_default": text("CURRENT_TIMESTAMP"),
            "onupdate": utc_now,
        },
    )


class WorkCompletionReport(TableModel, table=True):
    """Structured report submitted by the provider when closing the work."""

    __tablename__ = "intervention_work_reports"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    intervention_id: UUID = Field(foreign_key="interventions.id", index=True)
    provider_id: UUID = Field(foreign_key="users.id")
    work_summary: str = Field(sa_column=Column(Text, nullable=False))
    work_details: str = Field(sa_column=Column(Text, nullable=False))
    materials_used: Optional[str] = Field(
        default=None, sa_column=Column(Text, nullable=True)
    )
    actual_duration_hours: float = Field(sa_column=Column(Float, nullable=False))
    actual_cost: Optional[float] = Field(
        default=None, sa_column=Column(Float, nullable=True)
    )
    issues_encountered: Optional[str] = Field(
        default=None, sa_column=Column(Text, nullable=True)
    )
    recommendations: Optional[str] = Field(
        default=None, sa_column=Column(Text, nullable=True)
    )
    quality_assurance: dict = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
        description="Checklist item -> checked",
    )
    submitted_at: datetime = Field(
        default_factory=utc_now,
        sa_column_kwargs={"server_default": text("CURRENT_TIMESTAMP")},
    )


class InterventionDocument(TableModel, table=True):
    """
    File attached to an intervention.

    A row is only inserted after the binary is stored in MinIO.
    """

    __tablename__ = "intervention_documents"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    intervention_id: UUID = Field(foreign_key="interventions.id", index=True)
    document_type: DocumentType = Field(
        default=DocumentType.OTHER,
        sa_column=enum_column(DocumentType),
    )
    original_filename: str = Field(sa_column=Column(String(255), nullable=False))
    stored_filename: str = Field(sa_column=Column(String(255), nullable=False))
    storage_path: str = Field(
        sa_column=Column(String(500), nullable=False),
        description="MinIO object key",
    )
    bucket_name: str = Field(sa_column=Column(String(100), nullable=False))
    file_size: int = Field(sa_column=Column(Integer, nullable=False))
    mime_type: str = Field(sa_column=Column(String(100), nullable=False))
    checksum: str = Field(
        sa_column=Column(String(64), nullable=False, index=True),
        description="SHA256 of the content",
    )
    description: Optional[str] = Field(
        default=None, sa_column=Column(Text, nullable=True)
    )
    uploaded_by: UUID = Field(foreign_key="users.id", index=True)
    is_deleted: bool = Field(default=False)
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column_kwargs={"server_default": text("CURRENT_TIMESTAMP")},
    )


class InterventionHistory(TableModel, table=True):
    """Activity log row written for every transition and notable action."""

    __tablename__ = "intervention_history"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    intervention_id: UUID = Field(foreign_key="interventions.id", index=True)
    action: str = Field(sa_column=Column(String(50), nullable=False))
    from_status: Optional[str] = Field(
        default=None, sa_column=Column(String(40), nullable=True)
    )
    to_status: Optional[str] = Field(
        default=None, sa_column=Column(String(40), nullable=True)
    )
    actor_id: Optional[UUID] = Field(default=None, foreign_key="users.id")
    comment: Optional[str] = Field(
        default=None, sa_column=Column(Text, nullable=True)
    )
    details: dict = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column_kwargs={"server_default": text("CURRENT_TIMESTAMP")},
    )

    __table_args__ = (
        Index("ix_intervention_history_intervention_created", "intervention_id", "created_at"),
    )


class NotificationEvent(TableModel, table=True):
    """In-app notification emitted after a successful transition."""

    __tablename__ = "notification_events"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: UUID = Field(foreign_key="users.id", index=True)
    intervention_id: Optional[UUID] = Field(
        default=None, foreign_key="interventions.id", index=True
    )
    event_type: str = Field(
        sa_column=Column(String(50), nullable=False),
        description="Event type, usually the lifecycle action",
    )
    message: str = Field(sa_column=Column(String(500), nullable=False))
    payload: dict = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column_kwargs={"server_default": text("CURRENT_TIMESTAMP")},
    )
    read_at: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime, nullable=True),
        description="When the user read it (NULL = unread)",
    )
