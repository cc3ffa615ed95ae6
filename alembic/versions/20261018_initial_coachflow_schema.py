"""Initial coachflow schema

Revision ID: initial_coachflow_schema
Revises:
Create Date: 2026-10-18

Tables:
- coaches, enrollments, scheduled_sessions
- revenue_split_config, enrollment_revenue, coach_payouts
- coach_availability, coach_reassignment_log, scheduling_queue, admin_alerts
- learning_events, audit_logs
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = 'initial_coachflow_schema'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


UUID = postgresql.UUID(as_uuid=True)
MONEY = sa.Numeric(12, 2)
PERCENT = sa.Numeric(5, 2)


def _timestamps(updated: bool = True):
    columns = [sa.Column('created_at', sa.DateTime(timezone=True), nullable=True)]
    if updated:
        columns.append(sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True))
    return columns


def upgrade() -> None:
    # ==================== coaches ====================
    op.create_table(
        'coaches',
        sa.Column('id', UUID, primary_key=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('email', sa.String(255), nullable=False, unique=True),
        sa.Column('phone', sa.String(20), nullable=True),
        sa.Column('pan_number', sa.String(10), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=True),
        sa.Column('availability_status', sa.String(20), nullable=True,
                  comment='available, unavailable, exited'),
        sa.Column('max_capacity', sa.Integer(), nullable=True),
        sa.Column('current_students', sa.Integer(), nullable=True),
        sa.Column('fy_opening_earnings', MONEY, nullable=True),
        sa.Column('tds_cumulative_fy', MONEY, nullable=True),
        sa.Column('tds_financial_year', sa.String(10), nullable=True),
        sa.Column('exit_date', sa.Date(), nullable=True),
        *_timestamps(),
    )
    op.create_index('idx_coaches_active_load', 'coaches', ['is_active', 'current_students'])

    # ==================== enrollments ====================
    op.create_table(
        'enrollments',
        sa.Column('id', UUID, primary_key=True),
        sa.Column('child_id', UUID, nullable=False),
        sa.Column('child_name', sa.String(200), nullable=False),
        sa.Column('parent_name', sa.String(200), nullable=True),
        sa.Column('parent_email', sa.String(255), nullable=True),
        sa.Column('parent_phone', sa.String(20), nullable=True),
        sa.Column('plan_slug', sa.String(50), nullable=True),
        sa.Column('total_amount', MONEY, nullable=False),
        sa.Column('program_start', sa.Date(), nullable=True),
        sa.Column('program_end', sa.Date(), nullable=True),
        sa.Column('preferred_time_bucket', sa.String(20), nullable=True),
        sa.Column('lead_source', sa.String(20), nullable=True),
        sa.Column('lead_source_coach_id', UUID,
                  sa.ForeignKey('coaches.id', ondelete='SET NULL'), nullable=True),
        sa.Column('coach_id', UUID, sa.ForeignKey('coaches.id', ondelete='SET NULL'), nullable=True),
        sa.Column('status', sa.String(20), nullable=True),
        sa.Column('schedule_confirmed', sa.Boolean(), nullable=True),
        sa.Column('sessions_scheduled', sa.Integer(), nullable=True),
        sa.Column('consecutive_no_shows', sa.Integer(), nullable=True),
        sa.Column('total_no_shows', sa.Integer(), nullable=True),
        sa.Column('is_at_risk', sa.Boolean(), nullable=True),
        sa.Column('paused_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('pause_reason', sa.Text(), nullable=True),
        sa.Column('revenue_locked_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_enrollments_child_id', 'enrollments', ['child_id'])
    op.create_index('ix_enrollments_coach_id', 'enrollments', ['coach_id'])
    op.create_index('ix_enrollments_status', 'enrollments', ['status'])
    op.create_index('idx_enrollments_coach_status', 'enrollments', ['coach_id', 'status'])

    # ==================== scheduled_sessions ====================
    op.create_table(
        'scheduled_sessions',
        sa.Column('id', UUID, primary_key=True),
        sa.Column('enrollment_id', UUID,
                  sa.ForeignKey('enrollments.id', ondelete='CASCADE'), nullable=False),
        sa.Column('child_id', UUID, nullable=False),
        sa.Column('coach_id', UUID, sa.ForeignKey('coaches.id', ondelete='SET NULL'), nullable=True),
        sa.Column('session_number', sa.Integer(), nullable=False),
        sa.Column('week_number', sa.Integer(), nullable=False),
        sa.Column('session_type', sa.String(20), nullable=True),
        sa.Column('session_title', sa.String(255), nullable=True),
        sa.Column('is_diagnostic', sa.Boolean(), nullable=True),
        sa.Column('scheduled_date', sa.Date(), nullable=False),
        sa.Column('scheduled_time', sa.Time(), nullable=False),
        sa.Column('duration_minutes', sa.Integer(), nullable=True),
        sa.Column('status', sa.String(30), nullable=True),
        sa.Column('google_event_id', sa.String(255), nullable=True),
        sa.Column('meet_link', sa.String(500), nullable=True),
        sa.Column('recall_bot_id', sa.String(255), nullable=True),
        sa.Column('scheduling_attempts', sa.Integer(), nullable=True),
        sa.Column('next_retry_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_scheduling_error', sa.Text(), nullable=True),
        sa.Column('reschedule_count', sa.Integer(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('focus_area', sa.String(30), nullable=True),
        sa.Column('progress_rating', sa.String(30), nullable=True),
        sa.Column('engagement_level', sa.String(10), nullable=True),
        sa.Column('skills_worked_on', sa.JSON(), nullable=True),
        sa.Column('coach_notes', sa.Text(), nullable=True),
        sa.Column('breakthrough_moment', sa.Text(), nullable=True),
        sa.Column('concerns', sa.Text(), nullable=True),
        sa.Column('homework_assigned', sa.Boolean(), nullable=True),
        sa.Column('homework_description', sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_scheduled_sessions_enrollment_id', 'scheduled_sessions', ['enrollment_id'])
    op.create_index('ix_scheduled_sessions_coach_id', 'scheduled_sessions', ['coach_id'])
    op.create_index('ix_scheduled_sessions_status', 'scheduled_sessions', ['status'])
    op.create_index(
        'uq_scheduled_sessions_enrollment_number_live',
        'scheduled_sessions',
        ['enrollment_id', 'session_number'],
        unique=True,
        postgresql_where=sa.text("status <> 'cancelled'"),
        sqlite_where=sa.text("status <> 'cancelled'"),
    )
    op.create_index('idx_scheduled_sessions_coach_date', 'scheduled_sessions', ['coach_id', 'scheduled_date'])
    op.create_index('idx_scheduled_sessions_retry', 'scheduled_sessions', ['status', 'next_retry_at'])

    # ==================== revenue_split_config ====================
    op.create_table(
        'revenue_split_config',
        sa.Column('id', UUID, primary_key=True),
        sa.Column('lead_cost_percent', PERCENT, nullable=False),
        sa.Column('coach_cost_percent', PERCENT, nullable=False),
        sa.Column('platform_fee_percent', PERCENT, nullable=False),
        sa.Column('tds_rate_percent', PERCENT, nullable=True),
        sa.Column('tds_threshold_annual', MONEY, nullable=True),
        sa.Column('payout_day_of_month', sa.Integer(), nullable=True),
        sa.Column('effective_from', sa.DateTime(timezone=True), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_by', sa.String(255), nullable=True),
        *_timestamps(updated=False),
    )
    op.create_index('ix_revenue_split_config_effective_from', 'revenue_split_config', ['effective_from'])

    # ==================== enrollment_revenue ====================
    op.create_table(
        'enrollment_revenue',
        sa.Column('id', UUID, primary_key=True),
        sa.Column('enrollment_id', UUID,
                  sa.ForeignKey('enrollments.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('child_id', UUID, nullable=False),
        sa.Column('coaching_coach_id', UUID,
                  sa.ForeignKey('coaches.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('lead_source', sa.String(20), nullable=False),
        sa.Column('lead_source_coach_id', UUID,
                  sa.ForeignKey('coaches.id', ondelete='RESTRICT'), nullable=True),
        sa.Column('total_amount', MONEY, nullable=False),
        sa.Column('lead_cost_amount', MONEY, nullable=False),
        sa.Column('coach_cost_amount', MONEY, nullable=False),
        sa.Column('platform_fee_amount', MONEY, nullable=False),
        sa.Column('tds_applicable', sa.Boolean(), nullable=True),
        sa.Column('tds_rate_applied', PERCENT, nullable=True),
        sa.Column('tds_amount', MONEY, nullable=True),
        sa.Column('lead_bonus_tds_applicable', sa.Boolean(), nullable=True),
        sa.Column('lead_bonus_tds_amount', MONEY, nullable=True),
        sa.Column('net_to_coach', MONEY, nullable=False),
        sa.Column('net_to_lead_source', MONEY, nullable=False),
        sa.Column('net_retained_by_platform', MONEY, nullable=False),
        sa.Column('financial_year', sa.String(10), nullable=False, comment='e.g. 2025-26'),
        sa.Column('config_id', UUID, nullable=True),
        sa.Column('config_snapshot', sa.JSON(), nullable=False),
        sa.Column('status', sa.String(20), nullable=True),
        *_timestamps(updated=False),
        sa.UniqueConstraint('enrollment_id', name='uq_enrollment_revenue_enrollment'),
    )

    # ==================== coach_payouts ====================
    op.create_table(
        'coach_payouts',
        sa.Column('id', UUID, primary_key=True),
        sa.Column('enrollment_revenue_id', UUID,
                  sa.ForeignKey('enrollment_revenue.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('coach_id', UUID, sa.ForeignKey('coaches.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('child_id', UUID, nullable=False),
        sa.Column('child_name', sa.String(200), nullable=True),
        sa.Column('payout_month', sa.Integer(), nullable=False),
        sa.Column('payout_type', sa.String(20), nullable=False, comment='coach_cost, lead_bonus'),
        sa.Column('gross_amount', MONEY, nullable=False),
        sa.Column('tds_amount', MONEY, nullable=True),
        sa.Column('net_amount', MONEY, nullable=False),
        sa.Column('financial_year', sa.String(10), nullable=False),
        sa.Column('scheduled_date', sa.Date(), nullable=False),
        sa.Column('status', sa.String(20), nullable=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('payment_reference', sa.String(100), nullable=True),
        *_timestamps(updated=False),
        sa.UniqueConstraint('enrollment_revenue_id', 'payout_month', 'payout_type',
                            name='uq_coach_payouts_revenue_month_type'),
    )
    op.create_index('ix_coach_payouts_enrollment_revenue_id', 'coach_payouts', ['enrollment_revenue_id'])
    op.create_index('ix_coach_payouts_coach_id', 'coach_payouts', ['coach_id'])
    op.create_index('idx_coach_payouts_coach_fy', 'coach_payouts', ['coach_id', 'financial_year'])

    # ==================== coach_availability ====================
    op.create_table(
        'coach_availability',
        sa.Column('id', UUID, primary_key=True),
        sa.Column('coach_id', UUID, sa.ForeignKey('coaches.id', ondelete='CASCADE'), nullable=False),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('resolution', sa.String(30), nullable=True,
                  comment='rescheduled, backup_assigned, permanently_reassigned, escalated'),
        sa.Column('sessions_affected', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=True),
        sa.Column('ended_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(updated=False),
    )
    op.create_index('ix_coach_availability_coach_id', 'coach_availability', ['coach_id'])

    # ==================== coach_reassignment_log ====================
    op.create_table(
        'coach_reassignment_log',
        sa.Column('id', UUID, primary_key=True),
        sa.Column('enrollment_id', UUID,
                  sa.ForeignKey('enrollments.id', ondelete='SET NULL'), nullable=True),
        sa.Column('original_coach_id', UUID,
                  sa.ForeignKey('coaches.id', ondelete='CASCADE'), nullable=False),
        sa.Column('new_coach_id', UUID, sa.ForeignKey('coaches.id', ondelete='CASCADE'), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('is_temporary', sa.Boolean(), nullable=True),
        sa.Column('start_date', sa.Date(), nullable=True),
        sa.Column('expected_end_date', sa.Date(), nullable=True),
        sa.Column('actual_end_date', sa.Date(), nullable=True),
        sa.Column('session_ids', sa.JSON(), nullable=True),
        sa.Column('sessions_moved', sa.Integer(), nullable=True),
        *_timestamps(updated=False),
    )
    op.create_index('ix_coach_reassignment_log_enrollment_id', 'coach_reassignment_log', ['enrollment_id'])
    op.create_index('ix_coach_reassignment_log_original_coach_id', 'coach_reassignment_log',
                    ['original_coach_id'])
    op.create_index('idx_reassignment_temporary_open', 'coach_reassignment_log',
                    ['original_coach_id', 'is_temporary', 'actual_end_date'])

    # ==================== scheduling_queue ====================
    op.create_table(
        'scheduling_queue',
        sa.Column('id', UUID, primary_key=True),
        sa.Column('session_id', UUID,
                  sa.ForeignKey('scheduled_sessions.id', ondelete='SET NULL'), nullable=True),
        sa.Column('enrollment_id', UUID, nullable=True),
        sa.Column('child_id', UUID, nullable=True),
        sa.Column('coach_id', UUID, nullable=True),
        sa.Column('session_type', sa.String(20), nullable=True),
        sa.Column('week_number', sa.Integer(), nullable=True),
        sa.Column('reason', sa.Text(), nullable=False),
        sa.Column('attempts_made', sa.Integer(), nullable=True),
        sa.Column('status', sa.String(20), nullable=True, comment='pending, in_progress, resolved'),
        sa.Column('resolution_notes', sa.Text(), nullable=True),
        sa.Column('resolved_by', sa.String(255), nullable=True),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_scheduling_queue_session_id', 'scheduling_queue', ['session_id'])
    op.create_index('ix_scheduling_queue_status', 'scheduling_queue', ['status'])

    # ==================== admin_alerts ====================
    op.create_table(
        'admin_alerts',
        sa.Column('id', UUID, primary_key=True),
        sa.Column('alert_type', sa.String(50), nullable=False),
        sa.Column('severity', sa.String(10), nullable=True),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('message', sa.Text(), nullable=True),
        sa.Column('enrollment_id', UUID, nullable=True),
        sa.Column('coach_id', UUID, nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('is_resolved', sa.Boolean(), nullable=True),
        *_timestamps(updated=False),
    )
    op.create_index('ix_admin_alerts_alert_type', 'admin_alerts', ['alert_type'])

    # ==================== learning_events ====================
    op.create_table(
        'learning_events',
        sa.Column('id', UUID, primary_key=True),
        sa.Column('child_id', UUID, nullable=False),
        sa.Column('coach_id', UUID, sa.ForeignKey('coaches.id', ondelete='SET NULL'), nullable=True),
        sa.Column('session_id', UUID,
                  sa.ForeignKey('scheduled_sessions.id', ondelete='SET NULL'), nullable=True),
        sa.Column('event_type', sa.String(30), nullable=False),
        sa.Column('event_data', sa.JSON(), nullable=False),
        sa.Column('content_for_embedding', sa.Text(), nullable=True),
        sa.Column('embedding', sa.JSON(), nullable=True),
        *_timestamps(updated=False),
    )
    op.create_index('ix_learning_events_child_id', 'learning_events', ['child_id'])
    op.create_index('idx_learning_events_child_type', 'learning_events', ['child_id', 'event_type'])

    # ==================== audit_logs ====================
    op.create_table(
        'audit_logs',
        sa.Column('id', UUID, primary_key=True),
        sa.Column('actor', sa.String(255), nullable=True),
        sa.Column('action', sa.String(50), nullable=False),
        sa.Column('entity_type', sa.String(50), nullable=False),
        sa.Column('entity_id', UUID, nullable=True),
        sa.Column('old_values', sa.JSON(), nullable=True),
        sa.Column('new_values', sa.JSON(), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('request_id', sa.String(100), nullable=True),
        *_timestamps(updated=False),
    )
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])
    op.create_index('ix_audit_logs_entity_type', 'audit_logs', ['entity_type'])
    op.create_index('ix_audit_logs_created_at', 'audit_logs', ['created_at'])


def downgrade() -> None:
    for table in (
        'audit_logs',
        'learning_events',
        'admin_alerts',
        'scheduling_queue',
        'coach_reassignment_log',
        'coach_availability',
        'coach_payouts',
        'enrollment_revenue',
        'revenue_split_config',
        'scheduled_sessions',
        'enrollments',
        'coaches',
    ):
        op.drop_table(table)
