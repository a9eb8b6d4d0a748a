"""initial lead pipeline schema

Revision ID: 001
Revises:
Create Date: 2026-10-16 09:12:40.118204
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID, JSONB


# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# Enum columns store member names
OPEN_ASSIGNMENT = "status IN ('ACTIVE', 'CONTACTED', 'FOLLOW_UP')"

touchpoint_type = sa.Enum(
    'WEBSITE_VISIT', 'INQUIRY', 'TEST_DRIVE', 'EMAIL_OPENED', 'EMAIL_CLICKED', 'SMS_REPLY', 'SHOWROOM_VISIT',
    name='touchpointtype',
)
fuel_type = sa.Enum('PETROL', 'DIESEL', 'HYBRID', 'ELECTRIC', 'LPG', name='fueltype')
vehicle_status = sa.Enum('AVAILABLE', 'RESERVED', 'SOLD', name='vehiclestatus')
inquiry_type = sa.Enum(
    'PURCHASE_INTENT', 'FINANCING', 'TEST_DRIVE', 'TRADE_IN', 'PRICE_INQUIRY', 'GENERAL', 'SERVICE',
    name='inquirytype',
)
inquiry_status = sa.Enum('NEW', 'IN_PROGRESS', 'RESPONDED', 'CLOSED', name='inquirystatus')
qualification_level = sa.Enum('COLD', 'WARM', 'HOT', 'QUALIFIED', name='qualificationlevel')
assignment_status = sa.Enum('ACTIVE', 'CONTACTED', 'FOLLOW_UP', 'CLOSED', 'EXPIRED', name='assignmentstatus')
assignment_priority = sa.Enum('LOW', 'MEDIUM', 'HIGH', name='assignmentpriority')
urgency = sa.Enum('LOW', 'MEDIUM', 'HIGH', 'URGENT', name='urgency')
wait_queue_status = sa.Enum('WAITING', 'ASSIGNED', 'EXPIRED', name='waitqueuestatus')
follow_up_type = sa.Enum('INITIAL_CONTACT', 'FOLLOW_UP', name='followuptype')
follow_up_status = sa.Enum('PENDING', 'COMPLETED', 'CANCELLED', name='followupstatus')
campaign_status = sa.Enum('SCHEDULED', 'SENDING', 'SENT', 'FAILED', name='campaignstatus')
delivery_status = sa.Enum('SENT', 'DELIVERED', 'BOUNCED', 'UNDELIVERED', 'FAILED', 'SKIPPED', name='deliverystatus')
job_status = sa.Enum('WAITING', 'ACTIVE', 'COMPLETED', 'FAILED', name='jobstatus')


def upgrade() -> None:
    op.create_table(
        'customers',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('first_name', sa.String(100), nullable=False),
        sa.Column('last_name', sa.String(100), nullable=False, server_default=''),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('phone', sa.String(50), nullable=True),
        sa.Column('address', sa.String(500), nullable=True),
        sa.Column('birth_date', sa.Date(), nullable=True),
        sa.Column('email_verified', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('email_valid', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('marketing_opt_in', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('sms_opt_in', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('preferred_locale', sa.String(10), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_customers_email', 'customers', ['email'])
    op.create_index('ix_customers_phone', 'customers', ['phone'])

    op.create_table(
        'vehicles',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('make', sa.String(100), nullable=False),
        sa.Column('model', sa.String(100), nullable=False),
        sa.Column('year', sa.Integer(), nullable=False),
        sa.Column('price', sa.Numeric(12, 2), nullable=False),
        sa.Column('mileage', sa.Integer(), nullable=True),
        sa.Column('fuel_type', fuel_type, nullable=True),
        sa.Column('body_type', sa.String(50), nullable=True),
        sa.Column('view_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('inquiry_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('status', vehicle_status, nullable=False, server_default='AVAILABLE'),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_vehicles_make', 'vehicles', ['make'])
    op.create_index('ix_vehicles_model', 'vehicles', ['model'])
    op.create_index('ix_vehicles_status', 'vehicles', ['status'])

    op.create_table(
        'purchases',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('customer_id', UUID(as_uuid=True), sa.ForeignKey('customers.id'), nullable=False),
        sa.Column('vehicle_id', UUID(as_uuid=True), sa.ForeignKey('vehicles.id'), nullable=True),
        sa.Column('total_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_purchases_customer_id', 'purchases', ['customer_id'])
    op.create_index('ix_purchases_created_at', 'purchases', ['created_at'])

    op.create_table(
        'customer_touchpoints',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('customer_id', UUID(as_uuid=True), sa.ForeignKey('customers.id'), nullable=False),
        sa.Column('touchpoint_type', touchpoint_type, nullable=False),
        sa.Column('occurred_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_customer_touchpoints_customer_id', 'customer_touchpoints', ['customer_id'])
    op.create_index('ix_customer_touchpoints_occurred_at', 'customer_touchpoints', ['occurred_at'])

    op.create_table(
        'inquiries',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('customer_id', UUID(as_uuid=True), sa.ForeignKey('customers.id'), nullable=True),
        sa.Column('vehicle_id', UUID(as_uuid=True), sa.ForeignKey('vehicles.id'), nullable=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('phone', sa.String(50), nullable=True),
        sa.Column('inquiry_type', inquiry_type, nullable=False, server_default='GENERAL'),
        sa.Column('message', sa.Text(), nullable=True),
        sa.Column('status', inquiry_status, nullable=False, server_default='NEW'),
        sa.Column('responded_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_inquiries_customer_id', 'inquiries', ['customer_id'])
    op.create_index('ix_inquiries_status', 'inquiries', ['status'])
    op.create_index('ix_inquiries_created_at', 'inquiries', ['created_at'])

    op.create_table(
        'lead_scores',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('customer_id', UUID(as_uuid=True), sa.ForeignKey('customers.id'), nullable=True),
        sa.Column('inquiry_id', UUID(as_uuid=True), sa.ForeignKey('inquiries.id'), nullable=True),
        sa.Column('total_score', sa.Float(), nullable=False),
        sa.Column('max_possible_score', sa.Float(), nullable=False, server_default='100'),
        sa.Column('score_percentage', sa.Float(), nullable=False),
        sa.Column('qualification_level', qualification_level, nullable=False),
        sa.Column('grade', sa.String(1), nullable=False),
        sa.Column('breakdown', JSONB(), nullable=False),
        sa.Column('recommendations', JSONB(), nullable=False),
        sa.Column('next_actions', JSONB(), nullable=False),
        sa.Column('incremental_update', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('update_reason', sa.Text(), nullable=True),
        sa.Column('calculated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_lead_scores_customer_id', 'lead_scores', ['customer_id'])
    op.create_index('ix_lead_scores_inquiry_id', 'lead_scores', ['inquiry_id'])
    op.create_index('ix_lead_scores_qualification_level', 'lead_scores', ['qualification_level'])
    op.create_index('ix_lead_scores_calculated_at', 'lead_scores', ['calculated_at'])

    op.create_table(
        'sales_representatives',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('first_name', sa.String(100), nullable=False),
        sa.Column('last_name', sa.String(100), nullable=False, server_default=''),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('phone', sa.String(50), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('is_available', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('expertise', JSONB(), nullable=False, server_default='[]'),
        sa.Column('languages', JSONB(), nullable=False, server_default='[]'),
        sa.Column('territory', sa.String(100), nullable=True),
        sa.Column('can_handle_urgent', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('conversion_rate', sa.Float(), nullable=False, server_default='0'),
        sa.Column('current_active_leads', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_active_leads', sa.Integer(), nullable=False, server_default='15'),
        sa.Column('working_days', JSONB(), nullable=False, server_default='[0, 1, 2, 3, 4, 5]'),
        sa.Column('work_start_hour', sa.Integer(), nullable=False, server_default='8'),
        sa.Column('work_end_hour', sa.Integer(), nullable=False, server_default='20'),
        sa.Column('last_active_at', sa.DateTime(), nullable=True),
        sa.Column('last_assignment_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        'lead_assignments',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('customer_id', UUID(as_uuid=True), sa.ForeignKey('customers.id'), nullable=True),
        sa.Column('inquiry_id', UUID(as_uuid=True), sa.ForeignKey('inquiries.id'), nullable=True),
        sa.Column('sales_rep_id', UUID(as_uuid=True), sa.ForeignKey('sales_representatives.id'), nullable=False),
        sa.Column('status', assignment_status, nullable=False, server_default='ACTIVE'),
        sa.Column('priority', assignment_priority, nullable=False, server_default='MEDIUM'),
        sa.Column('urgency', urgency, nullable=False, server_default='MEDIUM'),
        sa.Column('confidence', sa.Float(), nullable=False, server_default='0'),
        sa.Column('assignment_reason', sa.Text(), nullable=True),
        sa.Column('lead_score', sa.Float(), nullable=True),
        sa.Column('assigned_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('due_at', sa.DateTime(), nullable=True),
        sa.Column('closed_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_lead_assignments_customer_id', 'lead_assignments', ['customer_id'])
    op.create_index('ix_lead_assignments_inquiry_id', 'lead_assignments', ['inquiry_id'])
    op.create_index('ix_lead_assignments_sales_rep_id', 'lead_assignments', ['sales_rep_id'])
    op.create_index('ix_lead_assignments_status', 'lead_assignments', ['status'])
    op.create_index(
        'uq_open_assignment_customer', 'lead_assignments', ['customer_id'],
        unique=True, postgresql_where=sa.text(OPEN_ASSIGNMENT),
    )
    op.create_index(
        'uq_open_assignment_inquiry', 'lead_assignments', ['inquiry_id'],
        unique=True, postgresql_where=sa.text(OPEN_ASSIGNMENT),
    )

    op.create_table(
        'lead_wait_queue',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('customer_id', UUID(as_uuid=True), sa.ForeignKey('customers.id'), nullable=True),
        sa.Column('inquiry_id', UUID(as_uuid=True), sa.ForeignKey('inquiries.id'), nullable=True),
        sa.Column('priority', sa.Integer(), nullable=False, server_default='3'),
        sa.Column('reason', sa.Text(), nullable=False),
        sa.Column('status', wait_queue_status, nullable=False, server_default='WAITING'),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('criteria', JSONB(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_lead_wait_queue_customer_id', 'lead_wait_queue', ['customer_id'])
    op.create_index('ix_lead_wait_queue_inquiry_id', 'lead_wait_queue', ['inquiry_id'])
    op.create_index('ix_lead_wait_queue_status', 'lead_wait_queue', ['status'])
    op.create_index('ix_lead_wait_queue_created_at', 'lead_wait_queue', ['created_at'])

    op.create_table(
        'follow_up_tasks',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('assignment_id', UUID(as_uuid=True), sa.ForeignKey('lead_assignments.id'), nullable=False),
        sa.Column('sales_rep_id', UUID(as_uuid=True), sa.ForeignKey('sales_representatives.id'), nullable=False),
        sa.Column('type', follow_up_type, nullable=False),
        sa.Column('status', follow_up_status, nullable=False, server_default='PENDING'),
        sa.Column('description', sa.String(500), nullable=True),
        sa.Column('due_at', sa.DateTime(), nullable=False),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_follow_up_tasks_assignment_id', 'follow_up_tasks', ['assignment_id'])
    op.create_index('ix_follow_up_tasks_sales_rep_id', 'follow_up_tasks', ['sales_rep_id'])
    op.create_index('ix_follow_up_tasks_status', 'follow_up_tasks', ['status'])

    op.create_table(
        'segments',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        'segment_memberships',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('segment_id', UUID(as_uuid=True), sa.ForeignKey('segments.id'), nullable=False),
        sa.Column('customer_id', UUID(as_uuid=True), sa.ForeignKey('customers.id'), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('segment_id', 'customer_id', name='uq_segment_member'),
    )
    op.create_index('ix_segment_memberships_segment_id', 'segment_memberships', ['segment_id'])
    op.create_index('ix_segment_memberships_customer_id', 'segment_memberships', ['customer_id'])

    op.create_table(
        'email_campaigns',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('subject', sa.String(500), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('html_content', sa.Text(), nullable=True),
        sa.Column('segment_id', UUID(as_uuid=True), sa.ForeignKey('segments.id'), nullable=True),
        sa.Column('custom_audience', JSONB(), nullable=True),
        sa.Column('status', campaign_status, nullable=False, server_default='SCHEDULED'),
        sa.Column('scheduled_at', sa.DateTime(), nullable=True),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('sent', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('delivered', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('bounced', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_email_campaigns_status', 'email_campaigns', ['status'])

    op.create_table(
        'sms_campaigns',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('media_urls', JSONB(), nullable=True),
        sa.Column('sender_name', sa.String(11), nullable=True),
        sa.Column('segment_id', UUID(as_uuid=True), sa.ForeignKey('segments.id'), nullable=True),
        sa.Column('custom_audience', JSONB(), nullable=True),
        sa.Column('status', campaign_status, nullable=False, server_default='SCHEDULED'),
        sa.Column('scheduled_at', sa.DateTime(), nullable=True),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('sent', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('delivered', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('failed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_sms_campaigns_status', 'sms_campaigns', ['status'])

    for table, campaign_table, recipient_length, extra in (
        ('email_logs', 'email_campaigns', 255, [sa.Column('subject', sa.String(500), nullable=True)]),
        ('sms_logs', 'sms_campaigns', 50, [
            sa.Column('cost', sa.Numeric(10, 4), nullable=True),
            sa.Column('segments', sa.Integer(), nullable=True),
        ]),
    ):
        op.create_table(
            table,
            sa.Column('id', UUID(as_uuid=True), primary_key=True),
            sa.Column('campaign_id', UUID(as_uuid=True), sa.ForeignKey(f'{campaign_table}.id'), nullable=True),
            sa.Column('customer_id', UUID(as_uuid=True), sa.ForeignKey('customers.id'), nullable=True),
            sa.Column('recipient', sa.String(recipient_length), nullable=False),
            sa.Column('content', sa.Text(), nullable=True),
            sa.Column('status', delivery_status, nullable=False),
            sa.Column('message_id', sa.String(255), nullable=True),
            sa.Column('error_message', sa.Text(), nullable=True),
            sa.Column('skip_reason', sa.String(100), nullable=True),
            sa.Column('dedupe_key', sa.String(64), nullable=True),
            sa.Column('details', JSONB(), nullable=True),
            sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
            *extra,
        )
        for column in ('campaign_id', 'customer_id', 'recipient', 'status', 'message_id', 'dedupe_key', 'created_at'):
            op.create_index(f'ix_{table}_{column}', table, [column])

    op.create_table(
        'jobs',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('queue', sa.String(50), nullable=False),
        sa.Column('job_type', sa.String(100), nullable=False),
        sa.Column('payload', JSONB(), nullable=False),
        sa.Column('priority', sa.Integer(), nullable=False, server_default='3'),
        sa.Column('run_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_attempts', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('backoff_type', sa.String(20), nullable=False, server_default='exponential'),
        sa.Column('backoff_delay_ms', sa.Integer(), nullable=False, server_default='1000'),
        sa.Column('status', job_status, nullable=False, server_default='WAITING'),
        sa.Column('dedupe_key', sa.String(128), nullable=True, unique=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('result', JSONB(), nullable=True),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('finished_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_jobs_queue', 'jobs', ['queue'])
    op.create_index('ix_jobs_job_type', 'jobs', ['job_type'])
    op.create_index('ix_jobs_run_at', 'jobs', ['run_at'])
    op.create_index('ix_jobs_status', 'jobs', ['status'])
    op.create_index('ix_jobs_created_at', 'jobs', ['created_at'])
    # claim query: ready waiting jobs in priority order
    op.create_index(
        'ix_jobs_claim', 'jobs', ['job_type', 'priority', 'run_at'],
        postgresql_where=sa.text("status = 'WAITING'"),
    )


def downgrade() -> None:
    for table in (
        'jobs', 'sms_logs', 'email_logs', 'sms_campaigns', 'email_campaigns', 'segment_memberships',
        'segments', 'follow_up_tasks', 'lead_wait_queue', 'lead_assignments', 'sales_representatives',
        'lead_scores', 'inquiries', 'customer_touchpoints', 'purchases', 'vehicles', 'customers',
    ):
        op.drop_table(table)
    for enum_type in (
        job_status, delivery_status, campaign_status, follow_up_status, follow_up_type, wait_queue_status,
        urgency, assignment_priority, assignment_status, qualification_level, inquiry_status, inquiry_type,
        vehicle_status, fuel_type, touchpoint_type,
    ):
        enum_type.drop(op.get_bind(), checkfirst=True)
