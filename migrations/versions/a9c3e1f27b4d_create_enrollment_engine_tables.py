"""Create enrollment engine tables

Revision ID: a9c3e1f27b4d
Revises:
Create Date: 2026-10-18

Contacts, lists, templates, flows, enrollments, enrollment_events e
engagement_events.
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = 'a9c3e1f27b4d'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'contacts',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('first_name', sa.String(255), nullable=True),
        sa.Column('last_name', sa.String(255), nullable=True),
        sa.Column('company', sa.String(255), nullable=True),
        sa.Column('phone', sa.String(50), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('tags', postgresql.JSONB(), nullable=True),
        sa.Column('attributes', postgresql.JSONB(), nullable=True),
        sa.Column('unsubscribed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    with op.batch_alter_table('contacts', schema=None) as batch_op:
        batch_op.create_index('idx_contacts_created_at', ['created_at'], unique=False)
        batch_op.create_index('idx_contacts_updated_at', ['updated_at'], unique=False)

    op.create_table(
        'contact_lists',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('subscriber_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )

    op.create_table(
        'contact_list_memberships',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('contact_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('list_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['contact_id'], ['contacts.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['list_id'], ['contact_lists.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('contact_id', 'list_id', name='unique_contact_list')
    )

    op.create_table(
        'message_templates',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('subject', sa.Text(), nullable=False, server_default=''),
        sa.Column('html_content', sa.Text(), nullable=True),
        sa.Column('text_content', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )

    op.create_table(
        'flows',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('status', sa.String(50), nullable=False, server_default='DRAFT'),
        sa.Column('encoding', sa.String(20), nullable=False, server_default='graph'),
        sa.Column('definition', postgresql.JSONB(), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('trigger_kind', sa.String(50), nullable=False, server_default='MANUAL'),
        sa.Column('trigger_config', postgresql.JSONB(), nullable=True),
        sa.Column('total_entered', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('currently_active', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_completed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('activated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    with op.batch_alter_table('flows', schema=None) as batch_op:
        batch_op.create_index('idx_flows_status', ['status'], unique=False)

    op.create_table(
        'enrollments',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('flow_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('subject_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('flow_version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('status', sa.String(20), nullable=False, server_default='ACTIVE'),
        sa.Column('current_step_id', sa.String(255), nullable=True),
        sa.Column('wait_until', sa.DateTime(), nullable=True),
        sa.Column('variables', postgresql.JSONB(), nullable=True),
        sa.Column('last_message_sent_at', sa.DateTime(), nullable=True),
        sa.Column('thread_id', sa.String(255), nullable=True),
        sa.Column('last_message_id', sa.String(255), nullable=True),
        sa.Column('thread_subject', sa.Text(), nullable=True),
        sa.Column('thread_message_header', sa.Text(), nullable=True),
        sa.Column('last_action_at', sa.DateTime(), nullable=True),
        sa.Column('step_failures', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('failure_reason', sa.Text(), nullable=True),
        sa.Column('claimed_by', sa.String(100), nullable=True),
        sa.Column('claimed_until', sa.DateTime(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('failed_at', sa.DateTime(), nullable=True),
        sa.Column('paused_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['flow_id'], ['flows.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['subject_id'], ['contacts.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('flow_id', 'subject_id', name='unique_flow_subject')
    )
    with op.batch_alter_table('enrollments', schema=None) as batch_op:
        batch_op.create_index('idx_enrollments_ready', ['status', 'wait_until'], unique=False)
        batch_op.create_index('idx_enrollments_flow_status', ['flow_id', 'status'], unique=False)

    op.create_table(
        'enrollment_events',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('enrollment_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('step_id', sa.String(255), nullable=False),
        sa.Column('event_type', sa.String(20), nullable=False),
        sa.Column('payload', postgresql.JSONB(), nullable=True),
        sa.Column('timestamp', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['enrollment_id'], ['enrollments.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    with op.batch_alter_table('enrollment_events', schema=None) as batch_op:
        batch_op.create_index('idx_enrollment_events_enrollment', ['enrollment_id', 'timestamp'], unique=False)
        batch_op.create_index('idx_enrollment_events_step', ['enrollment_id', 'step_id'], unique=False)

    op.create_table(
        'engagement_events',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('subject_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('enrollment_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('step_id', sa.String(255), nullable=True),
        sa.Column('event_type', sa.String(20), nullable=False),
        sa.Column('message_id', sa.String(255), nullable=True),
        sa.Column('details', postgresql.JSONB(), nullable=True),
        sa.Column('occurred_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['subject_id'], ['contacts.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['enrollment_id'], ['enrollments.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id')
    )
    with op.batch_alter_table('engagement_events', schema=None) as batch_op:
        batch_op.create_index('idx_engagement_enrollment_step', ['enrollment_id', 'step_id', 'event_type'], unique=False)
        batch_op.create_index('idx_engagement_subject', ['subject_id', 'event_type', 'occurred_at'], unique=False)


def downgrade():
    op.drop_table('engagement_events')
    op.drop_table('enrollment_events')
    op.drop_table('enrollments')
    op.drop_table('flows')
    op.drop_table('message_templates')
    op.drop_table('contact_list_memberships')
    op.drop_table('contact_lists')
    op.drop_table('contacts')
