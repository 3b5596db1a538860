"""create_booking_engine_tables

Revision ID: a0b1c2d3e4f5
Revises:
Create Date: 2026-10-19

Creates tenant, calendar and booking tables. The appointments table carries
an exclusion constraint so two active appointments of the same professional
can never overlap, even under concurrent writers.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = 'a0b1c2d3e4f5'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # btree_gist lets the exclusion constraint mix "=" on UUIDs with range overlap
    op.execute("CREATE EXTENSION IF NOT EXISTS btree_gist")

    op.execute("CREATE TYPE appointment_status AS ENUM "
               "('pending_payment', 'confirmed', 'cancelled', 'completed', 'no_show')")
    op.execute("CREATE TYPE payment_method AS ENUM ('local', 'online')")

    # Tenants
    op.create_table('businesses',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('slug', sa.String(length=100), nullable=False),
        sa.Column('timezone', sa.String(length=64), nullable=False),
        sa.Column('slot_granularity_minutes', sa.Integer(), nullable=False, server_default='30'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint('slot_granularity_minutes > 0', name='check_granularity_positive'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('slug'),
    )

    op.create_table('branches',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('business_id', sa.UUID(), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('slug', sa.String(length=100), nullable=False),
        sa.Column('timezone', sa.String(length=64), nullable=False),
        sa.Column('is_main', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_branches_business_id', 'branches', ['business_id'])
    op.create_index('uq_branches_business_slug', 'branches', ['business_id', 'slug'], unique=True)
    op.create_index(
        'uq_branches_one_main_per_business', 'branches', ['business_id'], unique=True,
        postgresql_where=sa.text('is_main = true AND is_active = true'),
    )

    op.create_table('professionals',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('business_id', sa.UUID(), nullable=False),
        sa.Column('branch_id', sa.UUID(), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['branch_id'], ['branches.id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_professionals_business_id', 'professionals', ['business_id'])
    op.create_index('ix_professionals_branch_id', 'professionals', ['branch_id'])
    op.create_index(
        'idx_professionals_branch_active', 'professionals', ['branch_id'],
        postgresql_where=sa.text('is_active = true'),
    )

    op.create_table('services',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('business_id', sa.UUID(), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('duration_minutes', sa.Integer(), nullable=False),
        sa.Column('price', sa.Numeric(precision=10, scale=2), nullable=False, server_default='0'),
        sa.Column('is_global', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.CheckConstraint('duration_minutes > 0', name='check_duration_positive'),
        sa.CheckConstraint('price >= 0', name='check_price_non_negative'),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_services_business_id', 'services', ['business_id'])

    op.create_table('branch_services',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('branch_id', sa.UUID(), nullable=False),
        sa.Column('service_id', sa.UUID(), nullable=False),
        sa.Column('price_override', sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.ForeignKeyConstraint(['branch_id'], ['branches.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['service_id'], ['services.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(
        'uq_branch_services_branch_service', 'branch_services', ['branch_id', 'service_id'], unique=True
    )

    # Calendar
    op.create_table('working_hours',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('professional_id', sa.UUID(), nullable=False),
        sa.Column('day_of_week', sa.Integer(), nullable=False),
        sa.Column('start_time', sa.Time(), nullable=False),
        sa.Column('end_time', sa.Time(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.CheckConstraint('day_of_week >= 0 AND day_of_week <= 6', name='valid_wh_day_of_week'),
        sa.CheckConstraint('end_time > start_time', name='check_wh_end_after_start'),
        sa.ForeignKeyConstraint(['professional_id'], ['professionals.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(
        'uq_working_hours_active_day', 'working_hours', ['professional_id', 'day_of_week'],
        unique=True, postgresql_where=sa.text('is_active = true'),
    )

    op.create_table('break_times',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('branch_id', sa.UUID(), nullable=False),
        sa.Column('day_of_week', sa.Integer(), nullable=False),
        sa.Column('start_time', sa.Time(), nullable=False),
        sa.Column('end_time', sa.Time(), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False, server_default='Descanso'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.CheckConstraint('day_of_week >= 0 AND day_of_week <= 6', name='valid_break_day_of_week'),
        sa.CheckConstraint('end_time > start_time', name='check_break_end_after_start'),
        sa.ForeignKeyConstraint(['branch_id'], ['branches.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_break_times_branch_day', 'break_times', ['branch_id', 'day_of_week'])

    # Bookings
    op.create_table('clients',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('business_id', sa.UUID(), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('phone', sa.String(length=20), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint('email IS NOT NULL OR phone IS NOT NULL', name='check_client_contact'),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_clients_business_email', 'clients', ['business_id', 'email'])
    op.create_index('idx_clients_business_phone', 'clients', ['business_id', 'phone'])

    op.create_table('appointments',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('business_id', sa.UUID(), nullable=False),
        sa.Column('branch_id', sa.UUID(), nullable=False),
        sa.Column('client_id', sa.UUID(), nullable=False),
        sa.Column('service_id', sa.UUID(), nullable=False),
        sa.Column('professional_id', sa.UUID(), nullable=True),
        sa.Column('start_time', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('end_time', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column(
            'status',
            postgresql.ENUM('pending_payment', 'confirmed', 'cancelled', 'completed', 'no_show',
                            name='appointment_status', create_type=False),
            nullable=False,
        ),
        sa.Column(
            'payment_method',
            postgresql.ENUM('local', 'online', name='payment_method', create_type=False),
            nullable=False,
        ),
        sa.Column('price', sa.Numeric(precision=10, scale=2), nullable=False, server_default='0'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('checkout_handle', sa.String(length=255), nullable=True),
        sa.Column('checkout_url', sa.Text(), nullable=True),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        sa.Column('cancelled_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint('end_time > start_time', name='check_appointment_end_after_start'),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['branch_id'], ['branches.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['client_id'], ['clients.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['service_id'], ['services.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['professional_id'], ['professionals.id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_appointments_business_id', 'appointments', ['business_id'])
    op.create_index('ix_appointments_client_id', 'appointments', ['client_id'])
    op.create_index('ix_appointments_status', 'appointments', ['status'])
    op.create_index(
        'idx_appointments_professional_time', 'appointments',
        ['professional_id', 'start_time', 'end_time'],
    )
    op.create_index(
        'idx_appointments_pending_created', 'appointments', ['created_at'],
        postgresql_where=sa.text("status = 'pending_payment'"),
    )

    # No two active appointments of one professional may overlap
    op.execute("""
        ALTER TABLE appointments
        ADD CONSTRAINT excl_appointments_professional_overlap
        EXCLUDE USING gist (
            professional_id WITH =,
            tstzrange(start_time, end_time, '[)') WITH &&
        )
        WHERE (status IN ('pending_payment', 'confirmed'))
    """)


def downgrade() -> None:
    op.drop_table('appointments')
    op.drop_table('clients')
    op.drop_table('break_times')
    op.drop_table('working_hours')
    op.drop_table('branch_services')
    op.drop_table('services')
    op.drop_table('professionals')
    op.drop_table('branches')
    op.drop_table('businesses')
    op.execute("DROP TYPE IF EXISTS payment_method")
    op.execute("DROP TYPE IF EXISTS appointment_status")
