"""create_access_control_tables

Revision ID: 0001_access_control
Revises:
Create Date: 2026-10-19 00:00:00.000000

Esquema inicial: cadenas y sedes, usuarios y roles, concesiones de acceso,
planes y suscripciones, eventos de facturación procesados, límites de
capacidad por sede y por plan, tokens QR y check-ins.
"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '0001_access_control'
down_revision = None
branch_labels = None
depends_on = None

user_role = sa.Enum('member', 'staff', 'owner', name='userrole')
member_status = sa.Enum('active', 'inactive', name='memberstatus')
staff_role = sa.Enum('FRONT_DESK', 'TRAINER', 'MANAGER', 'ADMIN', name='staffrole')
organization_role_type = sa.Enum('CORPORATE_ADMIN', 'REGIONAL_MANAGER', name='organizationroletype')
access_type = sa.Enum('HOME', 'SECONDARY', 'ALL_ACCESS', name='accesstype')
grant_status = sa.Enum('ACTIVE', 'SUSPENDED', 'EXPIRED', name='grantstatus')
access_scope = sa.Enum('SINGLE_GYM', 'MULTI_GYM', 'ALL_ACCESS', name='accessscope')
billing_interval = sa.Enum('month', 'year', name='billinginterval')
subscription_status = sa.Enum(
    'active', 'trialing', 'past_due', 'canceled', 'unpaid', 'incomplete', name='subscriptionstatus'
)
delinquency_state = sa.Enum('current', 'grace', 'restricted', 'recovered', name='delinquencystate')
checkin_source = sa.Enum('qr', 'manual', name='checkinsource')
access_decision = sa.Enum(
    'ALLOWED_HOME', 'ALLOWED_SECONDARY', 'ALLOWED_ALL_ACCESS', 'ALLOWED_OVERRIDE', name='accessdecision'
)


def upgrade():
    # Cadenas y sedes
    op.create_table('chains',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_chains_id'), 'chains', ['id'], unique=False)

    op.create_table('gyms',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('chain_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('code', sa.String(length=50), nullable=True),
        sa.Column('address', sa.String(length=255), nullable=True),
        sa.Column('timezone', sa.String(length=50), nullable=False, server_default='UTC'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['chain_id'], ['chains.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('code')
    )
    op.create_index(op.f('ix_gyms_id'), 'gyms', ['id'], unique=False)
    op.create_index(op.f('ix_gyms_chain_id'), 'gyms', ['chain_id'], unique=False)
    op.create_index(op.f('ix_gyms_is_active'), 'gyms', ['is_active'], unique=False)

    # Usuarios, miembros y roles
    op.create_table('users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('auth_id', sa.String(length=255), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('full_name', sa.String(length=255), nullable=True),
        sa.Column('role', user_role, nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_users_id'), 'users', ['id'], unique=False)
    op.create_index(op.f('ix_users_auth_id'), 'users', ['auth_id'], unique=True)
    op.create_index(op.f('ix_users_email'), 'users', ['email'], unique=False)

    op.create_table('members',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('home_gym_id', sa.Integer(), nullable=True),
        sa.Column('status', member_status, nullable=False),
        sa.Column('stripe_customer_id', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['home_gym_id'], ['gyms.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id')
    )
    op.create_index(op.f('ix_members_id'), 'members', ['id'], unique=False)
    op.create_index(op.f('ix_members_home_gym_id'), 'members', ['home_gym_id'], unique=False)
    op.create_index(op.f('ix_members_stripe_customer_id'), 'members', ['stripe_customer_id'], unique=False)

    op.create_table('staff_assignments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('gym_id', sa.Integer(), nullable=False),
        sa.Column('role', staff_role, nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['gym_id'], ['gyms.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'gym_id', name='uq_staff_assignment_user_gym')
    )
    op.create_index(op.f('ix_staff_assignments_id'), 'staff_assignments', ['id'], unique=False)
    op.create_index(op.f('ix_staff_assignments_user_id'), 'staff_assignments', ['user_id'], unique=False)
    op.create_index(op.f('ix_staff_assignments_gym_id'), 'staff_assignments', ['gym_id'], unique=False)

    op.create_table('organization_roles',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('chain_id', sa.Integer(), nullable=False),
        sa.Column('role', organization_role_type, nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['chain_id'], ['chains.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'chain_id', 'role', name='uq_organization_role')
    )
    op.create_index(op.f('ix_organization_roles_id'), 'organization_roles', ['id'], unique=False)
    op.create_index(op.f('ix_organization_roles_user_id'), 'organization_roles', ['user_id'], unique=False)
    op.create_index(op.f('ix_organization_roles_chain_id'), 'organization_roles', ['chain_id'], unique=False)

    # Concesiones de acceso e historial
    op.create_table('member_gym_access',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('member_id', sa.Integer(), nullable=False),
        sa.Column('gym_id', sa.Integer(), nullable=False),
        sa.Column('access_type', access_type, nullable=False),
        sa.Column('status', grant_status, nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['member_id'], ['members.id'], ),
        sa.ForeignKeyConstraint(['gym_id'], ['gyms.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('member_id', 'gym_id', name='uq_member_gym_access')
    )
    op.create_index(op.f('ix_member_gym_access_id'), 'member_gym_access', ['id'], unique=False)
    op.create_index(op.f('ix_member_gym_access_member_id'), 'member_gym_access', ['member_id'], unique=False)
    op.create_index(op.f('ix_member_gym_access_gym_id'), 'member_gym_access', ['gym_id'], unique=False)
    op.create_index(op.f('ix_member_gym_access_status'), 'member_gym_access', ['status'], unique=False)
    op.create_index(
        'uq_member_gym_access_home', 'member_gym_access', ['member_id'], unique=True,
        postgresql_where=sa.text("access_type = 'HOME'"),
        sqlite_where=sa.text("access_type = 'HOME'"),
    )

    op.create_table('member_gym_access_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('member_id', sa.Integer(), nullable=True),
        sa.Column('gym_id', sa.Integer(), nullable=True),
        sa.Column('actor_user_id', sa.Integer(), nullable=True),
        sa.Column('event_type', sa.String(length=50), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['member_id'], ['members.id'], ),
        sa.ForeignKeyConstraint(['gym_id'], ['gyms.id'], ),
        sa.ForeignKeyConstraint(['actor_user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_member_gym_access_events_id'), 'member_gym_access_events', ['id'], unique=False)
    op.create_index(op.f('ix_member_gym_access_events_member_id'), 'member_gym_access_events', ['member_id'], unique=False)
    op.create_index(op.f('ix_member_gym_access_events_gym_id'), 'member_gym_access_events', ['gym_id'], unique=False)
    op.create_index(op.f('ix_member_gym_access_events_event_type'), 'member_gym_access_events', ['event_type'], unique=False)

    # Planes y suscripciones
    op.create_table('membership_plans',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('chain_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('price_cents', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('billing_interval', billing_interval, nullable=False),
        sa.Column('access_scope', access_scope, nullable=False),
        sa.Column('stripe_price_id', sa.String(length=255), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['chain_id'], ['chains.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_membership_plans_id'), 'membership_plans', ['id'], unique=False)
    op.create_index(op.f('ix_membership_plans_chain_id'), 'membership_plans', ['chain_id'], unique=False)

    op.create_table('subscriptions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('member_id', sa.Integer(), nullable=False),
        sa.Column('plan_id', sa.Integer(), nullable=True),
        sa.Column('gym_id', sa.Integer(), nullable=True),
        sa.Column('status', subscription_status, nullable=False),
        sa.Column('delinquency_state', delinquency_state, nullable=False),
        sa.Column('grace_period_until', sa.DateTime(timezone=True), nullable=True),
        sa.Column('stripe_subscription_id', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['member_id'], ['members.id'], ),
        sa.ForeignKeyConstraint(['plan_id'], ['membership_plans.id'], ),
        sa.ForeignKeyConstraint(['gym_id'], ['gyms.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_subscriptions_id'), 'subscriptions', ['id'], unique=False)
    op.create_index(op.f('ix_subscriptions_member_id'), 'subscriptions', ['member_id'], unique=False)
    op.create_index(op.f('ix_subscriptions_gym_id'), 'subscriptions', ['gym_id'], unique=False)
    op.create_index(op.f('ix_subscriptions_stripe_subscription_id'), 'subscriptions', ['stripe_subscription_id'], unique=True)
    op.create_index('ix_subscriptions_member_created', 'subscriptions', ['member_id', 'created_at'], unique=False)

    op.create_table('processed_billing_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('event_id', sa.String(length=255), nullable=False),
        sa.Column('event_type', sa.String(length=100), nullable=True),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('event_id')
    )
    op.create_index(op.f('ix_processed_billing_events_id'), 'processed_billing_events', ['id'], unique=False)

    # Capacidad
    op.create_table('gym_capacity_limits',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('gym_id', sa.Integer(), nullable=False),
        sa.Column('max_active_members', sa.Integer(), nullable=True),
        sa.Column('soft_limit_threshold', sa.Float(), nullable=True),
        sa.Column('hard_limit_enforced', sa.Boolean(), nullable=False),
        sa.Column('updated_by_user_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['gym_id'], ['gyms.id'], ),
        sa.ForeignKeyConstraint(['updated_by_user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('gym_id')
    )
    op.create_index(op.f('ix_gym_capacity_limits_id'), 'gym_capacity_limits', ['id'], unique=False)

    op.create_table('plan_location_capacity_limits',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('plan_id', sa.Integer(), nullable=False),
        sa.Column('gym_id', sa.Integer(), nullable=False),
        sa.Column('max_active_members', sa.Integer(), nullable=True),
        sa.Column('updated_by_user_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['plan_id'], ['membership_plans.id'], ),
        sa.ForeignKeyConstraint(['gym_id'], ['gyms.id'], ),
        sa.ForeignKeyConstraint(['updated_by_user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('plan_id', 'gym_id', name='uq_plan_location_capacity')
    )
    op.create_index(op.f('ix_plan_location_capacity_limits_id'), 'plan_location_capacity_limits', ['id'], unique=False)
    op.create_index(op.f('ix_plan_location_capacity_limits_plan_id'), 'plan_location_capacity_limits', ['plan_id'], unique=False)
    op.create_index(op.f('ix_plan_location_capacity_limits_gym_id'), 'plan_location_capacity_limits', ['gym_id'], unique=False)

    # Tokens QR y check-ins
    op.create_table('checkin_tokens',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('token_hash', sa.String(length=64), nullable=False),
        sa.Column('member_id', sa.Integer(), nullable=False),
        sa.Column('issued_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('consumed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['member_id'], ['members.id'], ),
        sa.ForeignKeyConstraint(['created_by_user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_checkin_tokens_id'), 'checkin_tokens', ['id'], unique=False)
    op.create_index(op.f('ix_checkin_tokens_token_hash'), 'checkin_tokens', ['token_hash'], unique=True)
    op.create_index(op.f('ix_checkin_tokens_member_id'), 'checkin_tokens', ['member_id'], unique=False)
    op.create_index(op.f('ix_checkin_tokens_expires_at'), 'checkin_tokens', ['expires_at'], unique=False)
    op.create_index(
        'uq_checkin_tokens_member_unconsumed', 'checkin_tokens', ['member_id'], unique=True,
        postgresql_where=sa.text("consumed_at IS NULL"),
        sqlite_where=sa.text("consumed_at IS NULL"),
    )

    op.create_table('checkins',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('member_id', sa.Integer(), nullable=False),
        sa.Column('gym_id', sa.Integer(), nullable=False),
        sa.Column('checked_in_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('source', checkin_source, nullable=False),
        sa.Column('staff_user_id', sa.Integer(), nullable=True),
        sa.Column('token_id', sa.Integer(), nullable=True),
        sa.Column('access_decision', access_decision, nullable=False),
        sa.Column('decision_reason', sa.String(length=255), nullable=True),
        sa.ForeignKeyConstraint(['member_id'], ['members.id'], ),
        sa.ForeignKeyConstraint(['gym_id'], ['gyms.id'], ),
        sa.ForeignKeyConstraint(['staff_user_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['token_id'], ['checkin_tokens.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_checkins_id'), 'checkins', ['id'], unique=False)
    op.create_index(op.f('ix_checkins_member_id'), 'checkins', ['member_id'], unique=False)
    op.create_index(op.f('ix_checkins_gym_id'), 'checkins', ['gym_id'], unique=False)
    op.create_index(op.f('ix_checkins_checked_in_at'), 'checkins', ['checked_in_at'], unique=False)
    op.create_index('ix_checkins_gym_checked_in', 'checkins', ['gym_id', 'checked_in_at'], unique=False)


def downgrade():
    op.drop_table('checkins')
    op.drop_index('uq_checkin_tokens_member_unconsumed', table_name='checkin_tokens')
    op.drop_table('checkin_tokens')
    op.drop_table('plan_location_capacity_limits')
    op.drop_table('gym_capacity_limits')
    op.drop_table('processed_billing_events')
    op.drop_table('subscriptions')
    op.drop_table('membership_plans')
    op.drop_table('member_gym_access_events')
    op.drop_index('uq_member_gym_access_home', table_name='member_gym_access')
    op.drop_table('member_gym_access')
    op.drop_table('organization_roles')
    op.drop_table('staff_assignments')
    op.drop_table('members')
    op.drop_table('users')
    op.drop_table('gyms')
    op.drop_table('chains')

    bind = op.get_bind()
    for enum_type in (
        access_decision, checkin_source, delinquency_state, subscription_status, billing_interval,
        access_scope, grant_status, access_type, organization_role_type, staff_role,
        member_status, user_role,
    ):
        enum_type.drop(bind, checkfirst=True)
