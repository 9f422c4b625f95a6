"""Create lead marketplace tables

Revision ID: 001_initial_marketplace
Revises: None
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa

revision = '001_initial_marketplace'
down_revision = None
branch_labels = None
depends_on = None


buyer_type = sa.Enum('CONTRACTOR', 'NETWORK', name='buyertype')
lead_status = sa.Enum('PENDING', 'PROCESSING', 'SOLD', 'REJECTED', 'DELIVERY_FAILED', name='leadstatus')
transaction_action = sa.Enum('PING', 'POST', name='transactionaction')
transaction_status = sa.Enum('PENDING', 'SUCCESS', 'FAILED', 'TIMEOUT', name='transactionstatus')
lost_reason = sa.Enum('OUTBID', 'TIMEOUT', 'NO_BID', 'BELOW_MINIMUM', 'POST_REJECTED', name='lostreason')


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade():
    op.create_table(
        'admin_users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('full_name', sa.String(), nullable=True),
        sa.Column('hashed_password', sa.String(), nullable=False),
        sa.Column('role', sa.String(), nullable=False, server_default='admin'),
        sa.Column('is_active', sa.Boolean(), server_default=sa.true()),
        sa.Column('last_login_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_admin_users_email', 'admin_users', ['email'], unique=True)

    op.create_table(
        'service_types',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('display_name', sa.String(), nullable=False),
        sa.Column('form_schema', sa.JSON(), nullable=True),
        sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index('ix_service_types_name', 'service_types', ['name'], unique=True)

    op.create_table(
        'buyers',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('type', buyer_type, nullable=False, server_default='CONTRACTOR'),
        sa.Column('api_url', sa.String(), nullable=True),
        sa.Column('auth_config', sa.JSON(), nullable=True),
        sa.Column('ping_timeout', sa.Integer(), server_default='30'),
        sa.Column('post_timeout', sa.Integer(), server_default='60'),
        sa.Column('webhook_secret', sa.String(), nullable=True),
        sa.Column('compliance_config', sa.JSON(), nullable=True),
        sa.Column('response_mapping', sa.JSON(), nullable=True),
        sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('contact_name', sa.String(), nullable=True),
        sa.Column('contact_email', sa.String(), nullable=True),
        sa.Column('contact_phone', sa.String(), nullable=True),
        sa.Column('business_email', sa.String(), nullable=True),
        sa.Column('business_phone', sa.String(), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_buyers_name', 'buyers', ['name'], unique=True)

    op.create_table(
        'buyer_service_configs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('buyer_id', sa.Integer(), sa.ForeignKey('buyers.id'), nullable=False),
        sa.Column('service_type_id', sa.Integer(), sa.ForeignKey('service_types.id'), nullable=False),
        sa.Column('ping_template', sa.JSON(), nullable=True),
        sa.Column('post_template', sa.JSON(), nullable=True),
        sa.Column('field_mappings', sa.JSON(), nullable=True),
        sa.Column('requires_trustedform', sa.Boolean(), server_default=sa.false()),
        sa.Column('requires_jornaya', sa.Boolean(), server_default=sa.false()),
        sa.Column('min_bid', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('max_bid', sa.Numeric(10, 2), nullable=False, server_default='999.99'),
        sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.UniqueConstraint('buyer_id', 'service_type_id', name='uq_buyer_service_config'),
    )
    op.create_index('ix_buyer_service_configs_buyer_id', 'buyer_service_configs', ['buyer_id'])
    op.create_index('ix_buyer_service_configs_service_type_id', 'buyer_service_configs', ['service_type_id'])

    op.create_table(
        'buyer_service_zip_codes',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('buyer_id', sa.Integer(), sa.ForeignKey('buyers.id'), nullable=False),
        sa.Column('service_type_id', sa.Integer(), sa.ForeignKey('service_types.id'), nullable=False),
        sa.Column('zip_code', sa.String(10), nullable=False),
        sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('priority', sa.Integer(), nullable=False, server_default='100'),
        sa.Column('max_leads_per_day', sa.Integer(), nullable=True),
        sa.Column('min_bid', sa.Numeric(10, 2), nullable=True),
        sa.Column('max_bid', sa.Numeric(10, 2), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('buyer_id', 'service_type_id', 'zip_code', name='uq_buyer_service_zip'),
    )
    op.create_index('ix_buyer_service_zip_codes_buyer_id', 'buyer_service_zip_codes', ['buyer_id'])
    op.create_index('ix_buyer_service_zip_codes_service_type_id', 'buyer_service_zip_codes', ['service_type_id'])
    op.create_index('ix_buyer_service_zip_codes_zip_code', 'buyer_service_zip_codes', ['zip_code'])

    op.create_table(
        'zip_code_metadata',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('zip_code', sa.String(10), nullable=False),
        sa.Column('city', sa.String(), nullable=False),
        sa.Column('state', sa.String(2), nullable=False),
        sa.Column('county', sa.String(), nullable=True),
        sa.Column('latitude', sa.Float(), nullable=True),
        sa.Column('longitude', sa.Float(), nullable=True),
        sa.Column('timezone', sa.String(), nullable=True),
        sa.Column('active', sa.Boolean(), server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_zip_code_metadata_zip_code', 'zip_code_metadata', ['zip_code'], unique=True)
    op.create_index('ix_zip_code_metadata_city', 'zip_code_metadata', ['city'])
    op.create_index('ix_zip_code_metadata_state', 'zip_code_metadata', ['state'])

    op.create_table(
        'leads',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('service_type_id', sa.Integer(), sa.ForeignKey('service_types.id'), nullable=False),
        sa.Column('form_data', sa.JSON(), nullable=False),
        sa.Column('zip_code', sa.String(10), nullable=False),
        sa.Column('owns_home', sa.Boolean(), nullable=False),
        sa.Column('timeframe', sa.String(), nullable=False),
        sa.Column('status', lead_status, nullable=False, server_default='PENDING'),
        sa.Column('winning_buyer_id', sa.Integer(), sa.ForeignKey('buyers.id'), nullable=True),
        sa.Column('winning_bid', sa.Numeric(10, 2), nullable=True),
        sa.Column('trusted_form_cert_url', sa.String(), nullable=True),
        sa.Column('trusted_form_cert_id', sa.String(), nullable=True),
        sa.Column('jornaya_lead_id', sa.String(), nullable=True),
        sa.Column('compliance_data', sa.JSON(), nullable=True),
        sa.Column('lead_quality_score', sa.Integer(), nullable=True),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_leads_service_type_id', 'leads', ['service_type_id'])
    op.create_index('ix_leads_zip_code', 'leads', ['zip_code'])
    op.create_index('ix_leads_status', 'leads', ['status'])

    op.create_table(
        'transactions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('lead_id', sa.Integer(), sa.ForeignKey('leads.id'), nullable=False),
        sa.Column('buyer_id', sa.Integer(), sa.ForeignKey('buyers.id'), nullable=False),
        sa.Column('action_type', transaction_action, nullable=False),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.Column('response', sa.JSON(), nullable=True),
        sa.Column('status', transaction_status, nullable=False, server_default='PENDING'),
        sa.Column('bid_amount', sa.Numeric(10, 2), nullable=True),
        sa.Column('response_time', sa.Integer(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('compliance_included', sa.Boolean(), server_default=sa.false()),
        sa.Column('trusted_form_present', sa.Boolean(), server_default=sa.false()),
        sa.Column('jornaya_present', sa.Boolean(), server_default=sa.false()),
        sa.Column('is_winner', sa.Boolean(), server_default=sa.false()),
        sa.Column('lost_reason', lost_reason, nullable=True),
        sa.Column('winning_bid_amount', sa.Numeric(10, 2), nullable=True),
        sa.Column('cascade_position', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_transactions_lead_id', 'transactions', ['lead_id'])
    op.create_index('ix_transactions_buyer_id', 'transactions', ['buyer_id'])
    op.create_index('ix_transactions_created_at', 'transactions', ['created_at'])

    op.create_table(
        'compliance_audit_log',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('lead_id', sa.Integer(), sa.ForeignKey('leads.id'), nullable=False),
        sa.Column('event_type', sa.String(), nullable=False),
        sa.Column('event_data', sa.JSON(), nullable=True),
        sa.Column('ip_address', sa.String(), nullable=True),
        sa.Column('user_agent', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_compliance_audit_log_lead_id', 'compliance_audit_log', ['lead_id'])


def downgrade():
    for table in (
        'compliance_audit_log', 'transactions', 'leads', 'zip_code_metadata',
        'buyer_service_zip_codes', 'buyer_service_configs', 'buyers', 'service_types', 'admin_users',
    ):
        op.drop_table(table)
    for enum in (lost_reason, transaction_status, transaction_action, lead_status, buyer_type):
        enum.drop(op.get_bind(), checkfirst=True)
