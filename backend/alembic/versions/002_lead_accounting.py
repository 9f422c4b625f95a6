"""Lead dispositions, credits, status history and contractor contacts

Revision ID: 002_lead_accounting
Revises: 001_initial_marketplace
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa

revision = '002_lead_accounting'
down_revision = '001_initial_marketplace'
branch_labels = None
depends_on = None


NEW_LEAD_STATUSES = ('EXPIRED', 'SCRUBBED', 'DUPLICATE')

lead_status = sa.Enum(
    'PENDING', 'PROCESSING', 'SOLD', 'REJECTED', 'DELIVERY_FAILED', *NEW_LEAD_STATUSES,
    name='leadstatus', create_type=False,
)
lead_disposition = sa.Enum(
    'NEW', 'DELIVERED', 'RETURNED', 'DISPUTED', 'CREDITED', 'WRITTEN_OFF', name='leaddisposition',
)
change_source = sa.Enum('ADMIN', 'SYSTEM', 'WEBHOOK', name='changesource')


def upgrade():
    bind = op.get_bind()
    if bind.dialect.name == 'postgresql':
        # ADD VALUE cannot run inside the migration transaction on older servers
        with op.get_context().autocommit_block():
            for value in NEW_LEAD_STATUSES:
                op.execute(f"ALTER TYPE leadstatus ADD VALUE IF NOT EXISTS '{value}'")

    lead_disposition.create(bind, checkfirst=True)
    change_source.create(bind, checkfirst=True)

    op.add_column('leads', sa.Column('disposition', lead_disposition, nullable=False, server_default='NEW'))
    op.add_column('leads', sa.Column('credit_amount', sa.Numeric(10, 2), nullable=True))
    op.add_column('leads', sa.Column('credit_issued_at', sa.DateTime(timezone=True), nullable=True))
    op.add_column('leads', sa.Column('credit_issued_by_id', sa.Integer(), sa.ForeignKey('admin_users.id'), nullable=True))

    op.add_column('buyers', sa.Column('additional_contacts', sa.JSON(), nullable=True))

    op.create_table(
        'lead_status_history',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('lead_id', sa.Integer(), sa.ForeignKey('leads.id'), nullable=False),
        sa.Column('admin_user_id', sa.Integer(), sa.ForeignKey('admin_users.id'), nullable=True),
        sa.Column('old_status', lead_status, nullable=True),
        sa.Column('new_status', lead_status, nullable=False),
        sa.Column('old_disposition', lead_disposition, nullable=True),
        sa.Column('new_disposition', lead_disposition, nullable=True),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('credit_amount', sa.Numeric(10, 2), nullable=True),
        sa.Column('change_source', change_source, nullable=False, server_default='SYSTEM'),
        sa.Column('ip_address', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_lead_status_history_lead_id', 'lead_status_history', ['lead_id'])
    op.create_index('ix_lead_status_history_created_at', 'lead_status_history', ['created_at'])


def downgrade():
    op.drop_index('ix_lead_status_history_created_at', table_name='lead_status_history')
    op.drop_index('ix_lead_status_history_lead_id', table_name='lead_status_history')
    op.drop_table('lead_status_history')

    op.drop_column('buyers', 'additional_contacts')

    op.drop_column('leads', 'credit_issued_by_id')
    op.drop_column('leads', 'credit_issued_at')
    op.drop_column('leads', 'credit_amount')
    op.drop_column('leads', 'disposition')

    bind = op.get_bind()
    change_source.drop(bind, checkfirst=True)
    lead_disposition.drop(bind, checkfirst=True)
    # Postgres cannot drop enum values; the extra leadstatus values stay
