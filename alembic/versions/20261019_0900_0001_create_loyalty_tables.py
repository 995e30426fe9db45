"""Create loyalty ledger, account and achievement tables

Revision ID: 0001_create_loyalty_tables
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '0001_create_loyalty_tables'
down_revision = None
branch_labels = None
depends_on = None

ledger_entry_type = sa.Enum(
    'EARNED', 'REDEEMED', 'BONUS', 'EXPIRED', 'ADJUSTMENT',
    name='ledgerentrytype'
)


def upgrade():
    # Create loyalty_accounts table
    op.create_table(
        'loyalty_accounts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('points_balance', sa.Integer(), nullable=False),
        sa.Column('lifetime_spent', sa.Numeric(precision=14, scale=2), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('points_balance >= 0', name='check_points_balance_non_negative'),
        sa.CheckConstraint('lifetime_spent >= 0', name='check_lifetime_spent_non_negative'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_loyalty_accounts_id'), 'loyalty_accounts', ['id'], unique=False)
    op.create_index(op.f('ix_loyalty_accounts_user_id'), 'loyalty_accounts', ['user_id'], unique=True)

    # Create loyalty_ledger_entries table
    op.create_table(
        'loyalty_ledger_entries',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('entry_type', ledger_entry_type, nullable=False),
        sa.Column('points', sa.Integer(), nullable=False),
        sa.Column('balance_after', sa.Integer(), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('reference_id', sa.String(length=100), nullable=True),
        sa.Column('reference_type', sa.String(length=50), nullable=True),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        sa.Column('flagged_for_review', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('points <> 0', name='check_ledger_points_non_zero'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_loyalty_ledger_entries_id'), 'loyalty_ledger_entries', ['id'], unique=False)
    op.create_index(op.f('ix_loyalty_ledger_entries_user_id'), 'loyalty_ledger_entries', ['user_id'], unique=False)
    op.create_index(op.f('ix_loyalty_ledger_entries_entry_type'), 'loyalty_ledger_entries', ['entry_type'], unique=False)
    op.create_index(op.f('ix_loyalty_ledger_entries_expires_at'), 'loyalty_ledger_entries', ['expires_at'], unique=False)
    op.create_index('idx_ledger_user_created', 'loyalty_ledger_entries', ['user_id', 'created_at'], unique=False)
    op.create_index('idx_ledger_type_expires', 'loyalty_ledger_entries', ['entry_type', 'expires_at'], unique=False)
    op.create_index('idx_ledger_reference', 'loyalty_ledger_entries', ['reference_type', 'reference_id'], unique=False)

    # Create loyalty_expiration_offsets table
    op.create_table(
        'loyalty_expiration_offsets',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('source_entry_id', sa.Integer(), nullable=False),
        sa.Column('expired_entry_id', sa.Integer(), nullable=True),
        sa.Column('expired_points', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['source_entry_id'], ['loyalty_ledger_entries.id']),
        sa.ForeignKeyConstraint(['expired_entry_id'], ['loyalty_ledger_entries.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('source_entry_id')
    )
    op.create_index(op.f('ix_loyalty_expiration_offsets_id'), 'loyalty_expiration_offsets', ['id'], unique=False)
    op.create_index(op.f('ix_loyalty_expiration_offsets_user_id'), 'loyalty_expiration_offsets', ['user_id'], unique=False)
    op.create_index(op.f('ix_loyalty_expiration_offsets_expired_entry_id'), 'loyalty_expiration_offsets', ['expired_entry_id'], unique=False)

    # Create loyalty_unlocked_achievements table
    op.create_table(
        'loyalty_unlocked_achievements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('achievement_id', sa.String(length=64), nullable=False),
        sa.Column('unlocked_at', sa.DateTime(), nullable=False),
        sa.Column('reward_points', sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'achievement_id', name='uq_user_achievement')
    )
    op.create_index(op.f('ix_loyalty_unlocked_achievements_id'), 'loyalty_unlocked_achievements', ['id'], unique=False)
    op.create_index(op.f('ix_loyalty_unlocked_achievements_user_id'), 'loyalty_unlocked_achievements', ['user_id'], unique=False)


def downgrade():
    op.drop_index(op.f('ix_loyalty_unlocked_achievements_user_id'), table_name='loyalty_unlocked_achievements')
    op.drop_index(op.f('ix_loyalty_unlocked_achievements_id'), table_name='loyalty_unlocked_achievements')
    op.drop_table('loyalty_unlocked_achievements')

    op.drop_index(op.f('ix_loyalty_expiration_offsets_expired_entry_id'), table_name='loyalty_expiration_offsets')
    op.drop_index(op.f('ix_loyalty_expiration_offsets_user_id'), table_name='loyalty_expiration_offsets')
    op.drop_index(op.f('ix_loyalty_expiration_offsets_id'), table_name='loyalty_expiration_offsets')
    op.drop_table('loyalty_expiration_offsets')

    op.drop_index('idx_ledger_reference', table_name='loyalty_ledger_entries')
    op.drop_index('idx_ledger_type_expires', table_name='loyalty_ledger_entries')
    op.drop_index('idx_ledger_user_created', table_name='loyalty_ledger_entries')
    op.drop_index(op.f('ix_loyalty_ledger_entries_expires_at'), table_name='loyalty_ledger_entries')
    op.drop_index(op.f('ix_loyalty_ledger_entries_entry_type'), table_name='loyalty_ledger_entries')
    op.drop_index(op.f('ix_loyalty_ledger_entries_user_id'), table_name='loyalty_ledger_entries')
    op.drop_index(op.f('ix_loyalty_ledger_entries_id'), table_name='loyalty_ledger_entries')
    op.drop_table('loyalty_ledger_entries')
    ledger_entry_type.drop(op.get_bind(), checkfirst=True)

    op.drop_index(op.f('ix_loyalty_accounts_user_id'), table_name='loyalty_accounts')
    op.drop_index(op.f('ix_loyalty_accounts_id'), table_name='loyalty_accounts')
    op.drop_table('loyalty_accounts')
