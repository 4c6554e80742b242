"""Initial audit schema: records, movements, encounters, denials, archive mirrors

Revision ID: 20261019_initial
Revises:
Create Date: 2026-10-19

This migration adds:
1. audit_records (AIH under audit, optimistic version_id)
2. record_movements and service_encounters (children of audit_records)
3. record_denials and the denial_types catalog
4. *_archive mirrors of the four record tables (same columns plus archived_at,
   primary keys copied from live rows, no foreign keys)
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261019_initial'
down_revision = None
branch_labels = None
depends_on = None


def _record_columns(autoincrement):
    return [
        sa.Column('id', sa.Integer(), nullable=False, autoincrement=autoincrement),
        sa.Column('external_number', sa.String(length=50), nullable=False),
        sa.Column('initial_value_cents', sa.Integer(), nullable=False),
        sa.Column('current_value_cents', sa.Integer(), nullable=False),
        sa.Column('status', sa.Integer(), nullable=False),
        sa.Column('competence', sa.String(length=7), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
    ]


def _movement_columns(autoincrement):
    return [
        sa.Column('id', sa.Integer(), nullable=False, autoincrement=autoincrement),
        sa.Column('record_id', sa.Integer(), nullable=False),
        sa.Column('movement_type', sa.String(length=16), nullable=False),
        sa.Column('moved_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('actor_user_id', sa.Integer(), nullable=True),
        sa.Column('value_cents', sa.Integer(), nullable=False),
        sa.Column('competence', sa.String(length=7), nullable=False),
        sa.Column('medicine_professional', sa.String(length=255), nullable=True),
        sa.Column('nursing_professional', sa.String(length=255), nullable=True),
        sa.Column('physiotherapy_professional', sa.String(length=255), nullable=True),
        sa.Column('maxillofacial_professional', sa.String(length=255), nullable=True),
        sa.Column('record_status', sa.Integer(), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
    ]


def _denial_columns(autoincrement):
    return [
        sa.Column('id', sa.Integer(), nullable=False, autoincrement=autoincrement),
        sa.Column('record_id', sa.Integer(), nullable=False),
        sa.Column('line', sa.String(length=255), nullable=False),
        sa.Column('denial_type', sa.String(length=255), nullable=False),
        sa.Column('professional', sa.String(length=255), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    ]


def _encounter_columns(autoincrement):
    return [
        sa.Column('id', sa.Integer(), nullable=False, autoincrement=autoincrement),
        sa.Column('record_id', sa.Integer(), nullable=False),
        sa.Column('encounter_number', sa.String(length=50), nullable=False),
    ]


def _archived_at():
    return sa.Column('archived_at', sa.DateTime(timezone=True), nullable=False)


def upgrade():
    # ==========================================================================
    # 1. AUDIT RECORDS
    # ==========================================================================
    op.create_table('audit_records',
        *_record_columns(True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('external_number', name='uq_audit_records_external_number'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('audit_records', schema=None) as batch_op:
        batch_op.create_index('ix_audit_records_status_created', ['status', 'created_at'], unique=False)
        batch_op.create_index('ix_audit_records_competence', ['competence'], unique=False)

    # ==========================================================================
    # 2. MOVEMENTS AND SERVICE ENCOUNTERS
    # ==========================================================================
    op.create_table('record_movements',
        *_movement_columns(True),
        sa.ForeignKeyConstraint(['record_id'], ['audit_records.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('record_movements', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_record_movements_record_id'), ['record_id'], unique=False)
        batch_op.create_index('ix_record_movements_record_moved', ['record_id', 'moved_at'], unique=False)

    op.create_table('service_encounters',
        *_encounter_columns(True),
        sa.ForeignKeyConstraint(['record_id'], ['audit_records.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('service_encounters', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_service_encounters_record_id'), ['record_id'], unique=False)

    # ==========================================================================
    # 3. DENIALS AND DENIAL TYPE CATALOG
    # ==========================================================================
    op.create_table('record_denials',
        *_denial_columns(True),
        sa.ForeignKeyConstraint(['record_id'], ['audit_records.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('record_denials', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_record_denials_record_id'), ['record_id'], unique=False)
        batch_op.create_index('ix_record_denials_record_active', ['record_id', 'is_active'], unique=False)

    op.create_table('denial_types',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('description', sa.String(length=255), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('description', name='uq_denial_types_description'),
        sqlite_autoincrement=True
    )

    # ==========================================================================
    # 4. ARCHIVE MIRRORS (no foreign keys, ids copied from live rows)
    # ==========================================================================
    op.create_table('audit_records_archive',
        *_record_columns(False),
        _archived_at(),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('audit_records_archive', schema=None) as batch_op:
        batch_op.create_index('ix_audit_records_archive_external_number', ['external_number'], unique=False)
        batch_op.create_index('ix_audit_records_archive_competence', ['competence'], unique=False)

    op.create_table('record_movements_archive',
        *_movement_columns(False),
        _archived_at(),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('record_movements_archive', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_record_movements_archive_record_id'), ['record_id'], unique=False)

    op.create_table('record_denials_archive',
        *_denial_columns(False),
        _archived_at(),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('record_denials_archive', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_record_denials_archive_record_id'), ['record_id'], unique=False)

    op.create_table('service_encounters_archive',
        *_encounter_columns(False),
        _archived_at(),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('service_encounters_archive', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_service_encounters_archive_record_id'), ['record_id'], unique=False)


def downgrade():
    for table in (
        'service_encounters_archive',
        'record_denials_archive',
        'record_movements_archive',
        'audit_records_archive',
        'denial_types',
        'record_denials',
        'service_encounters',
        'record_movements',
        'audit_records',
    ):
        op.drop_table(table)
