"""Initial schema with all tables

Revision ID: 20261019_000001
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '20261019_000001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    ]


def upgrade() -> None:
    # === ENTITIES ===
    op.create_table(
        'entities',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('type', sa.String(length=20), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('parent_id', sa.Integer(), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='DRAFT'),
        sa.Column('metadata', postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default='{}'),
        *_timestamps(),
        sa.ForeignKeyConstraint(['parent_id'], ['entities.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_entities_type', 'entities', ['type'])
    op.create_index('idx_entities_parent', 'entities', ['parent_id'])
    op.create_index('idx_entities_status', 'entities', ['status'])

    # === USERS ===
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('phone', sa.String(length=50), nullable=True),
        sa.Column('password_hash', sa.String(length=255), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='INVITED'),
        sa.Column('last_login_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email')
    )

    # === MEMBERSHIPS ===
    op.create_table(
        'memberships',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('entity_id', sa.Integer(), nullable=False),
        sa.Column('role', sa.String(length=30), nullable=False),
        sa.Column('is_primary', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('valid_from', sa.DateTime(timezone=True), nullable=True),
        sa.Column('valid_to', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['entity_id'], ['entities.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'entity_id', 'role', name='uq_memberships_user_entity_role')
    )
    op.create_index('uq_memberships_exclusive_role', 'memberships', ['entity_id', 'role'], unique=True,
                    postgresql_where=sa.text("role IN ('PRINCIPAL', 'SCHOOL_ADMIN')"))
    op.create_index('idx_memberships_user', 'memberships', ['user_id'])
    op.create_index('idx_memberships_entity', 'memberships', ['entity_id'])

    # === PARENT-STUDENT LINKS ===
    op.create_table(
        'parent_student_links',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('parent_user_id', sa.Integer(), nullable=False),
        sa.Column('student_entity_id', sa.Integer(), nullable=False),
        sa.Column('relationship', sa.String(length=20), nullable=False, server_default='GUARDIAN'),
        sa.Column('custody_flags', postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default='{}'),
        *_timestamps(),
        sa.ForeignKeyConstraint(['parent_user_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['student_entity_id'], ['entities.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('parent_user_id', 'student_entity_id', name='uq_parent_student')
    )
    op.create_index('idx_parent_student_parent', 'parent_student_links', ['parent_user_id'])
    op.create_index('idx_parent_student_student', 'parent_student_links', ['student_entity_id'])

    # === AGREEMENTS ===
    op.create_table(
        'agreements',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('code', sa.String(length=100), nullable=False),
        sa.Column('version', sa.String(length=30), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('body_md', sa.Text(), nullable=False),
        sa.Column('effective_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('required_roles', postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default='[]'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('code', 'version', name='uq_agreements_code_version')
    )
    op.create_index('idx_agreements_code', 'agreements', ['code'])

    op.create_table(
        'agreement_acceptances',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('agreement_id', sa.Integer(), nullable=False),
        sa.Column('version', sa.String(length=30), nullable=False),
        sa.Column('accepted_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('ip', sa.String(length=64), nullable=True),
        sa.Column('user_agent', sa.String(length=500), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['agreement_id'], ['agreements.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'agreement_id', name='uq_acceptances_user_agreement')
    )
    op.create_index('idx_acceptances_user', 'agreement_acceptances', ['user_id'])

    op.create_table(
        'agreement_sessions',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('entity_id', sa.Integer(), nullable=True),
        sa.Column('purpose', sa.String(length=30), nullable=False),
        sa.Column('metadata', postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default='{}'),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('consumed_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['entity_id'], ['entities.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_agreement_sessions_user_id', 'agreement_sessions', ['user_id'])

    # === MAGIC TOKENS ===
    op.create_table(
        'magic_tokens',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('token', sa.String(length=128), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('purpose', sa.String(length=30), nullable=False, server_default='LOGIN'),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('used_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('metadata', postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default='{}'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('token')
    )
    op.create_index('idx_magic_tokens_email', 'magic_tokens', ['email'])
    op.create_index('idx_magic_tokens_expires', 'magic_tokens', ['expires_at'])

    # === CAMPS ===
    op.create_table(
        'camps',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('school_entity_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('start_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('end_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('expected_students', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('status', sa.String(length=30), nullable=False, server_default='DRAFT'),
        sa.Column('assigned_dentist_id', sa.Integer(), nullable=True),
        sa.Column('created_by', sa.Integer(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['school_entity_id'], ['entities.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['assigned_dentist_id'], ['users.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['created_by'], ['users.id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_camps_school', 'camps', ['school_entity_id'])
    op.create_index('idx_camps_status', 'camps', ['status'])

    op.create_table(
        'camp_enrollments',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('camp_id', sa.Integer(), nullable=False),
        sa.Column('student_entity_id', sa.Integer(), nullable=False),
        sa.Column('enrolled_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('enrolled_by', sa.Integer(), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='ENROLLED'),
        *_timestamps(),
        sa.ForeignKeyConstraint(['camp_id'], ['camps.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['student_entity_id'], ['entities.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['enrolled_by'], ['users.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('camp_id', 'student_entity_id', name='uq_camp_enrollments_camp_student')
    )
    op.create_index('idx_camp_enrollments_student', 'camp_enrollments', ['student_entity_id'])

    # === CONSENTS ===
    op.create_table(
        'consents',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('camp_id', sa.Integer(), nullable=False),
        sa.Column('student_entity_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='REQUESTED'),
        sa.Column('granted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('denied_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('denial_reason', sa.Text(), nullable=True),
        sa.Column('revoked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('decided_by', sa.Integer(), nullable=True),
        sa.Column('ip_address', sa.String(length=64), nullable=True),
        sa.Column('user_agent', sa.String(length=500), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['camp_id'], ['camps.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['student_entity_id'], ['entities.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['decided_by'], ['users.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('camp_id', 'student_entity_id', name='uq_consents_camp_student')
    )
    op.create_index('idx_consents_student', 'consents', ['student_entity_id'])

    # === SCREENINGS & REPORTS ===
    op.create_table(
        'screenings',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('student_entity_id', sa.Integer(), nullable=False),
        sa.Column('camp_id', sa.Integer(), nullable=False),
        sa.Column('dentist_user_id', sa.Integer(), nullable=True),
        sa.Column('findings', postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default='{}'),
        sa.Column('is_completed', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['student_entity_id'], ['entities.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['camp_id'], ['camps.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['dentist_user_id'], ['users.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_screenings_student', 'screenings', ['student_entity_id'])
    op.create_index('idx_screenings_camp', 'screenings', ['camp_id'])

    op.create_table(
        'reports',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('screening_id', sa.Integer(), nullable=False),
        sa.Column('student_entity_id', sa.Integer(), nullable=False),
        sa.Column('sent_to_parent', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('generated_by', sa.Integer(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['screening_id'], ['screenings.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['student_entity_id'], ['entities.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['generated_by'], ['users.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_reports_student', 'reports', ['student_entity_id'])

    # === AUDIT LOG ===
    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('actor_user_id', sa.Integer(), nullable=True),
        sa.Column('action', sa.String(length=50), nullable=False),
        sa.Column('entity_id', sa.Integer(), nullable=True),
        sa.Column('target_id', sa.Integer(), nullable=True),
        sa.Column('target_type', sa.String(length=30), nullable=True),
        sa.Column('metadata', postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default='{}'),
        sa.Column('occurred_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_audit_actor', 'audit_logs', ['actor_user_id'])
    op.create_index('idx_audit_action', 'audit_logs', ['action'])
    op.create_index('idx_audit_occurred', 'audit_logs', ['occurred_at'])


def downgrade() -> None:
    # Drop tables in reverse order of creation (respecting foreign key dependencies)
    op.drop_table('audit_logs')
    op.drop_table('reports')
    op.drop_table('screenings')
    op.drop_table('consents')
    op.drop_table('camp_enrollments')
    op.drop_table('camps')
    op.drop_table('magic_tokens')
    op.drop_table('agreement_sessions')
    op.drop_table('agreement_acceptances')
    op.drop_table('agreements')
    op.drop_table('parent_student_links')
    op.drop_table('memberships')
    op.drop_table('users')
    op.drop_table('entities')
