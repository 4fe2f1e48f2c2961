"""Initial Foundry schema: organisations, users, canonical schemas, projects,
sources, processing jobs and datasets

Revision ID: a1f3c5e7d9b2
Revises:
Create Date: 2026-10-19 00:00:00.000000

Partial unique indexes (WHERE deleted_at IS NULL) keep slugs, emails and
project names unique among live rows only, so a name frees up once its
owner is soft-deleted.
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision: str = 'a1f3c5e7d9b2'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

LIVE = sa.text('deleted_at IS NULL')


def _timestamps(soft_delete=True):
    cols = [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    ]
    if soft_delete:
        cols.append(sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True))
    return cols


def upgrade() -> None:
    # --- organisations ---
    op.create_table(
        'organisations',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('slug', sa.String(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_organisations_slug', 'organisations', ['slug'])
    op.create_index('idx_orgs_slug_active', 'organisations', ['slug'], unique=True,
                    postgresql_where=LIVE, sqlite_where=LIVE)
    op.create_index('idx_orgs_deleted_at', 'organisations', ['deleted_at'])

    # --- users ---
    op.create_table(
        'users',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('organisation_id', sa.String(), sa.ForeignKey('organisations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('password_hash', sa.String(), nullable=False, server_default=''),
        sa.Column('name', sa.String(), nullable=False, server_default=''),
        sa.Column('role', sa.Enum('admin', 'member', name='user_role'), nullable=False, server_default='member'),
        sa.Column('invite_token', sa.String(), nullable=True),
        sa.Column('invite_token_expiry', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_users_organisation_id', 'users', ['organisation_id'])
    op.create_index('ix_users_email', 'users', ['email'])
    op.create_index('ix_users_invite_token', 'users', ['invite_token'])
    op.create_index('idx_users_email_active', 'users', ['email'], unique=True,
                    postgresql_where=LIVE, sqlite_where=LIVE)
    op.create_index('idx_users_org_deleted', 'users', ['organisation_id', 'deleted_at'])

    # --- canonical_schemas ---
    op.create_table(
        'canonical_schemas',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('schema_definition', sa.JSON(), nullable=False),
        sa.Column('schema_definition_version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('description', sa.Text(), nullable=False, server_default=''),
        sa.Column('is_published', sa.Boolean(), nullable=False, server_default='false'),
        *_timestamps(soft_delete=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name', 'version', name='uq_canonical_schema_name_version'),
    )
    op.create_index('ix_canonical_schemas_is_published', 'canonical_schemas', ['is_published'])

    # --- projects ---
    op.create_table(
        'projects',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('organisation_id', sa.String(), sa.ForeignKey('organisations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('created_by_user_id', sa.String(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('canonical_schema_id', sa.String(), sa.ForeignKey('canonical_schemas.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('status', sa.Enum('draft', 'active', 'archived', name='project_status'), nullable=False, server_default='draft'),
        sa.Column('processing_config', sa.JSON(), nullable=True),
        sa.Column('processing_config_version', sa.Integer(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_projects_organisation_id', 'projects', ['organisation_id'])
    op.create_index('ix_projects_canonical_schema_id', 'projects', ['canonical_schema_id'])
    op.create_index('ix_projects_created_at', 'projects', ['created_at'])
    op.create_index('idx_projects_org_name_active', 'projects', ['organisation_id', 'name'], unique=True,
                    postgresql_where=LIVE, sqlite_where=LIVE)
    op.create_index('idx_projects_org_deleted', 'projects', ['organisation_id', 'deleted_at'])
    op.create_index('idx_projects_status', 'projects', ['status', 'deleted_at'])

    # --- sources ---
    op.create_table(
        'sources',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('project_id', sa.String(), sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('source_type', sa.Enum('file', 'api', name='source_type'), nullable=False),
        sa.Column('file_upload_path', sa.String(), nullable=True),
        sa.Column('file_mime_type', sa.String(), nullable=True),
        sa.Column('file_size_bytes', sa.BigInteger(), nullable=True),
        sa.Column('api_connection_config', sa.JSON(), nullable=True),
        sa.Column('api_connection_config_version', sa.Integer(), nullable=True),
        sa.Column('status', sa.Enum('connected', 'cached', 'expired', 'error', name='source_status'), nullable=False, server_default='connected'),
        sa.Column('cached_data_path', sa.String(), nullable=True),
        sa.Column('cached_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cache_expiry_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('record_count', sa.Integer(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_sources_project_id', 'sources', ['project_id'])
    op.create_index('ix_sources_cache_expiry_date', 'sources', ['cache_expiry_date'])
    op.create_index('ix_sources_created_at', 'sources', ['created_at'])
    op.create_index('idx_sources_project', 'sources', ['project_id', 'deleted_at'])
    op.create_index('idx_sources_status', 'sources', ['status', 'deleted_at'])

    # --- processing_jobs ---
    op.create_table(
        'processing_jobs',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('project_id', sa.String(), sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('triggered_by', sa.Enum('manual', 'scheduled', name='job_trigger'), nullable=False, server_default='manual'),
        sa.Column('triggered_by_user_id', sa.String(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('status', sa.Enum('queued', 'processing', 'completed', 'failed', name='processing_job_status'), nullable=False, server_default='queued'),
        sa.Column('config_snapshot', sa.JSON(), nullable=False),
        sa.Column('config_snapshot_version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('input_record_count', sa.Integer(), nullable=True),
        sa.Column('output_record_count', sa.Integer(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_processing_jobs_project_id', 'processing_jobs', ['project_id'])
    op.create_index('ix_processing_jobs_triggered_by_user_id', 'processing_jobs', ['triggered_by_user_id'])
    op.create_index('ix_processing_jobs_created_at', 'processing_jobs', ['created_at'])
    op.create_index('idx_processing_jobs_project', 'processing_jobs', ['project_id', 'deleted_at'])
    op.create_index('idx_processing_jobs_status', 'processing_jobs', ['status', 'deleted_at'])

    # --- datasets ---
    op.create_table(
        'datasets',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('project_id', sa.String(), sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('processing_job_id', sa.String(), sa.ForeignKey('processing_jobs.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('output_format', sa.Enum('conversationalJsonl', 'qaJson', 'structuredJson', name='output_format'), nullable=False),
        sa.Column('output_storage_path', sa.String(), nullable=False),
        sa.Column('record_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('file_size_bytes', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('lineage_data', sa.JSON(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_datasets_project_id', 'datasets', ['project_id'])
    op.create_index('ix_datasets_processing_job_id', 'datasets', ['processing_job_id'])
    op.create_index('ix_datasets_created_at', 'datasets', ['created_at'])
    op.create_index('idx_datasets_project', 'datasets', ['project_id', 'deleted_at'])
    op.create_index('idx_datasets_output_format', 'datasets', ['output_format', 'deleted_at'])


def downgrade() -> None:
    op.drop_table('datasets')
    op.drop_table('processing_jobs')
    op.drop_table('sources')
    op.drop_table('projects')
    op.drop_table('canonical_schemas')
    op.drop_table('users')
    op.drop_table('organisations')
    op.execute("DROP TYPE IF EXISTS output_format")
    op.execute("DROP TYPE IF EXISTS processing_job_status")
    op.execute("DROP TYPE IF EXISTS job_trigger")
    op.execute("DROP TYPE IF EXISTS source_status")
    op.execute("DROP TYPE IF EXISTS source_type")
    op.execute("DROP TYPE IF EXISTS project_status")
    op.execute("DROP TYPE IF EXISTS user_role")
