"""Create permission catalog, role, binding, team member and audit tables"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str | None = '0001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Apply schema changes."""
    op.create_table(
        'permissions',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('slug', sa.String(length=150), nullable=False),
        sa.Column('module', sa.String(length=50), nullable=False),
        sa.Column('action', sa.String(length=50), nullable=False),
        sa.Column('resource', sa.String(length=100), nullable=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('is_system_permission', sa.Boolean(), server_default='false', nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_permissions')),
        sa.UniqueConstraint('slug', name=op.f('uq_permissions_slug')),
        sa.UniqueConstraint('module', 'action', 'resource', name='uq_permissions_module_action_resource'),
    )
    op.create_index('ix_permissions_slug', 'permissions', ['slug'], unique=False)
    op.create_index('ix_permissions_module', 'permissions', ['module'], unique=False)

    op.create_table(
        'roles',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('slug', sa.String(length=100), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('role_type', sa.String(length=50), server_default='custom', nullable=False),
        sa.Column('is_system_role', sa.Boolean(), server_default='false', nullable=False),
        sa.Column('is_active', sa.Boolean(), server_default='true', nullable=False),
        sa.Column('hierarchy_level', sa.Integer(), server_default='1', nullable=False),
        sa.Column('created_by', sa.Uuid(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_roles')),
        sa.UniqueConstraint('slug', name=op.f('uq_roles_slug')),
        sa.CheckConstraint(
            "role_type IN ('system', 'organizational', 'project', 'custom')",
            name='valid_role_type',
        ),
        sa.CheckConstraint(
            'hierarchy_level >= 0 AND hierarchy_level <= 10',
            name='valid_hierarchy_level',
        ),
    )

    op.create_index('ix_roles_slug', 'roles', ['slug'], unique=False)

    op.create_table(
        'role_permissions',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('role_id', sa.Uuid(), nullable=False),
        sa.Column('permission_id', sa.Uuid(), nullable=False),
        sa.Column('granted_by', sa.Uuid(), nullable=True),
        sa.Column('granted_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['role_id'], ['roles.id'], name=op.f('fk_role_permissions_role_id_roles'), ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['permission_id'], ['permissions.id'], name=op.f('fk_role_permissions_permission_id_permissions'), ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_role_permissions')),
        sa.UniqueConstraint('role_id', 'permission_id', name='uq_role_permissions_role_id_permission_id'),
    )
    op.create_index('ix_role_permissions_role_id', 'role_permissions', ['role_id'], unique=False)
    op.create_index('ix_role_permissions_permission_id', 'role_permissions', ['permission_id'], unique=False)

    op.create_table(
        'team_members',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('team_id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('role_id', sa.Uuid(), nullable=False),
        sa.Column('status', sa.String(length=50), server_default='active', nullable=False),
        sa.Column('is_active', sa.Boolean(), server_default='true', nullable=False),
        sa.Column('assigned_by', sa.Uuid(), nullable=True),
        sa.Column('joined_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['role_id'], ['roles.id'], name=op.f('fk_team_members_role_id_roles'), ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_team_members')),
        sa.UniqueConstraint('team_id', 'user_id', name='uq_team_members_team_id_user_id'),
    )
    op.create_index('ix_team_members_team_id', 'team_members', ['team_id'], unique=False)
    op.create_index('ix_team_members_user_id', 'team_members', ['user_id'], unique=False)
    op.create_index('ix_team_members_role_id', 'team_members', ['role_id'], unique=False)

    op.create_table(
        'permission_audit_logs',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=True),
        sa.Column('action', sa.String(length=20), nullable=False),
        sa.Column('permission_slug', sa.String(length=150), nullable=False),
        sa.Column('resource_type', sa.String(length=100), nullable=True),
        sa.Column('resource_id', sa.String(length=255), nullable=True),
        sa.Column('team_id', sa.Uuid(), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_permission_audit_logs')),
        sa.CheckConstraint(
            "action IN ('granted', 'revoked', 'checked', 'denied')",
            name='valid_audit_action',
        ),
    )
    op.create_index('ix_permission_audit_logs_user_id', 'permission_audit_logs', ['user_id'], unique=False)
    op.create_index('ix_permission_audit_logs_action', 'permission_audit_logs', ['action'], unique=False)
    op.create_index('ix_permission_audit_logs_permission_slug', 'permission_audit_logs', ['permission_slug'], unique=False)
    op.create_index('ix_permission_audit_logs_team_id', 'permission_audit_logs', ['team_id'], unique=False)
    op.create_index('ix_permission_audit_logs_created_at', 'permission_audit_logs', ['created_at'], unique=False)


def downgrade() -> None:
    """Revert schema changes."""
    op.drop_index('ix_permission_audit_logs_created_at', table_name='permission_audit_logs')
    op.drop_index('ix_permission_audit_logs_team_id', table_name='permission_audit_logs')
    op.drop_index('ix_permission_audit_logs_permission_slug', table_name='permission_audit_logs')
    op.drop_index('ix_permission_audit_logs_action', table_name='permission_audit_logs')
    op.drop_index('ix_permission_audit_logs_user_id', table_name='permission_audit_logs')
    op.drop_table('permission_audit_logs')

    op.drop_index('ix_team_members_role_id', table_name='team_members')
    op.drop_index('ix_team_members_user_id', table_name='team_members')
    op.drop_index('ix_team_members_team_id', table_name='team_members')
    op.drop_table('team_members')

    op.drop_index('ix_role_permissions_permission_id', table_name='role_permissions')
    op.drop_index('ix_role_permissions_role_id', table_name='role_permissions')
    op.drop_table('role_permissions')

    op.drop_index('ix_roles_slug', table_name='roles')
    op.drop_table('roles')

    op.drop_index('ix_permissions_module', table_name='permissions')
    op.drop_index('ix_permissions_slug', table_name='permissions')
    op.drop_table('permissions')
