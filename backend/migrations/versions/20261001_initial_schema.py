"""Initial schema: branches, users, scopes, approvals, activity log, master data, BOM

Revision ID: 20261001_initial
Revises:
Create Date: 2026-10-01

This migration creates:
1. Branches, roles, users, branch memberships and bearer sessions
2. Permission scope registry, role grants and nullable user overrides
3. Approval policies and approval requests
4. Activity log
5. Basic-info catalogs, accounts, parties (with branch maps)
6. Items, item usage, RM purchase rates, variants, SKUs, labours
7. BOM header, the four line sections and the BOM change log
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261001_initial'
down_revision = None
branch_labels = None
depends_on = None


FLAG_COLUMNS = (
    'can_navigate', 'can_view', 'can_create', 'can_edit',
    'can_delete', 'can_hard_delete', 'can_print', 'can_approve',
)


def _now():
    return sa.text('(CURRENT_TIMESTAMP)')


def _audit_columns():
    return [
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=_now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_by', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('updated_by', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
    ]


def _named_catalog(table, *extra, unique_name=True):
    op.create_table(table,
        sa.Column('id', sa.Integer(), primary_key=True),
        *extra,
        sa.Column('name', sa.String(length=120), nullable=False, unique=unique_name),
        sa.Column('name_ur', sa.String(length=120), nullable=True),
        *_audit_columns(),
        sqlite_autoincrement=True
    )


def _item_type_map(table, key, parent):
    op.create_table(table,
        sa.Column(key, sa.Integer(), sa.ForeignKey(f'{parent}.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('item_type', sa.String(length=8), primary_key=True),
    )


def upgrade():
    # ==========================================================================
    # 1. IDENTITY
    # ==========================================================================
    op.create_table('branches',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('code', sa.String(length=32), nullable=False, unique=True),
        sa.Column('name', sa.String(length=128), nullable=False, unique=True),
        sa.Column('name_ur', sa.String(length=128), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=_now(), nullable=False),
        sqlite_autoincrement=True
    )
    op.create_table('role_templates',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=64), nullable=False, unique=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=_now(), nullable=False),
        sqlite_autoincrement=True
    )
    op.create_table('users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('username', sa.String(length=64), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('primary_role_id', sa.Integer(), sa.ForeignKey('role_templates.id'), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='Active'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=_now(), nullable=False),
        sa.Column('last_login_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("status IN ('Active', 'Inactive')", name='ck_users_status'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('users', schema=None) as batch_op:
        batch_op.create_index('ix_users_username', ['username'], unique=True)
        batch_op.create_index('ix_users_primary_role_id', ['primary_role_id'], unique=False)

    op.create_table('user_branch',
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('branch_id', sa.Integer(), sa.ForeignKey('branches.id', ondelete='CASCADE'), primary_key=True),
    )
    op.create_table('session_tokens',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('branch_id', sa.Integer(), sa.ForeignKey('branches.id'), nullable=True),
        sa.Column('token_hash', sa.String(length=255), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=_now(), nullable=False),
        sa.Column('last_used_at', sa.DateTime(timezone=True), server_default=_now(), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('is_revoked', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('revoked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('revoked_reason', sa.String(length=255), nullable=True),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('session_tokens', schema=None) as batch_op:
        batch_op.create_index('ix_session_tokens_token_hash', ['token_hash'], unique=True)
        batch_op.create_index('ix_session_tokens_user_id', ['user_id'], unique=False)
        batch_op.create_index('ix_session_tokens_user_active', ['user_id', 'is_revoked'], unique=False)

    # ==========================================================================
    # 2. SCOPES AND GRANTS
    # ==========================================================================
    op.create_table('permission_scope_registry',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('scope_type', sa.String(length=16), nullable=False),
        sa.Column('scope_key', sa.String(length=128), nullable=False),
        sa.Column('module_group', sa.String(length=64), nullable=True),
        sa.Column('description', sa.String(length=255), nullable=True),
        sa.UniqueConstraint('scope_type', 'scope_key', name='uq_permission_scope_type_key'),
        sqlite_autoincrement=True
    )
    op.create_table('role_permissions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('role_id', sa.Integer(), sa.ForeignKey('role_templates.id', ondelete='CASCADE'), nullable=False),
        sa.Column('scope_id', sa.Integer(), sa.ForeignKey('permission_scope_registry.id', ondelete='CASCADE'), nullable=False),
        *[sa.Column(flag, sa.Boolean(), nullable=False, server_default=sa.false()) for flag in FLAG_COLUMNS],
        sa.UniqueConstraint('role_id', 'scope_id', name='uq_role_permissions_role_scope'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('role_permissions', schema=None) as batch_op:
        batch_op.create_index('ix_role_permissions_role_id', ['role_id'], unique=False)
        batch_op.create_index('ix_role_permissions_scope_id', ['scope_id'], unique=False)

    op.create_table('user_permissions_override',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('scope_id', sa.Integer(), sa.ForeignKey('permission_scope_registry.id', ondelete='CASCADE'), nullable=False),
        *[sa.Column(flag, sa.Boolean(), nullable=True) for flag in FLAG_COLUMNS],
        sa.UniqueConstraint('user_id', 'scope_id', name='uq_user_permissions_override_user_scope'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('user_permissions_override', schema=None) as batch_op:
        batch_op.create_index('ix_user_permissions_override_user_id', ['user_id'], unique=False)
        batch_op.create_index('ix_user_permissions_override_scope_id', ['scope_id'], unique=False)

    # ==========================================================================
    # 3. APPROVALS
    # ==========================================================================
    op.create_table('approval_policy',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('entity_type', sa.String(length=32), nullable=False),
        sa.Column('entity_key', sa.String(length=128), nullable=False),
        sa.Column('action', sa.String(length=16), nullable=False),
        sa.Column('requires_approval', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('updated_by', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=_now(), nullable=False),
        sa.UniqueConstraint('entity_type', 'entity_key', 'action', name='uq_approval_policy_triple'),
        sqlite_autoincrement=True
    )
    op.create_table('approval_request',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('branch_id', sa.Integer(), sa.ForeignKey('branches.id'), nullable=True),
        sa.Column('request_type', sa.String(length=32), nullable=False, server_default='MASTER_DATA_CHANGE'),
        sa.Column('entity_type', sa.String(length=32), nullable=False),
        sa.Column('entity_key', sa.String(length=128), nullable=True),
        sa.Column('entity_id', sa.String(length=32), nullable=False),
        sa.Column('summary', sa.Text(), nullable=True),
        sa.Column('old_value', sa.JSON(), nullable=True),
        sa.Column('new_value', sa.JSON(), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='PENDING'),
        sa.Column('requested_by', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('requested_at', sa.DateTime(timezone=True), server_default=_now(), nullable=False),
        sa.Column('decided_by', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('decided_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('decision_notes', sa.Text(), nullable=True),
        sa.CheckConstraint("status IN ('PENDING', 'APPROVED', 'REJECTED', 'CANCELLED')", name='ck_approval_request_status'),
        sa.CheckConstraint('decided_by IS NULL OR decided_by <> requested_by', name='ck_approval_request_not_self_decided'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('approval_request', schema=None) as batch_op:
        batch_op.create_index('ix_approval_request_branch_id', ['branch_id'], unique=False)
        batch_op.create_index('ix_approval_request_requested_by', ['requested_by'], unique=False)
        batch_op.create_index('ix_approval_request_status_requested', ['status', 'requested_at', 'id'], unique=False)
        batch_op.create_index('ix_approval_request_entity', ['entity_type', 'entity_id', 'status'], unique=False)

    # ==========================================================================
    # 4. ACTIVITY LOG
    # ==========================================================================
    op.create_table('activity_log',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('branch_id', sa.Integer(), sa.ForeignKey('branches.id'), nullable=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('entity_type', sa.String(length=32), nullable=False),
        sa.Column('entity_id', sa.String(length=32), nullable=True),
        sa.Column('action', sa.String(length=16), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=_now(), nullable=False),
        sa.Column('context_json', sa.JSON(), nullable=True),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('activity_log', schema=None) as batch_op:
        batch_op.create_index('ix_activity_log_branch_id', ['branch_id'], unique=False)
        batch_op.create_index('ix_activity_log_user_id', ['user_id'], unique=False)
        batch_op.create_index('ix_activity_log_entity', ['entity_type', 'entity_id'], unique=False)
        batch_op.create_index('ix_activity_log_created', ['created_at'], unique=False)

    # ==========================================================================
    # 5. BASIC INFO
    # ==========================================================================
    op.create_table('uom',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('code', sa.String(length=80), nullable=False, unique=True),
        sa.Column('name', sa.String(length=120), nullable=False, unique=True),
        sa.Column('name_ur', sa.String(length=120), nullable=True),
        *_audit_columns(),
        sqlite_autoincrement=True
    )
    op.create_table('uom_conversions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('from_uom_id', sa.Integer(), sa.ForeignKey('uom.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('to_uom_id', sa.Integer(), sa.ForeignKey('uom.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('factor', sa.Numeric(18, 6), nullable=False),
        *_audit_columns(),
        sa.UniqueConstraint('from_uom_id', 'to_uom_id', name='uq_uom_conversions_pair'),
        sa.CheckConstraint('factor > 0', name='ck_uom_conversions_factor'),
        sa.CheckConstraint('from_uom_id <> to_uom_id', name='ck_uom_conversions_distinct'),
        sqlite_autoincrement=True
    )

    _named_catalog('product_groups')
    _item_type_map('product_group_item_types', 'group_id', 'product_groups')

    op.create_table('product_subgroups',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('group_id', sa.Integer(), sa.ForeignKey('product_groups.id', ondelete='RESTRICT'), nullable=True),
        sa.Column('code', sa.String(length=80), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('name_ur', sa.String(length=120), nullable=True),
        *_audit_columns(),
        sa.UniqueConstraint('group_id', 'code', name='uq_product_subgroups_group_code'),
        sa.UniqueConstraint('group_id', 'name', name='uq_product_subgroups_group_name'),
        sqlite_autoincrement=True
    )
    _item_type_map('product_subgroup_item_types', 'subgroup_id', 'product_subgroups')

    _named_catalog('product_types', sa.Column('code', sa.String(length=40), nullable=False, unique=True))
    _named_catalog('sizes')
    _item_type_map('size_item_types', 'size_id', 'sizes')
    _named_catalog('colors')
    _named_catalog('grades')
    _named_catalog('packing_types')
    _named_catalog('cities')
    _named_catalog('party_groups', sa.Column('party_type', sa.String(length=16), nullable=False, server_default='BOTH'))

    op.create_table('account_groups',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('account_type', sa.String(length=16), nullable=False),
        sa.Column('code', sa.String(length=80), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('name_ur', sa.String(length=120), nullable=True),
        sa.Column('is_contra', sa.Boolean(), nullable=False, server_default=sa.false()),
        *_audit_columns(),
        sa.UniqueConstraint('account_type', 'code', name='uq_account_groups_type_code'),
        sa.UniqueConstraint('account_type', 'name', name='uq_account_groups_type_name'),
        sqlite_autoincrement=True
    )
    _named_catalog('departments', sa.Column('is_production', sa.Boolean(), nullable=False, server_default=sa.false()))

    # ==========================================================================
    # 6. ACCOUNTS / PARTIES
    # ==========================================================================
    op.create_table('accounts',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('code', sa.String(length=80), nullable=False, unique=True),
        sa.Column('name', sa.String(length=160), nullable=False, unique=True),
        sa.Column('name_ur', sa.String(length=160), nullable=True),
        sa.Column('subgroup_id', sa.Integer(), sa.ForeignKey('account_groups.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('lock_posting', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('approved_by', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        *_audit_columns(),
        sqlite_autoincrement=True
    )
    op.create_table('account_branch',
        sa.Column('account_id', sa.Integer(), sa.ForeignKey('accounts.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('branch_id', sa.Integer(), sa.ForeignKey('branches.id', ondelete='CASCADE'), primary_key=True),
    )
    op.create_table('parties',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('code', sa.String(length=80), nullable=False, unique=True),
        sa.Column('name', sa.String(length=160), nullable=False, unique=True),
        sa.Column('name_ur', sa.String(length=160), nullable=True),
        sa.Column('party_type', sa.String(length=16), nullable=False),
        sa.Column('group_id', sa.Integer(), sa.ForeignKey('party_groups.id'), nullable=True),
        sa.Column('city_id', sa.Integer(), sa.ForeignKey('cities.id'), nullable=True),
        sa.Column('address', sa.Text(), nullable=True),
        sa.Column('phone1', sa.String(length=32), nullable=True),
        sa.Column('phone2', sa.String(length=32), nullable=True),
        sa.Column('credit_allowed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('credit_limit', sa.Numeric(18, 2), nullable=False, server_default='0'),
        sa.Column('approved_by', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        *_audit_columns(),
        sa.CheckConstraint('credit_allowed OR credit_limit = 0', name='ck_parties_credit_limit'),
        sqlite_autoincrement=True
    )
    op.create_table('party_branch',
        sa.Column('party_id', sa.Integer(), sa.ForeignKey('parties.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('branch_id', sa.Integer(), sa.ForeignKey('branches.id', ondelete='CASCADE'), primary_key=True),
    )

    # ==========================================================================
    # 7. PRODUCTS
    # ==========================================================================
    op.create_table('items',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('item_type', sa.String(length=8), nullable=False),
        sa.Column('code', sa.String(length=80), nullable=False, unique=True),
        sa.Column('name', sa.String(length=160), nullable=False),
        sa.Column('name_ur', sa.String(length=160), nullable=True),
        sa.Column('group_id', sa.Integer(), sa.ForeignKey('product_groups.id'), nullable=False),
        sa.Column('subgroup_id', sa.Integer(), sa.ForeignKey('product_subgroups.id'), nullable=True),
        sa.Column('product_type_id', sa.Integer(), sa.ForeignKey('product_types.id'), nullable=True),
        sa.Column('base_uom_id', sa.Integer(), sa.ForeignKey('uom.id'), nullable=False),
        sa.Column('uses_sfg', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('sfg_part_type', sa.String(length=8), nullable=True),
        sa.Column('min_stock_level', sa.Numeric(18, 3), nullable=False, server_default='-1'),
        sa.Column('approved_by', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        *_audit_columns(),
        sa.CheckConstraint("item_type IN ('RM', 'SFG', 'FG')", name='ck_items_item_type'),
        sa.CheckConstraint(
            "item_type = 'FG' OR (uses_sfg = false AND sfg_part_type IS NULL)",
            name='ck_items_sfg_only_fg',
        ),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('items', schema=None) as batch_op:
        batch_op.create_index('ix_items_type_active', ['item_type', 'is_active'], unique=False)

    op.create_table('item_usage',
        sa.Column('fg_item_id', sa.Integer(), sa.ForeignKey('items.id', ondelete='RESTRICT'), primary_key=True),
        sa.Column('sfg_item_id', sa.Integer(), sa.ForeignKey('items.id', ondelete='RESTRICT'), primary_key=True),
    )
    op.create_table('rm_purchase_rates',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('rm_item_id', sa.Integer(), sa.ForeignKey('items.id', ondelete='CASCADE'), nullable=False),
        sa.Column('color_id', sa.Integer(), sa.ForeignKey('colors.id'), nullable=True),
        sa.Column('size_id', sa.Integer(), sa.ForeignKey('sizes.id'), nullable=True),
        sa.Column('purchase_rate', sa.Numeric(18, 4), nullable=False),
        sa.Column('avg_purchase_rate', sa.Numeric(18, 4), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_by', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=_now(), nullable=False),
        sa.CheckConstraint('purchase_rate >= 0', name='ck_rm_purchase_rates_rate'),
        sa.CheckConstraint('avg_purchase_rate >= 0', name='ck_rm_purchase_rates_avg'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('rm_purchase_rates', schema=None) as batch_op:
        batch_op.create_index('ix_rm_purchase_rates_item', ['rm_item_id', 'is_active'], unique=False)

    op.create_table('variants',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('item_id', sa.Integer(), sa.ForeignKey('items.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('size_id', sa.Integer(), sa.ForeignKey('sizes.id'), nullable=True),
        sa.Column('grade_id', sa.Integer(), sa.ForeignKey('grades.id'), nullable=True),
        sa.Column('color_id', sa.Integer(), sa.ForeignKey('colors.id'), nullable=True),
        sa.Column('packing_type_id', sa.Integer(), sa.ForeignKey('packing_types.id'), nullable=True),
        sa.Column('sale_rate', sa.Numeric(18, 2), nullable=False, server_default='0'),
        sa.Column('approved_by', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        *_audit_columns(),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('variants', schema=None) as batch_op:
        batch_op.create_index(
            'ix_variants_identity', ['item_id', 'size_id', 'grade_id', 'color_id', 'packing_type_id'], unique=False,
        )

    op.create_table('skus',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('variant_id', sa.Integer(), sa.ForeignKey('variants.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('sku_code', sa.String(length=200), nullable=False, unique=True),
        sa.Column('barcode', sa.String(length=64), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('skus', schema=None) as batch_op:
        batch_op.create_index('ix_skus_variant_id', ['variant_id'], unique=False)

    op.create_table('labours',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('code', sa.String(length=80), nullable=False, unique=True),
        sa.Column('name', sa.String(length=160), nullable=False),
        sa.Column('name_ur', sa.String(length=160), nullable=True),
        sa.Column('dept_id', sa.Integer(), sa.ForeignKey('departments.id'), nullable=True),
        *_audit_columns(),
        sqlite_autoincrement=True
    )

    # ==========================================================================
    # 8. BOM
    # ==========================================================================
    op.create_table('bom_header',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('bom_no', sa.String(length=32), nullable=False, unique=True),
        sa.Column('item_id', sa.Integer(), sa.ForeignKey('items.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('level', sa.String(length=16), nullable=False),
        sa.Column('output_qty', sa.Numeric(18, 3), nullable=False, server_default='1'),
        sa.Column('output_uom_id', sa.Integer(), sa.ForeignKey('uom.id'), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='DRAFT'),
        sa.Column('version_no', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_by', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=_now(), nullable=False),
        sa.Column('approved_by', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint('item_id', 'level', 'version_no', name='uq_bom_header_item_level_version'),
        sa.CheckConstraint('output_qty > 0', name='ck_bom_header_output_qty'),
        sa.CheckConstraint('version_no > 0', name='ck_bom_header_version_no'),
        sqlite_autoincrement=True
    )
    op.create_index(
        'ux_bom_header_single_draft', 'bom_header', ['item_id', 'level'], unique=True,
        sqlite_where=sa.text("status = 'DRAFT'"),
        postgresql_where=sa.text("status = 'DRAFT'"),
    )

    op.create_table('bom_rm_line',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('bom_id', sa.Integer(), sa.ForeignKey('bom_header.id', ondelete='CASCADE'), nullable=False),
        sa.Column('rm_item_id', sa.Integer(), sa.ForeignKey('items.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('color_id', sa.Integer(), sa.ForeignKey('colors.id'), nullable=True),
        sa.Column('size_id', sa.Integer(), sa.ForeignKey('sizes.id'), nullable=True),
        sa.Column('dept_id', sa.Integer(), sa.ForeignKey('departments.id'), nullable=False),
        sa.Column('qty', sa.Numeric(18, 3), nullable=False),
        sa.Column('uom_id', sa.Integer(), sa.ForeignKey('uom.id'), nullable=False),
        sa.Column('normal_loss_pct', sa.Numeric(6, 3), nullable=False, server_default='0'),
        sa.CheckConstraint('qty > 0', name='ck_bom_rm_line_qty'),
        sa.CheckConstraint('normal_loss_pct >= 0 AND normal_loss_pct <= 100', name='ck_bom_rm_line_loss'),
        sqlite_autoincrement=True
    )
    op.create_table('bom_sfg_line',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('bom_id', sa.Integer(), sa.ForeignKey('bom_header.id', ondelete='CASCADE'), nullable=False),
        sa.Column('fg_size_id', sa.Integer(), sa.ForeignKey('sizes.id'), nullable=False),
        sa.Column('sfg_sku_id', sa.Integer(), sa.ForeignKey('skus.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('required_qty', sa.Numeric(18, 3), nullable=False),
        sa.Column('uom_id', sa.Integer(), sa.ForeignKey('uom.id'), nullable=False),
        sa.Column('ref_approved_bom_id', sa.Integer(), sa.ForeignKey('bom_header.id'), nullable=True),
        sa.CheckConstraint('required_qty > 0', name='ck_bom_sfg_line_qty'),
        sqlite_autoincrement=True
    )
    op.create_table('bom_labour_line',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('bom_id', sa.Integer(), sa.ForeignKey('bom_header.id', ondelete='CASCADE'), nullable=False),
        sa.Column('size_scope', sa.String(length=16), nullable=False, server_default='ALL'),
        sa.Column('size_id', sa.Integer(), sa.ForeignKey('sizes.id'), nullable=True),
        sa.Column('dept_id', sa.Integer(), sa.ForeignKey('departments.id'), nullable=False),
        sa.Column('labour_id', sa.Integer(), sa.ForeignKey('labours.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('rate_type', sa.String(length=16), nullable=False, server_default='PER_PAIR'),
        sa.Column('rate_value', sa.Numeric(18, 4), nullable=False),
        sa.CheckConstraint('rate_value >= 0', name='ck_bom_labour_line_rate'),
        sqlite_autoincrement=True
    )
    op.create_table('bom_variant_rule',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('bom_id', sa.Integer(), sa.ForeignKey('bom_header.id', ondelete='CASCADE'), nullable=False),
        sa.Column('size_scope', sa.String(length=16), nullable=False, server_default='ALL'),
        sa.Column('size_id', sa.Integer(), sa.ForeignKey('sizes.id'), nullable=True),
        sa.Column('packing_scope', sa.String(length=16), nullable=False, server_default='ALL'),
        sa.Column('packing_type_id', sa.Integer(), sa.ForeignKey('packing_types.id'), nullable=True),
        sa.Column('color_scope', sa.String(length=16), nullable=False, server_default='ALL'),
        sa.Column('color_id', sa.Integer(), sa.ForeignKey('colors.id'), nullable=True),
        sa.Column('action_type', sa.String(length=16), nullable=False),
        sa.Column('material_scope', sa.String(length=16), nullable=False, server_default='ALL'),
        sa.Column('target_rm_item_id', sa.Integer(), sa.ForeignKey('items.id'), nullable=True),
        sa.Column('new_value', sa.JSON(), nullable=False),
        sqlite_autoincrement=True
    )
    for table in ('bom_rm_line', 'bom_sfg_line', 'bom_labour_line', 'bom_variant_rule'):
        op.create_index(f'ix_{table}_bom_id', table, ['bom_id'], unique=False)

    op.create_table('bom_change_log',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('bom_id', sa.Integer(), sa.ForeignKey('bom_header.id', ondelete='CASCADE'), nullable=False),
        sa.Column('version_no', sa.Integer(), nullable=False),
        sa.Column('request_id', sa.Integer(), sa.ForeignKey('approval_request.id', ondelete='SET NULL'), nullable=True),
        sa.Column('section', sa.String(length=32), nullable=False),
        sa.Column('entity_key', sa.String(length=255), nullable=False),
        sa.Column('change_type', sa.String(length=16), nullable=False),
        sa.Column('old_value', sa.JSON(), nullable=True),
        sa.Column('new_value', sa.JSON(), nullable=True),
        sa.Column('changed_by', sa.Integer(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('changed_at', sa.DateTime(timezone=True), server_default=_now(), nullable=False),
        sa.CheckConstraint("change_type IN ('ADDED', 'UPDATED', 'REMOVED')", name='ck_bom_change_log_type'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_bom_change_log_bom_version', 'bom_change_log', ['bom_id', 'version_no'], unique=False)


def downgrade():
    for table in (
        'bom_change_log', 'bom_variant_rule', 'bom_labour_line', 'bom_sfg_line', 'bom_rm_line', 'bom_header',
        'labours', 'skus', 'variants', 'rm_purchase_rates', 'item_usage', 'items',
        'party_branch', 'parties', 'account_branch', 'accounts',
        'departments', 'account_groups', 'party_groups', 'cities', 'packing_types', 'grades',
        'colors', 'size_item_types', 'sizes', 'product_types', 'product_subgroup_item_types',
        'product_subgroups', 'product_group_item_types', 'product_groups', 'uom_conversions', 'uom',
        'activity_log', 'approval_request', 'approval_policy',
        'user_permissions_override', 'role_permissions', 'permission_scope_registry',
        'session_tokens', 'user_branch', 'users', 'role_templates', 'branches',
    ):
        op.drop_table(table)
