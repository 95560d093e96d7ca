"""Create approval engine schema

Revision ID: 20261012_approval_engine
Revises:
Create Date: 2026-10-12 09:30:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261012_approval_engine'
down_revision = None
branch_labels = None
depends_on = None


USER_ROLE = sa.Enum('ADMIN', 'MANAGER', 'EMPLOYEE', name='user_role')
EXPENSE_STATUS = sa.Enum('PENDING', 'APPROVED', 'REJECTED', 'PAID', name='expense_status')
DECISION_STATUS = sa.Enum('APPROVED', 'REJECTED', 'ESCALATED', name='approval_decision_status')
RULE_TYPE = sa.Enum('NONE', 'PERCENTAGE', 'SPECIFIC', 'HYBRID', name='approval_rule_type')


def upgrade():
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    tables = inspector.get_table_names()

    if 'companies' not in tables:
        op.create_table(
            'companies',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('name', sa.String(length=255), nullable=False, unique=True),
            sa.Column('country', sa.String(length=120), nullable=True),
            sa.Column('currency_code', sa.String(length=10), nullable=False),
            sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        )

    if 'users' not in tables:
        op.create_table(
            'users',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('name', sa.String(length=200), nullable=False),
            sa.Column('email', sa.String(length=255), nullable=False, unique=True),
            sa.Column('role', USER_ROLE, nullable=False),
            sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id'), nullable=False),
            sa.Column('manager_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
            sa.Column('is_active', sa.Boolean(), nullable=False),
            sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        )
        op.create_index('ix_users_email', 'users', ['email'])
        op.create_index('ix_users_company_id', 'users', ['company_id'])

    if 'approval_rules' not in tables:
        op.create_table(
            'approval_rules',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id'), nullable=False),
            sa.Column('name', sa.String(length=255), nullable=False),
            sa.Column('description', sa.Text(), nullable=True),
            sa.Column('rule_type', RULE_TYPE, nullable=False),
            sa.Column('percentage_threshold', sa.Numeric(5, 2), nullable=True),
            sa.Column('specific_approver_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
            sa.Column('enabled', sa.Boolean(), nullable=False),
            sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
            sa.UniqueConstraint('company_id', 'name', name='uq_approval_rules_company_name'),
        )
        op.create_index('ix_approval_rules_company_id', 'approval_rules', ['company_id'])

    if 'approval_flows' not in tables:
        op.create_table(
            'approval_flows',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id'), nullable=False),
            sa.Column('name', sa.String(length=255), nullable=False),
            sa.Column('description', sa.Text(), nullable=True),
            sa.Column('steps', sa.JSON(), nullable=False),
            sa.Column('rule', sa.JSON(), nullable=True),
            sa.Column(
                'rule_id',
                sa.Integer(),
                sa.ForeignKey('approval_rules.id', ondelete='SET NULL'),
                nullable=True,
            ),
            sa.Column('is_default', sa.Boolean(), nullable=False),
            sa.Column('active', sa.Boolean(), nullable=False),
            sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
            sa.UniqueConstraint('company_id', 'name', name='uq_approval_flows_company_name'),
        )
        op.create_index('ix_approval_flows_company_id', 'approval_flows', ['company_id'])

    if 'expenses' not in tables:
        op.create_table(
            'expenses',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id'), nullable=False),
            sa.Column('submitter_user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
            sa.Column('amount_original', sa.Numeric(12, 2), nullable=False),
            sa.Column('currency_original', sa.String(length=10), nullable=False),
            sa.Column('amount_in_company_currency', sa.Numeric(12, 2), nullable=True),
            sa.Column('category', sa.String(length=120), nullable=True),
            sa.Column('description', sa.Text(), nullable=True),
            sa.Column('date_spent', sa.Date(), nullable=False),
            sa.Column('status', EXPENSE_STATUS, nullable=False),
            sa.Column('approval_flow_name', sa.String(length=255), nullable=True),
            sa.Column('current_step_index', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
            sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
            sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        )
        op.create_index('ix_expenses_company_id', 'expenses', ['company_id'])
        op.create_index('ix_expenses_submitter_user_id', 'expenses', ['submitter_user_id'])

    if 'expense_approvals' not in tables:
        op.create_table(
            'expense_approvals',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('expense_id', sa.Integer(), sa.ForeignKey('expenses.id'), nullable=False),
            sa.Column('approver_user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
            sa.Column('step_index', sa.Integer(), nullable=False),
            sa.Column('decision', DECISION_STATUS, nullable=False),
            sa.Column('comment', sa.Text(), nullable=True),
            sa.Column('role_at_approval', sa.String(length=50), nullable=True),
            sa.Column('acted_at', sa.DateTime(), nullable=False),
        )
        op.create_index('ix_expense_approvals_expense_id', 'expense_approvals', ['expense_id'])
        op.create_index('ix_expense_approvals_approver_user_id', 'expense_approvals', ['approver_user_id'])

    if 'audit_logs' not in tables:
        op.create_table(
            'audit_logs',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id'), nullable=True),
            sa.Column('entity_type', sa.String(length=120), nullable=False),
            sa.Column('entity_id', sa.Integer(), nullable=False),
            sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
            sa.Column('action', sa.String(length=120), nullable=False),
            sa.Column('timestamp', sa.DateTime(), server_default=sa.func.now(), nullable=False),
            sa.Column('extra_data', sa.JSON(), nullable=True),
        )
        op.create_index('ix_audit_logs_company_id', 'audit_logs', ['company_id'])


def downgrade():
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    tables = inspector.get_table_names()

    for table in (
        'audit_logs',
        'expense_approvals',
        'expenses',
        'approval_flows',
        'approval_rules',
        'users',
        'companies',
    ):
        if table in tables:
            op.drop_table(table)
