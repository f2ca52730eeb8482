"""initial schema

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19

Creates users, evaluators, vendors, evaluations, drafts, votes, chat,
admin settings and audit tables. Enums are stored as VARCHAR with CHECK
constraints.
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001_initial'
down_revision = None
branch_labels = None
depends_on = None

SUB_CRITERIA = [
    'experience', 'case_studies', 'domain_experience',
    'approach_alignment', 'understanding_challenges', 'solution_tailoring',
    'strategy_alignment', 'methodology', 'innovative_strategies', 'stakeholder_engagement', 'tools_framework',
    'cost_structure', 'cost_effectiveness', 'roi',
    'references', 'testimonials', 'sustainability',
    'deliverables',
]


def _enum(name, *values):
    return sa.Enum(*values, name=name, native_enum=False)


def upgrade() -> None:
    role = ('CONTRIBUTOR', 'DECISION_MAKER', 'ADMIN')

    op.create_table('users',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('email', sa.String(255), nullable=False, unique=True, index=True),
        sa.Column('hashed_password', sa.String(255), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('role', _enum('userrole', *role), nullable=False),
        sa.Column('approval_status', _enum('approvalstatus', 'PENDING', 'APPROVED', 'REJECTED'), nullable=False),
        sa.Column('can_access_chat', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('can_make_direct_decision', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('can_print_reports', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('can_export_data', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True)),
        sa.Column('last_login', sa.DateTime(timezone=True)),
    )

    op.create_table('evaluators',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, unique=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('email', sa.String(255), nullable=False, unique=True),
        sa.Column('role', _enum('userrole', *role), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True)),
    )

    op.create_table('vendors',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('name', sa.String(255), nullable=False, unique=True, index=True),
        sa.Column('scopes', sa.JSON(), nullable=False),
        sa.Column('contacts', sa.JSON(), nullable=False),
        sa.Column('rfi_status', _enum('rfistatus', 'NOT_RECEIVED', 'RECEIVED', 'IN_PROGRESS', 'COMPLETED'),
                  nullable=False),
        sa.Column('rfi_received', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('rfi_received_at', sa.DateTime(timezone=True)),
        sa.Column('final_decision', _enum('finaldecision', 'ACCEPTED', 'REJECTED'), nullable=True),
        sa.Column('chat_enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('direct_decision_enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True)),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
    )

    criterion_columns = []
    for name in SUB_CRITERIA:
        criterion_columns.append(sa.Column(f'{name}_score', sa.Float(), nullable=False))
        criterion_columns.append(sa.Column(f'{name}_remark', sa.Text(), nullable=False))

    op.create_table('evaluations',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('vendor_id', sa.Integer(), sa.ForeignKey('vendors.id', ondelete='CASCADE'),
                  nullable=False, index=True),
        sa.Column('evaluator_id', sa.Integer(), sa.ForeignKey('evaluators.id', ondelete='CASCADE'),
                  nullable=False, index=True),
        sa.Column('domain', sa.String(100)),
        sa.Column('overall_score', sa.Float(), nullable=False),
        sa.Column('submitted', sa.Boolean(), nullable=False, server_default=sa.true()),
        *criterion_columns,
        sa.Column('created_at', sa.DateTime(timezone=True)),
        sa.UniqueConstraint('vendor_id', 'evaluator_id', name='uq_evaluation_vendor_evaluator'),
    )

    op.create_table('evaluation_drafts',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('vendor_id', sa.Integer(), sa.ForeignKey('vendors.id', ondelete='CASCADE'), nullable=False),
        sa.Column('evaluator_id', sa.Integer(), sa.ForeignKey('evaluators.id', ondelete='CASCADE'), nullable=False),
        sa.Column('data', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True)),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
        sa.UniqueConstraint('vendor_id', 'evaluator_id', name='uq_draft_vendor_evaluator'),
    )

    op.create_table('vendor_votes',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('vendor_id', sa.Integer(), sa.ForeignKey('vendors.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('vote', _enum('votevalue', 'ACCEPT', 'REJECT'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True)),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
        sa.UniqueConstraint('vendor_id', 'user_id', name='uq_vote_vendor_user'),
    )

    op.create_table('chat_messages',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('vendor_id', sa.Integer(), sa.ForeignKey('vendors.id', ondelete='CASCADE'), nullable=False),
        sa.Column('sender_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_chat_messages_vendor_created', 'chat_messages', ['vendor_id', 'created_at'])

    op.create_table('chat_notifications',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('message_id', sa.Integer(), sa.ForeignKey('chat_messages.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'),
                  nullable=False, index=True),
        sa.Column('is_read', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True)),
        sa.UniqueConstraint('message_id', 'user_id', name='uq_notification_message_user'),
    )

    op.create_table('admin_settings',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('chat_enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('direct_decision_enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('print_enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('export_enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
    )

    op.create_table('audit_logs',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('timestamp', sa.DateTime(timezone=True), index=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('action', sa.String(100), nullable=False, index=True),
        sa.Column('entity_type', sa.String(100), index=True),
        sa.Column('entity_id', sa.Integer()),
        sa.Column('details', sa.JSON()),
        sa.Column('ip_address', sa.String(50)),
    )


def downgrade() -> None:
    op.drop_table('audit_logs')
    op.drop_table('admin_settings')
    op.drop_table('chat_notifications')
    op.drop_index('ix_chat_messages_vendor_created', table_name='chat_messages')
    op.drop_table('chat_messages')
    op.drop_table('vendor_votes')
    op.drop_table('evaluation_drafts')
    op.drop_table('evaluations')
    op.drop_table('vendors')
    op.drop_table('evaluators')
    op.drop_table('users')
