"""
tool_memory_entries table for session-scoped tool execution memory
"""
from alembic import op
import sqlalchemy as sa

revision = '20261019_000001'
down_revision = None


def upgrade():
    op.create_table(
        'tool_memory_entries',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('tenant_id', sa.String(64), nullable=False),
        sa.Column('session_id', sa.String(128), nullable=False),
        sa.Column('tool_name', sa.String(128), nullable=False),
        sa.Column('input_hash', sa.String(128), nullable=False),
        sa.Column('input_json', sa.Text, nullable=False),
        sa.Column('output_json', sa.Text, nullable=False),
        sa.Column('resource_ids_json', sa.Text, nullable=False),
        sa.Column('resource_types_json', sa.Text, nullable=False),
        sa.Column('execution_time_ms', sa.Float, nullable=False),
        sa.Column('tokens_used', sa.Float, nullable=False),
        sa.Column('success', sa.Boolean, nullable=False),
        sa.Column('error', sa.Text, nullable=True),
        sa.Column('created_at', sa.DateTime, nullable=False),
        sa.Column('expires_at', sa.DateTime, nullable=True),
    )
    op.create_index('ix_tool_memory_dedup_key', 'tool_memory_entries', ['tenant_id', 'session_id', 'tool_name', 'input_hash'])
    op.create_index('ix_tool_memory_session_created', 'tool_memory_entries', ['tenant_id', 'session_id', 'created_at'])
    op.create_index('ix_tool_memory_expires_at', 'tool_memory_entries', ['expires_at'])


def downgrade():
    op.drop_index('ix_tool_memory_expires_at', table_name='tool_memory_entries')
    op.drop_index('ix_tool_memory_session_created', table_name='tool_memory_entries')
    op.drop_index('ix_tool_memory_dedup_key', table_name='tool_memory_entries')
    op.drop_table('tool_memory_entries')
