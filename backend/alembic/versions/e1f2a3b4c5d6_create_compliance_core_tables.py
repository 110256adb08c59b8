"""Create compliance core tables

Revision ID: e1f2a3b4c5d6
Revises:
Create Date: 2026-10-19 09:00:00.000000

Registry read models (organizations, products, assets, issuances),
regulatory reference data (regimes, requirement templates), requirement
instances with issuance snapshots, the append-only authorization history,
one-time authorization requests and idempotency records.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = 'e1f2a3b4c5d6'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ── Registry ──
    op.create_table(
        'organizations',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('country', sa.String(2), nullable=False),
        sa.Column('jurisdiction', sa.String(50), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )

    op.create_table(
        'products',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('organization_id', sa.String(36), sa.ForeignKey('organizations.id'), nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('asset_class', sa.String(10), nullable=False),
        sa.Column('target_markets', postgresql.JSONB(), nullable=False, server_default='[]'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_products_organization_id', 'products', ['organization_id'])

    op.create_table(
        'assets',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('product_id', sa.String(36), sa.ForeignKey('products.id'), nullable=False),
        sa.Column('code', sa.String(40), nullable=False),
        sa.Column('ledger', sa.String(20), nullable=False),
        sa.Column('network', sa.String(20), nullable=False, server_default='testnet'),
        sa.Column('status', sa.String(20), nullable=False, server_default='DRAFT'),
        sa.Column('compliance_mode', sa.String(20), nullable=False, server_default='RECORD_ONLY'),
        sa.Column('issuing_address', sa.String(100), nullable=True),
        sa.Column('distribution_type', sa.String(20), nullable=True),
        sa.Column('investor_audience', sa.String(20), nullable=True),
        sa.Column('is_casp_involved', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('transfer_type', sa.String(30), nullable=True),
        sa.Column('registry', postgresql.JSONB(), nullable=False, server_default='{}'),
        sa.Column('controls', postgresql.JSONB(), nullable=False, server_default='{}'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_assets_product_id', 'assets', ['product_id'])

    op.create_table(
        'issuances',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('asset_id', sa.String(36), sa.ForeignKey('assets.id'), nullable=False),
        sa.Column('amount', sa.String(50), nullable=False),
        sa.Column('holder_address', sa.String(100), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='PENDING'),
        sa.Column('tx_hash', sa.String(128), nullable=True),
        sa.Column('failure_code', sa.String(50), nullable=True),
        sa.Column('issuance_facts', postgresql.JSONB(), nullable=False, server_default='{}'),
        sa.Column('manifest_hash', sa.String(64), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('validated_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_issuances_asset_id', 'issuances', ['asset_id'])

    # ── Regulatory reference data ──
    op.create_table(
        'regimes',
        sa.Column('id', sa.String(64), primary_key=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('version', sa.String(20), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('effective_from', sa.DateTime(), nullable=False),
        sa.Column('effective_to', sa.DateTime(), nullable=True),
        sa.Column('details', postgresql.JSONB(), nullable=False, server_default='{}'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )

    op.create_table(
        'requirement_templates',
        sa.Column('id', sa.String(100), primary_key=True),
        sa.Column('code', sa.String(100), nullable=False),
        sa.Column('regime_id', sa.String(64), sa.ForeignKey('regimes.id'), nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('applicability_expr', sa.Text(), nullable=False),
        sa.Column('data_points', postgresql.JSONB(), nullable=False, server_default='[]'),
        sa.Column('enforcement_hints', postgresql.JSONB(), nullable=False, server_default='{}'),
        sa.Column('version', sa.String(20), nullable=False),
        sa.Column('effective_from', sa.DateTime(), nullable=False),
        sa.Column('effective_to', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_requirement_templates_code', 'requirement_templates', ['code'])
    op.create_index('ix_requirement_templates_regime_id', 'requirement_templates', ['regime_id'])
    op.create_index('ix_requirement_templates_code_from', 'requirement_templates', ['code', 'effective_from'])

    op.create_table(
        'requirement_instances',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('asset_id', sa.String(36), sa.ForeignKey('assets.id'), nullable=False),
        sa.Column('requirement_template_id', sa.String(100), sa.ForeignKey('requirement_templates.id'), nullable=False),
        sa.Column('issuance_id', sa.String(36), sa.ForeignKey('issuances.id'), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='REQUIRED'),
        sa.Column('rationale', sa.Text(), nullable=True),
        sa.Column('evidence_refs', postgresql.JSONB(), nullable=True),
        sa.Column('exception_reason', sa.Text(), nullable=True),
        sa.Column('verifier_id', sa.String(100), nullable=True),
        sa.Column('verified_at', sa.DateTime(), nullable=True),
        sa.Column('platform_acknowledged', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('platform_acknowledged_by', sa.String(100), nullable=True),
        sa.Column('platform_acknowledged_at', sa.DateTime(), nullable=True),
        sa.Column('platform_acknowledgement_reason', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_requirement_instances_asset_id', 'requirement_instances', ['asset_id'])
    op.create_index('ix_requirement_instances_requirement_template_id', 'requirement_instances', ['requirement_template_id'])
    op.create_index('ix_requirement_instances_issuance_id', 'requirement_instances', ['issuance_id'])
    op.create_index('ix_requirement_instances_created_at', 'requirement_instances', ['created_at'])
    op.create_index(
        'uq_requirement_instances_live', 'requirement_instances',
        ['asset_id', 'requirement_template_id'],
        unique=True,
        postgresql_where=sa.text('issuance_id IS NULL'),
    )

    # ── Authorization history + handoff ──
    op.create_table(
        'authorizations',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('tenant_id', sa.String(36), nullable=False),
        sa.Column('asset_id', sa.String(36), sa.ForeignKey('assets.id'), nullable=False),
        sa.Column('ledger', sa.String(40), nullable=False),
        sa.Column('currency', sa.String(40), nullable=False),
        sa.Column('holder_address', sa.String(100), nullable=False),
        sa.Column('limit', sa.String(50), nullable=False),
        sa.Column('status', sa.String(30), nullable=False),
        sa.Column('initiated_by', sa.String(10), nullable=False),
        sa.Column('tx_hash', sa.String(128), nullable=True),
        sa.Column('external', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('external_source', sa.String(50), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_authorizations_tenant_id', 'authorizations', ['tenant_id'])
    op.create_index('ix_authorizations_asset_id', 'authorizations', ['asset_id'])
    op.create_index(
        'ix_authorizations_asset_holder_created', 'authorizations',
        ['asset_id', 'holder_address', 'created_at'],
    )

    op.create_table(
        'authorization_requests',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('tenant_id', sa.String(36), nullable=False),
        sa.Column('asset_id', sa.String(36), sa.ForeignKey('assets.id'), nullable=False),
        sa.Column('holder_address', sa.String(100), nullable=False),
        sa.Column('requested_limit', sa.String(50), nullable=False),
        sa.Column('one_time_token_hash', sa.String(64), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='INVITED'),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('consumed_at', sa.DateTime(), nullable=True),
        sa.Column('consumed_tx_hash', sa.String(128), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_authorization_requests_tenant_id', 'authorization_requests', ['tenant_id'])
    op.create_index('ix_authorization_requests_asset_id', 'authorization_requests', ['asset_id'])
    op.create_index('ix_authorization_requests_status', 'authorization_requests', ['status'])
    op.create_index(
        'ix_authorization_requests_one_time_token_hash', 'authorization_requests',
        ['one_time_token_hash'], unique=True,
    )

    op.create_table(
        'idempotency_records',
        sa.Column('key', sa.String(64), primary_key=True),
        sa.Column('operation', sa.String(100), nullable=True),
        sa.Column('result', postgresql.JSONB(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_idempotency_records_expires_at', 'idempotency_records', ['expires_at'])


def downgrade() -> None:
    op.drop_table('idempotency_records')
    op.drop_table('authorization_requests')
    op.drop_table('authorizations')
    op.drop_table('requirement_instances')
    op.drop_table('requirement_templates')
    op.drop_table('regimes')
    op.drop_table('issuances')
    op.drop_table('assets')
    op.drop_table('products')
    op.drop_table('organizations')
