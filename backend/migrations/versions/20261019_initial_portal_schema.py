"""Initial fulfillment portal schema

Revision ID: 20261019_initial
Revises:
Create Date: 2026-10-19

Creates:
1. Tenancy and auth: clients, locations, users, session_tokens
2. Catalog: skus (partial unique on active client_sku), sku_aliases
3. Inventory: inventory_ledger (append-only), outbound shipments
4. Receiving: asn_headers, asn_lines, qc_photos, qc_inspections
5. Returns: shopify_returns, return_receipts, return_receipt_lines, criteria
6. Discrepancies
7. Platform integration: connections, oauth_states, processed_webhooks,
   webhook_delivery_logs, shopify_orders, inventory_sync_snapshots,
   sync_push_tasks, sync_logs
8. Security: security_events, rate_limits
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261019_initial'
down_revision = None
branch_labels = None
depends_on = None


def _ts(name, nullable=True, server_default=False):
    if server_default:
        return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable, server_default=sa.func.now())
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def upgrade():
    # ==========================================================================
    # 1. TENANCY AND AUTH
    # ==========================================================================
    op.create_table('clients',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='active'),
        sa.Column('contact_email', sa.String(length=255), nullable=True),
        _ts('created_at', nullable=False, server_default=True),
        _ts('updated_at', nullable=False, server_default=True),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_clients_code', 'clients', ['code'], unique=True)
    op.create_index('ix_clients_status', 'clients', ['status'])

    op.create_table('locations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('client_id', sa.Integer(), sa.ForeignKey('clients.id'), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('kind', sa.String(length=16), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        _ts('created_at', nullable=False, server_default=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('client_id', 'code', name='uq_locations_client_code'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_locations_client_id', 'locations', ['client_id'])
    op.create_index('ix_locations_client_kind', 'locations', ['client_id', 'kind'])

    op.create_table('users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('client_id', sa.Integer(), sa.ForeignKey('clients.id'), nullable=True),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('role', sa.String(length=16), nullable=False, server_default='client'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        _ts('created_at', nullable=False, server_default=True),
        _ts('last_login_at'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_users_client_id', 'users', ['client_id'])
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table('session_tokens',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('token_hash', sa.String(length=64), nullable=False),
        _ts('created_at', nullable=False, server_default=True),
        _ts('last_used_at'),
        _ts('expires_at', nullable=False),
        sa.Column('is_revoked', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('ip_address', sa.String(length=45), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_session_tokens_user_id', 'session_tokens', ['user_id'])
    op.create_index('ix_session_tokens_token_hash', 'session_tokens', ['token_hash'], unique=True)

    # ==========================================================================
    # 2. CATALOG
    # ==========================================================================
    op.create_table('skus',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('client_id', sa.Integer(), sa.ForeignKey('clients.id'), nullable=False),
        sa.Column('client_sku', sa.String(length=64), nullable=False),
        sa.Column('upc', sa.String(length=32), nullable=True),
        sa.Column('fnsku', sa.String(length=32), nullable=True),
        sa.Column('title', sa.String(length=255), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='active'),
        sa.Column('notes', sa.Text(), nullable=True),
        _ts('created_at', nullable=False, server_default=True),
        _ts('updated_at', nullable=False, server_default=True),
        _ts('deleted_at'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_skus_client_id', 'skus', ['client_id'])
    op.create_index('ix_skus_upc', 'skus', ['upc'])
    op.create_index('ix_skus_client_status', 'skus', ['client_id', 'status'])
    op.create_index(
        'uq_skus_client_sku_active', 'skus', ['client_id', 'client_sku'], unique=True,
        sqlite_where=sa.text("status = 'active'"),
        postgresql_where=sa.text("status = 'active'"),
    )

    op.create_table('sku_aliases',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sku_id', sa.Integer(), sa.ForeignKey('skus.id'), nullable=False),
        sa.Column('client_id', sa.Integer(), sa.ForeignKey('clients.id'), nullable=False),
        sa.Column('alias_type', sa.String(length=48), nullable=False),
        sa.Column('alias_value', sa.String(length=128), nullable=False),
        _ts('created_at', nullable=False, server_default=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sku_id', 'alias_type', 'alias_value', name='uq_sku_aliases_sku_type_value'),
        sa.UniqueConstraint('client_id', 'alias_type', 'alias_value', name='uq_sku_aliases_client_type_value'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_sku_aliases_sku_id', 'sku_aliases', ['sku_id'])
    op.create_index('ix_sku_aliases_client_id', 'sku_aliases', ['client_id'])
    op.create_index('ix_sku_aliases_type_value', 'sku_aliases', ['alias_type', 'alias_value'])

    # ==========================================================================
    # 3. INVENTORY
    # ==========================================================================
    op.create_table('inventory_ledger',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('client_id', sa.Integer(), sa.ForeignKey('clients.id'), nullable=False),
        sa.Column('sku_id', sa.Integer(), sa.ForeignKey('skus.id'), nullable=False),
        sa.Column('location_id', sa.Integer(), sa.ForeignKey('locations.id'), nullable=False),
        sa.Column('qty_delta', sa.Integer(), nullable=False),
        sa.Column('transaction_type', sa.String(length=32), nullable=False),
        sa.Column('reason_code', sa.String(length=64), nullable=True),
        sa.Column('source_type', sa.String(length=48), nullable=True),
        sa.Column('source_ref', sa.String(length=64), nullable=True),
        sa.Column('created_by', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        _ts('created_at', nullable=False, server_default=True),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('qty_delta <> 0', name='ck_inventory_ledger_nonzero'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_inventory_ledger_client_id', 'inventory_ledger', ['client_id'])
    op.create_index('ix_inventory_ledger_sku_id', 'inventory_ledger', ['sku_id'])
    op.create_index('ix_inventory_ledger_location_id', 'inventory_ledger', ['location_id'])
    op.create_index('ix_inventory_ledger_transaction_type', 'inventory_ledger', ['transaction_type'])
    op.create_index('ix_inventory_ledger_created_at', 'inventory_ledger', ['created_at'])
    op.create_index('ix_inventory_ledger_client_sku_location', 'inventory_ledger', ['client_id', 'sku_id', 'location_id'])
    op.create_index('ix_inventory_ledger_source', 'inventory_ledger', ['source_type', 'source_ref'])

    op.create_table('outbound_shipments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('client_id', sa.Integer(), sa.ForeignKey('clients.id'), nullable=False),
        sa.Column('shipment_number', sa.String(length=64), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('carrier', sa.String(length=64), nullable=True),
        sa.Column('tracking_number', sa.String(length=128), nullable=True),
        _ts('created_at', nullable=False, server_default=True),
        _ts('shipped_at'),
        _ts('cancelled_at'),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('client_id', 'shipment_number', name='uq_outbound_shipments_client_number'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_outbound_shipments_client_id', 'outbound_shipments', ['client_id'])
    op.create_index('ix_outbound_shipments_status', 'outbound_shipments', ['status'])

    op.create_table('outbound_shipment_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('shipment_id', sa.Integer(), sa.ForeignKey('outbound_shipments.id'), nullable=False),
        sa.Column('sku_id', sa.Integer(), sa.ForeignKey('skus.id'), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_outbound_shipment_lines_shipment_id', 'outbound_shipment_lines', ['shipment_id'])

    # ==========================================================================
    # 4. RECEIVING
    # ==========================================================================
    op.create_table('asn_headers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('client_id', sa.Integer(), sa.ForeignKey('clients.id'), nullable=False),
        sa.Column('asn_number', sa.String(length=64), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='not_received'),
        sa.Column('tracking_number', sa.String(length=128), nullable=True),
        sa.Column('carrier', sa.String(length=64), nullable=True),
        _ts('eta'),
        _ts('created_at', nullable=False, server_default=True),
        _ts('received_at'),
        _ts('closed_at'),
        _ts('resolved_at'),
        sa.Column('resolved_by', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('client_id', 'asn_number', name='uq_asn_headers_client_number'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_asn_headers_client_id', 'asn_headers', ['client_id'])
    op.create_index('ix_asn_headers_client_status', 'asn_headers', ['client_id', 'status'])

    op.create_table('asn_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('asn_id', sa.Integer(), sa.ForeignKey('asn_headers.id'), nullable=False),
        sa.Column('sku_id', sa.Integer(), sa.ForeignKey('skus.id'), nullable=False),
        sa.Column('expected_qty', sa.Integer(), nullable=False),
        sa.Column('received_qty', sa.Integer(), nullable=True),
        sa.Column('damaged_qty', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('quarantined_qty', sa.Integer(), nullable=False, server_default='0'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('asn_id', 'sku_id', name='uq_asn_lines_asn_sku'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_asn_lines_asn_id', 'asn_lines', ['asn_id'])
    op.create_index('ix_asn_lines_sku_id', 'asn_lines', ['sku_id'])

    # ==========================================================================
    # 5. RETURNS (before qc_photos, which may reference a return line)
    # ==========================================================================
    op.create_table('shopify_returns',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('client_id', sa.Integer(), sa.ForeignKey('clients.id'), nullable=False),
        sa.Column('shopify_return_id', sa.String(length=64), nullable=False),
        sa.Column('shopify_order_id', sa.String(length=64), nullable=True),
        sa.Column('order_number', sa.String(length=64), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='requested'),
        sa.Column('return_reason', sa.Text(), nullable=True),
        sa.Column('line_items', sa.JSON(), nullable=False),
        sa.Column('expected_qty', sa.Integer(), nullable=False, server_default='0'),
        _ts('created_at_shopify'),
        _ts('synced_at'),
        _ts('created_at', nullable=False, server_default=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('client_id', 'shopify_return_id', name='uq_shopify_returns_client_return'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_shopify_returns_client_id', 'shopify_returns', ['client_id'])

    op.create_table('return_receipts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('client_id', sa.Integer(), sa.ForeignKey('clients.id'), nullable=False),
        sa.Column('shopify_return_id', sa.Integer(), sa.ForeignKey('shopify_returns.id'), nullable=True),
        sa.Column('reference', sa.String(length=128), nullable=True),
        sa.Column('received_by', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        _ts('created_at', nullable=False, server_default=True),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_return_receipts_client_id', 'return_receipts', ['client_id'])
    op.create_index('ix_return_receipts_shopify_return_id', 'return_receipts', ['shopify_return_id'])

    op.create_table('return_receipt_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('receipt_id', sa.Integer(), sa.ForeignKey('return_receipts.id'), nullable=False),
        sa.Column('sku_id', sa.Integer(), sa.ForeignKey('skus.id'), nullable=False),
        sa.Column('expected_qty', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('received_qty', sa.Integer(), nullable=False),
        sa.Column('stage', sa.String(length=24), nullable=False, server_default='received'),
        sa.Column('findings', sa.JSON(), nullable=True),
        sa.Column('criteria_source', sa.String(length=16), nullable=True),
        sa.Column('inspection_notes', sa.Text(), nullable=True),
        sa.Column('ledger_entry_id', sa.Integer(), sa.ForeignKey('inventory_ledger.id'), nullable=True),
        sa.Column('discrepancy_id', sa.Integer(), nullable=True),
        _ts('created_at', nullable=False, server_default=True),
        _ts('inspected_at'),
        _ts('routed_at'),
        _ts('finalized_at'),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('ledger_entry_id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_return_receipt_lines_receipt_id', 'return_receipt_lines', ['receipt_id'])
    op.create_index('ix_return_receipt_lines_sku_id', 'return_receipt_lines', ['sku_id'])

    op.create_table('return_inspection_criteria',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('client_id', sa.Integer(), sa.ForeignKey('clients.id'), nullable=False),
        sa.Column('sku_id', sa.Integer(), sa.ForeignKey('skus.id'), nullable=False),
        sa.Column('checks', sa.JSON(), nullable=False),
        _ts('created_at', nullable=False, server_default=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('client_id', 'sku_id', name='uq_return_criteria_client_sku'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_return_inspection_criteria_client_id', 'return_inspection_criteria', ['client_id'])

    op.create_table('qc_photos',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('client_id', sa.Integer(), sa.ForeignKey('clients.id'), nullable=False),
        sa.Column('file_path', sa.String(length=512), nullable=False),
        sa.Column('asn_id', sa.Integer(), sa.ForeignKey('asn_headers.id'), nullable=True),
        sa.Column('asn_line_id', sa.Integer(), sa.ForeignKey('asn_lines.id'), nullable=True),
        sa.Column('return_line_id', sa.Integer(), sa.ForeignKey('return_receipt_lines.id'), nullable=True),
        sa.Column('uploaded_by', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        _ts('created_at', nullable=False, server_default=True),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_qc_photos_client_id', 'qc_photos', ['client_id'])
    op.create_index('ix_qc_photos_asn_id', 'qc_photos', ['asn_id'])
    op.create_index('ix_qc_photos_return_line_id', 'qc_photos', ['return_line_id'])
    op.create_index('ix_qc_photos_created_at', 'qc_photos', ['created_at'])

    op.create_table('qc_inspections',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('asn_line_id', sa.Integer(), sa.ForeignKey('asn_lines.id'), nullable=False),
        sa.Column('unit_number', sa.Integer(), nullable=False),
        sa.Column('outcome', sa.String(length=16), nullable=False),
        sa.Column('photo_id', sa.Integer(), sa.ForeignKey('qc_photos.id', ondelete='SET NULL'), nullable=True),
        sa.Column('inspected_by', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        _ts('created_at', nullable=False, server_default=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('asn_line_id', 'unit_number', name='uq_qc_inspections_line_unit'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_qc_inspections_asn_line_id', 'qc_inspections', ['asn_line_id'])

    # ==========================================================================
    # 6. DISCREPANCIES
    # ==========================================================================
    op.create_table('discrepancies',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('client_id', sa.Integer(), sa.ForeignKey('clients.id'), nullable=False),
        sa.Column('sku_id', sa.Integer(), sa.ForeignKey('skus.id'), nullable=False),
        sa.Column('asn_id', sa.Integer(), sa.ForeignKey('asn_headers.id'), nullable=True),
        sa.Column('return_line_id', sa.Integer(), sa.ForeignKey('return_receipt_lines.id'), nullable=True),
        sa.Column('discrepancy_type', sa.String(length=16), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('source_type', sa.String(length=16), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('decision', sa.String(length=32), nullable=True),
        sa.Column('client_notes', sa.Text(), nullable=True),
        sa.Column('admin_notes', sa.Text(), nullable=True),
        sa.Column('admin_close_notes', sa.Text(), nullable=True),
        sa.Column('qc_photo_urls', sa.JSON(), nullable=False),
        sa.Column('reopened_count', sa.Integer(), nullable=False, server_default='0'),
        _ts('created_at', nullable=False, server_default=True),
        _ts('submitted_at'),
        sa.Column('submitted_by', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        _ts('processed_at'),
        sa.Column('processed_by', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        _ts('admin_closed_at'),
        sa.Column('admin_closed_by', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('quantity > 0', name='ck_discrepancies_quantity_positive'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_discrepancies_client_id', 'discrepancies', ['client_id'])
    op.create_index('ix_discrepancies_sku_id', 'discrepancies', ['sku_id'])
    op.create_index('ix_discrepancies_client_status', 'discrepancies', ['client_id', 'status'])
    op.create_index('ix_discrepancies_asn_sku', 'discrepancies', ['asn_id', 'sku_id'])

    # ==========================================================================
    # 7. PLATFORM INTEGRATION
    # ==========================================================================
    op.create_table('shopify_store_connections',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('client_id', sa.Integer(), sa.ForeignKey('clients.id'), nullable=False),
        sa.Column('shop_domain', sa.String(length=255), nullable=False),
        sa.Column('access_token', sa.String(length=255), nullable=False),
        sa.Column('scope', sa.String(length=512), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('shopify_location_id', sa.String(length=64), nullable=True),
        _ts('connected_at'),
        _ts('disconnected_at'),
        _ts('last_synced_at'),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_shopify_store_connections_client_id', 'shopify_store_connections', ['client_id'])
    op.create_index('ix_shopify_store_connections_shop_domain', 'shopify_store_connections', ['shop_domain'], unique=True)

    op.create_table('oauth_states',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('state', sa.String(length=64), nullable=False),
        sa.Column('client_id', sa.Integer(), sa.ForeignKey('clients.id'), nullable=False),
        sa.Column('shop_domain', sa.String(length=255), nullable=False),
        _ts('created_at', nullable=False, server_default=True),
        _ts('expires_at', nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_oauth_states_state', 'oauth_states', ['state'], unique=True)
    op.create_index('ix_oauth_states_expires_at', 'oauth_states', ['expires_at'])

    op.create_table('processed_webhooks',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('client_id', sa.Integer(), sa.ForeignKey('clients.id'), nullable=False),
        sa.Column('webhook_id', sa.String(length=128), nullable=False),
        sa.Column('shop_domain', sa.String(length=255), nullable=True),
        sa.Column('topic', sa.String(length=64), nullable=False),
        _ts('processed_at', nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('client_id', 'webhook_id', name='uq_processed_webhooks_client_event'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_processed_webhooks_processed_at', 'processed_webhooks', ['processed_at'])

    op.create_table('webhook_delivery_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('client_id', sa.Integer(), sa.ForeignKey('clients.id'), nullable=True),
        sa.Column('shop_domain', sa.String(length=255), nullable=True),
        sa.Column('topic', sa.String(length=64), nullable=True),
        sa.Column('webhook_id', sa.String(length=128), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('processing_time_ms', sa.Integer(), nullable=True),
        _ts('created_at', nullable=False, server_default=True),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_webhook_delivery_logs_client_id', 'webhook_delivery_logs', ['client_id'])

    op.create_table('shopify_orders',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('client_id', sa.Integer(), sa.ForeignKey('clients.id'), nullable=False),
        sa.Column('shopify_order_id', sa.String(length=64), nullable=False),
        sa.Column('order_number', sa.String(length=64), nullable=True),
        sa.Column('financial_status', sa.String(length=32), nullable=True),
        sa.Column('fulfillment_status', sa.String(length=32), nullable=True),
        sa.Column('line_items', sa.JSON(), nullable=False),
        _ts('created_at_shopify'),
        _ts('synced_at'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('client_id', 'shopify_order_id', name='uq_shopify_orders_client_order'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_shopify_orders_client_id', 'shopify_orders', ['client_id'])

    op.create_table('inventory_sync_snapshots',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('client_id', sa.Integer(), sa.ForeignKey('clients.id'), nullable=False),
        sa.Column('sku_id', sa.Integer(), sa.ForeignKey('skus.id'), nullable=True),
        sa.Column('inventory_item_id', sa.String(length=64), nullable=False),
        sa.Column('shopify_quantity', sa.Integer(), nullable=False),
        sa.Column('local_quantity', sa.Integer(), nullable=True),
        sa.Column('drift', sa.Integer(), nullable=True),
        _ts('last_synced_at', nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('client_id', 'inventory_item_id', name='uq_inventory_snapshots_client_item'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_inventory_sync_snapshots_client_id', 'inventory_sync_snapshots', ['client_id'])

    op.create_table('sync_push_tasks',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('client_id', sa.Integer(), sa.ForeignKey('clients.id'), nullable=False),
        sa.Column('sku_id', sa.Integer(), sa.ForeignKey('skus.id'), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        _ts('next_attempt_at', nullable=False),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('reason', sa.String(length=64), nullable=True),
        _ts('claimed_at'),
        _ts('created_at', nullable=False, server_default=True),
        _ts('completed_at'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_sync_push_tasks_client_id', 'sync_push_tasks', ['client_id'])
    op.create_index('ix_sync_push_tasks_status_next', 'sync_push_tasks', ['status', 'next_attempt_at'])

    op.create_table('sync_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('client_id', sa.Integer(), sa.ForeignKey('clients.id'), nullable=False),
        sa.Column('sync_type', sa.String(length=32), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('items_processed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('duration_ms', sa.Integer(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('metadata_json', sa.JSON(), nullable=True),
        _ts('created_at', nullable=False, server_default=True),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_sync_logs_client_id', 'sync_logs', ['client_id'])

    # ==========================================================================
    # 8. SECURITY
    # ==========================================================================
    op.create_table('security_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('client_id', sa.Integer(), sa.ForeignKey('clients.id'), nullable=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('event_type', sa.String(length=48), nullable=False),
        sa.Column('success', sa.Boolean(), nullable=False),
        sa.Column('resource', sa.String(length=255), nullable=True),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('ip_address', sa.String(length=45), nullable=True),
        _ts('occurred_at', nullable=False, server_default=True),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_security_events_client_id', 'security_events', ['client_id'])
    op.create_index('ix_security_events_user_type', 'security_events', ['user_id', 'event_type'])
    op.create_index('ix_security_events_occurred', 'security_events', ['occurred_at'])

    op.create_table('rate_limits',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('rate_key', sa.String(length=100), nullable=False),
        sa.Column('client_ip', sa.String(length=45), nullable=False),
        _ts('window_start', nullable=False),
        sa.Column('request_count', sa.Integer(), nullable=False, server_default='1'),
        _ts('updated_at', nullable=False, server_default=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('rate_key', 'client_ip', name='uq_rate_limits_key_ip'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_rate_limits_rate_key', 'rate_limits', ['rate_key'])


def downgrade():
    for table in (
        'rate_limits',
        'security_events',
        'sync_logs',
        'sync_push_tasks',
        'inventory_sync_snapshots',
        'shopify_orders',
        'webhook_delivery_logs',
        'processed_webhooks',
        'oauth_states',
        'shopify_store_connections',
        'discrepancies',
        'qc_inspections',
        'qc_photos',
        'return_inspection_criteria',
        'return_receipt_lines',
        'return_receipts',
        'shopify_returns',
        'asn_lines',
        'asn_headers',
        'outbound_shipment_lines',
        'outbound_shipments',
        'inventory_ledger',
        'sku_aliases',
        'skus',
        'session_tokens',
        'users',
        'locations',
        'clients',
    ):
        op.drop_table(table)
