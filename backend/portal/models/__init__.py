from .tenancy import Client, Location
from .auth import User, SessionToken
from .catalog import Sku, SkuAlias
from .inventory import InventoryLedgerEntry, OutboundShipment, OutboundShipmentLine
from .receiving import AsnHeader, AsnLine, QcInspection, QcPhoto
from .discrepancies import Discrepancy
from .returns import ShopifyReturn, ReturnReceipt, ReturnReceiptLine, ReturnInspectionCriteria
from .integrations import (
    ShopifyStoreConnection,
    OAuthState,
    ProcessedWebhook,
    WebhookDeliveryLog,
    ShopifyOrder,
    InventorySyncSnapshot,
    SyncPushTask,
    SyncLog,
)
from .security import SecurityEvent, RateLimitEntry

__all__ = [
    'Client', 'Location',
    'User', 'SessionToken',
    'Sku', 'SkuAlias',
    'InventoryLedgerEntry', 'OutboundShipment', 'OutboundShipmentLine',
    'AsnHeader', 'AsnLine', 'QcInspection', 'QcPhoto',
    'Discrepancy',
    'ShopifyReturn', 'ReturnReceipt', 'ReturnReceiptLine', 'ReturnInspectionCriteria',
    'ShopifyStoreConnection', 'OAuthState', 'ProcessedWebhook', 'WebhookDeliveryLog',
    'ShopifyOrder', 'InventorySyncSnapshot', 'SyncPushTask', 'SyncLog',
    'SecurityEvent', 'RateLimitEntry',
]
