from inbound.models.catalog import (
    Product,
    Vendor,
    Warehouse,
    Location,
    LocationType,
    LocationStatus,
    Carrier,
    Dock,
    DockStatus,
)
from inbound.models.purchase import PurchaseOrder, PurchaseOrderLine, POStatus
from inbound.models.asn import AdvanceShipNotice, ASNLine, ASNStatus
from inbound.models.receipt import Receipt, ReceiptLine, ReceiptStatus, ReceiptType
from inbound.models.inventory import InventoryLedgerEntry, LedgerReason
from inbound.models.document_sequence import DocumentSequence, DocumentType
from inbound.models.idempotency import IdempotencyRecord

__all__ = [
    # Catalog
    "Product",
    "Vendor",
    "Warehouse",
    "Location",
    "LocationType",
    "LocationStatus",
    "Carrier",
    "Dock",
    "DockStatus",
    # Purchase
    "PurchaseOrder",
    "PurchaseOrderLine",
    "POStatus",
    # ASN
    "AdvanceShipNotice",
    "ASNLine",
    "ASNStatus",
    # Receiving
    "Receipt",
    "ReceiptLine",
    "ReceiptStatus",
    "ReceiptType",
    # Inventory
    "InventoryLedgerEntry",
    "LedgerReason",
    # Infrastructure
    "DocumentSequence",
    "DocumentType",
    "IdempotencyRecord",
]
