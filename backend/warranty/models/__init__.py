from .barcodes import BarcodeGenerationBatch, WarrantyBarcode, BarcodeCollision
from .claims import WarrantyClaim, ClaimSequence, RepairTicket, ClaimTimelineEntry

__all__ = [
    'BarcodeGenerationBatch', 'WarrantyBarcode', 'BarcodeCollision',
    'WarrantyClaim', 'ClaimSequence', 'RepairTicket', 'ClaimTimelineEntry',
]
