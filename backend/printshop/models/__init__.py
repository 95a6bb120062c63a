from .catalog import ServiceCategory, Service, ServiceOption, Tier, TierFeature, TierDeliverable
from .quotes import Quote, QuoteAnswer
from .orders import Order, OrderChecklistItem, ProofVersion
from .scheduling import Booking, CapacitySetting, CapacityOverride, BlackoutDate
from .payments import Payment, Invoice
from .inventory import InventoryItem, MaterialConsumptionRule, InventoryTransaction
from .sla import SlaTimer, SlaBreach
from .events import DomainEvent, DocumentSequence

__all__ = [
    'ServiceCategory', 'Service', 'ServiceOption', 'Tier', 'TierFeature', 'TierDeliverable',
    'Quote', 'QuoteAnswer',
    'Order', 'OrderChecklistItem', 'ProofVersion',
    'Booking', 'CapacitySetting', 'CapacityOverride', 'BlackoutDate',
    'Payment', 'Invoice',
    'InventoryItem', 'MaterialConsumptionRule', 'InventoryTransaction',
    'SlaTimer', 'SlaBreach',
    'DomainEvent', 'DocumentSequence',
]
