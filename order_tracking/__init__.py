"""
Order lifecycle and payment reconciliation core for a laundry service.

Entry point: order_tracking.services.tracking.facade.OrderTrackingFacade
"""

__version__ = "1.0.0"
