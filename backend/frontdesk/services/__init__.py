"""Allocation services."""

# Importing the notifier attaches its session hooks
from frontdesk.services.change_notifier import ChangeEvent, ChangeNotifier, notifier
from frontdesk.services.allocation_engine import AllocationEngine, ReleaseResult, TransitionResult
from frontdesk.services.booking_intake import BookingIntake, CustomerDetails, IntakeResult
from frontdesk.services.table_admin import TableAdmin
from frontdesk.services.restaurant_service import RestaurantService
from frontdesk.services.order_sessions import OrderSessionHooks
