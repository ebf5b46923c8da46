from .checkout import CheckoutHandle, CheckoutRequest
from .slot import AvailabilitySlot, AvailabilitySlotCreate
from .booking import Booking, BookingCheckout, BookingCreate, RescheduleDecision, RescheduleRequest
from .bundle import Bundle, BundleCheckout, BundlePurchase, StudentBundle
from .payment import Payment, PayPalCapture, RefundRequest
from .payout import Earnings, PayoutCreate, PayoutDecision, PayoutRequest
