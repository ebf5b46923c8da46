from .user import User, UserRole, TeacherProfile, TeacherStatus
from .language import Language
from .availability_slot import AvailabilitySlot, SlotStatus
from .booking import Booking, BookingStatus
from .bundle import Bundle, StudentBundle, StudentBundleStatus
from .payment import Payment, PaymentStatus, PaymentProvider, RefundStatus
from .payout_request import PayoutRequest, PayoutStatus
from .referral import Referral, ReferralStatus
