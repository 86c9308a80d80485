# models/__init__.py
from .base import Base
from .user import User, UserRole
from .property import Property
from .unit import Unit, UnitStatus
from .lease import Lease, LeaseStatus
from .lease_history import LeaseHistory, TenancyStatus
from .payment import Payment, PaymentMethod, PaymentStatus

__all__ = [
     "Base",
     "User",
     "UserRole",
     "Property",
     "Unit",
     "UnitStatus",
     "Lease",
     "LeaseStatus",
     "LeaseHistory",
     "TenancyStatus",
     "Payment",
     "PaymentStatus",
     "PaymentMethod",
]
