# schemas/__init__.py
from .lease import (
     LeaseCreate,
     LeaseTerminate,
     LeaseResponse,
     LeaseListResponse,
     LeaseHistoryResponse,
     UnitLeaseHistoryResponse,
)
from .payment import (
     PaymentInitiateRequest,
     PaymentResponse,
     PaymentListResponse,
     PaymentStatusUpdate,
)

__all__ = [
     "LeaseCreate",
     "LeaseTerminate",
     "LeaseResponse",
     "LeaseListResponse",
     "LeaseHistoryResponse",
     "UnitLeaseHistoryResponse",
     "PaymentInitiateRequest",
     "PaymentResponse",
     "PaymentListResponse",
     "PaymentStatusUpdate",
]
