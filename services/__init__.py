from .lease_service import LeaseService
from .mpesa_client import (
     MpesaClient,
     MpesaConfig,
     StkPushResult,
     TokenCache,
     compute_signature,
     verify_signature,
)
from .reconciliation import ACK, CallbackResult, parse_callback, reconcile
from .payment_service import PaymentReconciler

__all__ = [
     "LeaseService",
     "MpesaClient",
     "MpesaConfig",
     "StkPushResult",
     "TokenCache",
     "compute_signature",
     "verify_signature",
     "ACK",
     "CallbackResult",
     "parse_callback",
     "reconcile",
     "PaymentReconciler",
]
