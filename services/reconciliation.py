# services/reconciliation.py
"""
Pure callback reconciliation.

Nothing here touches the database or the network: ``parse_callback`` turns a
gateway callback body into a ``CallbackResult`` and ``reconcile`` decides what
a payment in a given state becomes when that result arrives. The payment
service applies the decision with a guarded update.
"""
from dataclasses import dataclass, replace
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping, Optional

from models.payment import PaymentStatus

ACK = {"ResultCode": 0, "ResultDesc": "Success"}

SUCCESS_RESULT_CODE = 0


@dataclass(frozen=True)
class CallbackResult:
     checkout_request_id: str
     merchant_request_id: Optional[str]
     result_code: int
     result_desc: str
     receipt_number: Optional[str] = None
     amount: Optional[Decimal] = None
     phone_number: Optional[str] = None

     @property
     def success(self) -> bool:
          return self.result_code == SUCCESS_RESULT_CODE


@dataclass(frozen=True)
class PaymentState:
     status: PaymentStatus
     amount: Optional[Decimal] = None
     mpesa_receipt_number: Optional[str] = None
     settled_amount: Optional[Decimal] = None
     notes: Optional[str] = None


@dataclass(frozen=True)
class Outcome:
     """``new_state`` is None when the callback must not change the payment."""
     new_state: Optional[PaymentState]
     reason: str

     @property
     def changed(self) -> bool:
          return self.new_state is not None


def _metadata_items(callback: Mapping[str, Any]) -> dict:
     metadata = callback.get("CallbackMetadata") or {}
     if not isinstance(metadata, Mapping):
          raise ValueError("CallbackMetadata must be an object")
     items = metadata.get("Item") or []
     if not isinstance(items, list):
          raise ValueError("CallbackMetadata.Item must be a list")
     values = {}
     for item in items:
          if isinstance(item, Mapping) and "Name" in item:
               values[item["Name"]] = item.get("Value")
     return values


def _to_decimal(value: Any) -> Optional[Decimal]:
     if value is None:
          return None
     try:
          return Decimal(str(value))
     except InvalidOperation:
          raise ValueError(f"Invalid amount in callback: {value!r}")


def parse_callback(payload: Any) -> CallbackResult:
     """
     Extract the result from a gateway callback body.

     Accepts the Daraja envelope ``{"Body": {"stkCallback": {...}}}`` and the
     same object posted without the envelope.

     Raises:
          ValueError: If the body is not a callback or lacks the checkout
               request id or result code.
     """
     if not isinstance(payload, Mapping):
          raise ValueError("Callback body must be a JSON object")

     callback = payload
     body = payload.get("Body")
     if body is not None:
          if not isinstance(body, Mapping) or not isinstance(body.get("stkCallback"), Mapping):
               raise ValueError("Callback envelope is missing Body.stkCallback")
          callback = body["stkCallback"]

     checkout_request_id = callback.get("CheckoutRequestID")
     if not checkout_request_id:
          raise ValueError("Callback is missing CheckoutRequestID")
     if "ResultCode" not in callback:
          raise ValueError("Callback is missing ResultCode")
     try:
          result_code = int(callback["ResultCode"])
     except (TypeError, ValueError):
          raise ValueError(f"Invalid ResultCode: {callback['ResultCode']!r}")

     items = _metadata_items(callback) if result_code == SUCCESS_RESULT_CODE else {}
     receipt = items.get("MpesaReceiptNumber")
     phone = items.get("PhoneNumber")

     return CallbackResult(
          checkout_request_id=str(checkout_request_id),
          merchant_request_id=callback.get("MerchantRequestID"),
          result_code=result_code,
          result_desc=str(callback.get("ResultDesc") or ""),
          receipt_number=str(receipt) if receipt is not None else None,
          amount=_to_decimal(items.get("Amount")),
          phone_number=str(phone) if phone is not None else None,
     )


def _with_note(notes: Optional[str], note: str) -> str:
     return f"{notes}\n{note}" if notes else note


def reconcile(state: PaymentState, result: CallbackResult) -> Outcome:
     """
     Decide the effect of ``result`` on a payment in ``state``.

     Terminal payments never change, which is what makes repeated deliveries
     of the same callback harmless.
     """
     if state.status.is_terminal:
          return Outcome(None, f"payment already {state.status.value}")

     if not result.success:
          note = f"M-Pesa payment failed: {result.result_desc or f'result code {result.result_code}'}"
          return Outcome(
               replace(state, status=PaymentStatus.FAILED, notes=_with_note(state.notes, note)),
               "failed",
          )

     completed = "M-Pesa payment completed."
     if result.receipt_number:
          completed = f"{completed} Receipt: {result.receipt_number}"
     notes = _with_note(state.notes, completed)
     if (
          result.amount is not None
          and state.amount is not None
          and Decimal(result.amount) != Decimal(state.amount)
     ):
          notes = _with_note(notes, f"Settled amount {result.amount} differs from requested {state.amount}")

     return Outcome(
          replace(
               state,
               status=PaymentStatus.SUCCESSFUL,
               mpesa_receipt_number=result.receipt_number,
               settled_amount=result.amount,
               notes=notes,
          ),
          "successful",
     )
