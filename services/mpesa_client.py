# services/mpesa_client.py
"""
M-Pesa (Safaricom Daraja) gateway client.

Responsibilities:
- Obtain the OAuth client-credentials bearer token and cache it per client
- Submit STK push (Lipa na M-Pesa Online) payment requests
- Sign / verify callback bodies

The token cache belongs to the client instance rather than the module, so each
client (one per application lifespan, or one per test) owns its credential
and drops it on close(). Concurrent callers that find the token stale share a
single refresh.
"""
import base64
import hashlib
import hmac
import logging
import os
import re
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Callable, Mapping, Optional, Tuple

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

import config
from errors import UpstreamUnavailableError, ValidationError

logger = logging.getLogger(__name__)

SANDBOX_BASE_URL = "https://sandbox.safaricom.co.ke"
PRODUCTION_BASE_URL = "https://api.safaricom.co.ke"
TOKEN_PATH = "/oauth/v1/generate?grant_type=client_credentials"
STK_PUSH_PATH = "/mpesa/stkpush/v1/processrequest"

SIGNATURE_HEADER = "X-Safaricom-Signature"
TOKEN_SAFETY_MARGIN_SECONDS = 300
DEFAULT_TOKEN_TTL_SECONDS = 3600

# Daraja field limits
ACCOUNT_REFERENCE_MAX = 12
TRANSACTION_DESC_MAX = 13

# Daraja timestamps are East Africa Time (UTC+3, no DST)
EAT = timezone(timedelta(hours=3))

_PHONE_RE = re.compile(r"^254[17]\d{8}$")


@dataclass(frozen=True)
class MpesaConfig:
     consumer_key: str
     consumer_secret: str
     shortcode: str
     passkey: str
     callback_url: str
     environment: str = "sandbox"
     webhook_secret: Optional[str] = None
     allow_unsigned_callbacks: bool = False
     timeout_seconds: float = 10.0
     token_max_retries: int = 3
     token_backoff_seconds: float = 0.5

     @property
     def base_url(self) -> str:
          return PRODUCTION_BASE_URL if self.environment == "production" else SANDBOX_BASE_URL

     @property
     def token_url(self) -> str:
          return f"{self.base_url}{TOKEN_PATH}"

     @property
     def stk_push_url(self) -> str:
          return f"{self.base_url}{STK_PUSH_PATH}"

     @classmethod
     def from_env(cls) -> "MpesaConfig":
          return cls(
               consumer_key=os.getenv("MPESA_CONSUMER_KEY", ""),
               consumer_secret=os.getenv("MPESA_CONSUMER_SECRET", ""),
               shortcode=os.getenv("MPESA_SHORTCODE", ""),
               passkey=os.getenv("MPESA_PASSKEY", ""),
               callback_url=os.getenv(
                    "MPESA_CALLBACK_URL",
                    f"{config.API_BASE_URL}/api/payments/mpesa/callback",
               ),
               environment=os.getenv("MPESA_ENV", "sandbox").lower(),
               webhook_secret=os.getenv("MPESA_WEBHOOK_SECRET") or None,
               allow_unsigned_callbacks=config.env_bool("MPESA_ALLOW_UNSIGNED_CALLBACKS"),
               timeout_seconds=config.env_float("MPESA_TIMEOUT_SECONDS", 10.0),
               token_max_retries=config.env_int("MPESA_TOKEN_MAX_RETRIES", 3),
               token_backoff_seconds=config.env_float("MPESA_TOKEN_BACKOFF_SECONDS", 0.5),
          )


@dataclass(frozen=True)
class StkPushResult:
     """Gateway acknowledgement of a push request. The ids correlate the later callback."""
     merchant_request_id: str
     checkout_request_id: str
     response_code: str
     response_description: str
     customer_message: str


class _Flight:
     """One in-progress token refresh that late callers wait on."""

     def __init__(self):
          self.done = threading.Event()
          self.token: Optional[str] = None
          self.error: Optional[BaseException] = None


class TokenCache:
     """
     Bearer token holder with single-flight refresh.

     ``get(fetch)`` returns the cached token while it has more than
     ``margin_seconds`` left. Otherwise the first caller runs ``fetch`` and
     every caller arriving during that refresh waits for its result (or its
     error) instead of starting another one.
     """

     def __init__(self, margin_seconds: float = TOKEN_SAFETY_MARGIN_SECONDS, clock: Callable[[], float] = time.monotonic):
          self._margin = margin_seconds
          self._clock = clock
          self._mutex = threading.Lock()
          self._state: Tuple[Optional[str], float] = (None, 0.0)
          self._flight: Optional[_Flight] = None

     def _fresh_token(self) -> Optional[str]:
          token, expires_at = self._state
          if token and expires_at - self._clock() > self._margin:
               return token
          return None

     def get(self, fetch: Callable[[], Tuple[str, float]]) -> str:
          """
          Return a usable token, refreshing through ``fetch`` if needed.

          Args:
               fetch: Returns (token, lifetime in seconds). Called at most once
                    per refresh, whatever the number of concurrent callers.
          """
          token = self._fresh_token()
          if token:
               return token

          with self._mutex:
               token = self._fresh_token()
               if token:
                    return token
               flight = self._flight
               leader = flight is None
               if leader:
                    flight = self._flight = _Flight()

          if not leader:
               flight.done.wait()
               if flight.error is not None:
                    raise UpstreamUnavailableError(str(flight.error)) from flight.error
               return flight.token

          try:
               token, lifetime = fetch()
               with self._mutex:
                    self._state = (token, self._clock() + lifetime)
               flight.token = token
               return token
          except BaseException as exc:
               flight.error = exc
               raise
          finally:
               with self._mutex:
                    self._flight = None
               flight.done.set()

     def invalidate(self) -> None:
          with self._mutex:
               self._state = (None, 0.0)


def normalize_phone_number(phone_number: str) -> str:
     """
     Normalize a Kenyan mobile number to the 2547XXXXXXXX / 2541XXXXXXXX form.

     Raises:
          ValidationError: If the number cannot be normalized.
     """
     digits = "".join(ch for ch in str(phone_number or "") if ch.isdigit())
     if len(digits) == 10 and digits.startswith("0"):
          digits = "254" + digits[1:]
     elif len(digits) == 9 and digits[0] in "17":
          digits = "254" + digits
     if not _PHONE_RE.match(digits):
          raise ValidationError(f"Invalid M-Pesa phone number: {phone_number}")
     return digits


def compute_signature(secret: str, raw_body: bytes) -> str:
     """Base64 HMAC-SHA256 of the raw callback body."""
     digest = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).digest()
     return base64.b64encode(digest).decode("ascii")


def verify_signature(secret: str, headers: Mapping[str, str], raw_body: bytes) -> bool:
     """Check the signature header against the body. Header lookup is case-insensitive."""
     provided = None
     for name, value in headers.items():
          if name.lower() == SIGNATURE_HEADER.lower():
               provided = value
               break
     if not provided:
          return False
     return hmac.compare_digest(compute_signature(secret, raw_body), provided.strip())


class MpesaClient:
     """
     Daraja API client.

     Usage:
          with MpesaClient(MpesaConfig.from_env()) as client:
               result = client.initiate_payment(25000, "254700000000", "A1", "Rent")
     """

     def __init__(
          self,
          config: MpesaConfig,
          session: Optional[requests.Session] = None,
          clock: Callable[[], float] = time.monotonic,
          token_cache: Optional[TokenCache] = None,
          now: Optional[Callable[[], datetime]] = None,
     ):
          self.config = config
          self.session = session or self._build_session(config)
          self.token_cache = token_cache or TokenCache(clock=clock)
          self._now = now or (lambda: datetime.now(EAT))

     @staticmethod
     def _build_session(config: MpesaConfig) -> requests.Session:
          # Only idempotent GETs (the token call) are retried; a push is never resent
          retry = Retry(
               total=config.token_max_retries,
               backoff_factor=config.token_backoff_seconds,
               status_forcelist=(429, 500, 502, 503, 504),
               allowed_methods=frozenset({"GET"}),
               raise_on_status=False,
          )
          adapter = HTTPAdapter(max_retries=retry)
          session = requests.Session()
          session.mount("https://", adapter)
          session.mount("http://", adapter)
          return session

     def close(self) -> None:
          self.token_cache.invalidate()
          self.session.close()

     def __enter__(self) -> "MpesaClient":
          return self

     def __exit__(self, exc_type, exc, tb) -> None:
          self.close()

     # ------------------------------------------------------------------
     # Auth
     # ------------------------------------------------------------------

     def _basic_auth_header(self) -> dict:
          auth = base64.b64encode(
               f"{self.config.consumer_key}:{self.config.consumer_secret}".encode()
          ).decode()
          return {"Authorization": f"Basic {auth}"}

     def _fetch_token(self) -> Tuple[str, float]:
          try:
               response = self.session.get(
                    self.config.token_url,
                    headers=self._basic_auth_header(),
                    timeout=self.config.timeout_seconds,
               )
          except requests.RequestException as exc:
               logger.error("Error getting M-Pesa access token: %s", exc)
               raise UpstreamUnavailableError("Failed to get M-Pesa access token") from exc

          if response.status_code != 200:
               logger.error("M-Pesa token endpoint returned %s: %s", response.status_code, response.text[:200])
               raise UpstreamUnavailableError(f"Failed to get M-Pesa access token (HTTP {response.status_code})")

          try:
               data = response.json()
          except ValueError as exc:
               raise UpstreamUnavailableError("M-Pesa token response was not JSON") from exc

          token = data.get("access_token") if isinstance(data, dict) else None
          if not token:
               raise UpstreamUnavailableError("No access token received from M-Pesa")

          try:
               lifetime = float(data.get("expires_in") or DEFAULT_TOKEN_TTL_SECONDS)
          except (TypeError, ValueError):
               lifetime = DEFAULT_TOKEN_TTL_SECONDS
          logger.info("M-Pesa access token refreshed (expires in %ss)", int(lifetime))
          return token, lifetime

     def get_access_token(self) -> str:
          """Cached bearer token; refreshed (once, for all waiting callers) when near expiry."""
          return self.token_cache.get(self._fetch_token)

     # ------------------------------------------------------------------
     # STK push
     # ------------------------------------------------------------------

     def timestamp(self) -> str:
          return self._now().strftime("%Y%m%d%H%M%S")

     def generate_password(self, timestamp: str) -> str:
          raw = f"{self.config.shortcode}{self.config.passkey}{timestamp}"
          return base64.b64encode(raw.encode()).decode()

     def build_stk_push_payload(
          self,
          amount: Decimal,
          phone_number: str,
          account_reference: str,
          description: str,
     ) -> dict:
          whole_amount = int(Decimal(str(amount)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
          if whole_amount < 1:
               raise ValidationError("M-Pesa amount must be at least 1")
          phone = normalize_phone_number(phone_number)
          timestamp = self.timestamp()
          return {
               "BusinessShortCode": self.config.shortcode,
               "Password": self.generate_password(timestamp),
               "Timestamp": timestamp,
               "TransactionType": "CustomerPayBillOnline",
               "Amount": whole_amount,
               "PartyA": phone,
               "PartyB": self.config.shortcode,
               "PhoneNumber": phone,
               "CallBackURL": self.config.callback_url,
               "AccountReference": account_reference[:ACCOUNT_REFERENCE_MAX],
               "TransactionDesc": description[:TRANSACTION_DESC_MAX],
          }

     def initiate_payment(
          self,
          amount: Decimal,
          phone_number: str,
          account_reference: str,
          description: str,
     ) -> StkPushResult:
          """
          Send an STK push to the payer's phone.

          Returns:
               StkPushResult with the merchant and checkout request ids that the
               gateway will echo in its callback.

          Raises:
               ValidationError: Amount or phone number unusable
               UpstreamUnavailableError: Token failure, network error, timeout,
                    or the gateway refused the request
          """
          payload = self.build_stk_push_payload(amount, phone_number, account_reference, description)
          token = self.get_access_token()

          try:
               response = self.session.post(
                    self.config.stk_push_url,
                    json=payload,
                    headers={
                         "Authorization": f"Bearer {token}",
                         "Content-Type": "application/json",
                    },
                    timeout=self.config.timeout_seconds,
               )
          except requests.Timeout as exc:
               logger.error("M-Pesa STK push timed out after %ss", self.config.timeout_seconds)
               raise UpstreamUnavailableError("M-Pesa STK push timed out") from exc
          except requests.RequestException as exc:
               logger.error("Error initiating STK push: %s", exc)
               raise UpstreamUnavailableError("Failed to initiate M-Pesa payment") from exc

          if response.status_code == 401:
               # Token revoked early; next call fetches a new one
               self.token_cache.invalidate()
          if response.status_code not in (200, 201):
               logger.error("M-Pesa STK push rejected (HTTP %s): %s", response.status_code, response.text[:200])
               raise UpstreamUnavailableError(f"M-Pesa STK push rejected (HTTP {response.status_code})")

          try:
               data = response.json()
          except ValueError as exc:
               raise UpstreamUnavailableError("M-Pesa STK push response was not JSON") from exc
          if not isinstance(data, dict):
               raise UpstreamUnavailableError("M-Pesa STK push response was not a JSON object")

          response_code = str(data.get("ResponseCode", ""))
          if response_code != "0":
               description = data.get("ResponseDescription") or data.get("errorMessage") or "unknown error"
               raise UpstreamUnavailableError(f"M-Pesa STK push not accepted: {description}")

          checkout_request_id = data.get("CheckoutRequestID")
          merchant_request_id = data.get("MerchantRequestID")
          if not checkout_request_id or not merchant_request_id:
               raise UpstreamUnavailableError("M-Pesa STK push response is missing request ids")

          logger.info("M-Pesa STK push accepted: checkout=%s merchant=%s", checkout_request_id, merchant_request_id)
          return StkPushResult(
               merchant_request_id=merchant_request_id,
               checkout_request_id=checkout_request_id,
               response_code=response_code,
               response_description=data.get("ResponseDescription", ""),
               customer_message=data.get("CustomerMessage", ""),
          )
