from dataclasses import dataclass, field
from typing import Any
import json

import requests
import structlog
from requests.auth import HTTPBasicAuth

from payflow.services.signature import SignedOperation, sign, verify as verify_signature

logger = structlog.get_logger(__name__)

SANDBOX_HOST = "https://sandbox.przelewy24.pl"
PRODUCTION_HOST = "https://secure.przelewy24.pl"


@dataclass(frozen=True)
class P24Config:
    merchant_id: int
    pos_id: int
    api_key: str            # REST API key (Basic auth password)
    crc: str                # CRC key, signs requests and notifications
    sandbox: bool = True
    timeout: int = 25

    @property
    def host(self) -> str:
        return SANDBOX_HOST if self.sandbox else PRODUCTION_HOST

    @property
    def api_url(self) -> str:
        return f"{self.host}/api/v1"

    def __repr__(self) -> str:
        return f"P24Config(merchant_id={self.merchant_id}, pos_id={self.pos_id}, sandbox={self.sandbox})"


class GatewayError(RuntimeError):
    """Non-2xx answer, transport failure or unusable body from Przelewy24.

    status_code is None when no HTTP response was received at all.
    """

    def __init__(self, message: str, status_code: int | None = None, raw_body: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.raw_body = raw_body


@dataclass
class RegisterResult:
    token: str
    request: dict
    raw: dict


@dataclass
class VerifyResult:
    verified: bool
    request: dict
    raw: dict


@dataclass
class RefundResult:
    accepted: bool
    request: dict
    raw: dict = field(default_factory=dict)


class P24Client:
    """Single-attempt Przelewy24 REST client.

    Every call is one attempt. Trying again needs a new session id (or refund
    request id) and a fresh signature, which is up to the caller.
    """

    def __init__(self, cfg: P24Config):
        self.cfg = cfg
        self._auth = HTTPBasicAuth(str(cfg.pos_id), cfg.api_key)

    def request(self, method: str, path: str, payload: dict | None = None) -> dict:
        payload = payload or {}
        body_bytes = json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
        url = f"{self.cfg.api_url}{path}"
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        try:
            r = requests.request(
                method=method.upper(), url=url, data=body_bytes, headers=headers,
                auth=self._auth, timeout=self.cfg.timeout,
            )
        except requests.RequestException as e:
            logger.warning("p24_transport_error", method=method.upper(), path=path, error=type(e).__name__)
            raise GatewayError(f"Przelewy24 unreachable: {type(e).__name__}") from e

        try:
            data = r.json() if r.text else {}
        except ValueError:
            data = None

        logger.info("p24_response", method=method.upper(), path=path, status=r.status_code)
        if r.status_code >= 400 or r.status_code < 200:
            raw = r.text if data is None else data
            raise GatewayError(f"Przelewy24 {r.status_code}: {raw}", status_code=r.status_code, raw_body=raw)
        if not isinstance(data, dict):
            raise GatewayError("Przelewy24 returned a malformed body", status_code=r.status_code, raw_body=r.text)
        return data

    def register(self, *, session_id: str, amount: int, currency: str, description: str, email: str,
                 url_return: str, url_status: str, client: str | None = None,
                 country: str = "PL", language: str = "pl") -> RegisterResult:
        payload = {
            "merchantId": self.cfg.merchant_id,
            "posId": self.cfg.pos_id,
            "sessionId": session_id,
            "amount": amount,
            "currency": currency,
            "description": description,
            "email": email,
            "country": country,
            "language": language,
            "urlReturn": url_return,
            "urlStatus": url_status,
        }
        if client:
            payload["client"] = client
        payload["sign"] = sign(SignedOperation.REGISTER, payload, self.cfg.crc)

        data = self.request("POST", "/transaction/register", payload)
        body = data.get("data")
        token = body.get("token") if isinstance(body, dict) else None
        if not token:
            raise GatewayError("Przelewy24 register response has no token", status_code=200, raw_body=data)
        return RegisterResult(token=str(token), request=payload, raw=data)

    def verify(self, *, session_id: str, order_id: int, amount: int, currency: str) -> VerifyResult:
        payload = {
            "merchantId": self.cfg.merchant_id,
            "posId": self.cfg.pos_id,
            "sessionId": session_id,
            "amount": amount,
            "currency": currency,
            "orderId": order_id,
        }
        payload["sign"] = sign(SignedOperation.VERIFY, payload, self.cfg.crc)

        data = self.request("PUT", "/transaction/verify", payload)
        body = data.get("data")
        if not isinstance(body, dict) or "status" not in body:
            raise GatewayError("Przelewy24 verify response has no status", status_code=200, raw_body=data)
        return VerifyResult(verified=str(body["status"]).lower() == "success", request=payload, raw=data)

    def refund(self, *, request_id: str, session_id: str, order_id: int, amount: int,
               description: str, url_status: str | None = None) -> RefundResult:
        payload: dict[str, Any] = {
            "requestId": request_id,
            "refunds": [{
                "orderId": order_id,
                "sessionId": session_id,
                "amount": amount,
                "description": description,
            }],
            "refundsUuid": request_id,
        }
        if url_status:
            payload["urlStatus"] = url_status
        payload["sign"] = sign(
            SignedOperation.REFUND,
            {"requestId": request_id, "sessionId": session_id, "orderId": order_id, "amount": amount},
            self.cfg.crc,
        )

        data = self.request("POST", "/transaction/refund", payload)
        entries = data.get("data")
        if not isinstance(entries, list):
            raise GatewayError("Przelewy24 refund response has no data list", status_code=200, raw_body=data)
        accepted = bool(entries) and all(isinstance(e, dict) and e.get("status") is True for e in entries)
        return RefundResult(accepted=accepted, request=payload, raw=data)

    def verify_notification(self, fields: dict) -> bool:
        return verify_signature(SignedOperation.NOTIFICATION, fields, fields.get("sign") or "", self.cfg.crc)

    def payment_url(self, token: str) -> str:
        return f"{self.cfg.host}/trnRequest/{token}"
