from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone, tzinfo
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP, getcontext
from enum import Enum
from typing import Any, Mapping, Optional, Sequence, Tuple, Union


# Configure a sane decimal precision for monetary calculations
getcontext().prec = 28

RECEIPT_SALE = "sale"
RECEIPT_RETURN = "return"

INVOICE_SIMPLIFIED = "simplified"
INVOICE_FULL = "full"

NANOS_PER_SECOND = 1_000_000_000

# 9999-12-30 00:00 UTC, so the date stays representable in any display zone
MAX_CREATED_NS = 253_402_128_000 * NANOS_PER_SECOND
MAX_AMOUNT = Decimal("1e20")


class PrintStatus(str, Enum):
    """Lifecycle of a single print request."""

    IDLE = "idle"
    PRINTING = "printing"
    SUCCESS = "success"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (PrintStatus.SUCCESS, PrintStatus.ERROR)


class FormattedDocument(str):
    """A complete, self-contained printable document.

    Produced once per print request and never mutated afterwards.
    """

    __slots__ = ()


@dataclass(frozen=True)
class LineItem:
    quantity: int
    description: str
    unit_price: Decimal
    total: Decimal


@dataclass(frozen=True)
class TaxBucket:
    rate: int
    base: Decimal
    amount: Decimal


@dataclass(frozen=True)
class SaleReceipt:
    order_number: str
    created_ns: int
    items: Tuple[LineItem, ...]
    subtotal: Decimal
    discount: Decimal
    total: Decimal
    tax_breakdown: Tuple[TaxBucket, ...] = ()
    payment_method: str = ""
    customer_notes: str = ""
    invoice_type: str = INVOICE_SIMPLIFIED
    # Only meaningful for full invoices
    customer_name: Optional[str] = None
    customer_tax_id: Optional[str] = None
    receipt_type: str = field(default=RECEIPT_SALE, init=False)

    @property
    def receipt_id(self) -> str:
        return self.order_number


@dataclass(frozen=True)
class ReturnReceipt:
    return_number: str
    created_ns: int
    items: Tuple[LineItem, ...]
    total: Decimal
    original_order_number: Optional[str] = None
    reason: Optional[str] = None
    receipt_type: str = field(default=RECEIPT_RETURN, init=False)

    @property
    def receipt_id(self) -> str:
        return self.return_number

    @property
    def subtotal(self) -> Decimal:
        # Returns carry no discount
        return self.total

    @property
    def discount(self) -> Decimal:
        return Decimal("0")


ReceiptInput = Union[SaleReceipt, ReturnReceipt]


@dataclass(frozen=True)
class StoreProfile:
    store_name: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    whatsapp: Optional[str] = None
    tax_id: Optional[str] = None
    email: Optional[str] = None
    website: Optional[str] = None


DEFAULT_STORE_PROFILE = StoreProfile(
    store_name="AFTAB STORE",
    address="C. ALBERTILLAS, 5, LOCAL, 29003 MÁLAGA",
    phone="952233833",
    whatsapp="695250655",
)


def resolve_store_profile(profile: Optional[StoreProfile]) -> StoreProfile:
    """Fill the identity fields of ``profile`` from the built-in store.

    Name, address, phone and WhatsApp always end up populated. Tax id,
    email and website have no default and stay empty when not supplied.
    """
    if profile is None:
        return DEFAULT_STORE_PROFILE
    return StoreProfile(
        store_name=profile.store_name or DEFAULT_STORE_PROFILE.store_name,
        address=profile.address or DEFAULT_STORE_PROFILE.address,
        phone=profile.phone or DEFAULT_STORE_PROFILE.phone,
        whatsapp=profile.whatsapp or DEFAULT_STORE_PROFILE.whatsapp,
        tax_id=profile.tax_id or None,
        email=profile.email or None,
        website=profile.website or None,
    )


def _quantize_money(value: Decimal) -> Decimal:
    """Quantize to two decimal places using HALF_UP."""
    return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def to_decimal(value: Any, field_name: str = "value") -> Decimal:
    if isinstance(value, bool) or value is None:
        raise ValueError(f"{field_name} must be a number")
    try:
        # str() keeps floats at their shortest repr instead of binary noise
        d = Decimal(value) if isinstance(value, (int, Decimal)) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValueError(f"{field_name} must be a number")
    if not d.is_finite():
        raise ValueError(f"{field_name} must be a finite number")
    if abs(d) >= MAX_AMOUNT:
        raise ValueError(f"{field_name} is out of range")
    return d


def format_currency(value: Any) -> str:
    """Format money as ``1234,50``: comma decimals, no symbol, no grouping."""
    amount = _quantize_money(to_decimal(value))
    if not amount:
        amount = abs(amount)
    return f"{amount:.2f}".replace(".", ",")


def format_timestamp(created_ns: int, tz: Optional[tzinfo] = None) -> Tuple[str, str]:
    """Render nanoseconds since epoch as (``DD/MM/YYYY``, ``HH:MM``)."""
    moment = datetime.fromtimestamp(created_ns // NANOS_PER_SECOND, tz or timezone.utc)
    return moment.strftime("%d/%m/%Y").upper(), moment.strftime("%H:%M").upper()


_PAYMENT_LABELS = {
    "cash": "CASH",
    "card": "CARD",
    "transfer": "TRANSFER",
}


def payment_method_label(method: Any) -> str:
    """Human label for a payment method.

    Accepts a plain string or a single-key variant mapping such as
    ``{"card": None}`` as sent by the order service.
    """
    if not method:
        return ""
    if isinstance(method, str):
        return _PAYMENT_LABELS.get(method.strip().lower(), method)
    if isinstance(method, Mapping):
        for key in _PAYMENT_LABELS:
            if key in method:
                return _PAYMENT_LABELS[key]
    return ""


def _get(payload: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in payload and payload[key] is not None:
            return payload[key]
    return default


def _optional_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _parse_timestamp(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError("createdDate must be an integer (nanoseconds)")
    if isinstance(value, int):
        created_ns = value
    # Big integers arrive as strings from JSON producers
    elif isinstance(value, str) and value.strip().isdigit():
        created_ns = int(value.strip())
    else:
        raise ValueError("createdDate must be an integer (nanoseconds)")
    if not 0 <= created_ns <= MAX_CREATED_NS:
        raise ValueError("createdDate is out of range")
    return created_ns


def _parse_items(raw: Any) -> Tuple[LineItem, ...]:
    if raw is None:
        return ()
    if not isinstance(raw, Sequence) or isinstance(raw, (str, bytes)):
        raise ValueError("items must be a list")
    items = []
    for i, entry in enumerate(raw):
        if not isinstance(entry, Mapping):
            raise ValueError(f"items[{i}] must be an object")
        try:
            quantity = int(_get(entry, "quantity", default=0))
        except (TypeError, ValueError):
            raise ValueError(f"items[{i}].quantity must be an integer")
        items.append(
            LineItem(
                quantity=quantity,
                description=str(_get(entry, "description", "name", default="")),
                unit_price=to_decimal(_get(entry, "unitPrice", "unit_price"), f"items[{i}].unitPrice"),
                total=to_decimal(_get(entry, "total", "lineTotal", "line_total"), f"items[{i}].total"),
            )
        )
    return tuple(items)


def _parse_tax_breakdown(raw: Any) -> Tuple[TaxBucket, ...]:
    if not raw:
        return ()
    if not isinstance(raw, Sequence) or isinstance(raw, (str, bytes)):
        raise ValueError("taxBreakdown must be a list")
    buckets = []
    for i, entry in enumerate(raw):
        if not isinstance(entry, Mapping):
            raise ValueError(f"taxBreakdown[{i}] must be an object")
        try:
            rate = int(_get(entry, "rate", default=0))
        except (TypeError, ValueError):
            raise ValueError(f"taxBreakdown[{i}].rate must be an integer")
        buckets.append(
            TaxBucket(
                rate=rate,
                base=to_decimal(_get(entry, "base", "baseImponible", "taxable_base"), f"taxBreakdown[{i}].base"),
                amount=to_decimal(_get(entry, "amount", "cuota", "tax_amount"), f"taxBreakdown[{i}].amount"),
            )
        )
    return tuple(buckets)


def parse_receipt(payload: Mapping[str, Any]) -> ReceiptInput:
    """Build a receipt from a JSON-like mapping.

    Both camelCase (as produced by the order service) and snake_case keys
    are accepted. Raises ValueError on structurally invalid payloads.
    """
    if not isinstance(payload, Mapping):
        raise ValueError("receipt must be an object")

    kind = str(_get(payload, "receiptType", "receipt_type", default="")).strip().lower()
    created_raw = _get(payload, "createdDate", "created_ns", "createdNs")
    if created_raw is None:
        raise ValueError("createdDate is required")
    created_ns = _parse_timestamp(created_raw)
    items = _parse_items(_get(payload, "items"))
    total = to_decimal(_get(payload, "total", default=0), "total")

    if kind == RECEIPT_RETURN:
        return_number = _optional_text(_get(payload, "returnNumber", "return_number"))
        if not return_number:
            raise ValueError("returnNumber is required for return receipts")
        return ReturnReceipt(
            return_number=return_number,
            created_ns=created_ns,
            items=items,
            total=total,
            original_order_number=_optional_text(
                _get(payload, "originalOrderNumber", "original_order_number")
            ),
            reason=_optional_text(_get(payload, "returnReason", "reason")),
        )

    # The order service calls sales "order"
    if kind in (RECEIPT_SALE, "order"):
        order_number = _optional_text(_get(payload, "orderNumber", "order_number"))
        if not order_number:
            raise ValueError("orderNumber is required for sale receipts")
        invoice_type = str(_get(payload, "invoiceType", "invoice_type", default=INVOICE_SIMPLIFIED)).strip().lower()
        if invoice_type not in (INVOICE_SIMPLIFIED, INVOICE_FULL):
            raise ValueError("invoiceType must be 'simplified' or 'full'")
        is_full = invoice_type == INVOICE_FULL
        return SaleReceipt(
            order_number=order_number,
            created_ns=created_ns,
            items=items,
            subtotal=to_decimal(_get(payload, "subtotal", default=total), "subtotal"),
            discount=to_decimal(_get(payload, "discount", default=0), "discount"),
            total=total,
            tax_breakdown=_parse_tax_breakdown(
                _get(payload, "taxBreakdown", "ivaBreakdown", "tax_breakdown")
            ),
            payment_method=payment_method_label(_get(payload, "paymentMethod", "payment_method")),
            customer_notes=str(_get(payload, "customerNotes", "customer_notes", default="")),
            invoice_type=invoice_type,
            customer_name=_optional_text(_get(payload, "customerName", "customer_name")) if is_full else None,
            customer_tax_id=_optional_text(_get(payload, "customerTaxId", "customer_tax_id")) if is_full else None,
        )

    raise ValueError("receiptType must be 'sale' or 'return'")


def parse_store_profile(payload: Optional[Mapping[str, Any]]) -> Optional[StoreProfile]:
    if payload is None:
        return None
    if not isinstance(payload, Mapping):
        raise ValueError("store profile must be an object")
    return StoreProfile(
        store_name=_optional_text(_get(payload, "storeName", "store_name")),
        address=_optional_text(_get(payload, "address")),
        phone=_optional_text(_get(payload, "phone")),
        whatsapp=_optional_text(_get(payload, "whatsapp")),
        tax_id=_optional_text(_get(payload, "taxId", "tax_id")),
        email=_optional_text(_get(payload, "email")),
        website=_optional_text(_get(payload, "website")),
    )


def store_profile_to_dict(profile: StoreProfile) -> dict:
    return {
        "storeName": profile.store_name,
        "address": profile.address,
        "phone": profile.phone,
        "whatsapp": profile.whatsapp,
        "taxId": profile.tax_id,
        "email": profile.email,
        "website": profile.website,
    }


def validate_receipt(receipt: Optional[ReceiptInput]) -> bool:
    """Completeness check used before printing."""
    if receipt is None:
        return False
    if not receipt.receipt_id:
        return False
    if not receipt.items:
        return False
    return True
