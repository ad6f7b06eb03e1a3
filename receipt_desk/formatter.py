"""Receipt formatter: sale/return record -> printable document.

Everything here is pure. The timestamp comes from the receipt, the
display zone is an argument, and the same input always renders to the
same bytes, which is what lets the dispatcher retry delivery of a single
rendered document.
"""

from __future__ import annotations

import textwrap
from dataclasses import dataclass
from datetime import tzinfo
from decimal import Decimal
from pathlib import Path
from typing import List, Optional, Tuple

from jinja2 import Environment, FileSystemLoader, select_autoescape

from .core import (
    FormattedDocument,
    INVOICE_FULL,
    RECEIPT_RETURN,
    ReceiptInput,
    StoreProfile,
    format_currency,
    format_timestamp,
    resolve_store_profile,
)


TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"

CLOSING_LINES = (
    "THANK YOU FOR YOUR PURCHASE",
    "PLEASE KEEP YOUR RECEIPT",
)

_env = Environment(
    loader=FileSystemLoader(str(TEMPLATES_DIR)),
    autoescape=select_autoescape(["html"]),
    trim_blocks=True,
    lstrip_blocks=True,
)


@dataclass(frozen=True)
class ReceiptView:
    """Display-ready strings shared by the HTML and text renditions."""

    store_name: str
    store_address: str
    store_phone: str
    store_whatsapp: str
    store_extra_lines: Tuple[str, ...]
    label: str
    label_centered: bool
    date: str
    time: str
    receipt_id: str
    payment_label: str
    customer: Optional[Tuple[str, str]]
    reason: Optional[Tuple[str, Optional[str]]]
    items: Tuple[Tuple[str, str, str, str], ...]
    discount: Optional[str]
    total_label: str
    total_value: str
    tax_rows: Tuple[Tuple[str, str, str], ...]
    closing_lines: Tuple[str, ...] = CLOSING_LINES


def _upper(value: Optional[str]) -> str:
    return (value or "").upper()


def _store_lines(profile: StoreProfile) -> Tuple[str, ...]:
    lines = []
    if profile.tax_id:
        lines.append(f"TAX ID {profile.tax_id.upper()}")
    if profile.email:
        lines.append(profile.email.upper())
    if profile.website:
        lines.append(profile.website.upper())
    return tuple(lines)


def _tax_rows(receipt: ReceiptInput) -> Tuple[Tuple[str, str, str], ...]:
    buckets = getattr(receipt, "tax_breakdown", ())
    if not buckets:
        return ()
    rows = [(f"{b.rate}%", format_currency(b.base), format_currency(b.amount)) for b in buckets]
    # The summary row is always derived from the buckets
    total_base = sum((b.base for b in buckets), Decimal("0"))
    total_amount = sum((b.amount for b in buckets), Decimal("0"))
    rows.append(("TOTAL", format_currency(total_base), format_currency(total_amount)))
    return tuple(rows)


def build_view(
    receipt: ReceiptInput,
    profile: Optional[StoreProfile] = None,
    tz: Optional[tzinfo] = None,
) -> ReceiptView:
    store = resolve_store_profile(profile)
    date, time = format_timestamp(receipt.created_ns, tz)
    is_return = receipt.receipt_type == RECEIPT_RETURN

    customer = None
    reason = None
    payment_label = ""
    if is_return:
        label, centered = "RETURN RECEIPT", False
        if receipt.reason:
            reason = (receipt.reason.upper(), receipt.original_order_number)
    else:
        payment_label = _upper(receipt.payment_method)
        if receipt.invoice_type == INVOICE_FULL:
            label, centered = "INVOICE", True
            customer = (_upper(receipt.customer_name), _upper(receipt.customer_tax_id))
        else:
            label, centered = "SIMPLIFIED INVOICE", True

    items = tuple(
        (
            str(item.quantity),
            _upper(item.description),
            format_currency(item.unit_price),
            format_currency(item.total),
        )
        for item in receipt.items
    )

    discount = None
    if receipt.discount > 0:
        discount = f"-{format_currency(receipt.discount)}"

    return ReceiptView(
        store_name=_upper(store.store_name),
        store_address=_upper(store.address),
        store_phone=_upper(store.phone),
        store_whatsapp=_upper(store.whatsapp),
        store_extra_lines=_store_lines(store),
        label=label,
        label_centered=centered,
        date=date,
        time=time,
        receipt_id=receipt.receipt_id,
        payment_label=payment_label,
        customer=customer,
        reason=reason,
        items=items,
        discount=discount,
        total_label="REFUND" if is_return else "TOTAL",
        total_value=format_currency(receipt.total),
        tax_rows=_tax_rows(receipt),
    )


def format_receipt(
    receipt: ReceiptInput,
    profile: Optional[StoreProfile] = None,
    tz: Optional[tzinfo] = None,
) -> FormattedDocument:
    """Render the receipt as a complete HTML document sized for 80mm paper."""
    view = build_view(receipt, profile, tz)
    html = _env.get_template("receipt.html").render(view=view)
    return FormattedDocument(html)


def render_slip(
    receipt: ReceiptInput,
    profile: Optional[StoreProfile] = None,
    tz: Optional[tzinfo] = None,
    width: int = 42,
) -> str:
    """Fixed-width plain-text rendition of the same receipt."""
    view = build_view(receipt, profile, tz)
    lines: List[str] = []
    sep = "-" * width

    def row(label: str, value: str) -> None:
        room = width - len(label) - 1
        if len(value) <= room:
            lines.append(label + " " + value.rjust(room))
            return
        # Too long for one line: label alone, value wrapped flush right below
        lines.append(label)
        for part in textwrap.wrap(value, width):
            lines.append(part.rjust(width))

    def centered(text: str) -> None:
        for part in textwrap.wrap(text, width) or [""]:
            lines.append(part.center(width).rstrip())

    for text in (
        view.store_name,
        view.store_address,
        f"TEL {view.store_phone}",
        f"WHATSAPP {view.store_whatsapp}",
    ) + view.store_extra_lines:
        centered(text)
    lines.append(sep)

    lines.append(view.label.center(width).rstrip() if view.label_centered else view.label)
    row("DATE & TIME:", f"{view.date} {view.time}")
    row("RECEIPT ID:", view.receipt_id)
    if view.payment_label:
        row("PAYMENT METHOD:", view.payment_label)

    if view.customer is not None:
        row("NAME:", view.customer[0])
        row("TAX ID:", view.customer[1])
    if view.reason is not None:
        row("REASON:", view.reason[0])
        if view.reason[1]:
            row("ORIGINAL ORDER:", view.reason[1])
    lines.append(sep)

    # qty | description | unit | total
    money_width = 9
    desc_width = width - 4 - 2 * money_width
    lines.append("QTY " + "DESCRIPTION".ljust(desc_width) + "UNIT".rjust(money_width) + "AMOUNT".rjust(money_width))
    for qty, desc, unit, total in view.items:
        wrapped = textwrap.wrap(desc, desc_width - 1) or [""]
        lines.append(
            qty.ljust(4) + wrapped[0].ljust(desc_width) + unit.rjust(money_width) + total.rjust(money_width)
        )
        for extra in wrapped[1:]:
            lines.append("    " + extra)
    lines.append(sep)

    if view.discount is not None:
        lines.append(f"DISCOUNT: {view.discount}".rjust(width))
    lines.append(f"{view.total_label}: {view.total_value}".rjust(width))

    if view.tax_rows:
        lines.append(sep)
        col = (width - 6) // 2
        lines.append("TAX".ljust(6) + "BASE".rjust(col) + "TAX AMT".rjust(width - 6 - col))
        for rate, base, amount in view.tax_rows:
            lines.append(rate.ljust(6) + base.rjust(col) + amount.rjust(width - 6 - col))

    lines.append("")
    for text in view.closing_lines:
        centered(text)

    return "\n".join(lines)
