from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from email.utils import parseaddr
from html import unescape
from typing import Any

from itinerary_inbox.core.errors import IngressError

_JSON_TYPES = ("application/json",)
_FORM_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")


@dataclass(frozen=True)
class InboundEmail:
    sender: str
    recipient: str
    subject: str
    body: str


def normalize_payload(content_type: str | None, payload: Mapping[str, Any]) -> InboundEmail:
    """
    Map a webhook payload onto an `InboundEmail`.

    JSON carries {from, to|recipient, subject, text|html}; mail providers posting forms
    use {from, to, recipient, subject, text|body-plain, html|body-html}. The explicit
    recipient wins over `to`, and a plain-text body wins over HTML.
    """
    ctype = (content_type or "").split(";", 1)[0].strip().lower()
    if ctype in _JSON_TYPES:
        text_keys, html_keys = ("text",), ("html",)
    elif ctype in _FORM_TYPES:
        text_keys, html_keys = ("text", "body-plain"), ("html", "body-html")
    else:
        raise IngressError(f"Unsupported content type: {ctype or 'missing'}")

    recipient = _first(payload, "recipient", "to")
    body = _first(payload, *text_keys)
    if not body:
        html = _first(payload, *html_keys)
        body = html_to_text(html) if html else ""
    if not recipient or not body:
        raise IngressError("Missing recipient or body")

    return InboundEmail(
        sender=normalize_sender(_first(payload, "from")),
        recipient=recipient,
        subject=_first(payload, "subject"),
        body=body,
    )


def normalize_sender(value: str) -> str:
    """`"Delta <noreply@Delta.com>"` -> `noreply@delta.com`."""
    _, addr = parseaddr(value or "")
    return (addr or value or "").strip().lower()


def html_to_text(html: str) -> str:
    html = re.sub(r"(?is)<(script|style).*?>.*?</\1>", "", html)
    html = re.sub(r"(?i)<br\s*/?>", "\n", html)
    html = re.sub(r"(?i)</(p|tr|h[1-6])\s*>", "\n\n", html)
    html = re.sub(r"(?i)</(div|li|td)\s*>", "\n", html)
    html = re.sub(r"(?s)<[^>]+>", "", html)
    html = unescape(html)
    lines = [re.sub(r"\s+", " ", ln).strip() for ln in html.splitlines()]
    return "\n".join([ln for ln in lines if ln])


def _first(payload: Mapping[str, Any], *keys: str) -> str:
    for key in keys:
        value = payload.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""
