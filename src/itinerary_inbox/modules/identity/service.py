from __future__ import annotations

import re
import secrets
import string
from email.utils import getaddresses

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from itinerary_inbox.core.config import settings
from itinerary_inbox.core.errors import AddressResolutionError, UnknownTokenError
from itinerary_inbox.modules.identity.models import Profile

_TOKEN_RE = re.compile(r"^[a-z0-9][a-z0-9_-]{0,63}$")
_TOKEN_ALPHABET = string.ascii_lowercase + string.digits


def extract_forwarding_token(address: str | None) -> str:
    """
    Pull the per-user token out of a recipient header.

    `plans+k7m2x9pq@triptrack.ai` yields `k7m2x9pq`; a dedicated address such as
    `k7m2x9pq@triptrack.ai` yields its local part. The shared `plans@` inbox with no
    plus-suffix carries no token. When the header lists several recipients, addresses
    on the forwarding domain are considered first.
    """
    addresses = [addr.strip().lower() for _name, addr in getaddresses([address or ""])]
    addresses = [a for a in addresses if "@" in a]
    if not addresses:
        raise AddressResolutionError(f"No recipient address in {address!r}")

    domain = settings.forwarding_domain.strip().lower()
    ours = [a for a in addresses if domain and a.rpartition("@")[2] == domain]
    candidates = ours or addresses
    sentinel = settings.forwarding_sentinel.strip().lower()

    for addr in candidates:
        local = addr.rpartition("@")[0]
        if "+" in local:
            token = local.split("+", 1)[1]
            if _TOKEN_RE.match(token):
                return token

    for addr in candidates:
        local = addr.rpartition("@")[0]
        if "+" in local or local == sentinel:
            continue
        if _TOKEN_RE.match(local):
            return local

    raise AddressResolutionError(f"Could not find a forwarding token in {address!r}")


def resolve_profile(session: Session, *, token: str) -> Profile:
    profile = session.scalar(
        select(Profile).where(func.lower(Profile.forwarding_token) == token.strip().lower())
    )
    if not profile:
        raise UnknownTokenError("Unknown forwarding address")
    return profile


def get_profile(session: Session, *, profile_id) -> Profile | None:
    return session.scalar(select(Profile).where(Profile.id == profile_id))


def generate_forwarding_token(length: int | None = None) -> str:
    size = length or settings.forwarding_token_length
    return "".join(secrets.choice(_TOKEN_ALPHABET) for _ in range(size))


def create_profile(
    session: Session,
    *,
    email: str | None = None,
    full_name: str | None = None,
    forwarding_token: str | None = None,
    push_token: str | None = None,
) -> Profile:
    token = (forwarding_token or "").strip().lower()
    if not token:
        token = generate_forwarding_token()
        while session.scalar(select(Profile.id).where(Profile.forwarding_token == token)):
            token = generate_forwarding_token()

    profile = Profile(
        email=email,
        full_name=full_name,
        forwarding_token=token,
        push_token=push_token,
    )
    session.add(profile)
    session.commit()
    session.refresh(profile)
    return profile


def forwarding_address(profile: Profile) -> str:
    return f"{settings.forwarding_sentinel}+{profile.forwarding_token}@{settings.forwarding_domain}"
