"""
Cheap checks that decide whether a scanned mailbox message is worth an extraction call.

Forwarded mail skips this: the user sent it on purpose.
"""

from __future__ import annotations

from email.utils import parseaddr

from itinerary_inbox.core.config import settings

KNOWN_TRAVEL_DOMAINS: frozenset[str] = frozenset(
    {
        # Airlines
        "delta.com", "united.com", "aa.com", "americanairlines.com", "southwest.com",
        "jetblue.com", "alaskaair.com", "spirit.com", "flyfrontier.com", "frontier.com",
        "hawaiianairlines.com", "allegiantair.com", "suncountry.com", "breeze.com",
        "aircanada.com", "westjet.com", "porterairlines.com",
        "britishairways.com", "lufthansa.com", "airfrance.com", "klm.com", "iberia.com",
        "vueling.com", "ryanair.com", "easyjet.com", "norwegian.com", "finnair.com",
        "sas.se", "swiss.com", "turkishairlines.com", "thy.com", "tap.pt",
        "aegeanair.com", "lot.com", "icelandair.com", "brusselsairlines.com",
        "emirates.com", "qatarairways.com", "etihad.com", "singaporeair.com",
        "cathaypacific.com", "ana.co.jp", "jal.co.jp", "koreanair.com", "asiana.com",
        "thaiairways.com", "vietnamairlines.com", "airchina.com", "csair.com",
        "qantas.com", "virginaustralia.com", "airnewzealand.co.nz",
        "latam.com", "avianca.com", "aeromexico.com", "copaair.com", "volaris.com",
        "vivaaerobus.com", "azul.com.br", "gol.com.br",
        # Hotels
        "marriott.com", "hilton.com", "ihg.com", "hyatt.com", "wyndhamhotels.com",
        "choicehotels.com", "bestwestern.com", "accor.com", "fourseasons.com",
        "ritzcarlton.com", "radissonhotels.com", "omnihotels.com", "loewshotels.com",
        "sonesta.com", "melia.com", "shangri-la.com", "mandarinoriental.com",
        "rosewoodhotels.com", "fairmont.com", "kempinski.com", "aman.com",
        # Booking platforms and rentals
        "booking.com", "expedia.com", "hotels.com", "priceline.com", "kayak.com",
        "orbitz.com", "travelocity.com", "hotwire.com", "tripadvisor.com", "agoda.com",
        "trip.com", "skyscanner.com", "kiwi.com", "travelport.com",
        "airbnb.com", "vrbo.com", "homeaway.com", "vacasa.com", "hipcamp.com",
        "hertz.com", "enterprise.com", "avis.com", "budget.com", "nationalcar.com",
        "alamo.com", "sixt.com", "europcar.com", "turo.com", "zipcar.com",
        "dollar.com", "thrifty.com",
        # Rail
        "amtrak.com", "eurostar.com", "thetrainline.com", "viarail.ca", "renfe.com",
        "trenitalia.com", "sncf.com", "bahn.de", "raileurope.com", "brightline.com",
        # Cruises and corporate travel
        "royalcaribbean.com", "carnival.com", "ncl.com", "princess.com",
        "hollandamerica.com", "celebritycruises.com", "vikingcruises.com",
        "msccruises.com", "disneycruise.com", "cunard.com",
        "concur.com", "egencia.com", "navan.com", "tripactions.com", "amexgbt.com",
        "cwt.com", "bcd.travel",
    }
)  # fmt: skip

TRAVEL_SUBJECT_KEYWORDS: tuple[str, ...] = (
    "flight confirmation",
    "travel confirmation",
    "hotel confirmation",
    "booking confirmation",
    "trip confirmation",
    "e-ticket",
    "boarding pass",
    "itinerary",
    "reservation confirmation",
    "car rental",
    "train ticket",
    "cruise confirmation",
    "hotel reservation",
    "flight itinerary",
    "travel itinerary",
)


def _sender_domain(sender: str | None) -> str:
    _name, addr = parseaddr(sender or "")
    _local, at, domain = addr.strip().lower().rpartition("@")
    return domain if at else ""


def is_known_travel_sender(sender: str | None) -> bool:
    """True for mail from a travel provider's domain or any of its subdomains."""
    domain = _sender_domain(sender)
    if not domain:
        return False
    known = KNOWN_TRAVEL_DOMAINS | {d.strip().lower() for d in settings.scan_extra_travel_domains}
    parts = domain.split(".")
    # email.delta.com -> delta.com; mail.ana.co.jp -> ana.co.jp
    candidates = {domain, ".".join(parts[-2:]), ".".join(parts[-3:])}
    return bool(candidates & known)


def has_travel_subject(subject: str | None) -> bool:
    lowered = (subject or "").lower()
    return any(keyword in lowered for keyword in TRAVEL_SUBJECT_KEYWORDS)


def looks_like_travel(*, sender: str | None, subject: str | None, body: str | None) -> bool:
    if is_known_travel_sender(sender):
        return True
    # A bare subject line (e.g. a forwarded stub with no content) is not enough.
    return has_travel_subject(subject) and len((body or "").strip()) > settings.scan_min_body_chars
