"""
mapping.py

This module turns the incoming event description into an immutable EventListing
and derives the per-field values that wizard steps type into target forms.
"""

import re
from dataclasses import dataclass, asdict
from datetime import date
from typing import Any, Dict, Mapping, Optional

from base_exceptions import ListingValidationError
from config_manager import TargetCredentials

# Payload key -> listing attribute. Keys on the left are the public JSON names.
PAYLOAD_FIELDS = {
    'title': 'title',
    'description': 'description',
    'date': 'date',
    'time': 'time',
    'venue': 'venue_name',
    'address': 'venue_address',
    'imageUrl': 'image_url',
    'eventUrl': 'canonical_url',
    'category': 'category',
}

REQUIRED_FIELDS = ('title', 'date')

DEFAULT_VALUES = {
    'description': '',
    'time': '20:00',
    'venue_name': 'Lieu à confirmer',
    'venue_address': 'Paris',
    'image_url': '',
    'canonical_url': 'https://hormur.com',
    'category': 'Concert',
}

TIME_PATTERN = re.compile(r'^([01]\d|2[0-3]):([0-5]\d)$')

BOOKING_NOTICE = "Réservations et informations : {url}"


@dataclass(frozen=True)
class EventListing:
    """One event to publish. Defaults are applied once, at ingestion."""
    title: str
    date: str
    description: str = DEFAULT_VALUES['description']
    time: str = DEFAULT_VALUES['time']
    venue_name: str = DEFAULT_VALUES['venue_name']
    venue_address: str = DEFAULT_VALUES['venue_address']
    image_url: str = DEFAULT_VALUES['image_url']
    canonical_url: str = DEFAULT_VALUES['canonical_url']
    category: str = DEFAULT_VALUES['category']

    def to_payload(self) -> Dict[str, str]:
        """Echo the listing back using the public JSON field names"""
        values = asdict(self)
        return {key: values[attr] for key, attr in PAYLOAD_FIELDS.items()}


def _clean(value: Any) -> str:
    if value is None:
        return ''
    return str(value).strip()


def listing_from_payload(payload: Mapping[str, Any]) -> EventListing:
    """
    Validate an event payload and build the listing.

    Raises:
        ListingValidationError: when ``title``/``date`` are missing, or when
            ``date`` is not an ISO date or ``time`` is not HH:MM.
    """
    if not isinstance(payload, Mapping):
        raise ListingValidationError(invalid=['body'])

    missing = [name for name in REQUIRED_FIELDS if not _clean(payload.get(name))]
    if missing:
        raise ListingValidationError(missing=missing)

    values = {}
    for key, attr in PAYLOAD_FIELDS.items():
        raw = _clean(payload.get(key))
        values[attr] = raw or DEFAULT_VALUES.get(attr, '')

    invalid = []
    try:
        date.fromisoformat(values['date'])
    except ValueError:
        invalid.append('date')
    if not TIME_PATTERN.match(values['time']):
        invalid.append('time')
    if invalid:
        raise ListingValidationError(invalid=invalid)

    return EventListing(**values)


def decorate_description(listing: EventListing) -> str:
    """Description with the canonical booking notice appended"""
    notice = BOOKING_NOTICE.format(url=listing.canonical_url)
    if not listing.description:
        return notice
    return f"{listing.description}\n\n{notice}"


def build_field_values(listing: EventListing, credentials: Optional[TargetCredentials] = None) -> Dict[str, str]:
    """
    Values available to wizard step value producers, keyed by producer name.
    """
    event_date = date.fromisoformat(listing.date)
    hour, minute = listing.time.split(':')
    credentials = credentials or TargetCredentials()

    return {
        'title': listing.title,
        'description': listing.description,
        'description_with_notice': decorate_description(listing),
        'date': listing.date,
        'date_fr': event_date.strftime('%d/%m/%Y'),
        'time': listing.time,
        'hour': hour,
        'minute': minute,
        'venue_name': listing.venue_name,
        'venue_address': listing.venue_address,
        'image_url': listing.image_url,
        'canonical_url': listing.canonical_url,
        'category': listing.category,
        'credentials.email': credentials.email,
        'credentials.password': credentials.password,
    }
