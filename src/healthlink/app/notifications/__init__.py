"""Patient notifications and access geolocation."""

from .dispatcher import DeliveryResult, NotificationDispatcher
from .geo import GeoLocator, IpGeoLocator, NullGeoLocator, client_ip
from .messages import AccessNotice, DeliveryNotice, format_location
from .senders import (
    EmailSender,
    LoggingEmailSender,
    LoggingSmsSender,
    SesEmailSender,
    SmsSender,
    TwilioSmsSender,
)

__all__ = [
    'AccessNotice',
    'DeliveryNotice',
    'DeliveryResult',
    'EmailSender',
    'GeoLocator',
    'IpGeoLocator',
    'LoggingEmailSender',
    'LoggingSmsSender',
    'NotificationDispatcher',
    'NullGeoLocator',
    'SesEmailSender',
    'SmsSender',
    'TwilioSmsSender',
    'client_ip',
    'format_location',
]
