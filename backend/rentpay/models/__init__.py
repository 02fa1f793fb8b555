from .auth import User, SessionToken
from .applications import Application
from .commission import CommissionRate, CommissionRateChange, ImmutableRecordError
from .payments import PaymentEntry
from .payouts import PayoutRequest
from .webhooks import WebhookEvent
from .audit import AuditEvent

__all__ = [
    'User', 'SessionToken',
    'Application',
    'CommissionRate', 'CommissionRateChange', 'ImmutableRecordError',
    'PaymentEntry',
    'PayoutRequest',
    'WebhookEvent',
    'AuditEvent',
]
