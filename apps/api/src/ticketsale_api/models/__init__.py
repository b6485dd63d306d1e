"""SQLAlchemy models package."""

from .integration import WebhookIntegration  # noqa: F401
from .order_session import (  # noqa: F401
    InvalidReservationTransition,
    OrderSession,
    OrderSessionStatus,
    PointsReservationState,
)
from .points import PointsAccount, PointsLedgerEvent, PointsLedgerEventType  # noqa: F401
from .referral import ReferralClaim, ReferralClaimStatus, ReferralFirstPaidGate  # noqa: F401
from .tenant import Tenant, TenantGuild, TenantMember, TenantRole, TenantStatus  # noqa: F401
from .webhook_event import (  # noqa: F401
    WebhookEvent,
    WebhookEventStatus,
    WebhookProviderEnum,
)
