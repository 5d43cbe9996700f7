"""Enum definitions for application constants."""

from enum import Enum


class Role(str, Enum):
    """
    Organization roles with increasing privilege levels.

    - MEMBER: Works contacts, pipelines, own mailboxes and follow-ups
    - MANAGER: Member + team-wide automation rules
    - ADMIN: Org settings, branding, billing, AI and ERP configuration
    - OWNER: Admin + organization ownership
    """
    MEMBER = "member"
    MANAGER = "manager"
    ADMIN = "admin"
    OWNER = "owner"

    @classmethod
    def has_value(cls, value: str) -> bool:
        """Check if value is a valid role."""
        return value in cls._value2member_map_


# Roles that can manage org settings (branding, AI, billing, integrations)
ROLES_CAN_MANAGE_SETTINGS = {Role.ADMIN, Role.OWNER}

# Roles that can manage follow-up automation rules
ROLES_CAN_MANAGE_AUTOMATION = {Role.MANAGER, Role.ADMIN, Role.OWNER}


# =============================================================================
# Pipelines
# =============================================================================

class OpportunityStatus(str, Enum):
    OPEN = "open"
    WON = "won"
    LOST = "lost"


class ActivityType(str, Enum):
    CREATED = "created"
    NOTE = "note"
    STAGE_CHANGE = "stage_change"
    STATUS_CHANGE = "status_change"
    CALL = "call"
    EMAIL = "email"
    MEETING = "meeting"


# =============================================================================
# Email
# =============================================================================

class EmailProvider(str, Enum):
    IMAP = "imap"
    MICROSOFT = "microsoft"
    GOOGLE = "google"


class ImapSecurity(str, Enum):
    SSL = "ssl"
    STARTTLS = "starttls"
    NONE = "none"


class EmailType(str, Enum):
    RECEIVED = "received"
    SENT = "sent"
    DRAFT = "draft"


class ProcessingStatus(str, Enum):
    PENDING = "pending"
    PROCESSED = "processed"
    ERROR = "error"


class AssignedAgent(str, Enum):
    """Agent queue an analysed email is routed to."""
    CUSTOMER = "customer"
    SALES = "sales"
    DISPUTE = "dispute"
    BILLING = "billing"
    AUTO_REPLY = "auto_reply"


class AgentPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


# =============================================================================
# Follow-ups
# =============================================================================

class FollowupStatus(str, Enum):
    """
    Follow-up lifecycle.

    pending/snoozed -> sent | completed | cancelled | snoozed
    sent -> completed | cancelled
    completed, cancelled: final
    """
    PENDING = "pending"
    SENT = "sent"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    SNOOZED = "snoozed"


FOLLOWUP_TRANSITIONS: dict[FollowupStatus, set[FollowupStatus]] = {
    FollowupStatus.PENDING: {
        FollowupStatus.SENT,
        FollowupStatus.COMPLETED,
        FollowupStatus.CANCELLED,
        FollowupStatus.SNOOZED,
    },
    FollowupStatus.SNOOZED: {
        FollowupStatus.SENT,
        FollowupStatus.COMPLETED,
        FollowupStatus.CANCELLED,
        FollowupStatus.SNOOZED,
    },
    FollowupStatus.SENT: {FollowupStatus.COMPLETED, FollowupStatus.CANCELLED},
    FollowupStatus.COMPLETED: set(),
    FollowupStatus.CANCELLED: set(),
}

# Statuses that still wait on the user
OPEN_FOLLOWUP_STATUSES = {FollowupStatus.PENDING, FollowupStatus.SNOOZED}


class FollowupType(str, Enum):
    MANUAL = "manual"
    AUTO = "auto"
    SCHEDULED = "scheduled"


class FollowupPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class ReminderType(str, Enum):
    NOTIFICATION = "notification"
    EMAIL = "email"
    DASHBOARD = "dashboard"


class ReminderStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
    CANCELLED = "cancelled"


class DraftTone(str, Enum):
    PROFESSIONAL = "professional"
    FRIENDLY = "friendly"
    URGENT = "urgent"
    CASUAL = "casual"


class DraftLength(str, Enum):
    SHORT = "short"
    MEDIUM = "medium"
    LONG = "long"


class ExecutionStatus(str, Enum):
    PENDING = "pending"
    GENERATING = "generating"
    AWAITING_APPROVAL = "awaiting_approval"
    APPROVED = "approved"
    REJECTED = "rejected"
    SENT = "sent"
    FAILED = "failed"
    SKIPPED = "skipped"


# =============================================================================
# Billing
# =============================================================================

class BillingInterval(str, Enum):
    MONTHLY = "monthly"
    YEARLY = "yearly"


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    CANCELED = "canceled"
    PAST_DUE = "past_due"
    TRIALING = "trialing"
    INCOMPLETE = "incomplete"


LIVE_SUBSCRIPTION_STATUSES = {
    SubscriptionStatus.ACTIVE,
    SubscriptionStatus.TRIALING,
    SubscriptionStatus.PAST_DUE,
    SubscriptionStatus.INCOMPLETE,
}


class InvoiceStatus(str, Enum):
    PAID = "paid"
    UNPAID = "unpaid"
    VOID = "void"


# =============================================================================
# Suppliers, products, ERP
# =============================================================================

class SupplierDocumentStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class SalesDocumentType(str, Enum):
    INVOICE = "invoice"
    OFFER = "offer"
    ORDER = "order"
    PROFORMA = "proforma"


class SalesDocumentStatus(str, Enum):
    DRAFT = "draft"
    CONFIRMED = "confirmed"
    PAID = "paid"
    CANCELED = "canceled"


class SyncStatus(str, Enum):
    SYNCED = "synced"
    ERROR = "error"


# =============================================================================
# Notifications & jobs
# =============================================================================

class NotificationType(str, Enum):
    FOLLOWUP_DUE = "followup_due"
    PAYMENT_FAILED = "payment_failed"
    SUBSCRIPTION_CHANGED = "subscription_changed"
    TRIAL_ENDING = "trial_ending"
    SYNC_FAILED = "sync_failed"


class JobType(str, Enum):
    """Types of background jobs."""
    EMAIL_SYNC = "email_sync"
    EMAIL_ANALYSIS = "email_analysis"
    FOLLOWUP_REMINDERS = "followup_reminders"
    FOLLOWUP_AUTOMATION = "followup_automation"
    METAKOCKA_SYNC = "metakocka_sync"


class JobStatus(str, Enum):
    """Background job status."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
