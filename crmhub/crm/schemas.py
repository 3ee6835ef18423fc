from __future__ import annotations

from datetime import date, datetime
from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class LeadStatus(StrEnum):
    NEW = "NEW"
    CONTACTED = "CONTACTED"
    QUALIFIED = "QUALIFIED"
    NOT_INTERESTED = "NOT_INTERESTED"
    CONVERTED = "CONVERTED"


class DealStatus(StrEnum):
    NEW_OPPORTUNITY = "NEW_OPPORTUNITY"
    MEETING_SCHEDULED = "MEETING_SCHEDULED"
    PROPOSAL_SENT = "PROPOSAL_SENT"
    NEGOTIATION = "NEGOTIATION"
    WON = "WON"
    LOST = "LOST"


DEAL_PIPELINE: tuple[DealStatus, ...] = tuple(DealStatus)
CLOSED_DEAL_STATUSES = frozenset({DealStatus.WON, DealStatus.LOST})


class PaymentStatus(StrEnum):
    PENDING = "PENDING"
    PARTIAL = "PARTIAL"
    PAID = "PAID"


class ProjectStatus(StrEnum):
    PLANNING = "PLANNING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    ON_HOLD = "ON_HOLD"
    ARCHIVED = "ARCHIVED"


class ProjectType(StrEnum):
    GENERAL = "GENERAL"
    WEB_DEVELOPMENT = "WEB_DEVELOPMENT"
    DIGITAL_MARKETING = "DIGITAL_MARKETING"


class TaskStatus(StrEnum):
    TODO = "TODO"
    IN_PROGRESS = "IN_PROGRESS"
    DONE = "DONE"


class TaskPriority(StrEnum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class InvoiceStatus(StrEnum):
    DRAFT = "DRAFT"
    SENT = "SENT"
    PAID = "PAID"
    OVERDUE = "OVERDUE"


class QuoteStatus(StrEnum):
    DRAFT = "DRAFT"
    SENT = "SENT"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"


class UserRole(StrEnum):
    ADMIN = "admin"
    MANAGER = "manager"
    SALES = "sales"
    TELESALES = "telesales"
    PROJECT_MANAGER = "pm"
    FINANCE = "finance"


class NotificationType(StrEnum):
    NEW_LEAD_ASSIGNED = "NEW_LEAD_ASSIGNED"
    DEAL_WON = "DEAL_WON"
    PROJECT_STATUS_CHANGED = "PROJECT_STATUS_CHANGED"
    INVOICE_OVERDUE = "INVOICE_OVERDUE"
    MEETING_REMINDER = "MEETING_REMINDER"
    MEETING_SCHEDULED = "MEETING_SCHEDULED"
    TASK_ASSIGNED = "TASK_ASSIGNED"
    TASK_DEADLINE_APPROACHING = "TASK_DEADLINE_APPROACHING"
    LEAD_STALE = "LEAD_STALE"
    DAILY_DIGEST_INACTIVE_LEADS = "DAILY_DIGEST_INACTIVE_LEADS"
    GENERAL_ERROR = "GENERAL_ERROR"


ALL_SCOPE = "ALL"

ActivityType = Literal["NOTE", "CALL", "EMAIL", "MEETING"]
DealLostReason = Literal["price", "competitor", "timeline", "scope", "unresponsive", "other"]
AccountStatus = Literal["Active", "Inactive"]


class CRMModel(BaseModel):
    """Base for client entities: snake_case attributes, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Activity(CRMModel):
    id: str
    type: ActivityType
    content: str
    user_id: str
    timestamp: datetime


class UserTargets(CRMModel):
    monthly_deals: int = 0
    monthly_calls: int = 0
    monthly_revenue: float = 0


class User(CRMModel):
    id: str = ""
    name: str
    email: str
    role: UserRole
    avatar_url: str = ""
    targets: UserTargets = Field(default_factory=UserTargets)
    office_location: str = ""
    is_active: bool = True
    scope: str = ALL_SCOPE
    group_id: str | None = None


class Group(CRMModel):
    id: str = ""
    name: str
    manager_id: str
    scope: str = ALL_SCOPE


class Lead(CRMModel):
    id: str = ""
    company_name: str
    contact_person: str = ""
    email: str = ""
    phone: str = ""
    source: str = ""
    status: LeadStatus = LeadStatus.NEW
    owner_id: str = ""
    services: list[str] = Field(default_factory=list)
    activity: list[Activity] = Field(default_factory=list)
    not_interested_reason: str | None = None
    last_updated_at: datetime
    scope: str = ""


class Account(CRMModel):
    id: str = ""
    name: str
    website: str | None = None
    industry: str | None = None
    status: AccountStatus = "Active"


class Deal(CRMModel):
    id: str = ""
    account_id: str | None = None
    title: str
    company_name: str = ""
    contact_person: str = ""
    contact_email: str = ""
    contact_phone: str = ""
    value: float = Field(default=0, ge=0)
    status: DealStatus = DealStatus.NEW_OPPORTUNITY
    source: str = ""
    next_meeting_date: date | None = None
    next_meeting_time: str | None = None
    google_meet_link: str | None = None
    payment_status: PaymentStatus = PaymentStatus.PENDING
    project_manager_id: str | None = None
    services: list[str] = Field(default_factory=list)
    activity: list[Activity] = Field(default_factory=list)
    owner_id: str = ""
    scope: str = ""
    lost_reason: DealLostReason | None = None
    lost_reason_details: str = ""
    notes: str = ""


class WebDevelopmentStages(CRMModel):
    analysis: bool = False
    design: bool = False
    programming: bool = False
    testing: bool = False
    launch: bool = False


class WebDevelopmentDetails(CRMModel):
    stages: WebDevelopmentStages = Field(default_factory=WebDevelopmentStages)


class MarketingDetails(CRMModel):
    platforms: str = ""
    campaign_duration_days: int = 30
    monthly_budget: float = 0


class Project(CRMModel):
    id: str = ""
    deal_id: str | None = None
    name: str
    client_name: str = ""
    project_manager_id: str | None = None
    status: ProjectStatus = ProjectStatus.PLANNING
    start_date: date
    services: list[str] = Field(default_factory=list)
    project_type: ProjectType = ProjectType.GENERAL
    description: str = ""
    development_details: WebDevelopmentDetails | None = None
    marketing_details: MarketingDetails | None = None
    scope: str = ""


class Task(CRMModel):
    id: str = ""
    project_id: str
    parent_id: str | None = None
    title: str
    assigned_to: list[str] = Field(default_factory=list)
    status: TaskStatus = TaskStatus.TODO
    start_date: date | None = None
    due_date: date | None = None
    priority: TaskPriority = TaskPriority.MEDIUM
    description: str = ""


class Invoice(CRMModel):
    id: str = ""
    client_name: str
    amount: float = 0
    status: InvoiceStatus = InvoiceStatus.DRAFT
    issue_date: date
    due_date: date
    description: str = ""
    project_id: str | None = None
    deal_id: str | None = None
    owner_id: str = ""
    scope: str = ""


class QuoteItem(CRMModel):
    id: str
    description: str = ""
    quantity: float = 1
    unit_price: float = 0


class Quote(CRMModel):
    id: str = ""
    quote_number: str = ""
    deal_id: str
    client_name: str = ""
    issue_date: date
    expiry_date: date
    status: QuoteStatus = QuoteStatus.DRAFT
    items: list[QuoteItem] = Field(default_factory=list)
    terms: str = ""
    subtotal: float = 0
    discount: float = 0
    tax: float = 0
    total: float = 0


class ActivityLogEntry(CRMModel):
    id: str = ""
    user_id: str
    user_name: str
    user_avatar: str = ""
    action: str
    timestamp: datetime


class Notification(CRMModel):
    id: str
    message: str
    type: NotificationType
    timestamp: datetime
    is_read: bool = False
