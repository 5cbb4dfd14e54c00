"""
Team catalog: the eight staff teams and the permissions each role grants.

The catalog is immutable data built once at import time. Code that needs it
receives a TeamCatalog instance (see dependencies.get_catalog) rather than
reaching for a global, so tests can substitute their own definitions.
"""
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Iterable, Mapping

from app.features.teams.errors import InvalidRole, UnknownTeam


class TeamId(str, Enum):
    """Identifiers of the eight specialised teams."""
    SALES = "sales"
    CUSTOMER_SUPPORT = "customer_support"
    CONTENT_MODERATION = "content_moderation"
    TECHNICAL_OPERATIONS = "technical_operations"
    MARKETING = "marketing"
    FINANCE = "finance"
    PRODUCT = "product"
    EXECUTIVE = "executive"


class TeamRole(str, Enum):
    """Roles within a team."""
    MEMBER = "member"
    MANAGER = "manager"


class TeamAccessLevel(str, Enum):
    """Access level a user has on a team, for display."""
    NO_ACCESS = "no_access"
    MEMBER = "member"
    MANAGER = "manager"


@dataclass(frozen=True)
class TeamDefinition:
    """A team and the permission set granted to each of its roles."""
    id: TeamId
    name: str
    description: str
    responsibilities: tuple[str, ...] = ()
    member_permissions: frozenset[str] = field(default_factory=frozenset)
    manager_permissions: frozenset[str] = field(default_factory=frozenset)

    def permissions_for_role(self, role: TeamRole) -> frozenset[str]:
        # Manager sets are not assumed to extend member sets
        if role is TeamRole.MANAGER:
            return self.manager_permissions
        return self.member_permissions


def define_team(
    team_id: TeamId,
    name: str,
    description: str,
    responsibilities: Iterable[str],
    member_permissions: Iterable[str],
    manager_permissions: Iterable[str],
) -> TeamDefinition:
    """Build a TeamDefinition from plain iterables."""
    return TeamDefinition(
        id=team_id,
        name=name,
        description=description,
        responsibilities=tuple(responsibilities),
        member_permissions=frozenset(member_permissions),
        manager_permissions=frozenset(manager_permissions),
    )


def parse_team_id(value: Any) -> TeamId:
    """Coerce a raw value to a TeamId, raising UnknownTeam."""
    if isinstance(value, TeamId):
        return value
    try:
        return TeamId(value)
    except ValueError:
        raise UnknownTeam(value) from None


def parse_role(value: Any) -> TeamRole:
    """Coerce a raw value to a TeamRole, raising InvalidRole."""
    if isinstance(value, TeamRole):
        return value
    try:
        return TeamRole(value)
    except ValueError:
        raise InvalidRole(value) from None


class TeamCatalog:
    """
    Read-only table of team definitions.

    Holds exactly one definition per TeamId. Safe for concurrent reads; there
    is no way to mutate it after construction.
    """

    def __init__(self, definitions: Iterable[TeamDefinition]):
        table: dict[TeamId, TeamDefinition] = {}
        for definition in definitions:
            if definition.id in table:
                raise ValueError(f"Duplicate team definition: {definition.id.value}")
            table[definition.id] = definition

        missing = [team_id.value for team_id in TeamId if team_id not in table]
        if missing:
            raise ValueError(f"Team catalog is missing definitions for: {', '.join(missing)}")

        # Keep enum order regardless of the order definitions were given in
        self._definitions: Mapping[TeamId, TeamDefinition] = MappingProxyType(
            {team_id: table[team_id] for team_id in TeamId}
        )

    def get_team_definition(self, team_id: Any) -> TeamDefinition:
        return self._definitions[parse_team_id(team_id)]

    def is_valid_team_id(self, value: Any) -> bool:
        try:
            parse_team_id(value)
        except UnknownTeam:
            return False
        return True

    @staticmethod
    def is_valid_role(value: Any) -> bool:
        try:
            parse_role(value)
        except InvalidRole:
            return False
        return True

    def list_all_team_ids(self) -> tuple[TeamId, ...]:
        return tuple(self._definitions)

    def definitions(self) -> tuple[TeamDefinition, ...]:
        return tuple(self._definitions.values())

    def team_name(self, team_id: Any) -> str:
        return self.get_team_definition(team_id).name

    def __len__(self) -> int:
        return len(self._definitions)

    def __repr__(self) -> str:
        return f"<TeamCatalog(teams={len(self)})>"


# ============================================================================
# Default team definitions
# ============================================================================

DEFAULT_TEAM_DEFINITIONS: tuple[TeamDefinition, ...] = (
    define_team(
        TeamId.SALES,
        "Sales Team",
        "Handles sales activities, lead management, and customer acquisition",
        [
            "Manage sales leads and opportunities",
            "Contact potential customers",
            "Close deals and manage sales pipeline",
            "Track sales metrics and performance",
            "Coordinate with dealers and premium customers",
        ],
        member_permissions=[
            "view_leads", "respond_to_leads", "view_customer_info", "view_analytics",
            "view_sales_reports", "create_notes", "manage_own_leads",
        ],
        manager_permissions=[
            "view_leads", "respond_to_leads", "assign_leads", "view_customer_info",
            "view_all_leads", "view_analytics", "view_sales_reports", "manage_sales_pipeline",
            "create_notes", "manage_own_leads", "manage_team_leads", "view_team_performance",
        ],
    ),
    define_team(
        TeamId.CUSTOMER_SUPPORT,
        "Customer Support Team",
        "Provides customer assistance, handles inquiries, and resolves issues",
        [
            "Respond to customer inquiries",
            "Resolve customer issues and complaints",
            "Manage support tickets",
            "Provide technical assistance",
            "Escalate complex issues to appropriate teams",
        ],
        member_permissions=[
            "view_support_tickets", "respond_to_tickets", "view_customer_info", "view_user_profiles",
            "view_listings", "create_notes", "manage_own_tickets", "view_knowledge_base",
        ],
        manager_permissions=[
            "view_support_tickets", "respond_to_tickets", "assign_tickets", "view_customer_info",
            "view_user_profiles", "view_listings", "view_all_tickets", "manage_ticket_queue",
            "create_notes", "manage_own_tickets", "manage_team_tickets", "view_support_metrics",
            "edit_knowledge_base",
        ],
    ),
    define_team(
        TeamId.CONTENT_MODERATION,
        "Content Moderation Team",
        "Reviews and moderates user-generated content, enforces community standards",
        [
            "Review flagged listings",
            "Moderate user-generated content",
            "Enforce community guidelines",
            "Handle abuse reports",
            "Approve or reject listings",
            "Suspend or ban violating accounts",
        ],
        member_permissions=[
            "view_flagged_content", "review_listings", "approve_listings", "reject_listings",
            "view_reports", "create_moderation_notes", "view_user_profiles", "view_moderation_queue",
        ],
        manager_permissions=[
            "view_flagged_content", "review_listings", "approve_listings", "reject_listings",
            "delete_listings", "suspend_users", "ban_users", "view_reports",
            "assign_moderation_tasks", "create_moderation_notes", "view_user_profiles",
            "view_moderation_queue", "manage_moderation_queue", "view_moderation_metrics",
            "update_content_policies",
        ],
    ),
    define_team(
        TeamId.TECHNICAL_OPERATIONS,
        "Technical Operations Team",
        "Manages technical infrastructure, deployments, and system health",
        [
            "Monitor system health and performance",
            "Manage deployments and releases",
            "Handle technical incidents",
            "Maintain infrastructure",
            "Perform database operations",
            "Manage API integrations",
        ],
        member_permissions=[
            "view_system_metrics", "view_logs", "view_error_reports", "view_api_usage",
            "create_technical_notes", "view_infrastructure_status",
        ],
        manager_permissions=[
            "view_system_metrics", "view_logs", "view_error_reports", "view_api_usage",
            "manage_deployments", "manage_infrastructure", "perform_database_operations",
            "manage_api_keys", "create_technical_notes", "view_infrastructure_status",
            "manage_system_configuration", "access_production_console", "manage_backups",
        ],
    ),
    define_team(
        TeamId.MARKETING,
        "Marketing Team",
        "Manages marketing campaigns, content, and customer engagement",
        [
            "Create and manage marketing campaigns",
            "Manage email marketing",
            "Analyze marketing metrics",
            "Create promotional content",
            "Manage social media presence",
            "Coordinate with sales team",
        ],
        member_permissions=[
            "view_marketing_metrics", "view_customer_analytics", "create_campaigns",
            "view_email_campaigns", "view_promotional_content", "create_marketing_notes",
        ],
        manager_permissions=[
            "view_marketing_metrics", "view_customer_analytics", "create_campaigns",
            "manage_campaigns", "send_email_campaigns", "view_email_campaigns",
            "view_promotional_content", "create_promotional_content", "manage_promotional_content",
            "create_marketing_notes", "manage_marketing_budget", "view_roi_metrics",
            "manage_social_media",
        ],
    ),
    define_team(
        TeamId.FINANCE,
        "Finance Team",
        "Manages financial operations, billing, and revenue tracking",
        [
            "Process payments and refunds",
            "Manage subscriptions and billing",
            "Track revenue and financial metrics",
            "Handle invoicing",
            "Manage payment disputes",
            "Generate financial reports",
        ],
        member_permissions=[
            "view_transactions", "view_payment_info", "view_subscription_info",
            "view_financial_reports", "create_finance_notes", "view_invoices",
        ],
        manager_permissions=[
            "view_transactions", "view_payment_info", "view_subscription_info",
            "view_financial_reports", "process_refunds", "manage_subscriptions", "manage_billing",
            "create_invoices", "manage_payment_disputes", "create_finance_notes", "view_invoices",
            "manage_pricing", "view_revenue_metrics", "export_financial_data",
        ],
    ),
    define_team(
        TeamId.PRODUCT,
        "Product Team",
        "Manages product development, features, and user experience",
        [
            "Define product roadmap",
            "Manage feature development",
            "Analyze user feedback",
            "Conduct user research",
            "Prioritize product backlog",
            "Coordinate with technical team",
        ],
        member_permissions=[
            "view_product_metrics", "view_user_feedback", "view_feature_requests",
            "create_product_notes", "view_usage_analytics", "view_user_behavior",
        ],
        manager_permissions=[
            "view_product_metrics", "view_user_feedback", "view_feature_requests",
            "manage_feature_requests", "create_product_notes", "view_usage_analytics",
            "view_user_behavior", "manage_product_roadmap", "prioritize_features",
            "manage_product_releases", "conduct_user_research", "view_all_analytics",
        ],
    ),
    define_team(
        TeamId.EXECUTIVE,
        "Executive Team",
        "Leadership team with full system access and strategic oversight",
        [
            "Strategic planning and decision making",
            "Cross-functional oversight",
            "Company-wide policy setting",
            "Performance review and evaluation",
            "Budget and resource allocation",
            "Final escalation point",
        ],
        member_permissions=[
            "view_all_metrics", "view_all_reports", "view_all_analytics", "view_all_teams",
            "view_all_users", "view_financial_overview", "view_strategic_metrics",
            "create_executive_notes",
        ],
        manager_permissions=[
            "view_all_metrics", "view_all_reports", "view_all_analytics", "view_all_teams",
            "view_all_users", "view_financial_overview", "view_strategic_metrics",
            "manage_company_settings", "manage_all_teams", "manage_staff_roles",
            "access_all_systems", "override_policies", "create_executive_notes",
            "manage_budgets", "strategic_planning",
        ],
    ),
)

DEFAULT_CATALOG = TeamCatalog(DEFAULT_TEAM_DEFINITIONS)


# Permission groupings used by admin tooling to present long permission lists
PERMISSION_CATEGORIES: Mapping[str, frozenset[str]] = MappingProxyType({
    "viewing": frozenset({
        "view_leads", "view_support_tickets", "view_flagged_content", "view_system_metrics",
        "view_marketing_metrics", "view_transactions", "view_product_metrics", "view_all_metrics",
    }),
    "management": frozenset({
        "manage_sales_pipeline", "manage_ticket_queue", "manage_moderation_queue",
        "manage_deployments", "manage_campaigns", "manage_subscriptions",
        "manage_product_roadmap", "manage_company_settings",
    }),
    "actions": frozenset({
        "respond_to_leads", "respond_to_tickets", "approve_listings", "reject_listings",
        "send_email_campaigns", "process_refunds",
    }),
    "admin": frozenset({
        "manage_all_teams", "manage_staff_roles", "access_all_systems", "override_policies",
        "manage_budgets", "strategic_planning",
    }),
})


def readable_permission_name(permission: str) -> str:
    """view_all_leads -> View All Leads"""
    return " ".join(word.capitalize() for word in permission.split("_"))


# Module-level shortcuts against the default catalog

def get_team_definition(team_id: Any) -> TeamDefinition:
    return DEFAULT_CATALOG.get_team_definition(team_id)


def is_valid_team_id(value: Any) -> bool:
    return DEFAULT_CATALOG.is_valid_team_id(value)


def is_valid_role(value: Any) -> bool:
    return TeamCatalog.is_valid_role(value)


def list_all_team_ids() -> tuple[TeamId, ...]:
    return DEFAULT_CATALOG.list_all_team_ids()
