"""Role-based access checks for pages, company sections and actions.

These checks only decide what the client offers. Row-level policies on the
backend remain the actual authorization boundary.
"""

from __future__ import annotations

import logging
from enum import Enum

logger = logging.getLogger(__name__)


class Role(Enum):
    """Subscription tiers, lowest first."""

    FREEMIUM = "FREEMIUM"
    PREMIUM = "PREMIUM"
    ENTERPRISE = "ENTERPRISE"
    ADMIN = "ADMIN"

    @property
    def display_name(self) -> str:
        return self.value.capitalize()

    @property
    def description(self) -> str:
        return _DESCRIPTIONS[self]


class Section(Enum):
    """Company profile sections."""

    BASIC_INFO = "basic_info"
    ADDRESS_CONTACT = "address_contact"
    KEY_OFFICIALS = "key_officials"
    FINANCIAL_INFO = "financial_info"
    FINANCIAL_METRICS = "financial_metrics"
    FUNDING_INVESTMENTS = "funding_investments"
    REGULATORY_LEGAL = "regulatory_legal"
    NEWS_RELATIONSHIPS = "news_relationships"


class Action(Enum):
    """Company-level actions."""

    VIEW_COMPANY = "view_company"
    CREATE_COMPANY = "create_company"
    UPDATE_COMPANY = "update_company"
    DELETE_COMPANY = "delete_company"
    EXPORT_DATA = "export_data"
    USE_WATCHLIST = "use_watchlist"


_DESCRIPTIONS: dict[Role, str] = {
    Role.FREEMIUM: "Basic company information and contact details",
    Role.PREMIUM: "Basic info, contact, key officials, and financial data",
    Role.ENTERPRISE: "Full access to all company information",
    Role.ADMIN: (
        "Full access with ability to create, update, and delete company data"
    ),
}

_ALL_SECTIONS = frozenset(Section)

SECTION_PERMISSIONS: dict[Role, frozenset[Section]] = {
    Role.FREEMIUM: frozenset({Section.BASIC_INFO, Section.ADDRESS_CONTACT}),
    Role.PREMIUM: frozenset({
        Section.BASIC_INFO,
        Section.ADDRESS_CONTACT,
        Section.KEY_OFFICIALS,
        Section.FINANCIAL_INFO,
        Section.FINANCIAL_METRICS,
    }),
    Role.ENTERPRISE: _ALL_SECTIONS,
    Role.ADMIN: _ALL_SECTIONS,
}

ACTION_PERMISSIONS: dict[Role, frozenset[Action]] = {
    Role.FREEMIUM: frozenset({Action.VIEW_COMPANY, Action.USE_WATCHLIST}),
    Role.PREMIUM: frozenset({
        Action.VIEW_COMPANY, Action.EXPORT_DATA, Action.USE_WATCHLIST,
    }),
    Role.ENTERPRISE: frozenset({
        Action.VIEW_COMPANY, Action.EXPORT_DATA, Action.USE_WATCHLIST,
    }),
    Role.ADMIN: frozenset(Action),
}

# Company upload form step unlocked by each section
_SECTION_STEPS: dict[Section, int] = {
    Section.BASIC_INFO: 1,
    Section.ADDRESS_CONTACT: 2,
    Section.KEY_OFFICIALS: 3,
    Section.FINANCIAL_INFO: 4,
    Section.FINANCIAL_METRICS: 4,
    Section.FUNDING_INVESTMENTS: 5,
    Section.REGULATORY_LEGAL: 6,
    Section.NEWS_RELATIONSHIPS: 7,
}

_ANALYTICS_ROLES = frozenset({Role.ENTERPRISE, Role.ADMIN})


def normalize_role(value: object) -> Role:
    """Map a stored role string to a Role, case-insensitively.

    Missing or unknown values fall back to FREEMIUM.
    """
    if isinstance(value, Role):
        return value
    if not isinstance(value, str) or not value.strip():
        return Role.FREEMIUM
    try:
        return Role(value.strip().upper())
    except ValueError:
        logger.warning("Unknown role %r, treating as FREEMIUM", value)
        return Role.FREEMIUM


def is_valid_role(value: object) -> bool:
    return isinstance(value, str) and value in Role._value2member_map_


def has_section_access(role: object, section: Section) -> bool:
    return section in SECTION_PERMISSIONS[normalize_role(role)]


def has_action_access(role: object, action: Action) -> bool:
    return action in ACTION_PERMISSIONS[normalize_role(role)]


def can_modify_company_data(role: object) -> bool:
    return any(
        has_action_access(role, a)
        for a in (Action.CREATE_COMPANY, Action.UPDATE_COMPANY, Action.DELETE_COMPANY)
    )


def can_export_data(role: object) -> bool:
    return has_action_access(role, Action.EXPORT_DATA)


def can_view_market_analysis(role: object) -> bool:
    return normalize_role(role) in _ANALYTICS_ROLES


def can_compare_companies(role: object) -> bool:
    return normalize_role(role) in _ANALYTICS_ROLES


def can_manage_contact_messages(role: object) -> bool:
    return normalize_role(role) in _ANALYTICS_ROLES


def accessible_sections(role: object) -> list[Section]:
    """Sections the role may view, in profile order."""
    allowed = SECTION_PERMISSIONS[normalize_role(role)]
    return [s for s in Section if s in allowed]


def max_upload_step(role: object) -> int:
    """Highest company upload form step (1-7) the role may reach."""
    sections = SECTION_PERMISSIONS[normalize_role(role)]
    return max((_SECTION_STEPS[s] for s in sections), default=1)
