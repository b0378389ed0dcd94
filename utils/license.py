"""License plans - which pipeline features each plan unlocks."""

from dataclasses import dataclass

FEATURE_MULTI_TENANCY = "multi-tenancy"
FEATURE_VCS_SQL_REVIEW = "vcs-sql-review"


@dataclass(frozen=True)
class PlanConfig:
    """Feature flags for a license plan."""

    plan: str
    display_name: str

    multi_tenancy: bool
    vcs_sql_review: bool

    @property
    def features(self) -> dict[str, bool]:
        return {
            FEATURE_MULTI_TENANCY: self.multi_tenancy,
            FEATURE_VCS_SQL_REVIEW: self.vcs_sql_review,
        }


PLANS: dict[str, PlanConfig] = {
    "free": PlanConfig(
        plan="free",
        display_name="Free",
        multi_tenancy=False,
        vcs_sql_review=True,
    ),
    "team": PlanConfig(
        plan="team",
        display_name="Team",
        multi_tenancy=False,
        vcs_sql_review=True,
    ),
    "enterprise": PlanConfig(
        plan="enterprise",
        display_name="Enterprise",
        multi_tenancy=True,
        vcs_sql_review=True,
    ),
}

# Lowest plan that enables each feature, used in error messages
_MINIMUM_PLAN = {
    FEATURE_MULTI_TENANCY: "enterprise",
    FEATURE_VCS_SQL_REVIEW: "free",
}


class LicenseService:
    """Answers feature checks for the configured plan."""

    def __init__(self, plan: str = "free"):
        if plan not in PLANS:
            raise ValueError(f"Unknown license plan: {plan}. Must be one of: {', '.join(PLANS)}")
        self.plan = PLANS[plan]

    def is_feature_enabled(self, feature: str) -> bool:
        return self.plan.features.get(feature, False)

    @staticmethod
    def access_error_message(feature: str) -> str:
        minimum = PLANS[_MINIMUM_PLAN.get(feature, "enterprise")]
        return f"{feature} is a {minimum.display_name} feature, please upgrade to access it."
