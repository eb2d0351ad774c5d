"""Initial data: an admin key plus one demo flag and experiment."""
from sqlalchemy.orm import Session

from flagkit.middleware.auth import create_api_key
from flagkit.models.api_key import ApiKey
from flagkit.schemas.experiment import ExperimentCreate, TrafficSplit, Variation
from flagkit.schemas.flag import FlagCreate
from flagkit.schemas.targeting import CountryRule, TargetingRules
from flagkit.services.experiments import ExperimentService
from flagkit.services.flags import FlagService

DEMO_PLATFORM = "web"
DEMO_ENVIRONMENT = "development"

DEMO_FLAG = FlagCreate(
    flag_key="new-checkout",
    name="New checkout",
    description="Gradual rollout of the redesigned checkout",
    enabled=True,
    flag_type="boolean",
    targeting=TargetingRules(countries=[CountryRule(country="DE", serve_value="A")]),
    rollout_enabled=True,
    rollout_percentage_a=20,
    rollout_percentage_b=80,
    created_by="seed"
)

DEMO_EXPERIMENT = ExperimentCreate(
    experiment_key="pricing-page-copy",
    name="Pricing page copy",
    hypothesis="Shorter copy increases plan upgrades",
    variations=[
        Variation(key="control", name="Current copy", value="long", is_control=True),
        Variation(key="concise", name="Concise copy", value="short")
    ],
    traffic_allocation=[
        TrafficSplit(variation_key="control", percentage=50),
        TrafficSplit(variation_key="concise", percentage=50)
    ],
    created_by="seed"
)


def is_seeded(db: Session) -> bool:
    return db.query(ApiKey).first() is not None


def seed_database(db: Session, admin_api_key: str) -> dict:
    """
    Create the admin key and demo entities.

    Returns:
        Summary of what was created
    """
    key = create_api_key(db, admin_api_key, name="admin")
    flag = FlagService(db).create(DEMO_PLATFORM, DEMO_ENVIRONMENT, DEMO_FLAG)
    experiment = ExperimentService(db).create(DEMO_PLATFORM, DEMO_ENVIRONMENT, DEMO_EXPERIMENT)

    return {
        "api_key_id": str(key.id),
        "platform": DEMO_PLATFORM,
        "environment": DEMO_ENVIRONMENT,
        "flag": flag.flag_key,
        "experiment": experiment.experiment_key
    }
