"""Evaluation entrypoint: resolve the active definition, decide, emit events."""
from datetime import datetime
from typing import List, Optional, Tuple
from sqlalchemy.orm import Session

from flagkit.core.experiments import decide_experiment, decide_experiments
from flagkit.core.flags import decide_flag, decide_flags
from flagkit.database import utcnow
from flagkit.schemas.evaluation import BatchEvaluation, ExperimentDecision, ExposureEvent, FlagDecision
from flagkit.schemas.targeting import UserContext
from flagkit.services.experiments import ExperimentService
from flagkit.services.flags import FlagService


def flag_event(platform: str, environment: str, decision: FlagDecision, context: UserContext) -> ExposureEvent:
    return ExposureEvent(
        type="flag_evaluation",
        platform=platform,
        environment=environment,
        key=decision.flag_key,
        variation_or_value=decision.served_value,
        user_id=context.user_id,
        country=context.country
    )


def experiment_event(
    platform: str,
    environment: str,
    decision: ExperimentDecision,
    context: UserContext
) -> Optional[ExposureEvent]:
    """Exposure for an assignment, or None when nothing should be recorded."""
    if not decision.record_exposure:
        return None
    return ExposureEvent(
        type="experiment_exposure",
        platform=platform,
        environment=environment,
        key=decision.experiment_key,
        variation_or_value=decision.variation_key,
        user_id=context.user_id,
        country=context.country
    )


class EvaluationService:
    """
    Decide flags and experiments for SDK callers.

    Every method returns the decision together with the exposure events it
    produced. Recording them is left to the caller so it can happen after
    the response is sent.
    """

    def __init__(self, db: Session):
        self.flags = FlagService(db)
        self.experiments = ExperimentService(db)

    def evaluate_flag(
        self,
        platform: str,
        environment: str,
        flag_key: str,
        context: UserContext
    ) -> Tuple[FlagDecision, List[ExposureEvent]]:
        """
        Raises:
            NotFoundError: If the flag has no active version
        """
        flag = self.flags.get_active(platform, environment, flag_key)
        decision = decide_flag(flag, context)
        return decision, [flag_event(platform, environment, decision, context)]

    def evaluate_experiment(
        self,
        platform: str,
        environment: str,
        experiment_key: str,
        context: UserContext,
        now: Optional[datetime] = None
    ) -> Tuple[ExperimentDecision, List[ExposureEvent]]:
        """
        Raises:
            NotFoundError: If the experiment has no active version
        """
        experiment = self.experiments.get_active(platform, environment, experiment_key)
        decision = decide_experiment(experiment, context, now or utcnow())
        event = experiment_event(platform, environment, decision, context)
        return decision, [event] if event else []

    def evaluate_all(
        self,
        platform: str,
        environment: str,
        context: UserContext,
        now: Optional[datetime] = None
    ) -> Tuple[BatchEvaluation, List[ExposureEvent]]:
        """Decide every active flag and every running experiment at once."""
        flag_decisions = decide_flags(self.flags.list_all_active(platform, environment), context)
        experiment_decisions = decide_experiments(
            self.experiments.list_running(platform, environment),
            context,
            now or utcnow()
        )

        events = [flag_event(platform, environment, d, context) for d in flag_decisions.values()]
        for decision in experiment_decisions.values():
            event = experiment_event(platform, environment, decision, context)
            if event:
                events.append(event)

        return BatchEvaluation(flags=flag_decisions, experiments=experiment_decisions), events
