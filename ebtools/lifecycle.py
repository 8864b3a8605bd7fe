"""
Environment lifecycle reconciliation.

A deployment is driven through an explicit state machine:

    ABSENT  -> CREATING -> STABILIZING -> READY
    PRESENT -> UPDATING -> STABILIZING -> READY

CREATING and UPDATING end in SUBMITTED when the caller does not wait, and
every in-flight state can move to FAILED. Existence of the environment is the
only signal for create vs. update; every run uploads a new version.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional

from .aws import BeanstalkClient, EnvironmentState
from .errors import ElasticBeanstalkError, EBCode, ToolsError, CommonErrorCode
from .intent import DeploymentIntent

logger = logging.getLogger(__name__)

ArtifactBuilder = Callable[[Optional[str]], Path]


class LifecycleState(Enum):
    """Lifecycle states of one deployment run."""
    ABSENT = "absent"
    PRESENT = "present"
    CREATING = "creating"
    UPDATING = "updating"
    STABILIZING = "stabilizing"
    SUBMITTED = "submitted"
    READY = "ready"
    FAILED = "failed"


TRANSITIONS: Dict[LifecycleState, List[LifecycleState]] = {
    LifecycleState.ABSENT: [LifecycleState.CREATING, LifecycleState.FAILED],
    LifecycleState.PRESENT: [LifecycleState.UPDATING, LifecycleState.FAILED],
    LifecycleState.CREATING: [LifecycleState.STABILIZING, LifecycleState.SUBMITTED, LifecycleState.FAILED],
    LifecycleState.UPDATING: [LifecycleState.STABILIZING, LifecycleState.SUBMITTED, LifecycleState.FAILED],
    LifecycleState.STABILIZING: [LifecycleState.READY, LifecycleState.FAILED],
    LifecycleState.SUBMITTED: [],
    LifecycleState.READY: [],
    LifecycleState.FAILED: [],
}


def can_transition(current: LifecycleState, target: LifecycleState) -> bool:
    return target in TRANSITIONS.get(current, [])


def is_terminal(state: LifecycleState) -> bool:
    return not TRANSITIONS.get(state)


@dataclass
class DeploymentOutcome:
    """Result of a deployment run."""
    state: LifecycleState
    message: str
    environment_arn: Optional[str] = None
    endpoint: Optional[str] = None
    history: List[LifecycleState] = field(default_factory=list)

    @property
    def created(self) -> bool:
        return LifecycleState.CREATING in self.history


class EnvironmentLifecycleReconciler:
    """Creates or updates an environment and optionally waits for it to settle."""

    def __init__(
        self,
        client: BeanstalkClient,
        build_artifact: Optional[ArtifactBuilder] = None,
        poll_interval: float = 5.0,
        max_attempts: int = 720,
        sleep: Callable[[float], None] = time.sleep
    ):
        self.client = client
        self.build_artifact = build_artifact
        self.poll_interval = poll_interval
        self.max_attempts = max_attempts
        self.sleep = sleep
        self.state: Optional[LifecycleState] = None
        self.history: List[LifecycleState] = []
        self._start_date: Optional[datetime] = None

    def _enter(self, state: LifecycleState) -> None:
        if self.state is not None and not can_transition(self.state, state):
            raise RuntimeError(f"Illegal lifecycle transition {self.state.value} -> {state.value}")
        logger.debug(f"Lifecycle state: {state.value}")
        self.state = state
        self.history.append(state)

    def run(self, intent: DeploymentIntent) -> DeploymentOutcome:
        """
        Drive one deployment to READY, SUBMITTED or an error.

        Raises:
            ElasticBeanstalkError: Identifying the phase that failed
            ToolsError: If the bundle cannot be produced
        """
        self.state = None
        self.history = []

        application_exists = self.client.application_exists(intent.application)
        if application_exists:
            current = self.client.describe_environment(intent.application, intent.environment)
        else:
            current = EnvironmentState.absent(intent.environment)

        self._enter(LifecycleState.PRESENT if current.exists else LifecycleState.ABSENT)

        try:
            if self.state == LifecycleState.ABSENT:
                environment_arn = self._create(intent, application_exists)
            else:
                environment_arn = self._update(intent, current)

            if intent.wait:
                self._enter(LifecycleState.STABILIZING)
                final = self._stabilize(intent)
                self._enter(LifecycleState.READY)
            else:
                final = None
                self._enter(LifecycleState.SUBMITTED)
                logger.info("Environment update initiated")
        except ToolsError:
            self._enter(LifecycleState.FAILED)
            raise

        # New environments get their tags with CreateEnvironment.
        if current.exists and intent.tags and environment_arn:
            self.client.update_tags(environment_arn, intent.tags_request())

        if final is None:
            return self._outcome("request submitted", environment_arn)

        logger.info(f"Environment update complete: http://{final.endpoint}/")
        return self._outcome("Environment ready", environment_arn or final.arn, final.endpoint)

    def _outcome(self, message: str, arn: Optional[str], endpoint: Optional[str] = None) -> DeploymentOutcome:
        return DeploymentOutcome(self.state, message, arn, endpoint, list(self.history))

    def _artifact(self, intent: DeploymentIntent, solution_stack: Optional[str]) -> Path:
        if intent.package_path:
            return intent.package_path
        if self.build_artifact is None:
            raise ToolsError("No deployment package given and no way to build one", CommonErrorCode.MISSING_REQUIRED_PARAMETER)
        return self.build_artifact(solution_stack)

    def _upload_version(self, intent: DeploymentIntent, bundle: Path) -> None:
        source_bundle = self.client.upload_bundle(intent.application, intent.version_label, bundle)
        self.client.create_application_version(intent.application, intent.version_label, source_bundle)

    def _create(self, intent: DeploymentIntent, application_exists: bool) -> Optional[str]:
        self._enter(LifecycleState.CREATING)

        if not intent.solution_stack:
            raise ToolsError("Missing required parameter: --solution-stack", CommonErrorCode.MISSING_REQUIRED_PARAMETER)

        bundle = self._artifact(intent, intent.solution_stack)

        if not application_exists:
            self.client.create_application(intent.application)

        self._upload_version(intent, bundle)
        self._start_date = self.client.latest_event_date(intent.application, intent.environment)

        request = {
            "ApplicationName": intent.application,
            "EnvironmentName": intent.environment,
            "VersionLabel": intent.version_label,
            "SolutionStackName": intent.solution_stack,
            "OptionSettings": intent.create_settings_request(),
        }
        if intent.cname_prefix:
            request["CNAMEPrefix"] = intent.cname_prefix
        if intent.tags:
            request["Tags"] = intent.tags_request()

        logger.info(f"Creating environment {intent.environment}")
        return self.client.create_environment(request)

    def _update(self, intent: DeploymentIntent, current: EnvironmentState) -> Optional[str]:
        self._enter(LifecycleState.UPDATING)

        bundle = self._artifact(intent, intent.solution_stack or current.solution_stack)
        self._upload_version(intent, bundle)
        self._start_date = self.client.latest_event_date(intent.application, intent.environment)

        logger.info(f"Updating environment {intent.environment} to new application version")
        request = {
            "ApplicationName": intent.application,
            "EnvironmentName": intent.environment,
            "VersionLabel": intent.version_label,
        }
        settings = intent.update_settings_request()
        if settings:
            request["OptionSettings"] = settings

        return self.client.update_environment(request) or current.arn

    def _stabilize(self, intent: DeploymentIntent) -> EnvironmentState:
        """
        Poll until the environment leaves Launching/Updating.

        Raises:
            ElasticBeanstalkError: On failure events, termination, disappearance or timeout
        """
        logger.info("Waiting for environment update to complete")
        last_event_date: datetime = self._start_date
        failed = False

        for attempt in range(1, self.max_attempts + 1):
            self.sleep(self.poll_interval)

            state = self.client.describe_environment(intent.application, intent.environment)
            if state.status is None:
                raise ElasticBeanstalkError(
                    "Failed to find environment when waiting for deployment completion",
                    EBCode.FAILED_TO_FIND_ENVIRONMENT,
                )

            for event in self.client.events_since(intent.application, intent.environment, last_event_date):
                logger.info(f"{event.date.astimezone():%Y-%m-%d %H:%M:%S}    {event.severity}    {event.message}")
                failed = failed or event.is_failure
                last_event_date = event.date

            logger.debug(f"Attempt {attempt}: environment status {state.status}, health {state.health}")

            if state.terminated:
                raise ElasticBeanstalkError(
                    f"Environment {intent.environment} is {state.status}",
                    EBCode.FAILED_ENVIRONMENT_UPDATE,
                )

            if state.in_progress:
                continue

            if failed:
                raise ElasticBeanstalkError("Environment update failed", EBCode.FAILED_ENVIRONMENT_UPDATE)

            return state

        raise ElasticBeanstalkError(
            f"Environment {intent.environment} did not stabilize after {self.max_attempts} status checks",
            EBCode.FAILED_TO_STABILIZE_ENVIRONMENT,
        )
