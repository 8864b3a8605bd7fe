"""
Tests for environment lifecycle reconciliation.
"""

from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import Mock

import pytest

from ebtools.aws import EnvironmentEvent, EnvironmentState
from ebtools.errors import ElasticBeanstalkError, EBCode, ToolsError, CommonErrorCode
from ebtools.intent import DeploymentIntent, OptionSetting
from ebtools.lifecycle import (
    EnvironmentLifecycleReconciler, LifecycleState, TRANSITIONS, can_transition, is_terminal,
)

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
STACK = "64bit Windows Server 2022 v2.11.0 running IIS 10.0"


def _intent(**overrides):
    values = dict(
        application="App",
        environment="Env",
        version_label="v1",
        environment_type="LoadBalanced",
        solution_stack=STACK,
        package_path=Path("bundle.zip"),
        option_settings=(OptionSetting("aws:elasticbeanstalk:environment", "EnvironmentType", "LoadBalanced"),),
        additional_option_settings=(OptionSetting("aws:autoscaling:asg", "MinSize", "2"),),
    )
    values.update(overrides)
    return DeploymentIntent(**values)


def _ready(arn="arn:env"):
    return EnvironmentState("Env", True, "Ready", "Green", arn, STACK, "env.elasticbeanstalk.com")


def _client(application_exists=True, environment=None):
    client = Mock()
    client.application_exists.return_value = application_exists
    client.describe_environment.return_value = environment or EnvironmentState.absent("Env")
    client.upload_bundle.return_value = {"S3Bucket": "b", "S3Key": "k"}
    client.latest_event_date.return_value = T0
    client.events_since.return_value = []
    client.create_environment.return_value = "arn:new"
    client.update_environment.return_value = "arn:env"
    return client


def _reconciler(client, **kwargs):
    kwargs.setdefault("poll_interval", 5)
    kwargs.setdefault("max_attempts", 3)
    kwargs.setdefault("sleep", Mock())
    return EnvironmentLifecycleReconciler(client, **kwargs)


def _call_names(client):
    return [c[0] for c in client.method_calls]


class TestTransitions:
    """Test the lifecycle transition table."""

    def test_terminal_states(self):
        assert is_terminal(LifecycleState.READY)
        assert is_terminal(LifecycleState.SUBMITTED)
        assert is_terminal(LifecycleState.FAILED)
        assert not is_terminal(LifecycleState.STABILIZING)

    def test_allowed_transitions(self):
        assert can_transition(LifecycleState.ABSENT, LifecycleState.CREATING)
        assert can_transition(LifecycleState.UPDATING, LifecycleState.SUBMITTED)
        assert not can_transition(LifecycleState.ABSENT, LifecycleState.UPDATING)
        assert not can_transition(LifecycleState.READY, LifecycleState.FAILED)

    def test_every_state_has_entry(self):
        assert set(TRANSITIONS) == set(LifecycleState)


class TestCreatePath:
    """Test deployments to a new environment."""

    def test_call_ordering(self):
        """Application, upload, version and create happen in order with no update."""
        client = _client(application_exists=False)
        client.describe_environment.side_effect = [_ready("arn:new")]

        outcome = _reconciler(client).run(_intent())

        assert outcome.state == LifecycleState.READY
        assert outcome.created
        assert outcome.history == [
            LifecycleState.ABSENT, LifecycleState.CREATING, LifecycleState.STABILIZING, LifecycleState.READY,
        ]
        names = _call_names(client)
        assert names.index("create_application") < names.index("upload_bundle")
        assert names.index("upload_bundle") < names.index("create_application_version")
        assert names.index("create_application_version") < names.index("latest_event_date")
        assert names.index("latest_event_date") < names.index("create_environment")
        client.update_environment.assert_not_called()
        client.update_tags.assert_not_called()

    def test_create_request(self):
        client = _client()
        client.describe_environment.side_effect = [EnvironmentState.absent("Env"), _ready()]
        intent = _intent(cname_prefix="my-app", tags=(("team", "web"),))

        _reconciler(client).run(intent)

        client.create_application.assert_not_called()
        request = client.create_environment.call_args[0][0]
        assert request["ApplicationName"] == "App"
        assert request["EnvironmentName"] == "Env"
        assert request["VersionLabel"] == "v1"
        assert request["SolutionStackName"] == STACK
        assert request["CNAMEPrefix"] == "my-app"
        assert request["Tags"] == [{"Key": "team", "Value": "web"}]
        client.update_tags.assert_not_called()
        assert request["OptionSettings"] == [
            {"Namespace": "aws:elasticbeanstalk:environment", "OptionName": "EnvironmentType", "Value": "LoadBalanced"},
            {"Namespace": "aws:autoscaling:asg", "OptionName": "MinSize", "Value": "2"},
        ]

    def test_create_requires_solution_stack(self):
        client = _client(application_exists=False)

        with pytest.raises(ToolsError) as exc_info:
            _reconciler(client).run(_intent(solution_stack=None))

        assert exc_info.value.code == CommonErrorCode.MISSING_REQUIRED_PARAMETER
        client.create_environment.assert_not_called()

    def test_builds_artifact_for_stack(self):
        client = _client(application_exists=False)
        client.describe_environment.side_effect = [_ready()]
        build = Mock(return_value=Path("built.zip"))

        _reconciler(client, build_artifact=build).run(_intent(package_path=None))

        build.assert_called_once_with(STACK)
        client.upload_bundle.assert_called_once_with("App", "v1", Path("built.zip"))

    def test_create_failure_is_surfaced(self):
        client = _client(application_exists=False)
        client.create_environment.side_effect = ElasticBeanstalkError("nope", EBCode.FAILED_TO_CREATE_ENVIRONMENT)
        reconciler = _reconciler(client)

        with pytest.raises(ElasticBeanstalkError):
            reconciler.run(_intent())

        assert reconciler.state == LifecycleState.FAILED


class TestUpdatePath:
    """Test deployments to an existing environment."""

    def test_update_request(self):
        client = _client(environment=_ready())
        client.describe_environment.side_effect = [_ready(), _ready()]

        outcome = _reconciler(client).run(_intent())

        assert outcome.state == LifecycleState.READY
        assert not outcome.created
        client.create_environment.assert_not_called()
        client.create_application.assert_not_called()
        client.update_environment.assert_called_once_with({
            "ApplicationName": "App",
            "EnvironmentName": "Env",
            "VersionLabel": "v1",
            "OptionSettings": [{"Namespace": "aws:autoscaling:asg", "OptionName": "MinSize", "Value": "2"}],
        })

    def test_tags_applied_after_update(self):
        client = _client()
        client.describe_environment.side_effect = [_ready(), _ready()]

        _reconciler(client).run(_intent(tags=(("team", "web"),)))

        client.update_tags.assert_called_once_with("arn:env", [{"Key": "team", "Value": "web"}])
        names = _call_names(client)
        assert names.index("update_environment") < names.index("update_tags")
        assert names.index("events_since") < names.index("update_tags")

    def test_no_tags_when_update_fails(self):
        """Tags are only applied once the environment has settled."""
        client = _client()
        client.describe_environment.side_effect = [_ready(), _ready()]
        client.events_since.return_value = [
            EnvironmentEvent(T0 + timedelta(seconds=1), "ERROR", "Failed to deploy application."),
        ]

        with pytest.raises(ElasticBeanstalkError):
            _reconciler(client).run(_intent(tags=(("team", "web"),)))

        client.update_tags.assert_not_called()

    def test_tags_applied_without_wait(self):
        client = _client()
        client.describe_environment.side_effect = [_ready()]

        outcome = _reconciler(client).run(_intent(tags=(("team", "web"),), wait=False))

        assert outcome.state == LifecycleState.SUBMITTED
        client.update_tags.assert_called_once_with("arn:env", [{"Key": "team", "Value": "web"}])

    def test_build_uses_environment_stack(self):
        linux = EnvironmentState("Env", True, "Ready", "Green", "arn:env", "64bit Amazon Linux 2 v2.5.0", "e")
        client = _client()
        client.describe_environment.side_effect = [linux, linux]
        build = Mock(return_value=Path("built.zip"))

        _reconciler(client, build_artifact=build).run(_intent(package_path=None, solution_stack=None))

        build.assert_called_once_with("64bit Amazon Linux 2 v2.5.0")


class TestStabilization:
    """Test waiting for the environment to settle."""

    def test_polls_until_ready(self):
        updating = EnvironmentState("Env", True, "Updating", "Grey", "arn:env", STACK)
        client = _client()
        client.describe_environment.side_effect = [_ready(), updating, updating, _ready()]
        sleep = Mock()

        outcome = _reconciler(client, sleep=sleep).run(_intent())

        assert outcome.endpoint == "env.elasticbeanstalk.com"
        assert sleep.call_count == 3
        sleep.assert_called_with(5)

    def test_timeout(self):
        """A bounded wait ends with a stabilization error."""
        updating = EnvironmentState("Env", True, "Updating", "Grey", "arn:env", STACK)
        client = _client()
        client.describe_environment.side_effect = [_ready()] + [updating] * 3
        reconciler = _reconciler(client, max_attempts=3)

        with pytest.raises(ElasticBeanstalkError) as exc_info:
            reconciler.run(_intent())

        assert exc_info.value.code == EBCode.FAILED_TO_STABILIZE_ENVIRONMENT
        assert reconciler.state == LifecycleState.FAILED

    def test_failure_event(self):
        client = _client()
        client.describe_environment.side_effect = [_ready(), _ready()]
        client.events_since.return_value = [
            EnvironmentEvent(T0 + timedelta(seconds=1), "ERROR", "Failed to deploy application."),
        ]

        with pytest.raises(ElasticBeanstalkError) as exc_info:
            _reconciler(client).run(_intent())

        assert exc_info.value.code == EBCode.FAILED_ENVIRONMENT_UPDATE

    def test_events_read_from_last_seen(self):
        updating = EnvironmentState("Env", True, "Updating", "Grey", "arn:env", STACK)
        later = T0 + timedelta(seconds=30)
        client = _client()
        client.describe_environment.side_effect = [_ready(), updating, _ready()]
        client.events_since.side_effect = [[EnvironmentEvent(later, "INFO", "Deploying new version")], []]

        _reconciler(client).run(_intent())

        assert client.events_since.call_args_list[0][0][2] == T0
        assert client.events_since.call_args_list[1][0][2] == later

    def test_terminated_environment_fails(self):
        terminated = EnvironmentState("Env", False, "Terminated", "Grey", "arn:env", STACK)
        client = _client()
        client.describe_environment.side_effect = [_ready(), terminated]

        with pytest.raises(ElasticBeanstalkError) as exc_info:
            _reconciler(client).run(_intent())

        assert exc_info.value.code == EBCode.FAILED_ENVIRONMENT_UPDATE

    def test_missing_environment_fails(self):
        client = _client()
        client.describe_environment.side_effect = [_ready(), EnvironmentState.absent("Env")]

        with pytest.raises(ElasticBeanstalkError) as exc_info:
            _reconciler(client).run(_intent())

        assert exc_info.value.code == EBCode.FAILED_TO_FIND_ENVIRONMENT

    def test_no_wait(self):
        client = _client()
        client.describe_environment.side_effect = [_ready()]
        sleep = Mock()

        outcome = _reconciler(client, sleep=sleep).run(_intent(wait=False))

        assert outcome.state == LifecycleState.SUBMITTED
        assert outcome.message == "request submitted"
        sleep.assert_not_called()
        client.events_since.assert_not_called()
