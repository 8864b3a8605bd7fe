"""
Deployment intent: the immutable description of one requested deployment.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .config import OptionResolver
from .constants import PLATFORM, validate_choice
from .errors import ToolsError, CommonErrorCode
from .ids import new_version_label, is_valid_version_label
from .packager import TargetPlatform, target_for_stack

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OptionSetting:
    """An Elastic Beanstalk configuration option."""
    namespace: str
    name: str
    value: str

    def to_request(self) -> Dict[str, str]:
        return {"Namespace": self.namespace, "OptionName": self.name, "Value": self.value}


@dataclass(frozen=True)
class DeploymentIntent:
    """Everything needed to create or update one environment."""
    application: str
    environment: str
    version_label: str
    environment_type: str
    solution_stack: Optional[str] = None
    package_path: Optional[Path] = None
    cname_prefix: Optional[str] = None
    tags: Tuple[Tuple[str, str], ...] = ()
    option_settings: Tuple[OptionSetting, ...] = ()
    additional_option_settings: Tuple[OptionSetting, ...] = ()
    wait: bool = True

    def tags_request(self) -> List[Dict[str, str]]:
        return [{"Key": key, "Value": value} for key, value in self.tags]

    def create_settings_request(self) -> List[Dict[str, str]]:
        return [s.to_request() for s in self.option_settings + self.additional_option_settings]

    def update_settings_request(self) -> List[Dict[str, str]]:
        return [s.to_request() for s in self.additional_option_settings]


def strip_arn(value: Optional[str]) -> Optional[str]:
    """Reduce an IAM ARN to the resource name after the last slash."""
    if not value:
        return value
    return value[value.rfind("/") + 1:]


def parse_additional_options(options: Mapping[str, str]) -> List[OptionSetting]:
    """
    Turn {"<namespace>,<option-name>": value} pairs into option settings.

    Raises:
        ToolsError: If a key does not have exactly two comma separated parts
    """
    settings = []
    for key, value in options.items():
        tokens = key.split(",")
        if len(tokens) != 2:
            raise ToolsError(
                f"Additional option \"{key}={value}\" in incorrect format. "
                "Format should be <option-namespace>,<option-name>=<option-value>.",
                CommonErrorCode.DEFAULTS_PARSE_FAIL,
            )
        settings.append(OptionSetting(tokens[0], tokens[1], value))
    return settings


def is_load_balanced(environment_type: Optional[str]) -> bool:
    return (environment_type or "").lower() == PLATFORM.environment_type_load_balanced.lower()


def build_create_settings(values: Mapping[str, Any], target: TargetPlatform) -> List[OptionSetting]:
    """
    Option settings sent only when the environment is created.

    Args:
        values: Resolved option values keyed by option name
        target: Platform of the environment
    """
    ns = PLATFORM.namespaces
    environment_type = values["environment-type"]
    load_balanced = is_load_balanced(environment_type)
    settings = [OptionSetting(ns.environment, "EnvironmentType", environment_type)]

    health_check_url = values.get("health-check-url")
    if not health_check_url and load_balanced:
        health_check_url = PLATFORM.default_health_check_url
    if health_check_url:
        settings.append(OptionSetting(ns.application, "Application Healthcheck URL", health_check_url))

    if values.get("key-pair"):
        settings.append(OptionSetting(ns.launch_configuration, "EC2KeyName", values["key-pair"]))

    settings.append(OptionSetting(
        ns.launch_configuration, "InstanceType",
        values.get("instance-type") or PLATFORM.default_instance_type,
    ))

    instance_profile = strip_arn(values.get("instance-profile"))
    if instance_profile:
        settings.append(OptionSetting(ns.launch_configuration, "IamInstanceProfile", instance_profile))

    service_role = strip_arn(values.get("service-role"))
    if service_role:
        settings.append(OptionSetting(ns.environment, "ServiceRole", service_role))

    if values.get("enhanced-health-type"):
        settings.append(OptionSetting(ns.health_reporting, "SystemType", values["enhanced-health-type"]))

    if load_balanced:
        if values.get("loadbalancer-type"):
            settings.append(OptionSetting(ns.environment, "LoadBalancerType", values["loadbalancer-type"]))
        if values.get("enable-sticky-sessions"):
            settings.append(OptionSetting(ns.default_process, "StickinessEnabled", "true"))
    elif values.get("loadbalancer-type") or values.get("enable-sticky-sessions"):
        logger.warning("Load balancer settings are ignored for SingleInstance environments")

    if target == TargetPlatform.LINUX:
        if values.get("proxy-server"):
            settings.append(OptionSetting(ns.proxy, "ProxyServer", values["proxy-server"]))
        if values.get("application-port"):
            settings.append(OptionSetting(ns.application_environment, "PORT", str(values["application-port"])))

    return settings


def build_additional_settings(values: Mapping[str, Any]) -> List[OptionSetting]:
    """Option settings sent on both create and update."""
    settings = parse_additional_options(values.get("additional-options") or {})

    enable_xray = values.get("enable-xray")
    if enable_xray is not None:
        settings.append(OptionSetting(PLATFORM.namespaces.xray, "XRayEnabled", str(enable_xray).lower()))
        logger.info(f"Enable AWS X-Ray: {enable_xray}")

    return settings


def build_intent(
    cli: Mapping[str, Any],
    resolver: OptionResolver,
    package_path: Optional[Path] = None
) -> DeploymentIntent:
    """
    Resolve command line values against the defaults file and build the intent.

    Args:
        cli: Command line values keyed by option name with underscores
        resolver: Option resolver holding the defaults file
        package_path: Existing bundle to deploy instead of building one

    Raises:
        ToolsError: On missing required values or invalid choices
    """
    def opt(name: str) -> Any:
        return cli.get(name.replace("-", "_"))

    values: Dict[str, Any] = {}
    for name in ("health-check-url", "key-pair", "instance-type", "instance-profile", "service-role"):
        values[name] = resolver.string(opt(name), name)

    values["environment-type"] = validate_choice(
        "environment-type",
        resolver.string(opt("environment-type"), "environment-type", PLATFORM.environment_type_load_balanced),
    )
    values["enhanced-health-type"] = validate_choice(
        "enhanced-health-type", resolver.string(opt("enhanced-health-type"), "enhanced-health-type"))
    values["loadbalancer-type"] = validate_choice(
        "loadbalancer-type", resolver.string(opt("loadbalancer-type"), "loadbalancer-type"))
    values["proxy-server"] = validate_choice(
        "proxy-server", resolver.string(opt("proxy-server"), "proxy-server"))
    values["application-port"] = resolver.integer(opt("application-port"), "application-port")
    values["enable-sticky-sessions"] = resolver.boolean(opt("enable-sticky-sessions"), "enable-sticky-sessions")
    values["enable-xray"] = resolver.boolean(opt("enable-xray"), "enable-xray")
    values["additional-options"] = resolver.key_values(opt("additional-options"), "additional-options")

    solution_stack = resolver.string(opt("solution-stack"), "solution-stack")
    version_label = resolver.string(opt("version-label"), "version-label") or new_version_label()
    if not is_valid_version_label(version_label):
        raise ToolsError(f"Invalid version label \"{version_label}\"", CommonErrorCode.INVALID_OPTION_VALUE)

    tags = resolver.key_values(opt("tags"), "tags")

    return DeploymentIntent(
        application=resolver.string(opt("application"), "application", required=True),
        environment=resolver.string(opt("environment"), "environment", required=True),
        version_label=version_label,
        environment_type=values["environment-type"],
        solution_stack=solution_stack,
        package_path=Path(package_path) if package_path else None,
        cname_prefix=resolver.string(opt("cname"), "cname"),
        tags=tuple(tags.items()),
        option_settings=tuple(build_create_settings(values, target_for_stack(solution_stack))),
        additional_option_settings=tuple(build_additional_settings(values)),
        wait=resolver.boolean(opt("wait"), "wait", True),
    )
