"""
Platform constants for Elastic Beanstalk deployments.

All tables live in a single immutable PlatformConfig instance so that
membership checks against the enumerations happen in one place.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Optional, Tuple

from .errors import ToolsError, CommonErrorCode


DEFAULT_MANIFEST = """
{
  "manifestVersion": 1,
  "deployments": {
    "aspNetCoreWeb": [
      {
        "name": "app",
        "parameters": {
          "appBundle": ".",
          "iisPath": "{iisPath}",
          "iisWebSite": "{iisWebSite}"
        }
      }
    ]
  }
}
"""


@dataclass(frozen=True)
class OptionNamespaces:
    """Option setting namespaces used when creating or updating environments."""
    environment: str = "aws:elasticbeanstalk:environment"
    application: str = "aws:elasticbeanstalk:application"
    application_environment: str = "aws:elasticbeanstalk:application:environment"
    launch_configuration: str = "aws:autoscaling:launchconfiguration"
    health_reporting: str = "aws:elasticbeanstalk:healthreporting:system"
    default_process: str = "aws:elasticbeanstalk:environment:process:default"
    proxy: str = "aws:elasticbeanstalk:environment:proxy"
    xray: str = "aws:elasticbeanstalk:xray"


@dataclass(frozen=True)
class PlatformConfig:
    """Immutable platform tables and hard-coded defaults."""
    manifest_file_name: str = "aws-windows-deployment-manifest.json"
    manifest_template: str = DEFAULT_MANIFEST
    defaults_file_name: str = "aws-beanstalk-tools-defaults.json"
    procfile_name: str = "Procfile"
    extensions_dir_name: str = ".ebextensions"
    permissions_config_name: str = "set-executable-permissions.config"
    runtime_config_suffix: str = ".runtimeconfig.json"

    environment_type_single: str = "SingleInstance"
    environment_type_load_balanced: str = "LoadBalanced"
    environment_types: Tuple[str, ...] = ("SingleInstance", "LoadBalanced")
    enhanced_health_types: Tuple[str, ...] = ("basic", "enhanced")
    loadbalancer_types: Tuple[str, ...] = ("classic", "application", "network")
    proxy_servers: Tuple[str, ...] = ("nginx", "none")
    proxy_server_none: str = "none"

    windows_runtime: str = "win-x64"
    linux_runtime: str = "linux-x64"
    windows_stack_marker: str = "64bit Windows Server"
    linux_stack_prefix: str = "64bit Amazon Linux 2"

    default_app_path: str = "/"
    default_iis_website: str = "Default Web Site"
    default_app_name: str = "app"
    default_app_bundle: str = "."
    default_instance_type: str = "t2.small"
    default_health_check_url: str = "/"
    default_application_port: int = 5000
    default_configuration: str = "Release"

    # Statuses reported by DescribeEnvironments
    in_progress_statuses: Tuple[str, ...] = ("Launching", "Updating")
    terminated_statuses: Tuple[str, ...] = ("Terminating", "Terminated")
    failure_event_prefixes: Tuple[str, ...] = (
        "failed to deploy application",
        "failed to launch environment",
        "error occurred during build: command hooks failed",
    )

    namespaces: OptionNamespaces = field(default_factory=OptionNamespaces)

    def choices(self) -> Mapping[str, Tuple[str, ...]]:
        """Enumerated option values keyed by option name."""
        return MappingProxyType({
            "environment-type": self.environment_types,
            "enhanced-health-type": self.enhanced_health_types,
            "loadbalancer-type": self.loadbalancer_types,
            "proxy-server": self.proxy_servers,
        })


PLATFORM = PlatformConfig()


def validate_choice(option_name: str, value: Optional[str]) -> Optional[str]:
    """
    Check a value against the enumeration registered for an option.

    Matching is case-insensitive; the canonical spelling is returned.

    Raises:
        ToolsError: If the value is not one of the allowed choices
    """
    if value is None:
        return None

    allowed = PLATFORM.choices().get(option_name)
    if allowed is None:
        return value

    for choice in allowed:
        if choice.lower() == value.lower():
            return choice

    raise ToolsError(
        f"Invalid value \"{value}\" for --{option_name}. Valid values are: {', '.join(allowed)}",
        CommonErrorCode.INVALID_OPTION_VALUE,
    )
