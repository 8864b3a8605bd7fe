"""Command line entrypoint for the Elastic Beanstalk deployment tools."""

import json
import logging
import sys
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import click

from .aws import BeanstalkClient
from .config import DefaultsFile, OptionResolver, load_runtime_settings
from .constants import PLATFORM, validate_choice
from .dotnet import (
    DotNetCLIWrapper, determine_project_location, determine_publish_location, lookup_target_framework,
)
from .errors import ToolsError, CommonErrorCode
from .intent import build_intent
from .lifecycle import EnvironmentLifecycleReconciler
from .packager import TargetPlatform, default_archive_path, prepare, target_for_stack, zip_directory
from .publish_options import compose

logger = logging.getLogger(__name__)

EXIT_FAILURE = -1


@click.group()
@click.option('--json', 'output_json', is_flag=True, help='Output machine-readable JSON')
@click.option('--verbose', is_flag=True, help='Log debug output')
@click.pass_context
def main(ctx, output_json, verbose):
    """Deploy .NET applications to AWS Elastic Beanstalk."""
    ctx.ensure_object(dict)
    ctx.obj['json'] = output_json
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, format='%(message)s')


def _json_output(data: Dict[str, Any]) -> None:
    """Output data as JSON."""
    click.echo(json.dumps(data, indent=None))


def _human_output(message: str) -> None:
    """Output human-readable message."""
    if not click.get_current_context().obj.get('json', False):
        click.echo(message)


def _fail(error: ToolsError) -> None:
    """Report an error at the process boundary and exit."""
    logger.error(error.message)
    code = error.code.value if error.code else "Unknown"
    if error.service_code:
        logger.error(f"Error code: {code} ({error.service_code})")
    else:
        logger.error(f"Error code: {code}")

    if click.get_current_context().obj.get('json', False):
        _json_output({'error': error.message, 'code': code})
    sys.exit(EXIT_FAILURE)


def _options(*decorators: Callable) -> Callable:
    def apply(func):
        for decorator in reversed(decorators):
            func = decorator(func)
        return func
    return apply


project_options = _options(
    click.option('--project-location', help='Directory holding the .NET project'),
    click.option('--config-file', help='Defaults file (default aws-beanstalk-tools-defaults.json)'),
)

aws_options = _options(
    click.option('--region', help='AWS region'),
    click.option('--profile', help='AWS credentials profile'),
)

build_options = _options(
    click.option('--configuration', help='Build configuration (default Release)'),
    click.option('--framework', help='Target framework, e.g. net8.0'),
    click.option('--publish-options', help='Additional options passed to dotnet publish'),
    click.option('--self-contained/--no-self-contained', default=None, help='Publish a self-contained deployment'),
    click.option('--app-path', help='IIS application path (Windows)'),
    click.option('--iis-website', help='IIS web site (Windows)'),
    click.option('--proxy-server', help='Reverse proxy: nginx or none (Linux)'),
    click.option('--application-port', type=int, help='Port the application listens on (Linux)'),
)

environment_options = _options(
    click.option('-app', '--application', help='Elastic Beanstalk application name'),
    click.option('-env', '--environment', help='Elastic Beanstalk environment name'),
)


def _load_resolver(opts: Dict[str, Any]):
    project_dir = determine_project_location(Path.cwd(), opts.get('project_location'))
    return project_dir, OptionResolver(DefaultsFile.load(project_dir, opts.get('config_file')))


def _client(opts: Dict[str, Any], resolver: OptionResolver) -> BeanstalkClient:
    return BeanstalkClient(
        region=resolver.string(opts.get('region'), 'region'),
        profile=resolver.string(opts.get('profile'), 'profile'),
    )


def build_bundle(
    project_dir: Path,
    resolver: OptionResolver,
    opts: Dict[str, Any],
    solution_stack: Optional[str],
    output_package: Optional[str] = None
) -> Path:
    """
    Publish the project, prepare the bundle for the stack's platform and zip it.

    Raises:
        ToolsError: If publishing, bundle preparation or zipping fails
    """
    configuration = resolver.string(opts.get('configuration'), 'configuration', PLATFORM.default_configuration)
    framework = resolver.string(opts.get('framework'), 'framework') or lookup_target_framework(project_dir)
    if not framework:
        raise ToolsError("Missing required parameter: --framework", CommonErrorCode.MISSING_REQUIRED_PARAMETER)

    target = target_for_stack(solution_stack)
    self_contained = resolver.boolean(opts.get('self_contained'), 'self-contained', False)
    publish_options = compose(
        resolver.string(opts.get('publish_options'), 'publish-options'),
        target == TargetPlatform.WINDOWS,
        self_contained,
    )

    publish_dir = determine_publish_location(project_dir, configuration, framework)
    exit_code = DotNetCLIWrapper(project_dir).publish(
        project_dir, publish_dir, framework, configuration, publish_options,
    )
    if exit_code != 0:
        raise ToolsError(
            f"Error executing \"dotnet publish\", exit code {exit_code}",
            CommonErrorCode.DOTNET_PUBLISH_FAILED,
        )

    prepare(
        publish_dir,
        target,
        iis_app_path=resolver.string(opts.get('app_path'), 'app-path'),
        iis_web_site=resolver.string(opts.get('iis_website'), 'iis-website'),
        proxy_server=validate_choice('proxy-server', resolver.string(opts.get('proxy_server'), 'proxy-server')),
        application_port=resolver.integer(opts.get('application_port'), 'application-port'),
    )

    archive = Path(output_package) if output_package else default_archive_path(publish_dir, project_dir)
    return zip_directory(publish_dir, archive)


@main.command('deploy-environment')
@environment_options
@click.option('--package', 'package', help='Existing deployment bundle; skips publishing')
@click.option('--cname', help='CNAME prefix of a new environment')
@click.option('--solution-stack', help='Solution stack of a new environment')
@click.option('--environment-type', help='SingleInstance or LoadBalanced')
@click.option('--key-pair', help='EC2 key pair')
@click.option('--instance-type', help='EC2 instance type (default t2.small)')
@click.option('--health-check-url', help='Health check URL')
@click.option('--instance-profile', help='IAM instance profile name or ARN')
@click.option('--service-role', help='IAM service role name or ARN')
@click.option('--version-label', help='Application version label')
@click.option('--tags', help='Tags as <key1>=<value1>;<key2>=<value2>')
@click.option('--wait/--no-wait', default=None, help='Wait for the environment to finish updating')
@click.option('--enable-xray/--disable-xray', default=None, help='Enable the AWS X-Ray daemon')
@click.option('--enhanced-health-type', help='basic or enhanced')
@click.option('--loadbalancer-type', help='classic, application or network')
@click.option('--enable-sticky-sessions/--disable-sticky-sessions', default=None, help='Enable sticky sessions')
@click.option('--additional-options', help='Options as <namespace>,<name>=<value>;...')
@build_options
@project_options
@aws_options
@click.pass_context
def deploy_environment(ctx, **opts):
    """Deploy the project to an Elastic Beanstalk environment."""
    try:
        project_dir, resolver = _load_resolver(opts)

        package = resolver.string(opts.get('package'), 'package')
        if package and not Path(package).is_file():
            raise ToolsError(f"Deployment package {package} does not exist", CommonErrorCode.FILE_ACCESS_ERROR)

        intent = build_intent(opts, resolver, Path(package) if package else None)
        settings = load_runtime_settings()

        reconciler = EnvironmentLifecycleReconciler(
            _client(opts, resolver),
            build_artifact=lambda stack: build_bundle(project_dir, resolver, opts, stack),
            poll_interval=settings.poll_interval_seconds,
            max_attempts=settings.max_attempts,
        )
        outcome = reconciler.run(intent)
    except ToolsError as e:
        _fail(e)
        return

    if ctx.obj['json']:
        _json_output({
            'application': intent.application,
            'environment': intent.environment,
            'version_label': intent.version_label,
            'state': outcome.state.value,
            'message': outcome.message,
            'environment_arn': outcome.environment_arn,
            'endpoint': outcome.endpoint,
        })
    else:
        _human_output(f"{intent.environment}: {outcome.message} (version {intent.version_label})")
        if outcome.endpoint:
            _human_output(f"http://{outcome.endpoint}/")


@main.command('list-environments')
@project_options
@aws_options
@click.pass_context
def list_environments(ctx, **opts):
    """List the Elastic Beanstalk environments in the region."""
    try:
        _, resolver = _load_resolver(opts)
        environments = [e for e in _client(opts, resolver).list_environments() if e.status != "Terminated"]
    except ToolsError as e:
        _fail(e)
        return

    if ctx.obj['json']:
        _json_output({'environments': [
            {'name': e.name, 'status': e.status, 'health': e.health, 'endpoint': e.endpoint}
            for e in environments
        ]})
        return

    for environment in environments:
        label = f"{environment.name} ({environment.status}/{environment.health})"
        _human_output(f"{label:<45} http://{environment.endpoint}/")


@main.command('delete-environment')
@environment_options
@click.option('--force', is_flag=True, help='Delete without asking for confirmation')
@project_options
@aws_options
@click.pass_context
def delete_environment(ctx, force, **opts):
    """Terminate an Elastic Beanstalk environment."""
    try:
        _, resolver = _load_resolver(opts)
        resolver.string(opts.get('application'), 'application', required=True)
        environment = resolver.string(opts.get('environment'), 'environment', required=True)

        if not force and not click.confirm(f"Are you sure you want to delete the environment {environment}?"):
            _human_output("Environment not deleted")
            return

        _client(opts, resolver).terminate_environment(environment)
    except ToolsError as e:
        _fail(e)
        return

    if ctx.obj['json']:
        _json_output({'environment': environment, 'status': 'terminating'})
    else:
        _human_output(f"Environment {environment} deleted")


@main.command('package')
@click.option('--solution-stack', help='Solution stack the bundle targets (default Windows layout)')
@click.option('--output-package', help='Path of the zip file to create')
@build_options
@project_options
@click.pass_context
def package_cmd(ctx, output_package, **opts):
    """Publish the project and create a deployment bundle."""
    try:
        project_dir, resolver = _load_resolver(opts)
        archive = build_bundle(
            project_dir,
            resolver,
            opts,
            resolver.string(opts.get('solution_stack'), 'solution-stack'),
            resolver.string(output_package, 'output-package'),
        )
    except ToolsError as e:
        _fail(e)
        return

    if ctx.obj['json']:
        _json_output({'package': str(archive)})
    else:
        _human_output(f"Application deployment bundle created: {archive}")


if __name__ == '__main__':
    main()
