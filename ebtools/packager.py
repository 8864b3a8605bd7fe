"""
Preparation of deployment bundles for Windows and Linux environments.
"""

import json
import logging
import os
import time
import zipfile
from enum import Enum
from pathlib import Path
from typing import List, Optional, Union

import yaml

from . import manifest
from .constants import PLATFORM
from .errors import ToolsError, CommonErrorCode

logger = logging.getLogger(__name__)


class TargetPlatform(Enum):
    """Operating system of the Elastic Beanstalk environment."""
    WINDOWS = "windows"
    LINUX = "linux"


def is_windows_stack(solution_stack: str) -> bool:
    return PLATFORM.windows_stack_marker in solution_stack


def is_linux_stack(solution_stack: str) -> bool:
    return solution_stack.startswith(PLATFORM.linux_stack_prefix)


def target_for_stack(solution_stack: Optional[str]) -> TargetPlatform:
    """
    Pick the bundle layout for a solution stack.

    Stacks that are neither recognizably Windows nor Amazon Linux 2 get the
    Windows layout.
    """
    if solution_stack and not is_windows_stack(solution_stack) and is_linux_stack(solution_stack):
        return TargetPlatform.LINUX
    return TargetPlatform.WINDOWS


def _is_aspnet_framework(node) -> bool:
    if not isinstance(node, dict):
        return False
    name = node.get("name")
    return isinstance(name, str) and name.startswith("Microsoft.AspNetCore")


def _references_aspnet(runtime_config: Path) -> bool:
    try:
        root = json.loads(runtime_config.read_text(encoding="utf-8-sig"))
    except (OSError, json.JSONDecodeError) as e:
        logger.debug(f"Skipping unreadable runtime config {runtime_config}: {e}")
        return False

    options = root.get("runtimeOptions") if isinstance(root, dict) else None
    if not isinstance(options, dict):
        return False

    if _is_aspnet_framework(options.get("framework")):
        return True

    frameworks = options.get("frameworks")
    if isinstance(frameworks, list):
        return any(_is_aspnet_framework(framework) for framework in frameworks)

    return False


def find_runtime_config(publish_dir: Path) -> Path:
    """
    Locate the runtimeconfig.json of the application entry point.

    With several candidates the first one referencing an ASP.NET Core framework
    wins; without such a reference the first in sorted order is used.

    Raises:
        ToolsError: If the publish directory has no runtimeconfig.json
    """
    candidates: List[Path] = sorted(publish_dir.glob(f"*{PLATFORM.runtime_config_suffix}"))

    if not candidates:
        raise ToolsError(
            f"No *{PLATFORM.runtime_config_suffix} file found in {publish_dir}; unable to determine the application executable",
            CommonErrorCode.RUNTIME_CONFIG_NOT_FOUND,
        )

    if len(candidates) == 1:
        return candidates[0]

    for candidate in candidates:
        if _references_aspnet(candidate):
            return candidate

    logger.warning(
        f"Found {len(candidates)} runtime config files in {publish_dir}, using {candidates[0].name}"
    )
    return candidates[0]


def executable_name(runtime_config: Path) -> str:
    return runtime_config.name[:-len(PLATFORM.runtime_config_suffix)]


def permissions_config(executable: str) -> str:
    """Render the .ebextensions fragment that marks the executable as runnable."""
    fragment = {
        "container_commands": {
            "01_set_executable_permissions": {
                "command": f"chmod +x {executable}",
            }
        }
    }
    return yaml.safe_dump(fragment, default_flow_style=False, sort_keys=False)


def _write_text(path: Path, content: str) -> None:
    try:
        path.write_text(content, encoding="utf-8")
    except OSError as e:
        raise ToolsError(f"Error writing {path}: {e}", CommonErrorCode.FILE_ACCESS_ERROR, e)


def setup_linux_package(
    publish_dir: Union[str, Path],
    proxy_server: Optional[str] = None,
    application_port: Optional[int] = None
) -> str:
    """
    Add the Procfile and permissions fragment a Linux environment needs.

    An existing Procfile in the publish directory is left as is.

    Returns:
        Name of the application executable
    """
    publish_dir = Path(publish_dir)
    executable = executable_name(find_runtime_config(publish_dir))

    procfile = publish_dir / PLATFORM.procfile_name
    if procfile.exists():
        logger.info("Found existing Procfile, using it for deployment")
    else:
        command = f"./{executable}"
        if proxy_server == PLATFORM.proxy_server_none:
            port = application_port or PLATFORM.default_application_port
            logger.info("... Proxy server disabled, configuring Kestrel to listen to traffic from all hosts")
            command += f" --urls http://0.0.0.0:{port}/"

        content = f"web: {command}"
        logger.info("Writing Procfile for deployment bundle")
        logger.info(f"    {content}")
        _write_text(procfile, content)

    extensions_dir = publish_dir / PLATFORM.extensions_dir_name
    try:
        extensions_dir.mkdir(exist_ok=True)
    except OSError as e:
        raise ToolsError(f"Error creating {extensions_dir}: {e}", CommonErrorCode.FILE_ACCESS_ERROR, e)

    _write_text(extensions_dir / PLATFORM.permissions_config_name, permissions_config(executable))
    logger.debug(f"Wrote {PLATFORM.permissions_config_name} for executable {executable}")

    return executable


def prepare(
    publish_dir: Union[str, Path],
    target: TargetPlatform,
    iis_app_path: Optional[str] = None,
    iis_web_site: Optional[str] = None,
    proxy_server: Optional[str] = None,
    application_port: Optional[int] = None
) -> Path:
    """
    Augment a publish directory so it can be deployed to the target platform.

    Returns:
        The publish directory
    """
    publish_dir = Path(publish_dir)

    if target == TargetPlatform.WINDOWS:
        manifest.reconcile(publish_dir, iis_app_path, iis_web_site)
    else:
        setup_linux_package(publish_dir, proxy_server, application_port)

    return publish_dir


def default_archive_path(publish_dir: Union[str, Path], project_dir: Union[str, Path]) -> Path:
    """Archive path next to the publish folder, stamped with the current time."""
    ticks = time.time_ns() // 100
    return Path(publish_dir).resolve().parent / f"{Path(project_dir).resolve().name}-{ticks}.zip"


def zip_directory(directory: Union[str, Path], archive_path: Union[str, Path]) -> Path:
    """
    Zip a directory's content with paths relative to the directory.

    POSIX permission bits are stored so executables stay executable.
    """
    directory = Path(directory)
    archive_path = Path(archive_path)

    try:
        archive_path.parent.mkdir(parents=True, exist_ok=True)
        if archive_path.exists():
            archive_path.unlink()

        with zipfile.ZipFile(archive_path, "w", zipfile.ZIP_DEFLATED) as archive:
            for root, dirs, files in os.walk(directory):
                dirs.sort()
                for file_name in sorted(files):
                    path = Path(root) / file_name
                    if path.resolve() == archive_path.resolve():
                        continue

                    arcname = path.relative_to(directory).as_posix()
                    info = zipfile.ZipInfo.from_file(path, arcname)
                    info.compress_type = zipfile.ZIP_DEFLATED
                    with open(path, "rb") as f:
                        archive.writestr(info, f.read())
    except OSError as e:
        raise ToolsError(f"Error creating archive {archive_path}: {e}", CommonErrorCode.FILE_ACCESS_ERROR, e)

    logger.info(f"Zip archive created: {archive_path}")
    return archive_path
