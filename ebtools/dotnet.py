"""
Wrapper around `dotnet publish` and project location helpers.
"""

import logging
import shlex
import shutil
import subprocess
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import List, Optional, Union

from .errors import ToolsError, CommonErrorCode

logger = logging.getLogger(__name__)

PROJECT_FILE_PATTERNS = ("*.csproj", "*.fsproj", "*.vbproj")


def determine_project_location(working_dir: Union[str, Path], project_location: Optional[str] = None) -> Path:
    """Resolve the project directory relative to the working directory."""
    working_dir = Path(working_dir)
    if not project_location:
        return working_dir
    location = Path(project_location)
    return location if location.is_absolute() else working_dir / location


def determine_publish_location(project_dir: Union[str, Path], configuration: str, target_framework: str) -> Path:
    return Path(project_dir) / "bin" / configuration / target_framework / "publish"


def find_project_file(project_dir: Union[str, Path]) -> Path:
    """
    Find the single project file in a directory.

    Raises:
        ToolsError: If there is no project file or more than one
    """
    project_dir = Path(project_dir)
    if project_dir.is_file():
        return project_dir

    candidates: List[Path] = []
    for pattern in PROJECT_FILE_PATTERNS:
        candidates.extend(sorted(project_dir.glob(pattern)))

    if len(candidates) != 1:
        found = "no project file" if not candidates else f"{len(candidates)} project files"
        raise ToolsError(f"Expected one .NET project file in {project_dir}, found {found}", CommonErrorCode.NO_PROJECT_FOUND)

    return candidates[0]


def lookup_target_framework(project_dir: Union[str, Path]) -> Optional[str]:
    """
    Read the target framework from the project file.

    A TargetFrameworks list only counts when it has exactly one entry.
    """
    project_file = find_project_file(project_dir)
    try:
        root = ET.parse(project_file).getroot()
    except (OSError, ET.ParseError) as e:
        logger.warning(f"Unable to read project file {project_file}: {e}")
        return None

    for element in root.iter():
        tag = element.tag.split("}")[-1]
        text = (element.text or "").strip()
        if tag == "TargetFramework" and text:
            return text
        if tag == "TargetFrameworks" and text:
            frameworks = [f for f in text.split(";") if f.strip()]
            if len(frameworks) == 1:
                return frameworks[0].strip()

    return None


class DotNetCLIWrapper:
    """Runs the dotnet CLI and streams its output into the log."""

    def __init__(self, working_dir: Union[str, Path]):
        self.working_dir = Path(working_dir)

    def _find_dotnet(self) -> str:
        dotnet = shutil.which("dotnet")
        if not dotnet:
            raise ToolsError(
                "Failed to locate dotnet CLI executable. Make sure the dotnet CLI is installed in the environment PATH.",
                CommonErrorCode.DOTNET_PUBLISH_FAILED,
            )
        return dotnet

    def build_publish_command(
        self,
        dotnet: str,
        project_dir: Path,
        output_dir: Path,
        target_framework: Optional[str],
        configuration: Optional[str],
        publish_options: Optional[str]
    ) -> List[str]:
        command = [dotnet, "publish", str(project_dir), "--output", str(output_dir)]
        if configuration:
            command += ["--configuration", configuration]
        if target_framework:
            command += ["--framework", target_framework]
        if publish_options:
            try:
                command += shlex.split(publish_options)
            except ValueError as e:
                raise ToolsError(
                    f"Error parsing publish options ({publish_options}): {e}",
                    CommonErrorCode.COMMAND_LINE_PARSE_ERROR, e,
                )
        return command

    def publish(
        self,
        project_dir: Union[str, Path],
        output_dir: Union[str, Path],
        target_framework: Optional[str],
        configuration: Optional[str],
        publish_options: Optional[str]
    ) -> int:
        """
        Run `dotnet publish` into a clean output directory.

        Returns:
            Exit code of the dotnet process

        Raises:
            ToolsError: If the options cannot be parsed or dotnet cannot be started
        """
        output_dir = Path(output_dir)
        if output_dir.exists():
            try:
                shutil.rmtree(output_dir)
                logger.info("Deleted previous publish folder")
            except OSError as e:
                logger.warning(f"Warning unable to delete previous publish folder: {e}")

        command = self.build_publish_command(
            self._find_dotnet(), Path(project_dir), output_dir,
            target_framework, configuration, publish_options,
        )
        logger.info("... invoking 'dotnet publish'")
        logger.debug(f"... {' '.join(command)}")

        try:
            process = subprocess.Popen(
                command,
                cwd=self.working_dir,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                bufsize=1,
            )

            for line in process.stdout:
                line = line.rstrip()
                if line:
                    logger.info(f"... publish: {line}")

            process.wait()
        except OSError as e:
            raise ToolsError(f"Error executing \"dotnet publish\": {e}", CommonErrorCode.DOTNET_PUBLISH_FAILED, e)

        return process.returncode
