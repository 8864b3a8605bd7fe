"""
Windows deployment manifest (aws-windows-deployment-manifest.json) handling.

The manifest is read as a generic JSON tree, normalized, and then validated
through ManifestDocument: a typed view over the fields this tool manages with
every other field kept in the models' extra maps so it is written back as is.
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr, ValidationError, field_validator

from .constants import PLATFORM
from .errors import ToolsError, CommonErrorCode

logger = logging.getLogger(__name__)


class AppParameters(BaseModel):
    """Managed parameters of the first aspNetCoreWeb app descriptor."""
    model_config = ConfigDict(extra="allow")

    appBundle: StrictStr = Field(min_length=1)
    iisPath: StrictStr = Field(min_length=1)
    iisWebSite: StrictStr = Field(min_length=1)


class AppDescriptor(BaseModel):
    """Typed view of the app descriptor the tool updates."""
    model_config = ConfigDict(extra="allow")

    name: StrictStr = Field(min_length=1)
    parameters: AppParameters


class Deployments(BaseModel):
    model_config = ConfigDict(extra="allow")

    # Only the first descriptor is typed; the rest are carried as raw JSON.
    aspNetCoreWeb: List[Any] = Field(min_length=1)

    @field_validator("aspNetCoreWeb")
    @classmethod
    def _first_descriptor_is_valid(cls, value: List[Any]) -> List[Any]:
        AppDescriptor.model_validate(value[0])
        return value

    @property
    def app(self) -> AppDescriptor:
        return AppDescriptor.model_validate(self.aspNetCoreWeb[0])


class ManifestDocument(BaseModel):
    """Deployment manifest consumed by the Windows Elastic Beanstalk host."""
    model_config = ConfigDict(extra="allow")

    manifestVersion: StrictInt
    deployments: Deployments

    @property
    def app(self) -> AppDescriptor:
        return self.deployments.app

    def to_json(self) -> str:
        return json.dumps(self.model_dump(), indent=2) + "\n"


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _get_or_create_object(node: Dict[str, Any], name: str) -> Dict[str, Any]:
    child = node.get(name)
    if not isinstance(child, dict):
        child = {}
        node[name] = child
    return child


def template_tree(iis_app_path: str, iis_web_site: str) -> Dict[str, Any]:
    """Build the manifest tree from the built-in template."""
    root = json.loads(PLATFORM.manifest_template)
    parameters = root["deployments"]["aspNetCoreWeb"][0]["parameters"]
    parameters["iisPath"] = iis_app_path
    parameters["iisWebSite"] = iis_web_site
    return root


def merge_tree(root: Dict[str, Any], iis_app_path: str, iis_web_site: str) -> Dict[str, Any]:
    """
    Merge the managed fields into an existing manifest tree in place.

    Only the first aspNetCoreWeb descriptor is updated. Its appBundle, iisPath
    and iisWebSite parameters always take the values of this invocation; a
    present but non-integer manifestVersion is overwritten with 1.
    """
    if not _is_int(root.get("manifestVersion")):
        root["manifestVersion"] = 1

    deployments = _get_or_create_object(root, "deployments")

    apps = deployments.get("aspNetCoreWeb")
    if not isinstance(apps, list) or not apps:
        apps = [{}]
        deployments["aspNetCoreWeb"] = apps
    elif not isinstance(apps[0], dict):
        apps[0] = {}

    app = apps[0]
    name = app.get("name")
    if not isinstance(name, str) or not name:
        app["name"] = PLATFORM.default_app_name

    parameters = _get_or_create_object(app, "parameters")
    parameters["appBundle"] = PLATFORM.default_app_bundle
    parameters["iisPath"] = iis_app_path
    parameters["iisWebSite"] = iis_web_site

    return root


def read_manifest_tree(path: Path) -> Dict[str, Any]:
    """
    Read a manifest file as a JSON object.

    Raises:
        ToolsError: If the file cannot be read or is not a JSON object
    """
    try:
        text = path.read_text(encoding="utf-8-sig")
    except OSError as e:
        raise ToolsError(f"Error reading deployment manifest {path}: {e}", CommonErrorCode.FILE_ACCESS_ERROR, e)

    try:
        root = json.loads(text)
    except json.JSONDecodeError as e:
        raise ToolsError(f"Error parsing deployment manifest {path}: {e}", CommonErrorCode.INVALID_MANIFEST, e)

    if not isinstance(root, dict):
        raise ToolsError(
            f"Error parsing deployment manifest {path}: root element must be a JSON object",
            CommonErrorCode.INVALID_MANIFEST,
        )

    return root


def write_atomic(path: Path, content: str) -> None:
    """
    Replace a file's content through a temporary file in the same directory.

    Raises:
        ToolsError: If the file cannot be written
    """
    tmp_name = None
    try:
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as f:
            f.write(content)
        os.chmod(tmp_name, 0o644)
        os.replace(tmp_name, path)
    except OSError as e:
        if tmp_name and os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise ToolsError(f"Error writing {path}: {e}", CommonErrorCode.FILE_ACCESS_ERROR, e)


def reconcile(
    publish_dir: Union[str, Path],
    iis_app_path: Optional[str] = None,
    iis_web_site: Optional[str] = None
) -> Path:
    """
    Create or update the deployment manifest in a publish directory.

    Args:
        publish_dir: Output directory of `dotnet publish`
        iis_app_path: IIS application path (default "/")
        iis_web_site: IIS web site (default "Default Web Site")

    Returns:
        Path of the written manifest

    Raises:
        ToolsError: On unreadable, malformed or unwritable manifests
    """
    iis_app_path = iis_app_path or PLATFORM.default_app_path
    iis_web_site = iis_web_site or PLATFORM.default_iis_website

    publish_dir = Path(publish_dir)
    if not publish_dir.is_dir():
        raise ToolsError(f"Publish directory {publish_dir} does not exist", CommonErrorCode.FILE_ACCESS_ERROR)

    path = publish_dir / PLATFORM.manifest_file_name

    if path.exists():
        logger.info("Updating existing deployment manifest")
        tree = merge_tree(read_manifest_tree(path), iis_app_path, iis_web_site)
    else:
        logger.info("Creating deployment manifest")
        tree = template_tree(iis_app_path, iis_web_site)

    try:
        document = ManifestDocument.model_validate(tree)
    except ValidationError as e:
        raise ToolsError(f"Invalid deployment manifest {path}: {e}", CommonErrorCode.INVALID_MANIFEST, e)

    logger.info(f"\tIIS App Path: {document.app.parameters.iisPath}")
    logger.info(f"\tIIS Web Site: {document.app.parameters.iisWebSite}")

    write_atomic(path, document.to_json())
    return path
