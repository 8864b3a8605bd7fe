"""
Thin wrapper over the Elastic Beanstalk and S3 APIs.

Every failing call is mapped to the ElasticBeanstalkError code of the
deployment phase it belongs to.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

import boto3
from boto3.exceptions import S3UploadFailedError
from botocore.exceptions import BotoCoreError, ClientError

from .constants import PLATFORM
from .errors import ElasticBeanstalkError, EBCode
from .ids import s3_key_for_version

logger = logging.getLogger(__name__)

AWS_ERRORS = (ClientError, BotoCoreError)


@dataclass(frozen=True)
class EnvironmentState:
    """Snapshot of an environment as reported by DescribeEnvironments."""
    name: str
    exists: bool
    status: Optional[str] = None
    health: Optional[str] = None
    arn: Optional[str] = None
    solution_stack: Optional[str] = None
    endpoint: Optional[str] = None

    @classmethod
    def absent(cls, name: str) -> "EnvironmentState":
        return cls(name=name, exists=False)

    @classmethod
    def from_description(cls, description: Dict[str, Any]) -> "EnvironmentState":
        status = description.get("Status")
        return cls(
            name=description.get("EnvironmentName", ""),
            exists=status not in PLATFORM.terminated_statuses,
            status=status,
            health=description.get("Health"),
            arn=description.get("EnvironmentArn"),
            solution_stack=description.get("SolutionStackName"),
            endpoint=description.get("CNAME") or description.get("EndpointURL"),
        )

    @property
    def in_progress(self) -> bool:
        return self.status in PLATFORM.in_progress_statuses

    @property
    def terminated(self) -> bool:
        return self.status in PLATFORM.terminated_statuses


@dataclass(frozen=True)
class EnvironmentEvent:
    """One entry of the environment event log."""
    date: datetime
    severity: str
    message: str

    @property
    def is_failure(self) -> bool:
        return self.message.lower().startswith(PLATFORM.failure_event_prefixes)


class BeanstalkClient:
    """Elastic Beanstalk and S3 operations used by the deployment commands."""

    def __init__(self, region: Optional[str] = None, profile: Optional[str] = None,
                 eb_client=None, s3_client=None):
        self.region = region
        self.profile = profile
        self._eb = eb_client
        self._s3 = s3_client
        self._session = None

    def _get_session(self):
        """Lazy initialization of the boto3 session."""
        if self._session is None:
            self._session = boto3.Session(profile_name=self.profile, region_name=self.region)
        return self._session

    @property
    def eb(self):
        if self._eb is None:
            self._eb = self._get_session().client("elasticbeanstalk")
        return self._eb

    @property
    def s3(self):
        if self._s3 is None:
            self._s3 = self._get_session().client("s3")
        return self._s3

    # Applications and environments

    def application_exists(self, application: str) -> bool:
        try:
            response = self.eb.describe_applications(ApplicationNames=[application])
        except AWS_ERRORS as e:
            raise ElasticBeanstalkError(
                f"Error looking up Elastic Beanstalk application {application}: {e}",
                EBCode.FAILED_TO_FIND_ENVIRONMENT, e,
            )
        return len(response.get("Applications", [])) == 1

    def create_application(self, application: str) -> None:
        logger.info("Creating new Elastic Beanstalk Application")
        try:
            self.eb.create_application(ApplicationName=application)
        except AWS_ERRORS as e:
            raise ElasticBeanstalkError(
                f"Error creating Elastic Beanstalk application: {e}",
                EBCode.FAILED_CREATE_APPLICATION, e,
            )

    def describe_environment(self, application: str, environment: str) -> EnvironmentState:
        """
        Look up an environment by name.

        Terminated and terminating environments count as absent.
        """
        try:
            response = self.eb.describe_environments(
                ApplicationName=application,
                EnvironmentNames=[environment],
            )
        except AWS_ERRORS as e:
            raise ElasticBeanstalkError(
                f"Error looking up environment {environment}: {e}",
                EBCode.FAILED_TO_FIND_ENVIRONMENT, e,
            )

        states = [EnvironmentState.from_description(d) for d in response.get("Environments", [])]
        live = [s for s in states if s.exists]
        if len(live) == 1:
            return live[0]
        if states and not live:
            return states[0]
        return EnvironmentState.absent(environment)

    def list_environments(self) -> Iterator[EnvironmentState]:
        """Yield every environment in the region, following NextToken."""
        kwargs: Dict[str, Any] = {}
        try:
            while True:
                response = self.eb.describe_environments(**kwargs)
                for description in response.get("Environments", []):
                    yield EnvironmentState.from_description(description)

                next_token = response.get("NextToken")
                if not next_token:
                    break
                kwargs["NextToken"] = next_token
        except AWS_ERRORS as e:
            raise ElasticBeanstalkError(f"Error listing environments: {e}", EBCode.FAILED_TO_FIND_ENVIRONMENT, e)

    def create_environment(self, request: Dict[str, Any]) -> Optional[str]:
        try:
            response = self.eb.create_environment(**request)
        except AWS_ERRORS as e:
            raise ElasticBeanstalkError(f"Error creating environment: {e}", EBCode.FAILED_TO_CREATE_ENVIRONMENT, e)
        return response.get("EnvironmentArn")

    def update_environment(self, request: Dict[str, Any]) -> Optional[str]:
        try:
            response = self.eb.update_environment(**request)
        except AWS_ERRORS as e:
            raise ElasticBeanstalkError(f"Error updating environment: {e}", EBCode.FAILED_TO_UPDATE_ENVIRONMENT, e)
        return response.get("EnvironmentArn")

    def update_tags(self, resource_arn: str, tags: List[Dict[str, str]]) -> None:
        logger.info("Updating Tags on environment")
        try:
            self.eb.update_tags_for_resource(ResourceArn=resource_arn, TagsToAdd=tags)
        except AWS_ERRORS as e:
            raise ElasticBeanstalkError(f"Error updating tags for environment: {e}", EBCode.FAILED_TO_UPDATE_TAGS, e)

    def terminate_environment(self, environment: str) -> None:
        try:
            self.eb.terminate_environment(EnvironmentName=environment)
        except AWS_ERRORS as e:
            raise ElasticBeanstalkError(
                f"Error deleting environment {environment}: {e}",
                EBCode.FAILED_TO_DELETE_ENVIRONMENT, e,
            )
        logger.info(f"Environment {environment} deleted")

    # Events

    def latest_event_date(self, application: str, environment: str) -> datetime:
        try:
            response = self.eb.describe_events(ApplicationName=application, EnvironmentName=environment)
        except AWS_ERRORS as e:
            raise ElasticBeanstalkError(
                f"Error reading events for environment {environment}: {e}",
                EBCode.FAILED_TO_FIND_ENVIRONMENT, e,
            )
        events = response.get("Events", [])
        if not events:
            return datetime.now(timezone.utc)
        return events[0]["EventDate"]

    def events_since(self, application: str, environment: str, start: datetime) -> List[EnvironmentEvent]:
        """Events newer than start, oldest first."""
        try:
            response = self.eb.describe_events(
                ApplicationName=application,
                EnvironmentName=environment,
                StartTime=start,
            )
        except AWS_ERRORS as e:
            raise ElasticBeanstalkError(
                f"Error reading events for environment {environment}: {e}",
                EBCode.FAILED_TO_FIND_ENVIRONMENT, e,
            )

        events = [
            EnvironmentEvent(e["EventDate"], e.get("Severity", ""), e.get("Message", ""))
            for e in response.get("Events", [])
            if e["EventDate"] > start
        ]
        return sorted(events, key=lambda e: e.date)

    # Bundle upload

    def ensure_bucket_exists(self, bucket: str) -> None:
        """
        Create the deployment bucket, accepting one this account already owns.

        Raises:
            ElasticBeanstalkError: If the bucket cannot be used for uploads
        """
        logger.info(f"Making sure bucket '{bucket}' exists")
        kwargs: Dict[str, Any] = {"Bucket": bucket}
        region = self.s3.meta.region_name
        if region and region != "us-east-1":
            kwargs["CreateBucketConfiguration"] = {"LocationConstraint": region}

        try:
            self.s3.create_bucket(**kwargs)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code")
            if code == "BucketAlreadyOwnedByYou":
                logger.info(f"..a bucket with name '{bucket}' already exists and will be used for upload")
                return
            logger.warning(f"Unable to use bucket name '{bucket}': {e}")
            raise ElasticBeanstalkError(
                "Detected error in deployment bucket preparation; abandoning deployment",
                EBCode.ENSURE_BUCKET_EXISTS_ERROR, e,
            )
        except BotoCoreError as e:
            logger.warning(f"Attempt to create deployment upload bucket failed: {e}")
            raise ElasticBeanstalkError(
                "Detected error in deployment bucket preparation; abandoning deployment",
                EBCode.ENSURE_BUCKET_EXISTS_ERROR, e,
            )

    def upload_bundle(self, application: str, version_label: str, bundle: Path) -> Dict[str, str]:
        """
        Upload a bundle to the Elastic Beanstalk storage bucket.

        Returns:
            SourceBundle dict for CreateApplicationVersion
        """
        try:
            bucket = self.eb.create_storage_location()["S3Bucket"]
        except AWS_ERRORS as e:
            raise ElasticBeanstalkError(
                f"Error getting Elastic Beanstalk storage location: {e}",
                EBCode.ENSURE_BUCKET_EXISTS_ERROR, e,
            )

        self.ensure_bucket_exists(bucket)

        key = s3_key_for_version(application, version_label, bundle.suffix or ".zip")
        logger.info("....uploading application deployment package to Amazon S3")
        try:
            logger.info(f"......uploading from file path {bundle}, size {bundle.stat().st_size} bytes")
            self.s3.upload_file(str(bundle), bucket, key)
        except (OSError, S3UploadFailedError, *AWS_ERRORS) as e:
            raise ElasticBeanstalkError(
                f"Error uploading application bundle to S3: {e}",
                EBCode.FAILED_TO_UPLOAD_BUNDLE, e,
            )

        return {"S3Bucket": bucket, "S3Key": key}

    def create_application_version(self, application: str, version_label: str,
                                   source_bundle: Dict[str, str]) -> None:
        logger.info(f"Creating new application version: {version_label}")
        try:
            self.eb.create_application_version(
                ApplicationName=application,
                VersionLabel=version_label,
                SourceBundle=source_bundle,
            )
        except AWS_ERRORS as e:
            raise ElasticBeanstalkError(
                f"Error creating Elastic Beanstalk application version: {e}",
                EBCode.FAILED_CREATE_APPLICATION_VERSION, e,
            )
