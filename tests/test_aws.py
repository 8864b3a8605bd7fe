"""
Tests for the Elastic Beanstalk and S3 client wrapper.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import pytest
from botocore.exceptions import ClientError

from ebtools.aws import BeanstalkClient, EnvironmentEvent, EnvironmentState
from ebtools.errors import ElasticBeanstalkError, EBCode

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def _client_error(code="ValidationError", operation="Operation", status=400):
    return ClientError({
        "Error": {"Code": code, "Message": "boom"},
        "ResponseMetadata": {"HTTPStatusCode": status},
    }, operation)


def _client(eb=None, s3=None):
    return BeanstalkClient(eb_client=eb or Mock(), s3_client=s3 or Mock())


class TestEnvironmentState:
    """Test environment snapshots."""

    def test_from_description(self):
        state = EnvironmentState.from_description({
            "EnvironmentName": "Env",
            "Status": "Ready",
            "Health": "Green",
            "EnvironmentArn": "arn:env",
            "SolutionStackName": "64bit Amazon Linux 2 v2.5.0 running .NET Core",
            "CNAME": "env.eu-west-1.elasticbeanstalk.com",
        })

        assert state.exists
        assert not state.in_progress
        assert state.endpoint == "env.eu-west-1.elasticbeanstalk.com"

    def test_terminating_does_not_exist(self):
        state = EnvironmentState.from_description({"EnvironmentName": "Env", "Status": "Terminating"})

        assert not state.exists
        assert state.terminated

    def test_failure_event(self):
        assert EnvironmentEvent(T0, "ERROR", "Failed to deploy application.").is_failure
        assert EnvironmentEvent(T0, "ERROR", "Error occurred during build: Command hooks failed").is_failure
        assert not EnvironmentEvent(T0, "INFO", "Environment update is starting.").is_failure


class TestLookups:
    """Test application and environment lookups."""

    def test_application_exists(self):
        eb = Mock()
        eb.describe_applications.return_value = {"Applications": [{"ApplicationName": "App"}]}

        assert _client(eb).application_exists("App")
        eb.describe_applications.assert_called_once_with(ApplicationNames=["App"])

    def test_application_missing(self):
        eb = Mock()
        eb.describe_applications.return_value = {"Applications": []}

        assert not _client(eb).application_exists("App")

    def test_describe_environment_skips_terminated(self):
        eb = Mock()
        eb.describe_environments.return_value = {"Environments": [
            {"EnvironmentName": "Env", "Status": "Terminated"},
            {"EnvironmentName": "Env", "Status": "Ready", "EnvironmentArn": "arn:live"},
        ]}

        state = _client(eb).describe_environment("App", "Env")

        assert state.exists
        assert state.arn == "arn:live"

    def test_describe_environment_only_terminated(self):
        eb = Mock()
        eb.describe_environments.return_value = {"Environments": [{"EnvironmentName": "Env", "Status": "Terminated"}]}

        state = _client(eb).describe_environment("App", "Env")

        assert not state.exists
        assert state.status == "Terminated"

    def test_describe_environment_none(self):
        eb = Mock()
        eb.describe_environments.return_value = {"Environments": []}

        state = _client(eb).describe_environment("App", "Env")

        assert not state.exists
        assert state.status is None

    def test_lookup_error_keeps_cause(self):
        eb = Mock()
        error = _client_error("AccessDenied", status=403)
        eb.describe_environments.side_effect = error

        with pytest.raises(ElasticBeanstalkError) as exc_info:
            _client(eb).describe_environment("App", "Env")

        assert exc_info.value.code == EBCode.FAILED_TO_FIND_ENVIRONMENT
        assert exc_info.value.cause is error
        assert exc_info.value.service_code == "AccessDenied-403"

    def test_list_environments_pages(self):
        eb = Mock()
        eb.describe_environments.side_effect = [
            {"Environments": [{"EnvironmentName": "a", "Status": "Ready"}], "NextToken": "t1"},
            {"Environments": [{"EnvironmentName": "b", "Status": "Updating"}]},
        ]

        names = [e.name for e in _client(eb).list_environments()]

        assert names == ["a", "b"]
        assert eb.describe_environments.call_args_list[1].kwargs == {"NextToken": "t1"}


class TestMutations:
    """Test create, update, tag and delete calls."""

    @pytest.mark.parametrize("method,operation,code", [
        ("create_environment", "create_environment", EBCode.FAILED_TO_CREATE_ENVIRONMENT),
        ("update_environment", "update_environment", EBCode.FAILED_TO_UPDATE_ENVIRONMENT),
    ])
    def test_environment_errors(self, method, operation, code):
        eb = Mock()
        getattr(eb, operation).side_effect = _client_error()

        with pytest.raises(ElasticBeanstalkError) as exc_info:
            getattr(_client(eb), method)({"EnvironmentName": "Env"})

        assert exc_info.value.code == code

    def test_create_environment_returns_arn(self):
        eb = Mock()
        eb.create_environment.return_value = {"EnvironmentArn": "arn:new"}

        assert _client(eb).create_environment({"EnvironmentName": "Env"}) == "arn:new"
        eb.create_environment.assert_called_once_with(EnvironmentName="Env")

    def test_update_tags_error(self):
        eb = Mock()
        eb.update_tags_for_resource.side_effect = _client_error()

        with pytest.raises(ElasticBeanstalkError) as exc_info:
            _client(eb).update_tags("arn:env", [{"Key": "a", "Value": "b"}])

        assert exc_info.value.code == EBCode.FAILED_TO_UPDATE_TAGS

    def test_terminate_error(self):
        eb = Mock()
        eb.terminate_environment.side_effect = _client_error()

        with pytest.raises(ElasticBeanstalkError) as exc_info:
            _client(eb).terminate_environment("Env")

        assert exc_info.value.code == EBCode.FAILED_TO_DELETE_ENVIRONMENT

    def test_create_application_error(self):
        eb = Mock()
        eb.create_application.side_effect = _client_error()

        with pytest.raises(ElasticBeanstalkError) as exc_info:
            _client(eb).create_application("App")

        assert exc_info.value.code == EBCode.FAILED_CREATE_APPLICATION


class TestEvents:
    """Test event reads."""

    def test_latest_event_date(self):
        eb = Mock()
        eb.describe_events.return_value = {"Events": [{"EventDate": T0}]}

        assert _client(eb).latest_event_date("App", "Env") == T0

    def test_latest_event_date_no_events(self):
        eb = Mock()
        eb.describe_events.return_value = {"Events": []}

        assert _client(eb).latest_event_date("App", "Env").tzinfo is not None

    def test_events_since_sorted_and_filtered(self):
        eb = Mock()
        eb.describe_events.return_value = {"Events": [
            {"EventDate": T0 + timedelta(seconds=20), "Severity": "INFO", "Message": "second"},
            {"EventDate": T0 + timedelta(seconds=10), "Severity": "INFO", "Message": "first"},
            {"EventDate": T0, "Severity": "INFO", "Message": "already seen"},
        ]}

        events = _client(eb).events_since("App", "Env", T0)

        assert [e.message for e in events] == ["first", "second"]


class TestUpload:
    """Test bundle upload."""

    def _s3(self, region="eu-west-1"):
        s3 = Mock()
        s3.meta.region_name = region
        return s3

    def test_upload_bundle(self, tmp_path):
        bundle = tmp_path / "bundle.zip"
        bundle.write_bytes(b"zip")
        eb = Mock()
        eb.create_storage_location.return_value = {"S3Bucket": "eb-bucket"}
        s3 = self._s3()

        result = _client(eb, s3).upload_bundle("My App", "v1", bundle)

        assert result == {"S3Bucket": "eb-bucket", "S3Key": "My-App/AWSDeploymentArchive_My-App_v1.zip"}
        s3.create_bucket.assert_called_once_with(
            Bucket="eb-bucket", CreateBucketConfiguration={"LocationConstraint": "eu-west-1"},
        )
        s3.upload_file.assert_called_once_with(str(bundle), "eb-bucket", result["S3Key"])

    def test_bucket_in_us_east_1(self):
        s3 = self._s3("us-east-1")

        _client(s3=s3).ensure_bucket_exists("bucket")

        s3.create_bucket.assert_called_once_with(Bucket="bucket")

    def test_bucket_already_owned(self):
        s3 = self._s3()
        s3.create_bucket.side_effect = _client_error("BucketAlreadyOwnedByYou", "CreateBucket", 409)

        _client(s3=s3).ensure_bucket_exists("bucket")

    def test_bucket_error_keeps_cause(self):
        """The CreateBucket failure travels with the raised error."""
        s3 = self._s3()
        error = _client_error("BucketAlreadyExists", "CreateBucket", 409)
        s3.create_bucket.side_effect = error

        with pytest.raises(ElasticBeanstalkError) as exc_info:
            _client(s3=s3).ensure_bucket_exists("bucket")

        assert exc_info.value.code == EBCode.ENSURE_BUCKET_EXISTS_ERROR
        assert exc_info.value.cause is error
        assert exc_info.value.service_code == "BucketAlreadyExists-409"

    def test_bucket_failure_aborts_upload(self, tmp_path):
        bundle = tmp_path / "bundle.zip"
        bundle.write_bytes(b"zip")
        eb = Mock()
        eb.create_storage_location.return_value = {"S3Bucket": "eb-bucket"}
        s3 = self._s3()
        s3.create_bucket.side_effect = _client_error("BucketAlreadyExists", "CreateBucket", 409)

        with pytest.raises(ElasticBeanstalkError) as exc_info:
            _client(eb, s3).upload_bundle("App", "v1", bundle)

        assert exc_info.value.code == EBCode.ENSURE_BUCKET_EXISTS_ERROR
        s3.upload_file.assert_not_called()

    def test_upload_failure(self, tmp_path):
        bundle = tmp_path / "bundle.zip"
        bundle.write_bytes(b"zip")
        eb = Mock()
        eb.create_storage_location.return_value = {"S3Bucket": "eb-bucket"}
        s3 = self._s3()
        s3.upload_file.side_effect = _client_error("AccessDenied", "PutObject", 403)

        with pytest.raises(ElasticBeanstalkError) as exc_info:
            _client(eb, s3).upload_bundle("App", "v1", bundle)

        assert exc_info.value.code == EBCode.FAILED_TO_UPLOAD_BUNDLE

    def test_missing_bundle(self, tmp_path):
        eb = Mock()
        eb.create_storage_location.return_value = {"S3Bucket": "eb-bucket"}

        with pytest.raises(ElasticBeanstalkError) as exc_info:
            _client(eb, self._s3()).upload_bundle("App", "v1", tmp_path / "missing.zip")

        assert exc_info.value.code == EBCode.FAILED_TO_UPLOAD_BUNDLE

    def test_create_application_version(self):
        eb = Mock()

        _client(eb).create_application_version("App", "v1", {"S3Bucket": "b", "S3Key": "k"})

        eb.create_application_version.assert_called_once_with(
            ApplicationName="App", VersionLabel="v1", SourceBundle={"S3Bucket": "b", "S3Key": "k"},
        )
