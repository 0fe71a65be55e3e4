from datetime import datetime, timezone

import boto3
import pytest
from botocore.exceptions import ClientError
from botocore.stub import Stubber

from common.errors import EventualConsistencyError
from teardown.aws_targets import AwsTeardown
from teardown.orchestrator import Outcome, teardown_target

BUCKET = "acme-production-public-1700000000"
CREATED = datetime(2024, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def session():
    return boto3.session.Session(
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
        region_name="us-east-1",
    )


@pytest.fixture
def aws(session) -> AwsTeardown:
    # One drain worker keeps the stubbed calls in order.
    return AwsTeardown("acme", app_env="production", session=session, drain_workers=1)


def iam_user(name: str) -> dict:
    return {
        "Path": "/",
        "UserName": name,
        "UserId": "AIDA000000000000000001",
        "Arn": f"arn:aws:iam::123456789012:user/{name}",
        "CreateDate": CREATED,
    }


def target(aws: AwsTeardown, resource_type: str):
    (match,) = [item for item in aws.targets() if item.resource_type == resource_type]
    return match


def test_bucket_is_drained_before_it_is_deleted(aws: AwsTeardown):
    with Stubber(aws.s3) as stubber:
        stubber.add_response(
            "list_object_versions",
            {
                "Versions": [{"Key": "index.html", "VersionId": "v1"}],
                "DeleteMarkers": [{"Key": "old.html", "VersionId": "v2"}],
                "IsTruncated": False,
            },
            {"Bucket": BUCKET},
        )
        stubber.add_response(
            "delete_object", {}, {"Bucket": BUCKET, "Key": "index.html", "VersionId": "v1"}
        )
        stubber.add_response(
            "delete_object", {}, {"Bucket": BUCKET, "Key": "old.html", "VersionId": "v2"}
        )
        stubber.add_response(
            "list_multipart_uploads",
            {"Uploads": [{"Key": "video.mp4", "UploadId": "u1"}]},
            {"Bucket": BUCKET},
        )
        stubber.add_response(
            "abort_multipart_upload", {}, {"Bucket": BUCKET, "Key": "video.mp4", "UploadId": "u1"}
        )
        stubber.add_response("delete_bucket", {}, {"Bucket": BUCKET})

        aws.delete_bucket(BUCKET)
        stubber.assert_no_pending_responses()


def test_bucket_still_receiving_objects_is_retried_later(aws: AwsTeardown):
    with Stubber(aws.s3) as stubber:
        stubber.add_response("list_object_versions", {"IsTruncated": False}, {"Bucket": BUCKET})
        stubber.add_response("list_multipart_uploads", {}, {"Bucket": BUCKET})
        stubber.add_client_error(
            "delete_bucket",
            service_error_code="BucketNotEmpty",
            service_message="The bucket you tried to delete is not empty",
            http_status_code=409,
        )

        with pytest.raises(EventualConsistencyError):
            aws.delete_bucket(BUCKET)


def test_only_the_applications_buckets_are_matched(aws: AwsTeardown):
    buckets = target(aws, "bucket")
    assert buckets.match(BUCKET)
    assert buckets.match("acme-production-email-1700000000")
    assert not buckets.match("acme-staging-public-1700000000")
    assert not buckets.match("globex-production-public")


def test_replicated_function_is_retried_later(aws: AwsTeardown):
    name = "acme-production-docs-origin-request-function-1700000000"
    with Stubber(aws.lambda_client) as stubber:
        stubber.add_client_error(
            "delete_function",
            service_error_code="InvalidParameterValueException",
            service_message=f"Lambda was unable to delete {name} because it is a replicated function.",
            expected_params={"FunctionName": name},
        )
        with pytest.raises(EventualConsistencyError):
            aws.delete_function(name)


def test_other_function_errors_propagate(aws: AwsTeardown):
    with Stubber(aws.lambda_client) as stubber:
        stubber.add_client_error("delete_function", service_error_code="AccessDeniedException")
        with pytest.raises(ClientError):
            aws.delete_function("acme-production-email-inbound-function")


def test_instances_are_found_by_name_tag(aws: AwsTeardown):
    with Stubber(aws.ec2) as stubber:
        stubber.add_response(
            "describe_instances",
            {"Reservations": [{"Instances": [{"InstanceId": "i-0abc"}, {"InstanceId": "i-0def"}]}]},
            {
                "Filters": [
                    {"Name": "tag:Name", "Values": ["acme-production-*"]},
                    {
                        "Name": "instance-state-name",
                        "Values": ["pending", "running", "stopping", "stopped"],
                    },
                ]
            },
        )
        assert aws.list_instances() == ["i-0abc", "i-0def"]


def test_users_are_stripped_before_deletion(aws: AwsTeardown):
    user = "acme-production-chris"
    with Stubber(aws.iam) as stubber:
        stubber.add_response(
            "list_attached_user_policies",
            {
                "AttachedPolicies": [
                    {"PolicyName": "ReadOnlyAccess", "PolicyArn": "arn:aws:iam::aws:policy/ReadOnlyAccess"}
                ]
            },
            {"UserName": user},
        )
        stubber.add_response(
            "detach_user_policy",
            {},
            {"UserName": user, "PolicyArn": "arn:aws:iam::aws:policy/ReadOnlyAccess"},
        )
        stubber.add_response("list_user_policies", {"PolicyNames": ["inline"]}, {"UserName": user})
        stubber.add_response(
            "delete_user_policy", {}, {"UserName": user, "PolicyName": "inline"}
        )
        stubber.add_response(
            "list_access_keys",
            {"AccessKeyMetadata": [{"UserName": user, "AccessKeyId": "AKIA0000000000000001"}]},
            {"UserName": user},
        )
        stubber.add_response(
            "delete_access_key", {}, {"UserName": user, "AccessKeyId": "AKIA0000000000000001"}
        )
        stubber.add_response(
            "list_groups_for_user",
            {
                "Groups": [
                    {
                        "Path": "/",
                        "GroupName": "acme-production-team",
                        "GroupId": "AGPA000000000000000001",
                        "Arn": "arn:aws:iam::123456789012:group/acme-production-team",
                        "CreateDate": CREATED,
                    }
                ]
            },
            {"UserName": user},
        )
        stubber.add_response(
            "remove_user_from_group", {}, {"GroupName": "acme-production-team", "UserName": user}
        )
        stubber.add_client_error(
            "delete_login_profile",
            service_error_code="NoSuchEntity",
            http_status_code=404,
            expected_params={"UserName": user},
        )
        stubber.add_response("delete_user", {}, {"UserName": user})

        aws.delete_user(user)
        stubber.assert_no_pending_responses()


def test_users_are_matched_by_environment_prefix(aws: AwsTeardown):
    users = target(aws, "iam_user")
    with Stubber(aws.iam) as stubber:
        stubber.add_response(
            "list_users",
            {
                "Users": [
                    iam_user("acme-production-chris"),
                    iam_user("acme-staging-chris"),
                    iam_user("admin"),
                ]
            },
        )
        listed = [name for name in users.list_resources() if users.match(name)]
    assert listed == ["acme-production-chris"]


def test_parameters_are_listed_by_path(aws: AwsTeardown):
    with Stubber(aws.ssm) as stubber:
        stubber.add_response(
            "describe_parameters",
            {"Parameters": [{"Name": "/acme/production/timestamp"}, {"Name": "/acme/production/vpc-id"}]},
            {
                "ParameterFilters": [
                    {"Key": "Name", "Option": "BeginsWith", "Values": ["/acme/production/"]}
                ]
            },
        )
        assert aws.list_parameters() == ["/acme/production/timestamp", "/acme/production/vpc-id"]


def test_without_an_environment_every_environment_matches(session):
    aws = AwsTeardown("acme", session=session)
    assert aws.prefix == "acme"
    assert aws.parameter_prefix == "/acme/"
    assert aws.owns("/aws/lambda/acme-staging-email-inbound-function")


NAME_FILTER = [{"Name": "tag:Name", "Values": ["acme-production-*"]}]


def test_network_targets_are_registered(aws: AwsTeardown):
    names = [item.resource_type for item in aws.targets()]
    assert names.index("instance") < names.index("subnet") < names.index("vpc")


def test_subnets_and_vpcs_are_found_by_name_tag(aws: AwsTeardown):
    with Stubber(aws.ec2) as stubber:
        stubber.add_response(
            "describe_subnets",
            {"Subnets": [{"SubnetId": "subnet-0a"}, {"SubnetId": "subnet-0b"}]},
            {"Filters": NAME_FILTER},
        )
        stubber.add_response("describe_vpcs", {"Vpcs": [{"VpcId": "vpc-0a"}]}, {"Filters": NAME_FILTER})

        assert aws.list_subnets() == ["subnet-0a", "subnet-0b"]
        assert aws.list_vpcs() == ["vpc-0a"]


def test_network_interfaces_are_released_before_the_subnet(aws: AwsTeardown):
    with Stubber(aws.ec2) as stubber:
        stubber.add_response(
            "describe_network_interfaces",
            {
                "NetworkInterfaces": [
                    {
                        "NetworkInterfaceId": "eni-attached",
                        "Attachment": {"AttachmentId": "eni-attach-1", "DeviceIndex": 1},
                    },
                    {"NetworkInterfaceId": "eni-loose"},
                    {
                        "NetworkInterfaceId": "eni-primary",
                        "Attachment": {
                            "AttachmentId": "eni-attach-0",
                            "DeviceIndex": 0,
                            "InstanceId": "i-0abc",
                        },
                    },
                ]
            },
            {"Filters": [{"Name": "subnet-id", "Values": ["subnet-0a"]}]},
        )
        stubber.add_response(
            "detach_network_interface", {}, {"AttachmentId": "eni-attach-1", "Force": True}
        )
        stubber.add_response(
            "delete_network_interface", {}, {"NetworkInterfaceId": "eni-attached"}
        )
        stubber.add_response("delete_network_interface", {}, {"NetworkInterfaceId": "eni-loose"})
        stubber.add_response("delete_subnet", {}, {"SubnetId": "subnet-0a"})

        aws.delete_subnet("subnet-0a")
        stubber.assert_no_pending_responses()


def test_interface_still_detaching_is_retried_later(aws: AwsTeardown):
    with Stubber(aws.ec2) as stubber:
        stubber.add_response(
            "describe_network_interfaces",
            {"NetworkInterfaces": [{"NetworkInterfaceId": "eni-loose"}]},
        )
        stubber.add_client_error(
            "delete_network_interface",
            service_error_code="InvalidNetworkInterface.InUse",
            service_message="Network interface 'eni-loose' is currently in use.",
        )

        with pytest.raises(EventualConsistencyError):
            aws.delete_subnet("subnet-0a")


def test_vpc_gateways_are_removed_before_the_vpc(aws: AwsTeardown):
    with Stubber(aws.ec2) as stubber:
        stubber.add_response(
            "describe_internet_gateways",
            {"InternetGateways": [{"InternetGatewayId": "igw-0a"}]},
            {"Filters": [{"Name": "attachment.vpc-id", "Values": ["vpc-0a"]}]},
        )
        stubber.add_response(
            "detach_internet_gateway", {}, {"InternetGatewayId": "igw-0a", "VpcId": "vpc-0a"}
        )
        stubber.add_response("delete_internet_gateway", {}, {"InternetGatewayId": "igw-0a"})
        stubber.add_response(
            "describe_nat_gateways",
            {"NatGateways": [{"NatGatewayId": "nat-0a"}]},
            {
                "Filter": [
                    {"Name": "vpc-id", "Values": ["vpc-0a"]},
                    {"Name": "state", "Values": ["pending", "available"]},
                ]
            },
        )
        stubber.add_response(
            "delete_nat_gateway", {"NatGatewayId": "nat-0a"}, {"NatGatewayId": "nat-0a"}
        )
        stubber.add_response("delete_vpc", {}, {"VpcId": "vpc-0a"})

        aws.delete_vpc("vpc-0a")
        stubber.assert_no_pending_responses()


def test_vpc_with_remaining_subnets_is_retried_later(aws: AwsTeardown):
    with Stubber(aws.ec2) as stubber:
        stubber.add_response("describe_vpcs", {"Vpcs": [{"VpcId": "vpc-0a"}]}, {"Filters": NAME_FILTER})
        stubber.add_response("describe_internet_gateways", {"InternetGateways": []})
        stubber.add_response("describe_nat_gateways", {"NatGateways": []})
        stubber.add_client_error(
            "delete_vpc",
            service_error_code="DependencyViolation",
            service_message="The vpc 'vpc-0a' has dependencies and cannot be deleted.",
            expected_params={"VpcId": "vpc-0a"},
        )

        (outcome,) = teardown_target(target(aws, "vpc"))

    assert outcome.outcome is Outcome.RETRY_LATER
    assert outcome.resource == "vpc-0a"


def test_other_subnet_errors_propagate(aws: AwsTeardown):
    with Stubber(aws.ec2) as stubber:
        stubber.add_response("describe_network_interfaces", {"NetworkInterfaces": []})
        stubber.add_client_error("delete_subnet", service_error_code="UnauthorizedOperation")

        with pytest.raises(ClientError):
            aws.delete_subnet("subnet-0a")
