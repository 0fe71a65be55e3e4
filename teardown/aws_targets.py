"""boto3-backed teardown targets, matched by the resource naming convention."""
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Iterable, Optional

import boto3
from botocore.exceptions import ClientError

from common.errors import EventualConsistencyError
from common.log import logger
from teardown.orchestrator import TeardownReport, TeardownTarget, run_teardown

DRAIN_WORKERS = 8
NETWORK_IN_USE_CODES = ("DependencyViolation", "InvalidNetworkInterface.InUse")


def _error_code(e: ClientError) -> str:
    return e.response.get("Error", {}).get("Code", "UnknownError")


def _error_message(e: ClientError) -> str:
    return e.response.get("Error", {}).get("Message", "")


class AwsTeardown:
    """Builds the per-resource-type targets for one application.

    ``prefix`` is ``<slug>`` or ``<slug>-<env>``; every resource the
    composition names starts with it.
    """

    def __init__(
        self,
        slug: str,
        app_env: Optional[str] = None,
        session: Optional[Any] = None,
        drain_workers: int = DRAIN_WORKERS,
    ) -> None:
        self.slug = slug
        self.prefix = f"{slug}-{app_env}" if app_env else slug
        self.parameter_prefix = f"/{slug}/{app_env}/" if app_env else f"/{slug}/"
        self.session = session or boto3.session.Session()
        self.drain_workers = drain_workers
        self.s3 = self.session.client("s3")
        self.lambda_client = self.session.client("lambda")
        self.ec2 = self.session.client("ec2")
        self.iam = self.session.client("iam")
        self.logs = self.session.client("logs")
        self.ssm = self.session.client("ssm")

    def owns(self, name: str) -> bool:
        return self.prefix in name.lower()

    def targets(self) -> list[TeardownTarget]:
        return [
            TeardownTarget("bucket", self.list_buckets, self.delete_bucket, self.owns),
            TeardownTarget("function", self.list_functions, self.delete_function, self.owns),
            TeardownTarget("instance", self.list_instances, self.terminate_instance),
            TeardownTarget("subnet", self.list_subnets, self.delete_subnet),
            TeardownTarget("vpc", self.list_vpcs, self.delete_vpc),
            TeardownTarget(
                "iam_user",
                self.list_users,
                self.delete_user,
                lambda name: name.lower().startswith(f"{self.prefix}-"),
            ),
            TeardownTarget("log_group", self.list_log_groups, self.delete_log_group, self.owns),
            TeardownTarget("parameter", self.list_parameters, self.delete_parameter),
        ]

    # ---------- buckets ----------
    def list_buckets(self) -> list[str]:
        return [bucket["Name"] for bucket in self.s3.list_buckets().get("Buckets", [])]

    def _fan_out(self, call: Callable[..., Any], requests: Iterable[dict[str, Any]]) -> None:
        """Run ``call`` once per request concurrently and re-raise the first failure."""
        with ThreadPoolExecutor(max_workers=self.drain_workers) as executor:
            futures = [executor.submit(call, **request) for request in requests]
        for future in futures:
            future.result()

    def drain_bucket(self, bucket: str) -> None:
        """Remove every object version, delete marker and unfinished upload."""
        paginator = self.s3.get_paginator("list_object_versions")
        for page in paginator.paginate(Bucket=bucket):
            entries = page.get("Versions", []) + page.get("DeleteMarkers", [])
            if entries:
                logger.info("Deleting object versions", bucket=bucket, count=len(entries))
            self._fan_out(
                self.s3.delete_object,
                (
                    {"Bucket": bucket, "Key": entry["Key"], "VersionId": entry["VersionId"]}
                    for entry in entries
                ),
            )

        uploads = self.s3.list_multipart_uploads(Bucket=bucket).get("Uploads", [])
        if uploads:
            logger.info("Aborting multipart uploads", bucket=bucket, count=len(uploads))
        self._fan_out(
            self.s3.abort_multipart_upload,
            (
                {"Bucket": bucket, "Key": upload["Key"], "UploadId": upload["UploadId"]}
                for upload in uploads
            ),
        )

    def delete_bucket(self, bucket: str) -> None:
        self.drain_bucket(bucket)
        try:
            self.s3.delete_bucket(Bucket=bucket)
        except ClientError as e:
            if _error_code(e) == "BucketNotEmpty":
                raise EventualConsistencyError(bucket, "objects are still being written") from e
            raise

    # ---------- functions ----------
    def list_functions(self) -> list[str]:
        paginator = self.lambda_client.get_paginator("list_functions")
        return [
            function["FunctionName"]
            for page in paginator.paginate()
            for function in page.get("Functions", [])
        ]

    def delete_function(self, name: str) -> None:
        try:
            self.lambda_client.delete_function(FunctionName=name)
        except ClientError as e:
            if "replicated function" in _error_message(e):
                raise EventualConsistencyError(
                    name, "CloudFront is still removing the function replicas"
                ) from e
            raise

    # ---------- instances ----------
    def list_instances(self) -> list[str]:
        paginator = self.ec2.get_paginator("describe_instances")
        pages = paginator.paginate(
            Filters=[
                {"Name": "tag:Name", "Values": [f"{self.prefix}-*"]},
                {
                    "Name": "instance-state-name",
                    "Values": ["pending", "running", "stopping", "stopped"],
                },
            ]
        )
        return [
            instance["InstanceId"]
            for page in pages
            for reservation in page.get("Reservations", [])
            for instance in reservation.get("Instances", [])
        ]

    def terminate_instance(self, instance_id: str) -> None:
        self.ec2.terminate_instances(InstanceIds=[instance_id])

    # ---------- network ----------
    def _name_filter(self) -> list[dict[str, Any]]:
        return [{"Name": "tag:Name", "Values": [f"{self.prefix}-*"]}]

    def _still_in_use(self, e: ClientError, resource: str) -> None:
        if _error_code(e) in NETWORK_IN_USE_CODES:
            raise EventualConsistencyError(resource, _error_message(e) or "still in use") from e

    def list_subnets(self) -> list[str]:
        paginator = self.ec2.get_paginator("describe_subnets")
        return [
            subnet["SubnetId"]
            for page in paginator.paginate(Filters=self._name_filter())
            for subnet in page.get("Subnets", [])
        ]

    def release_network_interfaces(self, subnet_id: str) -> None:
        """Detach, then delete, the network interfaces left in a subnet.

        Primary interfaces go away with their instance and are left alone.
        """
        interfaces = self.ec2.describe_network_interfaces(
            Filters=[{"Name": "subnet-id", "Values": [subnet_id]}]
        ).get("NetworkInterfaces", [])
        for interface in interfaces:
            interface_id = interface["NetworkInterfaceId"]
            attachment = interface.get("Attachment") or {}
            if attachment.get("DeviceIndex") == 0 and attachment.get("InstanceId"):
                continue
            try:
                if attachment.get("AttachmentId"):
                    logger.info("Detaching network interface", interface=interface_id, subnet=subnet_id)
                    self.ec2.detach_network_interface(
                        AttachmentId=attachment["AttachmentId"], Force=True
                    )
                self.ec2.delete_network_interface(NetworkInterfaceId=interface_id)
            except ClientError as e:
                self._still_in_use(e, interface_id)
                raise

    def delete_subnet(self, subnet_id: str) -> None:
        self.release_network_interfaces(subnet_id)
        try:
            self.ec2.delete_subnet(SubnetId=subnet_id)
        except ClientError as e:
            self._still_in_use(e, subnet_id)
            raise

    def list_vpcs(self) -> list[str]:
        paginator = self.ec2.get_paginator("describe_vpcs")
        return [
            vpc["VpcId"]
            for page in paginator.paginate(Filters=self._name_filter())
            for vpc in page.get("Vpcs", [])
        ]

    def delete_vpc(self, vpc_id: str) -> None:
        """Remove the gateways attached to a VPC, then the VPC.

        Subnets are removed by their own target; until they are gone the
        VPC is reported as retry-later.
        """
        try:
            self._delete_gateways(vpc_id)
            self.ec2.delete_vpc(VpcId=vpc_id)
        except ClientError as e:
            self._still_in_use(e, vpc_id)
            raise

    def _delete_gateways(self, vpc_id: str) -> None:
        gateways = self.ec2.describe_internet_gateways(
            Filters=[{"Name": "attachment.vpc-id", "Values": [vpc_id]}]
        )
        for gateway in gateways.get("InternetGateways", []):
            gateway_id = gateway["InternetGatewayId"]
            logger.info("Removing internet gateway", gateway=gateway_id, vpc=vpc_id)
            self.ec2.detach_internet_gateway(InternetGatewayId=gateway_id, VpcId=vpc_id)
            self.ec2.delete_internet_gateway(InternetGatewayId=gateway_id)
        nat_gateways = self.ec2.describe_nat_gateways(
            Filter=[
                {"Name": "vpc-id", "Values": [vpc_id]},
                {"Name": "state", "Values": ["pending", "available"]},
            ]
        )
        for nat_gateway in nat_gateways.get("NatGateways", []):
            logger.info("Removing NAT gateway", gateway=nat_gateway["NatGatewayId"], vpc=vpc_id)
            self.ec2.delete_nat_gateway(NatGatewayId=nat_gateway["NatGatewayId"])

    # ---------- IAM users ----------
    def list_users(self) -> list[str]:
        paginator = self.iam.get_paginator("list_users")
        return [user["UserName"] for page in paginator.paginate() for user in page.get("Users", [])]

    def delete_user(self, user_name: str) -> None:
        """Strip everything IAM refuses to delete a user with, then the user."""
        attached = self.iam.list_attached_user_policies(UserName=user_name)
        for policy in attached.get("AttachedPolicies", []):
            self.iam.detach_user_policy(UserName=user_name, PolicyArn=policy["PolicyArn"])
        for policy_name in self.iam.list_user_policies(UserName=user_name).get("PolicyNames", []):
            self.iam.delete_user_policy(UserName=user_name, PolicyName=policy_name)
        for key in self.iam.list_access_keys(UserName=user_name).get("AccessKeyMetadata", []):
            self.iam.delete_access_key(UserName=user_name, AccessKeyId=key["AccessKeyId"])
        for group in self.iam.list_groups_for_user(UserName=user_name).get("Groups", []):
            self.iam.remove_user_from_group(GroupName=group["GroupName"], UserName=user_name)
        try:
            self.iam.delete_login_profile(UserName=user_name)
        except ClientError as e:
            if _error_code(e) != "NoSuchEntity":
                raise
        self.iam.delete_user(UserName=user_name)

    # ---------- log groups ----------
    def list_log_groups(self) -> list[str]:
        paginator = self.logs.get_paginator("describe_log_groups")
        return [
            group["logGroupName"]
            for page in paginator.paginate()
            for group in page.get("logGroups", [])
        ]

    def delete_log_group(self, name: str) -> None:
        self.logs.delete_log_group(logGroupName=name)

    # ---------- parameters ----------
    def list_parameters(self) -> list[str]:
        paginator = self.ssm.get_paginator("describe_parameters")
        pages = paginator.paginate(
            ParameterFilters=[
                {"Key": "Name", "Option": "BeginsWith", "Values": [self.parameter_prefix]}
            ]
        )
        return [
            parameter["Name"]
            for page in pages
            for parameter in page.get("Parameters", [])
        ]

    def delete_parameter(self, name: str) -> None:
        self.ssm.delete_parameter(Name=name)


def teardown(
    slug: str, app_env: Optional[str] = None, session: Optional[Any] = None
) -> TeardownReport:
    """Remove every resource of ``slug`` (optionally one environment of it)."""
    logger.info("Starting teardown", slug=slug, app_env=app_env)
    return run_teardown(AwsTeardown(slug, app_env=app_env, session=session).targets())
