"""Resource Provider backed by AWS CDK constructs.

Every capability call adds constructs to one ``Stack`` and returns a
``Handle`` whose ``resource`` is the construct itself; other calls on this
provider reach back into it when they need the typed object (a bucket for a
deployment, a hosted zone for certificate validation).
"""
import json
from pathlib import Path
from typing import Any, Optional

from aws_cdk import (
    CfnOutput,
    Duration,
    RemovalPolicy,
    SecretValue,
    Stack,
    Tags,
    Token,
    aws_backup as backup,
    aws_certificatemanager as acm,
    aws_cloudfront as cloudfront,
    aws_cloudfront_origins as origins,
    aws_ec2 as ec2,
    aws_ecs as ecs,
    aws_efs as efs,
    aws_elasticloadbalancingv2 as elbv2,
    aws_events as events,
    aws_iam as iam,
    aws_kms as kms,
    aws_lambda as _lambda,
    aws_logs as logs,
    aws_route53 as route53,
    aws_s3 as s3,
    aws_s3_assets as s3_assets,
    aws_s3_deployment as s3deploy,
    aws_secretsmanager as secretsmanager,
    aws_ses as ses,
    aws_ses_actions as ses_actions,
    aws_sqs as sqs,
    aws_ssm as ssm,
    aws_wafv2 as wafv2,
)

import common.constants as constants
from common.environment import EnvironmentIdentity
from common.errors import ProviderError
from common.log import logger
from composition.firewall import AddressMatch, FirewallRule, GeoMatch, HeaderMatch
from composition.provider import (
    AssetSpec,
    AutoscalingSpec,
    BackupPlanSpec,
    Behavior,
    BucketOrigin,
    BucketPolicySpec,
    BucketSpec,
    CachePolicySpec,
    CertificateSpec,
    ClusterSpec,
    DistributionSpec,
    EmailIdentitySpec,
    EncryptionKeySpec,
    FileSystemSpec,
    FunctionPermissionSpec,
    FunctionSpec,
    GroupSpec,
    Handle,
    HostedZoneSpec,
    IngressRuleSpec,
    InstanceProfileSpec,
    InstanceSpec,
    ListenerSpec,
    LoadBalancerSpec,
    NetworkSpec,
    OriginAccessControlSpec,
    ParameterSpec,
    PolicyStatement,
    QueueSpec,
    ReceiptRuleSpec,
    RecordSpec,
    RolePolicySpec,
    RoleSpec,
    SecretSpec,
    SecurityGroupSpec,
    ServiceSpec,
    SiteDeploymentSpec,
    StaticIpSpec,
    TargetGroupSpec,
    TaskDefinitionSpec,
    UserSpec,
    WebAclSpec,
)

CONTAINER_NAME = "api"

# Load balancers and target groups only accept short names.
ELB_NAME_LIMIT = 32

OBJECT_OWNERSHIP = {
    "BucketOwnerEnforced": s3.ObjectOwnership.BUCKET_OWNER_ENFORCED,
    "BucketOwnerPreferred": s3.ObjectOwnership.BUCKET_OWNER_PREFERRED,
    "ObjectWriter": s3.ObjectOwnership.OBJECT_WRITER,
}

ARCHITECTURES = {
    "x86_64": ec2.AmazonLinuxCpuType.X86_64,
    "arm64": ec2.AmazonLinuxCpuType.ARM_64,
}

LOG_RETENTION = {
    7: logs.RetentionDays.ONE_WEEK,
    14: logs.RetentionDays.TWO_WEEKS,
    30: logs.RetentionDays.ONE_MONTH,
    90: logs.RetentionDays.THREE_MONTHS,
    365: logs.RetentionDays.ONE_YEAR,
}

ALLOWED_METHODS = {
    "ALL": cloudfront.AllowedMethods.ALLOW_ALL,
    "GET_HEAD": cloudfront.AllowedMethods.ALLOW_GET_HEAD,
    "GET_HEAD_OPTIONS": cloudfront.AllowedMethods.ALLOW_GET_HEAD_OPTIONS,
}

CACHED_METHODS = {
    "GET_HEAD": cloudfront.CachedMethods.CACHE_GET_HEAD,
    "GET_HEAD_OPTIONS": cloudfront.CachedMethods.CACHE_GET_HEAD_OPTIONS,
}

VIEWER_PROTOCOL_POLICIES = {
    "redirect-to-https": cloudfront.ViewerProtocolPolicy.REDIRECT_TO_HTTPS,
    "https-only": cloudfront.ViewerProtocolPolicy.HTTPS_ONLY,
    "allow-all": cloudfront.ViewerProtocolPolicy.ALLOW_ALL,
}

ORIGIN_PROTOCOL_POLICIES = {
    "https-only": cloudfront.OriginProtocolPolicy.HTTPS_ONLY,
    "http-only": cloudfront.OriginProtocolPolicy.HTTP_ONLY,
    "match-viewer": cloudfront.OriginProtocolPolicy.MATCH_VIEWER,
}


def _policy_statement(statement: PolicyStatement) -> iam.PolicyStatement:
    principals = []
    if statement.principal_service:
        principals.append(iam.ServicePrincipal(statement.principal_service))
    return iam.PolicyStatement(
        effect=iam.Effect.DENY if statement.effect == "Deny" else iam.Effect.ALLOW,
        actions=list(statement.actions),
        resources=list(statement.resources),
        principals=principals or None,
        conditions=dict(statement.conditions) or None,
    )


def _txt_value(value: str) -> str:
    if value.startswith('"'):
        return value
    return f'"{value}"'


def _elb_name(name: str) -> Optional[str]:
    return name if len(name) <= ELB_NAME_LIMIT else None


class CdkProvider:
    """Implements every provider capability on top of a single CDK stack."""

    def __init__(self, scope: Stack, identity: EnvironmentIdentity) -> None:
        self.scope = scope
        self.identity = identity
        self._ids: set[str] = set()
        self._code: dict[Path, _lambda.Code] = {}
        self._layers: Optional[list[_lambda.ILayerVersion]] = None
        # Services wait for the mount targets of the file system their task uses.
        self._task_file_systems: dict[str, efs.FileSystem] = {}

    @property
    def account(self) -> str:
        return Stack.of(self.scope).account

    @property
    def region(self) -> str:
        return Stack.of(self.scope).region

    @property
    def removal_policy(self) -> RemovalPolicy:
        if self.identity.is_production:
            return RemovalPolicy.RETAIN
        return RemovalPolicy.DESTROY

    # ---------- naming ----------
    def _logical_id(self, kind: str, name: str = "") -> str:
        short = name
        if Token.is_unresolved(short):
            short = ""
        prefix = f"{self.identity.prefix}-"
        if short.startswith(prefix):
            short = short[len(prefix):]
        suffix = f"-{self.identity.timestamp}"
        if short.endswith(suffix):
            short = short[: -len(suffix)]
        if short.split("-")[-1] == kind:
            base = self.identity.build_resource_id(short)
        else:
            base = self.identity.build_resource_id(kind, action=short)
        logical_id = base
        counter = 1
        while logical_id in self._ids:
            counter += 1
            logical_id = f"{base}{counter}"
        self._ids.add(logical_id)
        return logical_id

    def _power_tools_layers(self) -> list[_lambda.ILayerVersion]:
        if self._layers is None:
            self._layers = [
                _lambda.LayerVersion.from_layer_version_arn(
                    self.scope,
                    self.identity.build_resource_id("LambdaPowerToolsLayer"),
                    layer_version_arn=self._power_tools_layer_arn(),
                ),
            ]
        return self._layers

    def _power_tools_layer_arn(self) -> str:
        region = self.region
        if not region:
            raise ValueError(
                "AWS region is not set, unable to resolve Power Tools Layer ARN"
            )
        return constants.POWER_TOOLS_LAYER.format(
            region=region,
            runtime=constants.POWER_TOOLS_PYTHON_RUNTIME,
            version=constants.POWER_TOOLS_VERSION,
            lambda_layer_account=constants.POWER_TOOLS_LAMBDA_LAYER_ACCOUNT,
            power_tools_type=constants.POWER_TOOLS_LAMBDA_LAYER_NAME,
            architecture=constants.POWER_TOOLS_ARCHITECTURE,
        )

    def export(self, name: str, value: Any, description: str) -> None:
        CfnOutput(self.scope, name, value=str(value), description=description)

    # ---------- DNS ----------
    def hosted_zone(self, spec: HostedZoneSpec) -> Handle:
        logical_id = self._logical_id("zone", spec.domain)
        if spec.zone_id:
            zone = route53.HostedZone.from_hosted_zone_attributes(
                self.scope,
                logical_id,
                hosted_zone_id=spec.zone_id,
                zone_name=spec.domain,
            )
        else:
            zone = route53.HostedZone.from_lookup(
                self.scope,
                logical_id,
                domain_name=spec.domain,
                private_zone=False,
            )
        return Handle(
            "zone",
            logical_id,
            spec.domain,
            ref=zone.hosted_zone_id,
            attributes={"zone_id": zone.hosted_zone_id, "zone_name": spec.domain},
            resource=zone,
        )

    def record(self, spec: RecordSpec) -> Handle:
        logical_id = self._logical_id("record", f"{spec.name}-{spec.type}")
        values = list(spec.values)
        if spec.type == "TXT":
            values = [_txt_value(value) for value in values]
        alias_target = None
        if spec.alias is not None:
            alias_target = route53.CfnRecordSet.AliasTargetProperty(
                dns_name=spec.alias.dns_name,
                hosted_zone_id=spec.alias.hosted_zone_id,
                evaluate_target_health=False,
            )
        record = route53.CfnRecordSet(
            self.scope,
            logical_id,
            hosted_zone_id=spec.zone.attr("zone_id"),
            name=spec.name,
            type=spec.type,
            ttl=None if alias_target else str(spec.ttl),
            resource_records=None if alias_target else values,
            alias_target=alias_target,
        )
        return Handle("record", logical_id, spec.name, ref=record.ref, resource=record)

    def certificate(self, spec: CertificateSpec) -> Handle:
        logical_id = self._logical_id("certificate", spec.name)
        certificate = acm.Certificate(
            self.scope,
            logical_id,
            certificate_name=spec.name,
            domain_name=spec.domain,
            subject_alternative_names=list(spec.alternative_names) or None,
            validation=acm.CertificateValidation.from_dns(spec.zone.resource),
        )
        return Handle(
            "certificate",
            logical_id,
            spec.name,
            ref=certificate.certificate_arn,
            attributes={"arn": certificate.certificate_arn},
            resource=certificate,
        )

    # ---------- Storage ----------
    def bucket(self, spec: BucketSpec) -> Handle:
        logical_id = self._logical_id("bucket", spec.name)
        encryption_key = spec.encryption_key.resource if spec.encryption_key else None
        website_redirect = None
        if spec.redirect_to:
            website_redirect = s3.RedirectTarget(
                host_name=spec.redirect_to, protocol=s3.RedirectProtocol.HTTPS
            )
        bucket = s3.Bucket(
            self.scope,
            logical_id,
            bucket_name=spec.name,
            versioned=spec.versioned,
            encryption=s3.BucketEncryption.KMS if encryption_key else s3.BucketEncryption.S3_MANAGED,
            encryption_key=encryption_key,
            block_public_access=s3.BlockPublicAccess.BLOCK_ALL,
            enforce_ssl=True,
            object_ownership=OBJECT_OWNERSHIP[spec.object_ownership],
            website_redirect=website_redirect,
            lifecycle_rules=[
                s3.LifecycleRule(
                    id=rule.id,
                    prefix=rule.prefix,
                    expiration=Duration.days(rule.expire_after_days)
                    if rule.expire_after_days is not None
                    else None,
                    transitions=[
                        s3.Transition(
                            storage_class=s3.StorageClass.INTELLIGENT_TIERING,
                            transition_after=Duration.days(rule.tiering_after_days),
                        )
                    ]
                    if rule.tiering_after_days is not None
                    else None,
                )
                for rule in spec.lifecycle_rules
            ]
            or None,
            removal_policy=self.removal_policy,
            auto_delete_objects=not self.identity.is_production,
        )
        for key, value in spec.tags.items():
            Tags.of(bucket).add(key, value)
        return Handle(
            "bucket",
            logical_id,
            spec.name,
            ref=bucket.bucket_name,
            attributes={
                "name": bucket.bucket_name,
                "arn": bucket.bucket_arn,
                "regional_domain_name": bucket.bucket_regional_domain_name,
                "website_domain": bucket.bucket_website_domain_name,
            },
            resource=bucket,
        )

    def bucket_policy(self, spec: BucketPolicySpec) -> Handle:
        bucket: s3.Bucket = spec.bucket.resource
        for statement in spec.statements:
            bucket.add_to_resource_policy(_policy_statement(statement))
        return Handle(
            "bucket_policy",
            spec.bucket.logical_id,
            spec.name,
            ref=bucket.bucket_name,
            resource=bucket.policy,
        )

    def file_system(self, spec: FileSystemSpec) -> Handle:
        logical_id = self._logical_id("file-system", spec.name)
        vpc: ec2.Vpc = spec.network.resource
        file_system = efs.FileSystem(
            self.scope,
            logical_id,
            vpc=vpc,
            file_system_name=spec.name,
            encrypted=True,
            kms_key=spec.encryption_key.resource if spec.encryption_key else None,
            vpc_subnets=ec2.SubnetSelection(subnet_type=ec2.SubnetType.PRIVATE_WITH_EGRESS),
            removal_policy=self.removal_policy,
        )
        file_system.connections.allow_default_port_from(
            ec2.Peer.ipv4(vpc.vpc_cidr_block), "NFS from within the VPC"
        )
        access_point = file_system.add_access_point(
            "AccessPoint",
            path=spec.root_path,
            posix_user=efs.PosixUser(uid=str(spec.posix_uid), gid=str(spec.posix_gid)),
        )
        return Handle(
            "file_system",
            logical_id,
            spec.name,
            ref=file_system.file_system_id,
            attributes={
                "arn": file_system.file_system_arn,
                "file_system_id": file_system.file_system_id,
                "access_point_id": access_point.access_point_id,
                "access_point_arn": access_point.access_point_arn,
            },
            resource=file_system,
        )

    def asset(self, spec: AssetSpec) -> Handle:
        logical_id = self._logical_id("asset", spec.name)
        asset = s3_assets.Asset(self.scope, logical_id, path=str(spec.path))
        return Handle(
            "asset",
            logical_id,
            spec.name,
            ref=asset.s3_object_url,
            attributes={
                "s3_url": asset.s3_object_url,
                "bucket_arn": asset.bucket.bucket_arn,
                "object_key": asset.s3_object_key,
            },
            resource=asset,
        )

    def backup_plan(self, spec: BackupPlanSpec) -> Handle:
        logical_id = self._logical_id("backup-plan", spec.name)
        vault = backup.BackupVault(
            self.scope,
            f"{logical_id}Vault",
            backup_vault_name=f"{spec.name}-vault",
            encryption_key=spec.encryption_key.resource if spec.encryption_key else None,
            removal_policy=self.removal_policy,
        )
        plan = backup.BackupPlan(
            self.scope,
            logical_id,
            backup_plan_name=spec.name,
            backup_vault=vault,
            backup_plan_rules=[
                backup.BackupPlanRule(
                    rule_name="Daily",
                    schedule_expression=events.Schedule.expression(spec.schedule),
                    delete_after=Duration.days(spec.retention_days),
                )
            ],
        )
        plan.add_selection(
            "TaggedResources",
            resources=[backup.BackupResource.from_tag(spec.tag_key, spec.tag_value)],
            role=spec.role.resource,
        )
        return Handle(
            "backup_plan",
            logical_id,
            spec.name,
            ref=plan.backup_plan_id,
            attributes={"id": plan.backup_plan_id, "vault_name": vault.backup_vault_name},
            resource=plan,
        )

    def deploy_site(self, spec: SiteDeploymentSpec) -> Handle:
        logical_id = self._logical_id("deployment", spec.name)
        distribution = spec.distribution.resource if spec.distribution else None
        deployment = s3deploy.BucketDeployment(
            self.scope,
            logical_id,
            sources=[s3deploy.Source.asset(str(spec.source))],
            destination_bucket=spec.bucket.resource,
            destination_key_prefix=spec.prefix,
            distribution=distribution,
            distribution_paths=["/*"] if distribution else None,
        )
        logger.info("Site deployment added", name=spec.name, source=str(spec.source))
        return Handle("deployment", logical_id, spec.name, resource=deployment)

    # ---------- Network ----------
    def network(self, spec: NetworkSpec) -> Handle:
        logical_id = self._logical_id("vpc", spec.name)
        vpc = ec2.Vpc(
            self.scope,
            logical_id,
            vpc_name=spec.name,
            nat_gateways=1,
            max_azs=spec.max_azs,
            ip_addresses=ec2.IpAddresses.cidr(spec.cidr),
            subnet_configuration=[
                ec2.SubnetConfiguration(
                    name="Public-Subnet",
                    subnet_type=ec2.SubnetType.PUBLIC,
                    cidr_mask=spec.cidr_mask,
                ),
                ec2.SubnetConfiguration(
                    name="Private-Subnet",
                    subnet_type=ec2.SubnetType.PRIVATE_WITH_EGRESS,
                    cidr_mask=spec.cidr_mask,
                ),
            ],
        )
        # Gateway VPC endpoint for S3 (uses route tables in selected subnets)
        vpc.add_gateway_endpoint(
            "S3Endpoint",
            service=ec2.GatewayVpcEndpointAwsService.S3,
            subnets=[ec2.SubnetSelection(subnet_type=ec2.SubnetType.PRIVATE_WITH_EGRESS)],
        )
        # Subnet Name tags: <vpc name>-<public|private>-<n>
        for kind, subnets in (("public", vpc.public_subnets), ("private", vpc.private_subnets)):
            for index, subnet in enumerate(subnets, start=1):
                Tags.of(subnet).add("Name", f"{spec.name}-{kind}-{index}", priority=200)
        return Handle(
            "vpc",
            logical_id,
            spec.name,
            ref=vpc.vpc_id,
            attributes={"vpc_id": vpc.vpc_id, "cidr": vpc.vpc_cidr_block},
            resource=vpc,
        )

    def security_group(self, spec: SecurityGroupSpec) -> Handle:
        logical_id = self._logical_id("sg", spec.name)
        group = ec2.SecurityGroup(
            self.scope,
            logical_id,
            vpc=spec.network.resource,
            security_group_name=spec.name,
            description=spec.description,
            allow_all_outbound=True,
        )
        for rule in spec.ingress:
            connection = (
                ec2.Port.all_traffic()
                if rule.port is None
                else ec2.Port.tcp(rule.port)
                if rule.protocol == "tcp"
                else ec2.Port.udp(rule.port)
            )
            group.add_ingress_rule(
                peer=ec2.Peer.ipv4(rule.cidr),
                connection=connection,
                description=rule.description,
            )
        return Handle(
            "security_group",
            logical_id,
            spec.name,
            ref=group.security_group_id,
            attributes={"group_id": group.security_group_id},
            resource=group,
        )

    def ingress_rule(self, spec: IngressRuleSpec) -> Handle:
        group: ec2.SecurityGroup = spec.group.resource
        group.add_ingress_rule(
            peer=spec.source_group.resource,
            connection=ec2.Port.tcp(spec.port),
            description=spec.description,
        )
        return Handle("ingress_rule", spec.group.logical_id, spec.name)

    def static_ip(self, spec: StaticIpSpec) -> Handle:
        logical_id = self._logical_id("eip", spec.name)
        eip = ec2.CfnEIP(
            self.scope,
            logical_id,
            domain="vpc",
            instance_id=spec.instance.attr("instance_id"),
        )
        Tags.of(eip).add("Name", spec.name)
        return Handle(
            "static_ip",
            logical_id,
            spec.name,
            ref=eip.ref,
            attributes={"public_ip": eip.ref, "allocation_id": eip.attr_allocation_id},
            resource=eip,
        )

    # ---------- Compute ----------
    def instance(self, spec: InstanceSpec) -> Handle:
        logical_id = self._logical_id("instance", spec.name)
        subnet_type = (
            ec2.SubnetType.PUBLIC if spec.public else ec2.SubnetType.PRIVATE_WITH_EGRESS
        )
        key_pair = None
        if spec.key_pair:
            key_pair = ec2.KeyPair.from_key_pair_name(
                self.scope, f"{logical_id}KeyPair", spec.key_pair
            )
        instance = ec2.Instance(
            self.scope,
            logical_id,
            instance_name=spec.name,
            vpc=spec.network.resource,
            vpc_subnets=ec2.SubnetSelection(subnet_type=subnet_type),
            security_group=spec.security_group.resource,
            instance_type=ec2.InstanceType(spec.instance_type),
            machine_image=ec2.MachineImage.latest_amazon_linux2023(
                cpu_type=ARCHITECTURES[spec.architecture]
            ),
            user_data=ec2.UserData.custom(spec.user_data),
            instance_profile=spec.instance_profile.resource if spec.instance_profile else None,
            key_pair=key_pair,
            require_imdsv2=True,
            block_devices=[
                ec2.BlockDevice(
                    device_name="/dev/xvda",
                    volume=ec2.BlockDeviceVolume.ebs(
                        spec.disk_size,
                        volume_type=ec2.EbsDeviceVolumeType.GP3,
                        encrypted=True,
                    ),
                )
            ],
        )
        return Handle(
            "instance",
            logical_id,
            spec.name,
            ref=instance.instance_id,
            attributes={
                "instance_id": instance.instance_id,
                "private_ip": instance.instance_private_ip,
            },
            resource=instance,
        )

    def cluster(self, spec: ClusterSpec) -> Handle:
        logical_id = self._logical_id("cluster", spec.name)
        cluster = ecs.Cluster(
            self.scope,
            logical_id,
            cluster_name=spec.name,
            vpc=spec.network.resource,
            container_insights_v2=ecs.ContainerInsights.ENABLED,
        )
        return Handle(
            "cluster",
            logical_id,
            spec.name,
            ref=cluster.cluster_name,
            attributes={"name": cluster.cluster_name, "arn": cluster.cluster_arn},
            resource=cluster,
        )

    def task_definition(self, spec: TaskDefinitionSpec) -> Handle:
        logical_id = self._logical_id("task", spec.name)
        task_definition = ecs.FargateTaskDefinition(
            self.scope,
            logical_id,
            family=spec.name,
            cpu=spec.cpu,
            memory_limit_mib=spec.memory,
        )
        log_group = logs.LogGroup(
            self.scope,
            f"{logical_id}LogGroup",
            log_group_name=f"/ecs/{spec.name}",
            retention=LOG_RETENTION[spec.log_retention_days],
            removal_policy=RemovalPolicy.DESTROY,
        )
        secrets = None
        if spec.environment_secret is not None:
            secrets = {
                key: ecs.Secret.from_secrets_manager(spec.environment_secret.resource, key)
                for key in spec.secret_keys
            }
        health_check = spec.health_check
        container = task_definition.add_container(
            CONTAINER_NAME,
            container_name=CONTAINER_NAME,
            image=ecs.ContainerImage.from_registry(spec.image),
            essential=True,
            port_mappings=[ecs.PortMapping(container_port=spec.container_port)],
            secrets=secrets or None,
            health_check=ecs.HealthCheck(
                command=[
                    "CMD-SHELL",
                    f"curl -f http://localhost:{spec.container_port}{health_check.path} || exit 1",
                ],
                interval=Duration.seconds(health_check.interval),
                timeout=Duration.seconds(health_check.timeout),
                retries=health_check.unhealthy_threshold,
            ),
            logging=ecs.LogDrivers.aws_logs(stream_prefix=CONTAINER_NAME, log_group=log_group),
        )
        if spec.file_system is not None:
            file_system: efs.FileSystem = spec.file_system.resource
            task_definition.add_volume(
                name=constants.EFS_VOLUME_NAME,
                efs_volume_configuration=ecs.EfsVolumeConfiguration(
                    file_system_id=spec.file_system.attr("file_system_id"),
                    transit_encryption="ENABLED",
                    authorization_config=ecs.AuthorizationConfig(
                        access_point_id=spec.file_system.attr("access_point_id"),
                        iam="ENABLED",
                    ),
                ),
            )
            container.add_mount_points(
                ecs.MountPoint(
                    container_path=spec.mount_path or constants.EFS_MOUNT_PATH,
                    source_volume=constants.EFS_VOLUME_NAME,
                    read_only=False,
                )
            )
            file_system.grant(
                task_definition.task_role,
                "elasticfilesystem:ClientMount",
                "elasticfilesystem:ClientWrite",
            )
            self._task_file_systems[logical_id] = file_system
        execution_role = task_definition.obtain_execution_role()
        return Handle(
            "task_definition",
            logical_id,
            spec.name,
            ref=task_definition.task_definition_arn,
            attributes={
                "arn": task_definition.task_definition_arn,
                "task_role_name": task_definition.task_role.role_name,
                "task_role_arn": task_definition.task_role.role_arn,
                "execution_role_arn": execution_role.role_arn,
                "container_name": CONTAINER_NAME,
            },
            resource=task_definition,
        )

    def load_balancer(self, spec: LoadBalancerSpec) -> Handle:
        logical_id = self._logical_id("lb", spec.name)
        load_balancer = elbv2.ApplicationLoadBalancer(
            self.scope,
            logical_id,
            load_balancer_name=_elb_name(spec.name),
            vpc=spec.network.resource,
            internet_facing=True,
            security_group=spec.security_group.resource,
            vpc_subnets=ec2.SubnetSelection(subnet_type=ec2.SubnetType.PUBLIC),
        )
        return Handle(
            "load_balancer",
            logical_id,
            spec.name,
            ref=load_balancer.load_balancer_arn,
            attributes={
                "arn": load_balancer.load_balancer_arn,
                "dns_name": load_balancer.load_balancer_dns_name,
                "canonical_hosted_zone_id": load_balancer.load_balancer_canonical_hosted_zone_id,
            },
            resource=load_balancer,
        )

    def target_group(self, spec: TargetGroupSpec) -> Handle:
        logical_id = self._logical_id("tg", spec.name)
        health_check = spec.health_check
        target_group = elbv2.ApplicationTargetGroup(
            self.scope,
            logical_id,
            target_group_name=_elb_name(spec.name),
            vpc=spec.network.resource,
            port=spec.port,
            protocol=elbv2.ApplicationProtocol.HTTP,
            target_type=elbv2.TargetType.IP,
            health_check=elbv2.HealthCheck(
                path=health_check.path,
                interval=Duration.seconds(health_check.interval),
                timeout=Duration.seconds(health_check.timeout),
                healthy_threshold_count=health_check.healthy_threshold,
                unhealthy_threshold_count=health_check.unhealthy_threshold,
            ),
        )
        return Handle(
            "target_group",
            logical_id,
            spec.name,
            ref=target_group.target_group_arn,
            attributes={"arn": target_group.target_group_arn},
            resource=target_group,
        )

    def listener(self, spec: ListenerSpec) -> Handle:
        logical_id = self._logical_id("listener", spec.name)
        certificates = None
        if spec.certificate is not None:
            certificates = [elbv2.ListenerCertificate.from_arn(spec.certificate.attr("arn"))]
        listener = elbv2.ApplicationListener(
            self.scope,
            logical_id,
            load_balancer=spec.load_balancer.resource,
            port=spec.port,
            protocol=elbv2.ApplicationProtocol[spec.protocol],
            certificates=certificates,
            default_target_groups=[spec.target_group.resource],
            open=False,
        )
        return Handle(
            "listener",
            logical_id,
            spec.name,
            ref=listener.listener_arn,
            attributes={"arn": listener.listener_arn},
            resource=listener,
        )

    def service(self, spec: ServiceSpec) -> Handle:
        logical_id = self._logical_id("service", spec.name)
        service = ecs.FargateService(
            self.scope,
            logical_id,
            service_name=spec.name,
            cluster=spec.cluster.resource,
            task_definition=spec.task_definition.resource,
            desired_count=spec.desired_count,
            security_groups=[spec.security_group.resource],
            vpc_subnets=ec2.SubnetSelection(subnet_type=ec2.SubnetType.PRIVATE_WITH_EGRESS),
            assign_public_ip=False,
            health_check_grace_period=Duration.seconds(60),
        )
        service.attach_to_application_target_group(spec.target_group.resource)
        file_system = self._task_file_systems.get(spec.task_definition.logical_id)
        if file_system is not None:
            service.node.add_dependency(file_system.mount_targets_available)
        return Handle(
            "service",
            logical_id,
            spec.name,
            ref=service.service_arn,
            attributes={"name": service.service_name, "arn": service.service_arn},
            resource=service,
        )

    def autoscaling(self, spec: AutoscalingSpec) -> Handle:
        service: ecs.FargateService = spec.service.resource
        scaling = service.auto_scale_task_count(
            min_capacity=spec.min_capacity, max_capacity=spec.max_capacity
        )
        for policy in spec.policies:
            policy_id = self._logical_id("scaling", policy.name)
            if policy.metric == "ECSServiceAverageCPUUtilization":
                scaling.scale_on_cpu_utilization(
                    policy_id,
                    target_utilization_percent=policy.target,
                    scale_in_cooldown=Duration.seconds(policy.scale_in_cooldown),
                    scale_out_cooldown=Duration.seconds(policy.scale_out_cooldown),
                )
            elif policy.metric == "ECSServiceAverageMemoryUtilization":
                scaling.scale_on_memory_utilization(
                    policy_id,
                    target_utilization_percent=policy.target,
                    scale_in_cooldown=Duration.seconds(policy.scale_in_cooldown),
                    scale_out_cooldown=Duration.seconds(policy.scale_out_cooldown),
                )
            else:
                raise ProviderError(f"unsupported scaling metric {policy.metric}")
        return Handle("autoscaling", spec.service.logical_id, spec.name, resource=scaling)

    def function(self, spec: FunctionSpec) -> Handle:
        logical_id = self._logical_id("function", spec.name)
        code = self._code.get(spec.code_dir)
        if code is None:
            code = self._code[spec.code_dir] = _lambda.Code.from_asset(str(spec.code_dir))

        if spec.edge:
            # Replicated functions take no environment, layers or tracing.
            role = iam.Role(
                self.scope,
                f"{logical_id}Role",
                assumed_by=iam.CompositePrincipal(
                    iam.ServicePrincipal("lambda.amazonaws.com"),
                    iam.ServicePrincipal("edgelambda.amazonaws.com"),
                ),
                managed_policies=[
                    iam.ManagedPolicy.from_aws_managed_policy_name(
                        "service-role/AWSLambdaBasicExecutionRole"
                    )
                ],
            )
            function = _lambda.Function(
                self.scope,
                logical_id,
                function_name=spec.name,
                runtime=_lambda.Runtime(spec.runtime, _lambda.RuntimeFamily.PYTHON),
                handler=spec.handler,
                code=code,
                role=role,
                description=spec.description,
                timeout=Duration.seconds(min(spec.timeout, 30)),
                memory_size=spec.memory_size,
            )
        else:
            log_group = logs.LogGroup(
                self.scope,
                f"{logical_id}LogGroup",
                log_group_name=f"/aws/lambda/{spec.name}",
                removal_policy=RemovalPolicy.DESTROY,
                retention=logs.RetentionDays.ONE_YEAR,
            )
            function = _lambda.Function(
                self.scope,
                logical_id,
                function_name=spec.name,
                runtime=_lambda.Runtime(spec.runtime, _lambda.RuntimeFamily.PYTHON),
                handler=spec.handler,
                code=code,
                architecture=_lambda.Architecture.X86_64,
                description=spec.description,
                layers=self._power_tools_layers(),
                environment=dict(spec.environment) or None,
                timeout=Duration.seconds(spec.timeout),
                memory_size=spec.memory_size,
                tracing=_lambda.Tracing.ACTIVE,
                log_group=log_group,
            )
        for statement in spec.statements:
            function.add_to_role_policy(_policy_statement(statement))

        attributes = {"arn": function.function_arn, "name": function.function_name}
        if spec.edge:
            attributes["version_arn"] = function.current_version.function_arn
        return Handle(
            "function",
            logical_id,
            spec.name,
            ref=function.function_arn,
            attributes=attributes,
            resource=function,
        )

    def function_permission(self, spec: FunctionPermissionSpec) -> Handle:
        logical_id = self._logical_id("permission", spec.name)
        function: _lambda.Function = spec.function.resource
        function.add_permission(
            logical_id,
            principal=iam.ServicePrincipal(spec.principal),
            source_account=spec.source_account,
        )
        return Handle("function_permission", logical_id, spec.name)

    # ---------- Secrets ----------
    def secret(self, spec: SecretSpec) -> Handle:
        logical_id = self._logical_id("secret", spec.name)
        secret = secretsmanager.Secret(
            self.scope,
            logical_id,
            secret_name=spec.name,
            description=spec.description,
            secret_string_value=SecretValue.unsafe_plain_text(json.dumps(dict(spec.value))),
            encryption_key=spec.encryption_key.resource if spec.encryption_key else None,
            removal_policy=self.removal_policy,
        )
        return Handle(
            "secret",
            logical_id,
            spec.name,
            ref=secret.secret_arn,
            attributes={"arn": secret.secret_arn, "name": spec.name},
            resource=secret,
        )

    def parameter(self, spec: ParameterSpec) -> Handle:
        logical_id = self._logical_id("parameter", spec.name)
        parameter = ssm.StringParameter(
            self.scope,
            logical_id,
            parameter_name=spec.name,
            string_value=spec.value,
            description=spec.description or None,
        )
        return Handle(
            "parameter",
            logical_id,
            spec.name,
            ref=parameter.parameter_name,
            attributes={"name": parameter.parameter_name},
            resource=parameter,
        )

    def encryption_key(self, spec: EncryptionKeySpec) -> Handle:
        logical_id = self._logical_id("key", spec.name)
        key = kms.Key(
            self.scope,
            logical_id,
            alias=spec.alias,
            description=spec.description,
            enable_key_rotation=True,
            pending_window=Duration.days(spec.pending_window_days),
            removal_policy=self.removal_policy,
        )
        return Handle(
            "encryption_key",
            logical_id,
            spec.name,
            ref=key.key_id,
            attributes={"arn": key.key_arn, "key_id": key.key_id},
            resource=key,
        )

    # ---------- Messaging ----------
    def queue(self, spec: QueueSpec) -> Handle:
        logical_id = self._logical_id("queue", spec.name)
        dead_letter_queue = None
        if spec.dead_letter_queue is not None:
            dead_letter_queue = sqs.DeadLetterQueue(
                max_receive_count=spec.max_receive_count,
                queue=spec.dead_letter_queue.resource,
            )
        queue = sqs.Queue(
            self.scope,
            logical_id,
            queue_name=spec.name,
            encryption=sqs.QueueEncryption.SQS_MANAGED,
            visibility_timeout=Duration.seconds(spec.visibility_timeout),
            retention_period=Duration.days(spec.retention_days),
            dead_letter_queue=dead_letter_queue,
        )
        return Handle(
            "queue",
            logical_id,
            spec.name,
            ref=queue.queue_url,
            attributes={
                "arn": queue.queue_arn,
                "url": queue.queue_url,
                "name": queue.queue_name,
            },
            resource=queue,
        )

    def email_identity(self, spec: EmailIdentitySpec) -> Handle:
        logical_id = self._logical_id("email-identity", spec.name)
        identity = ses.EmailIdentity(
            self.scope,
            logical_id,
            identity=ses.Identity.domain(spec.domain),
            mail_from_domain=spec.mail_from_domain,
            dkim_signing=True,
        )
        return Handle(
            "email_identity",
            logical_id,
            spec.name,
            ref=identity.email_identity_name,
            attributes={
                "dkim_name_1": identity.dkim_dns_token_name1,
                "dkim_name_2": identity.dkim_dns_token_name2,
                "dkim_name_3": identity.dkim_dns_token_name3,
                "dkim_value_1": identity.dkim_dns_token_value1,
                "dkim_value_2": identity.dkim_dns_token_value2,
                "dkim_value_3": identity.dkim_dns_token_value3,
            },
            resource=identity,
        )

    def receipt_rule(self, spec: ReceiptRuleSpec) -> Handle:
        logical_id = self._logical_id("receipt-rule", spec.name)
        rule_set = ses.ReceiptRuleSet(
            self.scope,
            f"{logical_id}Set",
            receipt_rule_set_name=f"{spec.name}-set",
        )
        actions: list[ses.IReceiptRuleAction] = [
            ses_actions.S3(
                bucket=spec.bucket.resource,
                object_key_prefix=spec.object_prefix,
            )
        ]
        if spec.function is not None:
            actions.append(
                ses_actions.Lambda(
                    function=spec.function.resource,
                    invocation_type=ses_actions.LambdaInvocationType.EVENT,
                )
            )
        rule = rule_set.add_rule(
            "Rule",
            receipt_rule_name=spec.name,
            recipients=list(spec.recipients) or None,
            scan_enabled=spec.scan,
            tls_policy=ses.TlsPolicy.REQUIRE,
            actions=actions,
        )
        return Handle(
            "receipt_rule",
            logical_id,
            spec.name,
            ref=rule.receipt_rule_name,
            attributes={"rule_set_name": rule_set.receipt_rule_set_name},
            resource=rule,
        )

    # ---------- Firewall ----------
    def _rule_statement(
        self, logical_id: str, rule: FirewallRule
    ) -> wafv2.CfnWebACL.StatementProperty:
        statement = rule.statement
        if isinstance(statement, GeoMatch):
            return wafv2.CfnWebACL.StatementProperty(
                geo_match_statement=wafv2.CfnWebACL.GeoMatchStatementProperty(
                    country_codes=list(statement.country_codes)
                )
            )
        if isinstance(statement, AddressMatch):
            ip_set = wafv2.CfnIPSet(
                self.scope,
                f"{logical_id}{rule.name}Set",
                name=f"{self.identity.prefix}-{rule.metric_name}",
                scope="CLOUDFRONT",
                ip_address_version=statement.ip_version,
                addresses=list(statement.addresses),
            )
            return wafv2.CfnWebACL.StatementProperty(
                ip_set_reference_statement=wafv2.CfnWebACL.IPSetReferenceStatementProperty(
                    arn=ip_set.attr_arn
                )
            )
        if isinstance(statement, HeaderMatch):
            return wafv2.CfnWebACL.StatementProperty(
                byte_match_statement=wafv2.CfnWebACL.ByteMatchStatementProperty(
                    field_to_match=wafv2.CfnWebACL.FieldToMatchProperty(
                        single_header={"Name": statement.header}
                    ),
                    positional_constraint=statement.positional_constraint,
                    search_string=statement.search_string,
                    text_transformations=[
                        wafv2.CfnWebACL.TextTransformationProperty(priority=0, type="NONE")
                    ],
                )
            )
        raise ProviderError(f"unsupported firewall statement {type(statement).__name__}")

    def web_acl(self, spec: WebAclSpec) -> Handle:
        logical_id = self._logical_id("firewall", spec.name)
        rules = [
            wafv2.CfnWebACL.RuleProperty(
                name=rule.name,
                priority=rule.priority,
                action=wafv2.CfnWebACL.RuleActionProperty(
                    block={} if rule.action == "block" else None,
                    count={} if rule.action == "count" else None,
                ),
                statement=self._rule_statement(logical_id, rule),
                visibility_config=wafv2.CfnWebACL.VisibilityConfigProperty(
                    cloud_watch_metrics_enabled=True,
                    metric_name=rule.metric_name,
                    sampled_requests_enabled=True,
                ),
            )
            for rule in spec.rules
        ]
        web_acl = wafv2.CfnWebACL(
            self.scope,
            logical_id,
            name=spec.name,
            scope=spec.scope,
            default_action=wafv2.CfnWebACL.DefaultActionProperty(
                allow={} if spec.default_action == "allow" else None,
                block={} if spec.default_action == "block" else None,
            ),
            visibility_config=wafv2.CfnWebACL.VisibilityConfigProperty(
                cloud_watch_metrics_enabled=True,
                metric_name=spec.name,
                sampled_requests_enabled=True,
            ),
            rules=rules,
        )
        return Handle(
            "web_acl",
            logical_id,
            spec.name,
            ref=web_acl.attr_arn,
            attributes={"arn": web_acl.attr_arn},
            resource=web_acl,
        )

    # ---------- Edge ----------
    def cache_policy(self, spec: CachePolicySpec) -> Handle:
        logical_id = self._logical_id("cache-policy", spec.name)
        if spec.cookie_behavior == "all":
            cookie_behavior = cloudfront.CacheCookieBehavior.all()
        elif spec.cookie_behavior in ("allowList", "whitelist") and spec.cookies:
            cookie_behavior = cloudfront.CacheCookieBehavior.allow_list(*spec.cookies)
        else:
            cookie_behavior = cloudfront.CacheCookieBehavior.none()
        cache_policy = cloudfront.CachePolicy(
            self.scope,
            logical_id,
            cache_policy_name=spec.name,
            min_ttl=Duration.seconds(spec.min_ttl),
            default_ttl=Duration.seconds(spec.default_ttl),
            max_ttl=Duration.seconds(spec.max_ttl),
            header_behavior=cloudfront.CacheHeaderBehavior.allow_list(*spec.headers)
            if spec.headers
            else cloudfront.CacheHeaderBehavior.none(),
            cookie_behavior=cookie_behavior,
            query_string_behavior=cloudfront.CacheQueryStringBehavior.all()
            if spec.query_strings
            else cloudfront.CacheQueryStringBehavior.none(),
            enable_accept_encoding_gzip=spec.compress,
            enable_accept_encoding_brotli=spec.compress,
        )
        return Handle(
            "cache_policy",
            logical_id,
            spec.name,
            ref=cache_policy.cache_policy_id,
            attributes={"id": cache_policy.cache_policy_id},
            resource=cache_policy,
        )

    def origin_access_control(self, spec: OriginAccessControlSpec) -> Handle:
        logical_id = self._logical_id("oac", spec.name)
        access_control = cloudfront.S3OriginAccessControl(
            self.scope,
            logical_id,
            origin_access_control_name=spec.name,
            signing=cloudfront.Signing.SIGV4_ALWAYS,
        )
        return Handle(
            "origin_access_control",
            logical_id,
            spec.name,
            ref=access_control.origin_access_control_id,
            attributes={"id": access_control.origin_access_control_id},
            resource=access_control,
        )

    def _behavior(self, behavior: Behavior) -> cloudfront.BehaviorOptions:
        origin = behavior.origin
        if isinstance(origin, BucketOrigin):
            cdk_origin = origins.S3BucketOrigin.with_origin_access_control(
                origin.bucket.resource,
                origin_access_control=origin.access_control.resource,
            )
        else:
            cdk_origin = origins.HttpOrigin(
                origin.domain_name,
                protocol_policy=ORIGIN_PROTOCOL_POLICIES[origin.protocol_policy],
            )
        edge_lambdas = None
        if behavior.origin_request_function is not None:
            edge_lambdas = [
                cloudfront.EdgeLambda(
                    event_type=cloudfront.LambdaEdgeEventType.ORIGIN_REQUEST,
                    function_version=behavior.origin_request_function.resource.current_version,
                )
            ]
        return cloudfront.BehaviorOptions(
            origin=cdk_origin,
            cache_policy=behavior.cache_policy.resource,
            allowed_methods=ALLOWED_METHODS[behavior.allowed_methods],
            cached_methods=CACHED_METHODS[behavior.cached_methods],
            compress=behavior.compress,
            viewer_protocol_policy=VIEWER_PROTOCOL_POLICIES[behavior.viewer_protocol_policy],
            edge_lambdas=edge_lambdas,
        )

    def distribution(self, spec: DistributionSpec) -> Handle:
        logical_id = self._logical_id("cdn", spec.name)
        error_responses = None
        if spec.error_page:
            error_responses = [
                cloudfront.ErrorResponse(
                    http_status=status,
                    response_http_status=200,
                    response_page_path=spec.error_page,
                    ttl=Duration.seconds(0),
                )
                for status in (403, 404)
            ]
        distribution = cloudfront.Distribution(
            self.scope,
            logical_id,
            comment=spec.comment,
            domain_names=list(spec.aliases),
            certificate=spec.certificate.resource,
            default_behavior=self._behavior(spec.default_behavior),
            additional_behaviors={
                behavior.path_pattern: self._behavior(behavior)
                for behavior in spec.behaviors
                if behavior.path_pattern
            }
            or None,
            web_acl_id=spec.web_acl.attr("arn") if spec.web_acl else None,
            enable_logging=spec.log_bucket is not None,
            log_bucket=spec.log_bucket.resource if spec.log_bucket else None,
            default_root_object=spec.default_root_object,
            error_responses=error_responses,
            http_version=cloudfront.HttpVersion.HTTP2_AND_3,
            minimum_protocol_version=cloudfront.SecurityPolicyProtocol.TLS_V1_2_2021,
            price_class=cloudfront.PriceClass.PRICE_CLASS_ALL,
        )
        arn = Stack.of(self.scope).format_arn(
            service="cloudfront",
            region="",
            resource="distribution",
            resource_name=distribution.distribution_id,
        )
        return Handle(
            "distribution",
            logical_id,
            spec.name,
            ref=distribution.distribution_id,
            attributes={
                "id": distribution.distribution_id,
                "domain_name": distribution.distribution_domain_name,
                "arn": arn,
            },
            resource=distribution,
        )

    # ---------- Identity ----------
    def role(self, spec: RoleSpec) -> Handle:
        logical_id = self._logical_id("role", spec.name)
        inline_policies = None
        if spec.statements:
            inline_policies = {
                "inline": iam.PolicyDocument(
                    statements=[_policy_statement(statement) for statement in spec.statements]
                )
            }
        role = iam.Role(
            self.scope,
            logical_id,
            role_name=spec.name,
            assumed_by=iam.ServicePrincipal(spec.assumed_by),
            description=spec.description or None,
            managed_policies=[
                iam.ManagedPolicy.from_aws_managed_policy_name(policy)
                for policy in spec.managed_policies
            ],
            inline_policies=inline_policies,
        )
        return Handle(
            "role",
            logical_id,
            spec.name,
            ref=role.role_name,
            attributes={"arn": role.role_arn, "name": role.role_name},
            resource=role,
        )

    def instance_profile(self, spec: InstanceProfileSpec) -> Handle:
        logical_id = self._logical_id("profile", spec.name)
        profile = iam.InstanceProfile(
            self.scope,
            logical_id,
            instance_profile_name=spec.name,
            role=spec.role.resource,
        )
        return Handle(
            "instance_profile",
            logical_id,
            spec.name,
            ref=profile.instance_profile_name,
            attributes={
                "name": profile.instance_profile_name,
                "arn": profile.instance_profile_arn,
            },
            resource=profile,
        )

    def role_policy(self, spec: RolePolicySpec) -> Handle:
        logical_id = self._logical_id("policy", spec.name)
        role = iam.Role.from_role_name(self.scope, f"{logical_id}Role", spec.role_name)
        policy = iam.Policy(
            self.scope,
            logical_id,
            policy_name=spec.name,
            statements=[_policy_statement(statement) for statement in spec.statements],
            roles=[role],
        )
        return Handle("role_policy", logical_id, spec.name, ref=policy.policy_name, resource=policy)

    def group(self, spec: GroupSpec) -> Handle:
        logical_id = self._logical_id("group", spec.name)
        group = iam.Group(
            self.scope,
            logical_id,
            group_name=spec.name,
            managed_policies=[
                iam.ManagedPolicy.from_aws_managed_policy_name(policy)
                for policy in spec.managed_policies
            ]
            or None,
        )
        for statement in spec.statements:
            group.add_to_principal_policy(_policy_statement(statement))
        for member in spec.members:
            group.add_user(member.resource)
        return Handle(
            "group",
            logical_id,
            spec.name,
            ref=group.group_name,
            attributes={"name": group.group_name, "arn": group.group_arn},
            resource=group,
        )

    def user(self, spec: UserSpec) -> Handle:
        logical_id = self._logical_id("user", spec.name)
        password = secretsmanager.Secret(
            self.scope,
            f"{logical_id}Password",
            secret_name=f"{spec.name}-initial-password",
            description=f"Initial console password for {spec.email}",
            generate_secret_string=secretsmanager.SecretStringGenerator(
                password_length=24, exclude_characters="\"'\\`"
            ),
        )
        user = iam.User(
            self.scope,
            logical_id,
            user_name=spec.name,
            groups=[group.resource for group in spec.groups] or None,
            password=password.secret_value,
            password_reset_required=spec.password_reset_required,
        )
        Tags.of(user).add("email", spec.email)
        return Handle(
            "user",
            logical_id,
            spec.name,
            ref=user.user_name,
            attributes={
                "name": user.user_name,
                "arn": user.user_arn,
                "password_secret_arn": password.secret_arn,
            },
            resource=user,
        )
