"""Foundation units: zone, security, storage, network, file system, jump box."""
from common import constants
from common.config import CloudConfig, should_deploy_docs
from composition.firewall import assemble
from composition.graph import ABSENT, Outputs, UnitContext
from composition.provider import (
    BackupPlanSpec,
    BucketSpec,
    CertificateSpec,
    EncryptionKeySpec,
    FileSystemSpec,
    HostedZoneSpec,
    IngressRule,
    InstanceProfileSpec,
    InstanceSpec,
    NetworkSpec,
    ParameterSpec,
    PolicyStatement,
    RoleSpec,
    SecurityGroupSpec,
    WebAclSpec,
)
from composition.user_data import jump_box_script

SSM_MANAGED_POLICY = "AmazonSSMManagedInstanceCore"

BACKUP_STATEMENTS = (
    PolicyStatement(
        actions=(
            "s3:GetInventoryConfiguration",
            "s3:PutInventoryConfiguration",
            "s3:ListBucketVersions",
            "s3:ListBucket",
            "s3:GetBucketVersioning",
            "s3:GetBucketNotification",
            "s3:PutBucketNotification",
            "s3:GetBucketLocation",
            "s3:GetBucketTagging",
        ),
        resources=("arn:aws:s3:::*",),
    ),
    PolicyStatement(
        actions=(
            "s3:GetObjectAcl",
            "s3:GetObject",
            "s3:GetObjectVersionTagging",
            "s3:GetObjectVersionAcl",
            "s3:GetObjectTagging",
            "s3:GetObjectVersion",
        ),
        resources=("arn:aws:s3:::*/*",),
    ),
    PolicyStatement(actions=("s3:ListAllMyBuckets",)),
    PolicyStatement(
        actions=("kms:Decrypt", "kms:DescribeKey"),
        conditions={"StringLike": {"kms:ViaService": "s3.*.amazonaws.com"}},
    ),
    PolicyStatement(
        actions=(
            "events:DescribeRule",
            "events:EnableRule",
            "events:PutRule",
            "events:DeleteRule",
            "events:PutTargets",
            "events:RemoveTargets",
            "events:ListTargetsByRule",
            "events:DisableRule",
        ),
        resources=("arn:aws:events:*:*:rule/AwsBackupManagedRule*",),
    ),
)


def jump_box_enabled(config: CloudConfig) -> bool:
    return config.cloud.jump_box.enabled


def build_dns(ctx: UnitContext) -> Outputs:
    zone = ctx.provider.hosted_zone(
        HostedZoneSpec(domain=ctx.config.app.url, zone_id=ctx.config.dns.hosted_zone_id)
    )
    return {"zone": zone}


def build_security(ctx: UnitContext) -> Outputs:
    domain = ctx.identity.domain
    rules = assemble(ctx.config.security.firewall)
    firewall = ctx.provider.web_acl(WebAclSpec(name=ctx.name("firewall"), rules=rules))
    key_name = ctx.name("encryption-key")
    encryption_key = ctx.provider.encryption_key(
        EncryptionKeySpec(
            name=key_name,
            alias=f"alias/{key_name}",
            description=f"Encryption key for {ctx.identity.app_name} ({ctx.identity.app_env})",
        )
    )
    certificate = ctx.provider.certificate(
        CertificateSpec(
            name=ctx.name("certificate"),
            domain=domain,
            zone=ctx.require("dns.zone"),
            alternative_names=(f"www.{domain}", f"api.{domain}", f"docs.{domain}"),
        )
    )
    return {
        "firewall": firewall,
        "encryption_key": encryption_key,
        "certificate": certificate,
    }


def build_storage(ctx: UnitContext) -> Outputs:
    backup_tags = {constants.DAILY_BACKUP_TAG: "true"}
    logs_bucket = ctx.provider.bucket(
        BucketSpec(
            name=ctx.name("logs", unique=True),
            object_ownership="BucketOwnerPreferred",
            tags=backup_tags,
        )
    )
    public_bucket = ctx.provider.bucket(
        BucketSpec(name=ctx.name("public", unique=True), versioned=True, tags=backup_tags)
    )
    private_bucket = ctx.provider.bucket(
        BucketSpec(name=ctx.name("private", unique=True), versioned=True, tags=backup_tags)
    )

    docs_bucket = ABSENT
    if should_deploy_docs(ctx.config):
        docs_bucket = ctx.provider.bucket(
            BucketSpec(name=ctx.name("docs", unique=True), versioned=True)
        )

    backup_role = ctx.provider.role(
        RoleSpec(
            name=ctx.name("backup-role"),
            assumed_by="backup.amazonaws.com",
            managed_policies=(
                "service-role/AWSBackupServiceRolePolicyForBackup",
                "service-role/AWSBackupServiceRolePolicyForRestores",
            ),
            statements=BACKUP_STATEMENTS,
        )
    )
    backup_plan = ctx.provider.backup_plan(
        BackupPlanSpec(
            name=ctx.name("daily-backup"),
            tag_key=constants.DAILY_BACKUP_TAG,
            tag_value="true",
            retention_days=constants.BACKUP_RETENTION_DAYS,
            role=backup_role,
            encryption_key=ctx.require("security.encryption_key"),
        )
    )
    return {
        "public_bucket": public_bucket,
        "private_bucket": private_bucket,
        "logs_bucket": logs_bucket,
        "docs_bucket": docs_bucket,
        "backup_plan": backup_plan,
    }


def build_network(ctx: UnitContext) -> Outputs:
    vpc = ctx.provider.network(
        NetworkSpec(
            name=ctx.name("vpc"),
            cidr=constants.VPC_CIDR,
            max_azs=constants.MAX_AZS,
            cidr_mask=constants.CIDR_MASK,
        )
    )
    ctx.provider.parameter(
        ParameterSpec(
            name=constants.STATE_PARAMETER.format(
                slug=ctx.identity.slug, app_env=ctx.identity.app_env, key="vpc-id"
            ),
            value=vpc.attr("vpc_id"),
            description="VPC of the environment",
        )
    )
    return {"vpc": vpc}


def build_file_system(ctx: UnitContext) -> Outputs:
    file_system = ctx.provider.file_system(
        FileSystemSpec(name=ctx.name("efs"), network=ctx.require("network.vpc"))
    )
    return {"file_system": file_system}


def build_jump_box(ctx: UnitContext) -> Outputs:
    vpc = ctx.require("network.vpc")
    file_system = ctx.require("file_system.file_system")
    security_group = ctx.provider.security_group(
        SecurityGroupSpec(
            name=ctx.name("jump-box-sg"),
            network=vpc,
            description="Jump box, reachable through SSM sessions only",
        )
    )
    role = ctx.provider.role(
        RoleSpec(
            name=ctx.name("jump-box-role"),
            assumed_by="ec2.amazonaws.com",
            managed_policies=(SSM_MANAGED_POLICY,),
            statements=(
                PolicyStatement(
                    actions=(
                        "elasticfilesystem:ClientMount",
                        "elasticfilesystem:ClientWrite",
                    ),
                    resources=(file_system.attr("arn"),),
                ),
            ),
        )
    )
    profile = ctx.provider.instance_profile(
        InstanceProfileSpec(name=ctx.name("jump-box-profile"), role=role)
    )
    instance = ctx.provider.instance(
        InstanceSpec(
            name=ctx.name("jump-box"),
            network=vpc,
            security_group=security_group,
            instance_type=ctx.config.cloud.jump_box.instance_type,
            architecture="x86_64",
            user_data=jump_box_script(
                file_system.attr("file_system_id"), file_system.attr("access_point_id")
            ),
            instance_profile=profile,
            public=False,
        )
    )
    return {
        "instance": instance,
        "instance_id": instance.attr("instance_id"),
        "security_group": security_group,
    }
