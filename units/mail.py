"""Email (SES) and mail server units."""
from typing import Any, Optional

from attrs import define

from common import constants
from common.config import CloudConfig, MailServerConfig, MailServerMode
from common.log import logger
from composition.graph import Outputs, UnitContext, is_absent
from composition.provider import (
    AssetSpec,
    BucketPolicySpec,
    BucketSpec,
    EmailIdentitySpec,
    FunctionPermissionSpec,
    FunctionSpec,
    GroupSpec,
    Handle,
    IngressRule,
    InstanceProfileSpec,
    InstanceSpec,
    LifecycleRule,
    PolicyStatement,
    ReceiptRuleSpec,
    RecordSpec,
    RoleSpec,
    SecretSpec,
    SecurityGroupSpec,
    StaticIpSpec,
)
from composition.user_data import MailScriptContext, mail_server_script
from units.edge import LAMBDA_CODE_PATH
from units.foundation import SSM_MANAGED_POLICY


@define(slots=True, frozen=True)
class MailPort:
    port: int
    name: str


SERVERLESS_PORTS = (
    MailPort(143, "IMAP"),
    MailPort(993, "IMAPS"),
    MailPort(587, "Submission"),
    MailPort(465, "SMTPS"),
)
SERVER_PORTS = (
    MailPort(25, "SMTP"),
    MailPort(465, "SMTPS"),
    MailPort(587, "Submission"),
    MailPort(143, "IMAP"),
    MailPort(993, "IMAPS"),
)
POP3_PORTS = (MailPort(110, "POP3"), MailPort(995, "POP3S"))
SSH_PORT = MailPort(22, "SSH")


@define(slots=True, frozen=True)
class MailServerProfile:
    instance_type: str
    architecture: str
    ports: tuple[MailPort, ...]


def mail_server_enabled(config: CloudConfig) -> bool:
    return config.email.server.enabled


def mail_server_profile(server: MailServerConfig) -> MailServerProfile:
    """Sizing and the opened port set for the configured mode."""
    if server.server_mode is MailServerMode.SERVERLESS:
        return MailServerProfile(
            instance_type=server.instance_type or constants.SERVERLESS_INSTANCE_TYPE,
            architecture="arm64",
            ports=SERVERLESS_PORTS,
        )
    ports = SERVER_PORTS
    if server.pop3:
        ports += POP3_PORTS
    if server.key_pair:
        ports += (SSH_PORT,)
    return MailServerProfile(
        instance_type=server.instance_type or constants.SERVER_INSTANCE_TYPE,
        architecture="x86_64",
        ports=ports,
    )


def _bucket_statement(bucket: Handle, *actions: str) -> PolicyStatement:
    arn = bucket.attr("arn")
    return PolicyStatement(actions=actions, resources=(arn, f"{arn}/*"))


def build_email(ctx: UnitContext) -> Outputs:
    domain = ctx.identity.domain
    zone = ctx.require("dns.zone")
    mail_domain = f"{ctx.config.email.server.subdomain}.{domain}"

    bucket = ctx.provider.bucket(
        BucketSpec(
            name=ctx.name("email", unique=True),
            versioned=True,
            lifecycle_rules=(
                LifecycleRule(id="24h", prefix="today/", expire_after_days=1),
                LifecycleRule(id="InboxTiering", prefix="inbox/", tiering_after_days=0),
                LifecycleRule(id="SentTiering", prefix="sent/", tiering_after_days=0),
            ),
            tags={constants.DAILY_BACKUP_TAG: "true"},
        )
    )
    ctx.provider.bucket_policy(
        BucketPolicySpec(
            name=ctx.name("bucket-policy", action="email"),
            bucket=bucket,
            statements=(
                PolicyStatement(
                    actions=("s3:PutObject",),
                    resources=(f"{bucket.attr('arn')}/*",),
                    principal_service="ses.amazonaws.com",
                    conditions={"StringEquals": {"AWS:SourceAccount": ctx.provider.account}},
                ),
            ),
        )
    )

    identity = ctx.provider.email_identity(
        EmailIdentitySpec(name=ctx.name("email-identity"), domain=domain, mail_from_domain=mail_domain)
    )
    for index in (1, 2, 3):
        ctx.provider.record(
            RecordSpec(
                zone=zone,
                name=identity.attr(f"dkim_name_{index}"),
                type="CNAME",
                values=(identity.attr(f"dkim_value_{index}"),),
                ttl=1800,
            )
        )
    ctx.provider.record(
        RecordSpec(
            zone=zone,
            name=mail_domain,
            type="MX",
            values=(f"10 {constants.SES_FEEDBACK_HOST.format(region=ctx.provider.region)}",),
        )
    )
    # The mail server publishes its own SPF record on the mail subdomain.
    if not mail_server_enabled(ctx.config):
        ctx.provider.record(
            RecordSpec(
                zone=zone,
                name=mail_domain,
                type="TXT",
                values=(f"v=spf1 include:{constants.SES_SPF_INCLUDE} ~all",),
            )
        )
    ctx.provider.record(
        RecordSpec(
            zone=zone,
            name=f"_dmarc.{domain}",
            type="TXT",
            values=(f"v=DMARC1;p=quarantine;pct=25;rua=mailto:dmarcreports@{domain}",),
        )
    )

    inbound_function = ctx.provider.function(
        FunctionSpec(
            name=ctx.name("function", action="email-inbound"),
            handler=constants.EMAIL_INBOUND_HANDLER,
            code_dir=LAMBDA_CODE_PATH,
            runtime=constants.PYTHON_RUNTIME,
            description=f"Organizes inbound email stored in {bucket.attr('name')}",
            environment={
                "BUCKET": bucket.attr("name"),
                "INBOUND_PREFIX": constants.EMAIL_INBOUND_PREFIX,
                "LOG_LEVEL": "INFO",
            },
            statements=(
                _bucket_statement(bucket, "s3:GetObject", "s3:PutObject", "s3:ListBucket"),
            ),
            timeout=30,
            memory_size=256,
        )
    )
    ctx.provider.function_permission(
        FunctionPermissionSpec(
            name=ctx.name("permission", action="email-inbound"),
            function=inbound_function,
            principal="ses.amazonaws.com",
            source_account=ctx.provider.account,
        )
    )
    receipt_rule = ctx.provider.receipt_rule(
        ReceiptRuleSpec(
            name=ctx.name("email-receipt-rule"),
            recipients=ctx.config.email.mailboxes,
            bucket=bucket,
            object_prefix=constants.EMAIL_INBOUND_PREFIX,
            function=inbound_function,
            scan=ctx.config.email.scan,
        )
    )

    management_group = ctx.provider.group(
        GroupSpec(
            name=ctx.name("email-management-s3-group"),
            statements=(
                _bucket_statement(
                    bucket,
                    "s3:ListBucket",
                    "s3:GetObject",
                    "s3:PutObject",
                    "s3:DeleteObject",
                    "s3:GetObjectAcl",
                    "s3:GetObjectVersionAcl",
                    "s3:PutObjectAcl",
                    "s3:PutObjectVersionAcl",
                ),
                PolicyStatement(actions=("s3:ListAllMyBuckets",)),
            ),
        )
    )
    return {
        "bucket": bucket,
        "identity": identity,
        "receipt_rule": receipt_rule,
        "inbound_function": inbound_function,
        "management_group": management_group,
    }


def _mailbox_users(mailboxes: tuple[str, ...]) -> dict[str, Any]:
    return {
        mailbox.split("@", 1)[0]: {
            "email": mailbox,
            "password": constants.PLACEHOLDER_PASSWORD,
        }
        for mailbox in mailboxes
    }


def _binary_asset(ctx: UnitContext, server: MailServerConfig) -> Optional[Handle]:
    path = server.binary_path
    if path is None or not path.is_file():
        logger.warning(
            "Mail server binary not found, skipping upload",
            binary_path=str(path) if path else None,
        )
        return None
    return ctx.provider.asset(AssetSpec(name=ctx.name("mail-server-binary"), path=path))


def build_mail_server(ctx: UnitContext) -> Outputs:
    """Deploy the bridge (serverless) or the full protocol server on one instance."""
    server = ctx.config.email.server
    mode = server.server_mode
    profile = mail_server_profile(server)
    domain = ctx.identity.domain
    mail_domain = f"{server.subdomain}.{domain}"
    zone = ctx.require("dns.zone")
    vpc = ctx.require("network.vpc")

    security_group = ctx.provider.security_group(
        SecurityGroupSpec(
            name=ctx.name("mail-server-sg"),
            network=vpc,
            description=f"Mail server ({mode.value})",
            ingress=tuple(
                IngressRule(port=port.port, description=f"Allow {port.name} traffic")
                for port in profile.ports
            ),
        )
    )

    bucket = ctx.optional("email.bucket")
    if is_absent(bucket):
        lifecycle_rules = [
            LifecycleRule(id="ArchiveOldEmails", tiering_after_days=server.archive_after_days)
        ]
        if server.retention_days:
            lifecycle_rules.append(
                LifecycleRule(id="Delete old emails", expire_after_days=server.retention_days)
            )
        bucket = ctx.provider.bucket(
            BucketSpec(
                name=ctx.name("mail-storage", unique=True),
                versioned=True,
                lifecycle_rules=tuple(lifecycle_rules),
                tags={constants.DAILY_BACKUP_TAG: "true"},
            )
        )

    mailbox_secret = ctx.provider.secret(
        SecretSpec(
            name=ctx.name("mail-users"),
            description="Mailbox credentials for the mail server",
            value=_mailbox_users(ctx.config.email.mailboxes),
        )
    )
    logger.warning(
        "Mailbox passwords are placeholders and must be rotated after deploy",
        secret=ctx.name("mail-users"),
        mailboxes=len(ctx.config.email.mailboxes),
    )

    statements = [
        _bucket_statement(bucket, "s3:GetObject", "s3:PutObject", "s3:DeleteObject", "s3:ListBucket"),
        PolicyStatement(actions=("ses:SendRawEmail", "ses:SendEmail")),
        PolicyStatement(
            actions=("secretsmanager:GetSecretValue",),
            resources=(mailbox_secret.attr("arn"),),
        ),
    ]
    binary = None
    if mode is MailServerMode.SERVER:
        binary = _binary_asset(ctx, server)
        if binary is not None:
            statements.append(
                PolicyStatement(
                    actions=("s3:GetObject",),
                    resources=(f"{binary.attr('bucket_arn')}/{binary.attr('object_key')}",),
                )
            )
    role = ctx.provider.role(
        RoleSpec(
            name=ctx.name("mail-server-role"),
            assumed_by="ec2.amazonaws.com",
            managed_policies=(SSM_MANAGED_POLICY,),
            statements=tuple(statements),
        )
    )
    profile_handle = ctx.provider.instance_profile(
        InstanceProfileSpec(name=ctx.name("mail-server-profile"), role=role)
    )

    script = mail_server_script(
        mode,
        MailScriptContext(
            domain=domain,
            mail_domain=mail_domain,
            bucket_name=bucket.attr("name"),
            region=ctx.provider.region,
            secret_name=mailbox_secret.attr("name"),
            runtime=server.runtime,
            artifact_dir=server.artifact_dir,
            binary_url=binary.attr("s3_url") if binary is not None else None,
        ),
    )
    instance = ctx.provider.instance(
        InstanceSpec(
            name=ctx.name("mail-server"),
            network=vpc,
            security_group=security_group,
            instance_type=profile.instance_type,
            architecture=profile.architecture,
            user_data=script,
            instance_profile=profile_handle,
            disk_size=server.disk_size,
            key_pair=server.key_pair,
        )
    )

    static_ip = ctx.provider.static_ip(
        StaticIpSpec(name=ctx.name("mail-server-eip"), instance=instance)
    )
    public_ip = static_ip.attr("public_ip")
    ctx.provider.record(RecordSpec(zone=zone, name=mail_domain, type="A", values=(public_ip,)))
    ctx.provider.record(
        RecordSpec(zone=zone, name=domain, type="MX", values=(f"10 {mail_domain}",), ttl=3600)
    )
    ctx.provider.record(
        RecordSpec(
            zone=zone,
            name=mail_domain,
            type="TXT",
            values=(f"v=spf1 ip4:{public_ip} include:{constants.SES_SPF_INCLUDE} ~all",),
            ttl=3600,
        )
    )
    return {
        "instance": instance,
        "bucket": bucket,
        "security_group": security_group,
        "public_ip": public_ip,
        "mailbox_secret": mailbox_secret,
    }
