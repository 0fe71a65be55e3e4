"""The application's cloud, as an ordered list of units."""
from typing import Any, Callable

from common.config import CloudConfig, should_deploy_api
from common.environment import EnvironmentIdentity
from common.shared_state import SharedStateStore
from composition.graph import (
    CompositionResult,
    OperatorOutput,
    Phase,
    Unit,
    compose,
    preflight,
)
from units.access import ai_enabled, build_ai, build_cli, build_permissions
from units.compute import build_compute, build_queue
from units.edge import build_cdn, build_deployment, build_docs, build_redirects
from units.foundation import (
    build_dns,
    build_file_system,
    build_jump_box,
    build_network,
    build_security,
    build_storage,
    jump_box_enabled,
)
from units.mail import build_email, build_mail_server, mail_server_enabled

CLOUD_UNITS: tuple[Unit, ...] = (
    Unit("dns", build_dns, provides=("zone",)),
    Unit(
        "security",
        build_security,
        requires=("dns.zone",),
        provides=("firewall", "encryption_key", "certificate"),
    ),
    Unit(
        "storage",
        build_storage,
        requires=("security.encryption_key",),
        provides=("public_bucket", "private_bucket", "logs_bucket", "docs_bucket", "backup_plan"),
    ),
    Unit("network", build_network, provides=("vpc",)),
    Unit(
        "file_system",
        build_file_system,
        requires=("network.vpc",),
        provides=("file_system",),
    ),
    Unit(
        "jump_box",
        build_jump_box,
        requires=("network.vpc", "file_system.file_system"),
        provides=("instance", "instance_id", "security_group"),
        condition=jump_box_enabled,
    ),
    Unit(
        "docs",
        build_docs,
        optional=("storage.docs_bucket",),
        provides=("origin_request",),
    ),
    Unit(
        "email",
        build_email,
        requires=("dns.zone",),
        provides=("bucket", "identity", "receipt_rule", "inbound_function", "management_group"),
    ),
    Unit(
        "mail_server",
        build_mail_server,
        requires=("network.vpc", "dns.zone"),
        optional=("email.bucket",),
        provides=("instance", "bucket", "security_group", "public_ip", "mailbox_secret"),
        condition=mail_server_enabled,
    ),
    Unit(
        "redirects",
        build_redirects,
        requires=("dns.zone",),
        provides=("buckets", "www_bucket"),
    ),
    Unit("permissions", build_permissions, provides=("team_group", "users")),
    Unit("ai", build_ai, provides=("role",), condition=ai_enabled),
    Unit(
        "cli",
        build_cli,
        requires=("permissions.users",),
        optional=("jump_box.instance_id",),
        provides=("operator_group",),
    ),
    Unit(
        "compute",
        build_compute,
        requires=("network.vpc", "file_system.file_system", "dns.zone", "security.certificate"),
        provides=("load_balancer", "cluster", "task_definition", "service", "task_role", "api_url"),
        condition=should_deploy_api,
    ),
    Unit(
        "queue",
        build_queue,
        requires=("compute.task_role",),
        provides=("queue", "dead_letter_queue"),
        condition=should_deploy_api,
    ),
    Unit(
        "cdn",
        build_cdn,
        requires=(
            "storage.public_bucket",
            "storage.logs_bucket",
            "security.certificate",
            "security.firewall",
            "dns.zone",
        ),
        optional=("storage.docs_bucket", "docs.origin_request", "compute.load_balancer"),
        provides=(
            "main_distribution",
            "docs_distribution",
            "api_behavior",
            "main_url",
            "vanity_url",
            "docs_url",
        ),
        phase=Phase.INITIALIZE,
    ),
    Unit(
        "deployment",
        build_deployment,
        requires=("storage.public_bucket", "storage.private_bucket", "cdn.main_distribution"),
        optional=("storage.docs_bucket", "cdn.docs_distribution"),
        provides=("deployments",),
        phase=Phase.INITIALIZE,
    ),
)

OPERATOR_OUTPUTS: tuple[OperatorOutput, ...] = (
    OperatorOutput("MainAppUrl", "cdn.main_url", "The URL of the deployed main application"),
    OperatorOutput("MainVanityUrl", "cdn.vanity_url", "The vanity URL of the main application"),
    OperatorOutput("ApiUrl", "compute.api_url", "The URL of the deployed API"),
    OperatorOutput("DocsUrl", "cdn.docs_url", "The URL of the documentation"),
    OperatorOutput("MailServerPublicIp", "mail_server.public_ip", "Public IP of the mail server"),
    OperatorOutput("JumpBoxInstanceId", "jump_box.instance_id", "Instance ID of the jump box"),
)


def compose_cloud(
    config: CloudConfig, identity: EnvironmentIdentity, provider: Any
) -> CompositionResult:
    return compose(config, identity, provider, CLOUD_UNITS, OPERATOR_OUTPUTS)


def compose_environment(
    config: CloudConfig,
    store: SharedStateStore,
    now: str,
    provider_factory: Callable[[EnvironmentIdentity], Any],
) -> CompositionResult:
    """Pre-flight ``config``, then resolve its identity and compose the cloud.

    The shared state store is only consulted once the config is valid.
    """
    preflight(config)
    identity = EnvironmentIdentity.resolve(config, store, now)
    return compose_cloud(config, identity, provider_factory(identity))
