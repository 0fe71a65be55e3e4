"""API compute (containers behind a load balancer) and its job queue."""
from typing import Mapping

from common import constants
from common.errors import ProviderError
from common.log import logger
from composition.graph import Outputs, UnitContext
from composition.provider import (
    AliasTarget,
    AutoscalingSpec,
    ClusterSpec,
    HealthCheck,
    IngressRule,
    IngressRuleSpec,
    ListenerSpec,
    LoadBalancerSpec,
    PolicyStatement,
    QueueSpec,
    RecordSpec,
    RolePolicySpec,
    ScalingPolicy,
    SecretSpec,
    SecurityGroupSpec,
    ServiceSpec,
    TargetGroupSpec,
    TaskDefinitionSpec,
)


def strip_execution_env(
    environment: Mapping[str, str], deny_list: tuple[str, ...]
) -> dict[str, str]:
    """Drop variables that only make sense inside a serverless execution context."""
    denied = set(deny_list)
    return {key: value for key, value in environment.items() if key not in denied}


def build_compute(ctx: UnitContext) -> Outputs:
    api = ctx.config.cloud.api
    domain = ctx.identity.domain
    vpc = ctx.require("network.vpc")
    file_system = ctx.require("file_system.file_system")
    zone = ctx.require("dns.zone")
    certificate = ctx.require("security.certificate")

    environment = strip_execution_env(ctx.config.env, api.env_deny_list)
    environment_secret = ctx.provider.secret(
        SecretSpec(
            name=ctx.name("api-env"),
            description="Environment of the API service",
            value=environment,
        )
    )

    health_check = HealthCheck(path=api.health_check_path)
    cluster = ctx.provider.cluster(ClusterSpec(name=ctx.name("cluster"), network=vpc))
    task_definition = ctx.provider.task_definition(
        TaskDefinitionSpec(
            name=ctx.name("api-task"),
            cpu=api.cpu,
            memory=api.memory,
            image=api.image,
            container_port=api.container_port,
            health_check=health_check,
            environment_secret=environment_secret,
            secret_keys=tuple(environment),
            file_system=file_system,
            mount_path=constants.EFS_MOUNT_PATH,
        )
    )
    if not task_definition.get("execution_role_arn"):
        raise ProviderError(
            "task definition has no execution role; the environment secret cannot be granted"
        )

    # The rule below references the load balancer group, so both groups come first.
    service_group = ctx.provider.security_group(
        SecurityGroupSpec(
            name=ctx.name("api-service-sg"),
            network=vpc,
            description="API service tasks",
        )
    )
    load_balancer_group = ctx.provider.security_group(
        SecurityGroupSpec(
            name=ctx.name("api-lb-sg"),
            network=vpc,
            description="Public API load balancer",
            ingress=(
                IngressRule(port=80, description="Allow HTTP traffic"),
                IngressRule(port=443, description="Allow HTTPS traffic"),
            ),
        )
    )
    ctx.provider.ingress_rule(
        IngressRuleSpec(
            name=ctx.name("api-lb-to-service"),
            group=service_group,
            source_group=load_balancer_group,
            port=api.container_port,
            description="Load balancer to API tasks",
        )
    )

    load_balancer = ctx.provider.load_balancer(
        LoadBalancerSpec(name=ctx.name("api-lb"), network=vpc, security_group=load_balancer_group)
    )
    target_group = ctx.provider.target_group(
        TargetGroupSpec(
            name=ctx.name("api-tg"),
            network=vpc,
            port=api.container_port,
            health_check=health_check,
        )
    )
    # HTTP is forwarded too; the CDN handles the HTTPS redirect.
    for port, protocol, listener_certificate in (
        (80, "HTTP", None),
        (443, "HTTPS", certificate),
    ):
        ctx.provider.listener(
            ListenerSpec(
                name=ctx.name("api-listener", action=protocol.lower()),
                load_balancer=load_balancer,
                port=port,
                protocol=protocol,
                target_group=target_group,
                certificate=listener_certificate,
            )
        )

    service = ctx.provider.service(
        ServiceSpec(
            name=ctx.name("api-service"),
            cluster=cluster,
            task_definition=task_definition,
            network=vpc,
            security_group=service_group,
            target_group=target_group,
            container_port=api.container_port,
            desired_count=api.desired_count,
        )
    )
    ctx.provider.autoscaling(
        AutoscalingSpec(
            name=ctx.name("api-scaling"),
            cluster=cluster,
            service=service,
            min_capacity=api.desired_count,
            max_capacity=max(api.max_capacity, api.desired_count),
            policies=(
                ScalingPolicy(
                    name=ctx.name("api-cpu-scaling"),
                    metric="ECSServiceAverageCPUUtilization",
                    target=constants.CPU_TARGET_UTILIZATION,
                    scale_in_cooldown=api.cpu_cooldown,
                    scale_out_cooldown=api.cpu_cooldown,
                ),
                ScalingPolicy(
                    name=ctx.name("api-memory-scaling"),
                    metric="ECSServiceAverageMemoryUtilization",
                    target=constants.MEMORY_TARGET_UTILIZATION,
                    scale_in_cooldown=api.memory_cooldown,
                    scale_out_cooldown=api.memory_cooldown,
                ),
            ),
        )
    )

    api_domain = f"api.{domain}"
    ctx.provider.record(
        RecordSpec(
            zone=zone,
            name=api_domain,
            type="A",
            alias=AliasTarget(
                dns_name=load_balancer.attr("dns_name"),
                hosted_zone_id=load_balancer.attr("canonical_hosted_zone_id"),
            ),
        )
    )
    logger.info("API service composed", service=ctx.name("api-service"), domain=api_domain)
    return {
        "load_balancer": load_balancer,
        "cluster": cluster,
        "task_definition": task_definition,
        "service": service,
        "task_role": task_definition.attr("task_role_name"),
        "api_url": f"https://{domain}/{api.prefix}",
    }


def build_queue(ctx: UnitContext) -> Outputs:
    queue_config = ctx.config.cloud.queue
    dead_letter_queue = ctx.provider.queue(
        QueueSpec(name=ctx.name("dlq", action="jobs"), retention_days=14)
    )
    queue = ctx.provider.queue(
        QueueSpec(
            name=ctx.name("queue", action="jobs"),
            visibility_timeout=queue_config.visibility_timeout,
            retention_days=queue_config.retention_days,
            dead_letter_queue=dead_letter_queue,
            max_receive_count=queue_config.max_receive_count,
        )
    )
    ctx.provider.role_policy(
        RolePolicySpec(
            name=ctx.name("queue-policy", action="jobs"),
            role_name=ctx.require("compute.task_role"),
            statements=(
                PolicyStatement(
                    actions=(
                        "sqs:SendMessage",
                        "sqs:ReceiveMessage",
                        "sqs:DeleteMessage",
                        "sqs:ChangeMessageVisibility",
                        "sqs:GetQueueAttributes",
                        "sqs:GetQueueUrl",
                    ),
                    resources=(queue.attr("arn"), dead_letter_queue.attr("arn")),
                ),
            ),
        )
    )
    return {"queue": queue, "dead_letter_queue": dead_letter_queue}
