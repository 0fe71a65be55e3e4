"""Resource Provider capability interface.

Units never touch a vendor SDK. They describe resources with the frozen spec
objects below and pass them to a provider, which returns an opaque
``Handle``. Capabilities are grouped the way units consume them; a provider
implements all groups (``ResourceProvider``).
"""
from pathlib import Path
from typing import Any, Mapping, Optional, Protocol, Union

from attrs import define, field

from composition.firewall import FirewallRule


@define(slots=True, frozen=True)
class Handle:
    kind: str
    logical_id: str
    name: str
    ref: Any = field(default=None, metadata={"description": "Primary identifier"})
    attributes: Mapping[str, Any] = field(factory=dict)
    resource: Any = field(default=None, eq=False, repr=False)

    def attr(self, key: str) -> Any:
        return self.attributes[key]

    def get(self, key: str) -> Any:
        try:
            return self.attributes[key]
        except KeyError:
            return None


@define(slots=True, frozen=True)
class PolicyStatement:
    actions: tuple[str, ...] = field(converter=tuple)
    resources: tuple[str, ...] = field(default=("*",), converter=tuple)
    effect: str = "Allow"
    principal_service: Optional[str] = None
    conditions: Mapping[str, Any] = field(factory=dict)


# ---------- DNS ----------
@define(slots=True, frozen=True)
class HostedZoneSpec:
    domain: str
    zone_id: Optional[str] = None


@define(slots=True, frozen=True)
class AliasTarget:
    dns_name: str
    hosted_zone_id: str


@define(slots=True, frozen=True)
class RecordSpec:
    zone: Handle
    name: str
    type: str
    values: tuple[str, ...] = field(default=(), converter=tuple)
    ttl: int = 300
    alias: Optional[AliasTarget] = None


@define(slots=True, frozen=True)
class CertificateSpec:
    name: str
    domain: str
    zone: Handle
    alternative_names: tuple[str, ...] = field(default=(), converter=tuple)


# ---------- Storage ----------
@define(slots=True, frozen=True)
class LifecycleRule:
    id: str
    prefix: Optional[str] = None
    expire_after_days: Optional[int] = None
    tiering_after_days: Optional[int] = None


@define(slots=True, frozen=True)
class BucketSpec:
    name: str
    versioned: bool = False
    encryption_key: Optional[Handle] = None
    redirect_to: Optional[str] = None
    lifecycle_rules: tuple[LifecycleRule, ...] = field(default=(), converter=tuple)
    object_ownership: str = "BucketOwnerEnforced"
    tags: Mapping[str, str] = field(factory=dict)


@define(slots=True, frozen=True)
class BucketPolicySpec:
    name: str
    bucket: Handle
    statements: tuple[PolicyStatement, ...] = field(converter=tuple)


@define(slots=True, frozen=True)
class FileSystemSpec:
    name: str
    network: Handle
    encryption_key: Optional[Handle] = None
    posix_uid: int = 1000
    posix_gid: int = 1000
    root_path: str = "/"


@define(slots=True, frozen=True)
class AssetSpec:
    name: str
    path: Path


@define(slots=True, frozen=True)
class BackupPlanSpec:
    name: str
    tag_key: str
    tag_value: str
    retention_days: int
    role: Handle
    encryption_key: Optional[Handle] = None
    schedule: str = "cron(0 5 * * ? *)"


@define(slots=True, frozen=True)
class SiteDeploymentSpec:
    name: str
    source: Path
    bucket: Handle
    distribution: Optional[Handle] = None
    prefix: Optional[str] = None


# ---------- Network ----------
@define(slots=True, frozen=True)
class NetworkSpec:
    name: str
    cidr: str
    max_azs: int
    cidr_mask: int


@define(slots=True, frozen=True)
class IngressRule:
    port: Optional[int]
    description: str
    cidr: str = "0.0.0.0/0"
    protocol: str = "tcp"


@define(slots=True, frozen=True)
class SecurityGroupSpec:
    name: str
    network: Handle
    description: str
    ingress: tuple[IngressRule, ...] = field(default=(), converter=tuple)

    @property
    def ports(self) -> set[Optional[int]]:
        return {rule.port for rule in self.ingress}


@define(slots=True, frozen=True)
class IngressRuleSpec:
    name: str
    group: Handle
    source_group: Handle
    port: int
    description: str


@define(slots=True, frozen=True)
class StaticIpSpec:
    name: str
    instance: Handle


# ---------- Compute ----------
@define(slots=True, frozen=True)
class InstanceSpec:
    name: str
    network: Handle
    security_group: Handle
    instance_type: str
    architecture: str
    user_data: str
    instance_profile: Optional[Handle] = None
    disk_size: int = 8
    key_pair: Optional[str] = None
    public: bool = True


@define(slots=True, frozen=True)
class ClusterSpec:
    name: str
    network: Handle


@define(slots=True, frozen=True)
class HealthCheck:
    path: str = "/"
    interval: int = 30
    timeout: int = 5
    healthy_threshold: int = 2
    unhealthy_threshold: int = 3


@define(slots=True, frozen=True)
class TaskDefinitionSpec:
    name: str
    cpu: int
    memory: int
    image: str
    container_port: int
    health_check: HealthCheck
    environment_secret: Optional[Handle] = None
    secret_keys: tuple[str, ...] = field(default=(), converter=tuple)
    file_system: Optional[Handle] = None
    mount_path: Optional[str] = None
    log_retention_days: int = 30


@define(slots=True, frozen=True)
class LoadBalancerSpec:
    name: str
    network: Handle
    security_group: Handle


@define(slots=True, frozen=True)
class TargetGroupSpec:
    name: str
    network: Handle
    port: int
    health_check: HealthCheck


@define(slots=True, frozen=True)
class ListenerSpec:
    name: str
    load_balancer: Handle
    port: int
    protocol: str
    target_group: Handle
    certificate: Optional[Handle] = None


@define(slots=True, frozen=True)
class ServiceSpec:
    name: str
    cluster: Handle
    task_definition: Handle
    network: Handle
    security_group: Handle
    target_group: Handle
    container_port: int
    desired_count: int


@define(slots=True, frozen=True)
class ScalingPolicy:
    name: str
    metric: str
    target: int
    scale_in_cooldown: int
    scale_out_cooldown: int


@define(slots=True, frozen=True)
class AutoscalingSpec:
    name: str
    cluster: Handle
    service: Handle
    min_capacity: int
    max_capacity: int
    policies: tuple[ScalingPolicy, ...] = field(converter=tuple)


@define(slots=True, frozen=True)
class FunctionSpec:
    name: str
    handler: str
    code_dir: Path
    runtime: str
    description: str = ""
    environment: Mapping[str, str] = field(factory=dict)
    statements: tuple[PolicyStatement, ...] = field(default=(), converter=tuple)
    timeout: int = 30
    memory_size: int = 128
    edge: bool = False


@define(slots=True, frozen=True)
class FunctionPermissionSpec:
    name: str
    function: Handle
    principal: str
    source_account: Optional[str] = None


# ---------- Secrets ----------
@define(slots=True, frozen=True)
class SecretSpec:
    name: str
    description: str
    value: Mapping[str, Any] = field(factory=dict)
    encryption_key: Optional[Handle] = None


@define(slots=True, frozen=True)
class ParameterSpec:
    name: str
    value: str
    description: str = ""


@define(slots=True, frozen=True)
class EncryptionKeySpec:
    name: str
    alias: str
    description: str
    pending_window_days: int = 30


# ---------- Messaging ----------
@define(slots=True, frozen=True)
class QueueSpec:
    name: str
    visibility_timeout: int = 30
    retention_days: int = 4
    dead_letter_queue: Optional[Handle] = None
    max_receive_count: int = 3


@define(slots=True, frozen=True)
class EmailIdentitySpec:
    name: str
    domain: str
    mail_from_domain: Optional[str] = None


@define(slots=True, frozen=True)
class ReceiptRuleSpec:
    name: str
    recipients: tuple[str, ...] = field(converter=tuple)
    bucket: Handle
    object_prefix: str
    function: Optional[Handle] = None
    scan: bool = True


# ---------- Firewall ----------
@define(slots=True, frozen=True)
class WebAclSpec:
    name: str
    rules: tuple[FirewallRule, ...] = field(converter=tuple)
    scope: str = "CLOUDFRONT"
    default_action: str = "allow"


# ---------- Edge ----------
@define(slots=True, frozen=True)
class CachePolicySpec:
    name: str
    min_ttl: int
    default_ttl: int
    max_ttl: int
    headers: tuple[str, ...] = field(default=(), converter=tuple)
    cookie_behavior: str = "none"
    cookies: tuple[str, ...] = field(default=(), converter=tuple)
    query_strings: bool = False
    compress: bool = True


@define(slots=True, frozen=True)
class OriginAccessControlSpec:
    name: str


@define(slots=True, frozen=True)
class BucketOrigin:
    bucket: Handle
    access_control: Handle


@define(slots=True, frozen=True)
class HttpOrigin:
    domain_name: str
    protocol_policy: str = "https-only"


Origin = Union[BucketOrigin, HttpOrigin]


@define(slots=True, frozen=True)
class Behavior:
    origin: Origin
    cache_policy: Handle
    path_pattern: Optional[str] = None
    allowed_methods: str = "GET_HEAD"
    cached_methods: str = "GET_HEAD"
    compress: bool = True
    origin_request_function: Optional[Handle] = None
    viewer_protocol_policy: str = "redirect-to-https"


@define(slots=True, frozen=True)
class DistributionSpec:
    name: str
    comment: str
    aliases: tuple[str, ...] = field(converter=tuple)
    certificate: Handle
    default_behavior: Behavior
    behaviors: tuple[Behavior, ...] = field(default=(), converter=tuple)
    web_acl: Optional[Handle] = None
    log_bucket: Optional[Handle] = None
    default_root_object: str = "index.html"
    error_page: Optional[str] = None


# ---------- Identity ----------
@define(slots=True, frozen=True)
class RoleSpec:
    name: str
    assumed_by: str
    managed_policies: tuple[str, ...] = field(default=(), converter=tuple)
    statements: tuple[PolicyStatement, ...] = field(default=(), converter=tuple)
    description: str = ""


@define(slots=True, frozen=True)
class InstanceProfileSpec:
    name: str
    role: Handle


@define(slots=True, frozen=True)
class RolePolicySpec:
    name: str
    role_name: str
    statements: tuple[PolicyStatement, ...] = field(converter=tuple)


@define(slots=True, frozen=True)
class GroupSpec:
    name: str
    statements: tuple[PolicyStatement, ...] = field(default=(), converter=tuple)
    managed_policies: tuple[str, ...] = field(default=(), converter=tuple)
    members: tuple[Handle, ...] = field(default=(), converter=tuple)


@define(slots=True, frozen=True)
class UserSpec:
    name: str
    email: str
    groups: tuple[Handle, ...] = field(default=(), converter=tuple)
    password_reset_required: bool = True


class DnsCapability(Protocol):
    def hosted_zone(self, spec: HostedZoneSpec) -> Handle: ...
    def record(self, spec: RecordSpec) -> Handle: ...
    def certificate(self, spec: CertificateSpec) -> Handle: ...


class StorageCapability(Protocol):
    def bucket(self, spec: BucketSpec) -> Handle: ...
    def bucket_policy(self, spec: BucketPolicySpec) -> Handle: ...
    def file_system(self, spec: FileSystemSpec) -> Handle: ...
    def asset(self, spec: AssetSpec) -> Handle: ...
    def backup_plan(self, spec: BackupPlanSpec) -> Handle: ...
    def deploy_site(self, spec: SiteDeploymentSpec) -> Handle: ...


class NetworkCapability(Protocol):
    def network(self, spec: NetworkSpec) -> Handle: ...
    def security_group(self, spec: SecurityGroupSpec) -> Handle: ...
    def ingress_rule(self, spec: IngressRuleSpec) -> Handle: ...
    def static_ip(self, spec: StaticIpSpec) -> Handle: ...


class ComputeCapability(Protocol):
    def instance(self, spec: InstanceSpec) -> Handle: ...
    def cluster(self, spec: ClusterSpec) -> Handle: ...
    def task_definition(self, spec: TaskDefinitionSpec) -> Handle: ...
    def load_balancer(self, spec: LoadBalancerSpec) -> Handle: ...
    def target_group(self, spec: TargetGroupSpec) -> Handle: ...
    def listener(self, spec: ListenerSpec) -> Handle: ...
    def service(self, spec: ServiceSpec) -> Handle: ...
    def autoscaling(self, spec: AutoscalingSpec) -> Handle: ...
    def function(self, spec: FunctionSpec) -> Handle: ...
    def function_permission(self, spec: FunctionPermissionSpec) -> Handle: ...


class SecretsCapability(Protocol):
    def secret(self, spec: SecretSpec) -> Handle: ...
    def parameter(self, spec: ParameterSpec) -> Handle: ...
    def encryption_key(self, spec: EncryptionKeySpec) -> Handle: ...


class MessagingCapability(Protocol):
    def queue(self, spec: QueueSpec) -> Handle: ...
    def email_identity(self, spec: EmailIdentitySpec) -> Handle: ...
    def receipt_rule(self, spec: ReceiptRuleSpec) -> Handle: ...


class FirewallCapability(Protocol):
    def web_acl(self, spec: WebAclSpec) -> Handle: ...


class EdgeCapability(Protocol):
    def cache_policy(self, spec: CachePolicySpec) -> Handle: ...
    def origin_access_control(self, spec: OriginAccessControlSpec) -> Handle: ...
    def distribution(self, spec: DistributionSpec) -> Handle: ...


class IdentityCapability(Protocol):
    def role(self, spec: RoleSpec) -> Handle: ...
    def instance_profile(self, spec: InstanceProfileSpec) -> Handle: ...
    def role_policy(self, spec: RolePolicySpec) -> Handle: ...
    def group(self, spec: GroupSpec) -> Handle: ...
    def user(self, spec: UserSpec) -> Handle: ...


class ResourceProvider(
    DnsCapability,
    StorageCapability,
    NetworkCapability,
    ComputeCapability,
    SecretsCapability,
    MessagingCapability,
    FirewallCapability,
    EdgeCapability,
    IdentityCapability,
    Protocol,
):
    account: str
    region: str

    def export(self, name: str, value: Any, description: str) -> None: ...
