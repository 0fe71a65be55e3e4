"""Typed, immutable view of the application's cloud configuration.

The Config Source is a nested mapping (CDK context in ``cdk.json``, or any
dict in tests). Each section is a frozen attrs class; unknown keys are
ignored and missing keys fall back to the field defaults. Nothing here
raises on bad values: ``validate_config`` collects every violation so that
composition can report them all at once, before touching the provider.
"""
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Mapping, Optional, TypeVar

import attrs
from attrs import define, field

from common import constants

T = TypeVar("T")


class MailServerMode(str, Enum):
    SERVERLESS = "serverless"
    SERVER = "server"


def _structure(cls: type[T], data: Optional[Mapping[str, Any]]) -> T:
    data = data or {}
    known = {f.name for f in attrs.fields(cls)}
    return cls(**{key: value for key, value in data.items() if key in known})


def _section(cls: type[T]) -> Callable[[Any], T]:
    def convert(value: Any) -> T:
        if isinstance(value, cls):
            return value
        return _structure(cls, value)

    return convert


def _strings(value: Any) -> tuple[str, ...]:
    if not value:
        return ()
    if isinstance(value, str):
        return (value,)
    return tuple(str(item) for item in value)


def _mapping(value: Any) -> Mapping[str, str]:
    return {str(key): str(item) for key, item in (value or {}).items()}


def _bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes")


def _optional_path(value: Any) -> Optional[Path]:
    return Path(value) if value else None


def _int(value: Any) -> Any:
    try:
        return int(value)
    except (TypeError, ValueError):
        return value


def _optional_int(value: Any) -> Any:
    if value is None or value == "":
        return None
    return _int(value)


def _integer(default: Optional[int]) -> Any:
    """An int field that keeps unparseable values for ``validate_config`` to report."""
    if default is None:
        return field(default=None, converter=_optional_int, metadata={"integer": True})
    return field(default=default, converter=_int, metadata={"integer": True})


@define(slots=True, frozen=True)
class AppConfig:
    name: str = field(default="", metadata={"description": "Application name"})
    env: str = field(default=constants.DEFAULT_ENV)
    url: str = field(default="", metadata={"description": "Apex domain"})
    key: str = field(default="", metadata={"description": "Application key, colon delimited"})
    doc_mode: bool = field(default=False, converter=_bool)


@define(slots=True, frozen=True)
class TeamConfig:
    name: str = field(default="")
    members: Mapping[str, str] = field(
        factory=dict,
        converter=_mapping,
        metadata={"description": "user name -> email address"},
    )


@define(slots=True, frozen=True)
class ApiConfig:
    deploy: bool = field(default=False, converter=_bool)
    prefix: str = field(default="api")
    cpu: int = _integer(256)
    memory: int = _integer(512)
    desired_count: int = _integer(2)
    max_capacity: int = _integer(2)
    cpu_cooldown: int = _integer(constants.SCALE_COOLDOWN_SECONDS)
    memory_cooldown: int = _integer(constants.SCALE_COOLDOWN_SECONDS)
    image: str = field(default=constants.DEFAULT_CONTAINER_IMAGE)
    container_port: int = _integer(constants.DEFAULT_CONTAINER_PORT)
    health_check_path: str = field(default="/")
    env_deny_list: tuple[str, ...] = field(
        default=constants.EXECUTION_ENV_DENY_LIST, converter=_strings
    )


@define(slots=True, frozen=True)
class CdnConfig:
    min_ttl: int = _integer(0)
    default_ttl: int = _integer(86400)
    max_ttl: int = _integer(31536000)
    cookie_behavior: str = field(default="none")
    allowed_cookies: tuple[str, ...] = field(default=(), converter=_strings)
    allowed_methods: str = field(default="ALL")
    cached_methods: str = field(default="GET_HEAD")
    compress: bool = field(default=True, converter=_bool)
    enable_logging: bool = field(default=True, converter=_bool)


@define(slots=True, frozen=True)
class JumpBoxConfig:
    enabled: bool = field(default=False, converter=_bool)
    instance_type: str = field(default="t3.micro")


@define(slots=True, frozen=True)
class QueueConfig:
    visibility_timeout: int = _integer(90)
    retention_days: int = _integer(14)
    max_receive_count: int = _integer(3)


@define(slots=True, frozen=True)
class CloudSection:
    api: ApiConfig = field(factory=ApiConfig, converter=_section(ApiConfig))
    cdn: CdnConfig = field(factory=CdnConfig, converter=_section(CdnConfig))
    jump_box: JumpBoxConfig = field(factory=JumpBoxConfig, converter=_section(JumpBoxConfig))
    queue: QueueConfig = field(factory=QueueConfig, converter=_section(QueueConfig))


@define(slots=True, frozen=True)
class FirewallConfig:
    country_codes: tuple[str, ...] = field(default=(), converter=_strings)
    ip_addresses: tuple[str, ...] = field(default=(), converter=_strings)
    http_headers: tuple[str, ...] = field(default=(), converter=_strings)


@define(slots=True, frozen=True)
class SecurityConfig:
    firewall: FirewallConfig = field(factory=FirewallConfig, converter=_section(FirewallConfig))


@define(slots=True, frozen=True)
class MailServerConfig:
    enabled: bool = field(default=False, converter=_bool)
    mode: str = field(default=MailServerMode.SERVERLESS.value)
    subdomain: str = field(default=constants.MAIL_SUBDOMAIN)
    instance_type: Optional[str] = field(default=None)
    disk_size: int = _integer(8)
    key_pair: Optional[str] = field(default=None)
    pop3: bool = field(default=False, converter=_bool)
    runtime: str = field(default="bun")
    binary_path: Optional[Path] = field(default=None, converter=_optional_path)
    artifact_dir: Optional[Path] = field(default=None, converter=_optional_path)
    archive_after_days: int = _integer(30)
    retention_days: Optional[int] = _integer(None)

    @property
    def server_mode(self) -> MailServerMode:
        return MailServerMode(self.mode)


@define(slots=True, frozen=True)
class EmailConfig:
    mailboxes: tuple[str, ...] = field(default=(), converter=_strings)
    scan: bool = field(default=True, converter=_bool)
    server: MailServerConfig = field(
        factory=MailServerConfig, converter=_section(MailServerConfig)
    )


@define(slots=True, frozen=True)
class RedirectConfig:
    domain: str
    hosted_zone_id: Optional[str] = None


def _redirects(value: Any) -> tuple[RedirectConfig, ...]:
    redirects = []
    for item in value or ():
        if isinstance(item, RedirectConfig):
            redirects.append(item)
        elif isinstance(item, str):
            redirects.append(RedirectConfig(domain=item))
        else:
            redirects.append(_structure(RedirectConfig, item))
    return tuple(redirects)


@define(slots=True, frozen=True)
class DnsConfig:
    hosted_zone_id: Optional[str] = field(default=None)
    redirects: tuple[RedirectConfig, ...] = field(default=(), converter=_redirects)


@define(slots=True, frozen=True)
class DocsConfig:
    base: str = field(default="docs")
    source_dir: Optional[Path] = field(default=None, converter=_optional_path)


@define(slots=True, frozen=True)
class StorageConfig:
    website_source: Optional[Path] = field(default=None, converter=_optional_path)
    private_source: Optional[Path] = field(default=None, converter=_optional_path)


@define(slots=True, frozen=True)
class AiConfig:
    models: tuple[str, ...] = field(default=(), converter=_strings)


@define(slots=True, frozen=True)
class CloudConfig:
    app: AppConfig = field(factory=AppConfig, converter=_section(AppConfig))
    team: TeamConfig = field(factory=TeamConfig, converter=_section(TeamConfig))
    cloud: CloudSection = field(factory=CloudSection, converter=_section(CloudSection))
    security: SecurityConfig = field(factory=SecurityConfig, converter=_section(SecurityConfig))
    email: EmailConfig = field(factory=EmailConfig, converter=_section(EmailConfig))
    dns: DnsConfig = field(factory=DnsConfig, converter=_section(DnsConfig))
    docs: DocsConfig = field(factory=DocsConfig, converter=_section(DocsConfig))
    storage: StorageConfig = field(factory=StorageConfig, converter=_section(StorageConfig))
    ai: AiConfig = field(factory=AiConfig, converter=_section(AiConfig))
    env: Mapping[str, str] = field(
        factory=dict,
        converter=_mapping,
        metadata={"description": "Application environment packaged for the API"},
    )

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "CloudConfig":
        return _structure(cls, data)


def should_deploy_api(config: CloudConfig) -> bool:
    return config.cloud.api.deploy


def has_files(directory: Optional[Path]) -> bool:
    return directory is not None and directory.is_dir() and any(
        path.is_file() for path in directory.rglob("*")
    )


def should_deploy_docs(config: CloudConfig) -> bool:
    return config.app.doc_mode or has_files(config.docs.source_dir)


def _integer_violations(section: Any, path: str = "") -> list[str]:
    violations = []
    for attribute in attrs.fields(type(section)):
        name = f"{path}.{attribute.name}" if path else attribute.name
        value = getattr(section, attribute.name)
        if attribute.metadata.get("integer"):
            if value is not None and not isinstance(value, int):
                violations.append(f"{name} must be an integer, got {value!r}")
        elif attrs.has(type(value)):
            violations.extend(_integer_violations(value, name))
    return violations


def validate_config(config: CloudConfig) -> list[str]:
    """Return every pre-flight violation found in ``config``."""
    violations = []
    key_parts = config.app.key.split(":")
    if len(key_parts) < 2 or not all(part.strip() for part in key_parts):
        violations.append(
            "app.key must be colon delimited with at least two non-empty parts"
        )
    if not config.app.url:
        violations.append("app.url (domain) is required")
    if not config.app.name:
        violations.append("app.name is required")
    if not config.team.members:
        violations.append("team.members needs at least one member")

    api = config.cloud.api
    if isinstance(api.cpu, int) and isinstance(api.memory, int) and (
        api.cpu <= 0 or api.memory <= 0
    ):
        violations.append("cloud.api.cpu and cloud.api.memory must be positive")

    server = config.email.server
    modes = [mode.value for mode in MailServerMode]
    if server.enabled and server.mode not in modes:
        violations.append(
            f"email.server.mode must be one of {', '.join(modes)}, got '{server.mode}'"
        )
    if (
        server.enabled
        and server.mode == MailServerMode.SERVERLESS.value
        and server.runtime not in constants.MAIL_RUNTIMES
    ):
        violations.append(
            f"email.server.runtime '{server.runtime}' is not supported"
        )
    violations.extend(_integer_violations(config))
    return violations
