"""Startup payloads for the instances the units launch.

Scripts live next to this module as ``scripts/<variant>.sh`` and use
``@@{name}`` placeholders, which leaves shell ``$VAR``/``${VAR}`` syntax
untouched.
"""
import string
from pathlib import Path
from typing import Callable, Optional, Sequence

from attrs import define, field

from common import constants
from common.config import MailServerMode
from common.log import logger

USER_DATA_DIR = Path(__file__).parent / "scripts"

BRIDGE_INSTALL_DIR = "/opt/mailbridge"
BRIDGE_ARTIFACTS = (
    "imap-server.ts",
    "smtp-server.ts",
    "client.ts",
    "s3.ts",
    "ses.ts",
    "secrets-manager.ts",
)
# systemd service name -> entry artifact
BRIDGE_SERVICES = {
    "mailbridge-imap": "imap-server.ts",
    "mailbridge-smtp": "smtp-server.ts",
}
HEREDOC_DELIMITER = "STACKS_EOF"


@define(slots=True, frozen=True)
class Runtime:
    install: str
    binary: str


RUNTIMES = {
    "bun": Runtime(
        install=(
            'export BUN_INSTALL="/root/.bun"\n'
            "curl -fsSL https://bun.sh/install | bash"
        ),
        binary="/root/.bun/bin/bun",
    ),
}


class ScriptTemplate(string.Template):
    delimiter = "@@"


def get_user_data(filename: str) -> ScriptTemplate:
    with open(USER_DATA_DIR / filename) as file:
        return ScriptTemplate(file.read())


def heredoc_delimiter(content: str, base: str = HEREDOC_DELIMITER) -> str:
    """Return a delimiter that never appears as a line of ``content``."""
    lines = set(content.splitlines())
    delimiter = base
    suffix = 0
    while delimiter in lines:
        suffix += 1
        delimiter = f"{base}_{suffix}"
    return delimiter


def literal_file(target: str, content: str) -> str:
    delimiter = heredoc_delimiter(content)
    if not content.endswith("\n"):
        content += "\n"
    return f"cat > {target} << '{delimiter}'\n{content}{delimiter}"


def placeholder_artifact(name: str) -> str:
    return (
        f"// {name} was not found when this script was generated.\n"
        f"console.error('{name} is a placeholder; redeploy with the bridge sources present')\n"
        "process.exit(1)\n"
    )


def read_artifact(source_dir: Optional[Path], name: str) -> str:
    path = source_dir / name if source_dir else None
    if path is None or not path.is_file():
        logger.warning(
            "Embedded artifact not found, using placeholder",
            artifact=name,
            source_dir=str(source_dir) if source_dir else None,
        )
        return placeholder_artifact(name)
    return path.read_text()


@define(slots=True, frozen=True)
class MailScriptContext:
    domain: str
    mail_domain: str
    bucket_name: str
    region: str
    secret_name: str
    runtime: str = field(default="bun")
    artifact_dir: Optional[Path] = field(default=None)
    binary_url: Optional[str] = field(default=None)
    smtp_port: int = field(default=25)

    @property
    def admin_email(self) -> str:
        return f"admin@{self.domain}"


def _systemd_unit(service: str, runtime: Runtime, entry: str) -> str:
    unit = "\n".join(
        [
            "[Unit]",
            f"Description=Mail bridge ({entry})",
            "After=network-online.target",
            "Wants=network-online.target",
            "",
            "[Service]",
            "Type=simple",
            f"WorkingDirectory={BRIDGE_INSTALL_DIR}",
            "EnvironmentFile=/etc/mailbridge/env",
            f"ExecStart={runtime.binary} run {BRIDGE_INSTALL_DIR}/{entry}",
            "Restart=on-failure",
            "RestartSec=5",
            "",
            "[Install]",
            "WantedBy=multi-user.target",
        ]
    )
    return literal_file(f"/etc/systemd/system/{service}.service", unit)


def serverless_script(
    ctx: MailScriptContext, artifacts: Sequence[str] = BRIDGE_ARTIFACTS
) -> str:
    runtime = RUNTIMES[ctx.runtime]
    embedded = "\n\n".join(
        literal_file(f"{BRIDGE_INSTALL_DIR}/{name}", read_artifact(ctx.artifact_dir, name))
        for name in artifacts
    )
    services = "\n\n".join(
        _systemd_unit(service, runtime, entry)
        for service, entry in BRIDGE_SERVICES.items()
    )
    return get_user_data("serverless.sh").substitute(
        runtime_install=runtime.install,
        install_dir=BRIDGE_INSTALL_DIR,
        artifacts=embedded,
        mail_domain=ctx.mail_domain,
        domain=ctx.domain,
        bucket_name=ctx.bucket_name,
        region=ctx.region,
        secret_name=ctx.secret_name,
        admin_email=ctx.admin_email,
        services=services,
        enable_services="\n".join(
            f"systemctl enable --now {service}" for service in BRIDGE_SERVICES
        ),
        service_names=" ".join(BRIDGE_SERVICES),
    )


def server_script(ctx: MailScriptContext) -> str:
    if ctx.binary_url:
        binary_fetch = (
            f"aws s3 cp {ctx.binary_url} /opt/mailserver/smtp-server\n"
            "chmod +x /opt/mailserver/smtp-server"
        )
    else:
        binary_fetch = "# Mail server binary was not packaged with this deployment"
    return get_user_data("server.sh").substitute(
        binary_fetch=binary_fetch,
        mail_domain=ctx.mail_domain,
        smtp_port=ctx.smtp_port,
        bucket_name=ctx.bucket_name,
        region=ctx.region,
        admin_email=ctx.admin_email,
    )


VARIANTS: dict[MailServerMode, Callable[[MailScriptContext], str]] = {
    MailServerMode.SERVERLESS: serverless_script,
    MailServerMode.SERVER: server_script,
}


def mail_server_script(mode: MailServerMode, ctx: MailScriptContext) -> str:
    logger.info("Generating mail server startup script", mode=mode.value)
    return VARIANTS[mode](ctx)


def jump_box_script(file_system_id: str, access_point_id: str) -> str:
    return get_user_data("jump_box.sh").substitute(
        file_system_id=file_system_id,
        access_point_id=access_point_id,
        mount_path=constants.EFS_MOUNT_PATH,
    )
