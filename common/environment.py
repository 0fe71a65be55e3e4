import re
from typing import Optional

from attrs import define, field

import common.constants as constants
from common.config import CloudConfig
from common.shared_state import SharedStateStore


def slugify(value: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")
    return slug or constants.DEFAULT_APP_NAME


def normalize_env(app_env: Optional[str]) -> str:
    app_env = (app_env or constants.DEFAULT_ENV).lower()
    return constants.DEFAULT_ENV if app_env == constants.LOCAL_ENV else app_env


def environment_domain(url: str, app_env: str) -> str:
    if app_env in constants.PRODUCTION_ENVS:
        return url
    return f"{app_env}.{url}"


@define(slots=True, frozen=True)
class EnvironmentIdentity:
    slug: str = field(metadata={"description": "Slugified application name"})
    app_env: str = field(
        converter=normalize_env,
        metadata={"description": "Deployment environment (dev, staging, production)"},
    )
    app_name: str
    domain: str
    timestamp: str = field(
        metadata={"description": "Deployment timestamp, stable per environment"}
    )

    @classmethod
    def resolve(cls, config: CloudConfig, store: SharedStateStore, now: str) -> "EnvironmentIdentity":
        """Build the identity for ``config``, fetching or minting its timestamp.

        ``now`` is only stored when the environment has no timestamp yet.
        """
        slug = slugify(config.app.name)
        app_env = normalize_env(config.app.env)
        key = constants.STATE_PARAMETER.format(
            slug=slug, app_env=app_env, key=constants.TIMESTAMP_KEY
        )
        return cls(
            slug=slug,
            app_env=app_env,
            app_name=config.app.name,
            domain=environment_domain(config.app.url, app_env),
            timestamp=store.get_or_create(key, now),
        )

    @property
    def is_production(self) -> bool:
        return self.app_env in constants.PRODUCTION_ENVS

    @property
    def prefix(self) -> str:
        return f"{self.slug}-{self.app_env}"

    # ---------- naming ----------
    def build_resource_name(
        self, resource_type: str, action: Optional[str] = None, unique: bool = False
    ) -> str:
        """Build resource name with optional action.

        Examples:
            - Without action: acme-production-logs-bucket
            - With action: acme-production-email-inbound-function
            - Unique: acme-production-public-bucket-1700000000
        """
        parts = [self.slug, self.app_env]
        if action:
            parts.append(action)
        parts.append(resource_type)
        if unique:
            parts.append(self.timestamp)
        return "-".join(parts).lower()

    def build_resource_id(self, resource_type: str, action: Optional[str] = None) -> str:
        """Build resource ID with optional action.

        Examples:
            - Without action: AcmeProductionBucket
            - With action: AcmeProductionPublicBucket
        """
        parts = [self.slug, self.app_env, action or "", resource_type]
        return "".join(
            word.capitalize()
            for part in parts
            for word in re.split(r"[^A-Za-z0-9]+", part)
            if word
        )
