#!/usr/bin/env python3
"""AWS CDK entrypoint for composing an application's cloud.

The Config Source is the ``cloud`` entry of the CDK context (``cdk.json`` or
``-c cloud=...``). The deployment timestamp lives in SSM Parameter Store so
that every synth of one environment reuses the same unique resource names;
set ``STACKS_STATE_STORE=memory`` to keep it in process. Without
``dns.hosted_zone_id`` the hosted zone is looked up by domain, which needs
``CDK_DEFAULT_ACCOUNT`` and ``CDK_DEFAULT_REGION`` (or a cached lookup in
``cdk.context.json``).
"""
import os
import time

import aws_cdk as cdk
from aws_cdk import Environment, Stack

from common.config import CloudConfig
from common.environment import EnvironmentIdentity
from common.log import logger
from common.shared_state import InMemorySharedStateStore, SsmSharedStateStore
from composition.catalog import compose_environment
from providers.cdk_provider import CdkProvider

app = cdk.App()

env = Environment(
    account=os.getenv("CDK_DEFAULT_ACCOUNT"),
    region=os.getenv("CDK_DEFAULT_REGION"),
)

config = CloudConfig.from_mapping(app.node.try_get_context("cloud") or {})
if os.getenv("STACKS_STATE_STORE") == "memory":
    store = InMemorySharedStateStore()
else:
    store = SsmSharedStateStore()


def cdk_provider(identity: EnvironmentIdentity) -> CdkProvider:
    stack = Stack(app, identity.build_resource_id("Cloud"), env=env)
    return CdkProvider(stack, identity)


result = compose_environment(config, store, str(int(time.time())), cdk_provider)
logger.info(
    "Cloud composed",
    app=config.app.name,
    app_env=config.app.env,
    invoked=list(result.invoked),
    skipped=list(result.skipped),
)

app.synth()
