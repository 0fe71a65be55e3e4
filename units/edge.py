"""Edge units: docs origin function, redirects, CDN and site deployment."""
from pathlib import Path
from typing import Any, Optional

from common import constants
from common.config import has_files
from common.log import logger
from composition.graph import ABSENT, Outputs, UnitContext, is_absent
from composition.provider import (
    AliasTarget,
    Behavior,
    BucketOrigin,
    BucketPolicySpec,
    BucketSpec,
    CachePolicySpec,
    DistributionSpec,
    FunctionPermissionSpec,
    FunctionSpec,
    Handle,
    HostedZoneSpec,
    HttpOrigin,
    OriginAccessControlSpec,
    PolicyStatement,
    RecordSpec,
    SiteDeploymentSpec,
)

LAMBDA_CODE_PATH = Path(__file__).resolve().parent.parent / constants.LAMBDA_CODE_DIR


def build_docs(ctx: UnitContext) -> Outputs:
    if is_absent(ctx.optional("storage.docs_bucket")):
        return {"origin_request": ABSENT}

    function = ctx.provider.function(
        FunctionSpec(
            name=ctx.name("function", action="docs-origin-request", unique=True),
            handler=constants.DOCS_ORIGIN_REQUEST_HANDLER,
            code_dir=LAMBDA_CODE_PATH,
            runtime=constants.PYTHON_RUNTIME,
            description="Custom origin request function for the docs",
            edge=True,
        )
    )
    ctx.provider.function_permission(
        FunctionPermissionSpec(
            name=ctx.name("permission", action="docs-origin-request"),
            function=function,
            principal="edgelambda.amazonaws.com",
        )
    )
    return {"origin_request": function}


def build_redirects(ctx: UnitContext) -> Outputs:
    domain = ctx.identity.domain
    buckets = []
    for redirect in ctx.config.dns.redirects:
        zone = ctx.provider.hosted_zone(
            HostedZoneSpec(domain=redirect.domain, zone_id=redirect.hosted_zone_id)
        )
        bucket = ctx.provider.bucket(
            BucketSpec(name=f"{redirect.domain}-redirect", redirect_to=domain)
        )
        ctx.provider.record(
            RecordSpec(
                zone=zone,
                name=f"redirect.{redirect.domain}",
                type="CNAME",
                values=(bucket.attr("website_domain"),),
            )
        )
        buckets.append(bucket)

    www_bucket = ctx.provider.bucket(BucketSpec(name=f"www.{domain}", redirect_to=domain))
    ctx.provider.record(
        RecordSpec(
            zone=ctx.require("dns.zone"),
            name=f"www.{domain}",
            type="CNAME",
            values=(www_bucket.attr("website_domain"),),
        )
    )
    return {"buckets": tuple(buckets), "www_bucket": www_bucket}


def _present(value: Any) -> Optional[Any]:
    return None if is_absent(value) else value


def _grant_distribution_read(
    ctx: UnitContext, bucket: Handle, distribution: Handle, action: str
) -> Handle:
    return ctx.provider.bucket_policy(
        BucketPolicySpec(
            name=ctx.name("bucket-policy", action=action),
            bucket=bucket,
            statements=(
                PolicyStatement(
                    actions=("s3:GetObject",),
                    resources=(f"{bucket.attr('arn')}/*",),
                    principal_service="cloudfront.amazonaws.com",
                    conditions={
                        "StringEquals": {"AWS:SourceArn": distribution.attr("arn")}
                    },
                ),
            ),
        )
    )


def _alias_record(ctx: UnitContext, name: str, distribution: Handle) -> Handle:
    return ctx.provider.record(
        RecordSpec(
            zone=ctx.require("dns.zone"),
            name=name,
            type="A",
            alias=AliasTarget(
                dns_name=distribution.attr("domain_name"),
                hosted_zone_id=constants.CLOUDFRONT_HOSTED_ZONE_ID,
            ),
        )
    )


def build_cdn(ctx: UnitContext) -> Outputs:
    """Build the distributions once every conditional origin has settled.

    The API behaviour exists only when the compute unit built a load
    balancer; otherwise ``api_behavior`` is ``ABSENT``.
    """
    config = ctx.config
    cdn = config.cloud.cdn
    domain = ctx.identity.domain
    certificate = ctx.require("security.certificate")
    firewall = ctx.require("security.firewall")
    log_bucket = ctx.require("storage.logs_bucket") if cdn.enable_logging else None
    docs_bucket = _present(ctx.optional("storage.docs_bucket"))
    origin_request = _present(ctx.optional("docs.origin_request"))
    load_balancer = ctx.optional("compute.load_balancer")

    cache_policy = ctx.provider.cache_policy(
        CachePolicySpec(
            name=ctx.name("cdn-cache-policy"),
            min_ttl=cdn.min_ttl,
            default_ttl=cdn.default_ttl,
            max_ttl=cdn.max_ttl,
            cookie_behavior=cdn.cookie_behavior,
            cookies=cdn.allowed_cookies,
            compress=cdn.compress,
        )
    )
    access_control = ctx.provider.origin_access_control(
        OriginAccessControlSpec(name=ctx.name("web-oac", unique=True))
    )

    api_behavior: Any = ABSENT
    if not is_absent(load_balancer):
        api_cache_policy = ctx.provider.cache_policy(
            CachePolicySpec(
                name=ctx.name("api-cache-policy"),
                min_ttl=0,
                default_ttl=0,
                max_ttl=1,
                headers=constants.API_CACHED_HEADERS,
                query_strings=True,
            )
        )
        api_behavior = Behavior(
            origin=HttpOrigin(domain_name=f"api.{domain}"),
            cache_policy=api_cache_policy,
            path_pattern=f"/{config.cloud.api.prefix}*",
            allowed_methods="ALL",
            cached_methods="GET_HEAD",
        )

    main_bucket = docs_bucket if config.app.doc_mode else ctx.require("storage.public_bucket")
    behaviors = () if is_absent(api_behavior) else (api_behavior,)
    main_distribution = ctx.provider.distribution(
        DistributionSpec(
            name=ctx.name("main-cdn"),
            comment=f"CDN for {domain}",
            aliases=(domain,),
            certificate=certificate,
            web_acl=firewall,
            log_bucket=log_bucket,
            default_behavior=Behavior(
                origin=BucketOrigin(bucket=main_bucket, access_control=access_control),
                cache_policy=cache_policy,
                allowed_methods=cdn.allowed_methods,
                cached_methods=cdn.cached_methods,
                compress=cdn.compress,
                origin_request_function=origin_request,
            ),
            behaviors=behaviors,
            error_page="/index.html",
        )
    )
    _grant_distribution_read(ctx, main_bucket, main_distribution, "main-cdn")
    _alias_record(ctx, domain, main_distribution)

    docs_distribution: Any = ABSENT
    docs_url: Any = f"https://{domain}" if config.app.doc_mode else ABSENT
    if docs_bucket is not None and not config.app.doc_mode:
        docs_domain = f"docs.{domain}"
        docs_distribution = ctx.provider.distribution(
            DistributionSpec(
                name=ctx.name("docs-cdn"),
                comment=f"CDN for {docs_domain}",
                aliases=(docs_domain,),
                certificate=certificate,
                web_acl=firewall,
                log_bucket=log_bucket,
                default_behavior=Behavior(
                    origin=BucketOrigin(bucket=docs_bucket, access_control=access_control),
                    cache_policy=cache_policy,
                    compress=cdn.compress,
                    origin_request_function=origin_request,
                ),
            )
        )
        _grant_distribution_read(ctx, docs_bucket, docs_distribution, "docs-cdn")
        _alias_record(ctx, docs_domain, docs_distribution)
        docs_url = f"https://{docs_domain}"

    return {
        "main_distribution": main_distribution,
        "docs_distribution": docs_distribution,
        "api_behavior": api_behavior,
        "main_url": f"https://{domain}",
        "vanity_url": f"https://{main_distribution.attr('domain_name')}",
        "docs_url": docs_url,
    }


def build_deployment(ctx: UnitContext) -> Outputs:
    config = ctx.config
    distribution = ctx.require("cdn.main_distribution")
    docs_bucket = ctx.optional("storage.docs_bucket")
    if config.app.doc_mode:
        targets = [("website", config.docs.source_dir, docs_bucket, distribution)]
    else:
        targets = [
            ("website", config.storage.website_source, ctx.require("storage.public_bucket"), distribution)
        ]
        if not is_absent(docs_bucket):
            docs_distribution = _present(ctx.optional("cdn.docs_distribution"))
            targets.append(("docs", config.docs.source_dir, docs_bucket, docs_distribution))
    targets.append(
        ("private", config.storage.private_source, ctx.require("storage.private_bucket"), None)
    )

    deployments = []
    for action, source, bucket, target_distribution in targets:
        if not has_files(source):
            logger.info("Nothing to deploy", target=action, source=str(source) if source else None)
            continue
        deployments.append(
            ctx.provider.deploy_site(
                SiteDeploymentSpec(
                    name=ctx.name("deployment", action=action),
                    source=source,
                    bucket=bucket,
                    distribution=target_distribution,
                )
            )
        )
    return {"deployments": tuple(deployments)}
