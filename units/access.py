"""Identity units: team users, AI model access and the operator CLI group."""
from common.config import CloudConfig
from common.environment import slugify
from composition.graph import Outputs, UnitContext, is_absent
from composition.provider import GroupSpec, PolicyStatement, RoleSpec, UserSpec

ADMINISTRATOR_POLICY = "AdministratorAccess"


def ai_enabled(config: CloudConfig) -> bool:
    return bool(config.ai.models)


def build_permissions(ctx: UnitContext) -> Outputs:
    team_group = ctx.provider.group(
        GroupSpec(name=ctx.name("team"), managed_policies=(ADMINISTRATOR_POLICY,))
    )
    # Prefixed with the slug so teardown can find them by name.
    users = tuple(
        ctx.provider.user(
            UserSpec(
                name=f"{ctx.identity.prefix}-{slugify(user_name)}",
                email=email,
                groups=(team_group,),
                password_reset_required=True,
            )
        )
        for user_name, email in ctx.config.team.members.items()
    )
    return {"team_group": team_group, "users": users}


def build_ai(ctx: UnitContext) -> Outputs:
    region = ctx.provider.region
    role = ctx.provider.role(
        RoleSpec(
            name=ctx.name("ai-role"),
            assumed_by="ecs-tasks.amazonaws.com",
            description="Invokes the configured Bedrock foundation models",
            statements=(
                PolicyStatement(
                    actions=(
                        "bedrock:InvokeModel",
                        "bedrock:InvokeModelWithResponseStream",
                    ),
                    resources=tuple(
                        f"arn:aws:bedrock:{region}::foundation-model/{model}"
                        for model in ctx.config.ai.models
                    ),
                ),
            ),
        )
    )
    return {"role": role}


def build_cli(ctx: UnitContext) -> Outputs:
    region = ctx.provider.region
    account = ctx.provider.account
    statements = [
        PolicyStatement(
            actions=("cloudfront:CreateInvalidation", "cloudfront:GetInvalidation"),
            resources=(f"arn:aws:cloudfront::{account}:distribution/*",),
        ),
    ]
    instance_id = ctx.optional("jump_box.instance_id")
    if not is_absent(instance_id):
        statements.append(
            PolicyStatement(
                actions=("ssm:StartSession",),
                resources=(
                    f"arn:aws:ec2:{region}:{account}:instance/{instance_id}",
                    f"arn:aws:ssm:{region}::document/AWS-StartInteractiveCommand",
                ),
            )
        )
        statements.append(
            PolicyStatement(
                actions=("ssm:TerminateSession", "ssm:ResumeSession"),
                resources=(f"arn:aws:ssm:*:*:session/${{aws:username}}-*",),
            )
        )
    operator_group = ctx.provider.group(
        GroupSpec(
            name=ctx.name("cli-operators"),
            statements=tuple(statements),
            members=ctx.require("permissions.users"),
        )
    )
    return {"operator_group": operator_group}
