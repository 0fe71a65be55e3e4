import pytest
from aws_cdk.assertions import Match, Template

from governance_checks import assert_bucket_compliance
from providers.cdk_provider import _elb_name, _txt_value
from stack_test_helpers import (
    DeletionPolicyTestCase,
    LambdaTestCase,
    build_template,
    expected_lambda_props,
    find_bucket,
    find_resources_by_type,
    get_single_resource_id,
    json_template,  # noqa: F401 (fixture)
    template,  # noqa: F401 (fixture)
)

LAMBDA_CASES = [
    LambdaTestCase(
        id="email_inbound",
        function_name="acme-production-email-inbound-function",
        handler="email_inbound.handler",
        memory_size=256,
        timeout=30,
        extra_env={"INBOUND_PREFIX": "tmp/email_in/", "LOG_LEVEL": "INFO"},
    ),
]

DELETION_CASES = [
    DeletionPolicyTestCase(
        id="public", bucket_name="acme-production-public-1700000000", policy="Retain"
    ),
    DeletionPolicyTestCase(
        id="email", bucket_name="acme-production-email-1700000000", policy="Retain"
    ),
]


@pytest.fixture(scope="module")
def dev_template() -> Template:
    return build_template(
        app={"env": "dev"},
        cloud={"api": {"deploy": False}},
        email={"server": {"enabled": False}},
    )


# ------------------- Core Resource Counts -------------------
@pytest.mark.parametrize(
    "resource_type,count",
    [
        ("AWS::Route53::HostedZone", 0),
        ("AWS::CertificateManager::Certificate", 1),
        ("AWS::WAFv2::WebACL", 1),
        ("AWS::WAFv2::IPSet", 1),
        ("AWS::KMS::Key", 1),
        ("AWS::EC2::VPC", 1),
        ("AWS::EFS::FileSystem", 1),
        ("AWS::Backup::BackupPlan", 1),
        ("AWS::CloudFront::Distribution", 1),
        ("AWS::ECS::Service", 1),
        ("AWS::ElasticLoadBalancingV2::Listener", 2),
        ("AWS::SQS::Queue", 2),
        ("AWS::SES::ReceiptRule", 1),
        ("AWS::SSM::Parameter", 1),
        ("AWS::IAM::User", 1),
    ],
)
def test_resource_counts(template: Template, resource_type: str, count: int):
    template.resource_count_is(resource_type, count)


# ------------------- Lambda -------------------
@pytest.mark.parametrize("case", LAMBDA_CASES, ids=lambda case: case.id)
def test_lambda_function(template: Template, case: LambdaTestCase):
    template.has_resource_properties("AWS::Lambda::Function", expected_lambda_props(case))


def test_lambda_uses_power_tools_layer(template: Template):
    template.has_resource_properties(
        "AWS::Lambda::Function",
        {
            "FunctionName": "acme-production-email-inbound-function",
            "Layers": [
                Match.string_like_regexp(
                    "arn:aws:lambda:us-east-1:017000801446:layer:"
                    "AWSLambdaPowertoolsPythonV3-python312-x86_64:\\d+"
                )
            ],
        },
    )


def test_lambda_log_group(template: Template):
    template.has_resource_properties(
        "AWS::Logs::LogGroup",
        {
            "LogGroupName": "/aws/lambda/acme-production-email-inbound-function",
            "RetentionInDays": 365,
        },
    )


def test_ses_may_invoke_the_inbound_function(template: Template):
    template.has_resource_properties(
        "AWS::Lambda::Permission",
        {"Action": "lambda:InvokeFunction", "Principal": "ses.amazonaws.com"},
    )


# ------------------- Firewall -------------------
def test_web_acl_rules_have_dense_priorities(template: Template):
    template.has_resource_properties(
        "AWS::WAFv2::WebACL",
        {
            "Name": "acme-production-firewall",
            "Scope": "CLOUDFRONT",
            "Rules": [
                Match.object_like({"Name": "CountryRule", "Priority": 1}),
                Match.object_like({"Name": "IpAddressRule", "Priority": 2}),
                Match.object_like({"Name": "HttpHeaderRule0", "Priority": 3}),
            ],
        },
    )


def test_address_rule_uses_an_ip_set(template: Template):
    template.has_resource_properties(
        "AWS::WAFv2::IPSet",
        {"Addresses": ["203.0.113.7/32"], "IPAddressVersion": "IPV4", "Scope": "CLOUDFRONT"},
    )


# ------------------- Storage -------------------
def test_bucket_governance(template: Template):
    assert_bucket_compliance(template)


@pytest.mark.parametrize("case", DELETION_CASES, ids=lambda case: case.id)
def test_production_buckets_are_retained(template: Template, case: DeletionPolicyTestCase):
    bucket = find_bucket(template, case.bucket_name)
    assert bucket["DeletionPolicy"] == case.policy
    assert bucket["UpdateReplacePolicy"] == case.policy


def test_dev_buckets_are_destroyed(dev_template: Template):
    bucket = find_bucket(dev_template, "acme-dev-public-1700000000")
    assert bucket["DeletionPolicy"] == "Delete"
    assert find_resources_by_type(dev_template, "Custom::S3AutoDeleteObjects")
    assert_bucket_compliance(dev_template)


def test_bucket_logical_ids_are_derived_from_names(json_template):
    assert any(
        logical_id.startswith("AcmeProductionPublicBucket")
        for logical_id in json_template["Resources"]
    )


def test_file_system_is_encrypted(template: Template):
    template.has_resource_properties(
        "AWS::EFS::FileSystem",
        {"Encrypted": True},
    )


# ------------------- Network -------------------
def test_vpc_id_is_published(template: Template):
    template.has_resource_properties(
        "AWS::SSM::Parameter",
        {"Name": "/acme/production/vpc-id", "Type": "String", "Value": {"Ref": Match.any_value()}},
    )


@pytest.mark.parametrize(
    "name", ["acme-production-vpc-public-1", "acme-production-vpc-private-1"]
)
def test_subnets_are_named_with_the_resource_prefix(template: Template, name: str):
    template.has_resource_properties(
        "AWS::EC2::Subnet",
        {"Tags": Match.array_with([{"Key": "Name", "Value": name}])},
    )


def test_mail_server_opens_only_the_profile_ports(template: Template):
    groups = find_resources_by_type(
        template,
        "AWS::EC2::SecurityGroup",
        {"Properties": {"GroupName": "acme-production-mail-server-sg"}},
    )
    group = groups[get_single_resource_id(groups, "mail server security group")]
    ingress = group["Properties"]["SecurityGroupIngress"]
    assert {rule["FromPort"] for rule in ingress} == {143, 465, 587, 993}
    assert {rule["CidrIp"] for rule in ingress} == {"0.0.0.0/0"}


# ------------------- DNS -------------------
def test_existing_zone_is_looked_up_by_domain(template: Template):
    template.resource_count_is("AWS::Route53::HostedZone", 0)
    template.has_resource_properties(
        "AWS::Route53::RecordSet",
        {"Name": "_dmarc.acme.dev", "HostedZoneId": "DUMMY"},
    )


def test_configured_zone_id_is_used_as_is():
    zoned = build_template(dns={"hosted_zone_id": "Z0123456789"})
    zoned.resource_count_is("AWS::Route53::HostedZone", 0)
    zoned.has_resource_properties(
        "AWS::Route53::RecordSet",
        {"Name": "_dmarc.acme.dev", "HostedZoneId": "Z0123456789"},
    )


# ------------------- Mail -------------------
def test_dmarc_record(template: Template):
    template.has_resource_properties(
        "AWS::Route53::RecordSet",
        {
            "Name": "_dmarc.acme.dev",
            "Type": "TXT",
            "ResourceRecords": ['"v=DMARC1;p=quarantine;pct=25;rua=mailto:dmarcreports@acme.dev"'],
        },
    )


def test_receipt_rule_stores_then_invokes(template: Template):
    template.has_resource_properties(
        "AWS::SES::ReceiptRule",
        {
            "Rule": Match.object_like(
                {
                    "Enabled": True,
                    "ScanEnabled": True,
                    "Actions": [
                        {"S3Action": Match.object_like({"ObjectKeyPrefix": "tmp/email_in/"})},
                        {"LambdaAction": Match.object_like({"InvocationType": "Event"})},
                    ],
                }
            )
        },
    )


# ------------------- Compute -------------------
def test_api_task_reads_the_environment_secret(template: Template):
    template.has_resource_properties(
        "AWS::ECS::TaskDefinition",
        {
            "Family": "acme-production-api-task",
            "ContainerDefinitions": [
                Match.object_like(
                    {
                        "Secrets": [{"Name": "APP_KEY", "ValueFrom": Match.any_value()}],
                        "MountPoints": [Match.object_like({"ContainerPath": "/mnt/efs"})],
                    }
                )
            ],
            "Volumes": [
                Match.object_like(
                    {"EFSVolumeConfiguration": Match.object_like({"TransitEncryption": "ENABLED"})}
                )
            ],
        },
    )


def test_https_listener_uses_the_certificate(template: Template):
    template.has_resource_properties(
        "AWS::ElasticLoadBalancingV2::Listener",
        {"Port": 443, "Protocol": "HTTPS", "Certificates": [{"CertificateArn": Match.any_value()}]},
    )


def test_dev_without_api_has_no_service(dev_template: Template):
    dev_template.resource_count_is("AWS::ECS::Service", 0)
    dev_template.resource_count_is("AWS::ElasticLoadBalancingV2::LoadBalancer", 0)


# ------------------- CDN -------------------
def test_distribution(template: Template):
    template.has_resource_properties(
        "AWS::CloudFront::Distribution",
        {
            "DistributionConfig": Match.object_like(
                {
                    "Aliases": ["acme.dev"],
                    "DefaultRootObject": "index.html",
                    "HttpVersion": "http2and3",
                    "WebACLId": Match.any_value(),
                    "CacheBehaviors": [Match.object_like({"PathPattern": "/api*"})],
                    "CustomErrorResponses": Match.array_with(
                        [
                            Match.object_like(
                                {"ErrorCode": 404, "ResponseCode": 200, "ResponsePagePath": "/index.html"}
                            )
                        ]
                    ),
                    "ViewerCertificate": Match.object_like(
                        {"MinimumProtocolVersion": "TLSv1.2_2021", "SslSupportMethod": "sni-only"}
                    ),
                }
            )
        },
    )


# ------------------- Access -------------------
def test_team_member_user(template: Template):
    template.has_resource_properties(
        "AWS::IAM::User",
        {
            "UserName": "acme-production-chris",
            "LoginProfile": Match.object_like({"PasswordResetRequired": True}),
        },
    )


# ------------------- Outputs -------------------
@pytest.mark.parametrize(
    "name,value",
    [
        ("MainAppUrl", "https://acme.dev"),
        ("ApiUrl", "https://acme.dev/api"),
    ],
)
def test_operator_outputs(template: Template, name: str, value: str):
    template.has_output(name, {"Value": value})


def test_disabled_units_export_nothing(dev_template: Template):
    outputs = dev_template.find_outputs("*")
    assert "ApiUrl" not in outputs
    assert "MailServerPublicIp" not in outputs
    assert "JumpBoxInstanceId" not in outputs
    assert "MainAppUrl" in outputs


# ------------------- Naming helpers -------------------
def test_txt_values_are_quoted_once():
    assert _txt_value("v=spf1 ~all") == '"v=spf1 ~all"'
    assert _txt_value('"already"') == '"already"'


def test_long_load_balancer_names_are_left_to_cloudformation():
    assert _elb_name("acme-production-api-tg") == "acme-production-api-tg"
    assert _elb_name("a" * 33) is None
