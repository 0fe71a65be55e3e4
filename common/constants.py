SERVICE_NAME = "stacks-cloud"
DEFAULT_APP_NAME = "stacks"
DEFAULT_ENV = "dev"
PRODUCTION_ENVS = ("production", "prod")
LOCAL_ENV = "local"

DEFAULT_REGION = "us-east-1"

# Shared state
TIMESTAMP_KEY = "timestamp"
STATE_PARAMETER = "/{slug}/{app_env}/{key}"

# Network
VPC_CIDR = "10.0.0.0/16"
CIDR_MASK = 24
MAX_AZS = 2
ANY_IPV4_CIDR = "0.0.0.0/0"

# Compute
EFS_MOUNT_PATH = "/mnt/efs"
EFS_VOLUME_NAME = "stacks-efs"
DEFAULT_CONTAINER_IMAGE = "public.ecr.aws/docker/library/nginx:latest"
DEFAULT_CONTAINER_PORT = 80
CPU_TARGET_UTILIZATION = 50
MEMORY_TARGET_UTILIZATION = 60
SCALE_COOLDOWN_SECONDS = 60

# Variables injected by a serverless execution context; never relevant to a
# long running service.
EXECUTION_ENV_DENY_LIST = (
    "_HANDLER",
    "_X_AMZN_TRACE_ID",
    "AWS_REGION",
    "AWS_EXECUTION_ENV",
    "AWS_LAMBDA_FUNCTION_NAME",
    "AWS_LAMBDA_FUNCTION_MEMORY_SIZE",
    "AWS_LAMBDA_FUNCTION_VERSION",
    "AWS_LAMBDA_INITIALIZATION_TYPE",
    "AWS_LAMBDA_LOG_GROUP_NAME",
    "AWS_LAMBDA_LOG_STREAM_NAME",
    "AWS_ACCESS_KEY",
    "AWS_ACCESS_KEY_ID",
    "AWS_SECRET_ACCESS_KEY",
    "AWS_SESSION_TOKEN",
    "AWS_LAMBDA_RUNTIME_API",
    "LAMBDA_TASK_ROOT",
    "LAMBDA_RUNTIME_DIR",
    "_",
)

# Lambda
POWER_TOOLS_PYTHON_RUNTIME = "python312"
POWER_TOOLS_LAMBDA_LAYER_NAME = "AWSLambdaPowertoolsPythonV3"
POWER_TOOLS_LAMBDA_LAYER_ACCOUNT = "017000801446"
POWER_TOOLS_VERSION = "18"
POWER_TOOLS_ARCHITECTURE = "x86_64"
POWER_TOOLS_LAYER = "arn:aws:lambda:{region}:{lambda_layer_account}:layer:{power_tools_type}-{runtime}-{architecture}:{version}"

LAMBDA_CODE_DIR = "lambdas"
PYTHON_RUNTIME = "python3.12"
DOCS_ORIGIN_REQUEST_HANDLER = "origin_request.handler"
EMAIL_INBOUND_HANDLER = "email_inbound.handler"
EMAIL_INBOUND_PREFIX = "tmp/email_in/"

# CDN
CLOUDFRONT_HOSTED_ZONE_ID = "Z2FDTNDATAQYW2"
API_CACHED_HEADERS = ("Accept", "x-api-key", "Authorization")

# Mail
MAIL_SUBDOMAIN = "mail"
PLACEHOLDER_PASSWORD = "changeme"
SES_SPF_INCLUDE = "amazonses.com"
SES_FEEDBACK_HOST = "feedback-smtp.{region}.amazonses.com"
SERVERLESS_INSTANCE_TYPE = "t4g.small"
SERVER_INSTANCE_TYPE = "t3.small"
MAIL_RUNTIMES = ("bun",)

# Backups
DAILY_BACKUP_TAG = "daily-backup"
BACKUP_RETENTION_DAYS = 35
