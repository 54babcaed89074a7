"""API infrastructure stack for Lambda + API Gateway wiring."""

from __future__ import annotations

from pathlib import Path

from aws_cdk import CfnOutput, Duration, Stack
from aws_cdk import aws_apigateway as apigateway
from aws_cdk import aws_iam as iam
from aws_cdk import aws_lambda as lambda_
from aws_cdk import aws_secretsmanager as secretsmanager
from constructs import Construct

from stacks.data_stack import DataStack

_ALLOW_HEADERS = [
    "Content-Type",
    "Authorization",
    "X-Amz-Date",
    "X-Api-Key",
    "X-Amz-Security-Token",
]
_ALLOW_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


class ApiStack(Stack):
    """Owns the API Lambda and the REST API routes in front of it."""

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        *,
        data_stack: DataStack,
        stage_name: str,
        canvas_base_url: str,
        canvas_max_concurrency: int,
        bedrock_model_id: str,
        google_client_id: str,
        allowed_origin: str,
        **kwargs,
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)

        project_root = Path(__file__).resolve().parents[2]
        lambda_code = lambda_.Code.from_asset(
            str(project_root),
            exclude=[
                ".git",
                ".github",
                "infra",
                "node_modules",
                "cdk.out",
                "__pycache__",
                "tests",
                "scripts",
            ],
        )

        self.jwt_secret = secretsmanager.Secret(
            self,
            "SessionSigningSecret",
            description="HS256 signing key for CourseCompanion session tokens",
            generate_secret_string=secretsmanager.SecretStringGenerator(
                password_length=64,
                exclude_punctuation=True,
            ),
        )

        env = {
            "S3_BUCKET_NAME": data_stack.users_bucket.bucket_name,
            "CANVAS_BASE_URL": canvas_base_url,
            "CANVAS_MAX_CONCURRENCY": str(canvas_max_concurrency),
            "BEDROCK_MODEL_ID": bedrock_model_id,
            "JWT_SECRET_ARN": self.jwt_secret.secret_arn,
            "GOOGLE_CLIENT_ID": google_client_id,
            "CORS_ALLOW_ORIGIN": allowed_origin,
            "CORS_ALLOW_METHODS": ",".join(_ALLOW_METHODS),
        }

        app_api_handler = lambda_.Function(
            self,
            "AppApiHandler",
            runtime=lambda_.Runtime.PYTHON_3_12,
            code=lambda_code,
            handler="backend.runtime.lambda_handler",
            timeout=Duration.seconds(29),
            memory_size=512,
            environment=env,
        )

        data_stack.users_bucket.grant_read_write(app_api_handler)
        self.jwt_secret.grant_read(app_api_handler)
        app_api_handler.add_to_role_policy(
            iam.PolicyStatement(
                actions=[
                    "bedrock:InvokeModel",
                    "bedrock:InvokeModelWithResponseStream",
                    "bedrock:GetInferenceProfile",
                ],
                resources=["*"],
            )
        )

        self.rest_api = apigateway.RestApi(
            self,
            "CourseCompanionApi",
            rest_api_name="coursecompanion-api",
            deploy_options=apigateway.StageOptions(stage_name=stage_name),
            default_cors_preflight_options=apigateway.CorsOptions(
                allow_origins=[allowed_origin] if allowed_origin != "*" else apigateway.Cors.ALL_ORIGINS,
                allow_methods=_ALLOW_METHODS,
                allow_headers=_ALLOW_HEADERS,
            ),
        )
        for response_id, response_type in (
            ("Default4xxCors", apigateway.ResponseType.DEFAULT_4_XX),
            ("Default5xxCors", apigateway.ResponseType.DEFAULT_5_XX),
        ):
            self.rest_api.add_gateway_response(
                response_id,
                type=response_type,
                response_headers={
                    "Access-Control-Allow-Origin": f"'{allowed_origin}'",
                    "Access-Control-Allow-Headers": f"'{','.join(_ALLOW_HEADERS)}'",
                    "Access-Control-Allow-Methods": f"'{','.join(_ALLOW_METHODS)}'",
                },
            )

        app_integration = apigateway.LambdaIntegration(app_api_handler)

        health = self.rest_api.root.add_resource("health")
        health.add_method("GET", app_integration)

        auth = self.rest_api.root.add_resource("auth")
        for action in ("signup", "login", "google", "setup-canvas", "logout"):
            auth.add_resource(action).add_method("POST", app_integration)
        auth.add_resource("session").add_method("GET", app_integration)

        canvas = self.rest_api.root.add_resource("canvas")
        canvas.add_resource("courses").add_method("GET", app_integration)
        canvas.add_resource("course-data").add_method("GET", app_integration)

        canvas_api = self.rest_api.root.add_resource("canvas-api")
        canvas_api.add_proxy(default_integration=app_integration, any_method=True)

        ai = self.rest_api.root.add_resource("ai")
        ai.add_resource("chat").add_method("POST", app_integration)

        api_base_url = self.rest_api.url.rstrip("/")
        CfnOutput(
            self,
            "ApiBaseUrl",
            value=api_base_url,
            description="Base URL for frontend API wiring",
        )
        CfnOutput(
            self,
            "CanvasProxyBaseUrl",
            value=f"{api_base_url}/canvas-api",
            description="Same-origin Canvas pass-through prefix",
        )
