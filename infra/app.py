#!/usr/bin/env python3
"""CDK app entrypoint for CourseCompanion backend infrastructure."""

from __future__ import annotations

import os

import aws_cdk as cdk

from stacks.api_stack import ApiStack
from stacks.data_stack import DataStack

app = cdk.App()

env = cdk.Environment(
    account=os.getenv("CDK_DEFAULT_ACCOUNT"),
    region=os.getenv("CDK_DEFAULT_REGION"),
)

stage_name = app.node.try_get_context("stageName") or "dev"
canvas_base_url = app.node.try_get_context("canvasBaseUrl") or "https://canvas.instructure.com"
canvas_max_concurrency = int(app.node.try_get_context("canvasMaxConcurrency") or "8")
bedrock_model_id = app.node.try_get_context("bedrockModelId") or "us.anthropic.claude-3-7-sonnet-20250219-v1:0"
retain_user_data = str(app.node.try_get_context("retainUserData") or "1").strip().lower() in {"1", "true", "yes", "on"}
allowed_origin = os.getenv("FRONTEND_ALLOWED_ORIGIN", "").strip() or "http://localhost:3000"

google_client_id = os.getenv("GOOGLE_CLIENT_ID", "").strip()

data_stack = DataStack(
    app,
    "CourseCompanionDataStack",
    env=env,
    retain_user_data=retain_user_data,
)

api_stack = ApiStack(
    app,
    "CourseCompanionApiStack",
    env=env,
    data_stack=data_stack,
    stage_name=stage_name,
    canvas_base_url=canvas_base_url,
    canvas_max_concurrency=canvas_max_concurrency,
    bedrock_model_id=bedrock_model_id,
    google_client_id=google_client_id,
    allowed_origin=allowed_origin,
)
api_stack.add_dependency(data_stack)

app.synth()
