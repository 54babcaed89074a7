"""Data infrastructure stack for user profile storage."""

from __future__ import annotations

from aws_cdk import CfnOutput, RemovalPolicy, Stack
from aws_cdk import aws_s3 as s3
from constructs import Construct


class DataStack(Stack):
    """Owns the S3 bucket holding ``users/<userId>/`` profile documents."""

    def __init__(self, scope: Construct, construct_id: str, *, retain_user_data: bool = True, **kwargs) -> None:
        super().__init__(scope, construct_id, **kwargs)

        removal_policy = RemovalPolicy.RETAIN if retain_user_data else RemovalPolicy.DESTROY
        self.users_bucket = s3.Bucket(
            self,
            "UsersBucket",
            encryption=s3.BucketEncryption.S3_MANAGED,
            block_public_access=s3.BlockPublicAccess.BLOCK_ALL,
            enforce_ssl=True,
            versioned=True,
            auto_delete_objects=not retain_user_data,
            removal_policy=removal_policy,
        )

        CfnOutput(
            self,
            "UsersBucketName",
            value=self.users_bucket.bucket_name,
            description="Bucket for user profiles and password hashes (S3_BUCKET_NAME)",
        )
