"""Stateless AWS provisioners for S3, ACM, CloudFront and Route53."""
