"""s3mirror - mirror GitHub release binaries into S3-compatible object storage."""
