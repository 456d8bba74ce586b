"""DynamoDB single-table access: boto3 factories, error mapping, table wrapper."""
