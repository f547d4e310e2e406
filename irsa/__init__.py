"""IAM Roles for Service Accounts bootstrap for EKS."""
