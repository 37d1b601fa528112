"""
Cross-environment VPC peering orchestrator.

This package establishes and reconciles VPC peering connections between
independently-owned VPCs across accounts and regions, scoping route exposure
to the main route table and marker-tagged subnet route tables only.
"""
