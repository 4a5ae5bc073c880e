"""
Death Claim Workflow System - Shared Components
Configuration, schemas, state stores, logging and metrics
"""
