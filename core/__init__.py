"""
Core utilities and configuration for the content sync service.

Modules:
    config: Application settings from environment variables
    database: Async engine and session management
    exceptions: Exception hierarchy (connection, record, platform, snapshot)
    logging: Logging configuration
    security: Webhook signature checks
    clock: Naive-UTC time source

Usage:
    from core.config import settings
    from core.database import get_session_maker
    from core.exceptions import ConnectionFailure, is_retryable
    from core.logging import setup_logging
"""
