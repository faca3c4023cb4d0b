"""
Pydantic schemas for data validation and serialization.

Schemas:
    platform: Hashnode posts, pages and webhook payloads
    snapshot: Snapshot documents, metadata and restore results
    reports: Real-time metrics, content metrics and run reports
    results: Migration, sync and operation results
    api: HTTP request/response models

Usage:
    from schemas.platform import ExternalPost, WebhookPayload
    from schemas.results import OperationResult
"""
