"""
Pydantic schemas for run metrics and reports
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List, Dict
from datetime import datetime
from models.base import RunKind, RunStatus


class RealTimeMetrics(BaseModel):
    """Live progress of the current run"""
    operation: str
    total: int = 0
    processed: int = 0
    errors: int = 0
    warnings: int = 0
    progress: float = 0.0
    start_time: datetime
    estimated_completion: Optional[datetime] = None
    current_batch: int = 0
    total_batches: int = 0


class SeoMetrics(BaseModel):
    articles_with_meta_title: int = 0
    articles_with_meta_description: int = 0
    articles_with_og_image: int = 0
    meta_title_rate: float = 0.0
    meta_description_rate: float = 0.0
    og_image_rate: float = 0.0
    average_seo_score: float = 0.0


class QualityMetrics(BaseModel):
    articles_with_cover: int = 0
    articles_with_tags: int = 0
    articles_with_series: int = 0
    articles_with_excerpt: int = 0
    average_reading_time: float = 0.0
    average_content_length: float = 0.0
    content_completeness: float = 0.0


class ContentMetrics(BaseModel):
    """Aggregate state of the content store"""
    total_articles: int = 0
    total_tags: int = 0
    total_series: int = 0
    total_users: int = 0
    status_distribution: Dict[str, int] = Field(default_factory=dict)
    visibility_distribution: Dict[str, int] = Field(default_factory=dict)
    tag_distribution: Dict[str, int] = Field(default_factory=dict)
    series_distribution: Dict[str, int] = Field(default_factory=dict)
    author_distribution: Dict[str, int] = Field(default_factory=dict)
    seo: SeoMetrics = Field(default_factory=SeoMetrics)
    quality: QualityMetrics = Field(default_factory=QualityMetrics)


class RunReport(BaseModel):
    """Immutable record of a finished run"""
    model_config = ConfigDict(frozen=True)

    id: str
    timestamp: datetime
    kind: RunKind
    status: RunStatus
    duration_ms: float = 0.0
    metrics: ContentMetrics
    run: Optional[RealTimeMetrics] = None
    success_rate: float = 0.0
    error_rate: float = 0.0
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    data_processed: Dict[str, int] = Field(default_factory=dict)
