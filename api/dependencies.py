"""
FastAPI dependencies
"""

from typing import AsyncGenerator
from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession
from operations.runner import OperationRunner


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Database session from the runner's session factory"""
    async with request.app.state.runner.session_maker() as session:
        yield session


def get_runner(request: Request) -> OperationRunner:
    return request.app.state.runner
