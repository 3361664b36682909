"""Execution archive backed by Redis."""

from datetime import datetime, timedelta
from typing import List, Optional

import redis.asyncio as aioredis
from loguru import logger

from ..models.workflow import ExecutionStatus, StateTransition, WorkflowExecution


class WorkflowStateManager:
    """Persists finished executions and their transition history in Redis."""

    def __init__(
        self, redis_url: str = "redis://localhost:6379/0", retention_days: int = 30
    ) -> None:
        """Initialize state manager with Redis connection settings."""
        self.redis_url = redis_url
        self.retention_days = retention_days
        self._redis: Optional[aioredis.Redis] = None

    async def connect(self) -> None:
        """Establish Redis connection."""
        if not self._redis:
            self._redis = aioredis.from_url(
                self.redis_url, encoding="utf-8", decode_responses=True
            )
            logger.info("Connected to Redis for workflow execution archive")

    async def disconnect(self) -> None:
        """Close Redis connection."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None
            logger.info("Disconnected from Redis")

    async def _client(self) -> aioredis.Redis:
        if not self._redis:
            await self.connect()
        return self._redis

    def _execution_key(self, execution_id: str) -> str:
        return f"workflow:execution:{execution_id}"

    def _history_key(self, execution_id: str) -> str:
        return f"workflow:history:{execution_id}"

    def _workflow_index_key(self, workflow_id: str) -> str:
        return f"workflow:index:{workflow_id}"

    async def save_execution(self, execution: WorkflowExecution) -> None:
        """Store the execution and replace its transition history."""
        client = await self._client()
        ttl = int(timedelta(days=self.retention_days).total_seconds())

        await client.set(self._execution_key(execution.id), execution.model_dump_json(), ex=ttl)
        index_key = self._workflow_index_key(execution.workflow_id)
        await client.sadd(index_key, execution.id)
        await client.expire(index_key, ttl)

        history_key = self._history_key(execution.id)
        await client.delete(history_key)
        if execution.history:
            await client.rpush(
                history_key, *[t.model_dump_json() for t in execution.history]
            )
            await client.expire(history_key, ttl)

        logger.debug(f"Saved execution state: {execution.id} - {execution.status.value}")

    async def get_execution(self, execution_id: str) -> Optional[WorkflowExecution]:
        """Retrieve an archived execution."""
        client = await self._client()
        data = await client.get(self._execution_key(execution_id))
        if not data:
            return None
        return WorkflowExecution.model_validate_json(data)

    async def get_history(self, execution_id: str) -> List[StateTransition]:
        """Retrieve the recorded state transitions, oldest first."""
        client = await self._client()
        raw = await client.lrange(self._history_key(execution_id), 0, -1)
        return [StateTransition.model_validate_json(item) for item in raw]

    async def list_executions(
        self,
        workflow_id: Optional[str] = None,
        status: Optional[ExecutionStatus] = None,
    ) -> List[WorkflowExecution]:
        """List archived executions with optional filtering."""
        client = await self._client()

        if workflow_id:
            execution_ids = list(await client.smembers(self._workflow_index_key(workflow_id)))
        else:
            execution_ids = []
            cursor = 0
            while True:
                cursor, keys = await client.scan(
                    cursor, match="workflow:execution:*", count=100
                )
                execution_ids.extend(k.replace("workflow:execution:", "") for k in keys)
                if cursor == 0:
                    break

        executions = []
        for execution_id in execution_ids:
            execution = await self.get_execution(execution_id)
            if execution and (status is None or execution.status == status):
                executions.append(execution)

        executions.sort(key=lambda e: e.started_at, reverse=True)
        return executions

    async def delete_execution(self, execution_id: str) -> bool:
        """Delete an execution and its history."""
        client = await self._client()
        execution = await self.get_execution(execution_id)
        if not execution:
            return False

        await client.srem(self._workflow_index_key(execution.workflow_id), execution_id)
        await client.delete(self._execution_key(execution_id), self._history_key(execution_id))
        logger.info(f"Deleted execution: {execution_id}")
        return True

    async def cleanup_old_executions(self, days: Optional[int] = None) -> int:
        """Delete executions started more than ``days`` ago."""
        cutoff = datetime.utcnow() - timedelta(days=days or self.retention_days)
        deleted = 0

        for execution in await self.list_executions():
            if execution.started_at < cutoff and await self.delete_execution(execution.id):
                deleted += 1

        logger.info(f"Cleaned up {deleted} old executions")
        return deleted
