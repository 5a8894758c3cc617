from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any

from botocore.client import BaseClient
from botocore.exceptions import ClientError

from puretools.services.rate_limiter import RateLimitResult, build_limiter_key


@dataclass(frozen=True)
class DynamoRateLimiter:
    """
    Fixed-window counters shared by every instance through one DynamoDB table.

    Items are keyed pk=<identifier>, sk=route:<route_key>:window:<seconds>; the
    `expires_at` attribute is meant to be the table's TTL attribute.
    """

    client: BaseClient
    table_name: str
    ttl_buffer_seconds: int = 5

    def check(
        self,
        *,
        identifier: str,
        route_key: str,
        limit: int,
        window_seconds: int,
        now: int | None = None,
    ) -> RateLimitResult:
        now_ts = int(now or time.time())
        limiter_key = build_limiter_key(route_key, window_seconds)

        if limit <= 0 or window_seconds <= 0:
            return RateLimitResult(
                allowed=True,
                retry_after_seconds=0,
                limit=limit,
                remaining=0,
                count=0,
                window_reset_epoch=now_ts + max(window_seconds, 0),
                limiter_key=limiter_key,
                window_seconds=window_seconds,
            )

        window_start = now_ts - (now_ts % window_seconds)
        window_end = window_start + window_seconds
        item_key = {"pk": {"S": identifier}, "sk": {"S": limiter_key}}

        attributes = self._increment_window(
            item_key=item_key,
            window_start=window_start,
            expires_at=window_end + self.ttl_buffer_seconds,
        )

        count = int(attributes.get("count", {}).get("N", "0"))
        allowed = count <= limit
        return RateLimitResult(
            allowed=allowed,
            retry_after_seconds=0 if allowed else max(1, window_end - now_ts),
            limit=limit,
            remaining=max(0, limit - count),
            count=count,
            window_reset_epoch=window_end,
            limiter_key=limiter_key,
            window_seconds=window_seconds,
        )

    def _increment_window(
        self,
        *,
        item_key: dict[str, Any],
        window_start: int,
        expires_at: int,
    ) -> dict[str, Any]:
        try:
            response = self.client.update_item(
                TableName=self.table_name,
                Key=item_key,
                UpdateExpression=(
                    "SET window_start = :window_start, #count = if_not_exists(#count, :zero) + :inc, "
                    "expires_at = :expires_at"
                ),
                ConditionExpression="attribute_not_exists(window_start) OR window_start = :window_start",
                ExpressionAttributeNames={"#count": "count"},
                ExpressionAttributeValues={
                    ":window_start": {"N": str(window_start)},
                    ":expires_at": {"N": str(expires_at)},
                    ":inc": {"N": "1"},
                    ":zero": {"N": "0"},
                },
                ReturnValues="ALL_NEW",
            )
            return response.get("Attributes", {})
        except ClientError as err:
            if err.response.get("Error", {}).get("Code") != "ConditionalCheckFailedException":
                raise
            # Stored counter belongs to an earlier window: start this one at 1.
            return self._reset_window(item_key=item_key, window_start=window_start, expires_at=expires_at)

    def _reset_window(self, *, item_key: dict[str, Any], window_start: int, expires_at: int) -> dict[str, Any]:
        response = self.client.update_item(
            TableName=self.table_name,
            Key=item_key,
            UpdateExpression="SET window_start = :window_start, #count = :one, expires_at = :expires_at",
            ExpressionAttributeNames={"#count": "count"},
            ExpressionAttributeValues={
                ":window_start": {"N": str(window_start)},
                ":one": {"N": "1"},
                ":expires_at": {"N": str(expires_at)},
            },
            ReturnValues="ALL_NEW",
        )
        return response.get("Attributes", {})
