import redis

from registry_worker.config.settings import Settings


def create_redis_client(settings: Settings) -> redis.Redis:
    """Build the client for the shared counter store (rate budgets and worker registry)."""
    return redis.Redis.from_url(
        settings.redis_url,
        decode_responses=True,
        socket_timeout=5,
        socket_connect_timeout=5,
        health_check_interval=30,
    )
