import os


def is_test_env() -> bool:
    return os.getenv("ENV", "local") == "test"


def celery_overrides() -> dict:
    # ENV=test runs tasks inline, no broker round-trip
    if not is_test_env():
        return {}
    return {
        "task_always_eager": True,
        "task_eager_propagates": True,
    }
