from typing import Optional


class RegistryError(Exception):
    """Base for every failure reported by the topic registry.

    ``code`` is a stable tag handlers map to HTTP statuses / error frames.
    """

    code = "REGISTRY_ERROR"

    def __init__(self, message: str, topic: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.topic = topic


class InvalidInput(RegistryError):
    code = "INVALID_INPUT"


class NotFound(RegistryError):
    code = "TOPIC_NOT_FOUND"

    def __init__(self, topic: str):
        super().__init__(f"topic {topic} not found", topic)


class AlreadyExists(RegistryError):
    code = "TOPIC_EXISTS"

    def __init__(self, existing):
        super().__init__(f"topic {existing.name} already exists", existing.name)
        # the live topic, so callers can report its current state
        self.existing = existing


class StorageFailure(RegistryError):
    code = "STORAGE_ERROR"


class HasSubscribers(RegistryError):
    code = "HAS_SUBSCRIBERS"

    def __init__(self, topic: str, subscribers: int):
        super().__init__(f"topic {topic} has {subscribers} active subscribers", topic)
        self.subscribers = subscribers
