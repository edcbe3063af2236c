from schemas.schemas import CreateTopicRequest, PublishRequest  # noqa: F401
