from models.errors import AlreadyExists, HasSubscribers, InvalidInput, NotFound, RegistryError, StorageFailure  # noqa: F401
from models.models import Subscriber, Topic  # noqa: F401
from models.registry import TopicRegistry  # noqa: F401
