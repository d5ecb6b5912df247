"""Record storage contract.

Records are stored under fixed logical names (see core.constants) and
serialized as JSON through Pydantic.
"""

from typing import Protocol, TypeVar, runtime_checkable

from pydantic import BaseModel, ValidationError

from closedloop.logging_config import get_logger

logger = get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


@runtime_checkable
class RecordStorage(Protocol):
    def save_raw(self, key: str, raw: str) -> None: ...

    def retrieve_raw(self, key: str) -> str | None: ...


def save(storage: RecordStorage, key: str, record: BaseModel) -> None:
    """Serialize a model and store it under ``key``."""
    storage.save_raw(key, record.model_dump_json())


def retrieve(storage: RecordStorage, key: str, model: type[ModelT]) -> ModelT | None:
    """Load ``key`` as ``model``.

    Returns None when the record is missing or does not parse; a corrupt
    record is logged and treated as absent.
    """
    raw = storage.retrieve_raw(key)
    if raw is None:
        return None
    try:
        return model.model_validate_json(raw)
    except ValidationError as e:
        logger.warning(
            "Stored record could not be parsed",
            key=key,
            model=model.__name__,
            error=str(e),
        )
        return None
