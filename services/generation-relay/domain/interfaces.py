from abc import ABC, abstractmethod
from typing import Any, ClassVar, Dict, FrozenSet, List, Mapping, Optional, Tuple

from core.exceptions import ConfigurationError
from domain.models import ChatTurn, GenerationRequest, TaskHandle, TaskSnapshot, TaskStatus


class GenerationProvider(ABC):
    """A remote image-to-3D service reached over HTTPS."""

    name: ClassVar[str]

    # Every status string the vendor documents, and where each one lands
    DOCUMENTED_STATUSES: ClassVar[FrozenSet[str]]
    STATUS_MAP: ClassVar[Mapping[str, TaskStatus]]

    @classmethod
    def verify_status_map(cls) -> None:
        """Fails fast if a documented vendor status has no normalized state."""
        missing = sorted(cls.DOCUMENTED_STATUSES - set(cls.STATUS_MAP))
        if missing:
            raise ConfigurationError(f"{cls.name} status table has no mapping for: {', '.join(missing)}")

    @classmethod
    def normalize_status(cls, raw: Optional[Any]) -> Tuple[TaskStatus, bool]:
        """
        Maps a vendor status onto the relay's states.
        Returns (status, recognized); unrecognized strings read as still running.
        """
        status = cls.STATUS_MAP.get(raw) if isinstance(raw, str) else None
        if status is None:
            return TaskStatus.RUNNING, False
        return status, True

    @abstractmethod
    async def submit(self, request: GenerationRequest) -> TaskHandle:
        """Uploads the image if needed and creates the job. Returns its handle."""
        pass

    @abstractmethod
    async def poll(self, task_id: str) -> TaskSnapshot:
        """Returns the provider's current view of the job, normalized"""
        pass


class ObjectUploader(ABC):
    @abstractmethod
    async def upload(self, data: bytes, content_type: str, credentials: Dict[str, str]) -> None:
        """Puts bytes into provider-owned object storage using short-lived credentials"""
        pass


class ChatCompletionProvider(ABC):
    @abstractmethod
    async def complete(self, message: str, context: List[ChatTurn]) -> str:
        """Returns the assistant's reply text"""
        pass
