from typing import TYPE_CHECKING, Any, Generic, Protocol, TypeVar

from pydantic import BaseModel

from api.v1.core.exceptions import DuplicateRegistrationError

if TYPE_CHECKING:
    from api.v1.jobs.worker import ProcessorContext

# Base registry implementation
T = TypeVar("T")


class Registry(Generic[T]):
    """Generic registry for pluggable implementations."""

    def __init__(self, name: str):
        self.name = name
        self._implementations: dict[str, T] = {}
        self._frozen = False

    def register(self, name: str, implementation: T) -> None:
        """Register an implementation with a given name.

        Each name may be registered once; a second registration is a
        configuration error and is raised immediately.
        """
        if self._frozen:
            raise RuntimeError(
                f"Cannot register '{name}' in {self.name.lower()} registry: "
                "registry is frozen in production mode"
            )
        if name in self._implementations:
            raise DuplicateRegistrationError(self.name, name)
        self._implementations[name] = implementation

    def get(self, name: str) -> T:
        """Get an implementation by name."""
        if name not in self._implementations:
            raise KeyError(
                f"No {self.name.lower()} implementation registered with name: {name}"
            )
        return self._implementations[name]

    def find(self, name: str) -> T | None:
        """Get an implementation by name, or None when nothing is registered."""
        return self._implementations.get(name)

    def list(self) -> list[str]:
        """List all registered implementation names."""
        return list(self._implementations.keys())

    def __contains__(self, name: object) -> bool:
        return name in self._implementations

    def freeze(self) -> None:
        """Freeze the registry to prevent further modifications."""
        self._frozen = True

    def is_frozen(self) -> bool:
        """Check if the registry is frozen."""
        return self._frozen


# Processor Registry - executes the work named by a job
class Processor(Protocol):
    """Protocol for processors that execute background jobs.

    ``payload_model`` is optional; when a processor declares one, job
    requests are validated against it before the job is created.
    """

    payload_model: type[BaseModel] | None

    async def process(self, payload: dict[str, Any], ctx: "ProcessorContext") -> str:
        """
        Execute a job.

        Args:
            payload: Job-specific parameters as stored on the job record
            ctx: ProcessorContext with the job id, attempt and progress hook

        Returns:
            Human readable summary stored as the job result

        Raises:
            Any exception to mark the job failed and let the queue redeliver
        """
        ...


class ProcessorRegistry(Registry[Processor]):
    """Registry for job processors (sendEmail, ...)."""

    def __init__(self):
        super().__init__("Processor")
