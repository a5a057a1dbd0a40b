"""Data model for service nodes and their runtime records.

ServiceSpec and its parts are immutable descriptors built once from
configuration. ServiceInstance is the mutable per-run record that only the
Scheduler changes; it is discarded when the process exits.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Tuple, Union

from .errors import TrustImportWarning


class NodeState(str, Enum):
    """Lifecycle states of a service node"""

    PENDING = "Pending"
    SEEDING = "Seeding"
    STARTING = "Starting"
    AWAITING_READY = "AwaitingReady"
    TRUST_BOOTSTRAP = "TrustBootstrap"
    RESTARTING = "Restarting"
    AWAITING_READY_AFTER_TRUST = "AwaitingReadyAfterTrust"
    READY = "Ready"
    FAILED = "Failed"

    @property
    def terminal(self) -> bool:
        return self in (NodeState.READY, NodeState.FAILED)


# Allowed forward edges; FAILED is reachable from every non-terminal state.
TRANSITIONS: Dict[NodeState, FrozenSet[NodeState]] = {
    NodeState.PENDING: frozenset({NodeState.SEEDING}),
    NodeState.SEEDING: frozenset({NodeState.STARTING}),
    NodeState.STARTING: frozenset({NodeState.AWAITING_READY}),
    NodeState.AWAITING_READY: frozenset({NodeState.READY, NodeState.TRUST_BOOTSTRAP}),
    NodeState.TRUST_BOOTSTRAP: frozenset({NodeState.RESTARTING}),
    NodeState.RESTARTING: frozenset({NodeState.AWAITING_READY_AFTER_TRUST}),
    NodeState.AWAITING_READY_AFTER_TRUST: frozenset({NodeState.READY}),
    NodeState.READY: frozenset(),
    NodeState.FAILED: frozenset(),
}


def can_transition(current: NodeState, target: NodeState) -> bool:
    """Check whether the lifecycle allows moving from current to target"""
    if current.terminal:
        return False
    if target is NodeState.FAILED:
        return True
    return target in TRANSITIONS[current]


class FailureKind(str, Enum):
    """Classified reasons a node ends in FAILED"""

    SEED_ERROR = "SeedError"
    LAUNCH_ERROR = "LaunchError"
    PROBE_TIMED_OUT = "ProbeTimedOut"
    PROBE_ERRORED = "ProbeErrored"
    RESTART_ERROR = "RestartError"
    UPSTREAM_FAILURE = "UpstreamFailure"
    RUN_TIMEOUT = "RunTimeout"
    INTERNAL_ERROR = "InternalError"


@dataclass(frozen=True)
class FailureReason:
    kind: FailureKind
    detail: str = ""

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.detail}" if self.detail else self.kind.value


@dataclass(frozen=True)
class SeedFile:
    """One destination to materialize inside a service volume.

    Files take their bytes from ``content`` or from a local ``source`` file.
    Directories copy the ``source`` tree and apply ``mode`` recursively.
    """

    destination: str
    mode: int
    content: Optional[bytes] = None
    source: Optional[Path] = None
    is_directory: bool = False
    owner: Optional[Tuple[int, int]] = None

    def __post_init__(self):
        if self.is_directory:
            if self.source is None or self.content is not None:
                raise ValueError(f"Directory seed {self.destination} needs a source directory and no content")
        elif (self.content is None) == (self.source is None):
            raise ValueError(f"File seed {self.destination} needs exactly one of content or source")


@dataclass(frozen=True)
class HttpTarget:
    """Status endpoint queried over HTTP(S) from the host"""

    url: str
    verify: bool = False

    def __str__(self) -> str:
        return self.url


@dataclass(frozen=True)
class ExecTarget:
    """Status command executed inside the service container"""

    command: Tuple[str, ...]

    def __str__(self) -> str:
        return " ".join(self.command)


ProbeTarget = Union[HttpTarget, ExecTarget]


@dataclass(frozen=True)
class ProbeResponse:
    """Normalized response of one status query.

    For HTTP targets ``status`` is the response code; for exec targets it is
    the command exit status.
    """

    status: int
    body: str = ""


@dataclass(frozen=True)
class ReadinessProbe:
    target: ProbeTarget
    predicate: Callable[[ProbeResponse], bool]
    interval: float = 5.0
    timeout: float = 300.0
    description: str = ""

    @classmethod
    def from_attempts(cls, target, predicate, interval: float, attempts: int, description: str = ""):
        """Build a probe bounded by a number of polls rather than seconds"""
        return cls(target, predicate, interval=interval, timeout=interval * attempts, description=description)


@dataclass(frozen=True)
class ServiceSpec:
    """Immutable description of one service node"""

    id: str
    image: str
    readiness: ReadinessProbe
    depends_on: FrozenSet[str] = frozenset()
    seed_files: Tuple[SeedFile, ...] = ()
    requires_trust_bootstrap: bool = False
    container_name: str = ""
    volume: Optional[str] = None
    volume_target: str = "/data"
    env: Tuple[Tuple[str, str], ...] = ()
    ports: Tuple[str, ...] = ()
    mounts: Tuple[str, ...] = ()
    extra_hosts: Tuple[str, ...] = ()
    command: Tuple[str, ...] = ()

    @property
    def name(self) -> str:
        return self.container_name or self.id


@dataclass(frozen=True)
class Volume:
    """Named persistent store with its host mountpoint"""

    name: str
    path: Path


class ProbeOutcome(str, Enum):
    READY = "Ready"
    TIMED_OUT = "TimedOut"
    ERRORED = "Errored"


@dataclass
class ProbeResult:
    outcome: ProbeOutcome
    attempts: int
    elapsed: float
    response: Optional[ProbeResponse] = None
    detail: str = ""

    @property
    def ready(self) -> bool:
        return self.outcome is ProbeOutcome.READY


@dataclass
class ServiceInstance:
    """Mutable runtime record of a node, owned by the Scheduler"""

    spec: ServiceSpec
    state: NodeState = NodeState.PENDING
    started_at: Optional[float] = None
    last_probe_result: Optional[ProbeResult] = None
    failure_reason: Optional[FailureReason] = None
    handle: Any = None
    volume: Optional[Volume] = None
    warnings: List[Warning] = field(default_factory=list)
    history: List[Tuple[NodeState, float]] = field(default_factory=list)

    @property
    def id(self) -> str:
        return self.spec.id

    def entered_at(self, state: NodeState) -> Optional[float]:
        """Time the instance first entered a state, if it ever did"""
        for recorded, at in self.history:
            if recorded is state:
                return at
        return None

    def visited(self, state: NodeState) -> bool:
        return any(recorded is state for recorded, _ in self.history)

    @property
    def elapsed(self) -> Optional[float]:
        if len(self.history) < 2:
            return None
        return self.history[-1][1] - self.history[0][1]


@dataclass
class TrustRequest:
    """Pending certificate import for one instance"""

    target: ServiceInstance
    certificate: Path
    attempted: bool = False


class TrustOutcome(str, Enum):
    IMPORTED = "Imported"
    ALREADY_TRUSTED = "AlreadyTrusted"
    FAILED = "Failed"


@dataclass
class TrustResult:
    outcome: TrustOutcome
    warning: Optional[TrustImportWarning] = None


@dataclass
class Report:
    """Final result of a scheduler run"""

    ready: List[str] = field(default_factory=list)
    failed: List[Tuple[str, FailureReason]] = field(default_factory=list)
    instances: Dict[str, ServiceInstance] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed

    def reason_for(self, service_id: str) -> Optional[FailureReason]:
        for failed_id, reason in self.failed:
            if failed_id == service_id:
                return reason
        return None
