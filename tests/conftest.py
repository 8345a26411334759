import copy
import re
import textwrap
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pytest

from strata.config.models import OperatorConfig
from strata.errors import KubeApiError, NotFoundError
from strata.manifest.document import Unstructured
from strata.observers.dispatcher import EventBus
from strata.subroutines.base import OperatorContext


_IN = re.compile(r"^\s*([^\s!=]+)\s+in\s+\(([^)]*)\)\s*$")


def _selector_matches(selector: str, labels: Dict[str, str]) -> bool:
    if not selector:
        return True
    for term in re.split(r",(?![^()]*\))", selector):
        m = _IN.match(term)
        if m:
            if labels.get(m.group(1)) not in [v.strip() for v in m.group(2).split(",")]:
                return False
        elif "=" in term:
            k, v = term.split("=", 1)
            if labels.get(k.strip()) != v.strip():
                return False
        elif term.startswith("!"):
            if term[1:] in labels:
                return False
        elif term not in labels:
            return False
    return True


class FakeClient:
    """In-memory stand-in for a workspace scoped client."""

    def __init__(self, workspace_path: str, journal: list):
        self.workspace_path = workspace_path
        self.journal = journal
        self.objects: Dict[Tuple[str, str, str], dict] = {}
        self.applied: List[Unstructured] = []
        self.fail_get: Dict[str, Exception] = {}
        self.fail_apply: Dict[str, Exception] = {}
        self.get_hooks = []
        self.tokens: List[Tuple[str, str, int]] = []
        self._rv = 0

    def add(self, obj: dict) -> Unstructured:
        u = Unstructured(copy.deepcopy(obj))
        self.objects[(u.kind, u.namespace, u.name)] = u.object
        return u

    def find(self, kind: str, name: str, namespace: str = "") -> Optional[dict]:
        return self.objects.get((kind, namespace, name))

    def get(self, api_version, kind, name, namespace=None):
        self.journal.append(("get", self.workspace_path, kind, name))
        for hook in self.get_hooks:
            hook(self, kind, name)
        if name in self.fail_get:
            raise self.fail_get[name]
        obj = self.objects.get((kind, namespace or "", name))
        if obj is None:
            raise NotFoundError(kind, name, namespace)
        return Unstructured(copy.deepcopy(obj))

    def list(self, api_version, kind, namespace=None, label_selector=""):
        self.journal.append(("list", self.workspace_path, kind, label_selector))
        out = []
        for (k, ns, _), obj in self.objects.items():
            u = Unstructured(copy.deepcopy(obj))
            if k != kind or (namespace and ns != namespace):
                continue
            if _selector_matches(label_selector, u.labels):
                out.append(u)
        return out

    def apply(self, obj: Unstructured, field_manager: str):
        self.journal.append(("apply", self.workspace_path, obj.kind, obj.name))
        if obj.name in self.fail_apply:
            raise self.fail_apply[obj.name]
        self.applied.append(obj.deep_copy())
        self._rv += 1
        stored = obj.deep_copy()
        previous = self.objects.get((obj.kind, obj.namespace, obj.name))
        if previous is not None and "status" in previous and "status" not in stored.object:
            stored.object["status"] = copy.deepcopy(previous["status"])
        # what the server adds on write
        stored.set_nested(str(self._rv), "metadata", "resourceVersion")
        stored.set_nested([{"manager": field_manager, "operation": "Apply"}], "metadata", "managedFields")
        self.objects[(obj.kind, obj.namespace, obj.name)] = stored.object
        return stored

    def patch(self, api_version, kind, name, body, namespace=None):
        obj = self.objects.get((kind, namespace or "", name))
        if obj is None:
            raise NotFoundError(kind, name, namespace)
        obj.update(body)
        return Unstructured(copy.deepcopy(obj))

    def create_token(self, namespace, service_account, expiration_seconds):
        self.journal.append(("token", self.workspace_path, "ServiceAccount", service_account))
        if ("ServiceAccount", namespace, service_account) not in self.objects:
            raise NotFoundError("ServiceAccount", service_account, namespace)
        self.tokens.append((namespace, service_account, expiration_seconds))
        return f"token-{service_account}"


class FakeFactory:
    def __init__(self):
        self.clients: Dict[str, FakeClient] = {}
        self.journal: list = []

    def for_workspace(self, workspace_path: str) -> FakeClient:
        if workspace_path not in self.clients:
            self.clients[workspace_path] = FakeClient(workspace_path, self.journal)
        return self.clients[workspace_path]

    def add_workspace(self, parent: str, name: str, phase: str = "Ready") -> None:
        self.for_workspace(parent).add({
            "apiVersion": "tenancy.kcp.io/v1alpha1",
            "kind": "Workspace",
            "metadata": {"name": name},
            "status": {"phase": phase},
        })

    def applies(self) -> List[Tuple[str, str, str]]:
        return [(ws, kind, name) for op, ws, kind, name in self.journal if op == "apply"]


class FakeSecrets:
    def __init__(self):
        self.data: Dict[Tuple[str, str], Dict[str, bytes]] = {}
        self.reads: List[Tuple[str, str]] = []
        self.errors: Dict[str, Exception] = {}

    def put(self, namespace: str, name: str, **data: bytes) -> None:
        self.data[(namespace, name)] = {k.replace("_", "."): v for k, v in data.items()}

    def read_secret(self, name: str, namespace: str) -> Dict[str, bytes]:
        self.reads.append((namespace, name))
        if name in self.errors:
            raise self.errors[name]
        if (namespace, name) not in self.data:
            raise NotFoundError("Secret", name, namespace)
        return dict(self.data[(namespace, name)])


class RecordingObserver:
    def __init__(self):
        self.events = []

    def notify(self, event):
        self.events.append(event)

    def of(self, cls):
        return [e for e in self.events if isinstance(e, cls)]


class FakeClock:
    def __init__(self):
        self.now = 0.0
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def factory():
    return FakeFactory()


@pytest.fixture
def secrets():
    return FakeSecrets()


@pytest.fixture
def recorder():
    return RecordingObserver()


@pytest.fixture
def bus(recorder):
    return EventBus([recorder], run_id="test-run")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def write_tree(tmp_path: Path):
    """Write {"rel/path.yaml": "text"} under tmp_path/<name> and return the directory."""

    def _write(files: Dict[str, str], name: str = "kcp") -> Path:
        base = tmp_path / name
        base.mkdir(parents=True, exist_ok=True)
        for rel, text in files.items():
            p = base / rel
            p.parent.mkdir(parents=True, exist_ok=True)
            p.write_text(textwrap.dedent(text).lstrip())
        return base

    return _write


@pytest.fixture
def api_error():
    def _make(status: int = 500, message: str = "boom") -> KubeApiError:
        return KubeApiError(message, status=status)

    return _make


@pytest.fixture
def make_ctx(tmp_path: Path, factory, secrets, bus, clock):
    """OperatorContext over the fakes, with workspaceDir at tmp_path."""

    def _make(infra=None, kcp_clients=factory, **config) -> OperatorContext:
        data = {"workspaceDir": str(tmp_path), "workspacePollTimeoutSeconds": 3}
        data.update(config)
        return OperatorContext(
            config=OperatorConfig.model_validate(data),
            secrets=secrets,
            infra=infra,
            kcp_clients=kcp_clients,
            bus=bus,
            sleep=clock.sleep,
            clock=clock,
        )

    return _make
