import pytest

from strata.config.models import DefaultAPIBindingConfiguration, WorkspaceDeclaration
from urllib3.exceptions import MaxRetryError, ProtocolError

from strata.errors import (
    ApplyError,
    DeadlineExceededError,
    ReadinessTimeoutError,
    TemplateExecutionError,
    TemplateParseError,
)
from strata.observers.events import (
    DriftDetected,
    ExtraWorkspaceApplied,
    ExtraWorkspaceSkipped,
    ManifestApplied,
    ManifestFailed,
    ManifestSkipped,
    ManifestUnchanged,
    WorkspaceWaitStarted,
)
from strata.provision.provisioner import (
    APPLIED,
    SKIPPED,
    UNCHANGED,
    HierarchicalProvisioner,
    ProvisionContext,
)
from strata.provision.tree import WorkspaceNode


CONFIGMAP = """
apiVersion: v1
kind: ConfigMap
metadata:
  name: {name}
  namespace: default
data:
  value: "{value}"
"""

WORKSPACE = """
apiVersion: tenancy.kcp.io/v1alpha1
kind: Workspace
metadata:
  name: {name}
spec:
  type:
    name: {name}
    path: root
"""


def _provisioner(factory, bus, clock, **kw):
    ctx = ProvisionContext(
        clients=factory,
        values=kw.pop("values", {}),
        bus=bus,
        sleep=clock.sleep,
        clock=clock,
        poll_interval=1,
        poll_timeout=kw.pop("poll_timeout", 5),
        **kw,
    )
    return HierarchicalProvisioner(ctx)


def _ready_on_apply(factory):
    """Mark workspaces Ready in their parent as soon as they are applied."""
    original = factory.for_workspace

    def for_workspace(path):
        client = original(path)
        if not getattr(client, "_marks_ready", False):
            apply = client.apply

            def apply_and_ready(obj, field_manager):
                stored = apply(obj, field_manager)
                if obj.kind == "Workspace":
                    client.find("Workspace", obj.name)["status"] = {"phase": "Ready"}
                return stored

            client.apply = apply_and_ready
            client._marks_ready = True
        return client

    factory.for_workspace = for_workspace
    return factory


# ---------------------------------------------------------------------
# single manifest
# ---------------------------------------------------------------------
def test_apply_manifest_creates_missing_object(tmp_path, factory, bus, recorder, clock):
    p = tmp_path / "cm.yaml"
    p.write_text(CONFIGMAP.format(name="cfg", value="{{ .v }}"))
    client = factory.for_workspace("root")

    outcome = _provisioner(factory, bus, clock, values={"v": "1"}).apply_manifest(client, p)

    assert outcome == APPLIED
    assert client.applied[0].nested("data", "value") == "1"
    assert [e.name for e in recorder.of(ManifestApplied)] == ["cfg"]


def test_unchanged_object_is_not_written(tmp_path, factory, bus, recorder, clock):
    p = tmp_path / "cm.yaml"
    p.write_text(CONFIGMAP.format(name="cfg", value="1"))
    client = factory.for_workspace("root")
    client.add({
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": {
            "name": "cfg",
            "namespace": "default",
            "resourceVersion": "981",
            "managedFields": [{"manager": "someone-else"}],
        },
        "data": {"value": "1"},
    })

    outcome = _provisioner(factory, bus, clock).apply_manifest(client, p)

    assert outcome == UNCHANGED
    assert client.applied == []
    assert len(recorder.of(ManifestUnchanged)) == 1


def test_drifted_object_is_written(tmp_path, factory, bus, recorder, clock):
    p = tmp_path / "cm.yaml"
    p.write_text(CONFIGMAP.format(name="cfg", value="2"))
    client = factory.for_workspace("root")
    client.add({
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": {"name": "cfg", "namespace": "default"},
        "data": {"value": "1"},
    })

    outcome = _provisioner(factory, bus, clock, verbose_diff=True).apply_manifest(client, p)

    assert outcome == APPLIED
    drift = recorder.of(DriftDetected)
    assert drift and drift[0].diff


def test_empty_render_is_skipped(tmp_path, factory, bus, recorder, clock):
    p = tmp_path / "gated.yaml"
    p.write_text('{{ if eq .on "true" }}\nkind: A\n{{ end }}\n')
    client = factory.for_workspace("root")

    outcome = _provisioner(factory, bus, clock, values={"on": "false"}).apply_manifest(client, p)

    assert outcome == SKIPPED
    assert factory.journal == []
    assert recorder.of(ManifestSkipped)[0].reason == "empty"


def test_disabled_content_configuration_is_skipped(tmp_path, factory, bus, clock):
    p = tmp_path / "cc.yaml"
    p.write_text(
        "apiVersion: ui.platform-mesh.io/v1alpha1\n"
        "kind: ContentConfiguration\n"
        "metadata:\n  name: home\n"
    )
    client = factory.for_workspace("root")
    prov = _provisioner(factory, bus, clock, values={"featureDisableContentConfigurations": "true"})

    assert prov.apply_manifest(client, p) == SKIPPED
    assert client.applied == []


def test_get_failure_other_than_not_found_is_apply_error(tmp_path, factory, bus, clock, api_error):
    p = tmp_path / "cm.yaml"
    p.write_text(CONFIGMAP.format(name="cfg", value="1"))
    client = factory.for_workspace("root")
    client.fail_get["cfg"] = api_error(403, "forbidden")

    with pytest.raises(ApplyError) as exc:
        _provisioner(factory, bus, clock).apply_manifest(client, p)

    assert "cm.yaml" in str(exc.value)
    assert client.applied == []


# ---------------------------------------------------------------------
# one node
# ---------------------------------------------------------------------
def test_node_is_best_effort_and_returns_first_error(write_tree, factory, bus, recorder, clock, api_error):
    base = write_tree({
        "01-a.yaml": CONFIGMAP.format(name="a", value="{{ .missing }}"),
        "02-b.yaml": CONFIGMAP.format(name="b", value="1"),
        "03-c.yaml": CONFIGMAP.format(name="c", value="1"),
        "04-d.yaml": CONFIGMAP.format(name="d", value="1"),
    })
    client = factory.for_workspace("root")
    client.fail_apply["c"] = api_error(500)

    err = _provisioner(factory, bus, clock).apply_node(client, WorkspaceNode.load(base, "root"))

    assert isinstance(err, TemplateExecutionError)
    assert [o.name for o in client.applied] == ["b", "d"]
    assert [e.path.rsplit("/", 1)[-1] for e in recorder.of(ManifestFailed)] == ["01-a.yaml", "03-c.yaml"]


def test_transport_failure_in_node_is_apply_error_and_node_continues(write_tree, factory, bus, recorder, clock):
    base = write_tree({
        "01-a.yaml": CONFIGMAP.format(name="a", value="1"),
        "02-b.yaml": CONFIGMAP.format(name="b", value="1"),
        "03-c.yaml": CONFIGMAP.format(name="c", value="1"),
    })
    client = factory.for_workspace("root")
    client.fail_apply["a"] = ProtocolError("Connection aborted.")
    client.fail_get["c"] = MaxRetryError(None, "/clusters/root/api/v1/namespaces/default/configmaps/c")

    err = _provisioner(factory, bus, clock).apply_node(client, WorkspaceNode.load(base, "root"))

    assert isinstance(err, ApplyError)
    assert err.name == "a"
    assert isinstance(err.__cause__, ProtocolError)
    assert err.retryable
    assert [o.name for o in client.applied] == ["b"]
    assert [e.path.rsplit("/", 1)[-1] for e in recorder.of(ManifestFailed)] == ["01-a.yaml", "03-c.yaml"]
    assert [op for op, _, _, name in factory.journal if name == "c"] == ["get"]


def test_undecodable_manifest_fails_alone(write_tree, factory, bus, recorder, clock):
    base = write_tree({"02-b.yaml": CONFIGMAP.format(name="b", value="1")})
    (base / "01-a.yaml").write_bytes(b"apiVersion: v1\nkind: ConfigMap\nmetadata:\n  name: \xff\n")
    client = factory.for_workspace("root")

    err = _provisioner(factory, bus, clock).apply_node(client, WorkspaceNode.load(base, "root"))

    assert isinstance(err, TemplateParseError)
    assert "01-a.yaml" in str(err)
    assert "UTF-8" in str(err)
    assert [o.name for o in client.applied] == ["b"]
    assert len(recorder.of(ManifestFailed)) == 1


# ---------------------------------------------------------------------
# whole tree
# ---------------------------------------------------------------------
def test_two_level_tree_renders_values_and_waits_before_child(write_tree, factory, bus, recorder, clock):
    base = write_tree({
        "00-workspace.yaml": WORKSPACE.format(name="infra"),
        "01-infra/config.yaml": CONFIGMAP.format(name="hashes", value="{{ .Hash }}"),
    })
    _ready_on_apply(factory)

    visited = _provisioner(factory, bus, clock, values={"Hash": "abc123"}).apply_dir_structure(base)

    assert visited == ["root", "root:infra"]
    infra_cm = factory.clients["root:infra"].applied[0]
    assert infra_cm.nested("data", "value") == "abc123"

    ops = [(op, ws, name) for op, ws, _, name in factory.journal]
    poll = ops.index(("get", "root", "infra"), ops.index(("apply", "root", "infra")) + 1)
    assert poll < ops.index(("apply", "root:infra", "hashes"))
    assert [(e.parent, e.name) for e in recorder.of(WorkspaceWaitStarted)] == [("root", "infra")]


def test_depth_first_order_with_explicit_stack(write_tree, factory, bus, clock):
    base = write_tree({
        "root.yaml": CONFIGMAP.format(name="r", value="1"),
        "01-a/ws.yaml": CONFIGMAP.format(name="a", value="1"),
        "01-a/01-deep/ws.yaml": CONFIGMAP.format(name="deep", value="1"),
        "02-b/ws.yaml": CONFIGMAP.format(name="b", value="1"),
    })
    factory.add_workspace("root", "a")
    factory.add_workspace("root", "b")
    factory.add_workspace("root:a", "deep")

    visited = _provisioner(factory, bus, clock).apply_dir_structure(base)

    assert visited == ["root", "root:a", "root:a:deep", "root:b"]
    assert factory.applies() == [
        ("root", "ConfigMap", "r"),
        ("root:a", "ConfigMap", "a"),
        ("root:a:deep", "ConfigMap", "deep"),
        ("root:b", "ConfigMap", "b"),
    ]


def test_node_failure_stops_descent(write_tree, factory, bus, clock, api_error):
    base = write_tree({
        "a.yaml": CONFIGMAP.format(name="a", value="1"),
        "b.yaml": CONFIGMAP.format(name="b", value="1"),
        "01-child/c.yaml": CONFIGMAP.format(name="c", value="1"),
    })
    factory.add_workspace("root", "child")
    factory.for_workspace("root").fail_apply["a"] = api_error(500)

    with pytest.raises(ApplyError):
        _provisioner(factory, bus, clock).apply_dir_structure(base)

    assert factory.applies() == [("root", "ConfigMap", "a"), ("root", "ConfigMap", "b")]
    assert "root:child" not in factory.clients


def test_child_that_never_gets_ready_times_out(write_tree, factory, bus, clock):
    base = write_tree({"01-child/c.yaml": CONFIGMAP.format(name="c", value="1")})
    factory.add_workspace("root", "child", phase="Initializing")

    with pytest.raises(ReadinessTimeoutError):
        _provisioner(factory, bus, clock, poll_timeout=3).apply_dir_structure(base)

    assert clock.now == 3
    assert factory.applies() == []


def test_pass_deadline_bounds_workspace_wait(write_tree, factory, bus, clock):
    base = write_tree({"01-child/c.yaml": CONFIGMAP.format(name="c", value="1")})

    with pytest.raises(DeadlineExceededError):
        _provisioner(factory, bus, clock, poll_timeout=60, deadline=2).apply_dir_structure(base)


def test_second_pass_is_idempotent(write_tree, factory, bus, recorder, clock):
    base = write_tree({
        "00-workspace.yaml": WORKSPACE.format(name="infra"),
        "01-infra/config.yaml": CONFIGMAP.format(name="hashes", value="{{ .Hash }}"),
    })
    _ready_on_apply(factory)
    prov = _provisioner(factory, bus, clock, values={"Hash": "abc123"})

    prov.apply_dir_structure(base)
    first = len(factory.applies())
    prov.apply_dir_structure(base)

    assert first == 2
    assert len(factory.applies()) == first
    assert len(recorder.of(ManifestUnchanged)) == 2


def test_bindings_injected_per_workspace(write_tree, factory, bus, clock):
    base = write_tree({
        "wst.yaml": (
            "apiVersion: tenancy.kcp.io/v1alpha1\n"
            "kind: WorkspaceType\n"
            "metadata:\n  name: account\n"
        ),
    })
    binding = DefaultAPIBindingConfiguration(
        workspace_type_path="root:account", export="core.platform-mesh.io", path="root:platform-mesh-system",
    )

    _provisioner(factory, bus, clock, bindings=[binding]).apply_dir_structure(base)

    applied = factory.clients["root"].applied[0]
    assert applied.nested("spec", "defaultAPIBindings") == [
        {"path": "root:platform-mesh-system", "export": "core.platform-mesh.io"}
    ]


# ---------------------------------------------------------------------
# extra workspaces
# ---------------------------------------------------------------------
def test_extra_workspace_applied_under_parent(factory, bus, recorder, clock):
    decl = WorkspaceDeclaration.model_validate(
        {"path": "root:orgs:team-a", "type": {"name": "account", "path": "root"}}
    )

    applied = _provisioner(factory, bus, clock).apply_extra_workspaces([decl])

    assert applied == ["root:orgs:team-a"]
    assert factory.applies() == [("root:orgs", "Workspace", "team-a")]
    ws = factory.clients["root:orgs"].applied[0]
    assert ws.nested("spec", "type") == {"name": "account", "path": "root"}
    assert recorder.of(ExtraWorkspaceApplied)[0].parent == "root:orgs"


def test_extra_workspace_without_parent_is_skipped(factory, bus, recorder, clock):
    decl = WorkspaceDeclaration.model_validate({"path": "orphan", "type": {"name": "account"}})

    assert _provisioner(factory, bus, clock).apply_extra_workspaces([decl]) == []
    assert factory.applies() == []
    assert recorder.of(ExtraWorkspaceSkipped)[0].path == "orphan"


def test_extra_workspace_apply_error(factory, bus, clock, api_error):
    decl = WorkspaceDeclaration.model_validate({"path": "root:team-b", "type": {"name": "account"}})
    factory.for_workspace("root").fail_apply["team-b"] = api_error(409, "conflict")

    with pytest.raises(ApplyError) as exc:
        _provisioner(factory, bus, clock).apply_extra_workspaces([decl])

    assert exc.value.name == "team-b"
