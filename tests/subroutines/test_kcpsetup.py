from strata.config.models import PlatformInstance
from strata.errors import ReadinessTimeoutError, TemplateExecutionError
from strata.subroutines.kcpsetup import KcpSetupSubroutine, top_level_workspaces


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

HASHES = """
apiVersion: v1
kind: ConfigMap
metadata:
  name: identity
  namespace: default
data:
  tenancy: {{ .ApiExportRootTenancyKcpIoIdentityHash }}
  ca: {{ .accountOperatorMutatingWebhookCA }}
  domain: {{ .baseDomainPort }}
"""


def _seed(factory, secrets):
    root = factory.for_workspace("root")
    for name in ("tenancy.kcp.io", "shards.core.kcp.io", "topology.kcp.io"):
        root.add({
            "apiVersion": "apis.kcp.io/v1alpha1",
            "kind": "APIExport",
            "metadata": {"name": name},
            "status": {"identityHash": f"hash-{name}"},
        })
    secrets.put("platform-mesh-system", "account-operator-webhook-server-cert", ca_crt=b"CA")
    secrets.put("platform-mesh-system", "security-operator-ca-secret", ca_crt=b"CA2")
    factory.add_workspace("root", "platform-mesh-system")
    factory.add_workspace("root", "orgs")


def _instance(**kcp):
    return PlatformInstance.model_validate({
        "metadata": {"name": "pm", "namespace": "platform-mesh-system"},
        "spec": {"kcp": kcp},
    })


def test_setup_provisions_tree_and_extra_workspaces(write_tree, make_ctx, factory, secrets):
    _seed(factory, secrets)
    write_tree({
        "00-orgs.yaml": WORKSPACE.format(name="orgs"),
        "01-platform-mesh-system/identity.yaml": HASHES,
        "02-orgs/.keep": "",
    }, name="manifests/kcp")
    instance = _instance(extraWorkspaces=[{"path": "root:orgs:team-a", "type": {"name": "account"}}])

    res = KcpSetupSubroutine(make_ctx()).process(instance)

    assert res.ok
    cm = factory.clients["root:platform-mesh-system"].applied[0]
    assert cm.nested("data") == {
        "tenancy": "hash-tenancy.kcp.io",
        "ca": "Q0E=",
        "domain": "portal.localhost:8443",
    }
    assert factory.applies()[-1] == ("root:orgs", "Workspace", "team-a")
    assert [(w.name, w.phase) for w in instance.status.kcp_workspaces] == [
        ("root:platform-mesh-system", "Ready"),
        ("root:orgs", "Ready"),
    ]


def test_missing_admin_secret_requeues_without_error(make_ctx):
    res = KcpSetupSubroutine(make_ctx(kcp_clients=None)).process(_instance())

    assert res.requeue_after == 5.0
    assert res.error is None


def test_template_error_is_not_retried(write_tree, make_ctx, factory, secrets):
    _seed(factory, secrets)
    write_tree({"bad.yaml": "name: {{ .undefinedKey }}\n"}, name="manifests/kcp")

    res = KcpSetupSubroutine(make_ctx()).process(_instance())

    assert isinstance(res.error, TemplateExecutionError)
    assert res.requeue_after is None


def test_workspace_not_ready_requeues(write_tree, make_ctx, factory, secrets):
    _seed(factory, secrets)
    factory.add_workspace("root", "slow", phase="Initializing")
    write_tree({"01-slow/x.yaml": WORKSPACE.format(name="inner")}, name="manifests/kcp")

    res = KcpSetupSubroutine(make_ctx()).process(_instance())

    assert isinstance(res.error, ReadinessTimeoutError)
    assert res.requeue_after == 5.0


def test_top_level_workspaces():
    paths = ["root", "root:a", "root:a:b", "root:c", "rootx:d"]
    assert top_level_workspaces(paths, "root") == ["root:a", "root:c"]
