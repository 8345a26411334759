import logging
import textwrap

import pytest
import typer
import yaml
from typer.testing import CliRunner

import strata.cli.app as cli
from strata.cli.app import app, offline_values, parse_set_flags
from strata.config.models import PlatformInstance

runner = CliRunner()


def _documents(output: str):
    return [d for d in yaml.safe_load_all(output) if d]


def test_parse_set_flags():
    assert parse_set_flags(["a=1", "b=x=y", "c="]) == {"a": "1", "b": "x=y", "c": ""}
    assert parse_set_flags(None) == {}
    with pytest.raises(typer.BadParameter):
        parse_set_flags(["novalue"])


def test_offline_values_layering(tmp_path):
    instance = PlatformInstance.model_validate({
        "name": "pm",
        "namespace": "pm-system",
        "spec": {"values": {"custom": "from-instance", "other": "kept"}},
    })
    values_file = tmp_path / "values.yaml"
    values_file.write_text("custom: from-file\n")

    values = offline_values(instance, values_file, {"baseDomain": "cli.example.io"})

    assert values["custom"] == "from-file"
    assert values["other"] == "kept"
    assert values["helmReleaseNamespace"] == "pm-system"
    assert values["baseDomain"] == "cli.example.io"
    assert values["port"] == "8443"


def test_render_prints_every_workspace(write_tree):
    base = write_tree({
        "00-workspace.yaml": """
            apiVersion: tenancy.kcp.io/v1alpha1
            kind: Workspace
            metadata:
              name: orgs
        """,
        "01-orgs/cm.yaml": """
            apiVersion: v1
            kind: ConfigMap
            metadata:
              name: cfg
            data:
              hash: "{{ .Hash }}"
        """,
        "01-orgs/gated.yaml": """
            {{ if eq .Hash "never" }}
            kind: Nothing
            {{ end }}
        """,
    })

    result = runner.invoke(app, ["render", str(base), "--set", "Hash=abc123"])

    assert result.exit_code == 0, result.output
    assert "# workspace: root source: 00-workspace.yaml" in result.output
    assert "# workspace: root:orgs source: gated.yaml (empty)" in result.output
    docs = _documents(result.output)
    assert [d["kind"] for d in docs] == ["Workspace", "ConfigMap"]
    assert docs[1]["data"]["hash"] == "abc123"


def test_render_injects_bindings_from_instance(write_tree, tmp_path):
    base = write_tree({
        "wst.yaml": """
            apiVersion: tenancy.kcp.io/v1alpha1
            kind: WorkspaceType
            metadata:
              name: account
        """,
    })
    instance_file = tmp_path / "instance.yaml"
    instance_file.write_text(textwrap.dedent("""
        name: pm
        spec:
          kcp:
            extraDefaultAPIBindings:
              - workspaceTypePath: root:account
                export: core.platform-mesh.io
                path: root:platform-mesh-system
    """))

    result = runner.invoke(app, ["render", str(base), "--instance", str(instance_file)])

    assert result.exit_code == 0, result.output
    (doc,) = _documents(result.output)
    assert doc["spec"]["defaultAPIBindings"] == [
        {"path": "root:platform-mesh-system", "export": "core.platform-mesh.io"}
    ]


def test_render_fails_on_missing_value(write_tree):
    base = write_tree({"cm.yaml": "kind: ConfigMap\nmetadata:\n  name: {{ .name }}\n"})

    result = runner.invoke(app, ["render", str(base)])

    assert result.exit_code == 1


def test_provision_rejects_unknown_subroutine(tmp_path, monkeypatch):
    config = tmp_path / "operator.yaml"
    config.write_text("fieldOwner: strata\n")
    instance = tmp_path / "instance.yaml"
    instance.write_text("name: pm\n")
    calls = []

    def fake_init_logging(**kw):
        calls.append(kw)
        return logging.getLogger("strata.cli-test"), "run-1", tmp_path / "run.log"

    monkeypatch.setattr(cli, "init_logging", fake_init_logging)
    monkeypatch.setattr(cli, "load_host_configuration", lambda context: object())
    monkeypatch.setattr(cli, "KubernetesSecretReader", lambda host: object())
    monkeypatch.setattr(cli, "KubernetesResourceClient", lambda host: object())

    result = runner.invoke(app, ["provision", str(config), str(instance), "--only", "setup,bogus"])

    assert result.exit_code != 0
    assert "bogus" in result.output
    assert calls == [{"verbose": False, "instance": "pm"}]
