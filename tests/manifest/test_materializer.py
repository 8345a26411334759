import textwrap

import pytest

from strata.config.models import DefaultAPIBindingConfiguration
from strata.errors import ManifestParseError, TemplateExecutionError, TemplateParseError
from strata.manifest.document import Unstructured
from strata.manifest.materializer import (
    NO_OP,
    inject_default_api_bindings,
    is_disabled_content_configuration,
    materialize,
    materialize_file,
    parse_manifest,
)


WORKSPACE_TYPE = textwrap.dedent(
    """
    apiVersion: tenancy.kcp.io/v1alpha1
    kind: WorkspaceType
    metadata:
      name: account
    spec:
      defaultAPIBindings:
        - path: root
          export: tenancy.kcp.io
    """
)


def _binding(type_path: str, export: str, path: str = "root:platform-mesh-system"):
    return DefaultAPIBindingConfiguration(workspace_type_path=type_path, export=export, path=path)


def test_empty_render_is_no_op():
    assert parse_manifest("") is NO_OP
    assert parse_manifest("# only a comment\n") is NO_OP
    assert not NO_OP


def test_non_mapping_is_a_parse_error():
    with pytest.raises(ManifestParseError) as exc:
        parse_manifest("- a\n- b\n", "list.yaml")

    assert exc.value.path == "list.yaml"
    assert "- a" in exc.value.output


def test_invalid_yaml_is_a_parse_error():
    with pytest.raises(ManifestParseError):
        parse_manifest("a: [unclosed\n")


def test_materialize_renders_and_parses():
    text = textwrap.dedent(
        """
        apiVersion: v1
        kind: ConfigMap
        metadata:
          name: cfg
          namespace: {{ .helmReleaseNamespace }}
        data:
          domain: {{ .baseDomain }}
        """
    )
    obj = materialize(text, {"helmReleaseNamespace": "pm", "baseDomain": "example.io"})

    assert obj.identity() == "ConfigMap/pm/cfg"
    assert obj.nested("data", "domain") == "example.io"


def test_materialize_gated_manifest_is_no_op():
    text = "{{ if eq .enabled \"true\" }}\nkind: A\n{{ end }}\n"
    assert materialize(text, {"enabled": "false"}) is NO_OP


def test_materialize_propagates_template_errors():
    with pytest.raises(TemplateExecutionError):
        materialize("name: {{ .nope }}", {})


def test_bindings_injected_for_exact_workspace_type_path():
    bindings = [
        _binding("root:account", "core.platform-mesh.io"),
        _binding("root:orgs:account", "other.io"),
        _binding("root:account", "iam.platform-mesh.io"),
    ]
    obj = materialize(WORKSPACE_TYPE, {}, workspace_path="root", bindings=bindings)

    assert obj.nested("spec", "defaultAPIBindings") == [
        {"path": "root", "export": "tenancy.kcp.io"},
        {"path": "root:platform-mesh-system", "export": "core.platform-mesh.io"},
        {"path": "root:platform-mesh-system", "export": "iam.platform-mesh.io"},
    ]


def test_bindings_not_injected_for_other_workspace():
    obj = materialize(
        WORKSPACE_TYPE, {}, workspace_path="root:orgs", bindings=[_binding("root:account", "x")]
    )
    assert len(obj.nested("spec", "defaultAPIBindings")) == 1


def test_bindings_create_list_when_absent():
    obj = Unstructured.new("tenancy.kcp.io/v1alpha1", "WorkspaceType", "org")

    added = inject_default_api_bindings(obj, "root", [_binding("root:org", "x.io", path="root")])

    assert added == 1
    assert obj.nested("spec", "defaultAPIBindings") == [{"path": "root", "export": "x.io"}]


def test_bindings_ignore_other_kinds():
    obj = Unstructured.new("v1", "ConfigMap", "account")
    assert inject_default_api_bindings(obj, "root", [_binding("root:account", "x")]) == 0
    assert obj.nested("spec") is None


def test_disabled_content_configuration():
    cc = Unstructured.new("ui.platform-mesh.io/v1alpha1", "ContentConfiguration", "home")
    other = Unstructured.new("v1", "ConfigMap", "home")

    assert is_disabled_content_configuration(cc, {"featureDisableContentConfigurations": "true"})
    assert not is_disabled_content_configuration(cc, {"featureDisableContentConfigurations": "false"})
    assert not is_disabled_content_configuration(cc, {})
    assert not is_disabled_content_configuration(other, {"featureDisableContentConfigurations": "true"})


def test_materialize_file(tmp_path):
    p = tmp_path / "cm.yaml"
    p.write_text("apiVersion: v1\nkind: ConfigMap\nmetadata:\n  name: {{ .n }}\n")

    obj = materialize_file(p, {"n": "x"})

    assert obj.name == "x"


def test_parse_manifest_rejects_bytes_that_are_not_utf8():
    with pytest.raises(ManifestParseError, match=r"bad\.yaml.*not valid UTF-8"):
        parse_manifest(b"kind: \xff\n", "bad.yaml")


def test_materialize_file_names_undecodable_file(tmp_path):
    p = tmp_path / "latin1.yaml"
    p.write_bytes("name: café\n".encode("latin-1"))

    with pytest.raises(TemplateParseError, match="latin1.yaml"):
        materialize_file(p, {})
