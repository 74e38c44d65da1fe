"""Unit tests for ReferenceGraphBuilder: reference discovery, naming, policies."""

from __future__ import annotations

import pytest

from kubesum.errors import MalformedReferenceError
from kubesum.graph.builder import NORMALIZE_ANNOTATION, TRACK_ANNOTATION, ReferenceGraphBuilder, checksum_env_name
from kubesum.graph.models import EdgeOrigin
from kubesum.models.sources import NormalizationPolicy, ObjectKind, SourceObject, SourceObjectRef, TrackedSource
from kubesum.models.workloads import WorkloadKind, WorkloadRef
from tests.conftest import config_map_volume, make_container, make_deployment, secret_volume

_REF = WorkloadRef(WorkloadKind.DEPLOYMENT, "default", "web")


def _cm(name: str, **data: str) -> SourceObject:
    return SourceObject(ObjectKind.CONFIG_MAP, "default", name, {k: v.encode() for k, v in data.items()})


def _secret(name: str, data: dict[str, str]) -> SourceObject:
    return SourceObject(ObjectKind.SECRET, "default", name, {k: v.encode() for k, v in data.items()})


def _objects(*objs: SourceObject) -> dict[SourceObjectRef, SourceObject | None]:
    return {obj.ref: obj for obj in objs}


def _build(builder: ReferenceGraphBuilder, workload: dict, *objs: SourceObject):
    objects: dict[SourceObjectRef, SourceObject | None] = {ref: None for ref in builder.referenced_objects(workload)}
    objects.update(_objects(*objs))
    return builder.build(_REF, workload, objects)


# ---------------------------------------------------------------------------
# Naming
# ---------------------------------------------------------------------------


class TestChecksumEnvName:
    def test_dotted_key(self) -> None:
        assert checksum_env_name("spam.conf") == "SPAM_CONF_CHECKSUM"

    def test_dashes_and_case(self) -> None:
        assert checksum_env_name("tls-cert.pem") == "TLS_CERT_PEM_CHECKSUM"

    def test_qualified(self) -> None:
        assert checksum_env_name("my-secret", "tls.crt") == "MY_SECRET_TLS_CRT_CHECKSUM"


# ---------------------------------------------------------------------------
# Volumes
# ---------------------------------------------------------------------------


class TestVolumeReferences:
    def test_secret_items_yield_one_edge_per_item(self, builder: ReferenceGraphBuilder) -> None:
        workload = make_deployment(
            containers=[make_container(mounts=["tls"])],
            volumes=[secret_volume("tls", "my-secret", items=["cert", "key"])],
        )
        edges = _build(builder, workload, _secret("my-secret", {"cert": "C", "key": "K", "ca": "A"}))

        assert [e.env_var_name for e in edges] == ["CERT_CHECKSUM", "KEY_CHECKSUM"]
        assert all(e.origin == EdgeOrigin.VOLUME for e in edges)
        assert edges[0].source == TrackedSource(ObjectKind.SECRET, "default", "my-secret", "cert")
        assert edges[0].containers == ("app",)

    def test_whole_config_map_expands_to_every_key(self, builder: ReferenceGraphBuilder) -> None:
        workload = make_deployment(
            containers=[make_container(mounts=["conf"])],
            volumes=[config_map_volume("conf", "my-config-map")],
        )
        cm = _cm("my-config-map", **{"spam.conf": "s", "eggs.conf": "e", "ham.conf": "h"})
        edges = _build(builder, workload, cm)

        assert len(edges) == 3
        assert [e.source.key for e in edges] == ["eggs.conf", "ham.conf", "spam.conf"]

    def test_missing_volume_source_is_malformed(self, builder: ReferenceGraphBuilder) -> None:
        workload = make_deployment(
            containers=[make_container(mounts=["conf"])],
            volumes=[config_map_volume("conf", "does-not-exist")],
        )
        with pytest.raises(MalformedReferenceError) as exc_info:
            _build(builder, workload)
        assert exc_info.value.source == SourceObjectRef(ObjectKind.CONFIG_MAP, "default", "does-not-exist")
        assert exc_info.value.field_path == "spec.template.spec.volumes[0].configMap"

    def test_optional_missing_volume_contributes_nothing(self, builder: ReferenceGraphBuilder) -> None:
        workload = make_deployment(volumes=[config_map_volume("conf", "maybe", optional=True)])
        assert _build(builder, workload) == []

    def test_projected_volume_sources(self, builder: ReferenceGraphBuilder) -> None:
        workload = make_deployment(
            containers=[make_container(mounts=["bundle"])],
            volumes=[
                {
                    "name": "bundle",
                    "projected": {
                        "sources": [
                            {"configMap": {"name": "ca", "items": [{"key": "ca.crt", "path": "ca.crt"}]}},
                            {"secret": {"name": "creds"}},
                            {"serviceAccountToken": {"path": "token"}},
                        ]
                    },
                }
            ],
        )
        edges = _build(builder, workload, _cm("ca", **{"ca.crt": "x", "other": "y"}), _secret("creds", {"user": "u"}))

        assert [(e.source.name, e.source.key) for e in edges] == [("ca", "ca.crt"), ("creds", "user")]
        assert all(e.origin == EdgeOrigin.PROJECTED_VOLUME for e in edges)

    def test_unmounted_volume_targets_all_containers(self, builder: ReferenceGraphBuilder) -> None:
        workload = make_deployment(volumes=[config_map_volume("conf", "cfg")])
        edges = _build(builder, workload, _cm("cfg", a="1"))
        assert edges[0].containers == ()


# ---------------------------------------------------------------------------
# Container env / envFrom
# ---------------------------------------------------------------------------


class TestContainerReferences:
    def test_key_refs(self, builder: ReferenceGraphBuilder) -> None:
        workload = make_deployment(
            containers=[
                make_container(
                    env=[
                        {"name": "DB_PASSWORD", "valueFrom": {"secretKeyRef": {"name": "db", "key": "password"}}},
                        {"name": "LOG_LEVEL", "valueFrom": {"configMapKeyRef": {"name": "cfg", "key": "log.level"}}},
                        {"name": "PLAIN", "value": "x"},
                    ]
                )
            ]
        )
        edges = _build(builder, workload, _secret("db", {"password": "p"}), _cm("cfg", **{"log.level": "info"}))

        assert [e.env_var_name for e in edges] == ["PASSWORD_CHECKSUM", "LOG_LEVEL_CHECKSUM"]
        assert all(e.origin == EdgeOrigin.ENV for e in edges)

    def test_key_ref_to_missing_object_is_left_to_fetcher(self, builder: ReferenceGraphBuilder) -> None:
        workload = make_deployment(
            containers=[make_container(env=[{"name": "X", "valueFrom": {"secretKeyRef": {"name": "gone", "key": "k"}}}])]
        )
        edges = _build(builder, workload)
        assert [e.source.key for e in edges] == ["k"]

    def test_optional_key_ref_to_missing_key_is_skipped(self, builder: ReferenceGraphBuilder) -> None:
        workload = make_deployment(
            containers=[
                make_container(
                    env=[{"name": "X", "valueFrom": {"configMapKeyRef": {"name": "cfg", "key": "nope", "optional": True}}}]
                )
            ]
        )
        assert _build(builder, workload, _cm("cfg", other="1")) == []

    def test_env_from_expands_whole_object(self, builder: ReferenceGraphBuilder) -> None:
        workload = make_deployment(containers=[make_container(env_from=[{"secretRef": {"name": "api"}}])])
        edges = _build(builder, workload, _secret("api", {"token": "t", "url": "u"}))
        assert [e.env_var_name for e in edges] == ["TOKEN_CHECKSUM", "URL_CHECKSUM"]
        assert all(e.origin == EdgeOrigin.ENV_FROM for e in edges)

    def test_env_from_missing_object_is_malformed(self, builder: ReferenceGraphBuilder) -> None:
        workload = make_deployment(containers=[make_container(env_from=[{"configMapRef": {"name": "absent"}}])])
        with pytest.raises(MalformedReferenceError):
            _build(builder, workload)

    def test_init_containers_are_scanned(self, builder: ReferenceGraphBuilder) -> None:
        workload = make_deployment(
            init_containers=[make_container("migrate", env_from=[{"configMapRef": {"name": "cfg"}}])]
        )
        edges = _build(builder, workload, _cm("cfg", a="1"))
        assert edges[0].containers == ("migrate",)

    def test_duplicate_references_emitted_once_with_merged_containers(self, builder: ReferenceGraphBuilder) -> None:
        key_ref = {"name": "PW", "valueFrom": {"secretKeyRef": {"name": "db", "key": "password"}}}
        workload = make_deployment(
            containers=[make_container("app", env=[key_ref]), make_container("sidecar", env=[key_ref])]
        )
        edges = _build(builder, workload, _secret("db", {"password": "p"}))
        assert len(edges) == 1
        assert edges[0].containers == ("app", "sidecar")


# ---------------------------------------------------------------------------
# Name collisions
# ---------------------------------------------------------------------------


class TestNameCollisions:
    def test_same_key_in_two_objects_is_qualified(self, builder: ReferenceGraphBuilder) -> None:
        workload = make_deployment(
            containers=[make_container(mounts=["a", "b"])],
            volumes=[secret_volume("a", "frontend-tls"), secret_volume("b", "backend-tls")],
        )
        edges = _build(
            builder,
            workload,
            _secret("frontend-tls", {"tls.crt": "f"}),
            _secret("backend-tls", {"tls.crt": "b"}),
        )
        assert [e.env_var_name for e in edges] == ["FRONTEND_TLS_TLS_CRT_CHECKSUM", "BACKEND_TLS_TLS_CRT_CHECKSUM"]

    def test_same_name_in_configmap_and_secret_is_qualified_by_kind(self, builder: ReferenceGraphBuilder) -> None:
        workload = make_deployment(
            containers=[make_container(mounts=["a", "b"])],
            volumes=[config_map_volume("a", "app"), secret_volume("b", "app")],
        )
        edges = _build(builder, workload, _cm("app", conf="c"), _secret("app", {"conf": "s"}))
        names = {e.env_var_name for e in edges}
        assert names == {"CONFIGMAP_APP_CONF_CHECKSUM", "SECRET_APP_CONF_CHECKSUM"}

    def test_names_are_unique(self, builder: ReferenceGraphBuilder) -> None:
        workload = make_deployment(
            containers=[make_container(mounts=["a", "b", "c"])],
            volumes=[config_map_volume("a", "one"), config_map_volume("b", "two"), secret_volume("c", "one")],
        )
        edges = _build(
            builder,
            workload,
            _cm("one", x="1", y="2"),
            _cm("two", x="3"),
            _secret("one", {"x": "4"}),
        )
        names = [e.env_var_name for e in edges]
        assert len(names) == len(set(names))

    def test_qualified_name_clashing_with_another_key_escalates(self, builder: ReferenceGraphBuilder) -> None:
        # my/tls.crt qualifies to MY_TLS_CRT_CHECKSUM, which z/my_tls.crt already owns.
        workload = make_deployment(
            containers=[make_container(mounts=["a", "b", "c"])],
            volumes=[config_map_volume("a", "my"), config_map_volume("b", "other"), config_map_volume("c", "z")],
        )
        objs = (_cm("my", **{"tls.crt": "1"}), _cm("other", **{"tls.crt": "2"}), _cm("z", **{"my_tls.crt": "3"}))
        edges = _build(builder, workload, *objs)

        by_source = {(e.source.name, e.source.key): e.env_var_name for e in edges}
        assert by_source == {
            ("my", "tls.crt"): "CONFIGMAP_MY_TLS_CRT_CHECKSUM",
            ("other", "tls.crt"): "OTHER_TLS_CRT_CHECKSUM",
            ("z", "my_tls.crt"): "MY_TLS_CRT_CHECKSUM",
        }
        assert [e.env_var_name for e in _build(builder, workload, *objs)] == [e.env_var_name for e in edges]

    def test_names_do_not_depend_on_reference_order(self, builder: ReferenceGraphBuilder) -> None:
        objs = (_cm("my", **{"tls.crt": "1"}), _cm("other", **{"tls.crt": "2"}), _cm("z", **{"my_tls.crt": "3"}))
        forward = make_deployment(
            containers=[make_container(mounts=["a", "b", "c"])],
            volumes=[config_map_volume("a", "my"), config_map_volume("b", "other"), config_map_volume("c", "z")],
        )
        backward = make_deployment(
            containers=[make_container(mounts=["a", "b", "c"])],
            volumes=[config_map_volume("c", "z"), config_map_volume("b", "other"), config_map_volume("a", "my")],
        )
        names = [{(e.source.name, e.env_var_name) for e in _build(builder, w, *objs)} for w in (forward, backward)]
        assert names[0] == names[1]

    def test_duplicate_explicit_name_falls_back_to_derived(self, builder: ReferenceGraphBuilder) -> None:
        workload = make_deployment(template_annotations={TRACK_ANNOTATION: "CERT=secret/a/x, CERT=secret/b/y"})
        edges = _build(builder, workload, _secret("a", {"x": "1"}), _secret("b", {"y": "2"}))
        by_source = {e.source.name: e.env_var_name for e in edges}
        assert by_source == {"a": "CERT_CHECKSUM", "b": "Y_CHECKSUM"}

    def test_numeric_suffix_when_every_qualified_name_is_taken(self, builder: ReferenceGraphBuilder) -> None:
        workload = make_deployment(
            containers=[make_container(mounts=["a", "b"])],
            volumes=[config_map_volume("a", "app"), config_map_volume("b", "other")],
            template_annotations={
                TRACK_ANNOTATION: "APP_CONF_CHECKSUM=secret/s/p, CONFIGMAP_APP_CONF_CHECKSUM=secret/s/q"
            },
        )
        edges = _build(
            builder,
            workload,
            _cm("app", conf="1"),
            _cm("other", conf="2"),
            _secret("s", {"p": "3", "q": "4"}),
        )
        by_source = {(e.source.name, e.source.key): e.env_var_name for e in edges}
        assert by_source[("app", "conf")] == "CONFIGMAP_APP_CONF_2_CHECKSUM"
        assert by_source[("other", "conf")] == "OTHER_CONF_CHECKSUM"
        names = list(by_source.values())
        assert len(names) == len(set(names))


# ---------------------------------------------------------------------------
# Annotations
# ---------------------------------------------------------------------------


class TestTrackAnnotation:
    def test_explicit_name_and_key(self, builder: ReferenceGraphBuilder) -> None:
        workload = make_deployment(template_annotations={TRACK_ANNOTATION: "CERT=secret/my-secret/tls.crt"})
        edges = _build(builder, workload, _secret("my-secret", {"tls.crt": "c"}))
        assert [e.env_var_name for e in edges] == ["CERT_CHECKSUM"]
        assert edges[0].origin == EdgeOrigin.ANNOTATION

    def test_whole_object_entry_on_workload_metadata(self, builder: ReferenceGraphBuilder) -> None:
        workload = make_deployment(annotations={TRACK_ANNOTATION: "configmap/settings"})
        edges = _build(builder, workload, _cm("settings", a="1", b="2"))
        assert [e.env_var_name for e in edges] == ["A_CHECKSUM", "B_CHECKSUM"]

    def test_whole_object_entry_for_missing_object_is_malformed(self, builder: ReferenceGraphBuilder) -> None:
        workload = make_deployment(annotations={TRACK_ANNOTATION: "cm/settings"})
        with pytest.raises(MalformedReferenceError):
            _build(builder, workload)

    def test_invalid_entries_are_ignored(self, builder: ReferenceGraphBuilder) -> None:
        workload = make_deployment(annotations={TRACK_ANNOTATION: "nonsense, pod/foo/bar"})
        assert _build(builder, workload) == []

    def test_explicit_name_reserves_derived_name(self, builder: ReferenceGraphBuilder) -> None:
        workload = make_deployment(
            containers=[make_container(mounts=["conf"])],
            volumes=[config_map_volume("conf", "cfg")],
            template_annotations={TRACK_ANNOTATION: "KEY_CHECKSUM=secret/tls/key"},
        )
        edges = _build(builder, workload, _cm("cfg", key="1"), _secret("tls", {"key": "2"}))
        by_source = {e.source.name: e.env_var_name for e in edges}
        assert by_source == {"cfg": "CFG_KEY_CHECKSUM", "tls": "KEY_CHECKSUM"}


class TestNormalizationPolicies:
    def test_default_policy_applies(self) -> None:
        builder = ReferenceGraphBuilder(default_policy=NormalizationPolicy.STRIP_TRAILING_WHITESPACE)
        workload = make_deployment(volumes=[config_map_volume("conf", "cfg")])
        edges = _build(builder, workload, _cm("cfg", a="1"))
        assert edges[0].policy == NormalizationPolicy.STRIP_TRAILING_WHITESPACE

    def test_key_beats_object_beats_wildcard(self, builder: ReferenceGraphBuilder) -> None:
        workload = make_deployment(
            volumes=[config_map_volume("conf", "cfg")],
            template_annotations={
                NORMALIZE_ANNOTATION: (
                    "*=normalize-newlines, configmap/cfg=strip-line-whitespace, "
                    "configmap/cfg/a=strip-trailing-whitespace"
                )
            },
        )
        edges = _build(builder, workload, _cm("cfg", a="1", b="2"))
        policies = {e.source.key: e.policy for e in edges}
        assert policies == {
            "a": NormalizationPolicy.STRIP_TRAILING_WHITESPACE,
            "b": NormalizationPolicy.STRIP_LINE_WHITESPACE,
        }

    def test_unknown_policy_entry_ignored(self, builder: ReferenceGraphBuilder) -> None:
        workload = make_deployment(
            volumes=[config_map_volume("conf", "cfg")],
            template_annotations={NORMALIZE_ANNOTATION: "*=shout"},
        )
        edges = _build(builder, workload, _cm("cfg", a="1"))
        assert edges[0].policy == NormalizationPolicy.PRESERVE


class TestReferencedObjects:
    def test_distinct_objects_in_first_seen_order(self, builder: ReferenceGraphBuilder) -> None:
        workload = make_deployment(
            containers=[
                make_container(
                    mounts=["conf"],
                    env=[{"name": "P", "valueFrom": {"secretKeyRef": {"name": "db", "key": "pw"}}}],
                    env_from=[{"configMapRef": {"name": "cfg"}}],
                )
            ],
            volumes=[config_map_volume("conf", "cfg")],
        )
        assert builder.referenced_objects(workload) == [
            SourceObjectRef(ObjectKind.CONFIG_MAP, "default", "cfg"),
            SourceObjectRef(ObjectKind.SECRET, "default", "db"),
        ]
