from __future__ import annotations

from mirror_path import build_catalog_mirror, build_push_mirror
from reference import ImageReference, normalize

REGISTRY = "registry.internal.company.com"


def test_catalog_mirror_flattens_repository() -> None:
    mirror = build_catalog_mirror(normalize("myapp/web"), REGISTRY, "dockerhub")
    assert str(mirror) == "registry.internal.company.com/dockerhub/myapp_web:latest"


def test_push_mirror_keeps_hierarchy() -> None:
    mirror = build_push_mirror(normalize("myapp/web"), REGISTRY, "dockerhub")
    assert str(mirror) == "registry.internal.company.com/dockerhub/myapp/web:latest"


def test_tag_is_unchanged() -> None:
    ref = ImageReference("quay.io/jetstack/cert-manager-controller", "v1.14.4")
    assert build_catalog_mirror(ref, REGISTRY, "dockerhub").tag == "v1.14.4"
    assert build_push_mirror(ref, REGISTRY, "dockerhub").tag == "v1.14.4"


def test_registry_port_survives_flattening() -> None:
    mirror = build_catalog_mirror(normalize("host:5000/team/app:2"), REGISTRY, "dockerhub")
    assert mirror == ImageReference(f"{REGISTRY}/dockerhub/host:5000_team_app", "2")


def test_empty_prefix_and_stray_slashes() -> None:
    ref = normalize("nginx:1.25")
    assert str(build_push_mirror(ref, REGISTRY + "/", "")) == f"{REGISTRY}/nginx:1.25"
    assert str(build_push_mirror(ref, REGISTRY, "/mirror/")) == f"{REGISTRY}/mirror/nginx:1.25"
