from __future__ import annotations

import subprocess

import pytest
from botocore.exceptions import NoCredentialsError

import mirror as mirror_module
from chart import ChartSource
from ecr import EcrRepositoryProvisioner
from mirror import MirrorExecutor, MirrorOutcome, MirrorRecord
from reference import ImageReference

SOURCE = ImageReference("docker.io/library/nginx", "1.25")
DEST = ImageReference("registry.internal.company.com/dockerhub/docker.io/library/nginx", "1.25")


class FakeDocker:
    """Stands in for subprocess.run; `failing` lists docker subcommands that exit non-zero."""

    def __init__(self, failing=()):
        self.failing = set(failing)
        self.calls: list[list[str]] = []

    def __call__(self, cmd, **kwargs):
        self.calls.append(cmd)
        code = 1 if cmd[1] in self.failing else 0
        return subprocess.CompletedProcess(cmd, code, stdout="ok\n", stderr="denied" if code else "")

    @property
    def actions(self):
        return [c[1] for c in self.calls]


@pytest.fixture
def docker(monkeypatch):
    fake = FakeDocker()
    monkeypatch.setattr(mirror_module.subprocess, "run", fake)
    return fake


def test_successful_mirror_pulls_tags_pushes_and_cleans_up(docker) -> None:
    outcome = MirrorExecutor().execute(SOURCE, DEST)

    assert outcome is MirrorOutcome.SUCCEEDED
    assert docker.calls == [
        ["docker", "pull", str(SOURCE)],
        ["docker", "tag", str(SOURCE), str(DEST)],
        ["docker", "push", str(DEST)],
        ["docker", "rmi", str(DEST)],
    ]


def test_dry_run_has_no_side_effects(docker) -> None:
    assert MirrorExecutor().execute(SOURCE, DEST, dry_run=True) is MirrorOutcome.SKIPPED_DRY_RUN
    assert docker.calls == []


def test_pull_failure_stops_early(docker) -> None:
    docker.failing = {"pull"}
    assert MirrorExecutor().execute(SOURCE, DEST) is MirrorOutcome.FAILED
    assert docker.actions == ["pull"]


def test_tag_failure(docker) -> None:
    docker.failing = {"tag"}
    assert MirrorExecutor().execute(SOURCE, DEST) is MirrorOutcome.FAILED
    assert docker.actions == ["pull", "tag"]


def test_push_failure_skips_cleanup(docker) -> None:
    docker.failing = {"push"}
    assert MirrorExecutor().execute(SOURCE, DEST) is MirrorOutcome.FAILED
    assert docker.actions == ["pull", "tag", "push"]


def test_cleanup_failure_is_swallowed(docker) -> None:
    docker.failing = {"rmi"}
    assert MirrorExecutor().execute(SOURCE, DEST) is MirrorOutcome.SUCCEEDED


def test_missing_docker_is_a_failure(monkeypatch) -> None:
    def missing(cmd, **kwargs):
        raise FileNotFoundError("docker")

    monkeypatch.setattr(mirror_module.subprocess, "run", missing)
    assert MirrorExecutor().execute(SOURCE, DEST) is MirrorOutcome.FAILED


class FakeProvisioner:
    def __init__(self, ok=True, password="secret"):
        self.ok = ok
        self.password = password
        self.ensured: list[str] = []

    def ensure(self, name):
        self.ensured.append(name)
        return self.ok

    def get_login_password(self):
        return self.password


def test_ecr_repository_is_ensured_before_push(docker) -> None:
    provisioner = FakeProvisioner()
    dest = ImageReference("123456789012.dkr.ecr.us-west-2.amazonaws.com/dockerhub/library/nginx", "1.25")

    outcome = MirrorExecutor(provisioner=provisioner).execute(SOURCE, dest)

    assert outcome is MirrorOutcome.SUCCEEDED
    assert provisioner.ensured == ["dockerhub/library/nginx"]


def test_push_attempted_when_provisioning_fails(docker) -> None:
    provisioner = FakeProvisioner(ok=False)
    assert MirrorExecutor(provisioner=provisioner).execute(SOURCE, DEST) is MirrorOutcome.SUCCEEDED
    assert "push" in docker.actions


class NoCredentialsEcr:
    def __getattr__(self, operation):
        def call(**kwargs):
            raise NoCredentialsError()
        return call


ECR_HOST = "123456789012.dkr.ecr.us-west-2.amazonaws.com"


def test_push_attempted_without_aws_credentials(docker) -> None:
    executor = MirrorExecutor(provisioner=EcrRepositoryProvisioner("us-west-2", ecr_client=NoCredentialsEcr()))
    dest = ImageReference(f"{ECR_HOST}/dockerhub/nginx", "1")

    assert executor.execute(ImageReference("nginx", "1"), dest) is MirrorOutcome.SUCCEEDED
    assert docker.actions == ["pull", "tag", "push", "rmi"]


def test_login_fails_without_aws_credentials(docker) -> None:
    executor = MirrorExecutor(provisioner=EcrRepositoryProvisioner("us-west-2", ecr_client=NoCredentialsEcr()))
    assert executor.login(ECR_HOST) is False
    assert docker.calls == []


def test_dry_run_skips_provisioning(docker) -> None:
    provisioner = FakeProvisioner()
    MirrorExecutor(provisioner=provisioner).execute(SOURCE, DEST, dry_run=True)
    assert provisioner.ensured == []


def test_login_uses_password_stdin(docker) -> None:
    executor = MirrorExecutor(provisioner=FakeProvisioner())
    assert executor.login("123456789012.dkr.ecr.us-west-2.amazonaws.com") is True
    assert docker.calls == [[
        "docker", "login", "--username", "AWS", "--password-stdin",
        "123456789012.dkr.ecr.us-west-2.amazonaws.com",
    ]]


def test_login_is_noop_without_provisioner(docker) -> None:
    assert MirrorExecutor().login("registry.internal.company.com") is True
    assert docker.calls == []


def test_for_registry_only_provisions_ecr() -> None:
    assert MirrorExecutor.for_registry("registry.internal.company.com").provisioner is None
    assert MirrorExecutor.for_registry("123456789012.dkr.ecr.eu-central-1.amazonaws.com").provisioner is not None


def test_record_serialization() -> None:
    record = MirrorRecord(
        original=ImageReference("myapp/web"),
        mirror=ImageReference("registry.internal.company.com/dockerhub/myapp_web"),
        chart=ChartSource("charts/app"),
    )
    assert record.to_dict() == {
        "original": "myapp/web:latest",
        "mirror": "registry.internal.company.com/dockerhub/myapp_web:latest",
        "chart": "charts/app",
        "selected": False,
    }
    assert record.to_line() == "myapp/web:latest|registry.internal.company.com/dockerhub/myapp_web:latest|charts/app"
