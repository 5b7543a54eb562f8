import enum
import logging
import subprocess
from dataclasses import dataclass
from typing import Optional

from chart import ChartSource
from ecr import EcrRepositoryProvisioner, provisioner_for, repository_name
from reference import ImageReference

logger = logging.getLogger(__name__)


class MirrorOutcome(enum.Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED_DRY_RUN = "skipped-dry-run"


@dataclass(frozen=True)
class MirrorRecord:
    original: ImageReference
    mirror: ImageReference
    chart: Optional[ChartSource] = None

    def to_dict(self):
        return {
            "original": str(self.original),
            "mirror": str(self.mirror),
            "chart": self.chart.path if self.chart else "",
            "selected": False,
        }

    def to_line(self):
        chart = self.chart.path if self.chart else ""
        return f"{self.original}|{self.mirror}|{chart}"


class MirrorExecutor:
    def __init__(self, provisioner: Optional[EcrRepositoryProvisioner] = None, timeout: Optional[int] = None):
        """
        Copies images into the mirror registry with the docker CLI.

        Args:
            provisioner: Creates destination repositories first (ECR only).
            timeout (int): Optional per-command timeout in seconds; None waits.
        """
        self.provisioner = provisioner
        self.timeout = timeout

    @classmethod
    def for_registry(cls, registry: str, timeout: Optional[int] = None) -> "MirrorExecutor":
        return cls(provisioner=provisioner_for(registry), timeout=timeout)

    def run_docker(self, args, error_message, input_text=None):
        """
        Run a 'docker' command and return stdout on success, None on failure.
        """
        cmd = ["docker"] + args
        try:
            result = subprocess.run(
                cmd,
                input=input_text,
                capture_output=True,
                text=True,
                timeout=self.timeout
            )
        except subprocess.TimeoutExpired:
            logger.error(f"Docker command timed out: {cmd}. {error_message}")
            return None
        except FileNotFoundError:
            logger.error(f"Missing dependency: 'docker' not found on PATH while running: {cmd}. {error_message}")
            return None
        if result.returncode != 0:
            logger.debug(f"{error_message}: {result.stderr.strip()}")
            return None
        return result.stdout

    def login(self, registry: str) -> bool:
        """
        Log docker in to an ECR mirror registry using an AWS token.
        Other registries are expected to be logged in already.
        """
        if self.provisioner is None:
            return True
        password = self.provisioner.get_login_password()
        if not password:
            return False
        host = registry.strip("/").split("/", 1)[0]
        out = self.run_docker(["login", "--username", "AWS", "--password-stdin", host],
                              f"Failed docker login to {host}", input_text=password)
        if out is None:
            logger.error(f"Failed docker login to {host}")
            return False
        logger.info(f"Authenticated to private ECR {host} (docker)")
        return True

    def execute(self, ref: ImageReference, dest: ImageReference, dry_run: bool = False) -> MirrorOutcome:
        """
        Pull `ref`, tag it as `dest` and push it. Single attempt, no retry.
        """
        source, target = str(ref), str(dest)
        logger.info(f"Mirroring: {source} -> {target}")

        if dry_run:
            logger.warning(f"DRY RUN: Would mirror {source} to {target}")
            return MirrorOutcome.SKIPPED_DRY_RUN

        if self.run_docker(["pull", source], f"Failed to pull {source}") is None:
            logger.error(f"Failed to pull: {source}")
            return MirrorOutcome.FAILED
        logger.info(f"Successfully pulled: {source}")

        if self.run_docker(["tag", source, target], f"Failed to tag {source} as {target}") is None:
            logger.error(f"Failed to tag: {source} -> {target}")
            return MirrorOutcome.FAILED

        if self.provisioner is not None:
            name = repository_name(dest.repository)
            if not self.provisioner.ensure(name):
                logger.warning(f"Could not ensure ECR repository {name}; attempting push anyway")

        if self.run_docker(["push", target], f"Failed to push {target}") is None:
            logger.error(f"Failed to push: {target}")
            return MirrorOutcome.FAILED
        logger.info(f"Successfully pushed: {target}")

        # Best-effort cleanup of the local copy.
        if self.run_docker(["rmi", target], f"Failed to remove local image {target}") is None:
            logger.debug(f"Ignoring cleanup failure for {target}")
        return MirrorOutcome.SUCCEEDED
