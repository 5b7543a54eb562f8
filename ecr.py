import re
import base64
import logging
import threading
from typing import Optional, Tuple

import boto3
from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger(__name__)

MIRROR_TAG = {"Key": "image-mirror", "Value": "true"}

_ECR_HOST = re.compile(r"^(\d{12})\.dkr\.ecr\.([a-z0-9-]+)\.amazonaws\.com$")


def parse_ecr_host(registry: str) -> Optional[Tuple[str, str]]:
    """
    Return (account_id, region) when the registry host is a private ECR
    endpoint, else None.
    """
    host = (registry or "").strip("/").split("/", 1)[0]
    match = _ECR_HOST.match(host)
    if not match:
        return None
    return match.group(1), match.group(2)


def repository_name(repository: str) -> str:
    """
    Strip the registry host from a full repository path, leaving the ECR
    repository name (e.g. 'dockerhub/library/nginx').
    """
    parts = repository.split("/", 1)
    return parts[1] if len(parts) == 2 else repository


class EcrRepositoryProvisioner:
    """
    Creates destination repositories in a private ECR registry before a push.
    ECR, unlike most registries, rejects pushes to repositories that do not
    exist yet. Shared by all mirror workers.
    """

    def __init__(self, region: str, ecr_client=None):
        self.region = region
        self._client = ecr_client
        self._lock = threading.Lock()
        self._ensured = set()

    def _get_client(self):
        with self._lock:
            if self._client is None:
                session = boto3.Session()
                self._client = session.client("ecr", region_name=self.region)
            return self._client

    def get_login_password(self) -> Optional[str]:
        """
        Fetch a registry password for 'docker login --username AWS'.
        """
        try:
            resp = self._get_client().get_authorization_token()
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Unable to get ECR authorization token: {e}")
            return None
        for data in resp.get("authorizationData", []):
            token = data.get("authorizationToken")
            if token:
                user_pass = base64.b64decode(token).decode("utf-8")
                return user_pass.split(":", 1)[1] if ":" in user_pass else user_pass
        logger.error("ECR returned no authorization data")
        return None

    def ensure(self, name: str) -> bool:
        """
        Make sure an ECR repository exists, creating it when missing.
        Returns True when the repository exists afterwards.
        """
        with self._lock:
            if name in self._ensured:
                return True
        try:
            client = self._get_client()
            client.describe_repositories(repositoryNames=[name])
            logger.debug(f"ECR repository {name} exists.")
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") != "RepositoryNotFoundException":
                logger.error(f"Error describing ECR repository {name}: {e}")
                return False
            logger.info(f"Repository {name} not found, creating new repository...")
            try:
                client.create_repository(repositoryName=name, tags=[MIRROR_TAG])
            except ClientError as create_err:
                code = create_err.response.get("Error", {}).get("Code")
                if code != "RepositoryAlreadyExistsException":
                    logger.error(f"Unable to create ECR repository {name}: {create_err}")
                    return False
            except BotoCoreError as create_err:
                logger.error(f"Unable to create ECR repository {name}: {create_err}")
                return False
        except BotoCoreError as e:
            logger.error(f"Error describing ECR repository {name}: {e}")
            return False
        with self._lock:
            self._ensured.add(name)
        return True


def provisioner_for(registry: str) -> Optional[EcrRepositoryProvisioner]:
    """
    Build a provisioner when the mirror registry is ECR; other registries
    create repositories on push and need none.
    """
    parsed = parse_ecr_host(registry)
    if parsed is None:
        return None
    account, region = parsed
    logger.info(f"Mirror registry is Amazon ECR (account {account}, region {region}); repositories will be created on demand")
    return EcrRepositoryProvisioner(region)
