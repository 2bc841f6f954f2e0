"""
Artifact publisher - pushes every tag of a built image to the registry.
"""

import logging
from typing import List, Optional

from controller.src.errors import AuthError, PublishError
from controller.src.models.pipeline import Artifact, PublishedReference
from controller.src.services.credentials import CredentialScope
from controller.src.services.runner import ToolRunner

logger = logging.getLogger(__name__)

USER_BINDING = "REGISTRY_USER"
PASSWORD_BINDING = "REGISTRY_PASSWORD"

class ArtifactPublisher:
    """
    Pushes tags one at a time. A failed push leaves earlier tags published
    (reported through PublishError.pushed_tags, never rolled back). Local
    images are removed after every attempt.
    """

    def __init__(
        self,
        runner: ToolRunner,
        builder_binary: str = "docker",
        timeout: Optional[int] = None,
    ):
        self.runner = runner
        self.builder_binary = builder_binary
        self.timeout = timeout

    def publish(self, artifact: Artifact, registry_credential: CredentialScope) -> PublishedReference:
        if not registry_credential.active:
            raise AuthError("Registry publish requires an active credential scope")

        env = registry_credential.env()
        secrets = registry_credential.secret_values()
        pushed: List[str] = []
        logs: List[str] = []

        try:
            self._login(artifact, env, secrets, logs)
            for tag in artifact.tags:
                reference = artifact.reference(tag)
                result = self.runner.run(
                    "push-image",
                    [self.builder_binary, "push", reference],
                    env=env,
                    timeout=self.timeout,
                    secrets=secrets,
                )
                logs.append(result.output)
                if not result.succeeded:
                    if pushed:
                        logger.error(
                            f"Partial publish: {', '.join(pushed)} pushed before {tag} failed"
                        )
                    raise PublishError(
                        f"Push of {reference} failed with code {result.exit_code}",
                        pushed_tags=pushed,
                        failed_tag=tag,
                        logs="\n".join(logs),
                    )
                pushed.append(tag)
                logger.info(f"Pushed {reference}")
        finally:
            self._logout(artifact, env, secrets)
            self.remove_local(artifact)

        return PublishedReference(artifact=artifact, pushed_tags=pushed)

    def _login(self, artifact: Artifact, env, secrets, logs: List[str]):
        registry = "" if artifact.registry in ("", "docker.io") else f" {artifact.registry}"
        script = (
            f'printf "%s" "${PASSWORD_BINDING}" | {self.builder_binary} login'
            f' --username "${USER_BINDING}" --password-stdin{registry}'
        )
        result = self.runner.run("registry-login", script, env=env, secrets=secrets)
        logs.append(result.output)
        if not result.succeeded:
            raise AuthError(
                f"Registry login failed with code {result.exit_code}",
                logs="\n".join(logs),
            )

    def _logout(self, artifact: Artifact, env, secrets):
        command = [self.builder_binary, "logout"]
        if artifact.registry not in ("", "docker.io"):
            command.append(artifact.registry)
        try:
            self.runner.run("registry-logout", command, env=env, secrets=secrets)
        except Exception as e:
            logger.warning(f"Registry logout failed: {e}")

    def remove_local(self, artifact: Artifact):
        """Best-effort removal of local image copies."""
        for reference in artifact.references:
            try:
                result = self.runner.run(
                    "remove-image", [self.builder_binary, "rmi", reference],
                )
                if not result.succeeded:
                    logger.warning(f"Failed to remove local image {reference}: {result.output.strip()}")
            except Exception as e:
                logger.warning(f"Failed to remove local image {reference}: {e}")
