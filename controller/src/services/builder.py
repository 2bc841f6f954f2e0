"""
Artifact builder - drives the external image builder.
"""

import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from controller.src.errors import BuildError, ConfigError
from controller.src.models.pipeline import LATEST_TAG, Artifact, is_valid_tag
from controller.src.services.runner import ToolRunner

logger = logging.getLogger(__name__)

class ArtifactBuilder:
    def __init__(
        self,
        runner: ToolRunner,
        image_name: str,
        build_id: str,
        required_build_args: Iterable[str] = (),
        registry: str = "docker.io",
        builder_binary: str = "docker",
        timeout: Optional[int] = None,
    ):
        self.runner = runner
        self.image_name = image_name
        self.build_id = build_id
        self.required_build_args = list(required_build_args)
        self.registry = registry
        self.builder_binary = builder_binary
        self.timeout = timeout

    def build_command(self, context: Path, build_args: Dict[str, str]) -> List[str]:
        command = [self.builder_binary, "build"]
        artifact = self._artifact()
        for reference in artifact.references:
            command += ["-t", reference]
        # Values come from the environment so secrets stay out of argv
        for name in sorted(build_args):
            command += ["--build-arg", name]
        command.append(str(context))
        return command

    def _artifact(self) -> Artifact:
        return Artifact(
            repository=self.image_name,
            tags=(self.build_id, LATEST_TAG),
            registry=self.registry,
        )

    def build(self, context: Path, build_args: Dict[str, str]) -> Artifact:
        """
        Build the image in `context`.

        Raises ConfigError before touching the builder when a required build
        arg is missing, BuildError when the builder exits non-zero.
        """
        missing = [name for name in self.required_build_args if not build_args.get(name)]
        if missing:
            raise ConfigError(f"Missing required build args: {', '.join(missing)}")
        if not is_valid_tag(self.build_id) or self.build_id == LATEST_TAG:
            raise ConfigError(f"Invalid build id '{self.build_id}'")
        if not Path(context).is_dir():
            raise ConfigError(f"Build context {context} does not exist")

        command = self.build_command(context, build_args)
        result = self.runner.run(
            "build-image",
            command,
            env=dict(build_args),
            cwd=str(context),
            timeout=self.timeout,
            secrets=build_args.values(),
        )
        if not result.succeeded:
            raise BuildError(
                f"Image build exited with code {result.exit_code}",
                logs=result.output,
            )

        artifact = self._artifact()
        logger.info(f"Built {', '.join(artifact.references)}")
        return artifact
