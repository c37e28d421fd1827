"""Container image resolution for CI targets."""
from __future__ import annotations

from pathlib import Path
from typing import Mapping
import hashlib

from core.command_runner import CommandError
from core.console import Console

from .container import ContainerEngine
from .errors import ConfigurationError, ImageResolutionError
from .layout import ProjectLayout
from .targets import ContainerConfig, ContainerMode, PullPolicy, Target

IMAGE_NAMESPACE = "cibuild"
HASH_LENGTH = 12


def compute_content_hash(content: bytes, args: Mapping[str, str] | None = None) -> str:
    """Hash dockerfile bytes plus build args in sorted key order.

    Each argument contributes ``key=value\\n``; only the first
    ``HASH_LENGTH`` hex digits are kept.
    """

    digest = hashlib.sha256()
    digest.update(content)
    for key in sorted(args or {}):
        digest.update(f"{key}={args[key]}\n".encode("utf-8"))
    return digest.hexdigest()[:HASH_LENGTH]


def hash_dockerfile(dockerfile: Path, args: Mapping[str, str] | None = None) -> str:
    try:
        content = dockerfile.read_bytes()
    except OSError as exc:
        raise ImageResolutionError(f"Failed to read Dockerfile '{dockerfile}': {exc}") from exc
    return compute_content_hash(content, args)


def image_tag(target_name: str, content_hash: str) -> str:
    return f"{IMAGE_NAMESPACE}/{target_name}:{content_hash}"


class ImageResolver:
    """Decides which image a container target runs in, pulling or building it when needed."""

    def __init__(self, engine: ContainerEngine, layout: ProjectLayout, console: Console) -> None:
        self._engine = engine
        self._layout = layout
        self._console = console

    def resolve(self, target: Target, *, force_refresh: bool = False) -> str:
        docker = target.docker
        if docker is None:
            raise ConfigurationError("docker configuration is required for the docker runner")

        if docker.mode is ContainerMode.PULL:
            return self._resolve_pull(docker, force_refresh=force_refresh)
        if docker.mode is ContainerMode.LOCAL:
            return self._resolve_local(docker)
        return self._resolve_build(target.name, docker, force_refresh=force_refresh)

    def _resolve_pull(self, docker: ContainerConfig, *, force_refresh: bool) -> str:
        image = docker.image
        exists = self._engine.image_exists(image)

        if docker.pull_policy is PullPolicy.ALWAYS:
            should_pull = True
        elif docker.pull_policy is PullPolicy.NEVER:
            if not exists:
                raise ImageResolutionError(f"image {image} not found locally and pullPolicy is 'never'")
            should_pull = False
        else:
            should_pull = not exists

        if force_refresh:
            should_pull = True

        if not should_pull:
            self._console.info(f"  Docker image {image} already exists")
            return image

        self._console.info(f"  Pulling Docker image: {image}...")
        try:
            self._engine.pull(image, platform=docker.platform)
        except CommandError as exc:
            raise ImageResolutionError(f"docker pull failed for {image}: {exc}") from exc
        self._console.success(f"Docker image {image} pulled successfully")
        return image

    def _resolve_local(self, docker: ContainerConfig) -> str:
        image = docker.image
        if not self._engine.image_exists(image):
            raise ImageResolutionError(
                f"local image {image} not found. Use 'docker pull' or 'docker build' to create it"
            )
        self._console.info(f"  Using local Docker image: {image}")
        return image

    def _resolve_build(self, target_name: str, docker: ContainerConfig, *, force_refresh: bool) -> str:
        descriptor = docker.build
        if descriptor is None:
            raise ConfigurationError("build configuration is required for mode: build")

        dockerfile = self._layout.resolve(descriptor.dockerfile)
        if not dockerfile.is_file():
            raise ImageResolutionError(f"dockerfile not found: {dockerfile}")

        tag = image_tag(target_name, hash_dockerfile(dockerfile, descriptor.args))

        if not force_refresh and self._engine.image_exists(tag):
            self._console.info(f"  Docker image {tag} already exists (hash match)")
            return tag

        self._console.info(f"  Building Docker image: {tag}...")
        context = self._layout.resolve(descriptor.context or ".")
        options = dict(tag=tag, dockerfile=dockerfile, context=context, args=descriptor.args, platform=docker.platform)
        try:
            self._engine.build(**options)
        except CommandError:
            self._console.warn("docker buildx failed, trying regular docker build...")
            try:
                self._engine.build(**options, legacy=True)
            except CommandError as exc:
                raise ImageResolutionError(f"docker build failed for {tag}: {exc}") from exc

        self._console.success(f"Docker image {tag} built successfully")
        return tag


__all__ = [
    "HASH_LENGTH",
    "IMAGE_NAMESPACE",
    "ImageResolver",
    "compute_content_hash",
    "hash_dockerfile",
    "image_tag",
]
