"""
Manifest updater - rewrites the image tag in a deployment descriptor.
"""

import logging
import re
from pathlib import Path
from typing import List

from controller.src.errors import ConfigError, ManifestNotFoundError
from controller.src.models.pipeline import ManifestDescriptor, is_valid_tag

logger = logging.getLogger(__name__)

def image_line_pattern(app_name: str) -> re.Pattern:
    """
    Match `image: [registry[:port]/][account/]<app_name>[:tag]`.

    The repository name must equal app_name exactly, so
    `netflix-clone-app-worker` never matches `netflix-clone-app`.
    Digest-pinned references are left alone.
    """
    return re.compile(
        r"^(?P<prefix>\s*(?:-\s*)?image:\s*[\"']?)"
        r"(?P<name>(?:[^\s\"'/:@]+(?::\d+)?/)*" + re.escape(app_name) + r")"
        r"(?::(?P<tag>[A-Za-z0-9_][A-Za-z0-9_.-]{0,127}))?"
        r"(?P<suffix>[\"']?(?:\s.*)?)$"
    )

def _split_ending(line: str):
    body = line.rstrip("\r\n")
    return body, line[len(body):]

def rewrite_tags(content: str, app_name: str, new_tag: str):
    """Return (new_content, matched line numbers), 1-based."""
    pattern = image_line_pattern(app_name)
    matched: List[int] = []
    lines = []

    for number, line in enumerate(content.splitlines(keepends=True), start=1):
        body, ending = _split_ending(line)
        match = pattern.match(body)
        if match:
            matched.append(number)
            body = f"{match.group('prefix')}{match.group('name')}:{new_tag}{match.group('suffix')}"
        lines.append(body + ending)

    return "".join(lines), matched

class ManifestUpdater:
    def update(self, descriptor_path: Path, app_name: str, new_tag: str) -> ManifestDescriptor:
        """
        Point every image reference of `app_name` at `new_tag`.

        Only the tag changes; the file is rewritten only if its content
        differs, so running twice with the same tag is a no-op.
        """
        if not is_valid_tag(new_tag):
            raise ConfigError(f"'{new_tag}' is not a valid image tag")

        path = Path(descriptor_path)
        if not path.is_file():
            raise ManifestNotFoundError(f"Manifest {path} does not exist")

        original = path.read_bytes().decode("utf-8")
        content, matched = rewrite_tags(original, app_name, new_tag)
        if not matched:
            raise ManifestNotFoundError(
                f"No image reference for '{app_name}' found in {path}"
            )

        changed = content != original
        if changed:
            path.write_bytes(content.encode("utf-8"))
            logger.info(f"Updated {path} lines {matched} to tag {new_tag}")
        else:
            logger.info(f"{path} already references tag {new_tag}")

        return ManifestDescriptor(
            path=path,
            content=content,
            matched_lines=matched,
            changed=changed,
        )
