import logging
import subprocess
from importlib import metadata
from pathlib import Path

logger = logging.getLogger(__name__)

SOURCE_DIR = Path(__file__).resolve().parent


def _git(*args):
    return subprocess.check_output(
        ['git', *args],
        cwd=SOURCE_DIR,
        stderr=subprocess.DEVNULL,
        text=True
    ).strip()


def get_version():
    """Get version from git tags, then package metadata."""
    try:
        tag = _git('describe', '--tags', '--abbrev=0')
        commit = _git('rev-parse', '--short', 'HEAD')
        tag_commit = _git('rev-list', '-n', '1', tag)[:7]

        # Check for uncommitted changes
        has_changes = subprocess.call(
            ['git', 'diff-index', '--quiet', 'HEAD', '--'],
            cwd=SOURCE_DIR,
            stderr=subprocess.DEVNULL
        ) != 0

        version = tag if commit == tag_commit else f"{tag}-{commit}"
        return f"{version}-dev" if has_changes else version

    except (subprocess.CalledProcessError, FileNotFoundError):
        pass

    try:
        return metadata.version('btagger')
    except metadata.PackageNotFoundError:
        logger.debug("Could not determine version from git or package metadata")
        return "v0.0.0"


__version__ = get_version()
