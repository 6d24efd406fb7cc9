"""
Candidate list loading.

The list is a plain text file with one address per line. Validation is
deliberately loose: anything with a dot (IPv4-like) or a colon (IPv6-like)
is accepted and the network stack rejects the rest at probe time.
"""

import logging
from pathlib import Path
from typing import List, Optional, Union

logger = logging.getLogger(__name__)

DEFAULT_LIST_NAME = "ipv4.txt"


def is_candidate(token: str) -> bool:
    return bool(token) and ('.' in token or ':' in token)


class CandidateSource:
    """
    Loads scan targets, falling back to conventional locations when the
    configured path does not exist.
    """

    def __init__(self, base_dir: Optional[Union[str, Path]] = None, list_name: str = DEFAULT_LIST_NAME):
        if base_dir is None:
            # Application base directory: the directory holding the package
            base_dir = Path(__file__).resolve().parent.parent
        self.base_dir = Path(base_dir)
        self.list_name = list_name

    def search_paths(self, path: Optional[Union[str, Path]]) -> List[Path]:
        paths = []
        if path:
            paths.append(Path(path))
        base = self.base_dir
        for _ in range(4):
            paths.append(base / self.list_name)
            base = base / ".."
        paths.append(Path(self.list_name))
        paths.append(Path.cwd() / self.list_name)
        return paths

    def resolve(self, path: Optional[Union[str, Path]]) -> Optional[Path]:
        """Return the first existing file in the search order."""
        for candidate in self.search_paths(path):
            if candidate.is_file():
                return candidate
        return None

    def load(self, path: Optional[Union[str, Path]]) -> List[str]:
        """
        Read candidates from `path` or the first fallback location found.

        Returns:
            Trimmed addresses in file order; empty when nothing is readable.
        """
        actual = self.resolve(path)
        if actual is None:
            logger.warning("IP list file not found in any of the expected locations. Searched paths:")
            for searched in self.search_paths(path):
                logger.warning("  - %s", searched)
            return []

        logger.info("Found IP list file at: %s", actual)
        try:
            with open(actual, 'r', encoding='utf-8', errors='replace') as f:
                lines = f.readlines()
        except OSError as e:
            logger.error("Error loading IP list from %s: %s", actual, e)
            return []

        candidates = []
        for lineno, line in enumerate(lines, start=1):
            token = line.strip()
            if '\ufffd' in token:
                # Dropping the bad bytes could turn the line into another address
                logger.warning("Skipping undecodable line %d in %s", lineno, actual)
                continue
            if is_candidate(token):
                candidates.append(token)
        logger.info("Loaded %d valid IPs from: %s", len(candidates), actual)
        return candidates
