"""File operations utilities for Strongbox."""

import fnmatch
import hashlib
import os
import shutil
from typing import Dict, Iterator, List, Optional, Tuple

CHUNK_SIZE = 1024 * 1024


class FileManager:
    """Filesystem helpers shared by backup sources and the orchestrator."""

    def __init__(self, exclude_patterns: Optional[List[str]] = None):
        """
        Initialize file manager.

        Args:
            exclude_patterns: Glob patterns matched against every path component
        """
        self.exclude_patterns = list(exclude_patterns or [])

    def is_excluded(self, relative_path: str) -> bool:
        """Return True if any component of the path matches an exclude pattern."""
        parts = relative_path.replace(os.sep, "/").split("/")
        for pattern in self.exclude_patterns:
            if fnmatch.fnmatch(relative_path, pattern):
                return True
            if any(fnmatch.fnmatch(part, pattern) for part in parts):
                return True
        return False

    def iter_files(self, root: str) -> Iterator[Tuple[str, str]]:
        """
        Walk a file or directory, yielding (absolute path, relative path).

        Excluded directories are pruned. Results are sorted so that checksums
        over a tree are stable.
        """
        if os.path.isfile(root):
            yield root, os.path.basename(root)
            return

        for dirpath, dirnames, filenames in os.walk(root):
            rel_dir = os.path.relpath(dirpath, root)
            rel_dir = "" if rel_dir == "." else rel_dir
            dirnames[:] = sorted(d for d in dirnames if not self.is_excluded(os.path.join(rel_dir, d)))
            for filename in sorted(filenames):
                rel_path = os.path.join(rel_dir, filename)
                if self.is_excluded(rel_path):
                    continue
                yield os.path.join(dirpath, filename), rel_path

    def copy_tree(self, source: str, destination: str) -> Dict[str, object]:
        """
        Copy a file or directory into destination, honoring exclude patterns.

        Returns:
            Dict with total size in bytes, file count and a SHA-256 checksum
            computed over the relative paths and contents.
        """
        if not os.path.exists(source):
            raise FileNotFoundError(f"Backup path does not exist: {source}")

        digest = hashlib.sha256()
        total_size = 0
        file_count = 0

        for absolute, relative in self.iter_files(source):
            target = os.path.join(destination, relative)
            os.makedirs(os.path.dirname(target), exist_ok=True)

            digest.update(relative.replace(os.sep, "/").encode("utf-8"))
            with open(absolute, "rb") as src, open(target, "wb") as dst:
                while True:
                    chunk = src.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    digest.update(chunk)
                    dst.write(chunk)
            shutil.copystat(absolute, target)

            total_size += os.path.getsize(absolute)
            file_count += 1

        return {"size": total_size, "files": file_count, "checksum": digest.hexdigest()}

    def checksum_file(self, path: str) -> str:
        """Compute the SHA-256 checksum of a single file."""
        digest = hashlib.sha256()
        with open(path, "rb") as f:
            while True:
                chunk = f.read(CHUNK_SIZE)
                if not chunk:
                    break
                digest.update(chunk)
        return digest.hexdigest()

    def remove_path(self, path: str) -> bool:
        """Remove a file or directory tree if it exists."""
        if os.path.isdir(path):
            shutil.rmtree(path)
            return True
        if os.path.exists(path):
            os.remove(path)
            return True
        return False

    def sanitize_name(self, path: str) -> str:
        """Turn an include path into a safe directory name inside a staging area."""
        cleaned = os.path.normpath(path.strip()).replace("\\", "/").lstrip("./")
        cleaned = cleaned.replace("..", "_").replace(":", "_")
        return cleaned.replace("/", "__") or "root"
